# NG-HEADER: Nombre de archivo: audit.py
# NG-HEADER: Ubicación: services/audit.py
# NG-HEADER: Descripción: Helper para registrar acciones de negocio en audit_log.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AuditLog

logger = logging.getLogger("tarbaca")


def audit(
    db: AsyncSession,
    action: str,
    table: str,
    entity_id: int | None,
    meta: dict[str, Any] | None = None,
    *,
    customer_id: Optional[int] = None,
    request: Request | None = None,
) -> None:
    """Agrega una fila de auditoría a la transacción en curso (no hace commit)."""
    full_meta = dict(meta or {})
    ip = None
    if request is not None:
        cid = getattr(request.state, "correlation_id", None)
        if cid:
            full_meta.setdefault("correlation_id", cid)
        if request.client:
            ip = request.client.host
    db.add(
        AuditLog(
            action=action,
            table=table,
            entity_id=entity_id,
            meta=full_meta,
            customer_id=customer_id,
            ip=ip,
        )
    )
    logger.debug("audit %s %s#%s", action, table, entity_id)
