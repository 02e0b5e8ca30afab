# NG-HEADER: Nombre de archivo: auth.py
# NG-HEADER: Ubicación: services/auth.py
# NG-HEADER: Descripción: Identidad del cliente provista por el middleware de autenticación.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Resolución de la sesión.

La autenticación real vive aguas arriba (gateway); aquí sólo se leen las
cabeceras que deja: ``X-Customer-Id`` y ``X-User-Roles`` (lista separada por comas).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request


@dataclass
class SessionData:
    """Información de la sesión resuelta desde las cabeceras."""

    customer_id: Optional[int]
    roles: list[str] = field(default_factory=list)

    @property
    def role(self) -> str:
        if self.roles:
            return self.roles[0]
        return "cliente" if self.customer_id is not None else "guest"


async def current_session(request: Request) -> SessionData:
    raw_id = (request.headers.get("x-customer-id") or "").strip()
    customer_id: Optional[int] = None
    if raw_id:
        try:
            customer_id = int(raw_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="X-Customer-Id inválido")
    roles = [r.strip().lower() for r in (request.headers.get("x-user-roles") or "").split(",") if r.strip()]
    return SessionData(customer_id, roles)


async def require_customer(sess: SessionData = Depends(current_session)) -> SessionData:
    if sess.customer_id is None:
        raise HTTPException(status_code=401, detail="Debes iniciar sesión")
    return sess


def require_roles(*roles: str) -> Callable[..., SessionData]:
    """Dependencia que asegura que la sesión tenga uno de los roles permitidos."""
    allowed = {r.lower() for r in roles}

    async def dep(sess: SessionData = Depends(current_session)) -> SessionData:
        if not allowed.intersection(sess.roles):
            raise HTTPException(status_code=403, detail="Forbidden")
        return sess

    return dep


__all__ = ["SessionData", "current_session", "require_customer", "require_roles"]
