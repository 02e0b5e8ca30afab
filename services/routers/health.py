# NG-HEADER: Nombre de archivo: health.py
# NG-HEADER: Ubicación: services/routers/health.py
# NG-HEADER: Descripción: Endpoints de healthcheck (liveness, base de datos, broker de jobs).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Endpoints de health.

- Liveness básico (`/health`)
- Conectividad DB (`/health/db`)
- Broker Redis de jobs (`/health/redis`, omitido con RUN_INLINE_JOBS=1)
"""
from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.session import get_db

router = APIRouter(prefix="/health", tags=["health"])
START_TIME = time.monotonic()


def _status(ok: bool, detail: str | None = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"ok": ok}
    if detail:
        out["detail"] = detail
    return out


@router.get("")
async def health_root() -> Dict[str, Any]:
    """Liveness simple del backend (si responde, está vivo)."""
    return {"status": "ok", "uptime_s": round(time.monotonic() - START_TIME, 1)}


@router.get("/db")
async def health_db(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    """Valida conexión a la base de datos (SELECT 1)."""
    await db.execute(text("SELECT 1"))
    return _status(True)


@router.get("/redis")
async def health_redis() -> Dict[str, Any]:
    if settings.run_inline_jobs:
        return _status(False, detail="skipped: RUN_INLINE_JOBS=1")
    try:
        import redis

        client = redis.from_url(settings.redis_url, decode_responses=True)
        return _status(bool(client.ping()))
    except Exception as e:  # pragma: no cover - depende de infraestructura
        return _status(False, detail=str(e))
