# NG-HEADER: Nombre de archivo: runserver.py
# NG-HEADER: Ubicación: services/runserver.py
# NG-HEADER: Descripción: Arranque local de la API de pedidos con Uvicorn.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Servidor de desarrollo.

En Windows fija la política Selector antes de iniciar Uvicorn (psycopg async
no funciona con Proactor).
"""

from __future__ import annotations

import asyncio
import os
import sys

import uvicorn


def _apply_windows_loop_policy() -> None:
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def main(reload: bool | None = None) -> None:
    _apply_windows_loop_policy()
    if reload is None:
        reload = os.getenv("ENV", "dev") == "dev"
    uvicorn.run(
        "services.api:app",
        host=os.getenv("TARBACA_HOST", "127.0.0.1"),
        port=int(os.getenv("TARBACA_PORT", "8000")),
        reload=reload,
        log_level=(os.getenv("LOG_LEVEL", "info") or "info").lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
