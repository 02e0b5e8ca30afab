# NG-HEADER: Nombre de archivo: types.py
# NG-HEADER: Ubicación: db/types.py
# NG-HEADER: Descripción: Tipos de columna propios (flags booleanos normalizados).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Tipos SQLAlchemy compartidos por los modelos."""
from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean
from sqlalchemy.types import TypeDecorator

_TRUTHY = {"1", "true", "t", "yes", "y", "on", "si", "sí"}


def parse_flag(value: Any) -> bool:
    """Convierte valores heredados (TINYINT, 'on', 'true', bool) a ``bool``.

    Es el único punto donde se interpreta un flag; aguas abajo sólo se
    compara contra ``True``/``False``.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUTHY


class Flag(TypeDecorator):
    """Booleano que se normaliza una sola vez al escribir y al leer."""

    impl = Boolean
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> bool | None:
        if value is None:
            return None
        return parse_flag(value)

    def process_result_value(self, value: Any, dialect) -> bool:
        return parse_flag(value)
