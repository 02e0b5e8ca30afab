# NG-HEADER: Nombre de archivo: primitives.py
# NG-HEADER: Ubicación: services/pricing/primitives.py
# NG-HEADER: Descripción: Helpers numéricos puros (redondeo, clamp, normalización de descuentos).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Primitivas numéricas del motor de precios.

Todo el dinero circula como ``Decimal``; los floats sólo se aceptan en la
frontera (payloads JSON) y se convierten vía ``str`` para no arrastrar error
binario entre etapas.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

KIND_PERCENT = "percent"
KIND_FRACTION = "fraction"


@dataclass(frozen=True)
class NormalizedDiscount:
    """Descuento porcentual con su origen explícito.

    ``kind`` indica cómo venía serializado (``percent`` = 10 significa 10%,
    ``fraction`` = 0.10); ``fraction`` siempre está en [0, 1].
    """

    kind: str
    fraction: Decimal


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO


def round_currency(value: Any) -> Decimal:
    """Redondea a 2 decimales, mitad alejándose de cero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Any) -> Decimal:
    d = to_decimal(value)
    return d if d > 0 else ZERO


def clamp(value: Any, lo: Any, hi: Any) -> Decimal:
    d = to_decimal(value)
    lo_d, hi_d = to_decimal(lo), to_decimal(hi)
    if d < lo_d:
        return lo_d
    if d > hi_d:
        return hi_d
    return d


def normalize_discount(raw: Any) -> NormalizedDiscount:
    """Interpreta un valor de descuento persistido.

    Convención heredada: ``> 1`` son unidades de por ciento, ``<= 1`` ya es
    fracción. Debe aplicarse igual en todos los puntos de lectura.
    """
    value = clamp_non_negative(raw)
    if value > ONE:
        return NormalizedDiscount(KIND_PERCENT, min(value / HUNDRED, ONE))
    return NormalizedDiscount(KIND_FRACTION, value)
