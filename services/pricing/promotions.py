# NG-HEADER: Nombre de archivo: promotions.py
# NG-HEADER: Ubicación: services/pricing/promotions.py
# NG-HEADER: Descripción: Etapa de promociones por ventana horaria (general o por producto).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Selección y aplicación de promociones vigentes.

Reglas:
- Una línea con descuento de producto no recibe promociones (no se apilan).
- Promoción ``producto``: sólo suma el subtotal original de sus productos; si
  todos ya tienen descuento de producto, la promoción se ignora.
- Promoción ``general``: suma el subtotal original de todas las líneas elegibles.
- Varias promociones se suman de forma independiente; el total se recorta al
  subtotal con descuentos de producto.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Promotion, promotion_products
from .primitives import ZERO, normalize_discount, round_currency, to_decimal
from .product_discounts import CartItem

logger = logging.getLogger("tarbaca.pricing")

SCOPE_GENERAL = "general"
SCOPE_PRODUCT = "producto"


@dataclass(frozen=True)
class PromotionRule:
    id: int
    name: str
    scope: str
    discount_value: Decimal
    product_ids: frozenset[int] = frozenset()
    active: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @classmethod
    def from_model(cls, promo: Promotion, product_ids: Iterable[int] = ()) -> "PromotionRule":
        return cls(
            id=promo.id,
            name=promo.name,
            scope=promo.scope,
            discount_value=to_decimal(promo.discount_value),
            product_ids=frozenset(int(p) for p in product_ids),
            active=promo.active,
            start_date=promo.start_date,
            end_date=promo.end_date,
            start_time=promo.start_time,
            end_time=promo.end_time,
        )


@dataclass
class PromotionLine:
    label: str
    amount: Decimal
    scope: str
    promotion_id: int


@dataclass
class PromotionResult:
    promotion_discount_total: Decimal = ZERO
    lines: List[PromotionLine] = field(default_factory=list)


def is_promotion_active(promo: PromotionRule, now: datetime) -> bool:
    """Vigente si está activa y ``now`` cae en el rango de fechas y de horas (inclusivos)."""
    if promo.active is not True:
        return False
    today = now.date()
    if promo.start_date and today < promo.start_date:
        return False
    if promo.end_date and today > promo.end_date:
        return False
    clock = now.time().replace(tzinfo=None)
    if promo.start_time and clock < promo.start_time:
        return False
    if promo.end_time and clock > promo.end_time:
        return False
    return True


def apply_promotions(
    subtotal_with_product_discounts: Decimal,
    items: Sequence[CartItem],
    promotions: Iterable[PromotionRule],
    discounted_product_ids: set[int],
) -> PromotionResult:
    eligible = [it for it in items if it.product_id not in discounted_product_ids]
    res = PromotionResult()
    raw_total = ZERO
    for promo in promotions:
        if promo.scope == SCOPE_PRODUCT:
            scoped = [it for it in eligible if it.product_id in promo.product_ids]
            if not scoped:
                continue
        else:
            scoped = eligible
        applicable = sum((it.original_subtotal for it in scoped), ZERO)
        if applicable <= 0:
            continue
        fraction = normalize_discount(promo.discount_value).fraction
        amount = applicable * fraction
        if amount <= 0:
            continue
        raw_total += amount
        res.lines.append(
            PromotionLine(
                label=promo.name,
                amount=round_currency(amount),
                scope=promo.scope,
                promotion_id=promo.id,
            )
        )
    cap = to_decimal(subtotal_with_product_discounts)
    if raw_total > cap:
        logger.debug("Descuento de promociones %s recortado a %s", raw_total, cap)
        raw_total = cap
    res.promotion_discount_total = round_currency(max(raw_total, ZERO))
    return res


async def load_active_promotions(db: AsyncSession, now: datetime) -> List[PromotionRule]:
    """Promociones vigentes en ``now`` con su set de productos."""
    promos = (
        await db.execute(select(Promotion).where(Promotion.active.is_(True)).order_by(Promotion.id))
    ).scalars().all()
    if not promos:
        return []
    links = (
        await db.execute(
            select(promotion_products.c.promotion_id, promotion_products.c.product_id).where(
                promotion_products.c.promotion_id.in_([p.id for p in promos])
            )
        )
    ).all()
    by_promo: dict[int, list[int]] = defaultdict(list)
    for promo_id, product_id in links:
        by_promo[promo_id].append(product_id)
    rules = [PromotionRule.from_model(p, by_promo.get(p.id, [])) for p in promos]
    return [r for r in rules if is_promotion_active(r, now)]
