# NG-HEADER: Nombre de archivo: assembler.py
# NG-HEADER: Ubicación: services/pricing/assembler.py
# NG-HEADER: Descripción: Ensambla los totales del pedido (promociones, recompensa, envío, impuestos).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Cálculo único de "lo que el cliente debe".

El mismo ``price_cart`` se usa para el preview del carrito y para confirmar el
pedido; así el total mostrado y el persistido no divergen.

Orden fijo:
    subtotal c/desc. producto -> promociones -> recompensa -> impuestos -> + envío
El impuesto se calcula SOBRE el subtotal luego de la recompensa.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence

from .primitives import ZERO, clamp_non_negative, normalize_discount, round_currency, to_decimal
from .product_discounts import CartItem, ProductDiscountResult, apply_product_discounts
from .promotions import PromotionLine, PromotionRule, apply_promotions

logger = logging.getLogger("tarbaca.pricing")

KIND_FIXED = "fixed_currency"
KIND_PERCENTAGE = "percentage"


@dataclass(frozen=True)
class RewardSnapshot:
    """Descuento congelado en el canje (tipo + valor al momento de canjear)."""

    kind: str
    value: Decimal
    redemption_id: Optional[int] = None
    label: Optional[str] = None

    @classmethod
    def from_redemption(cls, redemption: Any) -> Optional["RewardSnapshot"]:
        kind = getattr(redemption, "discount_kind", None)
        if kind not in (KIND_FIXED, KIND_PERCENTAGE):
            return None
        return cls(
            kind=kind,
            value=to_decimal(redemption.value_snapshot),
            redemption_id=redemption.id,
            label=redemption.reward_name,
        )


@dataclass
class OrderTotals:
    subtotal_with_product_discounts: Decimal
    promotion_discount: Decimal
    subtotal_after_promotions: Decimal
    reward_discount: Decimal
    subtotal_after_reward: Decimal
    delivery_fee: Decimal
    taxes: Decimal
    total: Decimal

    def persisted_fields(self) -> dict[str, Decimal]:
        """Los cuatro agregados que se guardan en ``pedidos``."""
        return {
            "subtotal": self.subtotal_with_product_discounts,
            "impuestos": self.taxes,
            "descuentos": self.reward_discount,
            "total": self.total,
        }


def reward_discount_for(reward: Optional[RewardSnapshot], subtotal_after_promotions: Decimal) -> Decimal:
    if reward is None:
        return ZERO
    if reward.kind == KIND_PERCENTAGE:
        fraction = normalize_discount(reward.value).fraction
        return round_currency(subtotal_after_promotions * fraction)
    if reward.kind == KIND_FIXED:
        return round_currency(min(clamp_non_negative(reward.value), subtotal_after_promotions))
    return ZERO


def assemble_totals(
    subtotal_with_product_discounts: Any,
    promotion_discount_total: Any,
    reward: Optional[RewardSnapshot],
    delivery_fee: Any,
    tax_rate: Any,
) -> OrderTotals:
    swpd = round_currency(clamp_non_negative(subtotal_with_product_discounts))
    promo = round_currency(clamp_non_negative(promotion_discount_total))
    after_promotions = clamp_non_negative(swpd - promo)
    reward_discount = reward_discount_for(reward, after_promotions)
    after_reward = clamp_non_negative(after_promotions - reward_discount)
    fee = round_currency(clamp_non_negative(delivery_fee))
    taxes = round_currency(after_reward * to_decimal(tax_rate))
    total = clamp_non_negative(after_reward + fee + taxes)
    return OrderTotals(
        subtotal_with_product_discounts=swpd,
        promotion_discount=promo,
        subtotal_after_promotions=after_promotions,
        reward_discount=reward_discount,
        subtotal_after_reward=after_reward,
        delivery_fee=fee,
        taxes=taxes,
        total=round_currency(total),
    )


@dataclass
class CheckoutBreakdown:
    items: List[CartItem]
    products: ProductDiscountResult
    promotion_lines: List[PromotionLine] = field(default_factory=list)
    totals: Optional[OrderTotals] = None
    reward: Optional[RewardSnapshot] = None

    def as_dict(self) -> dict[str, Any]:
        t = self.totals
        reward_line = None
        if self.reward is not None and t is not None and t.reward_discount > 0:
            reward_line = {
                "label": self.reward.label or "Recompensa",
                "kind": self.reward.kind,
                "amount": float(t.reward_discount),
                "redemption_id": self.reward.redemption_id,
            }
        return {
            "items": [
                {
                    "product_id": it.product_id,
                    "quantity": it.quantity,
                    "original_price": float(it.original_price),
                    "final_price": float(it.final_price),
                    "line_subtotal": float(round_currency(it.final_subtotal)),
                }
                for it in self.items
            ],
            "subtotal_original": float(round_currency(self.products.subtotal_original)),
            "product_discount": float(round_currency(self.products.product_discount_total)),
            "subtotal": float(t.subtotal_with_product_discounts) if t else 0.0,
            "promotions": [
                {"label": p.label, "amount": float(p.amount), "scope": p.scope} for p in self.promotion_lines
            ],
            "promotion_discount": float(t.promotion_discount) if t else 0.0,
            "reward": reward_line,
            "reward_discount": float(t.reward_discount) if t else 0.0,
            "delivery_fee": float(t.delivery_fee) if t else 0.0,
            "taxes": float(t.taxes) if t else 0.0,
            "total": float(t.total) if t else 0.0,
        }


def price_cart(
    items: Sequence[CartItem],
    promotions: Iterable[PromotionRule],
    reward: Optional[RewardSnapshot],
    delivery_fee: Any,
    tax_rate: Any,
) -> CheckoutBreakdown:
    products = apply_product_discounts(items)
    promos = apply_promotions(
        products.subtotal_with_product_discounts,
        items,
        promotions,
        products.discounted_product_ids,
    )
    totals = assemble_totals(
        products.subtotal_with_product_discounts,
        promos.promotion_discount_total,
        reward,
        delivery_fee,
        tax_rate,
    )
    logger.debug(
        "Carrito: subtotal=%s promo=%s recompensa=%s impuestos=%s total=%s",
        totals.subtotal_with_product_discounts,
        totals.promotion_discount,
        totals.reward_discount,
        totals.taxes,
        totals.total,
    )
    return CheckoutBreakdown(
        items=list(items),
        products=products,
        promotion_lines=promos.lines,
        totals=totals,
        reward=reward,
    )
