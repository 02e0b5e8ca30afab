# NG-HEADER: Nombre de archivo: reconstructor.py
# NG-HEADER: Ubicación: services/invoices/reconstructor.py
# NG-HEADER: Descripción: Reconstruye el desglose de una factura desde los agregados del pedido.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Inversión de los totales persistidos en ``pedidos``.

El pedido sólo guarda ``subtotal``, ``impuestos``, ``descuentos`` (recompensa) y
``total``. El descuento de promociones se infiere:

1. ``after_reward = total - envío - impuestos`` (exacto). Se contrasta con
   ``impuestos / tax_rate``; si difieren más que epsilon el total guardado no es
   confiable y se usa el derivado de los impuestos.
2. Tipo de recompensa: el snapshot del canje si se encontró; si no, y hay
   ``descuentos``, heurística legacy (``< 100`` con subtotal ``> 1000`` se
   interpreta como porcentaje ``descuentos / 100``, si no como monto fijo).
3. Con canje, ``descuentos`` es el monto de la recompensa:
   ``after_promotions = after_reward + descuentos``. Sólo el porcentaje
   inferido por la heurística se invierte: ``after_reward / (1 - f)``.
4. ``promotion = subtotal - after_promotions`` (mínimo 0).
5. Total: se prefiere el guardado si el recalculado está dentro de epsilon.

Nunca lanza: las dudas se registran como warning y se usa el mejor número.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from services.pricing.assembler import KIND_FIXED, KIND_PERCENTAGE, RewardSnapshot
from services.pricing.primitives import (
    HUNDRED,
    ONE,
    ZERO,
    clamp_non_negative,
    round_currency,
    to_decimal,
)

logger = logging.getLogger("tarbaca.invoices")

HEURISTIC_PERCENT_CEILING = Decimal("100")
HEURISTIC_SUBTOTAL_FLOOR = Decimal("1000")


@dataclass(frozen=True)
class OrderAggregates:
    subtotal: Decimal
    impuestos: Decimal
    descuentos: Decimal
    total: Decimal
    order_id: Optional[int] = None

    @classmethod
    def from_order(cls, order: Any) -> "OrderAggregates":
        return cls(
            subtotal=to_decimal(order.subtotal),
            impuestos=to_decimal(order.impuestos),
            descuentos=to_decimal(order.descuentos),
            total=to_decimal(order.total),
            order_id=getattr(order, "id", None),
        )

    @classmethod
    def from_fiscal_details(
        cls, details: dict[str, Any], total: Any, order_id: Optional[int] = None
    ) -> "OrderAggregates":
        return cls(
            subtotal=to_decimal(details.get("subtotal")),
            impuestos=to_decimal(details.get("impuestos")),
            descuentos=to_decimal(details.get("descuentos")),
            total=to_decimal(total),
            order_id=order_id,
        )


@dataclass
class InvoiceLine:
    label: str
    amount: Decimal


@dataclass
class InvoiceBreakdown:
    subtotal: Decimal
    promotion_discount: Decimal
    reward_discount: Decimal
    reward_kind: Optional[str]
    subtotal_after_reward: Decimal
    delivery_fee: Decimal
    taxes: Decimal
    total: Decimal
    used_heuristic: bool = False
    reconciled: bool = True
    reward_label: Optional[str] = None
    lines: List[InvoiceLine] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "subtotal": float(self.subtotal),
            "promotion_discount": float(self.promotion_discount),
            "reward_discount": float(self.reward_discount),
            "reward_kind": self.reward_kind,
            "subtotal_after_reward": float(self.subtotal_after_reward),
            "delivery_fee": float(self.delivery_fee),
            "taxes": float(self.taxes),
            "total": float(self.total),
            "used_heuristic": self.used_heuristic,
            "reconciled": self.reconciled,
            "lines": [{"label": ln.label, "amount": float(ln.amount)} for ln in self.lines],
        }


def _guess_reward(aggregates: OrderAggregates) -> RewardSnapshot:
    """Para porcentaje, ``value`` es la fracción (``descuentos / 100``)."""
    descuentos = clamp_non_negative(aggregates.descuentos)
    if descuentos < HEURISTIC_PERCENT_CEILING and aggregates.subtotal > HEURISTIC_SUBTOTAL_FLOOR:
        return RewardSnapshot(kind=KIND_PERCENTAGE, value=descuentos / HUNDRED)
    return RewardSnapshot(kind=KIND_FIXED, value=descuentos)


def _subtotal_after_reward(
    aggregates: OrderAggregates, impuestos: Decimal, rate: Decimal, fee: Decimal, epsilon: Decimal
) -> Decimal:
    from_taxes = ZERO if impuestos == 0 or rate <= 0 else round_currency(impuestos / rate)
    exact = round_currency(clamp_non_negative(to_decimal(aggregates.total) - fee - impuestos))
    # Los impuestos se redondean a céntimos: sólo sirven para validar el total
    if abs(exact - from_taxes) < epsilon:
        return exact
    return from_taxes


def reconstruct(
    aggregates: OrderAggregates,
    reward: Optional[RewardSnapshot],
    tax_rate: Any,
    delivery_fee: Any,
    epsilon: Any = Decimal("1"),
    legacy_heuristic: bool = True,
) -> InvoiceBreakdown:
    rate = to_decimal(tax_rate)
    fee = round_currency(clamp_non_negative(delivery_fee))
    subtotal = clamp_non_negative(aggregates.subtotal)
    impuestos = clamp_non_negative(aggregates.impuestos)
    descuentos = clamp_non_negative(aggregates.descuentos)

    tolerance = to_decimal(epsilon)
    after_reward = _subtotal_after_reward(aggregates, impuestos, rate, fee, tolerance)

    used_heuristic = False
    if reward is None and descuentos > 0:
        if legacy_heuristic:
            reward = _guess_reward(aggregates)
            used_heuristic = True
            logger.warning(
                "Pedido %s sin canje asociado: descuentos=%s interpretado como %s (heurística)",
                aggregates.order_id,
                descuentos,
                reward.kind,
            )
        else:
            reward = RewardSnapshot(kind=KIND_FIXED, value=descuentos)

    reward_kind = reward.kind if reward is not None and descuentos > 0 else None
    after_promotions = after_reward + descuentos
    reward_discount = descuentos
    if reward_kind is None:
        after_promotions = after_reward
        reward_discount = ZERO
    elif reward_kind == KIND_PERCENTAGE and used_heuristic:
        # descuentos guardó el porcentaje, no el monto
        fraction = to_decimal(reward.value)
        if ZERO < fraction < ONE:
            inverted = round_currency(after_reward / (ONE - fraction))
            if inverted.is_finite():
                after_promotions = inverted
                reward_discount = round_currency(inverted * fraction)

    promotion_discount = round_currency(clamp_non_negative(subtotal - after_promotions))

    recomputed = round_currency(after_reward + fee + impuestos)
    stored_total = round_currency(aggregates.total)
    reconciled = abs(recomputed - stored_total) < tolerance
    if reconciled:
        total = stored_total
    else:
        total = recomputed
        logger.warning(
            "Pedido %s: total recalculado %s difiere del guardado %s",
            aggregates.order_id,
            recomputed,
            stored_total,
        )

    breakdown = InvoiceBreakdown(
        subtotal=round_currency(subtotal),
        promotion_discount=promotion_discount,
        reward_discount=reward_discount,
        reward_kind=reward_kind,
        subtotal_after_reward=after_reward,
        delivery_fee=fee,
        taxes=round_currency(impuestos),
        total=total,
        used_heuristic=used_heuristic,
        reconciled=reconciled,
        reward_label=reward.label if reward is not None else None,
    )
    breakdown.lines = invoice_lines(breakdown)
    return breakdown


def invoice_lines(b: InvoiceBreakdown) -> List[InvoiceLine]:
    """Pares etiqueta/monto en el orden que espera el renderizador."""
    lines = [InvoiceLine("Subtotal", b.subtotal)]
    if b.promotion_discount > 0:
        lines.append(InvoiceLine("Descuento por promociones", -b.promotion_discount))
    if b.reward_discount > 0:
        label = b.reward_label or "Descuento por recompensa"
        lines.append(InvoiceLine(label, -b.reward_discount))
    lines.append(InvoiceLine("Costo de envío", b.delivery_fee))
    lines.append(InvoiceLine("Impuestos (IVA)", b.taxes))
    lines.append(InvoiceLine("Total", b.total))
    return lines
