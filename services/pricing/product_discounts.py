# NG-HEADER: Nombre de archivo: product_discounts.py
# NG-HEADER: Ubicación: services/pricing/product_discounts.py
# NG-HEADER: Descripción: Etapa de descuentos por producto (precio de catálogo vs precio final).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Primera etapa del pipeline: descuentos ya incorporados por el catálogo."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List

from services.errors import InvalidCartError
from .primitives import ZERO, clamp_non_negative, to_decimal


@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int
    original_price: Decimal
    final_price: Decimal
    name: str | None = None

    @property
    def has_product_discount(self) -> bool:
        return self.final_price < self.original_price

    @property
    def original_subtotal(self) -> Decimal:
        return self.original_price * self.quantity

    @property
    def final_subtotal(self) -> Decimal:
        return self.final_price * self.quantity


@dataclass
class ProductDiscountResult:
    subtotal_original: Decimal = ZERO
    subtotal_with_product_discounts: Decimal = ZERO
    product_discount_total: Decimal = ZERO
    discounted_product_ids: set[int] = field(default_factory=set)


def build_cart_item(raw: dict[str, Any]) -> CartItem:
    """Construye un ``CartItem`` desde el payload del carrito.

    Acepta las llaves del frontend (``id``/``quantity``/``originalPrice``/``price``)
    o las internas (``product_id``/``original_price``/``final_price``).
    """
    pid = raw.get("product_id", raw.get("id"))
    if pid is None:
        raise InvalidCartError("Cada item requiere product_id")
    try:
        qty = int(raw.get("quantity", raw.get("qty", 0)))
    except (TypeError, ValueError):
        raise InvalidCartError(f"Cantidad inválida para producto {pid}")
    if qty <= 0:
        raise InvalidCartError(f"La cantidad del producto {pid} debe ser mayor a 0")
    final = raw.get("final_price", raw.get("finalPrice", raw.get("price")))
    original = raw.get("original_price", raw.get("originalPrice", final))
    if final is None:
        raise InvalidCartError(f"Producto {pid} sin precio")
    final_d = clamp_non_negative(final)
    original_d = clamp_non_negative(original)
    # Un precio final mayor al de catálogo es inconsistencia del catálogo: se recorta
    if final_d > original_d:
        final_d = original_d
    return CartItem(
        product_id=int(pid),
        quantity=qty,
        original_price=original_d,
        final_price=final_d,
        name=raw.get("name"),
    )


def build_cart(raw_items: Iterable[dict[str, Any]] | None) -> List[CartItem]:
    items = [build_cart_item(r) for r in (raw_items or [])]
    if not items:
        raise InvalidCartError("El carrito está vacío")
    return items


def apply_product_discounts(items: Iterable[CartItem]) -> ProductDiscountResult:
    res = ProductDiscountResult()
    for it in items:
        original = to_decimal(it.original_subtotal)
        final = min(to_decimal(it.final_subtotal), original)
        res.subtotal_original += original
        res.subtotal_with_product_discounts += final
        if it.has_product_discount:
            res.discounted_product_ids.add(it.product_id)
    res.product_discount_total = clamp_non_negative(
        res.subtotal_original - res.subtotal_with_product_discounts
    )
    return res
