# NG-HEADER: Nombre de archivo: checkout.py
# NG-HEADER: Ubicación: services/orders/checkout.py
# NG-HEADER: Descripción: Preview del carrito y confirmación de pedidos (cliente e invitado).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Checkout: mismo cálculo para el preview y para el pedido confirmado.

``place_order`` corre en una sola transacción: pedido + líneas + puntos +
aplicación del canje + auditoría. Cualquier fallo hace rollback completo, así
no quedan canjes ``applied`` sin pedido.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.models import Customer, GuestContact, Order, OrderLine, Redemption
from services.audit import audit
from services.errors import (
    BusinessError,
    NotFoundError,
    RedemptionConflictError,
    RedemptionOwnershipError,
)
from services.loyalty.ledger import STATE_PENDING, RewardLedger
from services.pricing.assembler import CheckoutBreakdown, RewardSnapshot, price_cart
from services.pricing.primitives import round_currency
from services.pricing.product_discounts import build_cart
from services.pricing.promotions import load_active_promotions

logger = logging.getLogger("tarbaca.orders")


@dataclass
class GuestInfo:
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: dict[str, Any] | None) -> "GuestInfo":
        raw = raw or {}
        name = (raw.get("name") or raw.get("nombre") or "").strip()
        phone = (raw.get("phone") or raw.get("telefono") or "").strip()
        if not name or not phone:
            raise BusinessError(
                "Nombre y teléfono son obligatorios para pedidos sin cuenta", code="invalid_guest"
            )
        return cls(
            name=name,
            phone=phone,
            email=(raw.get("email") or None),
            address=(raw.get("address") or raw.get("direccion") or None),
        )


@dataclass
class PlacedOrder:
    order: Order
    breakdown: CheckoutBreakdown
    points_awarded: int = 0
    redemption_id: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        data = self.breakdown.as_dict()
        data.update(
            {
                "order_id": self.order.id,
                "status": self.order.status,
                "points_awarded": self.points_awarded,
                "redemption_id": self.redemption_id,
            }
        )
        return data


class CheckoutService:
    def __init__(
        self,
        ledger: RewardLedger,
        *,
        tax_rate: Decimal | None = None,
        delivery_fee: Decimal | None = None,
    ) -> None:
        self.ledger = ledger
        self.tax_rate = tax_rate if tax_rate is not None else settings.tax_rate
        self.delivery_fee = delivery_fee if delivery_fee is not None else settings.delivery_fee

    async def _resolve_redemption(
        self,
        db: AsyncSession,
        customer_id: Optional[int],
        redemption_id: Optional[int],
        *,
        lock: bool = False,
    ) -> Optional[Redemption]:
        if customer_id is None:
            return None
        if redemption_id is None:
            return await self.ledger.pending_discount_for(db, customer_id)
        stmt = select(Redemption).where(Redemption.id == redemption_id)
        if lock:
            stmt = stmt.with_for_update()
        redemption = (await db.execute(stmt)).scalar_one_or_none()
        if not redemption:
            raise NotFoundError("Canje no encontrado")
        if redemption.customer_id != customer_id:
            raise RedemptionOwnershipError("El canje no pertenece a este cliente")
        if redemption.state != STATE_PENDING:
            raise RedemptionConflictError("Este canje ya fue utilizado")
        return redemption

    async def preview(
        self,
        db: AsyncSession,
        customer_id: Optional[int],
        items: Iterable[dict[str, Any]] | None,
        redemption_id: Optional[int] = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Desglose efímero del carrito. No toma locks ni escribe."""
        now = now or datetime.now()
        cart = build_cart(items)
        promotions = await load_active_promotions(db, now)
        redemption = await self._resolve_redemption(db, customer_id, redemption_id)
        reward = RewardSnapshot.from_redemption(redemption) if redemption else None
        breakdown = price_cart(cart, promotions, reward, self.delivery_fee, self.tax_rate)
        data = breakdown.as_dict()
        data["points_to_earn"] = (
            self.ledger.points_for(breakdown.totals.subtotal_with_product_discounts)
            if customer_id is not None
            else 0
        )
        return data

    async def place_order(
        self,
        db: AsyncSession,
        customer_id: int,
        items: Iterable[dict[str, Any]] | None,
        redemption_id: Optional[int] = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        now: datetime | None = None,
        *,
        request: Request | None = None,
    ) -> PlacedOrder:
        # Mismo lock que los canjes: un canje pendiente sólo entra en un pedido
        async with self.ledger.lock_for(customer_id):
            return await self._place_order(
                db, customer_id, items, redemption_id, payment_method, notes, now, request=request
            )

    async def _place_order(
        self,
        db: AsyncSession,
        customer_id: int,
        items: Iterable[dict[str, Any]] | None,
        redemption_id: Optional[int],
        payment_method: Optional[str],
        notes: Optional[str],
        now: datetime | None,
        *,
        request: Request | None = None,
    ) -> PlacedOrder:
        now = now or datetime.now()
        try:
            customer = (
                await db.execute(select(Customer).where(Customer.id == customer_id).with_for_update())
            ).scalar_one_or_none()
            if not customer:
                raise NotFoundError("Cliente no encontrado")
            cart = build_cart(items)
            promotions = await load_active_promotions(db, now)
            redemption = await self._resolve_redemption(db, customer_id, redemption_id, lock=True)
            reward = RewardSnapshot.from_redemption(redemption) if redemption else None
            breakdown = price_cart(cart, promotions, reward, self.delivery_fee, self.tax_rate)

            order = self._new_order(breakdown, payment_method, notes, now)
            order.customer_id = customer.id
            db.add(order)
            await db.flush()
            self._add_lines(db, order, breakdown)

            points = await self.ledger.award_points(db, customer, order)
            applied_id = None
            if redemption is not None and reward is not None:
                applied = await self.ledger.apply_to_order(db, redemption.id, order, now)
                applied_id = applied.id
            audit(
                db,
                "order_create",
                "pedidos",
                order.id,
                {
                    "total": float(order.total),
                    "descuentos": float(order.descuentos),
                    "items": len(breakdown.items),
                    "redemption_id": applied_id,
                    "points": points,
                },
                customer_id=customer.id,
                request=request,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Pedido %s creado: cliente=%s total=%s canje=%s puntos=%s",
            order.id,
            customer_id,
            order.total,
            applied_id,
            points,
        )
        return PlacedOrder(order=order, breakdown=breakdown, points_awarded=points, redemption_id=applied_id)

    async def place_guest_order(
        self,
        db: AsyncSession,
        guest: GuestInfo,
        items: Iterable[dict[str, Any]] | None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        now: datetime | None = None,
        *,
        request: Request | None = None,
    ) -> PlacedOrder:
        """Pedido sin cuenta: sin puntos ni recompensas."""
        now = now or datetime.now()
        try:
            cart = build_cart(items)
            promotions = await load_active_promotions(db, now)
            breakdown = price_cart(cart, promotions, None, self.delivery_fee, self.tax_rate)
            order = self._new_order(breakdown, payment_method, notes, now)
            db.add(order)
            await db.flush()
            self._add_lines(db, order, breakdown)
            db.add(
                GuestContact(
                    order_id=order.id,
                    name=guest.name,
                    phone=guest.phone,
                    email=guest.email,
                    address=guest.address,
                )
            )
            audit(
                db,
                "order_create_guest",
                "pedidos",
                order.id,
                {"total": float(order.total), "items": len(breakdown.items)},
                request=request,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Pedido invitado %s creado: total=%s", order.id, order.total)
        return PlacedOrder(order=order, breakdown=breakdown)

    @staticmethod
    def _new_order(
        breakdown: CheckoutBreakdown,
        payment_method: Optional[str],
        notes: Optional[str],
        now: datetime,
    ) -> Order:
        return Order(
            **breakdown.totals.persisted_fields(),
            status="pendiente",
            payment_method=payment_method,
            notes=notes,
            points_awarded=0,
            created_at=now,
        )

    @staticmethod
    def _add_lines(db: AsyncSession, order: Order, breakdown: CheckoutBreakdown) -> None:
        for it in breakdown.items:
            db.add(
                OrderLine(
                    order_id=order.id,
                    product_id=it.product_id,
                    quantity=it.quantity,
                    original_price=it.original_price,
                    final_price=it.final_price,
                    line_subtotal=round_currency(it.final_subtotal),
                )
            )
