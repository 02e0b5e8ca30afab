# NG-HEADER: Nombre de archivo: orders.py
# NG-HEADER: Ubicación: services/routers/orders.py
# NG-HEADER: Descripción: Endpoints de preview del carrito y creación de pedidos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from services.auth import SessionData, current_session, require_customer
from services.orders.checkout import CheckoutService, GuestInfo

router = APIRouter(prefix="/pedidos", tags=["pedidos"])


class CartPayload(BaseModel):
    """Items con llaves del carrito: ``id``/``product_id``, ``quantity``, ``originalPrice``, ``price``."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    redemption_id: Optional[int] = None


class OrderPayload(CartPayload):
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class GuestOrderPayload(OrderPayload):
    guest: dict[str, Any] = Field(default_factory=dict)


def get_checkout(request: Request) -> CheckoutService:
    return request.app.state.checkout


@router.post("/preview")
async def preview_order(
    payload: CartPayload,
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(current_session),
    checkout: CheckoutService = Depends(get_checkout),
):
    """Desglose del carrito (no persiste). Sin sesión se calcula como invitado."""
    return await checkout.preview(db, sess.customer_id, payload.items, payload.redemption_id)


@router.post("", status_code=201)
async def create_order(
    payload: OrderPayload,
    request: Request,
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(require_customer),
    checkout: CheckoutService = Depends(get_checkout),
):
    placed = await checkout.place_order(
        db,
        sess.customer_id,
        payload.items,
        redemption_id=payload.redemption_id,
        payment_method=payload.payment_method,
        notes=payload.notes,
        request=request,
    )
    return placed.as_dict()


@router.post("/invitado", status_code=201)
async def create_guest_order(
    payload: GuestOrderPayload,
    request: Request,
    db: AsyncSession = Depends(get_session),
    checkout: CheckoutService = Depends(get_checkout),
):
    guest = GuestInfo.from_payload(payload.guest)
    placed = await checkout.place_guest_order(
        db,
        guest,
        payload.items,
        payment_method=payload.payment_method,
        notes=payload.notes,
        request=request,
    )
    return placed.as_dict()
