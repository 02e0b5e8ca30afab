# NG-HEADER: Nombre de archivo: test_checkout.py
# NG-HEADER: Ubicación: tests/test_checkout.py
# NG-HEADER: Descripción: Tests de preview y confirmación de pedidos con promociones y canjes.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from db.models import GuestContact, Order, OrderLine, PointsLedgerEntry, Redemption
from db.session import SessionLocal
from services.errors import BusinessError, InvalidCartError, RedemptionConflictError, RedemptionOwnershipError
from services.orders.checkout import GuestInfo

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 10, 13, 0)
CART = [{"id": 1, "quantity": 4, "originalPrice": 2500, "price": 2500}]


async def test_preview_matches_place_order(db_session, checkout, ledger, make_customer, make_reward, make_promotion):
    c = await make_customer(points=600)
    r = await make_reward(points_cost=500)
    await make_promotion(value=10)
    red = await ledger.redeem(db_session, c.id, r.id)

    preview = await checkout.preview(db_session, c.id, CART, now=NOW)
    assert preview["promotion_discount"] == 1000.0
    assert preview["reward_discount"] == 2500.0
    assert preview["taxes"] == 845.0
    assert preview["total"] == 8845.0
    assert preview["reward"]["redemption_id"] == red.id
    assert preview["points_to_earn"] == 100

    placed = await checkout.place_order(db_session, c.id, CART, redemption_id=red.id, payment_method="tarjeta", now=NOW)
    assert placed.order.total == Decimal("8845.00")
    assert placed.as_dict()["total"] == preview["total"]
    assert placed.redemption_id == red.id
    assert placed.points_awarded == 100

    order = await db_session.get(Order, placed.order.id)
    assert order.subtotal == Decimal("10000.00")
    assert order.impuestos == Decimal("845.00")
    assert order.descuentos == Decimal("2500.00")
    applied = (await db_session.execute(select(Redemption).where(Redemption.id == red.id))).scalar_one()
    assert applied.state == "applied"
    assert applied.order_id == order.id
    lines = (await db_session.execute(select(OrderLine).where(OrderLine.order_id == order.id))).scalars().all()
    assert [(ln.product_id, ln.quantity, ln.line_subtotal) for ln in lines] == [(1, 4, Decimal("10000.00"))]
    accruals = (
        await db_session.execute(select(PointsLedgerEntry).where(PointsLedgerEntry.transaction_type == "acumulacion"))
    ).scalars().all()
    assert [(e.points_delta, e.order_id) for e in accruals] == [(100, order.id)]


async def test_preview_without_session_ignores_rewards(db_session, checkout, make_promotion):
    await make_promotion(value=10)
    preview = await checkout.preview(db_session, None, CART, now=NOW)
    assert preview["reward"] is None
    assert preview["total"] == 11670.0  # 9000 + 1170 + 1500
    assert preview["points_to_earn"] == 0


async def test_pending_discount_is_used_when_no_redemption_given(db_session, checkout, ledger, make_customer, make_reward):
    c = await make_customer(points=600)
    r = await make_reward(name="10%", reward_type="descuento_porcentaje", value=10, points_cost=500)
    await ledger.redeem(db_session, c.id, r.id)
    placed = await checkout.place_order(db_session, c.id, CART, now=NOW)
    assert placed.order.descuentos == Decimal("1000.00")
    assert placed.redemption_id is not None


async def test_reusing_applied_redemption_fails_and_rolls_back(db_session, checkout, ledger, make_customer, make_reward):
    c = await make_customer(points=600)
    r = await make_reward(points_cost=500)
    red = await ledger.redeem(db_session, c.id, r.id)
    customer_id, red_id = c.id, red.id
    await checkout.place_order(db_session, customer_id, CART, redemption_id=red_id, now=NOW)

    with pytest.raises(RedemptionConflictError):
        await checkout.place_order(db_session, customer_id, CART, redemption_id=red_id, now=NOW)
    orders = (await db_session.execute(select(func.count()).select_from(Order))).scalar_one()
    assert orders == 1


async def test_foreign_redemption_is_rejected(db_session, checkout, ledger, make_customer, make_reward):
    owner = await make_customer(points=600)
    thief = await make_customer(name="Otro", email="otro@example.com")
    r = await make_reward(points_cost=500)
    red = await ledger.redeem(db_session, owner.id, r.id)
    thief_id, red_id = thief.id, red.id
    with pytest.raises(RedemptionOwnershipError):
        await checkout.place_order(db_session, thief_id, CART, redemption_id=red_id, now=NOW)
    state = (await db_session.execute(select(Redemption.state).where(Redemption.id == red_id))).scalar_one()
    assert state == "pending"


async def test_invalid_cart_is_rejected(db_session, checkout, make_customer):
    c = await make_customer()
    with pytest.raises(InvalidCartError):
        await checkout.place_order(db_session, c.id, [], now=NOW)


async def test_guest_order_has_contact_and_no_points(db_session, checkout):
    guest = GuestInfo.from_payload({"name": "Invitado", "phone": "7000-1111", "email": "inv@example.com"})
    placed = await checkout.place_guest_order(db_session, guest, CART, payment_method="efectivo", now=NOW)
    assert placed.order.customer_id is None
    assert placed.order.total == Decimal("12800.00")  # 10000 + 1300 + 1500
    contact = await db_session.get(GuestContact, placed.order.id)
    assert contact.phone == "7000-1111"
    entries = (await db_session.execute(select(func.count()).select_from(PointsLedgerEntry))).scalar_one()
    assert entries == 0


def test_guest_requires_name_and_phone():
    with pytest.raises(BusinessError):
        GuestInfo.from_payload({"name": "Sin teléfono"})


async def test_concurrent_checkouts_cannot_share_a_redemption(db_session, checkout, ledger, make_customer, make_reward):
    c = await make_customer(points=600)
    r = await make_reward(points_cost=500)
    red = await ledger.redeem(db_session, c.id, r.id)
    customer_id, red_id = c.id, red.id

    async def attempt():
        async with SessionLocal() as s:
            try:
                placed = await checkout.place_order(s, customer_id, CART, redemption_id=red_id, now=NOW)
                return ("ok", placed.order.descuentos)
            except RedemptionConflictError:
                return ("rejected", None)

    results = await asyncio.gather(attempt(), attempt())
    assert sorted(r[0] for r in results) == ["ok", "rejected"]
    discounted = (
        await db_session.execute(select(func.count()).select_from(Order).where(Order.descuentos > 0))
    ).scalar_one()
    assert discounted == 1
