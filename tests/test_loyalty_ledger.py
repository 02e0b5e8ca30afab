# NG-HEADER: Nombre de archivo: test_loyalty_ledger.py
# NG-HEADER: Ubicación: tests/test_loyalty_ledger.py
# NG-HEADER: Descripción: Tests de saldo de puntos, canjes y aplicación de canjes a pedidos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from db.models import AuditLog, Order, PointsLedgerEntry, Redemption
from db.session import SessionLocal
from services.errors import (
    InsufficientPointsError,
    NotFoundError,
    RedemptionConflictError,
    RedemptionOwnershipError,
    RewardUnavailableError,
)
from services.loyalty.ledger import available_points

pytestmark = pytest.mark.asyncio


async def _order(db, customer_id, subtotal="10000"):
    o = Order(customer_id=customer_id, subtotal=Decimal(subtotal), impuestos=0, descuentos=0, total=Decimal(subtotal))
    db.add(o)
    await db.flush()
    return o


async def test_redeem_discount_reward_creates_pending_and_ledger_entry(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=800)
    r = await make_reward(points_cost=500)

    red = await ledger.redeem(db_session, c.id, r.id)

    assert red.state == "pending"
    assert red.discount_kind == "fixed_currency"
    assert red.value_snapshot == Decimal("2500")
    assert red.points_spent == 500
    assert await available_points(db_session, c.id) == 300
    await db_session.refresh(c)
    assert c.accumulated_points == 800  # canjear no resta acumulados
    entries = (await db_session.execute(select(PointsLedgerEntry))).scalars().all()
    assert [(e.points_delta, e.transaction_type) for e in entries] == [(-500, "canje")]
    audits = (await db_session.execute(select(AuditLog.action))).scalars().all()
    assert audits == ["reward_redeem"]


async def test_non_discount_reward_is_completed_immediately(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=300)
    r = await make_reward(name="Postre gratis", reward_type="producto", value=None, points_cost=200)
    red = await ledger.redeem(db_session, c.id, r.id)
    assert red.state == "completed"
    assert red.discount_kind is None


async def test_percentage_reward_snapshot(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=1000)
    r = await make_reward(name="10% off", reward_type="descuento_porcentaje", value=10, points_cost=400)
    red = await ledger.redeem(db_session, c.id, r.id)
    assert red.discount_kind == "percentage"
    assert red.value_snapshot == Decimal("10")


async def test_insufficient_points_after_prior_applied_redemption(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=500)
    first = await make_reward(name="Primera", points_cost=500)
    second = await make_reward(name="Segunda", points_cost=100)
    red = await ledger.redeem(db_session, c.id, first.id)
    order = await _order(db_session, c.id)
    await ledger.apply_to_order(db_session, red.id, order)
    await db_session.commit()

    assert await available_points(db_session, c.id) == 0
    with pytest.raises(InsufficientPointsError) as exc:
        await ledger.redeem(db_session, c.id, second.id)
    assert "suficientes puntos" in exc.value.detail
    count = (await db_session.execute(select(func.count()).select_from(Redemption))).scalar_one()
    assert count == 1
    entries = (await db_session.execute(select(func.count()).select_from(PointsLedgerEntry))).scalar_one()
    assert entries == 1


async def test_same_reward_cannot_be_redeemed_twice(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=5000)
    r = await make_reward(points_cost=100)
    await ledger.redeem(db_session, c.id, r.id)
    with pytest.raises(RedemptionConflictError):
        await ledger.redeem(db_session, c.id, r.id)


async def test_inactive_or_out_of_window_reward_is_rejected(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=5000)
    off = await make_reward(name="Apagada", active=False)
    future = await make_reward(name="Futura", starts_at=datetime.now() + timedelta(days=3))
    expired = await make_reward(name="Vencida", ends_at=datetime.now() - timedelta(days=1))
    customer_id = c.id
    for reward_id in (off.id, future.id, expired.id):
        with pytest.raises(RewardUnavailableError):
            await ledger.redeem(db_session, customer_id, reward_id)
    assert await available_points(db_session, customer_id) == 5000


async def test_unknown_customer_or_reward(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=10)
    with pytest.raises(NotFoundError):
        await ledger.redeem(db_session, c.id, 999)
    r = await make_reward()
    with pytest.raises(NotFoundError):
        await ledger.redeem(db_session, 999, r.id)


async def test_apply_to_order_twice_fails_without_state_change(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=600)
    r = await make_reward(points_cost=500)
    red = await ledger.redeem(db_session, c.id, r.id)
    red_id = red.id
    first = await _order(db_session, c.id)
    first_id = first.id
    await ledger.apply_to_order(db_session, red_id, first)
    await db_session.commit()

    second = await _order(db_session, c.id)
    with pytest.raises(RedemptionConflictError):
        await ledger.apply_to_order(db_session, red_id, second)
    await db_session.rollback()

    fresh = (await db_session.execute(select(Redemption).where(Redemption.id == red_id))).scalar_one()
    assert fresh.state == "applied"
    assert fresh.order_id == first_id


async def test_apply_to_order_checks_ownership(db_session, ledger, make_customer, make_reward):
    owner = await make_customer(points=600)
    other = await make_customer(name="Luis", email="luis@example.com")
    r = await make_reward(points_cost=500)
    red = await ledger.redeem(db_session, owner.id, r.id)
    order = await _order(db_session, other.id)
    with pytest.raises(RedemptionOwnershipError):
        await ledger.apply_to_order(db_session, red.id, order)


async def test_concurrent_redeem_with_points_for_one(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=500)
    r = await make_reward(points_cost=500)

    async def attempt():
        async with SessionLocal() as s:
            try:
                await ledger.redeem(s, c.id, r.id)
                return "ok"
            except (InsufficientPointsError, RedemptionConflictError):
                return "rejected"

    results = await asyncio.gather(attempt(), attempt())
    assert sorted(results) == ["ok", "rejected"]
    count = (await db_session.execute(select(func.count()).select_from(Redemption))).scalar_one()
    assert count == 1
    assert await available_points(db_session, c.id) == 0


async def test_award_points_is_monotonic_and_recorded(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=0)
    order = await _order(db_session, c.id, subtotal="12345")
    points = await ledger.award_points(db_session, c, order)
    await db_session.commit()
    assert points == 123
    assert order.points_awarded == 123

    r = await make_reward(points_cost=100)
    before = c.accumulated_points
    await ledger.redeem(db_session, c.id, r.id)
    await db_session.refresh(c)
    assert c.accumulated_points == before == 123
    assert await available_points(db_session, c.id) == 23
    assert await available_points(db_session, c.id) <= c.accumulated_points


async def test_list_rewards_and_pending_discount(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=1000)
    cheap = await make_reward(name="Barata", points_cost=200)
    await make_reward(name="Cara", points_cost=5000)
    await make_reward(name="Apagada", active=False)
    red = await ledger.redeem(db_session, c.id, cheap.id)

    data = await ledger.list_rewards_for_customer(db_session, c.id)
    assert data["accumulated_points"] == 1000
    assert data["available_points"] == 800
    by_name = {r["name"]: r for r in data["rewards"]}
    assert set(by_name) == {"Barata", "Cara"}
    assert by_name["Barata"]["already_redeemed"] is True
    assert by_name["Barata"]["redemption_state"] == "pending"
    assert by_name["Cara"]["affordable"] is False

    pending = await ledger.pending_discount_for(db_session, c.id)
    assert pending is not None and pending.id == red.id


async def test_apply_to_order_rejects_stale_pending_read(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=600)
    r = await make_reward(points_cost=500)
    red = await ledger.redeem(db_session, c.id, r.id)
    customer_id, red_id = c.id, red.id

    async with SessionLocal() as stale, SessionLocal() as other:
        # ``stale`` conserva el canje como pendiente en su identity map
        cached = await stale.get(Redemption, red_id)
        assert cached.state == "pending"
        await stale.commit()

        first = await _order(other, customer_id)
        await ledger.apply_to_order(other, red_id, first)
        await other.commit()

        second = await _order(stale, customer_id)
        with pytest.raises(RedemptionConflictError):
            await ledger.apply_to_order(stale, red_id, second)
        await stale.rollback()

    fresh = (await db_session.execute(select(Redemption.order_id).where(Redemption.id == red_id))).scalar_one()
    assert fresh == first.id


async def test_customer_locks_are_released(db_session, ledger, make_customer, make_reward):
    c = await make_customer(points=600)
    r = await make_reward(points_cost=500)
    customer_id = c.id
    await ledger.redeem(db_session, customer_id, r.id)
    assert customer_id not in ledger._locks
