# NG-HEADER: Nombre de archivo: ledger.py
# NG-HEADER: Ubicación: services/loyalty/ledger.py
# NG-HEADER: Descripción: Saldo de puntos, canje de recompensas y máquina de estados de canjes.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Libro de puntos de lealtad y canjes.

Estados de un canje::

    pending --(apply_to_order)--> applied      recompensas de descuento
    completed                                  recompensas de producto/experiencia

``applied`` y ``completed`` son terminales. Los puntos disponibles se derivan:
``acumulados - Σ points_spent`` de todos los canjes vivos; canjear nunca resta
``accumulated_points`` (contador monótono que define el nivel del cliente).

Bloqueos: ``SELECT ... FOR UPDATE`` sobre cliente/recompensa/canje (efectivo en
Postgres, ignorado por SQLite) más un ``asyncio.Lock`` por cliente que serializa
canjes y checkouts dentro del proceso. Entre procesos, ``apply_to_order`` pasa a
``applied`` con un UPDATE condicionado a ``state = 'pending'``: si otra
transacción ganó, no afecta filas y se rechaza.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.models import Customer, Order, PointsLedgerEntry, Redemption, Reward
from services.audit import audit
from services.errors import (
    InsufficientPointsError,
    NotFoundError,
    RedemptionConflictError,
    RedemptionOwnershipError,
    RewardUnavailableError,
)
from services.pricing.assembler import KIND_FIXED, KIND_PERCENTAGE
from services.pricing.primitives import to_decimal

logger = logging.getLogger("tarbaca.loyalty")

STATE_PENDING = "pending"
STATE_APPLIED = "applied"
STATE_COMPLETED = "completed"
# Canjes que comprometen puntos y bloquean un nuevo canje de la misma recompensa
LIVE_STATES = (STATE_PENDING, STATE_APPLIED, STATE_COMPLETED)

TX_ACCRUAL = "acumulacion"
TX_REDEMPTION = "canje"

_FIXED_TYPES = {"descuento_colones", "descuento"}
_PERCENT_TYPES = {"descuento_porcentaje"}


def discount_snapshot(reward: Reward) -> tuple[Optional[str], Decimal]:
    """Tipo y valor del descuento que se congela en el canje."""
    if reward.reward_type in _FIXED_TYPES:
        return KIND_FIXED, to_decimal(reward.value)
    if reward.reward_type in _PERCENT_TYPES:
        return KIND_PERCENTAGE, to_decimal(reward.value)
    return None, Decimal("0")


def is_reward_available(reward: Reward, now: datetime) -> bool:
    if reward.active is not True:
        return False
    if reward.starts_at and now < reward.starts_at:
        return False
    if reward.ends_at and now > reward.ends_at:
        return False
    return True


async def available_points(db: AsyncSession, customer_id: int, *, lock: bool = False) -> int:
    """Puntos disponibles del cliente (0 si no existe)."""
    stmt = select(Customer.accumulated_points).where(Customer.id == customer_id)
    if lock:
        stmt = stmt.with_for_update()
    accumulated = (await db.execute(stmt)).scalar_one_or_none()
    if accumulated is None:
        return 0
    spent = (
        await db.execute(
            select(func.coalesce(func.sum(Redemption.points_spent), 0)).where(
                Redemption.customer_id == customer_id,
                Redemption.state.in_(LIVE_STATES),
            )
        )
    ).scalar_one()
    accumulated = int(accumulated or 0)
    return max(0, min(accumulated, accumulated - int(spent or 0)))


class RewardLedger:
    """Operaciones con estado sobre puntos y canjes."""

    def __init__(self, points_divisor: int | None = None) -> None:
        self.points_divisor = int(points_divisor or settings.points_divisor)
        # Un lock vive mientras alguien lo usa o lo espera
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, customer_id: int) -> asyncio.Lock:
        return self._locks.setdefault(customer_id, asyncio.Lock())

    async def available_points(self, db: AsyncSession, customer_id: int, *, lock: bool = False) -> int:
        return await available_points(db, customer_id, lock=lock)

    async def redeem(
        self,
        db: AsyncSession,
        customer_id: int,
        reward_id: int,
        now: datetime | None = None,
        *,
        request: Request | None = None,
    ) -> Redemption:
        """Canjea una recompensa en una única transacción (commit o rollback total)."""
        now = now or datetime.now()
        async with self.lock_for(customer_id):
            try:
                customer = (
                    await db.execute(select(Customer).where(Customer.id == customer_id).with_for_update())
                ).scalar_one_or_none()
                if not customer:
                    raise NotFoundError("Cliente no encontrado")
                reward = (
                    await db.execute(select(Reward).where(Reward.id == reward_id).with_for_update())
                ).scalar_one_or_none()
                if not reward:
                    raise NotFoundError("Recompensa no encontrada")

                existing = (
                    await db.execute(
                        select(Redemption.id)
                        .where(
                            Redemption.customer_id == customer_id,
                            Redemption.reward_id == reward_id,
                            Redemption.state.in_(LIVE_STATES),
                        )
                        .limit(1)
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    raise RedemptionConflictError("Ya has canjeado esta recompensa.")

                if not is_reward_available(reward, now):
                    raise RewardUnavailableError("Esta recompensa no está disponible actualmente")

                available = await available_points(db, customer_id)
                cost = int(reward.points_cost or 0)
                if available < cost:
                    raise InsufficientPointsError(
                        "No tienes suficientes puntos disponibles para canjear esta recompensa"
                    )

                kind, value = discount_snapshot(reward)
                db.add(
                    PointsLedgerEntry(
                        customer_id=customer_id,
                        points_delta=-cost,
                        transaction_type=TX_REDEMPTION,
                        description=f"Canje de recompensa: {reward.name}",
                        created_at=now,
                    )
                )
                redemption = Redemption(
                    customer_id=customer_id,
                    reward_id=reward.id,
                    points_spent=cost,
                    reward_name=reward.name,
                    discount_kind=kind,
                    value_snapshot=value,
                    state=STATE_PENDING if kind else STATE_COMPLETED,
                    created_at=now,
                )
                db.add(redemption)
                await db.flush()
                audit(
                    db,
                    "reward_redeem",
                    "canjes_puntos",
                    redemption.id,
                    {"reward_id": reward.id, "points": cost, "state": redemption.state},
                    customer_id=customer_id,
                    request=request,
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        logger.info(
            "Canje %s creado: cliente=%s recompensa=%s puntos=%s estado=%s",
            redemption.id,
            customer_id,
            reward_id,
            cost,
            redemption.state,
        )
        return redemption

    async def apply_to_order(
        self, db: AsyncSession, redemption_id: int, order: Order, now: datetime | None = None
    ) -> Redemption:
        """Marca el canje como aplicado al pedido. Corre dentro de la transacción del llamador."""
        redemption = (
            await db.execute(select(Redemption).where(Redemption.id == redemption_id).with_for_update())
        ).scalar_one_or_none()
        if not redemption:
            raise NotFoundError("Canje no encontrado")
        if order.customer_id is None or redemption.customer_id != order.customer_id:
            raise RedemptionOwnershipError("El canje no pertenece a este cliente")
        if redemption.state != STATE_PENDING:
            raise RedemptionConflictError("Este canje ya fue utilizado")
        result = await db.execute(
            update(Redemption)
            .where(
                Redemption.id == redemption_id,
                Redemption.customer_id == order.customer_id,
                Redemption.state == STATE_PENDING,
            )
            .values(state=STATE_APPLIED, order_id=order.id, applied_at=now or datetime.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RedemptionConflictError("Este canje ya fue utilizado")
        await db.refresh(redemption)
        return redemption

    async def award_points(self, db: AsyncSession, customer: Customer, order: Order) -> int:
        """Acredita ``floor(subtotal / divisor)`` puntos por el pedido."""
        subtotal = to_decimal(order.subtotal)
        points = int(subtotal // self.points_divisor) if subtotal > 0 else 0
        if points <= 0:
            return 0
        customer.accumulated_points = int(customer.accumulated_points or 0) + points
        order.points_awarded = points
        db.add(
            PointsLedgerEntry(
                customer_id=customer.id,
                points_delta=points,
                transaction_type=TX_ACCRUAL,
                description=f"Puntos por pedido #{order.id}",
                order_id=order.id,
            )
        )
        await db.flush()
        return points

    def points_for(self, subtotal: Any) -> int:
        d = to_decimal(subtotal)
        return int(d // self.points_divisor) if d > 0 else 0

    async def pending_discount_for(self, db: AsyncSession, customer_id: int) -> Optional[Redemption]:
        """Canje de descuento pendiente más antiguo del cliente."""
        return (
            await db.execute(
                select(Redemption)
                .where(
                    Redemption.customer_id == customer_id,
                    Redemption.state == STATE_PENDING,
                    Redemption.discount_kind.is_not(None),
                )
                .order_by(Redemption.created_at, Redemption.id)
                .limit(1)
            )
        ).scalar_one_or_none()

    async def list_rewards_for_customer(
        self, db: AsyncSession, customer_id: int, now: datetime | None = None
    ) -> dict[str, Any]:
        now = now or datetime.now()
        customer = await db.get(Customer, customer_id)
        if not customer:
            raise NotFoundError("Cliente no encontrado")
        rewards = (await db.execute(select(Reward).order_by(Reward.points_cost, Reward.id))).scalars().all()
        states = {
            rid: state
            for rid, state in (
                await db.execute(
                    select(Redemption.reward_id, Redemption.state).where(
                        Redemption.customer_id == customer_id,
                        Redemption.state.in_(LIVE_STATES),
                    )
                )
            ).all()
            if rid is not None
        }
        available = await available_points(db, customer_id)
        items = []
        for r in rewards:
            is_available = is_reward_available(r, now)
            if not is_available and r.id not in states:
                continue
            items.append(
                {
                    "id": r.id,
                    "name": r.name,
                    "description": r.description,
                    "reward_type": r.reward_type,
                    "value": float(r.value) if r.value is not None else None,
                    "points_cost": int(r.points_cost or 0),
                    "available": is_available,
                    "affordable": available >= int(r.points_cost or 0),
                    "already_redeemed": r.id in states,
                    "redemption_state": states.get(r.id),
                }
            )
        return {
            "customer_id": customer_id,
            "accumulated_points": int(customer.accumulated_points or 0),
            "available_points": available,
            "rewards": items,
        }
