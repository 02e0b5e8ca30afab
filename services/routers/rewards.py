# NG-HEADER: Nombre de archivo: rewards.py
# NG-HEADER: Ubicación: services/routers/rewards.py
# NG-HEADER: Descripción: Catálogo de recompensas del cliente y canje de puntos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from services.auth import SessionData, require_customer
from services.loyalty.ledger import RewardLedger, available_points

router = APIRouter(prefix="/recompensas", tags=["recompensas"])


def get_ledger(request: Request) -> RewardLedger:
    return request.app.state.ledger


@router.get("")
async def list_rewards(
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(require_customer),
    ledger: RewardLedger = Depends(get_ledger),
):
    return await ledger.list_rewards_for_customer(db, sess.customer_id)


@router.post("/{reward_id}/canjear", status_code=201)
async def redeem_reward(
    reward_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(require_customer),
    ledger: RewardLedger = Depends(get_ledger),
):
    redemption = await ledger.redeem(db, sess.customer_id, reward_id, request=request)
    return {
        "redemption_id": redemption.id,
        "reward_id": redemption.reward_id,
        "reward_name": redemption.reward_name,
        "points_spent": redemption.points_spent,
        "state": redemption.state,
        "discount_kind": redemption.discount_kind,
        "value": float(redemption.value_snapshot or 0),
        "available_points": await available_points(db, sess.customer_id),
    }
