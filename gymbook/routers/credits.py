"""
Credits Router - staff adjustments, ledger history and reconciliation
"""

import logging

from fastapi import APIRouter, Depends, Query

from gymbook.dependencies import (
    Actor,
    get_credit_service,
    require_member_access,
    require_staff,
)
from gymbook.routers.bookings import respond
from gymbook.schemas import CreditAdjustmentRequest
from gymbook.services.credit_ledger import CreditService

router = APIRouter(prefix="/api/gyms/{gym_id}/members/{member_id}/credits", tags=["credits"])
logger = logging.getLogger(__name__)


@router.post("/adjust")
def api_adjust_credits(
    gym_id: str,
    member_id: str,
    payload: CreditAdjustmentRequest,
    actor: Actor = Depends(require_staff),
    svc: CreditService = Depends(get_credit_service),
):
    """Grant or deduct class credits"""
    return respond(
        svc.adjust_user_credits,
        member_id,
        gym_id,
        payload.amount,
        payload.reason,
        actor.user_id,
        force=payload.force,
    )


@router.get("/history")
def api_credit_history(
    gym_id: str,
    member_id: str,
    limit: int = Query(50, ge=1, le=500),
    _: Actor = Depends(require_member_access),
    svc: CreditService = Depends(get_credit_service),
):
    return respond(svc.get_user_credit_history, member_id, gym_id, limit)


@router.get("/reconcile")
def api_reconcile_credits(
    gym_id: str,
    member_id: str,
    _: Actor = Depends(require_staff),
    svc: CreditService = Depends(get_credit_service),
):
    return respond(svc.reconcile, member_id, gym_id)
