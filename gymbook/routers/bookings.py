"""
Bookings Router - book, cancel, check-in, waitlist and roster endpoints
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from gymbook.dependencies import (
    Actor,
    ensure_member_access,
    get_booking_service,
    get_eligibility_service,
    get_roster_service,
    require_actor,
    require_member_access,
    require_staff,
)
from gymbook.errors import http_status_for, internal_error
from gymbook.schemas import BookMemberRequest, CancelBookingRequest, CheckInRequest
from gymbook.services.booking_service import BookingOptions, BookingService, CancelOptions
from gymbook.services.eligibility_service import EligibilityService
from gymbook.services.roster_service import RosterService

router = APIRouter(prefix="/api/gyms/{gym_id}", tags=["bookings"])
logger = logging.getLogger(__name__)


def respond(fn: Callable[..., Dict[str, Any]], *args, **kwargs) -> JSONResponse:
    try:
        result = fn(*args, **kwargs)
    except Exception as e:
        logger.exception(f"Unhandled error in {getattr(fn, '__name__', fn)}: {e}")
        result = internal_error(e)
    return JSONResponse(result, status_code=http_status_for(result))


# === Bookings ===


@router.post("/bookings")
def api_book_member(
    gym_id: str,
    payload: BookMemberRequest,
    actor: Actor = Depends(require_actor),
    svc: BookingService = Depends(get_booking_service),
):
    """Book a member into a class instance"""
    is_staff = actor.is_staff_for(gym_id)
    if not is_staff:
        if payload.needs_staff:
            raise HTTPException(status_code=403, detail="Staff access required for booking overrides")
        if payload.member.id != actor.user_id:
            raise HTTPException(status_code=403, detail="You can only book for yourself")
    options = BookingOptions(
        is_staff=is_staff,
        force=payload.force,
        waive_cost=payload.waive_cost,
        booking_type=payload.booking_type.value if payload.booking_type else None,
        credit_cost_override=payload.credit_cost_override,
        actor_id=actor.user_id,
    )
    return respond(
        svc.book_member,
        gym_id,
        payload.class_info.model_dump(),
        payload.member.model_dump(),
        options,
    )


@router.post("/bookings/{attendance_id}/cancel")
def api_cancel_booking(
    gym_id: str,
    attendance_id: str,
    payload: Optional[CancelBookingRequest] = None,
    actor: Actor = Depends(require_actor),
    svc: BookingService = Depends(get_booking_service),
):
    """Cancel a booking, refunding credits when inside the safe window"""
    is_staff = actor.is_staff_for(gym_id)
    refund_policy = payload.refund_policy if payload else None
    if refund_policy is not None and not is_staff:
        raise HTTPException(status_code=403, detail="Staff access required for refund overrides")
    options = CancelOptions(
        is_staff=is_staff,
        refund_policy=refund_policy.value if refund_policy else None,
        actor_id=actor.user_id,
    )
    return respond(svc.cancel_booking, gym_id, attendance_id, options)


@router.post("/bookings/{attendance_id}/check-in")
def api_check_in(
    gym_id: str,
    attendance_id: str,
    payload: Optional[CheckInRequest] = None,
    _: Actor = Depends(require_staff),
    svc: BookingService = Depends(get_booking_service),
):
    """Mark a booking as attended"""
    return respond(
        svc.check_in_member,
        gym_id,
        attendance_id,
        payload.member_id if payload else None,
        payload.program_id if payload else None,
    )


# === Class instances ===


@router.post("/classes/{class_id}/instances/{date_string}/waitlist/process")
def api_process_waitlist(
    gym_id: str,
    class_id: str,
    date_string: str,
    _: Actor = Depends(require_staff),
    svc: BookingService = Depends(get_booking_service),
):
    """Promote as many waiters as there are free seats"""
    return respond(svc.process_waitlist, gym_id, class_id, date_string)


@router.get("/classes/{class_id}/instances/{date_string}/roster")
def api_class_roster(
    gym_id: str,
    class_id: str,
    date_string: str,
    _: Actor = Depends(require_staff),
    svc: RosterService = Depends(get_roster_service),
):
    return respond(svc.get_class_roster, gym_id, class_id, date_string)


@router.get("/classes/{class_id}/instances/{date_string}/eligibility")
def api_booking_eligibility(
    gym_id: str,
    class_id: str,
    date_string: str,
    user_id: str = Query(..., min_length=1),
    actor: Actor = Depends(require_actor),
    svc: EligibilityService = Depends(get_eligibility_service),
):
    ensure_member_access(actor, gym_id, user_id)
    return respond(
        svc.check_booking_eligibility,
        gym_id,
        user_id,
        {"id": class_id, "date_string": date_string},
    )


# === Members ===


@router.get("/members/{member_id}/attendance")
def api_member_attendance(
    gym_id: str,
    member_id: str,
    limit: int = Query(20, ge=1, le=200),
    _: Actor = Depends(require_member_access),
    svc: RosterService = Depends(get_roster_service),
):
    return respond(svc.get_member_attendance_history, gym_id, member_id, limit)


@router.get("/members/{member_id}/schedule")
def api_member_schedule(
    gym_id: str,
    member_id: str,
    start: str = Query(...),
    end: str = Query(...),
    _: Actor = Depends(require_member_access),
    svc: RosterService = Depends(get_roster_service),
):
    return respond(svc.get_member_schedule, gym_id, member_id, start, end)


@router.get("/members/{member_id}/weekly-count")
def api_member_weekly_count(
    gym_id: str,
    member_id: str,
    date_string: str = Query(..., alias="date"),
    _: Actor = Depends(require_member_access),
    svc: EligibilityService = Depends(get_eligibility_service),
):
    return respond(svc.get_weekly_class_count, gym_id, member_id, date_string)


@router.get("/attendance/weekly-counts")
def api_weekly_counts(
    gym_id: str,
    start: str = Query(...),
    end: str = Query(...),
    _: Actor = Depends(require_staff),
    svc: RosterService = Depends(get_roster_service),
):
    return respond(svc.get_weekly_attendance_counts, gym_id, start, end)
