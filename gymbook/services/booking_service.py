"""
Booking Service - atomic book / cancel / check-in / waitlist operations.

Every public method runs its whole evaluate-and-write pipeline inside
``run_in_transaction`` keyed on the class instance and the member, so
concurrent requests for the same slot or the same member serialize and a
failure at any step leaves nothing behind.
Results are uniform ``{"success": ...}`` dicts; domain errors never escape.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gymbook.database.repositories.attendance_repository import (
    AttendanceRepository,
    booking_id,
)
from gymbook.database.repositories.class_repository import ClassRepository
from gymbook.database.repositories.user_repository import UserRepository
from gymbook.database.transactions import (
    InstanceKey,
    LockKey,
    MemberKey,
    run_in_transaction,
)
from gymbook.errors import (
    AlreadyBookedError,
    AlreadyCancelledError,
    AlreadyCheckedInError,
    BookingError,
    BookingNotFoundError,
    ClassNotFoundError,
    ForbiddenError,
    InvalidRequestError,
    UserNotFoundError,
    WaitlistedError,
    internal_error,
)
from gymbook.models.enums import (
    BookingStatus,
    BookingType,
    LedgerEntryType,
    RefundPolicy,
    SEATED_STATUSES,
)
from gymbook.models.orm_models import Attendance, Gym
from gymbook.services.base import BaseService, Clock
from gymbook.services.booking_rules import (
    ClassSchedule,
    class_start,
    effective_rules,
    evaluate_booking_time,
    evaluate_cancellation,
    parse_date,
)
from gymbook.services.credit_ledger import CreditLedger
from gymbook.services.eligibility_service import load_weekly_usage
from gymbook.services.funding import apply_weekly_limit, resolve_funding
from gymbook.services.progression_service import ProgressionTracker
from gymbook.services.roster_service import RosterManager
from gymbook.utils import as_aware_utc, get_app_timezone, to_naive_utc

logger = logging.getLogger(__name__)


@dataclass
class BookingOptions:
    is_staff: bool = False
    force: bool = False
    waive_cost: bool = False
    booking_type: Optional[str] = None
    credit_cost_override: Optional[int] = None
    actor_id: Optional[str] = None


@dataclass
class CancelOptions:
    is_staff: bool = False
    refund_policy: Optional[str] = None
    actor_id: Optional[str] = None


def _get(obj: Any, *names: str) -> Any:
    for n in names:
        v = obj.get(n) if isinstance(obj, dict) else getattr(obj, n, None)
        if v is not None and v != "":
            return v
    return None


class BookingService(BaseService):
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.attendance = AttendanceRepository(db)
        self.classes = ClassRepository(db)
        self.users = UserRepository(db)
        self.ledger = CreditLedger(db)
        self.roster = RosterManager(self.attendance)
        self.progression = ProgressionTracker(self.users, self.classes)

    def _gym_timezone(self, gym: Optional[Gym]):
        return get_app_timezone(gym.timezone if gym is not None else None)

    def _run(self, label: str, fn, keys) -> Dict[str, Any]:
        try:
            return run_in_transaction(self.db, fn, lock_keys=keys)
        except BookingError as e:
            logger.info(f"{label} rejected ({e.code}): {e.message}")
            return e.to_dict()
        except Exception as e:
            logger.exception(f"{label} failed: {e}")
            return internal_error(e)

    # ========== Book ==========

    def book_member(
        self,
        gym_id: str,
        class_info: Any,
        member: Any,
        options: Optional[BookingOptions] = None,
    ) -> Dict[str, Any]:
        opts = options or BookingOptions()
        class_id = _get(class_info, "id", "class_id")
        date_string = _get(class_info, "date_string", "dateString")
        member_id = _get(member, "id", "member_id")
        if not class_id or not date_string or not member_id:
            return InvalidRequestError(
                "Booking requires a class id, a date_string and a member id"
            ).to_dict()
        try:
            parse_date(date_string)
        except BookingError as e:
            return e.to_dict()

        def _body(db):
            return self._book(gym_id, class_id, date_string, class_info, member, member_id, opts)

        result = self._run(
            "Booking",
            _body,
            [InstanceKey(gym_id, class_id, date_string), MemberKey(member_id)],
        )
        if result.get("success"):
            logger.info(
                f"Booked {result['id']} as {result['status']} "
                f"({result['booking_type']}, cost {result['cost_used']})"
            )
        return result

    def _book(
        self,
        gym_id: str,
        class_id: str,
        date_string: str,
        class_info: Any,
        member: Any,
        member_id: str,
        opts: BookingOptions,
    ) -> Dict[str, Any]:
        now = self.now()
        now_naive = to_naive_utc(now)
        record_id = booking_id(class_id, date_string, member_id)

        gym_class = self.classes.get_class(gym_id, class_id)
        if gym_class is None:
            raise ClassNotFoundError("Class does not exist.", details={"class_id": class_id})
        user = self.users.get(member_id)
        if user is None:
            raise UserNotFoundError("User does not exist.", details={"user_id": member_id})
        existing = self.attendance.get(record_id)
        if existing is not None and existing.status != BookingStatus.CANCELLED.value:
            raise AlreadyBookedError(
                "Member is already booked in this class.", details={"id": record_id}
            )

        gym = self.classes.get_gym(gym_id)
        tz = self._gym_timezone(gym)
        rules = effective_rules(
            gym_class.booking_rules, gym.default_booking_rules if gym is not None else None
        )
        timing = evaluate_booking_time(
            ClassSchedule.from_class(gym_class),
            date_string,
            rules,
            now,
            privileged=bool(opts.is_staff or opts.force),
            tz=tz,
        )

        decision = resolve_funding(
            gym_class,
            user,
            gym_id,
            booking_type=opts.booking_type,
            force=opts.force,
            waive_cost=opts.waive_cost,
            credit_cost_override=opts.credit_cost_override,
        )
        if not decision.allowed:
            raise decision.to_error()

        if decision.type is BookingType.MEMBERSHIP and not opts.force and not opts.booking_type:
            usage = load_weekly_usage(
                self.attendance,
                self.classes,
                self.users,
                gym_id,
                member_id,
                date_string,
                exclude_id=record_id,
            )
            if usage.limit is not None:
                decision = apply_weekly_limit(
                    decision,
                    used=usage.used,
                    limit=usage.limit,
                    class_data=gym_class,
                    user_data=user,
                    gym_id=gym_id,
                )
                if not decision.allowed:
                    raise decision.to_error()

        funding_type = decision.type
        cost = int(decision.cost or 0)
        if cost > 0 and opts.force and self.ledger.balance(member_id, gym_id) < cost:
            logger.info(
                f"Forced booking for {member_id} without enough credits; recording as admin_comp"
            )
            funding_type = BookingType.ADMIN_COMP
            cost = 0

        if cost > 0:
            self.ledger.apply(
                member_id,
                -cost,
                LedgerEntryType.BOOKING,
                f"Booked: {gym_class.name} ({gym_class.time})",
                now=now,
                gym_id=gym_id,
                created_by=opts.actor_id or ("admin_forced" if opts.force else member_id),
                attendance_id=record_id,
            )

        status = self.roster.decide_status(
            class_id,
            date_string,
            gym_class.max_capacity,
            force=opts.force,
            retroactive=timing.retroactive,
        )

        payload = dict(
            gym_id=gym_id,
            class_id=class_id,
            class_name=gym_class.name,
            instructor_name=gym_class.instructor_name or _get(class_info, "instructor_name"),
            date_string=date_string,
            class_time=gym_class.time,
            class_timestamp=to_naive_utc(timing.starts_at),
            member_id=member_id,
            member_name=_get(member, "name") or user.name or "Unknown Member",
            member_photo=_get(member, "photo_url", "photoUrl") or user.photo_url,
            status=status.value,
            booking_type=funding_type.value,
            cost_used=cost,
            booking_rules_snapshot=rules.to_snapshot(),
            program_id=None,
            booked_at=now_naive,
            updated_at=now_naive,
            checked_in_at=None,
            cancelled_at=None,
            refunded=False,
            refund_amount=0,
            late_cancel=False,
            late_cancel_fee_applied=0,
            promoted_at=None,
        )

        if status is BookingStatus.ATTENDED:
            self.progression.record_attendance(user, gym_id, gym_class.program_id, now_naive)
            payload["checked_in_at"] = now_naive
            payload["program_id"] = gym_class.program_id

        recovered = existing is not None
        if recovered:
            for k, v in payload.items():
                setattr(existing, k, v)
            self.db.flush()
        else:
            self.attendance.add(Attendance(id=record_id, created_at=now_naive, **payload))

        return {
            "success": True,
            "status": status.value,
            "recovered": recovered,
            "id": record_id,
            "booking_type": funding_type.value,
            "cost_used": cost,
            "reason": decision.reason,
        }

    # ========== Cancel ==========

    def _keys_for(self, gym_id: str, attendance_id: str) -> Optional[List[LockKey]]:
        rec = self.attendance.get(attendance_id)
        if rec is None or rec.gym_id != gym_id:
            return None
        return [InstanceKey(gym_id, rec.class_id, rec.date_string), MemberKey(rec.member_id)]

    def cancel_booking(
        self,
        gym_id: str,
        attendance_id: str,
        options: Optional[CancelOptions] = None,
    ) -> Dict[str, Any]:
        opts = options or CancelOptions()
        keys = self._keys_for(gym_id, attendance_id)
        if keys is None:
            return BookingNotFoundError("Booking not found.", details={"id": attendance_id}).to_dict()

        def _body(db):
            return self._cancel(gym_id, attendance_id, opts)

        result = self._run("Cancellation", _body, keys)
        if result.get("success"):
            logger.info(
                f"Cancelled {attendance_id}: refunded={result['refunded']} "
                f"late={result['late_cancel']} promoted={result['promoted_id']}"
            )
        return result

    def _cancel(self, gym_id: str, attendance_id: str, opts: CancelOptions) -> Dict[str, Any]:
        now = self.now()
        now_naive = to_naive_utc(now)

        rec = self.attendance.get(attendance_id)
        if rec is None or rec.gym_id != gym_id:
            raise BookingNotFoundError("Booking not found.", details={"id": attendance_id})
        if not opts.is_staff and opts.actor_id and opts.actor_id != rec.member_id:
            raise ForbiddenError("You can only cancel your own bookings.")
        if rec.status == BookingStatus.CANCELLED.value:
            raise AlreadyCancelledError(
                "This booking is already cancelled.", details={"id": attendance_id}
            )

        gym_class = self.classes.get_class(gym_id, rec.class_id)
        gym = self.classes.get_gym(gym_id)
        live_rules = effective_rules(
            gym_class.booking_rules if gym_class is not None else None,
            gym.default_booking_rules if gym is not None else None,
        )
        starts_at = as_aware_utc(rec.class_timestamp)
        if starts_at is None:
            starts_at = class_start(
                rec.date_string,
                rec.class_time or (gym_class.time if gym_class is not None else "00:00"),
                self._gym_timezone(gym),
            )

        prior_status = rec.status
        decision = evaluate_cancellation(
            rec.booking_rules_snapshot,
            live_rules,
            starts_at,
            now,
            was_waitlisted=prior_status == BookingStatus.WAITLISTED.value,
            is_staff=opts.is_staff,
        )

        policy = RefundPolicy.parse(opts.refund_policy) if opts.is_staff else None
        should_refund = decision.safe if policy is None else policy is RefundPolicy.REFUND

        refund_amount = 0
        cost_used = int(rec.cost_used or 0)
        if should_refund and cost_used > 0:
            self.ledger.apply(
                rec.member_id,
                cost_used,
                LedgerEntryType.REFUND,
                f"Refund: {rec.class_name} ({'Admin Cancel' if opts.is_staff else 'User Cancel'})",
                now=now,
                gym_id=gym_id,
                created_by=opts.actor_id or ("admin" if opts.is_staff else rec.member_id),
                attendance_id=rec.id,
            )
            refund_amount = cost_used

        if prior_status == BookingStatus.ATTENDED.value:
            user = self.users.get(rec.member_id)
            if user is not None:
                program_id = rec.program_id or (
                    gym_class.program_id if gym_class is not None else None
                )
                self.progression.reverse_attendance(user, program_id)

        rec.status = BookingStatus.CANCELLED.value
        rec.cancelled_at = now_naive
        rec.updated_at = now_naive
        rec.refunded = refund_amount > 0
        rec.refund_amount = refund_amount
        rec.late_cancel = decision.late_cancel
        rec.late_cancel_fee_applied = decision.fee
        self.db.flush()

        promoted = None
        if prior_status in SEATED_STATUSES and gym_class is not None:
            promoted = self.roster.promote_next(
                rec.class_id, rec.date_string, gym_class.max_capacity, now_naive
            )

        return {
            "success": True,
            "id": rec.id,
            "refunded": refund_amount > 0,
            "refund_amount": refund_amount,
            "late_cancel": decision.late_cancel,
            "late_cancel_fee": float(decision.fee),
            "promoted_id": promoted.id if promoted is not None else None,
        }

    # ========== Check-in ==========

    def check_in_member(
        self,
        gym_id: str,
        attendance_id: str,
        member_id: Optional[str] = None,
        program_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        keys = self._keys_for(gym_id, attendance_id)
        if keys is None:
            return BookingNotFoundError("Booking not found.", details={"id": attendance_id}).to_dict()

        def _body(db):
            now_naive = self._now_utc_naive()
            rec = self.attendance.get(attendance_id)
            if rec is None or rec.gym_id != gym_id:
                raise BookingNotFoundError("Booking not found.", details={"id": attendance_id})
            if member_id and rec.member_id != member_id:
                raise InvalidRequestError("Booking does not belong to this member.")
            if rec.status == BookingStatus.CANCELLED.value:
                raise AlreadyCancelledError("Cannot check in a cancelled booking.")
            if rec.status == BookingStatus.ATTENDED.value:
                raise AlreadyCheckedInError("Member is already checked in.")
            if rec.status == BookingStatus.WAITLISTED.value:
                raise WaitlistedError(
                    "Member is on the waitlist and has no seat to check in to.",
                    details={"id": attendance_id},
                )

            user = self.users.get(rec.member_id)
            if user is None:
                raise UserNotFoundError("User does not exist.", details={"user_id": rec.member_id})
            gym_class = self.classes.get_class(gym_id, rec.class_id)
            effective_program = program_id or (
                gym_class.program_id if gym_class is not None else None
            )

            rec.status = BookingStatus.ATTENDED.value
            rec.checked_in_at = now_naive
            rec.updated_at = now_naive
            rec.program_id = effective_program
            rank = self.progression.record_attendance(
                user, gym_id, effective_program, now_naive
            )
            self.db.flush()
            return {
                "success": True,
                "id": rec.id,
                "status": rec.status,
                "program_id": effective_program,
                "rank_credits": rank.credits if rank is not None else None,
            }

        return self._run("Check-in", _body, keys)

    # ========== Waitlist ==========

    def process_waitlist(self, gym_id: str, class_id: str, date_string: str) -> Dict[str, Any]:
        try:
            parse_date(date_string)
        except BookingError as e:
            return e.to_dict()

        def _body(db):
            gym_class = self.classes.get_class(gym_id, class_id)
            if gym_class is None:
                raise ClassNotFoundError("Class does not exist.", details={"class_id": class_id})
            promoted = self.roster.promote_all(
                class_id, date_string, gym_class.max_capacity, self._now_utc_naive()
            )
            return {
                "success": True,
                "promoted": len(promoted),
                "promoted_ids": [r.id for r in promoted],
            }

        return self._run(
            "Waitlist processing", _body, [InstanceKey(gym_id, class_id, date_string)]
        )
