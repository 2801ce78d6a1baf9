"""
Eligibility Service - read-only booking checks for UI rendering.

Composes the funding gate with the membership tier's weekly usage limit.
Nothing here writes to the database.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gymbook.database.repositories.attendance_repository import AttendanceRepository
from gymbook.database.repositories.class_repository import ClassRepository
from gymbook.database.repositories.user_repository import UserRepository
from gymbook.errors import (
    BookingError,
    ClassNotFoundError,
    InvalidRequestError,
    UserNotFoundError,
    internal_error,
)
from gymbook.models.enums import BookingType
from gymbook.models.orm_models import Attendance, MembershipTier
from gymbook.services.base import BaseService
from gymbook.services.booking_rules import week_range
from gymbook.services.funding import apply_weekly_limit, can_user_book

logger = logging.getLogger(__name__)


@dataclass
class WeeklyUsage:
    tier: Optional[MembershipTier]
    start: str
    end: str
    records: List[Attendance] = field(default_factory=list)

    @property
    def limit(self) -> Optional[int]:
        if self.tier is None or not self.tier.weekly_limit or self.tier.weekly_limit <= 0:
            return None
        return int(self.tier.weekly_limit)

    @property
    def used(self) -> int:
        return len(self.records)

    def classes(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": r.id,
                "class_id": r.class_id,
                "class_name": r.class_name,
                "date_string": r.date_string,
                "class_time": r.class_time,
                "status": r.status,
                "late_cancel": bool(r.late_cancel),
            }
            for r in self.records
        ]


def load_weekly_usage(
    attendance: AttendanceRepository,
    classes: ClassRepository,
    users: UserRepository,
    gym_id: str,
    member_id: str,
    date_string: str,
    *,
    exclude_id: Optional[str] = None,
) -> WeeklyUsage:
    """Tier plus this week's allotment-consuming bookings (seated or late-cancelled)."""
    start, end = week_range(date_string)
    membership = users.get_membership(member_id, gym_id)
    tier = classes.get_tier(gym_id, membership.membership_id) if membership else None
    usage = WeeklyUsage(tier=tier, start=start, end=end)
    if usage.limit is not None:
        usage.records = [
            r
            for r in attendance.weekly_usage(gym_id, member_id, start, end)
            if r.id != exclude_id
        ]
    return usage


class EligibilityService(BaseService):
    def __init__(self, db: Session, clock=None):
        super().__init__(db, clock)
        self.attendance = AttendanceRepository(db)
        self.classes = ClassRepository(db)
        self.users = UserRepository(db)

    def check_booking_eligibility(
        self, gym_id: str, user_id: str, class_instance: Dict[str, Any]
    ) -> Dict[str, Any]:
        class_id = class_instance.get("id")
        date_string = class_instance.get("date_string") or class_instance.get("dateString")
        try:
            if not class_id or not date_string:
                raise InvalidRequestError("Class instance requires id and date_string")
            week_range(date_string)

            gym_class = self.classes.get_class(gym_id, class_id)
            if gym_class is None:
                raise ClassNotFoundError("Class does not exist.", details={"class_id": class_id})
            user = self.users.get(user_id)
            if user is None:
                raise UserNotFoundError("User profile not found", details={"user_id": user_id})

            decision = can_user_book(gym_class, user, gym_id)
            active_plan_name = ""
            weekly_usage = None

            if decision.type is BookingType.MEMBERSHIP:
                usage = load_weekly_usage(
                    self.attendance, self.classes, self.users, gym_id, user_id, date_string
                )
                if usage.tier is not None:
                    active_plan_name = usage.tier.name
                if usage.limit is not None:
                    weekly_usage = {
                        "used": usage.used,
                        "limit": usage.limit,
                        "classes": usage.classes(),
                    }
                    decision = apply_weekly_limit(
                        decision,
                        used=usage.used,
                        limit=usage.limit,
                        class_data=gym_class,
                        user_data=user,
                        gym_id=gym_id,
                    )

            eligible_public_plans: List[Dict[str, Any]] = []
            allowed_ids = list(gym_class.allowed_membership_ids or [])
            if not decision.allowed and allowed_ids:
                eligible_public_plans = [
                    {
                        "id": t.id,
                        "name": t.name,
                        "price": float(t.price) if t.price is not None else None,
                        "interval": t.interval,
                    }
                    for t in self.classes.public_tiers(gym_id, allowed_ids)
                ]
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.error(f"Booking check error: {e}")
            return internal_error(e)

        return {
            "success": True,
            "data": {
                "instructor_name": gym_class.instructor_name
                or class_instance.get("instructor_name"),
                "eligibility": decision.to_dict(),
                "active_plan_name": active_plan_name,
                "weekly_usage": weekly_usage,
                "eligible_public_plans": eligible_public_plans,
            },
        }

    def get_weekly_class_count(
        self, gym_id: str, user_id: str, date_string: str
    ) -> Dict[str, Any]:
        try:
            start, end = week_range(date_string)
            records = self.attendance.weekly_usage(gym_id, user_id, start, end)
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.error(f"Error counting weekly classes: {e}")
            return internal_error(e)
        usage = WeeklyUsage(tier=None, start=start, end=end, records=records)
        return {
            "success": True,
            "count": usage.used,
            "classes": usage.classes(),
            "start": start,
            "end": end,
        }
