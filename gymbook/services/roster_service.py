"""
Roster & waitlist management for a class instance (class + date).

``RosterManager`` runs inside a booking unit of work and decides seat vs
waitlist and promotes waiters in FIFO order. ``RosterService`` exposes the
read-only roster and history queries used to render schedules.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gymbook.database.repositories.attendance_repository import AttendanceRepository
from gymbook.models.enums import BookingStatus
from gymbook.models.orm_models import Attendance
from gymbook.services.base import BaseService
from gymbook.services.booking_rules import parse_date
from gymbook.errors import BookingError, internal_error

logger = logging.getLogger(__name__)


def capacity_limit(max_capacity: Optional[int]) -> Optional[int]:
    """None means unbounded; zero or negative capacities are treated as unset."""
    try:
        cap = int(max_capacity) if max_capacity is not None else None
    except (TypeError, ValueError):
        return None
    if cap is None or cap <= 0:
        return None
    return cap


class RosterManager:
    def __init__(self, attendance: AttendanceRepository):
        self.attendance = attendance

    def decide_status(
        self,
        class_id: str,
        date_string: str,
        max_capacity: Optional[int],
        *,
        force: bool,
        retroactive: bool,
    ) -> BookingStatus:
        if retroactive:
            return BookingStatus.ATTENDED
        if force:
            return BookingStatus.BOOKED
        cap = capacity_limit(max_capacity)
        if cap is None:
            return BookingStatus.BOOKED
        seated = self.attendance.count_seated(class_id, date_string)
        # Newcomers never jump an existing queue
        queued = self.attendance.count_waitlisted(class_id, date_string)
        if seated >= cap or queued > 0:
            return BookingStatus.WAITLISTED
        return BookingStatus.BOOKED

    def _promote(self, record: Attendance, now: datetime) -> None:
        record.status = BookingStatus.BOOKED.value
        record.promoted_at = now
        record.updated_at = now

    def free_spots(self, class_id: str, date_string: str, max_capacity: Optional[int]) -> Optional[int]:
        cap = capacity_limit(max_capacity)
        if cap is None:
            return None
        return max(0, cap - self.attendance.count_seated(class_id, date_string))

    def promote_next(
        self,
        class_id: str,
        date_string: str,
        max_capacity: Optional[int],
        now: datetime,
    ) -> Optional[Attendance]:
        """Promotes the earliest waiter if a seat is actually free."""
        free = self.free_spots(class_id, date_string, max_capacity)
        if free is not None and free < 1:
            return None
        waiters = self.attendance.waitlist(class_id, date_string)
        if not waiters:
            return None
        nxt = waiters[0]
        self._promote(nxt, now)
        self.attendance.db.flush()
        logger.info(f"Promoted {nxt.id} from waitlist")
        return nxt

    def promote_all(
        self,
        class_id: str,
        date_string: str,
        max_capacity: Optional[int],
        now: datetime,
    ) -> List[Attendance]:
        free = self.free_spots(class_id, date_string, max_capacity)
        waiters = self.attendance.waitlist(class_id, date_string)
        take = waiters if free is None else waiters[:free]
        for rec in take:
            self._promote(rec, now)
        if take:
            self.attendance.db.flush()
            logger.info(
                f"Waitlist reconciliation for {class_id}_{date_string}: promoted {len(take)}"
            )
        return take


class RosterService(BaseService):
    """Read-only roster and history queries."""

    def __init__(self, db: Session, clock=None):
        super().__init__(db, clock)
        self.attendance = AttendanceRepository(db)

    def get_class_roster(self, gym_id: str, class_id: str, date_string: str) -> Dict[str, Any]:
        try:
            parse_date(date_string)
            records = self.attendance.roster(gym_id, class_id, date_string)
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.error(f"Error fetching roster for {class_id}_{date_string}: {e}")
            return internal_error(e)
        counts = {s.value: 0 for s in BookingStatus}
        for r in records:
            counts[r.status] = counts.get(r.status, 0) + 1
        return {
            "success": True,
            "roster": [AttendanceRepository.to_dict(r) for r in records],
            "counts": counts,
        }

    def get_member_attendance_history(
        self, gym_id: str, member_id: str, limit: int = 20
    ) -> Dict[str, Any]:
        try:
            records = self.attendance.member_history(gym_id, member_id, limit)
            return {
                "success": True,
                "history": [AttendanceRepository.to_dict(r) for r in records],
            }
        except Exception as e:
            logger.error(f"History fetch error for member {member_id}: {e}")
            return internal_error(e)

    def get_weekly_attendance_counts(self, gym_id: str, start: str, end: str) -> Dict[str, Any]:
        try:
            parse_date(start)
            parse_date(end)
            return {
                "success": True,
                "counts": self.attendance.active_counts_between(gym_id, start, end),
            }
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.error(f"Error fetching counts: {e}")
            return internal_error(e)

    def get_member_schedule(
        self, gym_id: str, member_id: str, start: str, end: str
    ) -> Dict[str, Any]:
        try:
            parse_date(start)
            parse_date(end)
            records = self.attendance.member_active_between(gym_id, member_id, start, end)
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.error(f"Error fetching member schedule: {e}")
            return internal_error(e)
        schedule = {
            f"{r.class_id}_{r.date_string}": {"status": r.status, "id": r.id}
            for r in records
        }
        return {"success": True, "schedule": schedule}
