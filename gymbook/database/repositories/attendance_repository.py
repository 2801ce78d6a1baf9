from typing import List, Optional, Dict, Any
from sqlalchemy import select, func, or_, and_

from .base import BaseRepository
from ...models.orm_models import Attendance
from ...models.enums import BookingStatus, SEATED_STATUSES, ACTIVE_STATUSES


def booking_id(class_id: str, date_string: str, member_id: str) -> str:
    return f"{class_id}_{date_string}_{member_id}"


class AttendanceRepository(BaseRepository):
    def get(self, attendance_id: str) -> Optional[Attendance]:
        # populate_existing so a retried unit of work never sees a stale row
        return self.db.get(Attendance, attendance_id, populate_existing=True)

    def add(self, record: Attendance) -> Attendance:
        self.db.add(record)
        self.db.flush()
        return record

    def count_seated(self, class_id: str, date_string: str) -> int:
        self.db.flush()
        stmt = select(func.count(Attendance.id)).where(
            Attendance.class_id == class_id,
            Attendance.date_string == date_string,
            Attendance.status.in_(SEATED_STATUSES),
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def count_waitlisted(self, class_id: str, date_string: str) -> int:
        self.db.flush()
        stmt = select(func.count(Attendance.id)).where(
            Attendance.class_id == class_id,
            Attendance.date_string == date_string,
            Attendance.status == BookingStatus.WAITLISTED.value,
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def waitlist(self, class_id: str, date_string: str) -> List[Attendance]:
        """Waitlisted records, earliest booking first."""
        self.db.flush()
        stmt = (
            select(Attendance)
            .where(
                Attendance.class_id == class_id,
                Attendance.date_string == date_string,
                Attendance.status == BookingStatus.WAITLISTED.value,
            )
            .order_by(
                Attendance.booked_at.asc(),
                Attendance.created_at.asc(),
                Attendance.id.asc(),
            )
            .execution_options(populate_existing=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def roster(self, gym_id: str, class_id: str, date_string: str) -> List[Attendance]:
        stmt = (
            select(Attendance)
            .where(
                Attendance.gym_id == gym_id,
                Attendance.class_id == class_id,
                Attendance.date_string == date_string,
            )
            .order_by(Attendance.booked_at.asc(), Attendance.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def member_history(self, gym_id: str, member_id: str, limit: int = 20) -> List[Attendance]:
        stmt = (
            select(Attendance)
            .where(Attendance.gym_id == gym_id, Attendance.member_id == member_id)
            .order_by(
                Attendance.class_timestamp.desc(),
                Attendance.date_string.desc(),
                Attendance.id.desc(),
            )
            .limit(max(1, int(limit)))
        )
        return list(self.db.execute(stmt).scalars().all())

    def active_counts_between(self, gym_id: str, start: str, end: str) -> Dict[str, int]:
        """Active bookings per instance, keyed "{class_id}_{date_string}"."""
        stmt = (
            select(Attendance.class_id, Attendance.date_string, func.count(Attendance.id))
            .where(
                Attendance.gym_id == gym_id,
                Attendance.date_string >= start,
                Attendance.date_string <= end,
                Attendance.status.in_(ACTIVE_STATUSES),
            )
            .group_by(Attendance.class_id, Attendance.date_string)
        )
        return {
            f"{class_id}_{date_string}": int(n or 0)
            for class_id, date_string, n in self.db.execute(stmt).all()
        }

    def member_active_between(
        self, gym_id: str, member_id: str, start: str, end: str
    ) -> List[Attendance]:
        stmt = (
            select(Attendance)
            .where(
                Attendance.gym_id == gym_id,
                Attendance.member_id == member_id,
                Attendance.date_string >= start,
                Attendance.date_string <= end,
                Attendance.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Attendance.date_string.asc(), Attendance.class_time.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def weekly_usage(
        self, gym_id: str, member_id: str, start: str, end: str
    ) -> List[Attendance]:
        """Bookings that consume weekly allotment: seated, or cancelled late."""
        self.db.flush()
        stmt = (
            select(Attendance)
            .where(
                Attendance.gym_id == gym_id,
                Attendance.member_id == member_id,
                Attendance.date_string >= start,
                Attendance.date_string <= end,
                or_(
                    Attendance.status.in_(SEATED_STATUSES),
                    and_(
                        Attendance.status == BookingStatus.CANCELLED.value,
                        Attendance.late_cancel.is_(True),
                    ),
                ),
            )
            .order_by(Attendance.date_string.asc(), Attendance.class_time.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    @staticmethod
    def to_dict(r: Attendance) -> Dict[str, Any]:
        def _iso(v):
            return v.isoformat() if v is not None else None

        return {
            "id": r.id,
            "gym_id": r.gym_id,
            "class_id": r.class_id,
            "class_name": r.class_name,
            "instructor_name": r.instructor_name,
            "date_string": r.date_string,
            "class_time": r.class_time,
            "class_timestamp": _iso(r.class_timestamp),
            "member_id": r.member_id,
            "member_name": r.member_name,
            "member_photo": r.member_photo,
            "status": r.status,
            "booking_type": r.booking_type,
            "cost_used": int(r.cost_used or 0),
            "booking_rules_snapshot": r.booking_rules_snapshot,
            "booked_at": _iso(r.booked_at),
            "created_at": _iso(r.created_at),
            "updated_at": _iso(r.updated_at),
            "checked_in_at": _iso(r.checked_in_at),
            "cancelled_at": _iso(r.cancelled_at),
            "refunded": bool(r.refunded),
            "refund_amount": int(r.refund_amount or 0),
            "late_cancel": bool(r.late_cancel),
            "late_cancel_fee_applied": float(r.late_cancel_fee_applied or 0),
            "promoted_at": _iso(r.promoted_at),
        }
