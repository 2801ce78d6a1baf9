"""
Time and rule evaluation for class bookings.

Everything here is pure: callers pass the class schedule, the effective rules
and the current instant, and get a decision back. Nothing touches the
database, so these functions are safe to re-run inside a retried transaction.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from gymbook.errors import InvalidRequestError, PolicyDeniedError

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_CANCEL_WINDOW_MINUTES = 120
DEFAULT_DURATION_MINUTES = 60

_RULE_KEYS = {
    "booking_window_days": ("booking_window_days", "bookingWindowDays"),
    "late_booking_minutes": ("late_booking_minutes", "lateBookingMinutes"),
    "cancel_window_hours": ("cancel_window_hours", "cancelWindowHours"),
    "late_cancel_fee": ("late_cancel_fee", "lateCancelFee"),
}


def _pick(data: Mapping[str, Any], names) -> Any:
    for n in names:
        if n in data:
            return data[n]
    return None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _opt_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class BookingRules:
    booking_window_days: Optional[int] = None
    late_booking_minutes: Optional[int] = None
    cancel_window_hours: Optional[float] = None
    late_cancel_fee: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "BookingRules":
        """Accepts snake_case or camelCase keys; blanks and junk read as unset."""
        if not data:
            return cls()
        return cls(
            booking_window_days=_opt_int(_pick(data, _RULE_KEYS["booking_window_days"])),
            late_booking_minutes=_opt_int(_pick(data, _RULE_KEYS["late_booking_minutes"])),
            cancel_window_hours=_opt_number(_pick(data, _RULE_KEYS["cancel_window_hours"])),
            late_cancel_fee=_opt_number(_pick(data, _RULE_KEYS["late_cancel_fee"])),
        )

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.booking_window_days,
                self.late_booking_minutes,
                self.cancel_window_hours,
                self.late_cancel_fee,
            )
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "booking_window_days": self.booking_window_days,
            "late_booking_minutes": self.late_booking_minutes,
            "cancel_window_hours": self.cancel_window_hours,
            "late_cancel_fee": self.late_cancel_fee,
        }

    @property
    def cancel_window_minutes(self) -> int:
        if self.cancel_window_hours is None:
            return DEFAULT_CANCEL_WINDOW_MINUTES
        return int(round(self.cancel_window_hours * 60))


def effective_rules(
    class_rules: Optional[Mapping[str, Any]],
    gym_defaults: Optional[Mapping[str, Any]] = None,
) -> BookingRules:
    """Class rules when the class defines any, else the gym defaults."""
    rules = BookingRules.from_mapping(class_rules)
    if rules.is_empty:
        return BookingRules.from_mapping(gym_defaults)
    return rules


@dataclass(frozen=True)
class ClassSchedule:
    time: str
    duration: int = DEFAULT_DURATION_MINUTES
    days: FrozenSet[str] = field(default_factory=frozenset)
    start_date: Optional[str] = None
    cancelled_dates: FrozenSet[str] = field(default_factory=frozenset)
    recurrence_end_date: Optional[str] = None

    @classmethod
    def from_class(cls, gym_class: Any) -> "ClassSchedule":
        days = getattr(gym_class, "days", None) or []
        cancelled = getattr(gym_class, "cancelled_dates", None) or []
        duration = _opt_int(getattr(gym_class, "duration", None))
        return cls(
            time=str(getattr(gym_class, "time", "") or "00:00"),
            duration=duration if duration and duration > 0 else DEFAULT_DURATION_MINUTES,
            days=frozenset(str(d).strip().lower() for d in days if d),
            start_date=getattr(gym_class, "start_date", None) or None,
            cancelled_dates=frozenset(str(d) for d in cancelled if d),
            recurrence_end_date=getattr(gym_class, "recurrence_end_date", None) or None,
        )


def parse_date(date_string: str) -> date:
    try:
        return date.fromisoformat(str(date_string or "").strip())
    except ValueError:
        raise InvalidRequestError(
            f"Invalid date '{date_string}', expected YYYY-MM-DD",
            details={"date_string": date_string},
        )


def parse_time(time_string: str) -> time:
    try:
        hh, mm = str(time_string or "").strip().split(":")[:2]
        return time(int(hh), int(mm))
    except (TypeError, ValueError):
        raise InvalidRequestError(
            f"Invalid class time '{time_string}', expected HH:MM",
            details={"time": time_string},
        )


def class_start(date_string: str, time_string: str, tz: tzinfo) -> datetime:
    """UTC instant at which the class starts, reading its wall clock in ``tz``."""
    local = datetime.combine(parse_date(date_string), parse_time(time_string))
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def week_range(date_string: str) -> Tuple[str, str]:
    """Monday and Sunday of the week containing ``date_string``."""
    d = parse_date(date_string)
    monday = d - timedelta(days=d.weekday())
    return monday.isoformat(), (monday + timedelta(days=6)).isoformat()


@dataclass(frozen=True)
class BookingTiming:
    starts_at: datetime
    ends_at: datetime
    retroactive: bool


def evaluate_booking_time(
    schedule: ClassSchedule,
    date_string: str,
    rules: BookingRules,
    now: datetime,
    *,
    privileged: bool,
    tz: tzinfo,
) -> BookingTiming:
    """Raises PolicyDeniedError when the instance cannot be booked right now.

    ``privileged`` (staff or forced) skips everything except the series end.
    """
    target = parse_date(date_string)

    if schedule.recurrence_end_date:
        end_date = parse_date(schedule.recurrence_end_date)
        if target > end_date:
            raise PolicyDeniedError(
                f"This class series ended on {end_date.isoformat()}.",
                type="series_ended",
                details={"recurrence_end_date": end_date.isoformat()},
            )

    if not privileged:
        if date_string in schedule.cancelled_dates:
            raise PolicyDeniedError(
                f"This class is cancelled on {date_string}.",
                type="class_cancelled",
            )
        if schedule.days:
            if WEEKDAYS[target.weekday()] not in schedule.days:
                raise PolicyDeniedError(
                    f"This class does not run on {WEEKDAYS[target.weekday()].capitalize()}s.",
                    type="not_scheduled",
                )
        elif schedule.start_date and schedule.start_date != date_string:
            raise PolicyDeniedError(
                f"This class only runs on {schedule.start_date}.",
                type="not_scheduled",
            )

    starts_at = class_start(date_string, schedule.time, tz)
    ends_at = starts_at + timedelta(minutes=schedule.duration)
    retroactive = now > ends_at

    if not privileged:
        if rules.booking_window_days is not None and rules.booking_window_days >= 0:
            local_today = now.astimezone(tz).date()
            last_bookable = local_today + timedelta(days=rules.booking_window_days)
            if target > last_bookable:
                opens_on = target - timedelta(days=rules.booking_window_days)
                raise PolicyDeniedError(
                    f"Booking for this class opens on {opens_on.isoformat()} "
                    f"({rules.booking_window_days} days in advance).",
                    type="window_not_open",
                    details={"opens_on": opens_on.isoformat()},
                )

        grace = (
            rules.late_booking_minutes
            if rules.late_booking_minutes is not None
            else schedule.duration
        )
        if now > starts_at + timedelta(minutes=grace):
            raise PolicyDeniedError(
                "It is too late to book this class.",
                type="too_late",
            )

    return BookingTiming(starts_at=starts_at, ends_at=ends_at, retroactive=retroactive)


@dataclass(frozen=True)
class CancellationDecision:
    safe: bool
    late_cancel: bool
    minutes_until_start: int
    window_minutes: int
    fee: Decimal


def evaluate_cancellation(
    snapshot: Optional[Mapping[str, Any]],
    live_rules: BookingRules,
    starts_at: datetime,
    now: datetime,
    *,
    was_waitlisted: bool,
    is_staff: bool,
) -> CancellationDecision:
    # The snapshot taken at booking time wins over whatever the class says now.
    rules = BookingRules.from_mapping(snapshot) if snapshot is not None else live_rules
    window = rules.cancel_window_minutes
    minutes_until = int((starts_at - now).total_seconds() // 60)
    within_window = minutes_until >= window
    safe = within_window or was_waitlisted or is_staff
    late = not safe
    fee = Decimal(str(rules.late_cancel_fee or 0)) if late else Decimal("0")
    return CancellationDecision(
        safe=safe,
        late_cancel=late,
        minutes_until_start=minutes_until,
        window_minutes=window,
        fee=fee,
    )
