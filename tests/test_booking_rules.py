from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from gymbook.errors import InvalidRequestError, PolicyDeniedError
from gymbook.services.booking_rules import (
    BookingRules,
    ClassSchedule,
    class_start,
    effective_rules,
    evaluate_booking_time,
    evaluate_cancellation,
    week_range,
)

pytestmark = pytest.mark.unit

UTC = timezone.utc
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
EVERY_DAY = frozenset(
    ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
)


def schedule(**kw):
    kw.setdefault("time", "18:00")
    kw.setdefault("days", EVERY_DAY)
    return ClassSchedule(**kw)


class TestBookingRules:
    def test_reads_camel_and_snake_keys(self):
        rules = BookingRules.from_mapping(
            {"bookingWindowDays": "7", "cancel_window_hours": 24, "lateCancelFee": 5.5}
        )
        assert rules.booking_window_days == 7
        assert rules.cancel_window_hours == 24
        assert rules.late_cancel_fee == 5.5
        assert rules.late_booking_minutes is None

    def test_junk_values_read_as_unset(self):
        rules = BookingRules.from_mapping({"bookingWindowDays": "", "lateCancelFee": "abc"})
        assert rules.is_empty

    def test_class_rules_win_over_gym_defaults(self):
        rules = effective_rules({"cancelWindowHours": 4}, {"cancelWindowHours": 12})
        assert rules.cancel_window_hours == 4

    def test_gym_defaults_used_when_class_has_none(self):
        rules = effective_rules(None, {"cancelWindowHours": 12})
        assert rules.cancel_window_minutes == 720

    def test_default_cancel_window_is_two_hours(self):
        assert BookingRules().cancel_window_minutes == 120


class TestDates:
    def test_week_range_runs_monday_to_sunday(self):
        assert week_range("2026-03-04") == ("2026-03-02", "2026-03-08")
        assert week_range("2026-03-08") == ("2026-03-02", "2026-03-08")

    def test_invalid_date_is_rejected(self):
        with pytest.raises(InvalidRequestError):
            week_range("03/04/2026")

    def test_class_start_uses_local_wall_clock(self):
        start = class_start("2026-07-01", "18:00", ZoneInfo("America/New_York"))
        assert start == datetime(2026, 7, 1, 22, 0, tzinfo=UTC)


class TestBookingTime:
    def test_window_not_open_names_the_opening_date(self):
        rules = BookingRules(booking_window_days=7)
        with pytest.raises(PolicyDeniedError) as exc:
            evaluate_booking_time(
                schedule(), "2026-03-12", rules, NOW, privileged=False, tz=UTC
            )
        assert exc.value.type == "window_not_open"
        assert "2026-03-05" in exc.value.message
        assert exc.value.details["opens_on"] == "2026-03-05"

    def test_last_day_of_window_is_bookable(self):
        rules = BookingRules(booking_window_days=7)
        timing = evaluate_booking_time(
            schedule(), "2026-03-09", rules, NOW, privileged=False, tz=UTC
        )
        assert not timing.retroactive

    def test_staff_skip_the_window(self):
        rules = BookingRules(booking_window_days=1)
        timing = evaluate_booking_time(
            schedule(), "2026-04-30", rules, NOW, privileged=True, tz=UTC
        )
        assert timing.starts_at == datetime(2026, 4, 30, 18, 0, tzinfo=UTC)

    def test_too_late_after_grace(self):
        now = datetime(2026, 3, 2, 18, 31, tzinfo=UTC)
        rules = BookingRules(late_booking_minutes=30)
        with pytest.raises(PolicyDeniedError) as exc:
            evaluate_booking_time(schedule(), "2026-03-02", rules, now, privileged=False, tz=UTC)
        assert exc.value.type == "too_late"

    def test_grace_defaults_to_duration(self):
        now = datetime(2026, 3, 2, 18, 45, tzinfo=UTC)
        timing = evaluate_booking_time(
            schedule(duration=60), "2026-03-02", BookingRules(), now, privileged=False, tz=UTC
        )
        assert not timing.retroactive

    def test_staff_booking_after_the_class_is_retroactive(self):
        timing = evaluate_booking_time(
            schedule(), "2026-03-01", BookingRules(), NOW, privileged=True, tz=UTC
        )
        assert timing.retroactive

    def test_series_end_binds_staff_too(self):
        with pytest.raises(PolicyDeniedError) as exc:
            evaluate_booking_time(
                schedule(recurrence_end_date="2026-03-03"),
                "2026-03-04",
                BookingRules(),
                NOW,
                privileged=True,
                tz=UTC,
            )
        assert exc.value.type == "series_ended"

    def test_cancelled_date(self):
        with pytest.raises(PolicyDeniedError) as exc:
            evaluate_booking_time(
                schedule(cancelled_dates=frozenset(["2026-03-04"])),
                "2026-03-04",
                BookingRules(),
                NOW,
                privileged=False,
                tz=UTC,
            )
        assert exc.value.type == "class_cancelled"

    def test_day_outside_schedule(self):
        with pytest.raises(PolicyDeniedError) as exc:
            evaluate_booking_time(
                schedule(days=frozenset(["monday"])),
                "2026-03-04",
                BookingRules(),
                NOW,
                privileged=False,
                tz=UTC,
            )
        assert exc.value.type == "not_scheduled"

    def test_one_off_class_only_runs_on_its_start_date(self):
        one_off = schedule(days=frozenset(), start_date="2026-03-05")
        evaluate_booking_time(one_off, "2026-03-05", BookingRules(), NOW, privileged=False, tz=UTC)
        with pytest.raises(PolicyDeniedError):
            evaluate_booking_time(
                one_off, "2026-03-06", BookingRules(), NOW, privileged=False, tz=UTC
            )


class TestCancellation:
    STARTS = datetime(2026, 3, 2, 18, 0, tzinfo=UTC)

    def test_outside_window_is_safe(self):
        d = evaluate_cancellation(
            None, BookingRules(), self.STARTS, NOW, was_waitlisted=False, is_staff=False
        )
        assert d.safe
        assert not d.late_cancel
        assert d.fee == Decimal("0")
        assert d.window_minutes == 120

    def test_inside_window_is_late_and_charged(self):
        rules = BookingRules(cancel_window_hours=24, late_cancel_fee=10)
        d = evaluate_cancellation(
            None, rules, self.STARTS, NOW, was_waitlisted=False, is_staff=False
        )
        assert d.late_cancel
        assert d.fee == Decimal("10")
        assert d.minutes_until_start == 540

    def test_snapshot_overrides_live_rules(self):
        snapshot = BookingRules(cancel_window_hours=24, late_cancel_fee=10).to_snapshot()
        live = BookingRules(cancel_window_hours=1, late_cancel_fee=50)
        d = evaluate_cancellation(
            snapshot, live, self.STARTS, NOW, was_waitlisted=False, is_staff=False
        )
        assert d.late_cancel
        assert d.fee == Decimal("10")

    def test_empty_snapshot_still_beats_live_rules(self):
        live = BookingRules(cancel_window_hours=24, late_cancel_fee=50)
        d = evaluate_cancellation(
            BookingRules().to_snapshot(), live, self.STARTS, NOW, was_waitlisted=False, is_staff=False
        )
        assert d.safe
        assert d.window_minutes == 120

    def test_waitlisted_and_staff_cancels_are_never_late(self):
        rules = BookingRules(cancel_window_hours=24, late_cancel_fee=10)
        for kw in ({"was_waitlisted": True, "is_staff": False}, {"was_waitlisted": False, "is_staff": True}):
            d = evaluate_cancellation(None, rules, self.STARTS, NOW, **kw)
            assert d.safe
            assert d.fee == Decimal("0")
