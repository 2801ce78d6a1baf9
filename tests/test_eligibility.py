from datetime import datetime, timezone

import pytest

from gymbook.services.eligibility_service import EligibilityService
from tests.conftest import attendance_count, balance, instance, ledger_entries, member

pytestmark = pytest.mark.integration


@pytest.fixture
def eligibility(db, clock):
    return EligibilityService(db, clock)


@pytest.fixture
def limited(seed):
    """One-class-a-week tier covering both classes."""
    seed.tier("gold", weekly_limit=1)
    seed.gym_class("bjj", allowed_membership_ids=["gold"], drop_in_enabled=False)
    seed.gym_class("nogi", allowed_membership_ids=["gold"], drop_in_enabled=True, credit_cost=1)
    seed.user("alice", membership="gold")


class TestWeeklyLimit:
    def test_membership_books_within_limit(self, service, limited):
        result = service.book_member("gym1", instance("bjj", "2026-03-02"), member("alice"))

        assert result["booking_type"] == "membership"
        assert result["cost_used"] == 0

    def test_second_class_in_week_is_denied(self, service, limited):
        service.book_member("gym1", instance("bjj", "2026-03-02"), member("alice"))

        result = service.book_member("gym1", instance("bjj", "2026-03-04"), member("alice"))

        assert result["success"] is False
        assert result["code"] == "PolicyDenied"
        assert result["type"] == "weekly_limit"
        assert result["error"] == "Weekly booking limit reached (1/1)."

    def test_over_limit_falls_back_to_credits(self, service, limited, seed, db):
        seed.credits("alice", 1)
        service.book_member("gym1", instance("bjj", "2026-03-02"), member("alice"))

        result = service.book_member("gym1", instance("nogi", "2026-03-04"), member("alice"))

        assert result["booking_type"] == "credit"
        assert result["cost_used"] == 1
        assert balance(db, "alice") == 0

    def test_next_week_starts_fresh(self, service, limited):
        service.book_member("gym1", instance("bjj", "2026-03-02"), member("alice"))

        result = service.book_member("gym1", instance("bjj", "2026-03-09"), member("alice"))

        assert result["booking_type"] == "membership"

    def test_safe_cancel_frees_the_allotment(self, service, limited):
        first = service.book_member("gym1", instance("bjj", "2026-03-04"), member("alice"))
        service.cancel_booking("gym1", first["id"])

        result = service.book_member("gym1", instance("bjj", "2026-03-06"), member("alice"))

        assert result["success"] is True

    def test_late_cancel_still_counts(self, service, limited, clock):
        first = service.book_member("gym1", instance("bjj", "2026-03-04"), member("alice"))
        clock.set(datetime(2026, 3, 4, 17, 0, tzinfo=timezone.utc))
        cancelled = service.cancel_booking("gym1", first["id"])
        assert cancelled["late_cancel"] is True

        result = service.book_member("gym1", instance("bjj", "2026-03-06"), member("alice"))

        assert result["type"] == "weekly_limit"

    def test_rebooking_same_instance_does_not_count_itself(self, service, limited, clock):
        first = service.book_member("gym1", instance("bjj", "2026-03-04"), member("alice"))
        clock.set(datetime(2026, 3, 4, 17, 0, tzinfo=timezone.utc))
        service.cancel_booking("gym1", first["id"])

        again = service.book_member("gym1", instance("bjj", "2026-03-04"), member("alice"))

        assert again["success"] is True
        assert again["recovered"] is True


class TestCheckBookingEligibility:
    def test_reports_membership_and_usage(self, eligibility, service, limited):
        service.book_member("gym1", instance("bjj", "2026-03-02"), member("alice"))

        result = eligibility.check_booking_eligibility("gym1", "alice", instance("bjj", "2026-03-04"))

        assert result["success"] is True
        data = result["data"]
        assert data["instructor_name"] == "Coach Ana"
        assert data["active_plan_name"] == "Gold"
        assert data["weekly_usage"]["used"] == 1
        assert data["weekly_usage"]["limit"] == 1
        assert data["weekly_usage"]["classes"][0]["class_id"] == "bjj"
        assert data["eligibility"]["allowed"] is False
        assert data["eligibility"]["type"] == "denied"
        assert data["eligible_public_plans"] == [
            {"id": "gold", "name": "Gold", "price": None, "interval": None}
        ]

    def test_lists_only_public_active_plans(self, eligibility, seed):
        seed.tier("gold", price=99, interval="month")
        seed.tier("staff", visibility="private")
        seed.tier("legacy", active=False)
        seed.gym_class(allowed_membership_ids=["gold", "staff", "legacy"], drop_in_enabled=False)
        seed.user("bob")

        result = eligibility.check_booking_eligibility("gym1", "bob", instance())

        data = result["data"]
        assert data["eligibility"] == {
            "allowed": False,
            "reason": "Membership required to book.",
            "type": "denied",
            "cost": 0,
        }
        assert [p["id"] for p in data["eligible_public_plans"]] == ["gold"]
        assert data["eligible_public_plans"][0]["price"] == 99.0

    def test_is_read_only(self, eligibility, seed, db):
        seed.gym_class(credit_cost=1)
        seed.user("bob", credits=3)

        result = eligibility.check_booking_eligibility("gym1", "bob", instance())

        assert result["data"]["eligibility"]["type"] == "credit"
        assert attendance_count(db) == 0
        assert ledger_entries(db, "bob") == []
        assert balance(db, "bob") == 3

    def test_missing_entities(self, eligibility, seed):
        seed.user("bob")
        assert eligibility.check_booking_eligibility("gym1", "bob", instance())["code"] == "ClassNotFound"
        seed.gym_class()
        assert eligibility.check_booking_eligibility("gym1", "ghost", instance())["code"] == "UserNotFound"
        assert eligibility.check_booking_eligibility("gym1", "bob", {"id": "bjj"})["code"] == "InvalidRequest"


def test_weekly_class_count(eligibility, service, limited):
    service.book_member("gym1", instance("bjj", "2026-03-02"), member("alice"))

    result = eligibility.get_weekly_class_count("gym1", "alice", "2026-03-05")

    assert result["success"] is True
    assert result["count"] == 1
    assert result["start"] == "2026-03-02"
    assert result["end"] == "2026-03-08"
