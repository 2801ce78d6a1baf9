import pytest

from gymbook.database.repositories.class_repository import ClassRepository
from gymbook.database.repositories.user_repository import UserRepository
from gymbook.models.orm_models import MemberRank
from gymbook.services.booking_service import BookingOptions, CancelOptions
from gymbook.services.progression_service import ProgressionTracker
from tests.conftest import START, fetch_user, instance, member

pytestmark = pytest.mark.integration


def rank_of(db, user_id, program_id):
    db.expire_all()
    return db.get(MemberRank, (user_id, program_id))


@pytest.fixture
def program_class(seed):
    seed.program("bjj-prog", ["white", "blue", "purple"])
    return seed.gym_class(program_id="bjj-prog")


def test_first_attendance_seeds_rank_and_converts_prospect(service, seed, db, program_class):
    seed.user("alice", status="prospect")
    booked = service.book_member("gym1", instance(), member("alice"))

    result = service.check_in_member("gym1", booked["id"])

    assert result["rank_credits"] == 1
    assert result["program_id"] == "bjj-prog"
    rank = rank_of(db, "alice", "bjj-prog")
    assert rank.rank_id == "bjj-prog-white"
    assert rank.stripes == 0
    assert rank.credits == 1
    user = fetch_user(db, "alice")
    assert user.status == "active"
    assert user.converted_at is not None
    assert user.attendance_count == 1
    assert user.last_attended is not None


def test_existing_rank_gains_a_credit(service, seed, db, program_class):
    seed.user("alice")
    db.add(MemberRank(user_id="alice", program_id="bjj-prog", rank_id="bjj-prog-blue", stripes=2, credits=7))
    db.commit()
    booked = service.book_member("gym1", instance(), member("alice"))

    service.check_in_member("gym1", booked["id"])

    rank = rank_of(db, "alice", "bjj-prog")
    assert rank.credits == 8
    assert rank.rank_id == "bjj-prog-blue"
    assert rank.stripes == 2


def test_active_member_keeps_status(service, seed, db, program_class):
    seed.user("alice", status="active")
    booked = service.book_member("gym1", instance(), member("alice"))
    service.check_in_member("gym1", booked["id"])

    assert fetch_user(db, "alice").converted_at is None


def test_check_in_program_override(service, seed, db, program_class):
    seed.program("mt", ["novice"])
    seed.user("alice")
    booked = service.book_member("gym1", instance(), member("alice"))

    result = service.check_in_member("gym1", booked["id"], program_id="mt")

    assert result["program_id"] == "mt"
    assert rank_of(db, "alice", "mt").rank_id == "mt-novice"
    assert rank_of(db, "alice", "bjj-prog") is None


def test_program_without_ranks_skips_rank(service, seed, db):
    seed.program("empty", [])
    seed.gym_class(program_id="empty")
    seed.user("alice", status="prospect")
    booked = service.book_member("gym1", instance(), member("alice"))

    result = service.check_in_member("gym1", booked["id"])

    assert result["success"] is True
    assert result["rank_credits"] is None
    assert fetch_user(db, "alice").attendance_count == 1
    assert fetch_user(db, "alice").status == "prospect"


def test_retroactive_booking_records_progression(service, seed, db, program_class):
    seed.user("alice", status="prospect")

    result = service.book_member(
        "gym1", instance(date_string="2026-02-27"), member("alice"), BookingOptions(is_staff=True)
    )

    assert result["status"] == "attended"
    assert rank_of(db, "alice", "bjj-prog").credits == 1
    assert fetch_user(db, "alice").status == "active"


def test_cancelling_attended_booking_reverses_counters(service, seed, db, program_class):
    seed.user("alice")
    booked = service.book_member("gym1", instance(), member("alice"))
    service.check_in_member("gym1", booked["id"])

    service.cancel_booking("gym1", booked["id"], CancelOptions(is_staff=True))

    assert fetch_user(db, "alice").attendance_count == 0
    assert rank_of(db, "alice", "bjj-prog").credits == 0


def test_counters_survive_a_stale_member_object(session_factory, seed, db, program_class):
    seed.user("alice")
    now = START.replace(tzinfo=None)

    first = session_factory()
    second = session_factory()
    try:
        users = UserRepository(first)
        stale = users.get("alice")
        assert stale.attendance_count == 0

        other = UserRepository(second)
        ProgressionTracker(other, ClassRepository(second)).record_attendance(
            other.get("alice"), "gym1", "bjj-prog", now
        )
        second.commit()

        rank = ProgressionTracker(users, ClassRepository(first)).record_attendance(
            stale, "gym1", "bjj-prog", now
        )
        credits_seen = rank.credits
        first.commit()
    finally:
        first.close()
        second.close()

    assert credits_seen == 2
    assert fetch_user(db, "alice").attendance_count == 2
    assert rank_of(db, "alice", "bjj-prog").credits == 2
