import pytest

from gymbook.errors import InsufficientCreditsError, InvalidRequestError, PolicyDeniedError
from gymbook.models.enums import BookingType
from gymbook.services.funding import apply_weekly_limit, can_user_book, resolve_funding

pytestmark = pytest.mark.unit

GYM = "gym1"


def klass(**kw):
    data = {"allowedMembershipIds": ["gold"], "creditCost": 0, "dropInEnabled": False}
    data.update(kw)
    return data


def user(status="active", credits=0, membership=None, membership_status="active"):
    data = {"status": status, "classCredits": credits, "memberships": []}
    if membership:
        data["memberships"].append(
            {"gymId": GYM, "membershipId": membership, "status": membership_status}
        )
    return data


class TestCanUserBook:
    def test_active_membership_covers_class(self):
        d = can_user_book(klass(), user(membership="gold"), GYM)
        assert d.allowed
        assert d.type is BookingType.MEMBERSHIP
        assert d.cost == 0
        assert d.to_dict()["type"] == "membership"

    def test_membership_status_is_normalized(self):
        d = can_user_book(klass(), user(membership="gold", membership_status=" Trialing "), GYM)
        assert d.type is BookingType.MEMBERSHIP

    def test_membership_in_another_gym_does_not_count(self):
        u = user()
        u["memberships"].append({"gymId": "other", "membershipId": "gold", "status": "active"})
        d = can_user_book(klass(), u, GYM)
        assert not d.allowed
        assert d.reason == "Membership required to book."

    def test_credits_fund_when_membership_does_not(self):
        d = can_user_book(klass(creditCost=2), user(credits=3), GYM)
        assert d.allowed
        assert d.type is BookingType.CREDIT
        assert d.cost == 2

    def test_credits_are_read_for_the_booking_gym(self):
        u = {"status": "active", "memberships": [], "credits": {GYM: 1, "other": 5}}
        assert can_user_book(klass(creditCost=2), u, GYM).denial == "insufficient_credits"
        assert can_user_book(klass(creditCost=2), u, "other").type is BookingType.CREDIT

        rows = [{"gymId": "other", "balance": 5}]
        assert not can_user_book(klass(creditCost=2), dict(u, credits=rows), GYM).allowed

    def test_free_drop_in(self):
        d = can_user_book(klass(dropInEnabled=True), user(), GYM)
        assert d.type is BookingType.DROP_IN
        assert d.reason == "Open Registration"

    def test_inactive_membership_reason(self):
        d = can_user_book(klass(), user(membership="gold", membership_status="past_due"), GYM)
        assert not d.allowed
        assert d.reason == "Your membership is currently past_due."
        assert d.to_dict()["type"] == "denied"
        assert isinstance(d.to_error(), PolicyDeniedError)

    def test_membership_without_status_reads_inactive(self):
        d = can_user_book(klass(), user(membership="gold", membership_status=None), GYM)
        assert d.reason == "Your membership is currently inactive."

    def test_insufficient_credits(self):
        d = can_user_book(klass(creditCost=2), user(credits=1), GYM)
        assert d.reason == "Insufficient Credits. (Requires 2, you have 1)"
        assert isinstance(d.to_error(), InsufficientCreditsError)

    def test_banned_user_cannot_use_credits_or_drop_in(self):
        assert not can_user_book(klass(creditCost=1), user(status="banned", credits=5), GYM).allowed
        assert not can_user_book(klass(dropInEnabled=True), user(status="banned"), GYM).allowed

    def test_banned_user_with_membership_is_still_admitted(self):
        d = can_user_book(klass(), user(status="banned", membership="gold"), GYM)
        assert d.type is BookingType.MEMBERSHIP


class TestResolveFunding:
    def test_staff_selected_credit_uses_override(self):
        d = resolve_funding(klass(creditCost=2), user(), GYM, booking_type="credit", credit_cost_override=5)
        assert d.type is BookingType.CREDIT
        assert d.cost == 5

    def test_staff_selected_credit_with_waiver_is_free(self):
        d = resolve_funding(klass(creditCost=2), user(), GYM, booking_type="credit", waive_cost=True)
        assert d.cost == 0

    def test_staff_selected_type_is_normalized(self):
        d = resolve_funding(klass(), user(), GYM, booking_type="Drop-In")
        assert d.type is BookingType.DROP_IN

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidRequestError):
            resolve_funding(klass(), user(), GYM, booking_type="barter")

    def test_forced_waived_is_comp(self):
        d = resolve_funding(klass(creditCost=3), user(), GYM, force=True, waive_cost=True)
        assert d.type is BookingType.COMP
        assert d.cost == 0

    def test_forced_charges_class_cost(self):
        d = resolve_funding(klass(creditCost=3), user(), GYM, force=True)
        assert d.type is BookingType.CREDIT
        assert d.cost == 3


class TestWeeklyLimit:
    def membership(self):
        return can_user_book(klass(), user(membership="gold"), GYM)

    def test_under_limit_is_untouched(self):
        d = self.membership()
        assert apply_weekly_limit(d, used=1, limit=2, class_data=klass(), user_data=user()) is d

    def test_over_limit_falls_back_to_credits(self):
        d = apply_weekly_limit(
            self.membership(),
            used=2,
            limit=2,
            class_data=klass(creditCost=1, dropInEnabled=True),
            user_data=user(credits=1),
        )
        assert d.type is BookingType.CREDIT
        assert d.cost == 1

    def test_over_limit_without_fallback_is_denied(self):
        d = apply_weekly_limit(
            self.membership(), used=3, limit=2, class_data=klass(), user_data=user()
        )
        assert not d.allowed
        assert d.reason == "Weekly booking limit reached (3/2)."
        assert d.to_error().type == "weekly_limit"
