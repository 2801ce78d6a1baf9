"""
Funding resolution: which source pays for a booking and how many credits it
costs. Pure functions over class and user data; accepts ORM objects or plain
dicts (snake_case or camelCase keys).
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from gymbook.errors import (
    BookingError,
    InsufficientCreditsError,
    InvalidRequestError,
    PolicyDeniedError,
)
from gymbook.models.enums import BookingType, MemberStatus

VALID_ACCESS_STATUSES = (MemberStatus.ACTIVE.value, MemberStatus.TRIALING.value)

DENIAL_MEMBERSHIP_INACTIVE = "membership_inactive"
DENIAL_INSUFFICIENT_CREDITS = "insufficient_credits"
DENIAL_MEMBERSHIP_REQUIRED = "membership_required"
DENIAL_WEEKLY_LIMIT = "weekly_limit"


def _field(obj: Any, *names: str, default: Any = None) -> Any:
    if obj is None:
        return default
    for n in names:
        if isinstance(obj, dict):
            if n in obj and obj[n] is not None:
                return obj[n]
        else:
            v = getattr(obj, n, None)
            if v is not None:
                return v
    return default


def _as_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def class_credit_cost(class_data: Any) -> int:
    return max(0, _as_int(_field(class_data, "credit_cost", "creditCost", default=0)))


def user_credit_balance(user_data: Any, gym_id: Optional[str] = None) -> int:
    """Credits the member holds at ``gym_id``.

    Reads the per-gym ``credit_balances`` rows (or a ``credits`` mapping keyed by
    gym id); a flat ``classCredits`` value is taken as already gym-scoped.
    """
    balances = _field(user_data, "credit_balances", "credits")
    if isinstance(balances, (list, tuple, dict)) and gym_id is not None:
        if isinstance(balances, dict):
            return _as_int(balances.get(gym_id, 0))
        for b in balances:
            if _field(b, "gym_id", "gymId") == gym_id:
                return _as_int(_field(b, "balance", default=0))
        return 0
    return _as_int(_field(user_data, "class_credits", "classCredits", default=0))


def find_membership(user_data: Any, gym_id: str) -> Optional[Any]:
    memberships: Iterable[Any] = _field(user_data, "memberships", default=[]) or []
    for m in memberships:
        if _field(m, "gym_id", "gymId") == gym_id:
            return m
    return None


@dataclass(frozen=True)
class FundingDecision:
    allowed: bool
    reason: str
    type: Optional[BookingType]
    cost: int
    denial: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "type": self.type.value if (self.allowed and self.type) else "denied",
            "cost": self.cost,
        }

    def to_error(self) -> BookingError:
        if self.denial == DENIAL_INSUFFICIENT_CREDITS:
            return InsufficientCreditsError(self.reason, details={"cost": self.cost})
        return PolicyDeniedError(self.reason, type=self.denial or "denied")


def can_user_book(class_data: Any, user_data: Any, gym_id: str) -> FundingDecision:
    """Membership entitlement, then credits, then free drop-in."""
    allowed_plans = list(
        _field(class_data, "allowed_membership_ids", "allowedMembershipIds", default=[]) or []
    )
    cost = class_credit_cost(class_data)
    credits = user_credit_balance(user_data, gym_id)
    drop_in = bool(_field(class_data, "drop_in_enabled", "dropInEnabled", default=False))

    membership = find_membership(user_data, gym_id)
    plan_id = _field(membership, "membership_id", "membershipId")
    plan_covers_class = membership is not None and plan_id in allowed_plans
    if plan_covers_class:
        status = str(_field(membership, "status", default="") or "").strip().lower()
        if status in VALID_ACCESS_STATUSES:
            return FundingDecision(True, "Membership Access", BookingType.MEMBERSHIP, 0)

    user_status = str(_field(user_data, "status", default="") or "").strip().lower()
    if user_status != MemberStatus.BANNED.value:
        if cost > 0 and credits >= cost:
            return FundingDecision(
                True, f"{cost} Credit(s) applied", BookingType.CREDIT, cost
            )
        if drop_in and cost == 0:
            return FundingDecision(True, "Open Registration", BookingType.DROP_IN, 0)

    if plan_covers_class:
        plan_status = _field(membership, "status", default=MemberStatus.INACTIVE.value)
        return FundingDecision(
            False,
            f"Your membership is currently {plan_status}.",
            None,
            cost,
            denial=DENIAL_MEMBERSHIP_INACTIVE,
        )
    if cost > 0:
        return FundingDecision(
            False,
            f"Insufficient Credits. (Requires {cost}, you have {credits})",
            None,
            cost,
            denial=DENIAL_INSUFFICIENT_CREDITS,
        )
    return FundingDecision(
        False, "Membership required to book.", None, cost, denial=DENIAL_MEMBERSHIP_REQUIRED
    )


def resolve_funding(
    class_data: Any,
    user_data: Any,
    gym_id: str,
    *,
    booking_type: Optional[str] = None,
    force: bool = False,
    waive_cost: bool = False,
    credit_cost_override: Optional[int] = None,
) -> FundingDecision:
    base_cost = (
        max(0, int(credit_cost_override))
        if credit_cost_override is not None
        else class_credit_cost(class_data)
    )

    if booking_type:
        chosen = BookingType.parse(booking_type)
        if chosen is BookingType.UNKNOWN:
            raise InvalidRequestError(
                f"Unknown booking type '{booking_type}'",
                details={"booking_type": booking_type},
            )
        cost = base_cost if (chosen is BookingType.CREDIT and not waive_cost) else 0
        return FundingDecision(True, "Staff selected funding", chosen, cost)

    if force and waive_cost:
        return FundingDecision(True, "Complimentary booking", BookingType.COMP, 0)

    if force:
        return FundingDecision(True, "Forced booking", BookingType.CREDIT, base_cost)

    return can_user_book(class_data, user_data, gym_id)


def apply_weekly_limit(
    decision: FundingDecision,
    *,
    used: int,
    limit: Optional[int],
    class_data: Any,
    user_data: Any,
    gym_id: Optional[str] = None,
) -> FundingDecision:
    """Over the tier's weekly limit, membership funding falls back to credits
    when affordable; otherwise the booking is denied."""
    if decision.type is not BookingType.MEMBERSHIP or not decision.allowed:
        return decision
    if not limit or limit <= 0 or used < limit:
        return decision

    cost = class_credit_cost(class_data)
    credits = user_credit_balance(user_data, gym_id)
    drop_in = bool(_field(class_data, "drop_in_enabled", "dropInEnabled", default=False))
    if drop_in and cost > 0 and credits >= cost:
        return FundingDecision(
            True,
            f"Weekly limit reached ({used}/{limit}). Using credits.",
            BookingType.CREDIT,
            cost,
        )
    return FundingDecision(
        False,
        f"Weekly booking limit reached ({used}/{limit}).",
        None,
        cost,
        denial=DENIAL_WEEKLY_LIMIT,
    )
