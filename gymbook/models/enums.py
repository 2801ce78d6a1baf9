"""
Closed value sets for booking records, funding sources and ledger entries.

Values are stored as plain strings in the database; these enums are the only
place the allowed strings are spelled out.
"""

from enum import Enum
from typing import Any, Optional


class BookingStatus(str, Enum):
    """Lifecycle state of one member's booking for one class instance."""

    BOOKED = "booked"
    WAITLISTED = "waitlisted"
    ATTENDED = "attended"
    CANCELLED = "cancelled"


SEATED_STATUSES = (BookingStatus.BOOKED.value, BookingStatus.ATTENDED.value)
ACTIVE_STATUSES = (
    BookingStatus.BOOKED.value,
    BookingStatus.WAITLISTED.value,
    BookingStatus.ATTENDED.value,
)


class BookingType(str, Enum):
    """Funding source that paid for a booking."""

    MEMBERSHIP = "membership"
    CREDIT = "credit"
    COMP = "comp"
    ADMIN_COMP = "admin_comp"
    DROP_IN = "drop-in"
    # Only produced when reading legacy rows with an unrecognized stored value.
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "BookingType":
        if isinstance(value, BookingType):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class LedgerEntryType(str, Enum):
    BOOKING = "booking"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class MemberStatus(str, Enum):
    PROSPECT = "prospect"
    ACTIVE = "active"
    TRIALING = "trialing"
    INACTIVE = "inactive"
    BANNED = "banned"


class RefundPolicy(str, Enum):
    """Staff override for the refund decision on cancellation."""

    REFUND = "refund"
    NO_REFUND = "no_refund"

    @classmethod
    def parse(cls, value: Any) -> Optional["RefundPolicy"]:
        if value is None or value == "":
            return None
        if isinstance(value, RefundPolicy):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None
