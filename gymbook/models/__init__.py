# Booking engine models package
from gymbook.models.orm_models import (
    # Base
    Base,
    # Gyms and registries
    Gym,
    MembershipTier,
    GymProgram,
    ProgramRank,
    # Members
    User,
    UserMembership,
    MemberRank,
    MemberCreditBalance,
    # Classes
    GymClass,
    ClassInstanceLock,
    # Attendance
    Attendance,
    # Credits
    CreditLedgerEntry,
)
from gymbook.models.enums import (
    BookingStatus,
    BookingType,
    LedgerEntryType,
    MemberStatus,
    RefundPolicy,
)

__all__ = [
    "Base",
    "Gym",
    "MembershipTier",
    "GymProgram",
    "ProgramRank",
    "User",
    "UserMembership",
    "MemberRank",
    "MemberCreditBalance",
    "GymClass",
    "ClassInstanceLock",
    "Attendance",
    "CreditLedgerEntry",
    "BookingStatus",
    "BookingType",
    "LedgerEntryType",
    "MemberStatus",
    "RefundPolicy",
]
