from .attendance_repository import AttendanceRepository, booking_id
from .class_repository import ClassRepository
from .credit_repository import CreditRepository
from .user_repository import UserRepository

__all__ = [
    "AttendanceRepository",
    "ClassRepository",
    "CreditRepository",
    "UserRepository",
    "booking_id",
]
