from typing import List, Optional, Any
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    Index,
    JSON,
    func,
    true,
    false,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


# --- Gyms and registries (read-only for the booking engine) ---


class Gym(Base):
    __tablename__ = "gyms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    # Gym-wide booking rules, used when a class carries no rules of its own.
    default_booking_rules: Mapped[Optional[Any]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp()
    )

    programs: Mapped[List["GymProgram"]] = relationship(
        "GymProgram", back_populates="gym", cascade="all, delete-orphan"
    )


class MembershipTier(Base):
    __tablename__ = "membership_tiers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gym_id: Mapped[str] = mapped_column(
        ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    weekly_limit: Mapped[Optional[int]] = mapped_column(Integer)
    visibility: Mapped[str] = mapped_column(String(20), server_default="public")
    active: Mapped[bool] = mapped_column(Boolean, server_default=true())
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    interval: Mapped[Optional[str]] = mapped_column(String(20))

    __table_args__ = (Index("idx_membership_tiers_gym_id", "gym_id"),)


class GymProgram(Base):
    __tablename__ = "gym_programs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gym_id: Mapped[str] = mapped_column(
        ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    gym: Mapped["Gym"] = relationship("Gym", back_populates="programs")
    ranks: Mapped[List["ProgramRank"]] = relationship(
        "ProgramRank",
        back_populates="program",
        cascade="all, delete-orphan",
        order_by="ProgramRank.position",
    )

    __table_args__ = (Index("idx_gym_programs_gym_id", "gym_id"),)


class ProgramRank(Base):
    __tablename__ = "program_ranks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    program_id: Mapped[str] = mapped_column(
        ForeignKey("gym_programs.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    program: Mapped["GymProgram"] = relationship("GymProgram", back_populates="ranks")

    __table_args__ = (Index("idx_program_ranks_program_position", "program_id", "position"),)


# --- Members ---


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    photo_url: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="active")
    attendance_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_attended: Mapped[Optional[datetime]] = mapped_column(DateTime)
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp()
    )

    memberships: Mapped[List["UserMembership"]] = relationship(
        "UserMembership", back_populates="user", cascade="all, delete-orphan"
    )
    ranks: Mapped[List["MemberRank"]] = relationship(
        "MemberRank", back_populates="user", cascade="all, delete-orphan"
    )
    credit_balances: Mapped[List["MemberCreditBalance"]] = relationship(
        "MemberCreditBalance", back_populates="user", cascade="all, delete-orphan"
    )


class UserMembership(Base):
    __tablename__ = "user_memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    gym_id: Mapped[str] = mapped_column(
        ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False
    )
    membership_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[Optional[str]] = mapped_column(String(30))

    user: Mapped["User"] = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("user_id", "gym_id", name="user_memberships_user_id_gym_id_key"),
        Index("idx_user_memberships_user_id", "user_id"),
    )


class MemberRank(Base):
    __tablename__ = "member_ranks"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    program_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rank_id: Mapped[Optional[str]] = mapped_column(String(64))
    stripes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    credits: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    user: Mapped["User"] = relationship("User", back_populates="ranks")


class MemberCreditBalance(Base):
    """Per-gym class credits. Only CreditLedger.apply changes ``balance``."""

    __tablename__ = "member_credit_balances"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    gym_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    user: Mapped["User"] = relationship("User", back_populates="credit_balances")


# --- Classes ---


class GymClass(Base):
    __tablename__ = "classes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gym_id: Mapped[str] = mapped_column(
        ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    instructor_name: Mapped[Optional[str]] = mapped_column(String(255))
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, server_default="60")
    # Lowercase weekday names; empty for single events.
    days: Mapped[Optional[Any]] = mapped_column(JSONType)
    start_date: Mapped[Optional[str]] = mapped_column(String(10))
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer)
    credit_cost: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    drop_in_enabled: Mapped[bool] = mapped_column(Boolean, server_default=false())
    allowed_membership_ids: Mapped[Optional[Any]] = mapped_column(JSONType)
    booking_rules: Mapped[Optional[Any]] = mapped_column(JSONType)
    cancelled_dates: Mapped[Optional[Any]] = mapped_column(JSONType)
    recurrence_end_date: Mapped[Optional[str]] = mapped_column(String(10))
    program_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp()
    )

    __table_args__ = (Index("idx_classes_gym_id", "gym_id"),)


class ClassInstanceLock(Base):
    """One row per (class, date) touched by the engine; locked FOR UPDATE."""

    __tablename__ = "class_instance_locks"

    class_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    date_string: Mapped[str] = mapped_column(String(10), primary_key=True)
    gym_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp()
    )


# --- Attendance ---


class Attendance(Base):
    __tablename__ = "attendance"

    # "{class_id}_{date_string}_{member_id}"
    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    gym_id: Mapped[str] = mapped_column(
        ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False
    )
    class_id: Mapped[str] = mapped_column(String(64), nullable=False)
    class_name: Mapped[Optional[str]] = mapped_column(String(255))
    instructor_name: Mapped[Optional[str]] = mapped_column(String(255))
    date_string: Mapped[str] = mapped_column(String(10), nullable=False)
    class_time: Mapped[Optional[str]] = mapped_column(String(5))
    class_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime)
    member_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    member_name: Mapped[Optional[str]] = mapped_column(String(255))
    member_photo: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    booking_type: Mapped[str] = mapped_column(String(20), nullable=False, server_default="unknown")
    cost_used: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    booking_rules_snapshot: Mapped[Optional[Any]] = mapped_column(JSONType)
    program_id: Mapped[Optional[str]] = mapped_column(String(64))
    booked_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    late_cancel: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    late_cancel_fee_applied: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, server_default="0"
    )
    promoted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_attendance_instance_status", "class_id", "date_string", "status"),
        Index("idx_attendance_instance_booked_at", "class_id", "date_string", "booked_at"),
        Index("idx_attendance_gym_member_date", "gym_id", "member_id", "date_string"),
        Index("idx_attendance_gym_date", "gym_id", "date_string"),
    )


# --- Credits ---


class CreditLedgerEntry(Base):
    """Append-only; rows are never updated or deleted."""

    __tablename__ = "credit_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    gym_id: Mapped[Optional[str]] = mapped_column(String(64))
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, server_default="system")
    attendance_id: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_credit_ledger_user_created", "user_id", "created_at"),
        Index("idx_credit_ledger_user_gym", "user_id", "gym_id"),
    )
