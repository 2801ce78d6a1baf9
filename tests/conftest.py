import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from gymbook.database.connection import build_engine
from gymbook.models.orm_models import (
    Attendance,
    Base,
    CreditLedgerEntry,
    Gym,
    GymClass,
    GymProgram,
    MemberCreditBalance,
    MembershipTier,
    ProgramRank,
    User,
    UserMembership,
)
from gymbook.services.booking_rules import WEEKDAYS
from gymbook.services.booking_service import BookingService

# Monday
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
GYM_ID = "gym1"


class FrozenClock:
    def __init__(self, start: datetime):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'gymbook_test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def service(db, clock):
    return BookingService(db, clock)


class Seed:
    """Factories that write straight to the database and commit."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def gym(self, gym_id: str = GYM_ID, **kw) -> Gym:
        return self._save(Gym(id=gym_id, name=kw.pop("name", "Test Gym"), **kw))

    def gym_class(self, class_id: str = "bjj", gym_id: str = GYM_ID, **kw) -> GymClass:
        defaults: Dict[str, Any] = dict(
            name="BJJ Fundamentals",
            instructor_name="Coach Ana",
            time="18:00",
            duration=60,
            days=list(WEEKDAYS),
            max_capacity=None,
            credit_cost=0,
            drop_in_enabled=True,
            allowed_membership_ids=[],
            booking_rules=None,
            cancelled_dates=[],
        )
        defaults.update(kw)
        return self._save(GymClass(id=class_id, gym_id=gym_id, **defaults))

    def user(
        self,
        user_id: str,
        credits: int = 0,
        status: str = "active",
        membership: Optional[str] = None,
        membership_status: str = "active",
        gym_id: str = GYM_ID,
        **kw,
    ) -> User:
        user = User(
            id=user_id,
            name=kw.pop("name", user_id.title()),
            status=status,
            **kw,
        )
        self.db.add(user)
        if credits:
            self.db.add(MemberCreditBalance(user_id=user_id, gym_id=gym_id, balance=credits))
        if membership:
            self.db.add(
                UserMembership(
                    user_id=user_id,
                    gym_id=gym_id,
                    membership_id=membership,
                    status=membership_status,
                )
            )
        self.db.commit()
        return user

    def credits(self, user_id: str, amount: int, gym_id: str = GYM_ID) -> MemberCreditBalance:
        return self._save(MemberCreditBalance(user_id=user_id, gym_id=gym_id, balance=amount))

    def tier(self, tier_id: str, gym_id: str = GYM_ID, **kw) -> MembershipTier:
        defaults: Dict[str, Any] = dict(
            name=tier_id.title(), weekly_limit=None, visibility="public", active=True
        )
        defaults.update(kw)
        return self._save(MembershipTier(id=tier_id, gym_id=gym_id, **defaults))

    def program(self, program_id: str, ranks: List[str], gym_id: str = GYM_ID) -> GymProgram:
        program = GymProgram(id=program_id, gym_id=gym_id, name=program_id.upper())
        self.db.add(program)
        for pos, name in enumerate(ranks):
            self.db.add(
                ProgramRank(
                    id=f"{program_id}-{name}", program_id=program_id, name=name, position=pos
                )
            )
        self.db.commit()
        return program


@pytest.fixture
def seed(db):
    s = Seed(db)
    s.gym()
    return s


def instance(class_id: str = "bjj", date_string: str = "2026-03-04") -> Dict[str, str]:
    return {"id": class_id, "date_string": date_string}


def member(user_id: str) -> Dict[str, str]:
    return {"id": user_id, "name": user_id.title()}


def fetch_attendance(db, attendance_id: str) -> Optional[Attendance]:
    db.expire_all()
    return db.get(Attendance, attendance_id)


def fetch_user(db, user_id: str) -> User:
    db.expire_all()
    return db.get(User, user_id)


def balance(db, user_id: str, gym_id: str = GYM_ID) -> int:
    db.expire_all()
    row = db.get(MemberCreditBalance, (user_id, gym_id))
    return row.balance if row is not None else 0


def ledger_entries(db, user_id: str) -> List[CreditLedgerEntry]:
    db.expire_all()
    stmt = (
        select(CreditLedgerEntry)
        .where(CreditLedgerEntry.user_id == user_id)
        .order_by(CreditLedgerEntry.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def attendance_count(db) -> int:
    return int(db.execute(select(func.count(Attendance.id))).scalar() or 0)
