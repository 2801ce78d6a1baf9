"""
Unit-of-work helper for booking operations.

``run_in_transaction`` serializes work on class instances and members, runs
the body, commits, and re-runs the whole body on serialization failures. The
body must be free of side effects other than its session writes, since it can
run more than once.
"""

import logging
import random
import threading
import time
import weakref
from contextlib import ExitStack
from typing import Callable, Iterable, NamedTuple, Optional, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from gymbook.errors import BookingError, TransactionConflictError
from gymbook.models.orm_models import ClassInstanceLock, User
from gymbook.utils import env_float, env_int

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 0.05
MAX_DELAY = 2.0


class InstanceKey(NamedTuple):
    gym_id: str
    class_id: str
    date_string: str

    @property
    def name(self) -> str:
        return f"{self.class_id}_{self.date_string}"


class MemberKey(NamedTuple):
    """Serializes per-member rules (weekly limits, counters) across instances."""

    user_id: str

    @property
    def name(self) -> str:
        return f"member:{self.user_id}"


LockKey = Union[InstanceKey, MemberKey]


class _InstanceLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()


_registry_lock = threading.Lock()
_instance_locks: "weakref.WeakValueDictionary[str, _InstanceLock]" = weakref.WeakValueDictionary()


def _get_instance_lock(name: str) -> _InstanceLock:
    with _registry_lock:
        lk = _instance_locks.get(name)
        if lk is None:
            lk = _InstanceLock()
            _instance_locks[name] = lk
        return lk


def lock_instance_row(db: Session, key: InstanceKey) -> None:
    """Row lock on the instance's lock row (PostgreSQL only)."""
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    db.execute(
        pg_insert(ClassInstanceLock)
        .values(gym_id=key.gym_id, class_id=key.class_id, date_string=key.date_string)
        .on_conflict_do_nothing(index_elements=["class_id", "date_string"])
    )
    db.execute(
        select(ClassInstanceLock.class_id)
        .where(
            ClassInstanceLock.class_id == key.class_id,
            ClassInstanceLock.date_string == key.date_string,
        )
        .with_for_update()
    )


def lock_member_row(db: Session, key: MemberKey) -> None:
    """Row lock on the member's users row (PostgreSQL only)."""
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    db.execute(select(User.id).where(User.id == key.user_id).with_for_update())


def lock_row(db: Session, key: LockKey) -> None:
    if isinstance(key, MemberKey):
        lock_member_row(db, key)
    else:
        lock_instance_row(db, key)


def _backoff_delay(attempt: int, base_delay: float) -> float:
    delay = min(base_delay * (2**attempt), MAX_DELAY)
    return delay + random.uniform(0, delay * 0.5)


def run_in_transaction(
    db: Session,
    fn: Callable[[Session], T],
    *,
    lock_keys: Iterable[LockKey] = (),
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> T:
    """Runs ``fn(db)`` and commits, retrying on write conflicts.

    Domain errors (``BookingError``) roll back and propagate untouched.
    ``OperationalError``/``IntegrityError`` roll back and re-run ``fn`` with
    jittered exponential backoff; exhaustion raises ``TransactionConflictError``.
    """
    attempts = max_attempts or env_int("BOOKING_TX_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    attempts = max(1, attempts)
    delay_base = base_delay if base_delay is not None else env_float(
        "BOOKING_TX_BASE_DELAY", DEFAULT_BASE_DELAY
    )
    # Sorted so two operations sharing any keys acquire them in the same order.
    keys = sorted(set(lock_keys), key=lambda k: k.name)
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        with ExitStack() as stack:
            # Strong refs keep the weak registry from dropping a held lock
            held = [_get_instance_lock(key.name) for key in keys]
            for holder in held:
                holder.lock.acquire()
                stack.callback(holder.lock.release)
            try:
                db.expire_all()
                for key in keys:
                    lock_row(db, key)
                result = fn(db)
                db.commit()
                return result
            except BookingError:
                db.rollback()
                raise
            except (OperationalError, IntegrityError) as e:
                db.rollback()
                last_error = e
            except Exception:
                db.rollback()
                raise

        if attempt + 1 < attempts:
            wait = _backoff_delay(attempt, delay_base)
            logger.warning(
                f"Transaction conflict (attempt {attempt + 1}/{attempts}), retrying in {wait:.3f}s: {last_error}"
            )
            time.sleep(wait)

    logger.error(f"Transaction retries exhausted after {attempts} attempts: {last_error}")
    raise TransactionConflictError(
        "The booking could not be completed due to concurrent activity. Please try again.",
        details={"attempts": attempts},
    )
