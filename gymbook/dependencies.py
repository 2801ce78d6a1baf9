"""
FastAPI dependency providers: sessions, services and the acting identity.

Identity comes from the upstream auth gateway as two headers:
``X-Actor-Id`` (the acting user) and ``X-Staff-Gyms`` (comma-separated gym
ids the actor is staff for, ``*`` for all).
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from gymbook.database.connection import SessionLocal
from gymbook.services.base import Clock
from gymbook.services.booking_service import BookingService
from gymbook.services.credit_ledger import CreditService
from gymbook.services.eligibility_service import EligibilityService
from gymbook.services.roster_service import RosterService
from gymbook.utils import utc_now

logger = logging.getLogger(__name__)


def get_db_session() -> Generator[Session, None, None]:
    """Get a database session for the current request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_clock() -> Clock:
    return utc_now


def get_booking_service(
    session: Session = Depends(get_db_session), clock: Clock = Depends(get_clock)
) -> BookingService:
    """Get BookingService instance with current session."""
    return BookingService(session, clock)


def get_roster_service(
    session: Session = Depends(get_db_session), clock: Clock = Depends(get_clock)
) -> RosterService:
    """Get RosterService instance with current session."""
    return RosterService(session, clock)


def get_eligibility_service(
    session: Session = Depends(get_db_session), clock: Clock = Depends(get_clock)
) -> EligibilityService:
    """Get EligibilityService instance with current session."""
    return EligibilityService(session, clock)


def get_credit_service(
    session: Session = Depends(get_db_session), clock: Clock = Depends(get_clock)
) -> CreditService:
    """Get CreditService instance with current session."""
    return CreditService(session, clock)


@dataclass(frozen=True)
class Actor:
    user_id: Optional[str]
    staff_gyms: FrozenSet[str] = field(default_factory=frozenset)

    def is_staff_for(self, gym_id: str) -> bool:
        return "*" in self.staff_gyms or gym_id in self.staff_gyms


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_staff_gyms: Optional[str] = Header(default=None),
) -> Actor:
    gyms = frozenset(
        g.strip() for g in str(x_staff_gyms or "").split(",") if g.strip()
    )
    return Actor(user_id=(x_actor_id or "").strip() or None, staff_gyms=gyms)


def require_actor(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required"
        )
    return actor


def require_staff(gym_id: str, actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_staff_for(gym_id):
        logger.warning(f"Actor {actor.user_id} denied staff access to gym {gym_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required"
        )
    return actor


def ensure_member_access(actor: Actor, gym_id: str, member_id: str) -> None:
    if actor.user_id == member_id or actor.is_staff_for(gym_id):
        return
    logger.warning(f"Actor {actor.user_id} denied access to member {member_id} in gym {gym_id}")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN, detail="You can only view your own records"
    )


def require_member_access(
    gym_id: str, member_id: str, actor: Actor = Depends(require_actor)
) -> Actor:
    """The member themselves or staff of the gym."""
    ensure_member_access(actor, gym_id, member_id)
    return actor
