from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from gymbook.utils import as_aware_utc, to_naive_utc, utc_now

Clock = Callable[[], datetime]


class BaseService:
    """Holds the session and the clock shared by every service."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return as_aware_utc(self._clock())

    def _now_utc_naive(self) -> datetime:
        return to_naive_utc(self.now())
