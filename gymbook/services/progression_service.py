import logging
from datetime import datetime
from typing import Optional

from gymbook.database.repositories.class_repository import ClassRepository
from gymbook.database.repositories.user_repository import UserRepository
from gymbook.models.enums import MemberStatus
from gymbook.models.orm_models import MemberRank, User

logger = logging.getLogger(__name__)


class ProgressionTracker:
    """Attendance counters and rank-program credits for attended classes.

    Counters are incremented in the database, so two check-ins for the same
    member on different instances both count.
    """

    def __init__(self, users: UserRepository, classes: ClassRepository):
        self.users = users
        self.classes = classes

    def record_attendance(
        self,
        user: User,
        gym_id: str,
        program_id: Optional[str],
        now: datetime,
    ) -> Optional[MemberRank]:
        self.users.bump_attendance(user, 1, last_attended=now)
        if not program_id:
            return None

        rank = self.users.get_rank(user.id, program_id)
        if rank is not None:
            self.users.bump_rank_credits(rank, 1)
            return rank

        # First class in this program: seed the entry from the ladder's first rank
        first = self.classes.first_rank(gym_id, program_id)
        if first is None:
            logger.warning(
                f"Program {program_id} has no ranks in gym {gym_id}; skipping rank init for {user.id}"
            )
            return None
        rank = self.users.add_rank(
            MemberRank(
                user_id=user.id,
                program_id=program_id,
                rank_id=first.id,
                stripes=0,
                credits=1,
            )
        )
        if str(user.status or "").lower() == MemberStatus.PROSPECT.value:
            user.status = MemberStatus.ACTIVE.value
            user.converted_at = now
            logger.info(f"Member {user.id} converted from prospect on first attendance")
        return rank

    def reverse_attendance(self, user: User, program_id: Optional[str]) -> None:
        self.users.bump_attendance(user, -1)
        if not program_id:
            return
        rank = self.users.get_rank(user.id, program_id)
        if rank is not None:
            self.users.bump_rank_credits(rank, -1)
