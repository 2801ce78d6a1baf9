from datetime import datetime
from typing import Optional

from sqlalchemy import case, select, update

from .base import BaseRepository
from ...models.orm_models import User, UserMembership, MemberRank


def _floored(column, delta: int):
    if delta >= 0:
        return column + delta
    return case((column + delta < 0, 0), else_=column + delta)


class UserRepository(BaseRepository):
    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id, populate_existing=True)

    def get_membership(self, user_id: str, gym_id: str) -> Optional[UserMembership]:
        stmt = select(UserMembership).where(
            UserMembership.user_id == user_id,
            UserMembership.gym_id == gym_id,
        )
        return self.db.execute(stmt).scalars().first()

    def get_rank(self, user_id: str, program_id: str) -> Optional[MemberRank]:
        return self.db.get(MemberRank, (user_id, program_id), populate_existing=True)

    def add_rank(self, rank: MemberRank) -> MemberRank:
        self.db.add(rank)
        self.db.flush()
        return rank

    def bump_attendance(
        self, user: User, delta: int, last_attended: Optional[datetime] = None
    ) -> None:
        """In-database counter update; never drops below zero."""
        values = {"attendance_count": _floored(User.attendance_count, delta)}
        if last_attended is not None:
            values["last_attended"] = last_attended
        self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(user, ["attendance_count", "last_attended"])

    def bump_rank_credits(self, rank: MemberRank, delta: int) -> None:
        self.db.execute(
            update(MemberRank)
            .where(MemberRank.user_id == rank.user_id, MemberRank.program_id == rank.program_id)
            .values(credits=_floored(MemberRank.credits, delta))
            .execution_options(synchronize_session=False)
        )
        self.db.expire(rank, ["credits"])
