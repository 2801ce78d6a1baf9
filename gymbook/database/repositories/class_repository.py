from typing import Iterable, List, Optional

from sqlalchemy import select

from .base import BaseRepository
from ...models.orm_models import Gym, GymClass, GymProgram, MembershipTier, ProgramRank


class ClassRepository(BaseRepository):
    """Read-only access to gym, class, tier and program registries."""

    def get_gym(self, gym_id: str) -> Optional[Gym]:
        return self.db.get(Gym, gym_id)

    def get_class(self, gym_id: str, class_id: str) -> Optional[GymClass]:
        cls = self.db.get(GymClass, class_id)
        if cls is None or cls.gym_id != gym_id:
            return None
        return cls

    def get_tier(self, gym_id: str, tier_id: Optional[str]) -> Optional[MembershipTier]:
        if not tier_id:
            return None
        tier = self.db.get(MembershipTier, tier_id)
        if tier is None or tier.gym_id != gym_id:
            return None
        return tier

    def public_tiers(self, gym_id: str, tier_ids: Iterable[str]) -> List[MembershipTier]:
        ids = [t for t in (tier_ids or []) if t]
        if not ids:
            return []
        stmt = (
            select(MembershipTier)
            .where(
                MembershipTier.gym_id == gym_id,
                MembershipTier.id.in_(ids),
                MembershipTier.visibility == "public",
                MembershipTier.active.is_(True),
            )
            .order_by(MembershipTier.name.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def first_rank(self, gym_id: str, program_id: str) -> Optional[ProgramRank]:
        program = self.db.get(GymProgram, program_id)
        if program is None or program.gym_id != gym_id:
            return None
        stmt = (
            select(ProgramRank)
            .where(ProgramRank.program_id == program_id)
            .order_by(ProgramRank.position.asc(), ProgramRank.id.asc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()
