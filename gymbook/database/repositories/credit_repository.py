from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .base import BaseRepository
from ...models.orm_models import CreditLedgerEntry, MemberCreditBalance, User


class CreditRepository(BaseRepository):
    def user_exists(self, user_id: str) -> bool:
        return self.db.execute(select(User.id).where(User.id == user_id)).first() is not None

    def ensure_balance(self, user_id: str, gym_id: str) -> None:
        """Creates the (user, gym) balance row at zero if it is missing."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(MemberCreditBalance).on_conflict_do_nothing(
                index_elements=["user_id", "gym_id"]
            )
        elif dialect == "sqlite":
            stmt = sqlite_insert(MemberCreditBalance).on_conflict_do_nothing(
                index_elements=["user_id", "gym_id"]
            )
        else:
            if self.current_balance(user_id, gym_id) is not None:
                return
            stmt = MemberCreditBalance.__table__.insert()
        self.db.execute(stmt.values(user_id=user_id, gym_id=gym_id, balance=0))

    def apply_delta(
        self, user_id: str, gym_id: str, amount: int, *, allow_negative: bool = False
    ) -> bool:
        """Conditional balance update; False when the balance would drop below zero."""
        self.ensure_balance(user_id, gym_id)
        stmt = update(MemberCreditBalance).where(
            MemberCreditBalance.user_id == user_id,
            MemberCreditBalance.gym_id == gym_id,
        )
        if not allow_negative and amount < 0:
            stmt = stmt.where(MemberCreditBalance.balance + amount >= 0)
        stmt = stmt.values(balance=MemberCreditBalance.balance + amount).execution_options(
            synchronize_session=False
        )
        result = self.db.execute(stmt)
        return bool(result.rowcount)

    def current_balance(self, user_id: str, gym_id: str) -> Optional[int]:
        """None when the member has never held credits at this gym."""
        row = self.db.execute(
            select(MemberCreditBalance.balance).where(
                MemberCreditBalance.user_id == user_id,
                MemberCreditBalance.gym_id == gym_id,
            )
        ).first()
        if row is None:
            return None
        return int(row[0] or 0)

    def add_entry(self, entry: CreditLedgerEntry) -> CreditLedgerEntry:
        self.db.add(entry)
        self.db.flush()
        return entry

    def history(
        self, user_id: str, gym_id: Optional[str] = None, limit: int = 50
    ) -> List[CreditLedgerEntry]:
        stmt = select(CreditLedgerEntry).where(CreditLedgerEntry.user_id == user_id)
        if gym_id:
            stmt = stmt.where(CreditLedgerEntry.gym_id == gym_id)
        stmt = stmt.order_by(
            CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc()
        ).limit(max(1, int(limit)))
        return list(self.db.execute(stmt).scalars().all())

    def ledger_sum(self, user_id: str, gym_id: str) -> int:
        stmt = select(func.coalesce(func.sum(CreditLedgerEntry.amount), 0)).where(
            CreditLedgerEntry.user_id == user_id,
            CreditLedgerEntry.gym_id == gym_id,
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def entry_count(self, user_id: str, gym_id: str) -> int:
        stmt = select(func.count(CreditLedgerEntry.id)).where(
            CreditLedgerEntry.user_id == user_id,
            CreditLedgerEntry.gym_id == gym_id,
        )
        return int(self.db.execute(stmt).scalar() or 0)
