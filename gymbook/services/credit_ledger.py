"""
Credit ledger and the staff-facing credit operations.

Class credits are held per gym in ``member_credit_balances``. A balance only
changes through ``CreditLedger.apply``, which moves it and appends the
explaining ledger entry in the same unit of work.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from gymbook.database.repositories.credit_repository import CreditRepository
from gymbook.database.transactions import MemberKey, run_in_transaction
from gymbook.errors import (
    BookingError,
    InsufficientCreditsError,
    InvalidRequestError,
    UserNotFoundError,
    internal_error,
)
from gymbook.models.enums import LedgerEntryType
from gymbook.models.orm_models import CreditLedgerEntry, MemberCreditBalance, User
from gymbook.services.base import BaseService, Clock
from gymbook.utils import to_naive_utc

logger = logging.getLogger(__name__)


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db
        self.repo = CreditRepository(db)

    def balance(self, user_id: str, gym_id: str) -> int:
        return self.repo.current_balance(user_id, gym_id) or 0

    def apply(
        self,
        user_id: str,
        amount: int,
        entry_type: LedgerEntryType,
        description: str,
        *,
        now: datetime,
        gym_id: str,
        created_by: str = "system",
        attendance_id: Optional[str] = None,
        allow_negative: bool = False,
    ) -> CreditLedgerEntry:
        amount = int(amount)
        if amount == 0:
            raise InvalidRequestError("Credit amount must be non-zero")
        if not gym_id:
            raise InvalidRequestError("Credits are held per gym; a gym id is required")
        user = self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError("User does not exist.", details={"user_id": user_id})

        if not self.repo.apply_delta(user_id, gym_id, amount, allow_negative=allow_negative):
            balance = self.balance(user_id, gym_id)
            raise InsufficientCreditsError(
                f"Insufficient Credits. (Requires {-amount}, you have {balance})",
                details={"required": -amount, "balance": balance},
            )

        # The UPDATE bypassed the identity map
        row = self.db.get(MemberCreditBalance, (user_id, gym_id), populate_existing=True)
        self.db.expire(user, ["credit_balances"])

        entry = CreditLedgerEntry(
            user_id=user_id,
            gym_id=gym_id,
            amount=amount,
            balance_after=int(row.balance or 0),
            type=LedgerEntryType(entry_type).value,
            description=description,
            created_by=str(created_by or "system"),
            attendance_id=attendance_id,
            created_at=to_naive_utc(now),
        )
        return self.repo.add_entry(entry)

    def reconcile(self, user_id: str, gym_id: str) -> Dict[str, Any]:
        if not self.repo.user_exists(user_id):
            raise UserNotFoundError("User does not exist.", details={"user_id": user_id})
        balance = self.balance(user_id, gym_id)
        ledger_sum = self.repo.ledger_sum(user_id, gym_id)
        return {
            "user_id": user_id,
            "gym_id": gym_id,
            "balance": balance,
            "ledger_sum": ledger_sum,
            "drift": balance - ledger_sum,
            "entries": self.repo.entry_count(user_id, gym_id),
            "consistent": balance == ledger_sum,
        }


def _entry_to_dict(e: CreditLedgerEntry) -> Dict[str, Any]:
    return {
        "id": e.id,
        "user_id": e.user_id,
        "gym_id": e.gym_id,
        "amount": e.amount,
        "balance_after": e.balance_after,
        "type": e.type,
        "description": e.description,
        "created_by": e.created_by,
        "attendance_id": e.attendance_id,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


class CreditService(BaseService):
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.ledger = CreditLedger(db)

    def adjust_user_credits(
        self,
        user_id: str,
        gym_id: str,
        amount: int,
        reason: Optional[str] = None,
        admin_id: Optional[str] = None,
        *,
        force: bool = False,
    ) -> Dict[str, Any]:
        """Manual staff adjustment. Refuses to go negative unless forced."""
        try:
            amount = int(amount)
        except (TypeError, ValueError):
            return InvalidRequestError("Credit amount must be an integer").to_dict()
        if amount == 0:
            return InvalidRequestError("Credit amount must be non-zero").to_dict()

        description = (reason or "").strip() or (
            "Manual credit grant" if amount > 0 else "Manual credit deduction"
        )

        def _body(db):
            entry = self.ledger.apply(
                user_id,
                amount,
                LedgerEntryType.ADJUSTMENT,
                description,
                now=self.now(),
                gym_id=gym_id,
                created_by=admin_id or "admin",
                allow_negative=force,
            )
            return {
                "success": True,
                "new_balance": entry.balance_after,
                "entry": _entry_to_dict(entry),
            }

        try:
            result = run_in_transaction(self.db, _body, lock_keys=[MemberKey(user_id)])
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.exception(f"Error adjusting credits for user {user_id}: {e}")
            return internal_error(e)
        logger.info(
            f"Credits adjusted for user {user_id} at {gym_id}: {amount:+d} by {admin_id or 'admin'} "
            f"(balance {result['new_balance']})"
        )
        return result

    def get_user_credit_history(
        self, user_id: str, gym_id: Optional[str] = None, limit: int = 50
    ) -> Dict[str, Any]:
        try:
            entries = self.ledger.repo.history(user_id, gym_id, limit)
            return {"success": True, "history": [_entry_to_dict(e) for e in entries]}
        except Exception as e:
            logger.error(f"Error fetching credit history for user {user_id}: {e}")
            return internal_error(e)

    def reconcile(self, user_id: str, gym_id: str) -> Dict[str, Any]:
        try:
            report = self.ledger.reconcile(user_id, gym_id)
        except BookingError as e:
            return e.to_dict()
        except Exception as e:
            logger.error(f"Error reconciling credits for user {user_id}: {e}")
            return internal_error(e)
        if not report["consistent"]:
            logger.warning(
                f"Credit drift for user {user_id} at {gym_id}: balance={report['balance']} "
                f"ledger_sum={report['ledger_sum']}"
            )
        return {"success": True, **report}
