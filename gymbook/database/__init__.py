from .connection import SessionLocal, get_engine, configure
from .transactions import InstanceKey, MemberKey, run_in_transaction

__all__ = [
    "SessionLocal",
    "get_engine",
    "configure",
    "InstanceKey",
    "MemberKey",
    "run_in_transaction",
]
