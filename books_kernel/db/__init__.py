"""Database layer - engine, base classes, types, and write guards."""

from books_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from books_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from books_kernel.db.types import Money, MoneyAmount, round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "MoneyAmount",
    "round_money",
    "to_money",
]
