"""
ORM-level write guards for cached balances and posted journal entries.

===============================================================================
PROTECTED WRITES
===============================================================================

Entity        | Rule
--------------|-------------------------------------------------------------
Account       | ``balance`` changes only inside balance_writer_scope(), which
              | the balance service opens around its delta routine.
JournalEntry  | No field may change after creation.  Editing a posting means
JournalLine   | deleting the entry and creating a new one.

Both rules are checked in ``before_update`` mapper events, so the offending
flush is aborted before any SQL reaches the database.  Bulk UPDATE
statements bypass mapper events and are not covered.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator

from sqlalchemy import event, inspect

from books_kernel.exceptions import BalanceWriteViolationError, EntryImmutableError
from books_kernel.logging_config import get_logger

logger = get_logger("db.guards")

_balance_writer_active: ContextVar[bool] = ContextVar(
    "books_balance_writer_active", default=False
)


@contextmanager
def balance_writer_scope() -> Generator[None, None, None]:
    """Allow Account.balance changes flushed within this block."""
    token = _balance_writer_active.set(True)
    try:
        yield
    finally:
        _balance_writer_active.reset(token)


def _check_account_balance_write(mapper, connection, target):
    if _balance_writer_active.get():
        return
    hist = inspect(target).attrs.balance.history
    if not hist.has_changes():
        return
    logger.error(
        "balance_write_blocked",
        extra={
            "account_id": str(target.id),
            "account_name": target.account_name,
        },
    )
    raise BalanceWriteViolationError(target.id, target.account_name)


def _check_entry_immutability(mapper, connection, target):
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in ("updated_at", "updated_by", "lines", "entry"):
            continue
        if attr.history.has_changes():
            entity_type = type(target).__name__
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(target.id),
                    "field": attr.key,
                },
            )
            raise EntryImmutableError(entity_type, str(target.id), attr.key)


def register_balance_guard() -> None:
    """Register the write guard listeners (idempotent)."""
    from books_kernel.models.account import Account
    from books_kernel.models.journal import JournalEntry, JournalLine

    if not event.contains(Account, "before_update", _check_account_balance_write):
        event.listen(Account, "before_update", _check_account_balance_write)
    for model in (JournalEntry, JournalLine):
        if not event.contains(model, "before_update", _check_entry_immutability):
            event.listen(model, "before_update", _check_entry_immutability)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_balance_guard() -> None:
    """
    Remove the write guard listeners.

    WARNING: Only use this in tests that deliberately corrupt a cached
    balance to exercise drift detection.
    """
    from books_kernel.models.account import Account
    from books_kernel.models.journal import JournalEntry, JournalLine

    _safe_remove_listener(Account, "before_update", _check_account_balance_write)
    for model in (JournalEntry, JournalLine):
        _safe_remove_listener(model, "before_update", _check_entry_immutability)
