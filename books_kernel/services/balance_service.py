"""
BalanceService -- incremental maintenance of cached account balances.

Responsibility:
    The only writer of Account.balance.  Applies the forward effect of a
    journal entry after it is created, and the exact inverse before it is
    deleted.

Architecture position:
    Kernel > Services.  Called by the posting and reversal engines.

Invariants enforced:
    - Per-line arithmetic is polarity.signed_delta() / inverse_delta(), so
      reverse_entry(apply_entry(x)) restores every balance exactly.
    - Every account is re-read with populate_existing (and FOR UPDATE where
      the database supports it) before its balance is written.  Accounts
      are locked in id order to keep lock acquisition deterministic.
    - Writes happen inside db.guards.balance_writer_scope().

Failure modes:
    - AccountNotFoundError: apply_entry() on a line whose account is gone.
    - OptimisticLockError: the account row changed under the write
      (version_id_col mismatch).

Known limitation:
    Without row locks (SQLite) two processes may still interleave their read
    and write; the version check turns that into OptimisticLockError rather
    than a lost update.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from books_kernel.db.guards import balance_writer_scope
from books_kernel.domain.polarity import inverse_delta, signed_delta
from books_kernel.exceptions import AccountNotFoundError, OptimisticLockError
from books_kernel.logging_config import get_logger
from books_kernel.models.account import Account
from books_kernel.models.journal import JournalEntry
from books_kernel.services.base import BaseService

logger = get_logger("services.balance")

ZERO = Decimal("0")


@dataclass(frozen=True)
class SkippedLine:
    """A journal line whose account no longer exists."""

    account_id: UUID
    account_name: str | None
    debit: Decimal
    credit: Decimal


@dataclass(frozen=True)
class BalanceUpdate:
    entry_id: UUID
    mutated_accounts: tuple[UUID, ...] = ()
    deltas: dict[UUID, Decimal] = field(default_factory=dict)
    skipped_lines: tuple[SkippedLine, ...] = ()


class BalanceService(BaseService):
    """
    Contract:
        apply_entry() adds each line's signed_delta to its account.
        reverse_entry() adds each line's inverse_delta, skipping lines whose
        account was deleted.  Both flush; neither commits.
    """

    def lock_accounts(self, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
        """Fresh, locked reads of the given accounts, keyed by id."""
        ids = sorted(set(account_ids), key=str)
        if not ids:
            return {}
        stmt = (
            select(Account)
            .where(Account.id.in_(ids))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {account.id: account for account in self.session.scalars(stmt)}

    def apply_entry(self, entry: JournalEntry) -> BalanceUpdate:
        """
        Apply a newly created entry to the cached balances.

        Raises:
            AccountNotFoundError: a line's account does not exist.
            OptimisticLockError: concurrent modification of an account.
        """
        return self._apply(entry, signed_delta, strict=True, action="apply")

    def reverse_entry(self, entry: JournalEntry) -> BalanceUpdate:
        """
        Undo an entry's effect on the cached balances.

        Lines whose account no longer exists are skipped and returned in
        BalanceUpdate.skipped_lines; the rest are still reversed.

        Raises:
            OptimisticLockError: concurrent modification of an account.
        """
        return self._apply(entry, inverse_delta, strict=False, action="reverse")

    def _apply(
        self,
        entry: JournalEntry,
        delta_fn: Callable[[str, Decimal, Decimal], Decimal],
        strict: bool,
        action: str,
    ) -> BalanceUpdate:
        accounts = self.lock_accounts(line.account_id for line in entry.lines)

        deltas: dict[UUID, Decimal] = {}
        skipped: list[SkippedLine] = []
        for line in entry.lines:
            account = accounts.get(line.account_id)
            if account is None:
                if strict:
                    raise AccountNotFoundError(line.account_id)
                skipped.append(
                    SkippedLine(
                        account_id=line.account_id,
                        account_name=line.account_name,
                        debit=line.debit,
                        credit=line.credit,
                    )
                )
                continue
            deltas[account.id] = deltas.get(account.id, ZERO) + delta_fn(
                account.account_type, line.debit, line.credit
            )

        with balance_writer_scope():
            for account_id, delta in deltas.items():
                account = accounts[account_id]
                account.balance = account.balance + delta
            try:
                self.session.flush()
            except StaleDataError as exc:
                stale = next(iter(deltas), None)
                logger.error(
                    "balance_write_conflict",
                    extra={"entry_id": str(entry.id), "action": action},
                )
                raise OptimisticLockError("Account", stale) from exc

        for account_id, delta in deltas.items():
            logger.debug(
                "balance_updated",
                extra={
                    "action": action,
                    "entry_id": str(entry.id),
                    "account_id": str(account_id),
                    "delta": delta,
                    "balance": accounts[account_id].balance,
                },
            )

        return BalanceUpdate(
            entry_id=entry.id,
            mutated_accounts=tuple(deltas),
            deltas=deltas,
            skipped_lines=tuple(skipped),
        )
