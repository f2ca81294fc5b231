"""
Module: books_kernel.selectors.ledger_selector
Responsibility: Read-only balance and ledger queries.  Cached balances come
    straight from Account.balance; everything else is projected from the
    posted journal with the pure functions in domain/projection.py.
Architecture position: Kernel > Selectors.  May import from models/, the pure
    domain and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - The projection uses the same signed_delta arithmetic as the balance
      service, so verify_cached_balances() returning [] means every cached
      balance equals its full recomputation.

Failure modes:
    - AccountNotFoundError from cached_balance() / ledger() for an unknown id.
    - Zero balances and empty ledgers when nothing is posted.
"""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from books_kernel.config import AccountRule
from books_kernel.domain.dtos import AccountLedger, BalanceDrift, FinancialSummary
from books_kernel.domain.projection import compute_balances, running_ledger, summarize
from books_kernel.exceptions import AccountNotFoundError
from books_kernel.models.account import Account
from books_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from books_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector):
    """Balance, ledger and summary reads."""

    def __init__(self, session, account_rules: Mapping[str, AccountRule] | None = None):
        super().__init__(session)
        # Named rules for the summary sub-totals (see projection.SUMMARY_RULES)
        self._account_rules = dict(account_rules or {})

    def _account(self, account_id: UUID) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _accounts(self, company_id: UUID) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.company_id == company_id)
            .order_by(Account.account_code)
        )
        return list(self.session.scalars(stmt))

    def _posted_entries(self, company_id: UUID) -> list[JournalEntry]:
        stmt = (
            select(JournalEntry)
            .where(JournalEntry.company_id == company_id)
            .where(JournalEntry.status == JournalEntryStatus.POSTED.value)
            .order_by(JournalEntry.entry_date, JournalEntry.seq)
        )
        return list(self.session.scalars(stmt))

    def cached_balance(self, account_id: UUID) -> Decimal:
        """The stored Account.balance."""
        return self._account(account_id).balance

    def projected_balances(self, company_id: UUID) -> dict[UUID, Decimal]:
        """Every company account's balance recomputed from the journal."""
        return compute_balances(self._accounts(company_id), self._posted_entries(company_id))

    def ledger(
        self,
        account_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> AccountLedger:
        account = self._account(account_id)
        stmt = (
            select(JournalEntry)
            .join(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalLine.account_id == account_id)
            .where(JournalEntry.status == JournalEntryStatus.POSTED.value)
            .distinct()
        )
        entries = list(self.session.scalars(stmt))
        return running_ledger(account, entries, date_from, date_to)

    def summary(self, company_id: UUID, projected: bool = False) -> FinancialSummary:
        """
        Dashboard figures for a company.

        Args:
            projected: Aggregate recomputed balances instead of the cached
                ones.
        """
        accounts = self._accounts(company_id)
        if projected:
            balances = compute_balances(accounts, self._posted_entries(company_id))
            return summarize(accounts, balances, self._account_rules)
        return summarize(accounts, rules=self._account_rules)

    def verify_cached_balances(self, company_id: UUID) -> list[BalanceDrift]:
        """Accounts whose cached balance differs from the journal projection."""
        accounts = self._accounts(company_id)
        projected = compute_balances(accounts, self._posted_entries(company_id))
        return [
            BalanceDrift(
                account_id=account.id,
                account_name=account.account_name,
                cached=account.balance,
                projected=projected[account.id],
            )
            for account in accounts
            if account.balance != projected[account.id]
        ]
