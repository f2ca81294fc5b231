"""
Module: books_kernel.domain.projection
Responsibility: Pure projections of account balances from journal entries.
Architecture position: Kernel > Domain.  No I/O.  Works on any objects that
    expose the attributes below, ORM rows and plain test doubles alike:

        account: id, account_type (and account_code, account_name for ledgers)
        entry:   id, status, entry_date, seq, entry_number, reference,
                 description, lines
        line:    account_id, debit, credit

Invariants enforced:
    - Every account starts at zero and only posted entries contribute.
    - The per-line effect is polarity.signed_delta(), the same arithmetic the
      incremental balance service uses, so applying entries one at a time in
      any order lands on compute_balances().
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from books_kernel.domain.dtos import AccountLedger, FinancialSummary, LedgerRow
from books_kernel.domain.polarity import signed_delta

ZERO = Decimal("0")
_POSTED = "posted"


def _is_posted(entry: Any) -> bool:
    return str(getattr(entry.status, "value", entry.status)) == _POSTED


def _type_value(account_type: Any) -> str:
    return str(getattr(account_type, "value", account_type))


def compute_balances(
    accounts: Iterable[Any],
    journal_entries: Iterable[Any],
) -> dict[UUID, Decimal]:
    """
    Recompute every account balance from scratch.

    Lines that reference an account not in ``accounts`` are ignored.

    Returns:
        account id -> balance, with an entry for every given account.
    """
    types = {account.id: account.account_type for account in accounts}
    balances = {account_id: ZERO for account_id in types}

    for entry in journal_entries:
        if not _is_posted(entry):
            continue
        for line in entry.lines:
            account_type = types.get(line.account_id)
            if account_type is None:
                continue
            balances[line.account_id] += signed_delta(
                account_type, line.debit, line.credit
            )

    return balances


def _ledger_order(entry: Any) -> tuple:
    return (entry.entry_date, entry.seq if entry.seq is not None else 0)


def running_ledger(
    account: Any,
    journal_entries: Iterable[Any],
    date_from: date | None = None,
    date_to: date | None = None,
) -> AccountLedger:
    """
    Chronological ledger for one account with a running balance.

    Entries are ordered by (entry_date, seq).  Entries dated before
    ``date_from`` fold into the opening balance; entries after ``date_to``
    are left out.  Each line touching the account becomes one row.
    """
    touching = sorted(
        (
            e for e in journal_entries
            if _is_posted(e) and any(l.account_id == account.id for l in e.lines)
        ),
        key=_ledger_order,
    )

    opening = ZERO
    balance = ZERO
    rows: list[LedgerRow] = []

    for entry in touching:
        if date_to is not None and entry.entry_date > date_to:
            break
        for line in entry.lines:
            if line.account_id != account.id:
                continue
            balance += signed_delta(account.account_type, line.debit, line.credit)
            if date_from is not None and entry.entry_date < date_from:
                opening = balance
                continue
            rows.append(
                LedgerRow(
                    entry_id=entry.id,
                    entry_number=entry.entry_number,
                    entry_date=entry.entry_date,
                    reference=entry.reference,
                    description=line.description or entry.description,
                    debit=line.debit,
                    credit=line.credit,
                    balance=balance,
                )
            )

    return AccountLedger(
        account_id=account.id,
        account_code=account.account_code,
        account_name=account.account_name,
        account_type=_type_value(account.account_type),
        date_from=date_from,
        date_to=date_to,
        opening_balance=opening,
        rows=tuple(rows),
    )


SUMMARY_RULES = ("receivable", "payable", "cash", "inventory")


def summarize(
    accounts: Iterable[Any],
    balances: Mapping[UUID, Decimal] | None = None,
    rules: Mapping[str, Any] | None = None,
) -> FinancialSummary:
    """
    Aggregate balances by account type.

    Uses ``balances`` when given (e.g. the output of compute_balances),
    otherwise each account's cached ``balance``.  Expenses include cost of
    goods sold; operating expenses do not.

    ``rules`` maps the names in SUMMARY_RULES to AccountRule-like objects
    (anything with ``matches(account_type, account_name, account_code)``).
    An account adds to every sub-total whose rule it matches; a missing rule
    leaves that sub-total at zero.
    """
    rules = rules or {}
    totals: dict[str, Decimal] = {}
    subtotals = dict.fromkeys(SUMMARY_RULES, ZERO)
    for account in accounts:
        if balances is not None:
            amount = balances.get(account.id, ZERO)
        else:
            amount = account.balance
        key = _type_value(account.account_type)
        totals[key] = totals.get(key, ZERO) + amount

        for name in SUMMARY_RULES:
            rule = rules.get(name)
            if rule is not None and rule.matches(
                account.account_type,
                getattr(account, "account_name", ""),
                getattr(account, "account_code", ""),
            ):
                subtotals[name] += amount

    cogs = totals.get("cost_of_goods_sold", ZERO)
    operating = totals.get("expense", ZERO)

    return FinancialSummary(
        total_assets=totals.get("asset", ZERO),
        total_liabilities=totals.get("liability", ZERO),
        equity_before_income=totals.get("equity", ZERO),
        total_revenue=totals.get("revenue", ZERO),
        total_expenses=operating + cogs,
        cost_of_goods_sold=cogs,
        operating_expenses=operating,
        accounts_receivable=subtotals["receivable"],
        accounts_payable=subtotals["payable"],
        cash=subtotals["cash"],
        inventory=subtotals["inventory"],
    )
