"""
DTOs -- pure domain data transfer objects.

Responsibility:
    The immutable structures that flow between the pure domain and the
    services: entry specifications produced by the posting policies, the
    posting plan, anomaly records, and the ledger / summary read models.

Architecture position:
    Kernel > Domain.  Zero I/O, no ORM imports.

Data flow:
    SourceDocument -> (policy) -> PostingPlan[EntrySpec, InventoryMovement]
        -> (journal store) JournalEntry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

ZERO = Decimal("0")


@dataclass(frozen=True)
class LineSpec:
    """
    One journal line to be written.

    Exactly one of debit / credit is expected to be positive.  Negative
    amounts are rejected by the journal store, not here, so that a policy
    bug surfaces as InvalidLineAmountError with the account attached.
    """

    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None
    account_name: str | None = None
    account_code: str | None = None


@dataclass(frozen=True)
class EntrySpec:
    """A complete journal entry ready for JournalStore.create_entry()."""

    company_id: UUID
    entry_number: str
    entry_date: date
    source_type: str
    lines: tuple[LineSpec, ...]
    reference: str | None = None
    source_id: UUID | None = None
    description: str | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


@dataclass(frozen=True)
class InventoryMovement:
    """
    Stock change caused by one inventory-type document line.

    quantity_delta is positive for purchases (bills) and negative for
    sales (invoices).
    """

    product_id: UUID
    product_name: str
    quantity_delta: Decimal
    unit_cost: Decimal
    transaction_type: str
    description: str | None = None

    @property
    def total_value(self) -> Decimal:
        return abs(self.quantity_delta) * self.unit_cost


@dataclass(frozen=True)
class AllocationEffect:
    """Amount a payment settles against one bill."""

    bill_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class PostingPlan:
    """
    Everything a posting will do, computed before any side effect.

    The first entry is the document's primary entry; its id is written back
    to the document as journal_entry_id.
    """

    document_id: UUID
    document_number: str
    document_type: str
    fingerprint: str
    entries: tuple[EntrySpec, ...]
    movements: tuple[InventoryMovement, ...] = ()
    allocations: tuple[AllocationEffect, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def account_ids(self) -> tuple[UUID, ...]:
        seen: dict[UUID, None] = {}
        for entry in self.entries:
            for line in entry.lines:
                seen.setdefault(line.account_id, None)
        return tuple(seen)


class AnomalyKind(str, Enum):
    """Non-fatal irregularities recorded while posting or reversing."""

    ORPHANED_LINE = "orphaned_line"
    MISSING_PRODUCT = "missing_product"
    DANGLING_ENTRY_REFERENCE = "dangling_entry_reference"
    MISSING_BILL = "missing_bill"


@dataclass(frozen=True)
class Anomaly:
    kind: AnomalyKind
    entity_id: UUID | None
    message: str


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerRow:
    """One entry's effect on a single account, with the running balance."""

    entry_id: UUID
    entry_number: str
    entry_date: date
    reference: str | None
    description: str | None
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class AccountLedger:
    """
    Running-balance ledger for one account over an optional date range.

    opening_balance carries the effect of every posted entry dated before
    date_from.
    """

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    date_from: date | None
    date_to: date | None
    opening_balance: Decimal
    rows: tuple[LedgerRow, ...] = field(default_factory=tuple)

    @property
    def closing_balance(self) -> Decimal:
        if self.rows:
            return self.rows[-1].balance
        return self.opening_balance

    @property
    def total_debits(self) -> Decimal:
        return sum((r.debit for r in self.rows), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((r.credit for r in self.rows), ZERO)


@dataclass(frozen=True)
class FinancialSummary:
    """Headline figures by account type, as a dashboard shows them."""

    total_assets: Decimal
    total_liabilities: Decimal
    equity_before_income: Decimal
    total_revenue: Decimal
    total_expenses: Decimal
    cost_of_goods_sold: Decimal
    operating_expenses: Decimal
    # Sub-totals of accounts recognised by the summary rules
    accounts_receivable: Decimal = ZERO
    accounts_payable: Decimal = ZERO
    cash: Decimal = ZERO
    inventory: Decimal = ZERO

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses

    @property
    def total_equity(self) -> Decimal:
        return self.equity_before_income + self.net_income

    @property
    def gross_profit(self) -> Decimal:
        return self.total_revenue - self.cost_of_goods_sold

    @property
    def gross_margin(self) -> Decimal:
        """Gross profit as a percentage of revenue (0 without revenue)."""
        if self.total_revenue == ZERO:
            return ZERO
        return self.gross_profit / self.total_revenue * 100

    @property
    def net_margin(self) -> Decimal:
        if self.total_revenue == ZERO:
            return ZERO
        return self.net_income / self.total_revenue * 100

    @property
    def balance_sheet_check(self) -> Decimal:
        """assets - (liabilities + equity); zero when the books balance."""
        return self.total_assets - (self.total_liabilities + self.total_equity)

    @property
    def is_balanced(self) -> bool:
        return abs(self.balance_sheet_check) <= Decimal("0.01")


@dataclass(frozen=True)
class BalanceDrift:
    """Cached balance that disagrees with the journal."""

    account_id: UUID
    account_name: str
    cached: Decimal
    projected: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached - self.projected
