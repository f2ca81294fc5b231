"""
Module: books_kernel.domain.policies
Responsibility: Document-kind posting policies.  Each policy validates a
    document and turns it into a PostingPlan (journal entries, stock
    movements, payment allocations) without touching the database.
Architecture position: Kernel > Domain.  Pure.  The posting engine loads the
    chart of accounts, products and bills into a PostingContext and hands it
    in, so every decision here is made on plain values.

Posting rules
-------------
    Bill      DR expense | inventory   subtotal
              DR tax                   tax_total   (when > 0)
              CR accounts payable      total
              + one purchase movement per inventory line (+quantity at cost)

    Invoice   DR accounts receivable   total
              CR revenue               subtotal
              CR tax                   tax_total   (when > 0)
              and, with inventory lines, a second entry
              DR cost of goods sold    sum(quantity x product cost)
              CR inventory             same
              + one sale movement per inventory line (-quantity at cost)

    Payment   DR accounts payable      amount
              CR bank                  amount
              + one allocation per settled bill

Invariants enforced:
    - validate() collects every problem before anything is written.  A plan
      is only built for a document with no problems.
    - is_inventory_line() is the only test for "this line moves stock".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from books_kernel.config import AccountRule
from books_kernel.db.types import round_money
from books_kernel.domain.dtos import (
    AllocationEffect,
    EntrySpec,
    InventoryMovement,
    LineSpec,
    PostingPlan,
)
from books_kernel.domain.lifecycle import posting_fingerprint
from books_kernel.exceptions import DocumentValidationError

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountRef:
    id: UUID
    account_code: str
    account_name: str
    account_type: str


@dataclass(frozen=True)
class ProductRef:
    id: UUID
    product_name: str
    product_type: str
    cost_price: Decimal

    @property
    def is_inventory(self) -> bool:
        return self.product_type == "inventory"


@dataclass(frozen=True)
class PostingContext:
    """Reference data a policy may consult, keyed by id."""

    accounts: Mapping[UUID, AccountRef]
    products: Mapping[UUID, ProductRef] = field(default_factory=dict)
    bill_ids: frozenset[UUID] = frozenset()
    rules: Mapping[str, AccountRule] = field(default_factory=dict)
    money_places: int = 2

    def account(self, account_id: UUID | None) -> AccountRef | None:
        if account_id is None:
            return None
        return self.accounts.get(account_id)

    def find_by_rule(self, rule_name: str) -> AccountRef | None:
        """First account (by code) matching the named fallback rule."""
        rule = self.rules.get(rule_name)
        if rule is None:
            return None
        for ref in sorted(self.accounts.values(), key=lambda a: a.account_code):
            if rule.matches(ref.account_type, ref.account_name, ref.account_code):
                return ref
        return None

    def resolve(self, explicit_id: UUID | None, rule_name: str) -> AccountRef | None:
        """The document's own selection when present, else the fallback rule."""
        if explicit_id is not None:
            return self.account(explicit_id)
        return self.find_by_rule(rule_name)


# ---------------------------------------------------------------------------
# Totals and classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineAmounts:
    line_total: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_total: Decimal
    lines: tuple[LineAmounts, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_total


def compute_totals(document: Any, places: int = 2) -> DocumentTotals:
    """
    Derive line amounts and document totals.

    Line total = round(quantity x unit_price); tax per line =
    round(line total x tax_rate / 100).  Payments total their allocations
    and carry no tax.
    """
    allocations = getattr(document, "allocations", None)
    if allocations is not None:
        amount = sum((Decimal(a.amount) for a in allocations), ZERO)
        return DocumentTotals(subtotal=round_money(amount, places), tax_total=ZERO)

    amounts = []
    for line in document.lines:
        line_total = round_money(Decimal(line.quantity) * Decimal(line.unit_price), places)
        tax = round_money(line_total * Decimal(line.tax_rate or 0) / 100, places)
        amounts.append(LineAmounts(line_total=line_total, tax_amount=tax))

    return DocumentTotals(
        subtotal=sum((a.line_total for a in amounts), ZERO),
        tax_total=sum((a.tax_amount for a in amounts), ZERO),
        lines=tuple(amounts),
    )


def is_inventory_line(line: Any, products: Mapping[UUID, ProductRef]) -> ProductRef | None:
    """
    The product a line moves, or None for lines that do not touch stock.

    Lines without a product, lines whose product no longer exists, and
    lines for non-inventory or service products all return None.
    """
    if line.product_id is None:
        return None
    product = products.get(line.product_id)
    if product is None or not product.is_inventory:
        return None
    return product


def _missing_products(document: Any, products: Mapping[UUID, ProductRef]) -> list[str]:
    return [
        f"product {line.product_id} on line {i + 1} no longer exists; "
        "treated as non-inventory"
        for i, line in enumerate(document.lines)
        if line.product_id is not None and line.product_id not in products
    ]


def _line(ref: AccountRef, *, debit: Decimal = ZERO, credit: Decimal = ZERO,
          description: str | None = None) -> LineSpec:
    return LineSpec(
        account_id=ref.id,
        debit=debit,
        credit=credit,
        description=description,
        account_name=ref.account_name,
        account_code=ref.account_code,
    )


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class DocumentPolicy(ABC):
    """
    Posting rules for one document kind.

    Subclasses implement validate() and _build().  plan() is the public
    entry point: it refuses to build for an invalid document.
    """

    document_type: str
    source_type: str
    entry_prefix: str
    label: str

    @abstractmethod
    def validate(self, document: Any, ctx: PostingContext) -> list[str]:
        """Every reason the document cannot be posted (empty when it can)."""

    @abstractmethod
    def _build(self, document: Any, ctx: PostingContext, totals: DocumentTotals) -> PostingPlan:
        ...

    def plan(self, document: Any, ctx: PostingContext) -> PostingPlan:
        """
        Validate and build the posting plan.

        Raises:
            DocumentValidationError: listing every problem found.
        """
        problems = self.validate(document, ctx)
        if problems:
            raise DocumentValidationError(document.document_number, problems)
        return self._build(document, ctx, compute_totals(document, ctx.money_places))

    def entry_number(self, document: Any) -> str:
        return f"{self.entry_prefix}-{document.document_number}"

    def description(self, document: Any) -> str:
        if document.contact_name:
            return f"{self.label} {document.document_number} - {document.contact_name}"
        return f"{self.label} {document.document_number}"

    def _entry(self, document: Any, number: str, lines: list[LineSpec],
               description: str | None = None) -> EntrySpec:
        return EntrySpec(
            company_id=document.company_id,
            entry_number=number,
            entry_date=document.document_date,
            source_type=self.source_type,
            lines=tuple(lines),
            reference=document.document_number,
            source_id=document.id,
            description=description or self.description(document),
        )

    def _require(self, problems: list[str], ctx: PostingContext,
                 account_id: UUID | None, what: str) -> AccountRef | None:
        if account_id is None:
            problems.append(f"{what} account is required")
            return None
        ref = ctx.account(account_id)
        if ref is None:
            problems.append(f"{what} account {account_id} does not exist")
        return ref


class BillPolicy(DocumentPolicy):
    document_type = "bill"
    source_type = "bill"
    entry_prefix = "JE-BILL"
    label = "Bill"

    def _debit_account(self, document: Any, ctx: PostingContext) -> AccountRef | None:
        has_inventory = any(is_inventory_line(l, ctx.products) for l in document.lines)
        if has_inventory:
            inventory = ctx.resolve(document.inventory_account_id, "inventory")
            if inventory is not None:
                return inventory
        return ctx.account(document.expense_account_id)

    def validate(self, document: Any, ctx: PostingContext) -> list[str]:
        problems: list[str] = []
        if not document.lines:
            problems.append("at least one line is required")
        self._require(problems, ctx, document.ap_account_id, "Accounts payable")
        if self._debit_account(document, ctx) is None:
            self._require(problems, ctx, document.expense_account_id, "Expense")
        totals = compute_totals(document, ctx.money_places)
        if document.lines and totals.total <= ZERO:
            problems.append("total amount must be greater than zero")
        if totals.tax_total > ZERO:
            self._require(problems, ctx, document.tax_account_id, "Tax")
        return problems

    def _build(self, document: Any, ctx: PostingContext, totals: DocumentTotals) -> PostingPlan:
        debit_account = self._debit_account(document, ctx)
        ap = ctx.account(document.ap_account_id)

        lines = [_line(debit_account, debit=totals.subtotal)]
        if totals.tax_total > ZERO:
            lines.append(_line(ctx.account(document.tax_account_id), debit=totals.tax_total))
        lines.append(_line(ap, credit=totals.total))

        movements = []
        for line in document.lines:
            product = is_inventory_line(line, ctx.products)
            if product is None:
                continue
            movements.append(
                InventoryMovement(
                    product_id=product.id,
                    product_name=product.product_name,
                    quantity_delta=Decimal(line.quantity),
                    unit_cost=Decimal(line.unit_price),
                    transaction_type="purchase",
                    description=line.description,
                )
            )

        return PostingPlan(
            document_id=document.id,
            document_number=document.document_number,
            document_type=self.document_type,
            fingerprint=posting_fingerprint(document),
            entries=(self._entry(document, self.entry_number(document), lines),),
            movements=tuple(movements),
            warnings=tuple(_missing_products(document, ctx.products)),
        )


class InvoicePolicy(DocumentPolicy):
    document_type = "invoice"
    source_type = "invoice"
    entry_prefix = "JE-INV"
    label = "Invoice"

    def validate(self, document: Any, ctx: PostingContext) -> list[str]:
        problems: list[str] = []
        if not document.lines:
            problems.append("at least one line is required")
        self._require(problems, ctx, document.ar_account_id, "Accounts receivable")
        self._require(problems, ctx, document.revenue_account_id, "Revenue")
        totals = compute_totals(document, ctx.money_places)
        if document.lines and totals.total <= ZERO:
            problems.append("total amount must be greater than zero")
        if totals.tax_total > ZERO:
            self._require(problems, ctx, document.tax_account_id, "Tax")
        if any(is_inventory_line(l, ctx.products) for l in document.lines):
            if ctx.resolve(document.cogs_account_id, "cogs") is None:
                problems.append("a cost of goods sold account is required for inventory lines")
            if ctx.resolve(document.inventory_account_id, "inventory") is None:
                problems.append("an inventory account is required for inventory lines")
        return problems

    def _build(self, document: Any, ctx: PostingContext, totals: DocumentTotals) -> PostingPlan:
        ar = ctx.account(document.ar_account_id)
        revenue = ctx.account(document.revenue_account_id)

        lines = [
            _line(ar, debit=totals.total),
            _line(revenue, credit=totals.subtotal),
        ]
        if totals.tax_total > ZERO:
            lines.append(_line(ctx.account(document.tax_account_id), credit=totals.tax_total))
        entries = [self._entry(document, self.entry_number(document), lines)]

        movements = []
        cost_total = ZERO
        for line in document.lines:
            product = is_inventory_line(line, ctx.products)
            if product is None:
                continue
            quantity = Decimal(line.quantity)
            cost_total += quantity * product.cost_price
            movements.append(
                InventoryMovement(
                    product_id=product.id,
                    product_name=product.product_name,
                    quantity_delta=-quantity,
                    unit_cost=product.cost_price,
                    transaction_type="sale",
                    description=line.description,
                )
            )

        cost_total = round_money(cost_total, ctx.money_places)
        if cost_total > ZERO:
            cogs = ctx.resolve(document.cogs_account_id, "cogs")
            inventory = ctx.resolve(document.inventory_account_id, "inventory")
            entries.append(
                self._entry(
                    document,
                    f"JE-COGS-{document.document_number}",
                    [
                        _line(cogs, debit=cost_total),
                        _line(inventory, credit=cost_total),
                    ],
                    description=f"COGS for Invoice {document.document_number}",
                )
            )

        return PostingPlan(
            document_id=document.id,
            document_number=document.document_number,
            document_type=self.document_type,
            fingerprint=posting_fingerprint(document),
            entries=tuple(entries),
            movements=tuple(movements),
            warnings=tuple(_missing_products(document, ctx.products)),
        )


class PaymentPolicy(DocumentPolicy):
    document_type = "payment"
    source_type = "payment"
    entry_prefix = "JE-PMT"
    label = "Payment"

    def validate(self, document: Any, ctx: PostingContext) -> list[str]:
        problems: list[str] = []
        self._require(problems, ctx, document.ap_account_id, "Accounts payable")
        self._require(problems, ctx, document.bank_account_id, "Bank")
        if not document.allocations:
            problems.append("at least one bill must be selected")
        for allocation in document.allocations:
            if Decimal(allocation.amount) <= ZERO:
                problems.append(f"amount for bill {allocation.bill_id} must be greater than zero")
            if allocation.bill_id not in ctx.bill_ids:
                problems.append(f"bill {allocation.bill_id} does not exist")
        return problems

    def _build(self, document: Any, ctx: PostingContext, totals: DocumentTotals) -> PostingPlan:
        amount = totals.subtotal
        lines = [
            _line(ctx.account(document.ap_account_id), debit=amount),
            _line(ctx.account(document.bank_account_id), credit=amount),
        ]
        return PostingPlan(
            document_id=document.id,
            document_number=document.document_number,
            document_type=self.document_type,
            fingerprint=posting_fingerprint(document),
            entries=(self._entry(document, self.entry_number(document), lines),),
            allocations=tuple(
                AllocationEffect(bill_id=a.bill_id, amount=Decimal(a.amount))
                for a in document.allocations
            ),
        )


POLICIES: dict[str, DocumentPolicy] = {
    policy.document_type: policy
    for policy in (BillPolicy(), InvoicePolicy(), PaymentPolicy())
}


def policy_for(document_type: Any) -> DocumentPolicy:
    """
    Raises:
        KeyError: for a document type without a policy.
    """
    return POLICIES[str(getattr(document_type, "value", document_type))]
