"""
Posting policy tests (pure, no database).

Tests cover:
- Bill, invoice and payment journal shapes
- Inventory classification and COGS at product cost
- Validation problems collected before any plan is built
- Fallback account resolution through configured rules
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from books_kernel.config import AccountRule
from books_kernel.domain.policies import (
    AccountRef,
    BillPolicy,
    InvoicePolicy,
    PaymentPolicy,
    PostingContext,
    ProductRef,
    compute_totals,
    is_inventory_line,
    policy_for,
)
from books_kernel.exceptions import DocumentValidationError

ZERO = Decimal("0")


@dataclass
class Line:
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = ZERO
    product_id: UUID | None = None
    description: str | None = None


@dataclass
class Allocation:
    bill_id: UUID
    amount: Decimal


@dataclass
class Doc:
    document_type: str
    document_number: str
    company_id: UUID = field(default_factory=uuid4)
    id: UUID = field(default_factory=uuid4)
    document_date: date = date(2024, 1, 15)
    contact_name: str | None = "Acme"
    ap_account_id: UUID | None = None
    ar_account_id: UUID | None = None
    expense_account_id: UUID | None = None
    revenue_account_id: UUID | None = None
    tax_account_id: UUID | None = None
    inventory_account_id: UUID | None = None
    cogs_account_id: UUID | None = None
    bank_account_id: UUID | None = None
    lines: list = field(default_factory=list)


@dataclass
class PaymentDoc(Doc):
    allocations: list = field(default_factory=list)


def _ref(code, name, account_type):
    return AccountRef(id=uuid4(), account_code=code, account_name=name, account_type=account_type)


@pytest.fixture
def refs():
    accounts = {
        "bank": _ref("1000", "Bank", "asset"),
        "ar": _ref("1200", "Accounts Receivable", "asset"),
        "inventory": _ref("1300", "Inventory", "asset"),
        "ap": _ref("2000", "Accounts Payable", "liability"),
        "tax": _ref("2200", "Sales Tax", "liability"),
        "revenue": _ref("4000", "Sales", "revenue"),
        "cogs": _ref("5000", "Cost of Goods Sold", "cost_of_goods_sold"),
        "expense": _ref("6000", "Office Supplies", "expense"),
    }
    return accounts


@pytest.fixture
def widget():
    return ProductRef(id=uuid4(), product_name="Widget", product_type="inventory", cost_price=Decimal("20"))


@pytest.fixture
def ctx(refs, widget):
    return PostingContext(
        accounts={r.id: r for r in refs.values()},
        products={widget.id: widget},
        rules={
            "inventory": AccountRule("asset", ("inventory",), ("13",)),
            "cogs": AccountRule("cost_of_goods_sold", (), ()),
        },
    )


def _by_account(entry):
    return {line.account_id: (line.debit, line.credit) for line in entry.lines}


class TestComputeTotals:
    def test_line_and_tax_rounding(self):
        doc = Doc("bill", "B-1", lines=[
            Line(Decimal("3"), Decimal("0.335"), Decimal("7.5")),
            Line(Decimal("1"), Decimal("10"), Decimal("10")),
        ])
        totals = compute_totals(doc)
        # 3 x 0.335 = 1.005 -> 1.01; tax 1.01 x 7.5% = 0.07575 -> 0.08
        assert totals.lines[0].line_total == Decimal("1.01")
        assert totals.lines[0].tax_amount == Decimal("0.08")
        assert totals.subtotal == Decimal("11.01")
        assert totals.tax_total == Decimal("1.08")
        assert totals.total == Decimal("12.09")

    def test_payment_totals_its_allocations(self):
        doc = PaymentDoc("payment", "P-1", allocations=[
            Allocation(uuid4(), Decimal("40")), Allocation(uuid4(), Decimal("10.50")),
        ])
        assert compute_totals(doc).total == Decimal("50.50")


class TestInventoryClassification:
    def test_inventory_product_line(self, widget):
        line = Line(Decimal("1"), Decimal("5"), product_id=widget.id)
        assert is_inventory_line(line, {widget.id: widget}) is widget

    def test_service_product_line(self):
        service = ProductRef(uuid4(), "Support", "service", ZERO)
        line = Line(Decimal("1"), Decimal("5"), product_id=service.id)
        assert is_inventory_line(line, {service.id: service}) is None

    def test_missing_product_or_no_product(self, widget):
        assert is_inventory_line(Line(Decimal("1"), Decimal("5")), {}) is None
        assert is_inventory_line(Line(Decimal("1"), Decimal("5"), product_id=widget.id), {}) is None


class TestBillPolicy:
    def _bill(self, refs, lines, **overrides):
        values = dict(
            ap_account_id=refs["ap"].id,
            expense_account_id=refs["expense"].id,
            tax_account_id=refs["tax"].id,
            lines=lines,
        )
        values.update(overrides)
        return Doc("bill", "BILL-001", **values)

    def test_expense_bill_with_tax(self, refs, ctx):
        bill = self._bill(refs, [Line(Decimal("1"), Decimal("100"), Decimal("10"))])
        plan = BillPolicy().plan(bill, ctx)

        (entry,) = plan.entries
        assert entry.entry_number == "JE-BILL-BILL-001"
        assert entry.source_id == bill.id
        assert entry.reference == "BILL-001"
        assert _by_account(entry) == {
            refs["expense"].id: (Decimal("100"), ZERO),
            refs["tax"].id: (Decimal("10"), ZERO),
            refs["ap"].id: (ZERO, Decimal("110")),
        }
        assert plan.movements == ()

    def test_no_tax_leg_without_tax(self, refs, ctx):
        bill = self._bill(refs, [Line(Decimal("2"), Decimal("50"))], tax_account_id=None)
        (entry,) = BillPolicy().plan(bill, ctx).entries
        assert len(entry.lines) == 2

    def test_inventory_bill_capitalizes_to_inventory(self, refs, ctx, widget):
        bill = self._bill(refs, [Line(Decimal("4"), Decimal("20"), product_id=widget.id)])
        plan = BillPolicy().plan(bill, ctx)

        (entry,) = plan.entries
        assert _by_account(entry)[refs["inventory"].id] == (Decimal("80"), ZERO)
        assert refs["expense"].id not in _by_account(entry)
        (movement,) = plan.movements
        assert movement.quantity_delta == Decimal("4")
        assert movement.transaction_type == "purchase"
        assert movement.total_value == Decimal("80")

    def test_problems_collected(self, ctx):
        bill = Doc("bill", "BILL-002", lines=[Line(Decimal("1"), Decimal("100"), Decimal("10"))])
        with pytest.raises(DocumentValidationError) as exc_info:
            BillPolicy().plan(bill, ctx)
        problems = exc_info.value.problems
        assert "Accounts payable account is required" in problems
        assert "Expense account is required" in problems
        assert "Tax account is required" in problems
        assert exc_info.value.document_number == "BILL-002"

    def test_requires_a_line(self, refs, ctx):
        with pytest.raises(DocumentValidationError, match="at least one line"):
            BillPolicy().plan(self._bill(refs, []), ctx)

    def test_zero_total_rejected(self, refs, ctx):
        with pytest.raises(DocumentValidationError, match="greater than zero"):
            BillPolicy().plan(self._bill(refs, [Line(Decimal("1"), ZERO)]), ctx)

    def test_unknown_account_rejected(self, refs, ctx):
        bill = self._bill(refs, [Line(Decimal("1"), Decimal("5"))], ap_account_id=uuid4())
        with pytest.raises(DocumentValidationError, match="does not exist"):
            BillPolicy().plan(bill, ctx)


class TestInvoicePolicy:
    def _invoice(self, refs, lines, **overrides):
        values = dict(
            ar_account_id=refs["ar"].id,
            revenue_account_id=refs["revenue"].id,
            tax_account_id=refs["tax"].id,
            lines=lines,
        )
        values.update(overrides)
        return Doc("invoice", "INV-001", **values)

    def test_inventory_sale_emits_cogs_entry_at_cost(self, refs, ctx, widget):
        invoice = self._invoice(refs, [Line(Decimal("5"), Decimal("50"), product_id=widget.id)])
        plan = InvoicePolicy().plan(invoice, ctx)

        sale, cogs = plan.entries
        assert _by_account(sale) == {
            refs["ar"].id: (Decimal("250"), ZERO),
            refs["revenue"].id: (ZERO, Decimal("250")),
        }
        assert cogs.entry_number == "JE-COGS-INV-001"
        assert _by_account(cogs) == {
            refs["cogs"].id: (Decimal("100"), ZERO),
            refs["inventory"].id: (ZERO, Decimal("100")),
        }
        (movement,) = plan.movements
        assert movement.quantity_delta == Decimal("-5")
        assert movement.unit_cost == Decimal("20")

    def test_tax_credited(self, refs, ctx):
        invoice = self._invoice(refs, [Line(Decimal("1"), Decimal("200"), Decimal("5"))])
        (entry,) = InvoicePolicy().plan(invoice, ctx).entries
        assert _by_account(entry)[refs["ar"].id] == (Decimal("210"), ZERO)
        assert _by_account(entry)[refs["tax"].id] == (ZERO, Decimal("10"))

    def test_inventory_lines_need_cogs_account(self, refs, widget):
        bare = PostingContext(
            accounts={r.id: r for k, r in refs.items() if k != "cogs"},
            products={widget.id: widget},
            rules={"cogs": AccountRule("cost_of_goods_sold", (), ())},
        )
        invoice = self._invoice(refs, [Line(Decimal("1"), Decimal("50"), product_id=widget.id)])
        with pytest.raises(DocumentValidationError, match="cost of goods sold"):
            InvoicePolicy().plan(invoice, bare)

    def test_missing_product_treated_as_non_inventory(self, refs, ctx):
        invoice = self._invoice(refs, [Line(Decimal("1"), Decimal("50"), product_id=uuid4())])
        plan = InvoicePolicy().plan(invoice, ctx)
        assert len(plan.entries) == 1
        assert plan.movements == ()
        assert len(plan.warnings) == 1


class TestPaymentPolicy:
    def test_payment_shape_and_allocations(self, refs, ctx):
        bill_id = uuid4()
        payment = PaymentDoc(
            "payment", "PMT-001",
            ap_account_id=refs["ap"].id,
            bank_account_id=refs["bank"].id,
            allocations=[Allocation(bill_id, Decimal("60"))],
        )
        ctx = PostingContext(accounts=ctx.accounts, bill_ids=frozenset({bill_id}))
        plan = PaymentPolicy().plan(payment, ctx)

        (entry,) = plan.entries
        assert entry.entry_number == "JE-PMT-PMT-001"
        assert _by_account(entry) == {
            refs["ap"].id: (Decimal("60"), ZERO),
            refs["bank"].id: (ZERO, Decimal("60")),
        }
        assert plan.allocations[0].bill_id == bill_id

    def test_unknown_bill_and_bad_amount(self, refs, ctx):
        payment = PaymentDoc(
            "payment", "PMT-002",
            ap_account_id=refs["ap"].id,
            bank_account_id=refs["bank"].id,
            allocations=[Allocation(uuid4(), ZERO)],
        )
        with pytest.raises(DocumentValidationError) as exc_info:
            PaymentPolicy().plan(payment, ctx)
        assert len(exc_info.value.problems) == 2

    def test_requires_allocations(self, refs, ctx):
        payment = PaymentDoc("payment", "PMT-003", ap_account_id=refs["ap"].id,
                             bank_account_id=refs["bank"].id)
        with pytest.raises(DocumentValidationError, match="at least one bill"):
            PaymentPolicy().plan(payment, ctx)


class TestFallbackRules:
    def test_first_match_by_code(self, refs):
        second = _ref("1350", "Inventory - Warehouse B", "asset")
        accounts = {r.id: r for r in [*refs.values(), second]}
        rule = AccountRule("asset", ("inventory",), ())
        ctx = PostingContext(accounts=accounts, rules={"inventory": rule})
        assert ctx.find_by_rule("inventory") == refs["inventory"]

    def test_explicit_selection_wins(self, refs, ctx):
        assert ctx.resolve(refs["expense"].id, "inventory") == refs["expense"]

    def test_policy_lookup(self):
        assert isinstance(policy_for("invoice"), InvoicePolicy)
        with pytest.raises(KeyError):
            policy_for("credit_note")
