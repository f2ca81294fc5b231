"""
DocumentService end-to-end tests.

Tests cover:
- Posting bills, invoices (with COGS) and payments from their status
- Edit -> re-post, unrelated edits -> no ledger change, void -> reversal
- Validation failures leave the ledger untouched
- Deletion: full undo, dangling references and the on_orphan callback,
  orphaned lines after an account was deleted
- Payment allocations settle and unsettle bills
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from books_kernel.domain.dtos import AnomalyKind
from books_kernel.domain.lifecycle import TransitionAction
from books_kernel.exceptions import DocumentValidationError, EntryNotFoundError
from books_kernel.models.document import Bill, PaymentAllocation, SourceDocument
from books_kernel.models.journal import JournalEntry
from tests.conftest import TEST_ACTOR, doc_line

ZERO = Decimal("0")


def _entries(session, company_id):
    return session.scalars(
        select(JournalEntry).where(JournalEntry.company_id == company_id)
    ).all()


# =============================================================================
# Posting
# =============================================================================


class TestPostBill:
    def test_approved_bill_posts(self, service, chart, make_bill):
        result = service.post_document(make_bill(), actor=TEST_ACTOR)

        assert result.action == TransitionAction.POST
        assert len(result.journal_entry_ids) == 1
        assert service.get_account_balance(chart.expense.id) == Decimal("100")
        assert service.get_account_balance(chart.tax.id) == Decimal("-10")
        assert service.get_account_balance(chart.payable.id) == Decimal("110")

        bill = result.saved_document
        assert bill.total_amount == Decimal("110")
        assert bill.balance_due == Decimal("110")
        assert bill.lines[0].line_total == Decimal("100")
        assert bill.lines[0].tax_amount == Decimal("10")
        assert bill.posting_state == "posted"

        entry = service.posting.journal.get_entry(result.journal_entry_ids[0])
        assert entry.entry_number == "JE-BILL-BILL-001"
        assert entry.posted_by == TEST_ACTOR
        assert entry.source_id == bill.id

    def test_draft_bill_does_not_post(self, session, service, company_id, make_bill):
        result = service.post_document(make_bill(status="draft"))

        assert result.action == TransitionAction.NONE
        assert result.journal_entry_ids == ()
        assert result.saved_document.total_amount == Decimal("110")
        assert _entries(session, company_id) == []

    def test_validation_failure_writes_nothing(self, session, service, company_id, make_bill):
        bill = make_bill(tax_account_id=None)

        with pytest.raises(DocumentValidationError) as exc_info:
            service.post_document(bill)

        assert exc_info.value.problems == ["Tax account is required"]
        assert _entries(session, company_id) == []
        assert session.scalars(
            select(SourceDocument).where(SourceDocument.company_id == company_id)
        ).all() == []


class TestPostInvoice:
    def test_inventory_sale(self, session, service, company_id, chart, make_invoice, widget):
        invoice = make_invoice(lines=[doc_line(5, 50, product=widget)])

        result = service.post_document(invoice)

        assert len(result.journal_entry_ids) == 2
        assert service.get_account_balance(chart.receivable.id) == Decimal("250")
        assert service.get_account_balance(chart.revenue.id) == Decimal("250")
        assert service.get_account_balance(chart.cogs.id) == Decimal("100")
        assert service.get_account_balance(chart.inventory.id) == Decimal("-100")
        assert widget.quantity_on_hand == Decimal("5")
        numbers = sorted(e.entry_number for e in _entries(session, company_id))
        assert numbers == ["JE-COGS-INV-001", "JE-INV-INV-001"]

    def test_service_product_moves_no_stock(self, service, chart, make_invoice, consulting):
        result = service.post_document(make_invoice(lines=[doc_line(2, 120, product=consulting)]))

        assert len(result.journal_entry_ids) == 1
        assert service.get_account_balance(chart.cogs.id) == ZERO

    def test_missing_product_posts_with_warning(self, service, chart, make_invoice, captured_logs):
        line = doc_line(1, 75)
        line.product_id = uuid4()

        result = service.post_document(make_invoice(lines=[line]))

        assert len(result.journal_entry_ids) == 1
        assert service.get_account_balance(chart.receivable.id) == Decimal("75")
        assert any(r["message"] == "posting_plan_warning" for r in captured_logs())


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    def test_edit_reposts(self, session, service, company_id, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        old_entry_id = bill.journal_entry_id

        bill.lines[0].unit_price = Decimal("200")
        result = service.post_document(bill)

        assert result.action == TransitionAction.REPOST
        assert service.get_account_balance(chart.payable.id) == Decimal("220")
        assert service.get_account_balance(chart.expense.id) == Decimal("200")
        assert bill.journal_entry_id != old_entry_id
        assert len(_entries(session, company_id)) == 1
        with pytest.raises(EntryNotFoundError):
            service.posting.journal.get_entry(old_entry_id)

    def test_unrelated_edit_does_not_repost(self, service, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        entry_id = bill.journal_entry_id

        bill.notes = "Vendor called about delivery"
        result = service.post_document(bill)

        assert result.action == TransitionAction.NONE
        assert result.journal_entry_ids == (entry_id,)
        assert bill.journal_entry_id == entry_id
        assert service.get_account_balance(chart.payable.id) == Decimal("110")

    def test_void_reverses(self, session, service, company_id, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document

        bill.status = "void"
        result = service.post_document(bill)

        assert result.action == TransitionAction.REVERSE
        assert bill.posting_state == "void"
        assert bill.journal_entry_id is None
        assert _entries(session, company_id) == []
        for account in chart.all():
            assert service.get_account_balance(account.id) == ZERO

    def test_back_to_draft_reverses(self, service, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        bill.status = "draft"

        service.post_document(bill)

        assert bill.posting_state == "draft"
        assert service.get_account_balance(chart.payable.id) == ZERO

    def test_draft_then_approve_posts(self, service, chart, make_bill):
        bill = service.post_document(make_bill(status="draft")).saved_document
        bill.status = "approved"

        result = service.post_document(bill)

        assert result.action == TransitionAction.POST
        assert service.get_account_balance(chart.payable.id) == Decimal("110")

    def test_repost_validation_failure_keeps_prior_posting(self, service, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document

        bill.expense_account_id = None
        with pytest.raises(DocumentValidationError):
            service.post_document(bill)

        assert service.get_account_balance(chart.payable.id) == Decimal("110")


# =============================================================================
# Payments
# =============================================================================


class TestPayments:
    def test_partial_payment_then_delete(self, session, service, chart, make_bill, make_payment):
        bill = service.post_document(make_bill()).saved_document

        payment = service.post_document(make_payment([(bill, 50)])).saved_document

        assert bill.status == "partial"
        assert bill.amount_paid == Decimal("50")
        assert bill.balance_due == Decimal("60")
        assert payment.total_amount == Decimal("50")
        assert service.get_account_balance(chart.payable.id) == Decimal("60")
        assert service.get_account_balance(chart.bank.id) == Decimal("-50")

        result = service.reverse_and_delete_document(payment)

        assert result.deleted
        assert bill.status == "approved"
        assert bill.amount_paid == ZERO
        assert bill.balance_due == Decimal("110")
        assert service.get_account_balance(chart.payable.id) == Decimal("110")
        assert service.get_account_balance(chart.bank.id) == ZERO

    def test_payment_for_unknown_bill_rejected(self, service, make_bill, make_payment):
        ghost = make_bill(number="BILL-GHOST")
        ghost.id = uuid4()
        with pytest.raises(DocumentValidationError, match="does not exist"):
            service.post_document(make_payment([(ghost, 10)]))

    def test_payment_for_deleted_bill_reports_missing_bill(
        self, session, service, make_bill, make_payment
    ):
        bill = service.post_document(make_bill()).saved_document
        payment = service.post_document(make_payment([(bill, 20)])).saved_document
        service.reverse_and_delete_document(bill)

        result = service.reverse_and_delete_document(payment)

        assert [a.kind for a in result.anomalies] == [AnomalyKind.MISSING_BILL]

    def test_edited_allocation_amount_resettles_bill(self, service, chart, make_bill, make_payment):
        bill = service.post_document(make_bill()).saved_document
        payment = service.post_document(make_payment([(bill, 50)])).saved_document

        payment.allocations[0].amount = Decimal("80")
        result = service.post_document(payment)

        assert result.action == TransitionAction.REPOST
        assert bill.amount_paid == Decimal("80")
        assert bill.balance_due == Decimal("30")
        assert bill.status == "partial"
        assert payment.allocations[0].applied_amount == Decimal("80")
        assert service.get_account_balance(chart.payable.id) == Decimal("30")
        assert service.get_account_balance(chart.bank.id) == Decimal("-80")

    def test_replaced_allocation_unsettles_previous_bill(
        self, service, chart, make_bill, make_payment
    ):
        first = service.post_document(make_bill()).saved_document
        second = service.post_document(make_bill(number="BILL-002")).saved_document
        payment = service.post_document(make_payment([(first, 50)])).saved_document
        assert first.status == "partial"

        payment.allocations = [PaymentAllocation(bill_id=second.id, amount=Decimal("50"))]
        result = service.post_document(payment)

        assert result.action == TransitionAction.REPOST
        assert first.amount_paid == ZERO
        assert first.balance_due == Decimal("110")
        assert first.status == "approved"
        assert second.amount_paid == Decimal("50")
        assert second.status == "partial"
        assert service.get_account_balance(chart.payable.id) == Decimal("170")
        assert service.get_account_balance(chart.bank.id) == Decimal("-50")

    def test_voided_payment_unsettles_at_applied_amount(
        self, service, make_bill, make_payment
    ):
        bill = service.post_document(make_bill()).saved_document
        payment = service.post_document(make_payment([(bill, 50)])).saved_document

        payment.allocations[0].amount = Decimal("90")
        payment.status = "void"
        result = service.post_document(payment)

        assert result.action == TransitionAction.REVERSE
        assert bill.amount_paid == ZERO
        assert bill.status == "approved"
        assert not payment.allocations[0].applied


# =============================================================================
# Deletion
# =============================================================================


class TestDeletion:
    def test_delete_undoes_everything(self, session, service, company_id, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        entry_id = bill.journal_entry_id

        result = service.reverse_and_delete_document(bill)

        assert result.deleted
        assert result.reversed_entry_ids == (entry_id,)
        with pytest.raises(EntryNotFoundError):
            service.posting.journal.get_entry(entry_id)
        for account in chart.all():
            assert service.get_account_balance(account.id) == ZERO
        assert session.scalars(select(Bill).where(Bill.company_id == company_id)).all() == []

    def test_delete_invoice_restores_stock(self, service, make_invoice, widget):
        invoice = service.post_document(make_invoice(lines=[doc_line(4, 50, product=widget)]))
        service.reverse_and_delete_document(invoice.saved_document)
        assert widget.quantity_on_hand == Decimal("10")

    def test_dangling_reference_abort(self, service, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        service.posting.journal.delete_entry(bill.journal_entry_id)
        notices = []

        def refuse(notice):
            notices.append(notice)
            return False

        result = service.reverse_and_delete_document(bill, on_orphan=refuse)

        assert not result.deleted
        (notice,) = notices
        assert notice.document_number == "BILL-001"
        assert notice.remaining_entry_ids == ()
        assert bill.journal_entry_id == notice.dangling_entry_id
        # The out-of-band delete left the cached balance alone
        assert service.get_account_balance(chart.payable.id) == Decimal("110")

    def test_dangling_reference_proceed(self, session, service, company_id, make_bill):
        bill = service.post_document(make_bill()).saved_document
        service.posting.journal.delete_entry(bill.journal_entry_id)

        result = service.reverse_and_delete_document(bill, on_orphan=lambda notice: True)

        assert result.deleted
        assert [a.kind for a in result.anomalies] == [AnomalyKind.DANGLING_ENTRY_REFERENCE]
        assert session.scalars(select(Bill).where(Bill.company_id == company_id)).all() == []

    def test_deleted_account_leaves_orphaned_line(self, session, service, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        entry_id = bill.journal_entry_id
        session.delete(chart.tax)
        session.flush()

        result = service.reverse_and_delete_document(bill)

        assert [a.kind for a in result.anomalies] == [AnomalyKind.ORPHANED_LINE]
        assert service.get_account_balance(chart.expense.id) == ZERO
        assert service.get_account_balance(chart.payable.id) == ZERO
        with pytest.raises(EntryNotFoundError):
            service.posting.journal.get_entry(entry_id)


# =============================================================================
# Reads and orphan cleanup
# =============================================================================


class TestReads:
    def test_ledger_and_summary(self, service, company_id, chart, make_bill, make_invoice):
        service.post_document(make_bill())
        service.post_document(make_invoice())

        ledger = service.get_ledger(chart.payable.id)
        assert ledger.closing_balance == Decimal("110")
        assert [r.entry_number for r in ledger.rows] == ["JE-BILL-BILL-001"]

        summary = service.financial_summary(company_id)
        assert summary.total_revenue == Decimal("250")
        assert summary.is_balanced

    def test_orphan_cleanup(self, session, service, company_id, chart, make_bill):
        bill = service.post_document(make_bill()).saved_document
        entry_id = bill.journal_entry_id
        session.delete(bill)
        session.flush()

        assert [e.id for e in service.find_orphaned_entries(company_id)] == [entry_id]
        service.delete_orphaned_entry(entry_id)

        assert service.find_orphaned_entries(company_id) == []
        assert service.get_account_balance(chart.payable.id) == ZERO
