"""
LedgerSelector tests.

Tests cover:
- Cached balance lookup and unknown accounts
- Account ledger with date window and opening balance
- Summary from cached and projected balances
- Drift detection between cached balances and the journal
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from books_kernel.exceptions import AccountNotFoundError
from books_kernel.models.account import Account
from books_kernel.selectors.ledger_selector import LedgerSelector
from tests.conftest import doc_line


@pytest.fixture
def selector(session, config):
    return LedgerSelector(session, config.account_rules)


@pytest.fixture
def posted_books(service, make_bill, make_invoice):
    """Bill in January (110 payable), invoices in February and March."""
    service.post_document(make_bill())
    service.post_document(make_invoice())
    service.post_document(
        make_invoice(number="INV-002", lines=[doc_line(2, 40)], document_date=date(2024, 3, 10))
    )


class TestCachedBalance:
    def test_unknown_account(self, selector):
        with pytest.raises(AccountNotFoundError):
            selector.cached_balance(uuid4())

    def test_untouched_account_is_zero(self, selector, chart):
        assert selector.cached_balance(chart.equity.id) == Decimal("0")


class TestLedger:
    def test_full_history(self, selector, chart, posted_books):
        ledger = selector.ledger(chart.receivable.id)

        assert [r.entry_number for r in ledger.rows] == ["JE-INV-INV-001", "JE-INV-INV-002"]
        assert [r.balance for r in ledger.rows] == [Decimal("250"), Decimal("330")]
        assert ledger.opening_balance == Decimal("0")
        assert ledger.total_debits == Decimal("330")

    def test_window(self, selector, chart, posted_books):
        ledger = selector.ledger(chart.receivable.id, date_from=date(2024, 3, 1))

        assert ledger.opening_balance == Decimal("250")
        assert [r.entry_number for r in ledger.rows] == ["JE-INV-INV-002"]
        assert ledger.closing_balance == Decimal("330")

    def test_empty_ledger(self, selector, chart):
        ledger = selector.ledger(chart.bank.id)
        assert ledger.rows == ()
        assert ledger.closing_balance == Decimal("0")


class TestSummary:
    def test_cached_and_projected_agree(self, selector, company_id, posted_books):
        cached = selector.summary(company_id)
        projected = selector.summary(company_id, projected=True)

        assert cached == projected
        assert cached.total_revenue == Decimal("330")
        assert cached.total_expenses == Decimal("100")
        assert cached.total_liabilities == Decimal("100")
        assert cached.is_balanced

    def test_sub_totals_from_account_rules(self, selector, company_id, posted_books):
        summary = selector.summary(company_id)

        assert summary.accounts_receivable == Decimal("330")
        # Sales Tax is a liability but not a payable
        assert summary.accounts_payable == Decimal("110")
        assert summary.cash == Decimal("0")
        assert summary.inventory == Decimal("0")

    def test_sub_totals_zero_without_rules(self, session, company_id, posted_books):
        summary = LedgerSelector(session).summary(company_id)
        assert summary.accounts_receivable == Decimal("0")
        assert summary.total_revenue == Decimal("330")

    def test_empty_company(self, selector):
        summary = selector.summary(uuid4())
        assert summary.total_assets == Decimal("0")
        assert summary.net_income == Decimal("0")


class TestVerifyCachedBalances:
    def test_no_drift_after_posting(self, selector, company_id, posted_books):
        assert selector.verify_cached_balances(company_id) == []

    def test_drift_detected(self, session, selector, company_id, chart, posted_books):
        table = Account.__table__
        # Bulk UPDATE bypasses the ORM write guard
        session.execute(
            update(table).where(table.c.id == chart.revenue.id).values(balance=Decimal("999"))
        )
        session.refresh(chart.revenue)

        (drift,) = selector.verify_cached_balances(company_id)

        assert drift.account_id == chart.revenue.id
        assert drift.cached == Decimal("999")
        assert drift.projected == Decimal("330")
        assert drift.difference == Decimal("669")
