"""
Module: books_kernel.models.document
Responsibility: ORM persistence for the source documents that produce
    postings: bills, invoices and payments, with their lines and payment
    allocations.
Architecture position: Kernel > Models.  May import from db/ only.

The three document kinds share one table (single-table inheritance on
document_type).  Account selections for every kind live on the base table
and stay NULL where a kind does not use them.

Invariants enforced:
    - posting_state is the document's lifecycle state as the posting engine
      sees it (draft / posted / void).  status is the user-facing status.
    - posted_fingerprint is the hash of the posting-relevant content as of
      the last successful posting.  It is NULL whenever nothing is posted.
    - journal_entry_id carries no foreign key.  It may dangle when an entry
      was deleted out of band; reversal reports that instead of failing.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from books_kernel.db.base import TrackedBase, UUIDString
from books_kernel.db.types import Money


class DocumentType(str, Enum):
    BILL = "bill"
    INVOICE = "invoice"
    PAYMENT = "payment"


class PostingState(str, Enum):
    """Where a document stands relative to the ledger."""

    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


class BillStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    PARTIAL = "partial"
    PAID = "paid"
    VOID = "void"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class PaymentStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    VOID = "void"


class SourceDocument(TrackedBase):
    """
    Common columns of every postable document.

    Totals are derived: DocumentService recomputes them from the lines (or
    the allocations, for payments) before every save.
    """

    __tablename__ = "source_documents"
    __table_args__ = (
        UniqueConstraint(
            "company_id", "document_type", "document_number",
            name="uq_document_company_number",
        ),
        Index("idx_document_company_status", "company_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    document_type: Mapped[DocumentType] = mapped_column(String(20), nullable=False)

    document_number: Mapped[str] = mapped_column(String(100), nullable=False)

    document_date: Mapped[date] = mapped_column(nullable=False)

    due_date: Mapped[date | None] = mapped_column(nullable=True)

    # Vendor for bills and payments, customer for invoices
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    posting_state: Mapped[PostingState] = mapped_column(
        String(20),
        nullable=False,
        default=PostingState.DRAFT.value,
    )

    posted_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    subtotal: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    tax_total: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    balance_due: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    # First journal entry produced by the last posting
    journal_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Account selections (NULL where the document kind does not use them)
    ap_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    ar_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    expense_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    revenue_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    tax_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    inventory_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cogs_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    bank_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    lines: Mapped[list["DocumentLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentLine.line_seq",
    )

    __mapper_args__ = {
        "polymorphic_on": "document_type",
        "polymorphic_abstract": True,
    }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.document_number} status={self.status}>"


class Bill(SourceDocument):
    """Vendor bill.  Posts DR expense or inventory (+ tax) / CR accounts payable."""

    __mapper_args__ = {"polymorphic_identity": DocumentType.BILL.value}


class Invoice(SourceDocument):
    """Customer invoice.  Posts DR receivable / CR revenue (+ tax), plus COGS."""

    __mapper_args__ = {"polymorphic_identity": DocumentType.INVOICE.value}


class Payment(SourceDocument):
    """Vendor payment.  Posts DR accounts payable / CR bank and settles bills."""

    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentAllocation.line_seq",
    )

    __mapper_args__ = {"polymorphic_identity": DocumentType.PAYMENT.value}


class DocumentLine(TrackedBase):
    """One priced line of a bill or invoice."""

    __tablename__ = "document_lines"
    __table_args__ = (Index("idx_document_line_document", "document_id"),)

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("source_documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    # No FK: a product may be deleted while documents still mention it
    product_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    quantity: Mapped[Money] = mapped_column(nullable=False, default=Decimal("1"))

    # Unit cost on bills, unit sale price on invoices
    unit_price: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    # Percent, e.g. 10 for 10%
    tax_rate: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    tax_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    line_total: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    document: Mapped["SourceDocument"] = relationship(back_populates="lines")


class PaymentAllocation(TrackedBase):
    """Portion of a payment applied to one bill."""

    __tablename__ = "payment_allocations"
    __table_args__ = (Index("idx_allocation_payment", "payment_id"),)

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("source_documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    bill_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    amount: Mapped[Money] = mapped_column(nullable=False)

    # Bill status before this allocation was applied; restored on reversal
    bill_status_before: Mapped[str | None] = mapped_column(String(20), nullable=True)

    applied: Mapped[bool] = mapped_column(nullable=False, default=False)

    # Amount actually added to the bill; edits to ``amount`` never change it
    applied_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payment: Mapped["Payment"] = relationship(back_populates="allocations")
