"""
Module: books_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines, the
    record every cached balance is derived from.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - |total_debits - total_credits| <= tolerance at creation (checked by the
      journal store before flush; is_balanced offers the read-side check).
    - seq is unique and monotonic in creation order.  It breaks ties between
      entries sharing an entry_date.
    - Entries and lines are never updated in place (db/guards.py).  An edit
      is a delete followed by a new entry.

Lines carry no foreign key to accounts: an account may be deleted while
entries that reference it survive.  account_name and account_code are
snapshotted on the line so such orphaned lines stay readable.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from books_kernel.db.base import TrackedBase, UUIDString
from books_kernel.db.types import Money


class JournalEntryStatus(str, Enum):
    """Lifecycle status of a journal entry.  Only posted entries exist today."""

    POSTED = "posted"


class SourceType(str, Enum):
    """Kind of record that produced a journal entry."""

    INVOICE = "invoice"
    BILL = "bill"
    PAYMENT = "payment"
    MANUAL = "manual"


class JournalEntry(TrackedBase):
    """
    A balanced, multi-line journal entry.

    Contract:
        Created only through JournalStore.create_entry(), which assigns seq,
        the totals and the posting stamp.  Deleted only through
        JournalStore.delete_entry(), which also removes the lines.
    """

    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("seq", name="uq_journal_seq"),
        Index("idx_journal_company_status", "company_id", "status"),
        Index("idx_journal_source", "source_id"),
        Index("idx_journal_entry_date", "entry_date"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Human-readable number, e.g. JE-BILL-<document number>
    entry_number: Mapped[str] = mapped_column(String(100), nullable=False)

    entry_date: Mapped[date] = mapped_column(nullable=False)

    # Source document number at posting time
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    source_type: Mapped[SourceType] = mapped_column(String(20), nullable=False)

    # Nullable for legacy and manual entries
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(20),
        nullable=False,
        default=JournalEntryStatus.POSTED.value,
    )

    total_debits: Mapped[Money] = mapped_column(nullable=False)

    total_credits: Mapped[Money] = mapped_column(nullable=False)

    posted_by: Mapped[str] = mapped_column(String(100), nullable=False)

    posted_date: Mapped[datetime] = mapped_column(nullable=False)

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} seq={self.seq}>"

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_balanced(self) -> bool:
        """Check that the stored line amounts still balance to the cent."""
        debits = sum((line.debit for line in self.lines), Decimal("0"))
        credits = sum((line.credit for line in self.lines), Decimal("0"))
        return abs(debits - credits) <= Decimal("0.01")

    def touches(self, account_id: UUID) -> bool:
        return any(line.account_id == account_id for line in self.lines)


class JournalLine(TrackedBase):
    """
    One debit or credit against one account.

    Exactly one of debit / credit is non-zero for lines built by the posting
    engine; both are stored so the line reads the way a ledger prints it.
    """

    __tablename__ = "journal_lines"
    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    # No FK: lines outlive deleted accounts
    account_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    debit: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    credit: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<JournalLine {self.account_code} Dr {self.debit} Cr {self.credit}>"

    @property
    def signed_amount(self) -> Decimal:
        """Debit minus credit, independent of the account's polarity."""
        return self.debit - self.credit
