"""
JournalStore -- creation, lookup and deletion of journal entries.

Responsibility:
    The only writer of JournalEntry / JournalLine rows.  Enforces the
    balance tolerance at creation, assigns the monotonic seq and the posting
    stamp, and answers "which entries belong to this document?".

Architecture position:
    Kernel > Services.  Used by the posting and reversal engines.  Does not
    touch account balances; that is the balance service's job.

Invariants enforced:
    - |sum(debit) - sum(credit)| <= tolerance for every created entry.
    - No negative line amounts.
    - seq strictly increases in creation order.

Failure modes:
    - UnbalancedEntryError: empty or unbalanced entry (nothing is written).
    - InvalidLineAmountError: negative debit or credit (nothing is written).
    - EntryNotFoundError: get_entry / delete_entry on an unknown id.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from books_kernel.domain.clock import Clock, SystemClock
from books_kernel.domain.dtos import EntrySpec
from books_kernel.exceptions import (
    EntryNotFoundError,
    InvalidLineAmountError,
    UnbalancedEntryError,
)
from books_kernel.logging_config import get_logger
from books_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from books_kernel.services.base import BaseService

logger = get_logger("services.journal_store")

ZERO = Decimal("0")
DEFAULT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class MatchResult:
    """
    Entries attributed to a document, oldest first.

    dangling_entry_id is the document's journal_entry_id when it points at
    an entry that no longer exists.
    """

    entries: tuple[JournalEntry, ...]
    dangling_entry_id: UUID | None = None

    @property
    def entry_ids(self) -> tuple[UUID, ...]:
        return tuple(e.id for e in self.entries)


class JournalStore(BaseService):
    """
    Contract:
        create_entry() validates, writes and flushes one entry with its
        lines.  delete_entry() removes an entry and its lines.  Neither
        changes account balances.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        posted_by: str = "system",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._tolerance = tolerance
        self._posted_by = posted_by

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _next_seq(self) -> int:
        current = self.session.scalar(select(func.max(JournalEntry.seq)))
        return (current or 0) + 1

    def create_entry(self, spec: EntrySpec, posted_by: str | None = None) -> JournalEntry:
        """
        Persist a balanced entry.

        Preconditions:
            - |spec.total_debits - spec.total_credits| <= tolerance.
            - spec has at least one line and no negative amounts.
        Postconditions:
            - The entry and its lines are flushed; seq, totals, posted_by
              and posted_date are set.
        Raises:
            UnbalancedEntryError, InvalidLineAmountError
        """
        for line in spec.lines:
            if line.debit < ZERO or line.credit < ZERO:
                raise InvalidLineAmountError(line.account_id, line.debit, line.credit)

        debits = spec.total_debits
        credits = spec.total_credits
        if not spec.lines or abs(debits - credits) > self._tolerance:
            logger.error(
                "unbalanced_entry_rejected",
                extra={
                    "entry_number": spec.entry_number,
                    "debits": debits,
                    "credits": credits,
                    "line_count": len(spec.lines),
                },
            )
            raise UnbalancedEntryError(spec.entry_number, debits, credits)

        entry = JournalEntry(
            company_id=spec.company_id,
            entry_number=spec.entry_number,
            entry_date=spec.entry_date,
            reference=spec.reference,
            source_type=spec.source_type,
            source_id=spec.source_id,
            description=spec.description,
            status=JournalEntryStatus.POSTED.value,
            total_debits=debits,
            total_credits=credits,
            posted_by=posted_by or self._posted_by,
            posted_date=self._clock.now(),
            seq=self._next_seq(),
            created_by=posted_by or self._posted_by,
        )
        entry.lines = [
            JournalLine(
                account_id=line.account_id,
                account_name=line.account_name,
                account_code=line.account_code,
                description=line.description,
                debit=line.debit,
                credit=line.credit,
                line_seq=index,
                created_by=posted_by or self._posted_by,
            )
            for index, line in enumerate(spec.lines)
        ]
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "journal_entry_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "seq": entry.seq,
                "source_type": spec.source_type,
                "source_id": str(spec.source_id) if spec.source_id else None,
                "total_debits": debits,
                "line_count": len(entry.lines),
            },
        )
        return entry

    def delete_entry(self, entry_id: UUID) -> None:
        """
        Remove an entry and its lines.

        Raises:
            EntryNotFoundError: the entry does not exist (already deleted
                counts as not existing).
        """
        entry = self.get_entry(entry_id)
        self.session.delete(entry)
        self.session.flush()
        logger.info(
            "journal_entry_deleted",
            extra={"entry_id": str(entry_id), "entry_number": entry.entry_number},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: UUID) -> JournalEntry:
        """
        Raises:
            EntryNotFoundError: no entry has this id.
        """
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def find_entry(self, entry_id: UUID | None) -> JournalEntry | None:
        if entry_id is None:
            return None
        return self.session.get(JournalEntry, entry_id)

    def find_by_company_and_status(
        self,
        company_id: UUID,
        status: str = JournalEntryStatus.POSTED.value,
    ) -> list[JournalEntry]:
        stmt = (
            select(JournalEntry)
            .where(JournalEntry.company_id == company_id)
            .where(JournalEntry.status == status)
            .order_by(JournalEntry.entry_date, JournalEntry.seq)
        )
        return list(self.session.scalars(stmt))

    def find_by_source_id(self, source_id: UUID) -> list[JournalEntry]:
        stmt = (
            select(JournalEntry)
            .where(JournalEntry.source_id == source_id)
            .order_by(JournalEntry.seq)
        )
        return list(self.session.scalars(stmt))

    def find_by_reference(self, company_id: UUID, text: str) -> list[JournalEntry]:
        """Entries whose reference contains ``text``, oldest first."""
        stmt = (
            select(JournalEntry)
            .where(JournalEntry.company_id == company_id)
            .where(JournalEntry.reference.contains(text, autoescape=True))
            .order_by(JournalEntry.seq)
        )
        return list(self.session.scalars(stmt))

    def find_for_document(self, document) -> MatchResult:
        """
        Every entry attributable to a document, each exactly once.

        Strategies (unioned, deduplicated by id):
            1. source_id == document.id
            2. entries without a source_id whose reference contains the
               document number (entries written before source linkage)
            3. the document's stored journal_entry_id
        """
        found: dict[UUID, JournalEntry] = {}

        for entry in self.find_by_source_id(document.id):
            found.setdefault(entry.id, entry)

        stmt = (
            select(JournalEntry)
            .where(JournalEntry.company_id == document.company_id)
            .where(JournalEntry.source_id.is_(None))
            .where(JournalEntry.reference.contains(document.document_number, autoescape=True))
        )
        for entry in self.session.scalars(stmt):
            found.setdefault(entry.id, entry)

        dangling: UUID | None = None
        if document.journal_entry_id is not None and document.journal_entry_id not in found:
            entry = self.find_entry(document.journal_entry_id)
            if entry is None:
                dangling = document.journal_entry_id
            else:
                found[entry.id] = entry

        ordered = tuple(sorted(found.values(), key=lambda e: e.seq))
        logger.debug(
            "document_entries_matched",
            extra={
                "document_id": str(document.id),
                "entry_count": len(ordered),
                "dangling_entry_id": str(dangling) if dangling else None,
            },
        )
        return MatchResult(entries=ordered, dangling_entry_id=dangling)
