"""
ReversalEngine -- exact undo of previously posted effects.

Responsibility:
    Reverses journal entries (inverse balance deltas, then delete), and for a
    whole document also its stock movements and payment allocations, so the
    document can be re-posted (edit) or removed (delete).

Architecture position:
    Kernel > Services.  Uses JournalStore, BalanceService and
    InventoryCoordinator; never re-derives polarity arithmetic.

Invariants enforced:
    - Each matched entry id is reversed exactly once per call.
    - A line whose account no longer exists is skipped and reported as an
      orphaned_line anomaly; the entry is still deleted.
    - A document's dangling journal_entry_id is reported, never raised.
    - Payment allocations are undone from their persisted applied state,
      never from in-memory edits the caller made before re-posting.

Failure modes:
    - PartialFailureError: a reversal step failed after earlier steps
      applied (see raise_for_outcome).
    - OptimisticLockError: concurrent modification of an account/product.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from books_kernel.domain.clock import Clock, SystemClock
from books_kernel.domain.dtos import Anomaly, AnomalyKind
from books_kernel.domain.saga import Saga, SagaStep
from books_kernel.logging_config import LogContext, get_logger
from books_kernel.models.document import Bill, PaymentAllocation, PostingState, SourceDocument
from books_kernel.models.journal import JournalEntry
from books_kernel.services.balance_service import BalanceService
from books_kernel.services.base import BaseService
from books_kernel.services.inventory_coordinator import InventoryCoordinator
from books_kernel.services.journal_store import JournalStore, MatchResult
from books_kernel.services.posting_engine import raise_for_outcome, settle_bill_status

logger = get_logger("services.reversal")


@dataclass(frozen=True)
class EntryReversal:
    entry_id: UUID
    entry_number: str
    mutated_accounts: tuple[UUID, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()


@dataclass(frozen=True)
class AppliedAllocation:
    """An allocation as it was applied to its bill, read from the database."""

    allocation_id: UUID
    bill_id: UUID
    amount: Decimal
    bill_status_before: str | None


@dataclass
class ReversalRun:
    """Mutable accumulator shared by the steps of one document reversal."""

    match: MatchResult
    allocations: list[AppliedAllocation] = field(default_factory=list)
    reversed_entry_ids: list[UUID] = field(default_factory=list)
    mutated_accounts: list[UUID] = field(default_factory=list)
    inventory_transaction_ids: list[UUID] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)


@dataclass(frozen=True)
class ReversalReport:
    document_id: UUID
    document_number: str
    reversed_entry_ids: tuple[UUID, ...] = ()
    mutated_accounts: tuple[UUID, ...] = ()
    inventory_transaction_ids: tuple[UUID, ...] = ()
    dangling_entry_id: UUID | None = None
    anomalies: tuple[Anomaly, ...] = ()

    @classmethod
    def from_run(cls, document, run: ReversalRun) -> ReversalReport:
        return cls(
            document_id=document.id,
            document_number=document.document_number,
            reversed_entry_ids=tuple(run.reversed_entry_ids),
            mutated_accounts=tuple(run.mutated_accounts),
            inventory_transaction_ids=tuple(run.inventory_transaction_ids),
            dangling_entry_id=run.match.dangling_entry_id,
            anomalies=tuple(run.anomalies),
        )


class ReversalEngine(BaseService):

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self.journal = JournalStore(session, clock=self._clock)
        self.balances = BalanceService(session)
        self.inventory = InventoryCoordinator(session, clock=self._clock)

    # ------------------------------------------------------------------
    # Single entries
    # ------------------------------------------------------------------

    def reverse_entry(self, entry: JournalEntry) -> EntryReversal:
        """
        Undo ``entry``'s balance effects, then delete it.

        Raises:
            EntryNotFoundError: the entry was deleted in the meantime.
            OptimisticLockError: concurrent modification of an account.
        """
        entry_id = entry.id
        entry_number = entry.entry_number
        update = self.balances.reverse_entry(entry)

        anomalies = []
        for skipped in update.skipped_lines:
            logger.warning(
                "orphaned_line_skipped",
                extra={
                    "entry_id": str(entry_id),
                    "entry_number": entry_number,
                    "account_id": str(skipped.account_id),
                    "account_name": skipped.account_name,
                    "debit": skipped.debit,
                    "credit": skipped.credit,
                },
            )
            anomalies.append(
                Anomaly(
                    kind=AnomalyKind.ORPHANED_LINE,
                    entity_id=skipped.account_id,
                    message=(
                        f"Account {skipped.account_name or skipped.account_id} on "
                        f"{entry_number} no longer exists; its line was not reversed"
                    ),
                )
            )

        self.journal.delete_entry(entry_id)
        logger.info(
            "entry_reversed",
            extra={
                "entry_id": str(entry_id),
                "entry_number": entry_number,
                "mutated_accounts": [str(a) for a in update.mutated_accounts],
                "skipped_lines": len(update.skipped_lines),
            },
        )
        return EntryReversal(
            entry_id=entry_id,
            entry_number=entry_number,
            mutated_accounts=update.mutated_accounts,
            anomalies=tuple(anomalies),
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def begin_reversal(self, document: SourceDocument,
                       match: MatchResult | None = None) -> ReversalRun:
        """Locate the document's entries and record a dangling reference."""
        with self.session.no_autoflush:
            run = ReversalRun(
                match=match or self.journal.find_for_document(document),
                allocations=self._applied_allocations(document),
            )
        if run.match.dangling_entry_id is not None:
            logger.warning(
                "dangling_entry_reference",
                extra={
                    "document_number": document.document_number,
                    "journal_entry_id": str(run.match.dangling_entry_id),
                },
            )
            run.anomalies.append(
                Anomaly(
                    kind=AnomalyKind.DANGLING_ENTRY_REFERENCE,
                    entity_id=run.match.dangling_entry_id,
                    message=(
                        f"{document.document_number} references journal entry "
                        f"{run.match.dangling_entry_id}, which no longer exists"
                    ),
                )
            )
        return run

    def _applied_allocations(self, document: SourceDocument) -> list[AppliedAllocation]:
        if getattr(document, "allocations", None) is None:
            return []
        # Column reads bypass the identity map, so pending edits are not seen
        stmt = (
            select(
                PaymentAllocation.id,
                PaymentAllocation.bill_id,
                PaymentAllocation.amount,
                PaymentAllocation.applied_amount,
                PaymentAllocation.bill_status_before,
            )
            .where(PaymentAllocation.payment_id == document.id)
            .where(PaymentAllocation.applied.is_(True))
            .order_by(PaymentAllocation.line_seq)
        )
        return [
            AppliedAllocation(
                allocation_id=row.id,
                bill_id=row.bill_id,
                amount=row.applied_amount if row.applied_amount is not None else row.amount,
                bill_status_before=row.bill_status_before,
            )
            for row in self.session.execute(stmt)
        ]

    def reversal_steps(self, document: SourceDocument, run: ReversalRun) -> list[SagaStep]:
        steps = [
            SagaStep(
                "reverse_journal_entries",
                lambda: self._reverse_entries(run),
                compensation="re-post the reversed entries",
            ),
            SagaStep(
                "reverse_inventory",
                lambda: self._reverse_inventory(document, run),
                compensation="re-apply the restored stock movements",
            ),
        ]
        if run.allocations:
            steps.append(
                SagaStep(
                    "undo_allocations",
                    lambda: self._undo_allocations(document, run),
                    compensation="re-apply the payment to its bills",
                )
            )
        steps.append(
            SagaStep(
                "unlink_document",
                lambda: self._unlink_document(document),
                compensation="restore journal_entry_id and posted_fingerprint",
            )
        )
        return steps

    def _reverse_entries(self, run: ReversalRun) -> None:
        for entry in run.match.entries:
            if entry.id in run.reversed_entry_ids:
                continue
            reversal = self.reverse_entry(entry)
            run.reversed_entry_ids.append(reversal.entry_id)
            for account_id in reversal.mutated_accounts:
                if account_id not in run.mutated_accounts:
                    run.mutated_accounts.append(account_id)
            run.anomalies.extend(reversal.anomalies)

    def _reverse_inventory(self, document: SourceDocument, run: ReversalRun) -> None:
        result = self.inventory.reverse_document(document)
        run.inventory_transaction_ids.extend(result.transaction_ids)
        run.anomalies.extend(result.anomalies)

    def _undo_allocations(self, document: SourceDocument, run: ReversalRun) -> None:
        for applied in run.allocations:
            allocation = self.session.get(PaymentAllocation, applied.allocation_id)
            if allocation is not None:
                allocation.applied = False
                allocation.applied_amount = None

            bill = self.session.scalars(
                select(Bill)
                .where(Bill.id == applied.bill_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if bill is None:
                logger.warning(
                    "allocation_bill_missing",
                    extra={
                        "bill_id": str(applied.bill_id),
                        "payment_number": document.document_number,
                    },
                )
                run.anomalies.append(
                    Anomaly(
                        kind=AnomalyKind.MISSING_BILL,
                        entity_id=applied.bill_id,
                        message=(
                            f"Bill {applied.bill_id} paid by {document.document_number} "
                            "no longer exists; nothing to unsettle"
                        ),
                    )
                )
                continue

            bill.amount_paid = bill.amount_paid - applied.amount
            bill.balance_due = bill.total_amount - bill.amount_paid
            if bill.amount_paid <= 0:
                bill.status = applied.bill_status_before or "approved"
            else:
                bill.status = settle_bill_status(bill)
            logger.info(
                "bill_unsettled",
                extra={
                    "bill_id": str(bill.id),
                    "bill_number": bill.document_number,
                    "amount": applied.amount,
                    "balance_due": bill.balance_due,
                    "status": bill.status,
                },
            )
        self.session.flush()

    def _unlink_document(self, document: SourceDocument) -> None:
        document.journal_entry_id = None
        document.posted_fingerprint = None
        if document.posting_state == PostingState.POSTED.value:
            document.posting_state = PostingState.DRAFT.value
        self.session.flush()

    def reverse_document_postings(
        self,
        document: SourceDocument,
        match: MatchResult | None = None,
    ) -> ReversalReport:
        """
        Undo everything posted for ``document``.

        ``match`` may be passed when the caller already looked the entries
        up (e.g. to inspect dangling_entry_id before mutating anything).

        Raises:
            PartialFailureError: a step failed after earlier steps applied.
        """
        with LogContext.bind(document_id=document.id, company_id=document.company_id):
            run = self.begin_reversal(document, match)
            outcome = Saga(
                f"reverse:{document.document_number}",
                self.reversal_steps(document, run),
            ).run()
            raise_for_outcome(outcome, document.document_number, run.mutated_accounts)

            logger.info(
                "document_postings_reversed",
                extra={
                    "document_number": document.document_number,
                    "reversed_entry_ids": [str(i) for i in run.reversed_entry_ids],
                    "anomalies": len(run.anomalies),
                },
            )
        return ReversalReport.from_run(document, run)

    # ------------------------------------------------------------------
    # Orphans
    # ------------------------------------------------------------------

    def find_orphaned_entries(self, company_id: UUID) -> list[JournalEntry]:
        """Entries whose source document no longer exists, oldest first."""
        stmt = (
            select(JournalEntry)
            .outerjoin(SourceDocument, SourceDocument.id == JournalEntry.source_id)
            .where(JournalEntry.company_id == company_id)
            .where(JournalEntry.source_id.is_not(None))
            .where(SourceDocument.id.is_(None))
            .order_by(JournalEntry.seq)
        )
        return list(self.session.scalars(stmt))

    def delete_orphaned_entry(self, entry_id: UUID) -> EntryReversal:
        """
        Best-effort reversal and deletion of an orphaned entry.

        Raises:
            EntryNotFoundError: no entry has this id.
        """
        entry = self.journal.get_entry(entry_id)
        with LogContext.bind(entry_id=entry_id, company_id=entry.company_id):
            reversal = self.reverse_entry(entry)
            logger.info(
                "orphaned_entry_deleted",
                extra={"entry_number": reversal.entry_number, "anomalies": len(reversal.anomalies)},
            )
        return reversal
