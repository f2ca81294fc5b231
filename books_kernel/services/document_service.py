"""
DocumentService -- the UI-facing facade over posting and reversal.

Responsibility:
    One call per user action.  post_document() saves a bill, invoice or
    payment and brings the ledger in line with it (post, re-post, reverse or
    nothing, as the lifecycle table decides).  reverse_and_delete_document()
    undoes everything a document posted and removes it.  The remaining
    methods are the read paths the screens need.

Architecture position:
    Kernel > Services.  Composes PostingEngine and ReversalEngine steps into
    one saga per action:

        save_document -> reverse_prior_postings -> create_journal_entries
            -> apply_balances -> apply_inventory -> apply_allocations
            -> link_document

Invariants enforced:
    - Validation runs before the first write; a DocumentValidationError
      leaves the session untouched.
    - A posted document whose posting-relevant content is unchanged is not
      re-posted.
    - Services flush; the caller commits (db.engine.session_scope()).

Failure modes:
    - DocumentValidationError: invalid document, nothing written.
    - PartialFailureError: a step failed after earlier steps applied.  The
      session holds the partial state; rolling it back is the caller's call.
    - AccountNotFoundError / EntryNotFoundError from the read paths.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from books_kernel.config import KernelConfig, get_active_config
from books_kernel.domain.clock import Clock, SystemClock
from books_kernel.domain.dtos import AccountLedger, Anomaly, FinancialSummary
from books_kernel.domain.lifecycle import (
    TransitionAction,
    classify_status,
    next_posting_state,
    plan_transition,
    posting_fingerprint,
)
from books_kernel.domain.policies import compute_totals
from books_kernel.domain.saga import Saga, SagaStep
from books_kernel.logging_config import LogContext, get_logger
from books_kernel.models.document import SourceDocument
from books_kernel.models.journal import JournalEntry
from books_kernel.selectors.ledger_selector import LedgerSelector
from books_kernel.services.base import BaseService
from books_kernel.services.posting_engine import PostingEngine, PostingRun, raise_for_outcome
from books_kernel.services.reversal_engine import EntryReversal, ReversalEngine, ReversalRun

logger = get_logger("services.documents")

ZERO = Decimal("0")


@dataclass(frozen=True)
class PostDocumentResult:
    saved_document: SourceDocument
    journal_entry_ids: tuple[UUID, ...]
    action: TransitionAction
    anomalies: tuple[Anomaly, ...] = ()


@dataclass(frozen=True)
class OrphanNotice:
    """Handed to on_orphan when a document's journal_entry_id dangles."""

    document_number: str
    dangling_entry_id: UUID
    remaining_entry_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class DeletionResult:
    document_number: str
    reversed_entry_ids: tuple[UUID, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()
    deleted: bool = True


class DocumentService(BaseService):
    """
    Contract:
        post_document(doc) -> PostDocumentResult
        reverse_and_delete_document(doc) -> DeletionResult
        get_account_balance(account_id) -> Decimal
        get_ledger(account_id, date_from, date_to) -> AccountLedger
    """

    def __init__(self, session, config: KernelConfig | None = None,
                 clock: Clock | None = None):
        super().__init__(session)
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self.posting = PostingEngine(session, self._config, clock=self._clock)
        self.reversal = ReversalEngine(session, clock=self._clock)
        self.ledger = LedgerSelector(session, self._config.account_rules)

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _apply_totals(self, document: SourceDocument) -> None:
        """Derive line amounts and document totals in memory."""
        for index, line in enumerate(document.lines):
            if line.quantity is None:
                line.quantity = Decimal("1")
            if line.tax_rate is None:
                line.tax_rate = ZERO
            line.line_seq = index

        totals = compute_totals(document, self._config.money_places)
        for line, amounts in zip(document.lines, totals.lines):
            line.line_total = amounts.line_total
            line.tax_amount = amounts.tax_amount

        document.subtotal = totals.subtotal
        document.tax_total = totals.tax_total
        document.total_amount = totals.total
        if getattr(document, "allocations", None) is not None:
            for index, allocation in enumerate(document.allocations):
                allocation.line_seq = index
            document.balance_due = ZERO
        else:
            document.balance_due = totals.total - (document.amount_paid or ZERO)

    def save_document(self, document: SourceDocument) -> SourceDocument:
        """Recompute totals and persist ``document`` without touching the ledger."""
        self._apply_totals(document)
        self.session.add(document)
        self.session.flush()
        logger.debug(
            "document_saved",
            extra={
                "document_id": str(document.id),
                "document_number": document.document_number,
                "total_amount": document.total_amount,
            },
        )
        return document

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_document(self, document: SourceDocument,
                      actor: str | None = None) -> PostDocumentResult:
        """
        Save ``document`` and carry out the ledger action its status implies.

        Raises:
            DocumentValidationError: before anything is written.
            PartialFailureError: a step failed after earlier steps applied.
        """
        if document.id is None:
            document.id = uuid4()

        with LogContext.bind(
            company_id=document.company_id,
            document_id=document.id,
            actor_id=actor,
        ):
            with self.session.no_autoflush:
                self._apply_totals(document)
                phase = classify_status(document.document_type, document.status)
                content_changed = posting_fingerprint(document) != document.posted_fingerprint
                action = plan_transition(
                    document.posting_state, phase, content_changed, document.document_number
                )

                plan = None
                if action in (TransitionAction.POST, TransitionAction.REPOST):
                    plan = self.posting.prepare(document)
                reversal_run = None
                if action in (TransitionAction.REPOST, TransitionAction.REVERSE):
                    reversal_run = self.reversal.begin_reversal(document)

            logger.info(
                "document_transition_planned",
                extra={
                    "document_number": document.document_number,
                    "status": document.status,
                    "phase": phase.value,
                    "action": action.value,
                },
            )

            steps = [SagaStep("save_document", lambda: self.save_document(document))]
            if reversal_run is not None:
                steps.append(
                    SagaStep(
                        "reverse_prior_postings",
                        lambda: self._run_steps(
                            self.reversal.reversal_steps(document, reversal_run)
                        ),
                        compensation="re-post the previous version of the document",
                    )
                )
            posting_run = None
            if plan is not None:
                posting_run = PostingRun(plan=plan)
                steps.extend(self.posting.posting_steps(document, posting_run, actor))
            elif action == TransitionAction.REVERSE:
                steps.append(
                    SagaStep(
                        "update_posting_state",
                        lambda: self._set_posting_state(document, action, phase),
                    )
                )

            outcome = Saga(f"{action.value}:{document.document_number}", steps).run()

            mutated: list[UUID] = []
            anomalies: list[Anomaly] = []
            for run in (reversal_run, posting_run):
                if run is None:
                    continue
                mutated.extend(a for a in run.mutated_accounts if a not in mutated)
                anomalies.extend(run.anomalies)
            raise_for_outcome(outcome, document.document_number, mutated)

            if posting_run is not None:
                entry_ids = tuple(e.id for e in posting_run.entries)
            elif action == TransitionAction.NONE and document.journal_entry_id is not None:
                entry_ids = tuple(
                    e.id for e in self.posting.journal.find_by_source_id(document.id)
                )
            else:
                entry_ids = ()

            logger.info(
                "document_posted",
                extra={
                    "document_number": document.document_number,
                    "action": action.value,
                    "entry_ids": [str(i) for i in entry_ids],
                    "mutated_accounts": [str(a) for a in mutated],
                    "anomalies": len(anomalies),
                },
            )

        return PostDocumentResult(
            saved_document=document,
            journal_entry_ids=entry_ids,
            action=action,
            anomalies=tuple(anomalies),
        )

    def _run_steps(self, steps: list[SagaStep]) -> None:
        # Nested steps report through the outer saga's step name
        for step in steps:
            step.action()

    def _set_posting_state(self, document: SourceDocument, action, phase) -> None:
        document.posting_state = next_posting_state(action, phase)
        self.session.flush()

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def reverse_and_delete_document(
        self,
        document: SourceDocument,
        on_orphan: Callable[[OrphanNotice], bool | None] | None = None,
    ) -> DeletionResult:
        """
        Reverse everything ``document`` posted, then delete it.

        When the stored journal_entry_id points at a deleted entry,
        ``on_orphan`` is called first; returning False aborts before any
        change.  Any other return value (or no callback) proceeds: the
        remaining matched entries are reversed and the document removed.

        Raises:
            PartialFailureError: a step failed after earlier steps applied.
        """
        with LogContext.bind(company_id=document.company_id, document_id=document.id):
            run: ReversalRun = self.reversal.begin_reversal(document)

            if run.match.dangling_entry_id is not None and on_orphan is not None:
                notice = OrphanNotice(
                    document_number=document.document_number,
                    dangling_entry_id=run.match.dangling_entry_id,
                    remaining_entry_ids=run.match.entry_ids,
                )
                if on_orphan(notice) is False:
                    logger.info(
                        "document_deletion_aborted",
                        extra={
                            "document_number": document.document_number,
                            "dangling_entry_id": str(notice.dangling_entry_id),
                        },
                    )
                    return DeletionResult(
                        document_number=document.document_number,
                        anomalies=tuple(run.anomalies),
                        deleted=False,
                    )

            steps = self.reversal.reversal_steps(document, run)
            steps.append(
                SagaStep(
                    "delete_document",
                    lambda: self._delete(document),
                    compensation="recreate the source document",
                )
            )
            outcome = Saga(f"delete:{document.document_number}", steps).run()
            raise_for_outcome(outcome, document.document_number, run.mutated_accounts)

            logger.info(
                "document_deleted",
                extra={
                    "document_number": document.document_number,
                    "reversed_entry_ids": [str(i) for i in run.reversed_entry_ids],
                    "anomalies": len(run.anomalies),
                },
            )

        return DeletionResult(
            document_number=document.document_number,
            reversed_entry_ids=tuple(run.reversed_entry_ids),
            anomalies=tuple(run.anomalies),
        )

    def _delete(self, document: SourceDocument) -> None:
        self.session.delete(document)
        self.session.flush()

    # ------------------------------------------------------------------
    # Reads and orphan cleanup
    # ------------------------------------------------------------------

    def get_account_balance(self, account_id: UUID) -> Decimal:
        """
        Raises:
            AccountNotFoundError: no account has this id.
        """
        return self.ledger.cached_balance(account_id)

    def get_ledger(self, account_id: UUID, date_from=None, date_to=None) -> AccountLedger:
        return self.ledger.ledger(account_id, date_from, date_to)

    def financial_summary(self, company_id: UUID) -> FinancialSummary:
        return self.ledger.summary(company_id)

    def find_orphaned_entries(self, company_id: UUID) -> list[JournalEntry]:
        return self.reversal.find_orphaned_entries(company_id)

    def delete_orphaned_entry(self, entry_id: UUID) -> EntryReversal:
        return self.reversal.delete_orphaned_entry(entry_id)
