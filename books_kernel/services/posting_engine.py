"""
PostingEngine -- turns a validated document into ledger and stock effects.

Responsibility:
    1. prepare(): load the reference data a policy needs (chart of accounts,
       products, bills) and let the document's policy validate it and build
       a PostingPlan.  Nothing is written; an invalid document raises
       DocumentValidationError here.
    2. posting_steps(): the ordered saga steps that carry the plan out:

           create_journal_entries   JournalStore.create_entry per EntrySpec
           apply_balances           BalanceService.apply_entry per entry
           apply_inventory          InventoryCoordinator.record_posting
           apply_allocations        payments only: settle the linked bills
           link_document            journal_entry_id, fingerprint, state

    3. post(): runs just those steps and raises PartialFailureError when one
       fails after others succeeded.

Architecture position:
    Kernel > Services.  Uses the pure policies in domain/policies.py and the
    journal, balance and inventory services.  DocumentService prepends its
    own save / reverse steps to the same saga.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from books_kernel.config import KernelConfig
from books_kernel.domain.clock import Clock, SystemClock
from books_kernel.domain.dtos import Anomaly, PostingPlan
from books_kernel.domain.policies import (
    AccountRef,
    PostingContext,
    ProductRef,
    policy_for,
)
from books_kernel.domain.saga import PartiallyFailed, Saga, SagaStep
from books_kernel.exceptions import PartialFailureError
from books_kernel.logging_config import LogContext, get_logger
from books_kernel.models.account import Account
from books_kernel.models.document import Bill, PostingState, SourceDocument
from books_kernel.models.journal import JournalEntry
from books_kernel.models.product import Product
from books_kernel.services.balance_service import BalanceService
from books_kernel.services.base import BaseService
from books_kernel.services.inventory_coordinator import InventoryCoordinator
from books_kernel.services.journal_store import JournalStore

logger = get_logger("services.posting")

PAID_TOLERANCE = Decimal("0.01")


@dataclass
class PostingRun:
    """Mutable accumulator shared by the steps of one posting."""

    plan: PostingPlan
    entries: list[JournalEntry] = field(default_factory=list)
    mutated_accounts: list[UUID] = field(default_factory=list)
    inventory_transaction_ids: list[UUID] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)

    def touch(self, account_ids) -> None:
        for account_id in account_ids:
            if account_id not in self.mutated_accounts:
                self.mutated_accounts.append(account_id)


@dataclass(frozen=True)
class PostingResult:
    entry_ids: tuple[UUID, ...]
    mutated_accounts: tuple[UUID, ...]
    inventory_transaction_ids: tuple[UUID, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()

    @classmethod
    def from_run(cls, run: PostingRun) -> PostingResult:
        return cls(
            entry_ids=tuple(e.id for e in run.entries),
            mutated_accounts=tuple(run.mutated_accounts),
            inventory_transaction_ids=tuple(run.inventory_transaction_ids),
            anomalies=tuple(run.anomalies),
        )


def settle_bill_status(bill: Bill) -> str:
    """Status a bill takes after its amount_paid changed."""
    if bill.balance_due <= PAID_TOLERANCE:
        return "paid"
    return "partial"


class PostingEngine(BaseService):
    """
    Contract:
        post() either completes every step or raises.  A failure before any
        step completes propagates unchanged; a later failure raises
        PartialFailureError naming the completed steps and mutated accounts.
    Non-goals:
        - Deciding whether a document should post (see domain/lifecycle.py).
        - Undoing completed steps on failure.
    """

    def __init__(self, session, config: KernelConfig, clock: Clock | None = None):
        super().__init__(session)
        self._config = config
        self._clock = clock or SystemClock()
        self.journal = JournalStore(
            session,
            clock=self._clock,
            tolerance=config.balance_tolerance,
            posted_by=config.posted_by,
        )
        self.balances = BalanceService(session)
        self.inventory = InventoryCoordinator(session, clock=self._clock)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def build_context(self, document: SourceDocument) -> PostingContext:
        accounts = {
            a.id: AccountRef(
                id=a.id,
                account_code=a.account_code,
                account_name=a.account_name,
                account_type=str(getattr(a.account_type, "value", a.account_type)),
            )
            for a in self.session.scalars(
                select(Account).where(Account.company_id == document.company_id)
            )
        }

        product_ids = {l.product_id for l in document.lines if l.product_id is not None}
        products = {}
        if product_ids:
            for p in self.session.scalars(select(Product).where(Product.id.in_(product_ids))):
                products[p.id] = ProductRef(
                    id=p.id,
                    product_name=p.product_name,
                    product_type=str(getattr(p.product_type, "value", p.product_type)),
                    cost_price=p.cost_price,
                )

        bill_ids: frozenset[UUID] = frozenset()
        allocations = getattr(document, "allocations", None)
        if allocations:
            wanted = {a.bill_id for a in allocations}
            bill_ids = frozenset(
                self.session.scalars(
                    select(Bill.id)
                    .where(Bill.id.in_(wanted))
                    .where(Bill.company_id == document.company_id)
                )
            )

        return PostingContext(
            accounts=accounts,
            products=products,
            bill_ids=bill_ids,
            rules=self._config.account_rules,
            money_places=self._config.money_places,
        )

    def prepare(self, document: SourceDocument) -> PostingPlan:
        """
        Validate ``document`` and compute its posting plan.

        Raises:
            DocumentValidationError: the document cannot be posted.
        """
        plan = policy_for(document.document_type).plan(document, self.build_context(document))
        for warning in plan.warnings:
            logger.warning(
                "posting_plan_warning",
                extra={"document_number": plan.document_number, "warning": warning},
            )
        return plan

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def posting_steps(self, document: SourceDocument, run: PostingRun,
                      actor: str | None = None) -> list[SagaStep]:
        steps = [
            SagaStep(
                "create_journal_entries",
                lambda: self._create_entries(run, actor),
                compensation="delete the created journal entries",
            ),
            SagaStep(
                "apply_balances",
                lambda: self._apply_balances(run),
                compensation="reverse the applied balance deltas",
            ),
            SagaStep(
                "apply_inventory",
                lambda: self._apply_inventory(document, run),
                compensation="restore stock and delete inventory transactions",
            ),
        ]
        if run.plan.allocations:
            steps.append(
                SagaStep(
                    "apply_allocations",
                    lambda: self._apply_allocations(document, run),
                    compensation="take the payment back off the settled bills",
                )
            )
        steps.append(
            SagaStep(
                "link_document",
                lambda: self._link_document(document, run),
                compensation="clear journal_entry_id and posted_fingerprint",
            )
        )
        return steps

    def _create_entries(self, run: PostingRun, actor: str | None) -> None:
        for spec in run.plan.entries:
            run.entries.append(self.journal.create_entry(spec, posted_by=actor))

    def _apply_balances(self, run: PostingRun) -> None:
        for entry in run.entries:
            update = self.balances.apply_entry(entry)
            run.touch(update.mutated_accounts)

    def _apply_inventory(self, document: SourceDocument, run: PostingRun) -> None:
        if not run.plan.movements:
            return
        result = self.inventory.record_posting(document, run.plan)
        run.inventory_transaction_ids.extend(result.transaction_ids)
        run.anomalies.extend(result.anomalies)

    def _apply_allocations(self, document: SourceDocument, run: PostingRun) -> None:
        for allocation in document.allocations:
            bill = self.session.scalars(
                select(Bill)
                .where(Bill.id == allocation.bill_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            # validated by the policy; a concurrent delete surfaces here
            if bill is None:
                raise LookupError(f"Bill {allocation.bill_id} disappeared during posting")
            allocation.bill_status_before = bill.status
            bill.amount_paid = bill.amount_paid + allocation.amount
            bill.balance_due = bill.total_amount - bill.amount_paid
            bill.status = settle_bill_status(bill)
            allocation.applied = True
            allocation.applied_amount = allocation.amount
            logger.info(
                "bill_settled",
                extra={
                    "bill_id": str(bill.id),
                    "bill_number": bill.document_number,
                    "amount": allocation.amount,
                    "balance_due": bill.balance_due,
                    "status": bill.status,
                },
            )
        self.session.flush()

    def _link_document(self, document: SourceDocument, run: PostingRun) -> None:
        document.journal_entry_id = run.entries[0].id if run.entries else None
        document.posted_fingerprint = run.plan.fingerprint
        document.posting_state = PostingState.POSTED.value
        self.session.flush()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def post(self, document: SourceDocument, plan: PostingPlan | None = None,
             actor: str | None = None) -> PostingResult:
        """
        Post a saved document.

        Preconditions:
            - document is persistent in this session.
            - Nothing is currently posted for it (reverse first otherwise).
        Raises:
            DocumentValidationError: invalid document, nothing written.
            PartialFailureError: a step failed after earlier steps applied.
        """
        plan = plan or self.prepare(document)
        run = PostingRun(plan=plan)

        with LogContext.bind(document_id=document.id, company_id=document.company_id):
            outcome = Saga(f"post:{plan.document_number}",
                           self.posting_steps(document, run, actor)).run()
            raise_for_outcome(outcome, plan.document_number, run.mutated_accounts)

            logger.info(
                "posting_completed",
                extra={
                    "document_number": plan.document_number,
                    "document_type": plan.document_type,
                    "entry_ids": [str(e.id) for e in run.entries],
                    "mutated_accounts": [str(a) for a in run.mutated_accounts],
                    "inventory_transactions": len(run.inventory_transaction_ids),
                },
            )
        return PostingResult.from_run(run)


def raise_for_outcome(outcome, document_number: str, mutated_accounts) -> None:
    """
    Translate a failed saga outcome into an exception.

    A failure in the very first step re-raises the original exception
    (nothing was applied); later failures raise PartialFailureError.
    """
    if not isinstance(outcome, PartiallyFailed):
        return
    if not outcome.steps_done:
        raise outcome.cause
    raise PartialFailureError(
        document_number=document_number,
        failed_step=outcome.failed_step,
        steps_done=outcome.steps_done,
        steps_remaining=outcome.steps_remaining,
        mutated_accounts=mutated_accounts,
        cause=outcome.cause,
    ) from outcome.cause
