"""
Typed exception hierarchy for the books kernel.

Every error the kernel raises is a BooksKernelError subclass with a
machine-readable ``code`` class attribute and the relevant context stored
as attributes, so callers catch by type and read structured data instead
of parsing message strings.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BooksKernelError (base)
    |
    +-- ValidationError
    |   +-- DocumentValidationError
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- InvalidLineAmountError
    |   +-- PartialFailureError
    |
    +-- NotFoundError
    |   +-- EntryNotFoundError
    |   +-- AccountNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- ProductNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- IntegrityError
    |   +-- BalanceWriteViolationError
    |   +-- EntryImmutableError
    |
    +-- LifecycleError
        +-- InvalidTransitionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|-------------------------------------
Validation   | DOCUMENT_INVALID          | Document fails posting validation;
             |                           | nothing has been mutated
-------------|---------------------------|-------------------------------------
Posting      | UNBALANCED_ENTRY          | |debits - credits| above tolerance
             | INVALID_LINE_AMOUNT       | Negative or double-sided line
             | PARTIAL_FAILURE           | A posting/reversal step failed after
             |                           | earlier steps were applied
-------------|---------------------------|-------------------------------------
Not found    | ENTRY_NOT_FOUND           | Journal entry id doesn't exist
             | ACCOUNT_NOT_FOUND         | Account id doesn't exist
             | DOCUMENT_NOT_FOUND        | Source document id doesn't exist
             | PRODUCT_NOT_FOUND         | Product id doesn't exist
-------------|---------------------------|-------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT  | Row changed under a cached write
-------------|---------------------------|-------------------------------------
Integrity    | BALANCE_WRITE_VIOLATION   | Account.balance written outside the
             |                           | balance service
             | ENTRY_IMMUTABLE           | Journal entry/line edited in place
-------------|---------------------------|-------------------------------------
Lifecycle    | INVALID_TRANSITION        | Document lifecycle move not allowed

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        service.post_document(bill)
    except DocumentValidationError as e:
        show_form_errors(e.problems)           # nothing to clean up
    except PartialFailureError as e:
        session.rollback()                     # or repair from e.steps_done
        alert(e.document_number, e.failed_step, e.mutated_accounts)
"""

from decimal import Decimal
from typing import Any, Sequence


class BooksKernelError(Exception):
    """
    Base exception for all books kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BOOKS_KERNEL_ERROR"


# Validation


class ValidationError(BooksKernelError):
    """Base exception for input validation failures."""

    code: str = "VALIDATION_ERROR"


class DocumentValidationError(ValidationError):
    """Document cannot be posted; raised before any side effect."""

    code: str = "DOCUMENT_INVALID"

    def __init__(self, document_number: str | None, problems: Sequence[str]):
        self.document_number = document_number
        self.problems = list(problems)
        label = document_number or "<unsaved document>"
        super().__init__(
            f"Document {label} cannot be posted: " + "; ".join(self.problems)
        )


# Posting


class PostingError(BooksKernelError):
    """Base exception for posting-related errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits within tolerance."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, entry_number: str | None, debits: Decimal, credits: Decimal):
        self.entry_number = entry_number
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Unbalanced entry {entry_number}: debits={debits}, credits={credits}"
        )


class InvalidLineAmountError(PostingError):
    """Journal line has a negative amount or both sides populated."""

    code: str = "INVALID_LINE_AMOUNT"

    def __init__(self, account_id: Any, debit: Decimal, credit: Decimal):
        self.account_id = account_id
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Invalid line amounts for account {account_id}: "
            f"debit={debit}, credit={credit}"
        )


class PartialFailureError(PostingError):
    """
    A multi-step operation failed after some steps were already applied.

    Completed steps are not rolled back by the kernel. The session still
    holds their effects until the caller commits or rolls back.
    """

    code: str = "PARTIAL_FAILURE"

    def __init__(
        self,
        document_number: str | None,
        failed_step: str,
        steps_done: Sequence[str],
        steps_remaining: Sequence[str],
        mutated_accounts: Sequence[Any],
        cause: BaseException,
    ):
        self.document_number = document_number
        self.failed_step = failed_step
        self.steps_done = list(steps_done)
        self.steps_remaining = list(steps_remaining)
        self.mutated_accounts = list(mutated_accounts)
        self.cause = cause
        super().__init__(
            f"Document {document_number}: step '{failed_step}' failed after "
            f"{self.steps_done or 'no steps'} ({type(cause).__name__}: {cause})"
        )


# Lookup


class NotFoundError(BooksKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"
    entity_type: str = "record"

    def __init__(self, entity_id: Any):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class EntryNotFoundError(NotFoundError):
    code: str = "ENTRY_NOT_FOUND"
    entity_type = "Journal entry"


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"
    entity_type = "Account"


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"
    entity_type = "Document"


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"
    entity_type = "Product"


# Concurrency


class ConcurrencyError(BooksKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "row was modified by another transaction"
        )


# Integrity


class IntegrityError(BooksKernelError):
    """Base exception for write-path integrity guards."""

    code: str = "INTEGRITY_ERROR"


class BalanceWriteViolationError(IntegrityError):
    """Account.balance changed outside the balance service."""

    code: str = "BALANCE_WRITE_VIOLATION"

    def __init__(self, account_id: Any, account_name: str | None):
        self.account_id = account_id
        self.account_name = account_name
        super().__init__(
            f"Balance of account {account_name} ({account_id}) may only be "
            "changed by posting or reversing journal entries"
        )


class EntryImmutableError(IntegrityError):
    """Journal entry or line modified in place after creation."""

    code: str = "ENTRY_IMMUTABLE"

    def __init__(self, entity_type: str, entity_id: str, field: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field = field
        super().__init__(
            f"Cannot modify field '{field}' on {entity_type} {entity_id}; "
            "delete and re-post instead"
        )


# Lifecycle


class LifecycleError(BooksKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """Requested document lifecycle transition is not allowed."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, document_number: str | None, from_state: str, to_phase: str):
        self.document_number = document_number
        self.from_state = from_state
        self.to_phase = to_phase
        super().__init__(
            f"Document {document_number}: cannot move from {from_state} to {to_phase}"
        )
