"""
Document lifecycle -- when a save must post, re-post or reverse.

Each document kind maps its user-facing statuses onto three phases:

    DRAFT     not yet (or no longer) meant to hit the ledger
    POSTABLE  the ledger must reflect the document
    VOID      cancelled; the ledger must not reflect it

Combined with the document's posting_state (what the ledger currently
reflects) and whether the posting-relevant content changed, the transition
table below yields exactly one action:

    posting_state | phase     | content changed | action
    --------------|-----------|-----------------|--------
    draft / void  | postable  | -               | POST
    posted        | postable  | yes             | REPOST
    posted        | postable  | no              | NONE
    posted        | draft     | -               | REVERSE
    posted        | void      | -               | REVERSE
    draft / void  | draft     | -               | NONE
    draft / void  | void      | -               | NONE

Saving a posted bill with only its notes changed is therefore a no-op for the
ledger, and a partial payment moving a bill from approved to partial does not
re-post it.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from books_kernel.exceptions import InvalidTransitionError
from books_kernel.utils.hashing import hash_payload


class DocumentPhase(str, Enum):
    DRAFT = "draft"
    POSTABLE = "postable"
    VOID = "void"


class TransitionAction(str, Enum):
    NONE = "none"
    POST = "post"
    REPOST = "repost"
    REVERSE = "reverse"


_POSTABLE_STATUSES: dict[str, frozenset[str]] = {
    "bill": frozenset({"pending", "approved", "partial", "paid"}),
    "invoice": frozenset({"sent", "partial", "paid", "overdue"}),
    "payment": frozenset({"completed"}),
}

_VOID_STATUS = "void"

_POSTING_STATES = frozenset({"draft", "posted", "void"})


def _value(v: Any) -> str:
    return str(getattr(v, "value", v))


def classify_status(document_type: Any, status: Any) -> DocumentPhase:
    """
    Map a document status to its lifecycle phase.

    Unknown statuses are treated as drafts: they never post.
    """
    status_value = _value(status)
    if status_value == _VOID_STATUS:
        return DocumentPhase.VOID
    if status_value in _POSTABLE_STATUSES.get(_value(document_type), frozenset()):
        return DocumentPhase.POSTABLE
    return DocumentPhase.DRAFT


def plan_transition(
    posting_state: Any,
    phase: DocumentPhase,
    content_changed: bool,
    document_number: str | None = None,
) -> TransitionAction:
    """
    Pick the ledger action for a save (see the module table).

    A posting_state of None (document never saved) counts as draft.

    Raises:
        InvalidTransitionError: posting_state is not draft, posted or void.
    """
    state = "draft" if posting_state is None else _value(posting_state)
    if state not in _POSTING_STATES:
        raise InvalidTransitionError(document_number, state, _value(phase))
    posted = state == "posted"

    if phase == DocumentPhase.POSTABLE:
        if not posted:
            return TransitionAction.POST
        return TransitionAction.REPOST if content_changed else TransitionAction.NONE

    if posted:
        return TransitionAction.REVERSE
    return TransitionAction.NONE


def next_posting_state(action: TransitionAction, phase: DocumentPhase) -> str:
    """posting_state after ``action`` has been carried out."""
    if action in (TransitionAction.POST, TransitionAction.REPOST):
        return "posted"
    if action == TransitionAction.REVERSE:
        return "void" if phase == DocumentPhase.VOID else "draft"
    return "posted" if phase == DocumentPhase.POSTABLE else _value(phase)


def _amount(value: Any) -> str:
    return str(Decimal(value).normalize()) if value is not None else "0"


def posting_fingerprint(document: Any) -> str:
    """
    SHA-256 over every field that influences the ledger or stock.

    Status, notes, due dates and amounts paid are not part of it.
    """
    payload: dict[str, Any] = {
        "type": _value(document.document_type),
        "number": document.document_number,
        "date": document.document_date,
        "contact": document.contact_name,
        "accounts": {
            name: getattr(document, name)
            for name in (
                "ap_account_id",
                "ar_account_id",
                "expense_account_id",
                "revenue_account_id",
                "tax_account_id",
                "inventory_account_id",
                "cogs_account_id",
                "bank_account_id",
            )
        },
        "lines": [
            {
                "product_id": line.product_id,
                "quantity": _amount(line.quantity),
                "unit_price": _amount(line.unit_price),
                "tax_rate": _amount(line.tax_rate),
            }
            for line in document.lines
        ],
    }
    allocations = getattr(document, "allocations", None)
    if allocations is not None:
        payload["allocations"] = [
            {"bill_id": a.bill_id, "amount": _amount(a.amount)} for a in allocations
        ]
    return hash_payload(payload)
