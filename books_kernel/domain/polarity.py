"""
Module: books_kernel.domain.polarity
Responsibility: The single authority on account polarity and the only balance
    arithmetic in the kernel.
Architecture position: Kernel > Domain.  Pure functions, no I/O.  MUST NOT
    import from db/, models/, services/ or selectors/.

Invariants enforced:
    - asset, expense and cost_of_goods_sold are debit-normal; every other
      account type is credit-normal.
    - inverse_delta() is the exact negation of signed_delta(), so
      balance + signed_delta + inverse_delta == balance for every Decimal.

Every place that turns a journal line into a balance change (incremental
posting, reversal, full recomputation, running ledgers) goes through
signed_delta() or inverse_delta().
"""

from decimal import Decimal
from enum import Enum

DEBIT_NORMAL_TYPES: frozenset[str] = frozenset(
    {"asset", "expense", "cost_of_goods_sold"}
)


def _type_value(account_type: str | Enum) -> str:
    if isinstance(account_type, Enum):
        return str(account_type.value)
    return str(account_type)


def is_debit_normal(account_type: str | Enum) -> bool:
    """Return True when the account type's balance grows with debits."""
    return _type_value(account_type) in DEBIT_NORMAL_TYPES


def signed_delta(account_type: str | Enum, debit: Decimal, credit: Decimal) -> Decimal:
    """
    Balance change a journal line applies to an account.

    Debit-normal: debit - credit.  Credit-normal: credit - debit.
    """
    if is_debit_normal(account_type):
        return debit - credit
    return credit - debit


def inverse_delta(account_type: str | Enum, debit: Decimal, credit: Decimal) -> Decimal:
    """
    Balance change that exactly undoes signed_delta() for the same line.

    Debit-normal: credit - debit (balance - debit + credit).
    Credit-normal: debit - credit (balance - credit + debit).
    """
    return -signed_delta(account_type, debit, credit)
