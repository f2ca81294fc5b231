"""
Module: books_kernel.models.account
Responsibility: ORM persistence for the chart of accounts and each account's
    cached running balance.
Architecture position: Kernel > Models.  May import from db/ and domain/polarity.
Invariants enforced:
    - balance equals the signed sum of every posted journal line effect on
      this account.  Only the balance service writes it (db/guards.py).
    - version is the optimistic-concurrency token.  A flush whose UPDATE
      matches no row (someone else bumped the version) raises StaleDataError,
      which the balance service surfaces as OptimisticLockError.
Failure modes:
    - AccountNotFoundError when a posting references a non-existent account.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from books_kernel.db.base import TrackedBase, UUIDString
from books_kernel.db.types import Money
from books_kernel.domain import polarity


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"


class Account(TrackedBase):
    """
    Chart of accounts entry for one company.

    Contract:
        (company_id, account_code) is unique.  account_type decides the
        account's polarity through domain.polarity.is_debit_normal().
    Non-goals:
        - No parent/child hierarchy and no per-account currency.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("company_id", "account_code", name="uq_account_company_code"),
        Index("idx_account_company_type", "company_id", "account_type"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_code: Mapped[str] = mapped_column(String(50), nullable=False)

    account_name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(30), nullable=False)

    # Cached projection of posted journal lines
    balance: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Account {self.account_code}: {self.account_name}>"

    @property
    def is_debit_normal(self) -> bool:
        return polarity.is_debit_normal(self.account_type)

    @property
    def is_credit_normal(self) -> bool:
        return not self.is_debit_normal
