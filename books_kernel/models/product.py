"""
Module: books_kernel.models.product
Responsibility: ORM persistence for products and the inventory movements that
    posted documents record against them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity_on_hand is written only by the inventory coordinator, after a
      fresh locked read.  version guards the write like Account.version.
    - InventoryTransaction rows are append-only.  Reversing a posting deletes
      the rows it created; it never writes compensating rows.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from books_kernel.db.base import TrackedBase, UUIDString
from books_kernel.db.types import Money


class ProductType(str, Enum):
    INVENTORY = "inventory"
    NON_INVENTORY = "non_inventory"
    SERVICE = "service"


class InventoryTransactionType(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


class Product(TrackedBase):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("company_id", "sku", name="uq_product_company_sku"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product_type: Mapped[ProductType] = mapped_column(
        String(20),
        nullable=False,
        default=ProductType.INVENTORY.value,
    )

    # Cost basis used for COGS
    cost_price: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    sale_price: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    quantity_on_hand: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Product {self.sku or self.id}: {self.product_name}>"

    @property
    def is_inventory(self) -> bool:
        return self.product_type == ProductType.INVENTORY


class InventoryTransaction(TrackedBase):
    """One stock movement caused by a posted bill or invoice line."""

    __tablename__ = "inventory_transactions"
    __table_args__ = (
        Index("idx_inventory_reference", "reference_id"),
        Index("idx_inventory_product", "product_id"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. INV-<invoice number>-<product id>
    transaction_number: Mapped[str] = mapped_column(String(200), nullable=False)

    transaction_date: Mapped[date] = mapped_column(nullable=False)

    transaction_type: Mapped[InventoryTransactionType] = mapped_column(
        String(20),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    quantity_in: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    quantity_out: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    unit_cost: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    total_value: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    reference_type: Mapped[str] = mapped_column(String(20), nullable=False)

    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def net_quantity(self) -> Decimal:
        """Quantity this movement added to stock (negative for sales)."""
        return self.quantity_in - self.quantity_out
