"""
InventoryCoordinator -- stock side effects of posted documents.

Responsibility:
    Applies a posting plan's inventory movements to Product.quantity_on_hand
    and records one InventoryTransaction per movement.  Reversal is driven
    entirely by those transaction rows: each row's net quantity is taken back
    out of stock and the row is deleted.

Invariants enforced:
    - quantity_on_hand is written only after a fresh, locked read.
    - A product that disappeared between planning and writing is skipped
      with a warning; the remaining movements still apply.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from books_kernel.domain.clock import Clock, SystemClock
from books_kernel.domain.dtos import Anomaly, AnomalyKind, PostingPlan
from books_kernel.exceptions import OptimisticLockError
from books_kernel.logging_config import get_logger
from books_kernel.models.product import InventoryTransaction, Product
from books_kernel.services.base import BaseService

logger = get_logger("services.inventory")


@dataclass(frozen=True)
class InventoryResult:
    transaction_ids: tuple[UUID, ...] = ()
    touched_products: tuple[UUID, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()


class InventoryCoordinator(BaseService):

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _lock_product(self, product_id: UUID) -> Product | None:
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).first()

    def _flush(self, product_id: UUID | None) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("Product", product_id) from exc

    def _missing(self, product_id: UUID, document_number: str) -> Anomaly:
        logger.warning(
            "inventory_product_missing",
            extra={"product_id": str(product_id), "document_number": document_number},
        )
        return Anomaly(
            kind=AnomalyKind.MISSING_PRODUCT,
            entity_id=product_id,
            message=f"Product {product_id} on {document_number} no longer exists; "
            "stock not adjusted",
        )

    def record_posting(self, document, plan: PostingPlan) -> InventoryResult:
        """
        Apply every movement in ``plan`` and write its transaction row.

        Bills add stock (purchase, quantity_in); invoices remove it (sale,
        quantity_out).
        """
        transaction_ids: list[UUID] = []
        touched: list[UUID] = []
        anomalies: list[Anomaly] = []

        for movement in plan.movements:
            product = self._lock_product(movement.product_id)
            if product is None:
                anomalies.append(self._missing(movement.product_id, plan.document_number))
                continue

            product.quantity_on_hand = product.quantity_on_hand + movement.quantity_delta
            quantity = abs(movement.quantity_delta)
            txn = InventoryTransaction(
                company_id=document.company_id,
                transaction_number=(
                    f"INV-{plan.document_number}-{product.id}"
                ),
                transaction_date=document.document_date,
                transaction_type=movement.transaction_type,
                product_id=product.id,
                quantity_in=quantity if movement.quantity_delta > 0 else Decimal("0"),
                quantity_out=quantity if movement.quantity_delta < 0 else Decimal("0"),
                unit_cost=movement.unit_cost,
                total_value=movement.total_value,
                reference_type=plan.document_type,
                reference_id=document.id,
                reference_number=plan.document_number,
                notes=movement.description,
            )
            self.session.add(txn)
            self._flush(product.id)

            transaction_ids.append(txn.id)
            touched.append(product.id)
            logger.info(
                "inventory_adjusted",
                extra={
                    "product_id": str(product.id),
                    "quantity_delta": movement.quantity_delta,
                    "quantity_on_hand": product.quantity_on_hand,
                    "transaction_type": movement.transaction_type,
                    "document_number": plan.document_number,
                },
            )

        return InventoryResult(
            transaction_ids=tuple(transaction_ids),
            touched_products=tuple(touched),
            anomalies=tuple(anomalies),
        )

    def transactions_for(self, document_id: UUID) -> list[InventoryTransaction]:
        stmt = (
            select(InventoryTransaction)
            .where(InventoryTransaction.reference_id == document_id)
            .order_by(InventoryTransaction.created_at, InventoryTransaction.transaction_number)
        )
        return list(self.session.scalars(stmt))

    def reverse_document(self, document) -> InventoryResult:
        """
        Undo every stock movement recorded for ``document``.

        Each transaction row's net quantity (in - out) is subtracted from
        its product and the row is deleted.  Rows for products that no
        longer exist are deleted without a stock change.
        """
        touched: list[UUID] = []
        removed: list[UUID] = []
        anomalies: list[Anomaly] = []

        for txn in self.transactions_for(document.id):
            product = self._lock_product(txn.product_id)
            if product is None:
                anomalies.append(self._missing(txn.product_id, document.document_number))
            else:
                product.quantity_on_hand = product.quantity_on_hand - txn.net_quantity
                touched.append(product.id)
                logger.info(
                    "inventory_restored",
                    extra={
                        "product_id": str(product.id),
                        "quantity_delta": -txn.net_quantity,
                        "quantity_on_hand": product.quantity_on_hand,
                        "document_number": document.document_number,
                    },
                )
            removed.append(txn.id)
            self.session.delete(txn)
            self._flush(txn.product_id)

        return InventoryResult(
            transaction_ids=tuple(removed),
            touched_products=tuple(touched),
            anomalies=tuple(anomalies),
        )
