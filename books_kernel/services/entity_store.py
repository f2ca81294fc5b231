"""
EntityStore -- generic record access over a SQLAlchemy session.

The host application's document store contract (get / filter / list /
create / update / delete by model and id) implemented on the kernel's
session, so host code and kernel share one transaction.

Lookups by id raise the NotFoundError subtype matching the model:

    Account          -> AccountNotFoundError
    JournalEntry     -> EntryNotFoundError
    SourceDocument   -> DocumentNotFoundError   (Bill, Invoice, Payment)
    Product          -> ProductNotFoundError
    anything else    -> NotFoundError
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select

from books_kernel.db.base import Base
from books_kernel.exceptions import (
    AccountNotFoundError,
    DocumentNotFoundError,
    EntryNotFoundError,
    NotFoundError,
    ProductNotFoundError,
)
from books_kernel.logging_config import get_logger
from books_kernel.models.account import Account
from books_kernel.models.document import SourceDocument
from books_kernel.models.journal import JournalEntry
from books_kernel.models.product import Product
from books_kernel.services.base import BaseService

logger = get_logger("services.entity_store")

ModelT = TypeVar("ModelT", bound=Base)

_NOT_FOUND: tuple[tuple[type, type[NotFoundError]], ...] = (
    (Account, AccountNotFoundError),
    (JournalEntry, EntryNotFoundError),
    (SourceDocument, DocumentNotFoundError),
    (Product, ProductNotFoundError),
)


def not_found_error(model: type, entity_id: Any) -> NotFoundError:
    for base, error in _NOT_FOUND:
        if issubclass(model, base):
            return error(entity_id)
    return NotFoundError(entity_id)


class EntityStore(BaseService):
    """Record-level CRUD.  Flushes, never commits."""

    def get(self, model: type[ModelT], entity_id: UUID) -> ModelT:
        """
        Raises:
            NotFoundError: (model-specific subtype) when no row has this id.
        """
        instance = self.session.get(model, entity_id)
        if instance is None or not isinstance(instance, model):
            raise not_found_error(model, entity_id)
        return instance

    def find(self, model: type[ModelT], entity_id: UUID | None) -> ModelT | None:
        """Like get(), but returns None instead of raising."""
        if entity_id is None:
            return None
        instance = self.session.get(model, entity_id)
        return instance if isinstance(instance, model) else None

    def filter(self, model: type[ModelT], order_by: Any = None, **criteria: Any) -> list[ModelT]:
        """
        Rows whose columns equal the given values.

        A list, tuple, set or frozenset value matches any of its members.
        """
        stmt = select(model)
        for name, value in criteria.items():
            column = getattr(model, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return list(self.session.scalars(stmt))

    def list(self, model: type[ModelT], order_by: Any = None) -> Sequence[ModelT]:
        return self.filter(model, order_by=order_by)

    def create(self, model_or_instance: type[ModelT] | ModelT, **fields: Any) -> ModelT:
        if isinstance(model_or_instance, type):
            instance = model_or_instance(**fields)
        else:
            instance = model_or_instance
            for name, value in fields.items():
                setattr(instance, name, value)
        self.session.add(instance)
        self.session.flush()
        return instance

    def update(self, model: type[ModelT], entity_id: UUID, **changes: Any) -> ModelT:
        instance = self.get(model, entity_id)
        for name, value in changes.items():
            setattr(instance, name, value)
        self.session.flush()
        return instance

    def delete(self, model: type[ModelT], entity_id: UUID) -> None:
        instance = self.get(model, entity_id)
        self.session.delete(instance)
        self.session.flush()
        logger.debug(
            "record_deleted",
            extra={"model": model.__name__, "entity_id": str(entity_id)},
        )
