"""Services for the books kernel (write side)."""

from books_kernel.services.balance_service import BalanceService, BalanceUpdate
from books_kernel.services.document_service import (
    DeletionResult,
    DocumentService,
    OrphanNotice,
    PostDocumentResult,
)
from books_kernel.services.entity_store import EntityStore
from books_kernel.services.inventory_coordinator import InventoryCoordinator, InventoryResult
from books_kernel.services.journal_store import JournalStore, MatchResult
from books_kernel.services.posting_engine import PostingEngine, PostingResult
from books_kernel.services.reversal_engine import EntryReversal, ReversalEngine, ReversalReport

__all__ = [
    "BalanceService",
    "BalanceUpdate",
    "DeletionResult",
    "DocumentService",
    "EntityStore",
    "EntryReversal",
    "InventoryCoordinator",
    "InventoryResult",
    "JournalStore",
    "MatchResult",
    "OrphanNotice",
    "PostDocumentResult",
    "PostingEngine",
    "PostingResult",
    "ReversalEngine",
    "ReversalReport",
]
