"""ORM models for the books kernel."""

from books_kernel.models.account import Account, AccountType
from books_kernel.models.document import (
    Bill,
    BillStatus,
    DocumentLine,
    DocumentType,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentAllocation,
    PaymentStatus,
    PostingState,
    SourceDocument,
)
from books_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    SourceType,
)
from books_kernel.models.product import (
    InventoryTransaction,
    InventoryTransactionType,
    Product,
    ProductType,
)

__all__ = [
    "Account",
    "AccountType",
    "Bill",
    "BillStatus",
    "DocumentLine",
    "DocumentType",
    "Invoice",
    "InvoiceStatus",
    "Payment",
    "PaymentAllocation",
    "PaymentStatus",
    "PostingState",
    "SourceDocument",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalLine",
    "SourceType",
    "InventoryTransaction",
    "InventoryTransactionType",
    "Product",
    "ProductType",
]
