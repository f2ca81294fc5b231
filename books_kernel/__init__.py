"""
Books Kernel

Double-entry posting and reversal for bills, invoices and payments:
- Balanced journal entries from source documents
- Cached account balances kept equal to the journal projection
- Exact reversal on edit and delete
- Inventory and COGS side effects for stocked products
"""

__version__ = "0.1.0"
