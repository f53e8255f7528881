"""Inventory ledger and transaction log over a pluggable store.

Modules:
- base: store contract and storage errors
- sqlite: relational adapter (default)
- sheets: Google Sheets adapter
- ledger: find/upsert/remove/set semantics on top of a store
- transactions: best-effort audit log
"""

from .base import InventoryStore, ItemExists, ItemNotFound, StorageError
from .ledger import InventoryLedger
from .sheets import GoogleSheetsValuesClient, SheetsInventoryStore
from .sqlite import SqliteInventoryStore
from .transactions import TransactionLog

__all__ = [
    "InventoryStore",
    "ItemExists",
    "ItemNotFound",
    "StorageError",
    "InventoryLedger",
    "GoogleSheetsValuesClient",
    "SheetsInventoryStore",
    "SqliteInventoryStore",
    "TransactionLog",
]
