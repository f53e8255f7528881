from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..domain.models import InventoryItem, Transaction


class StorageError(Exception):
    """Backend failure (database error, HTTP error from the sheet API, ...)."""


class ItemNotFound(Exception):
    def __init__(self, name: str) -> None:
        super().__init__(f'Item "{name}" not found in inventory')
        self.name = name


class ItemExists(Exception):
    def __init__(self, name: str) -> None:
        super().__init__(f'An item named "{name}" already exists')
        self.name = name


class InventoryStore(ABC):
    """Storage contract behind the ledger and the transaction log.

    Names passed in are already canonical. Every mutating call is a single
    logical write and returns the post-mutation row.
    """

    @abstractmethod
    def get_exact(self, account: str, name: str) -> Optional[InventoryItem]:
        ...

    @abstractmethod
    def search(self, account: str, query: str) -> List[InventoryItem]:
        """Items whose name contains `query`, in storage order."""

    @abstractmethod
    def list_items(self, account: str) -> List[InventoryItem]:
        ...

    @abstractmethod
    def insert_item(
        self, account: str, name: str, quantity: float, unit: str, user_id: Optional[str]
    ) -> InventoryItem:
        """Insert a new row; raises ItemExists if the name is taken."""

    @abstractmethod
    def increment(
        self, account: str, name: str, delta: float, unit: Optional[str], user_id: Optional[str]
    ) -> InventoryItem:
        """Add `delta`, creating the row when absent; unit replaced only when given."""

    @abstractmethod
    def decrement_clamped(
        self, account: str, name: str, delta: float, user_id: Optional[str]
    ) -> Optional[InventoryItem]:
        """Subtract `delta` clamping at zero; None when the row does not exist."""

    @abstractmethod
    def set_quantity(
        self, account: str, name: str, quantity: float, unit: Optional[str], user_id: Optional[str]
    ) -> InventoryItem:
        """Overwrite the quantity, creating the row when absent."""

    @abstractmethod
    def delete_item(self, account: str, name: str) -> bool:
        ...

    @abstractmethod
    def append_transaction(self, account: str, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    def list_transactions(
        self,
        account: str,
        *,
        item_name: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        """Newest first."""

    def close(self) -> None:
        return None
