from __future__ import annotations

from typing import List, Optional

from ..domain.models import Transaction
from ..domain.normalize import canonical_name
from ..logging import get_logger
from .base import InventoryStore


LOG = get_logger("transactions")


class TransactionLog:
    """Append-only audit trail, best effort.

    `append` never raises: a failed audit write is logged and reported as
    False, and the inventory mutation that triggered it stands.
    """

    def __init__(self, store: InventoryStore, *, account: str = "default") -> None:
        self.store = store
        self.account = account

    def append(self, transaction: Transaction) -> bool:
        try:
            self.store.append_transaction(self.account, transaction)
        except Exception as exc:
            LOG.error(
                "Failed to log transaction %s %s x%s: %s",
                transaction.action.value, transaction.item_name, transaction.quantity, exc,
            )
            return False
        LOG.debug("Transaction logged: %s %s", transaction.action.value, transaction.item_name)
        return True

    def history(self, item_name: Optional[str] = None, *, limit: int = 50, offset: int = 0) -> List[Transaction]:
        key = canonical_name(item_name) if item_name else None
        return self.store.list_transactions(self.account, item_name=key, limit=limit, offset=offset)
