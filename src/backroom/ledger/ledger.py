from __future__ import annotations

from typing import List, Optional

from ..domain.models import DEFAULT_UNIT, InventoryItem
from ..domain.normalize import canonical_name
from ..logging import get_logger
from .base import InventoryStore, ItemNotFound


LOG = get_logger("ledger")


def _pick_substring_match(query: str, candidates: List[InventoryItem]) -> Optional[InventoryItem]:
    """Resolve several substring hits to one item.

    Shortest name wins ("screw" -> "screws" over "wood screws"); equal lengths
    keep storage order.
    """
    if not candidates:
        return None
    best = min(enumerate(candidates), key=lambda pair: (len(pair[1].name), pair[0]))[1]
    if len(candidates) > 1:
        LOG.debug(
            "Lookup %r matched %d items (%s); picked %r",
            query,
            len(candidates),
            ", ".join(c.name for c in candidates),
            best.name,
        )
    return best


def _check_quantity(quantity: float) -> float:
    q = float(quantity)
    if q < 0:
        raise ValueError("quantity must be a non-negative number")
    return q


class InventoryLedger:
    """Current stock per item name, scoped to one account.

    Names are canonicalised on the way in; lookups are exact first, then
    substring. Mutations delegate to the store as single writes.
    """

    def __init__(self, store: InventoryStore, *, account: str = "default") -> None:
        self.store = store
        self.account = account

    def find(self, name: str) -> Optional[InventoryItem]:
        key = canonical_name(name)
        if not key:
            return None
        item = self.store.get_exact(self.account, key)
        if item is not None:
            return item
        return _pick_substring_match(key, self.store.search(self.account, key))

    def search(self, query: str) -> List[InventoryItem]:
        key = canonical_name(query)
        if not key:
            return self.list_all()
        return self.store.search(self.account, key)

    def list_all(self) -> List[InventoryItem]:
        return self.store.list_items(self.account)

    def upsert_add(self, name: str, quantity: float, unit: Optional[str], user_id: Optional[str]) -> InventoryItem:
        qty = _check_quantity(quantity)
        existing = self.find(name)
        key = existing.name if existing else canonical_name(name)
        if not key:
            raise ValueError("item name is required")
        item = self.store.increment(self.account, key, qty, unit or None, user_id)
        if existing:
            LOG.info(
                "Updated inventory item %s: %s + %s -> %s",
                key, existing.quantity, qty, item.quantity,
            )
        else:
            LOG.info("Added new inventory item %s (%s %s)", key, item.quantity, item.unit)
        return item

    def remove_quantity(self, name: str, quantity: float, user_id: Optional[str]) -> InventoryItem:
        qty = _check_quantity(quantity)
        existing = self.find(name)
        if existing is None:
            raise ItemNotFound(canonical_name(name) or name)
        item = self.store.decrement_clamped(self.account, existing.name, qty, user_id)
        if item is None:
            # Deleted between lookup and update
            raise ItemNotFound(existing.name)
        LOG.info(
            "Removed from inventory %s: %s - %s -> %s",
            existing.name, existing.quantity, qty, item.quantity,
        )
        return item

    def set_quantity(self, name: str, quantity: float, unit: Optional[str], user_id: Optional[str]) -> InventoryItem:
        qty = _check_quantity(quantity)
        existing = self.find(name)
        key = existing.name if existing else canonical_name(name)
        if not key:
            raise ValueError("item name is required")
        item = self.store.set_quantity(self.account, key, qty, unit or None, user_id)
        LOG.info(
            "Set inventory %s to %s %s (was %s)",
            key, item.quantity, item.unit, existing.quantity if existing else "absent",
        )
        return item

    def create(self, name: str, quantity: float, unit: Optional[str], user_id: Optional[str]) -> InventoryItem:
        """Explicit creation (dashboard); raises ItemExists on an exact name clash."""
        key = canonical_name(name)
        if not key:
            raise ValueError("item name is required")
        item = self.store.insert_item(self.account, key, _check_quantity(quantity), unit or DEFAULT_UNIT, user_id)
        LOG.info("Created inventory item %s (%s %s)", key, item.quantity, item.unit)
        return item

    def get(self, name: str) -> Optional[InventoryItem]:
        """Exact lookup only (dashboard paths address items by their stored name)."""
        key = canonical_name(name)
        return self.store.get_exact(self.account, key) if key else None

    def delete(self, name: str) -> bool:
        """Hard delete by exact name; only the dashboard calls this."""
        key = canonical_name(name)
        deleted = self.store.delete_item(self.account, key) if key else False
        if deleted:
            LOG.info("Deleted inventory item %s", key)
        return deleted
