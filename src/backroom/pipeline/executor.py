from __future__ import annotations

from typing import Callable, Dict, List, Optional

from ..domain.models import (
    DEFAULT_UNIT,
    Action,
    ActionResult,
    IntentItem,
    ItemChange,
    ParsedIntent,
    Transaction,
    TransactionAction,
)
from ..ledger.base import ItemNotFound
from ..ledger.ledger import InventoryLedger
from ..ledger.transactions import TransactionLog
from ..logging import get_logger


LOG = get_logger("executor")

ADJUST_NOTE = "Stock adjustment/stocktake"


class ActionExecutor:
    """Apply a ParsedIntent to the ledger and record it in the transaction log.

    add/adjust stop at the first ledger error (it propagates to the caller);
    remove collects per-item ItemNotFound as warnings and only fails when no
    item could be removed.
    """

    def __init__(self, ledger: InventoryLedger, log: TransactionLog) -> None:
        self.ledger = ledger
        self.log = log
        self._handlers: Dict[Action, Callable[[ParsedIntent, Optional[str]], ActionResult]] = {
            Action.ADD: self._add,
            Action.REMOVE: self._remove,
            Action.CHECK: self._check,
            Action.ADJUST: self._adjust,
            Action.LIST: self._list,
            Action.HELP: self._help,
            Action.UNKNOWN: self._unknown,
        }
        missing = set(Action) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no executor handler for: {sorted(a.value for a in missing)}")

    def execute(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        action = Action.coerce(intent.action)
        LOG.info("Executing %s (%d items) for %s", action.value, len(intent.items), user_id)
        return self._handlers[action](intent, user_id)

    def _record(self, action: TransactionAction, item: IntentItem, resolved_name: str, unit: str,
                user_id: Optional[str], notes: Optional[str]) -> None:
        self.log.append(
            Transaction(
                action=action,
                item_name=resolved_name,
                quantity=item.quantity,
                unit=unit,
                user_id=user_id,
                notes=notes or "",
            )
        )

    def _add(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        if not intent.items:
            return ActionResult(action=Action.ADD, success=False, error="No items to add")
        changes: List[ItemChange] = []
        for item in intent.items:
            updated = self.ledger.upsert_add(item.name, item.quantity, item.unit, user_id)
            self._record(TransactionAction.ADD, item, updated.name, updated.unit, user_id, item.notes)
            changes.append(ItemChange(item=updated, quantity=item.quantity, unit=updated.unit))
        return ActionResult(action=Action.ADD, success=True, items=changes)

    def _remove(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        if not intent.items:
            return ActionResult(action=Action.REMOVE, success=False, error="No items to remove")
        changes: List[ItemChange] = []
        errors: List[str] = []
        for item in intent.items:
            try:
                updated = self.ledger.remove_quantity(item.name, item.quantity, user_id)
            except ItemNotFound as exc:
                LOG.warning("Remove skipped: %s", exc)
                errors.append(f"{item.name}: {exc}")
                continue
            self._record(TransactionAction.REMOVE, item, updated.name, updated.unit, user_id, item.notes)
            changes.append(ItemChange(item=updated, quantity=item.quantity, unit=updated.unit))

        if errors and not changes:
            return ActionResult(action=Action.REMOVE, success=False, error="; ".join(errors))
        return ActionResult(action=Action.REMOVE, success=True, items=changes, warnings=errors)

    def _adjust(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        if not intent.items:
            return ActionResult(action=Action.ADJUST, success=False, error="No items to adjust")
        changes: List[ItemChange] = []
        for item in intent.items:
            updated = self.ledger.set_quantity(item.name, item.quantity, item.unit, user_id)
            self._record(TransactionAction.ADJUST, item, updated.name, updated.unit, user_id, ADJUST_NOTE)
            changes.append(ItemChange(item=updated, quantity=item.quantity, unit=updated.unit or DEFAULT_UNIT))
        return ActionResult(action=Action.ADJUST, success=True, items=changes)

    def _check(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        query = intent.search_query or (intent.items[0].name if intent.items else None)
        data = self.ledger.search(query) if query else self.ledger.list_all()
        return ActionResult(action=Action.CHECK, success=True, data=data)

    def _list(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        data = self.ledger.search(intent.search_query) if intent.search_query else self.ledger.list_all()
        return ActionResult(action=Action.LIST, success=True, data=data)

    def _help(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        return ActionResult(action=Action.HELP, success=True)

    def _unknown(self, intent: ParsedIntent, user_id: Optional[str]) -> ActionResult:
        return ActionResult(action=Action.UNKNOWN, success=False)
