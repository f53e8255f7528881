from __future__ import annotations

import pytest

from backroom.domain.models import Transaction, TransactionAction
from backroom.ledger import InventoryLedger, ItemExists, ItemNotFound, SheetsInventoryStore, TransactionLog
from backroom.ledger.sheets import INVENTORY_HEADERS, TRANSACTION_HEADERS

from conftest import FakeSheetValues


@pytest.fixture
def values() -> FakeSheetValues:
    return FakeSheetValues()


@pytest.fixture
def sheet_store(values: FakeSheetValues) -> SheetsInventoryStore:
    store = SheetsInventoryStore(values, clock=lambda: "2025-01-01T00:00:00+00:00")
    store.initialize()
    return store


def test_initialize_creates_sheets_and_headers(values: FakeSheetValues, sheet_store: SheetsInventoryStore):
    assert values.sheets["Inventory"][0] == INVENTORY_HEADERS
    assert values.sheets["Transactions"][0] == TRANSACTION_HEADERS

    sheet_store.initialize()
    assert len(values.sheets["Inventory"]) == 1


def test_sheet_ledger_add_remove_set(values: FakeSheetValues, sheet_store: SheetsInventoryStore):
    ledger = InventoryLedger(sheet_store, account="shop")

    ledger.upsert_add("Solar Panels", 23, "pieces", "u1")
    item = ledger.remove_quantity("solar", 3, "u2")
    assert (item.name, item.quantity, item.unit) == ("solar panels", 20.0, "pieces")

    ledger.upsert_add("solar panels", 5, None, "u1")
    assert ledger.get("solar panels").quantity == 25.0
    assert ledger.remove_quantity("solar panels", 100, "u1").quantity == 0.0

    ledger.set_quantity("screws", 100, "boxes", "u1")
    assert values.sheets["Inventory"][2][:3] == ["screws", 100.0, "boxes"]
    assert values.sheets["Inventory"][2][5] == "shop"

    with pytest.raises(ItemNotFound):
        ledger.remove_quantity("unicorns", 1, "u1")


def test_sheet_create_delete_and_accounts(sheet_store: SheetsInventoryStore):
    shop = InventoryLedger(sheet_store, account="shop")
    other = InventoryLedger(sheet_store, account="other")

    shop.create("gloves", 4, "pairs", "dashboard")
    with pytest.raises(ItemExists):
        shop.create("gloves", 1, None, "dashboard")
    assert other.find("gloves") is None

    assert shop.delete("gloves") is True
    assert shop.list_all() == []
    shop.upsert_add("tape", 2, "rolls", "u1")
    assert [i.name for i in shop.list_all()] == ["tape"]


def test_sheet_transactions_round_trip(sheet_store: SheetsInventoryStore):
    log = TransactionLog(sheet_store, account="shop")
    log.append(Transaction(action=TransactionAction.ADD, item_name="coke", quantity=5, unit="bottles", user_id="u1"))
    log.append(Transaction(action=TransactionAction.ADJUST, item_name="rice", quantity=9, unit="kg", user_id="u1",
                           notes="Stock adjustment/stocktake"))

    history = log.history()
    assert [t.item_name for t in history] == ["rice", "coke"]
    assert history[0].notes == "Stock adjustment/stocktake"
    assert history[0].timestamp == "2025-01-01T00:00:00+00:00"
    assert TransactionLog(sheet_store, account="other").history() == []
