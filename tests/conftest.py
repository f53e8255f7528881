from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from backroom.ledger import InventoryLedger, SqliteInventoryStore, TransactionLog
from backroom.nlu.client import NluError
from backroom.nlu.intent import IntentParser
from backroom.pipeline import ActionExecutor, MessagePipeline


class FakeNlu:
    """Stands in for NluClient: returns canned payloads or raises NluError."""

    def __init__(self, payload: Optional[Dict[str, Any]] = None, *, error: Optional[Exception] = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: List[str] = []

    def complete_json(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        self.calls.append(user_message)
        if self.error is not None:
            raise self.error
        return json.loads(json.dumps(self.payload))


class FakeSheetValues:
    """In-memory stand-in for GoogleSheetsValuesClient (A1 ranges, 1-based rows)."""

    def __init__(self) -> None:
        self.sheets: Dict[str, List[List[Any]]] = {}

    @staticmethod
    def _row_of(ref: str) -> Optional[int]:
        digits = "".join(ch for ch in ref if ch.isdigit())
        return int(digits) if digits else None

    def _split(self, a1: str):
        sheet, _, rng = a1.partition("!")
        start, _, end = rng.partition(":")
        return sheet, self._row_of(start), self._row_of(end)

    def sheet_titles(self) -> List[str]:
        return list(self.sheets)

    def add_sheets(self, titles) -> None:
        for t in titles:
            self.sheets.setdefault(t, [])

    def get_values(self, a1: str) -> List[List[Any]]:
        sheet, start, end = self._split(a1)
        rows = self.sheets.get(sheet, [])
        first = (start or 1) - 1
        selected = rows[first:end] if end else rows[first:]
        while selected and not selected[-1]:
            selected = selected[:-1]
        return [list(r) for r in selected]

    def update_values(self, a1: str, rows) -> None:
        sheet, start, _ = self._split(a1)
        data = self.sheets.setdefault(sheet, [])
        first = (start or 1) - 1
        while len(data) < first + len(rows):
            data.append([])
        for offset, row in enumerate(rows):
            data[first + offset] = list(row)

    def append_values(self, a1: str, rows) -> None:
        sheet, _, _ = self._split(a1)
        self.sheets.setdefault(sheet, []).extend(list(r) for r in rows)

    def clear_values(self, a1: str) -> None:
        sheet, start, _ = self._split(a1)
        self.sheets[sheet][start - 1] = []


class FailingStore:
    """Wraps a store and fails transaction appends."""

    def __init__(self, inner) -> None:
        self.inner = inner

    def append_transaction(self, account, transaction):
        raise RuntimeError("audit sheet unavailable")

    def __getattr__(self, name):
        return getattr(self.inner, name)


@pytest.fixture
def store(tmp_path: Path) -> SqliteInventoryStore:
    return SqliteInventoryStore(str(tmp_path / "inventory.sqlite3"))


@pytest.fixture
def ledger(store: SqliteInventoryStore) -> InventoryLedger:
    return InventoryLedger(store, account="shop")


@pytest.fixture
def tx_log(store: SqliteInventoryStore) -> TransactionLog:
    return TransactionLog(store, account="shop")


@pytest.fixture
def executor(ledger: InventoryLedger, tx_log: TransactionLog) -> ActionExecutor:
    return ActionExecutor(ledger, tx_log)


@pytest.fixture
def offline_pipeline(executor: ActionExecutor) -> MessagePipeline:
    return MessagePipeline(IntentParser(None), executor)


@pytest.fixture
def nlu_error() -> NluError:
    return NluError("NLU request failed: timed out")
