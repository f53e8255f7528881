"""Spreadsheet adapter: the inventory and transaction log kept as Google Sheets rows."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from ..domain.models import DEFAULT_UNIT, InventoryItem, Transaction, TransactionAction
from ..domain.normalize import canonical_name, coerce_quantity
from ..logging import get_logger
from .base import InventoryStore, ItemExists, StorageError


LOG = get_logger("ledger-sheets")

INVENTORY_SHEET = "Inventory"
TRANSACTIONS_SHEET = "Transactions"

INVENTORY_HEADERS = ["Item Name", "Quantity", "Unit", "Last Updated", "Updated By", "Account"]
TRANSACTION_HEADERS = ["Timestamp", "Action", "Item Name", "Quantity", "Unit", "User", "Notes", "Account"]

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"

Row = List[Any]


class GoogleSheetsValuesClient:
    """Thin client for the subset of the Sheets v4 REST API we use.

    Works on any requests-compatible session; in production an
    ``AuthorizedSession`` carrying service-account credentials.
    """

    def __init__(self, spreadsheet_id: str, session: requests.Session, *, timeout: float = 15.0) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.s = session
        self.timeout = float(timeout)
        self.base = f"{SHEETS_API}/{spreadsheet_id}"

    @classmethod
    def from_service_account(
        cls, email: str, private_key: str, spreadsheet_id: str, *, timeout: float = 15.0
    ) -> "GoogleSheetsValuesClient":
        from google.auth.transport.requests import AuthorizedSession
        from google.oauth2 import service_account

        info = {
            "type": "service_account",
            "client_email": email,
            "private_key": private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        creds = service_account.Credentials.from_service_account_info(info, scopes=[SHEETS_SCOPE])
        LOG.info("Google Sheets client initialized for %s", email)
        return cls(spreadsheet_id, AuthorizedSession(creds), timeout=timeout)

    # ---------- helpers ----------
    def _values_url(self, a1_range: str, suffix: str = "") -> str:
        return f"{self.base}/values/{quote(a1_range, safe='')}{suffix}"

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            r = self.s.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            LOG.error("Sheets %s %s failed: %s", method, url, exc)
            raise StorageError(f"Sheets request failed: {exc}") from exc
        if r.status_code >= 400:
            LOG.error("Sheets HTTP %s: %s", r.status_code, r.text[:500])
            raise StorageError(f"Sheets API returned HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError:
            return None

    # ---------- values ----------
    def get_values(self, a1_range: str) -> List[Row]:
        body = self._request(
            "GET",
            self._values_url(a1_range),
            params={"valueRenderOption": "UNFORMATTED_VALUE"},
        )
        return list((body or {}).get("values") or [])

    def update_values(self, a1_range: str, rows: Sequence[Row]) -> None:
        self._request(
            "PUT",
            self._values_url(a1_range),
            params={"valueInputOption": "RAW"},
            json={"values": [list(r) for r in rows]},
        )

    def append_values(self, a1_range: str, rows: Sequence[Row]) -> None:
        self._request(
            "POST",
            self._values_url(a1_range, ":append"),
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [list(r) for r in rows]},
        )

    def clear_values(self, a1_range: str) -> None:
        self._request("POST", self._values_url(a1_range, ":clear"), json={})

    # ---------- spreadsheet ----------
    def sheet_titles(self) -> List[str]:
        body = self._request("GET", self.base, params={"fields": "sheets.properties.title"})
        return [s.get("properties", {}).get("title") for s in (body or {}).get("sheets") or []]

    def add_sheets(self, titles: Sequence[str]) -> None:
        if not titles:
            return
        requests_body = [{"addSheet": {"properties": {"title": t}}} for t in titles]
        self._request("POST", f"{self.base}:batchUpdate", json={"requests": requests_body})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _cell(row: Row, idx: int, default: Any = "") -> Any:
    return row[idx] if idx < len(row) and row[idx] not in (None, "") else default


def _column_letter(n: int) -> str:
    return chr(ord("A") + n - 1)


class SheetsInventoryStore(InventoryStore):
    """Inventory rows on the `Inventory` sheet, audit rows on `Transactions`.

    The sheet API has no atomic increment, so quantity changes are
    read-modify-write; a process-local lock serialises them within one
    process. Concurrent writers in other processes can still race.
    """

    def __init__(self, values_client: Any, *, clock: Optional[Callable[[], str]] = None) -> None:
        self.values = values_client
        self._clock = clock or _now
        self._lock = threading.RLock()
        self._inv_last_col = _column_letter(len(INVENTORY_HEADERS))
        self._tx_last_col = _column_letter(len(TRANSACTION_HEADERS))

    def initialize(self) -> None:
        """Create missing sheets and header rows."""
        existing = set(self.values.sheet_titles())
        missing = [t for t in (INVENTORY_SHEET, TRANSACTIONS_SHEET) if t not in existing]
        if missing:
            self.values.add_sheets(missing)
            LOG.info("Created missing sheets: %s", missing)
        self._ensure_headers(INVENTORY_SHEET, INVENTORY_HEADERS)
        self._ensure_headers(TRANSACTIONS_SHEET, TRANSACTION_HEADERS)
        LOG.info("Spreadsheet initialized")

    def _ensure_headers(self, sheet: str, headers: List[str]) -> None:
        a1 = f"{sheet}!A1:{_column_letter(len(headers))}1"
        if not self.values.get_values(a1):
            self.values.update_values(a1, [headers])
            LOG.debug("Added headers to sheet %s", sheet)

    # --------------- Row helpers ---------------
    def _rows(self, account: str) -> List[Tuple[int, InventoryItem]]:
        """(sheet row number, item) for the account, in sheet order."""
        raw = self.values.get_values(f"{INVENTORY_SHEET}!A2:{self._inv_last_col}")
        out: List[Tuple[int, InventoryItem]] = []
        for idx, row in enumerate(raw):
            name = canonical_name(_cell(row, 0))
            if not name or str(_cell(row, 5, "default")) != account:
                continue
            out.append(
                (
                    idx + 2,
                    InventoryItem(
                        name=name,
                        quantity=coerce_quantity(_cell(row, 1, 0)) or 0.0,
                        unit=str(_cell(row, 2, DEFAULT_UNIT)),
                        updated_at=str(_cell(row, 3)) or None,
                        updated_by=str(_cell(row, 4)) or None,
                        item_id=idx + 2,
                        account=account,
                    ),
                )
            )
        return out

    def _find_row(self, account: str, name: str) -> Optional[Tuple[int, InventoryItem]]:
        for row_no, item in self._rows(account):
            if item.name == name:
                return row_no, item
        return None

    def _write_row(self, row_no: int, item: InventoryItem) -> InventoryItem:
        self.values.update_values(
            f"{INVENTORY_SHEET}!A{row_no}:{self._inv_last_col}{row_no}",
            [[item.name, item.quantity, item.unit, item.updated_at, item.updated_by or "", item.account]],
        )
        return item

    def _append_row(self, item: InventoryItem) -> InventoryItem:
        self.values.append_values(
            f"{INVENTORY_SHEET}!A:{self._inv_last_col}",
            [[item.name, item.quantity, item.unit, item.updated_at, item.updated_by or "", item.account]],
        )
        return item

    # --------------- Reads ---------------
    def get_exact(self, account: str, name: str) -> Optional[InventoryItem]:
        found = self._find_row(account, name)
        return found[1] if found else None

    def search(self, account: str, query: str) -> List[InventoryItem]:
        q = query.lower()
        return [item for _, item in self._rows(account) if q in item.name]

    def list_items(self, account: str) -> List[InventoryItem]:
        return sorted((item for _, item in self._rows(account)), key=lambda i: i.name)

    # --------------- Writes ---------------
    def insert_item(
        self, account: str, name: str, quantity: float, unit: str, user_id: Optional[str]
    ) -> InventoryItem:
        with self._lock:
            if self._find_row(account, name):
                raise ItemExists(name)
            now = self._clock()
            item = InventoryItem(
                name=name, quantity=float(quantity), unit=unit or DEFAULT_UNIT,
                updated_at=now, updated_by=user_id, account=account, created_at=now,
            )
            return self._append_row(item)

    def increment(
        self, account: str, name: str, delta: float, unit: Optional[str], user_id: Optional[str]
    ) -> InventoryItem:
        with self._lock:
            found = self._find_row(account, name)
            now = self._clock()
            if found is None:
                item = InventoryItem(
                    name=name, quantity=float(delta), unit=unit or DEFAULT_UNIT,
                    updated_at=now, updated_by=user_id, account=account, created_at=now,
                )
                return self._append_row(item)
            row_no, item = found
            item.quantity = item.quantity + float(delta)
            item.unit = unit or item.unit
            item.updated_at, item.updated_by = now, user_id
            return self._write_row(row_no, item)

    def decrement_clamped(
        self, account: str, name: str, delta: float, user_id: Optional[str]
    ) -> Optional[InventoryItem]:
        with self._lock:
            found = self._find_row(account, name)
            if found is None:
                return None
            row_no, item = found
            item.quantity = max(0.0, item.quantity - float(delta))
            item.updated_at, item.updated_by = self._clock(), user_id
            return self._write_row(row_no, item)

    def set_quantity(
        self, account: str, name: str, quantity: float, unit: Optional[str], user_id: Optional[str]
    ) -> InventoryItem:
        with self._lock:
            found = self._find_row(account, name)
            now = self._clock()
            if found is None:
                item = InventoryItem(
                    name=name, quantity=float(quantity), unit=unit or DEFAULT_UNIT,
                    updated_at=now, updated_by=user_id, account=account, created_at=now,
                )
                return self._append_row(item)
            row_no, item = found
            item.quantity = float(quantity)
            item.unit = unit or item.unit
            item.updated_at, item.updated_by = now, user_id
            return self._write_row(row_no, item)

    def delete_item(self, account: str, name: str) -> bool:
        with self._lock:
            found = self._find_row(account, name)
            if found is None:
                return False
            row_no, _ = found
            self.values.clear_values(f"{INVENTORY_SHEET}!A{row_no}:{self._inv_last_col}{row_no}")
            return True

    # --------------- Transactions ---------------
    def append_transaction(self, account: str, transaction: Transaction) -> Transaction:
        transaction.timestamp = transaction.timestamp or self._clock()
        self.values.append_values(
            f"{TRANSACTIONS_SHEET}!A:{self._tx_last_col}",
            [[
                transaction.timestamp,
                transaction.action.value,
                transaction.item_name,
                transaction.quantity,
                transaction.unit or "",
                transaction.user_id or "",
                transaction.notes or "",
                account,
            ]],
        )
        return transaction

    def list_transactions(
        self,
        account: str,
        *,
        item_name: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        raw = self.values.get_values(f"{TRANSACTIONS_SHEET}!A2:{self._tx_last_col}")
        out: List[Transaction] = []
        for idx, row in enumerate(raw):
            if str(_cell(row, 7, "default")) != account:
                continue
            try:
                action = TransactionAction(str(_cell(row, 1)).upper())
            except ValueError:
                LOG.debug("Skipping transaction row %d with unknown action", idx + 2)
                continue
            name = str(_cell(row, 2))
            if item_name and name != item_name:
                continue
            out.append(
                Transaction(
                    action=action,
                    item_name=name,
                    quantity=coerce_quantity(_cell(row, 3, 0)) or 0.0,
                    unit=str(_cell(row, 4)) or None,
                    user_id=str(_cell(row, 5)) or None,
                    notes=str(_cell(row, 6)),
                    timestamp=str(_cell(row, 0)) or None,
                    transaction_id=idx + 2,
                )
            )
        out.reverse()
        return out[offset : offset + limit]
