from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from ..domain.models import DEFAULT_UNIT, InventoryItem, Transaction, TransactionAction
from ..logging import get_logger
from ..paths import find_project_root, var_dir
from .base import InventoryStore, ItemExists, StorageError


LOG = get_logger("ledger-sqlite")


DEFAULT_DB_FOLDER = "inventory"
DEFAULT_DB_FILENAME = "inventory.sqlite3"


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS inventory (
  item_id     INTEGER PRIMARY KEY,
  account     TEXT NOT NULL,
  name        TEXT NOT NULL,              -- canonical: lowercase, collapsed whitespace
  quantity    REAL NOT NULL DEFAULT 0 CHECK(quantity >= 0),
  unit        TEXT NOT NULL DEFAULT 'units',
  created_at  TEXT NOT NULL,
  updated_at  TEXT NOT NULL,
  updated_by  TEXT,
  UNIQUE(account, name)
);

-- Append-only audit trail; item_name is a soft reference (no foreign key)
CREATE TABLE IF NOT EXISTS transactions (
  transaction_id INTEGER PRIMARY KEY,
  account        TEXT NOT NULL,
  action         TEXT NOT NULL CHECK (action IN ('ADD','REMOVE','ADJUST')),
  item_name      TEXT NOT NULL,
  quantity       REAL NOT NULL,
  unit           TEXT,
  user_id        TEXT,
  notes          TEXT NOT NULL DEFAULT '',
  created_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_inventory_account      ON inventory(account, item_id);
CREATE INDEX IF NOT EXISTS idx_transactions_account   ON transactions(account, transaction_id);
CREATE INDEX IF NOT EXISTS idx_transactions_item_name ON transactions(account, item_name);
"""

_ITEM_COLUMNS = "item_id, account, name, quantity, unit, created_at, updated_at, updated_by"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _row_to_item(row: Optional[sqlite3.Row]) -> Optional[InventoryItem]:
    if row is None:
        return None
    return InventoryItem(
        name=row["name"],
        quantity=float(row["quantity"]),
        unit=row["unit"],
        updated_at=row["updated_at"],
        updated_by=row["updated_by"],
        item_id=int(row["item_id"]),
        account=row["account"],
        created_at=row["created_at"],
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        action=TransactionAction(row["action"]),
        item_name=row["item_name"],
        quantity=float(row["quantity"]),
        unit=row["unit"],
        user_id=row["user_id"],
        notes=row["notes"] or "",
        timestamp=row["created_at"],
        transaction_id=int(row["transaction_id"]),
    )


class SqliteInventoryStore(InventoryStore):
    """SQLite-backed inventory and transaction tables.

    - Places the DB under `<repo-root>/var/inventory/inventory.sqlite3` unless
      an explicit path is given.
    - Ensures schema on construction.
    - Quantity changes are single UPDATE/UPSERT statements, so concurrent
      requests touching the same item never lose an update.
    """

    def __init__(self, db_path: Optional[str] = None, *, root_dir: Optional[str] = None, timeout: float = 5.0) -> None:
        if db_path is None:
            root = find_project_root(root_dir)
            db_folder = os.path.join(var_dir(root), DEFAULT_DB_FOLDER)
            db_path = os.path.join(db_folder, DEFAULT_DB_FILENAME)
        folder = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(folder, exist_ok=True)
        self.db_path = os.path.abspath(db_path)
        self.timeout = float(timeout)
        LOG.info(f"Inventory DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            LOG.error("SQLite %s failed: %s", operation, exc)
            raise StorageError(f"{operation} failed: {exc}") from exc

    def _ensure_schema(self) -> None:
        with self._guard("schema setup"), self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                # Non-fatal (read-only media, some network filesystems)
                LOG.debug("WAL mode unavailable; continuing with default journal")
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.debug("Inventory DB schema ensured.")

    # --------------- Reads ---------------
    def get_exact(self, account: str, name: str) -> Optional[InventoryItem]:
        with self._guard("get_exact"), self.connect() as conn:
            cur = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM inventory WHERE account = ? AND name = ?;",
                (account, name),
            )
            return _row_to_item(cur.fetchone())

    def search(self, account: str, query: str) -> List[InventoryItem]:
        with self._guard("search"), self.connect() as conn:
            # instr() avoids LIKE wildcard escaping for names containing % or _
            cur = conn.execute(
                f"""
                SELECT {_ITEM_COLUMNS} FROM inventory
                WHERE account = ? AND instr(name, ?) > 0
                ORDER BY item_id ASC;
                """,
                (account, query.lower()),
            )
            return [_row_to_item(row) for row in cur.fetchall()]

    def list_items(self, account: str) -> List[InventoryItem]:
        with self._guard("list_items"), self.connect() as conn:
            cur = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM inventory WHERE account = ? ORDER BY name ASC;",
                (account,),
            )
            return [_row_to_item(row) for row in cur.fetchall()]

    # --------------- Writes ---------------
    def insert_item(
        self, account: str, name: str, quantity: float, unit: str, user_id: Optional[str]
    ) -> InventoryItem:
        now = _now()
        with self._guard("insert_item"), self.connect() as conn:
            try:
                cur = conn.execute(
                    f"""
                    INSERT INTO inventory (account, name, quantity, unit, created_at, updated_at, updated_by)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    RETURNING {_ITEM_COLUMNS};
                    """,
                    (account, name, float(quantity), unit or DEFAULT_UNIT, now, now, user_id),
                )
                row = cur.fetchone()
                conn.commit()
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc).upper():
                    raise ItemExists(name) from exc
                raise
        return _row_to_item(row)

    def increment(
        self, account: str, name: str, delta: float, unit: Optional[str], user_id: Optional[str]
    ) -> InventoryItem:
        now = _now()
        with self._guard("increment"), self.connect() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO inventory (account, name, quantity, unit, created_at, updated_at, updated_by)
                VALUES (:account, :name, :delta, COALESCE(:unit, 'units'), :now, :now, :user_id)
                ON CONFLICT(account, name) DO UPDATE SET
                    quantity   = inventory.quantity + excluded.quantity,
                    unit       = COALESCE(:unit, inventory.unit),
                    updated_at = excluded.updated_at,
                    updated_by = excluded.updated_by
                RETURNING {_ITEM_COLUMNS};
                """,
                {"account": account, "name": name, "delta": float(delta), "unit": unit, "now": now, "user_id": user_id},
            )
            row = cur.fetchone()
            conn.commit()
        return _row_to_item(row)

    def decrement_clamped(
        self, account: str, name: str, delta: float, user_id: Optional[str]
    ) -> Optional[InventoryItem]:
        with self._guard("decrement_clamped"), self.connect() as conn:
            cur = conn.execute(
                f"""
                UPDATE inventory
                SET quantity = MAX(0, quantity - ?), updated_at = ?, updated_by = ?
                WHERE account = ? AND name = ?
                RETURNING {_ITEM_COLUMNS};
                """,
                (float(delta), _now(), user_id, account, name),
            )
            row = cur.fetchone()
            conn.commit()
        return _row_to_item(row)

    def set_quantity(
        self, account: str, name: str, quantity: float, unit: Optional[str], user_id: Optional[str]
    ) -> InventoryItem:
        now = _now()
        with self._guard("set_quantity"), self.connect() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO inventory (account, name, quantity, unit, created_at, updated_at, updated_by)
                VALUES (:account, :name, :quantity, COALESCE(:unit, 'units'), :now, :now, :user_id)
                ON CONFLICT(account, name) DO UPDATE SET
                    quantity   = excluded.quantity,
                    unit       = COALESCE(:unit, inventory.unit),
                    updated_at = excluded.updated_at,
                    updated_by = excluded.updated_by
                RETURNING {_ITEM_COLUMNS};
                """,
                {"account": account, "name": name, "quantity": float(quantity), "unit": unit, "now": now, "user_id": user_id},
            )
            row = cur.fetchone()
            conn.commit()
        return _row_to_item(row)

    def delete_item(self, account: str, name: str) -> bool:
        with self._guard("delete_item"), self.connect() as conn:
            cur = conn.execute("DELETE FROM inventory WHERE account = ? AND name = ?;", (account, name))
            conn.commit()
            return cur.rowcount > 0

    # --------------- Transactions ---------------
    def append_transaction(self, account: str, transaction: Transaction) -> Transaction:
        timestamp = transaction.timestamp or _now()
        with self._guard("append_transaction"), self.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO transactions (account, action, item_name, quantity, unit, user_id, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING transaction_id;
                """,
                (
                    account,
                    transaction.action.value,
                    transaction.item_name,
                    float(transaction.quantity),
                    transaction.unit,
                    transaction.user_id,
                    transaction.notes or "",
                    timestamp,
                ),
            )
            row = cur.fetchone()
            conn.commit()
        transaction.transaction_id = int(row[0])
        transaction.timestamp = timestamp
        return transaction

    def list_transactions(
        self,
        account: str,
        *,
        item_name: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        where = ["account = ?"]
        params: List[object] = [account]
        if item_name:
            where.append("item_name = ?")
            params.append(item_name)
        with self._guard("list_transactions"), self.connect() as conn:
            cur = conn.execute(
                f"""
                SELECT transaction_id, action, item_name, quantity, unit, user_id, notes, created_at
                FROM transactions
                WHERE {' AND '.join(where)}
                ORDER BY transaction_id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, int(limit), int(offset)),
            )
            return [_row_to_transaction(row) for row in cur.fetchall()]
