"""Durable open-order ledger backed by SQLite.

The UNIQUE index on ``order_id`` is what makes ingestion idempotent; the
status claim used by the refund scanner is a single conditional UPDATE so two
scanner instances can never both own an order.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from core.intent import OpenOrder, OrderStatus

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS open_orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        origin_chain_id INTEGER NOT NULL,
        destination_chain_id INTEGER NOT NULL,
        destination_settler TEXT NOT NULL,
        order_id TEXT NOT NULL,
        fill_deadline INTEGER NOT NULL,
        order_data TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'OPEN',
        updated_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_fill_deadline ON open_orders (fill_deadline DESC)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_unique_order_id ON open_orders (order_id)",
    """
    CREATE TRIGGER IF NOT EXISTS trg_fill_deadline_immutable
    BEFORE UPDATE OF fill_deadline ON open_orders
    BEGIN
        SELECT RAISE(ABORT, 'fill_deadline is immutable');
    END
    """,
]

_COLUMNS = (
    "origin_chain_id, destination_chain_id, destination_settler, order_id, "
    "fill_deadline, order_data, status, updated_at"
)


def _row_to_order(row: sqlite3.Row) -> OpenOrder:
    return OpenOrder(
        origin_chain_id=int(row["origin_chain_id"]),
        destination_chain_id=int(row["destination_chain_id"]),
        destination_settler=row["destination_settler"],
        order_id=row["order_id"],
        fill_deadline=int(row["fill_deadline"]),
        order_data=row["order_data"],
        status=OrderStatus(row["status"]),
        updated_at=float(row["updated_at"]),
    )


class OpenOrderStore:
    """Thread-safe open-order table."""

    def __init__(self, db_path: str = "state/orders.db") -> None:
        self.path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.cn = sqlite3.connect(db_path, timeout=10.0, check_same_thread=False)
        self.cn.row_factory = sqlite3.Row
        with self._lock, self.cn:
            if db_path != ":memory:":
                self.cn.execute("PRAGMA journal_mode=WAL;")
            for stmt in SCHEMA:
                self.cn.execute(stmt)

    # ------------------------------------------------------------------
    def insert_if_absent(self, order: OpenOrder) -> bool:
        """Insert ``order`` as OPEN; return ``False`` if the id already exists."""

        with self._lock, self.cn:
            cur = self.cn.execute(
                f"INSERT OR IGNORE INTO open_orders ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    int(order.origin_chain_id),
                    int(order.destination_chain_id),
                    order.destination_settler,
                    order.order_id,
                    int(order.fill_deadline),
                    order.order_data,
                    OrderStatus.OPEN.value,
                    time.time(),
                ),
            )
            return cur.rowcount == 1

    def list_expired_open(self, now: int) -> Dict[int, List[OpenOrder]]:
        """OPEN orders with ``fill_deadline <= now`` grouped by destination chain."""

        with self._lock:
            rows = self.cn.execute(
                f"SELECT {_COLUMNS} FROM open_orders "
                "WHERE fill_deadline <= ? AND status = ? ORDER BY fill_deadline ASC",
                (int(now), OrderStatus.OPEN.value),
            ).fetchall()
        grouped: Dict[int, List[OpenOrder]] = {}
        for row in rows:
            order = _row_to_order(row)
            grouped.setdefault(order.destination_chain_id, []).append(order)
        return grouped

    def list_stale_refunding(self, older_than: float) -> List[OpenOrder]:
        """REFUNDING orders last touched before ``older_than`` (unix time)."""

        with self._lock:
            rows = self.cn.execute(
                f"SELECT {_COLUMNS} FROM open_orders WHERE status = ? AND updated_at < ?",
                (OrderStatus.REFUNDING.value, float(older_than)),
            ).fetchall()
        return [_row_to_order(r) for r in rows]

    def set_status(self, order_id: str, status: OrderStatus) -> None:
        """Unconditional overwrite; callers keep to the lifecycle graph."""

        with self._lock, self.cn:
            self.cn.execute(
                "UPDATE open_orders SET status = ?, updated_at = ? WHERE order_id = ?",
                (OrderStatus(status).value, time.time(), order_id),
            )

    def transition(self, order_id: str, from_status: OrderStatus, to_status: OrderStatus) -> bool:
        """Atomically move ``order_id`` from ``from_status`` to ``to_status``."""

        with self._lock, self.cn:
            cur = self.cn.execute(
                "UPDATE open_orders SET status = ?, updated_at = ? "
                "WHERE order_id = ? AND status = ?",
                (OrderStatus(to_status).value, time.time(), order_id, OrderStatus(from_status).value),
            )
            return cur.rowcount == 1

    def claim_for_refund(self, order_id: str) -> bool:
        return self.transition(order_id, OrderStatus.OPEN, OrderStatus.REFUNDING)

    def get(self, order_id: str) -> Optional[OpenOrder]:
        with self._lock:
            row = self.cn.execute(
                f"SELECT {_COLUMNS} FROM open_orders WHERE order_id = ?", (order_id,)
            ).fetchone()
        return _row_to_order(row) if row else None

    def count(self, status: OrderStatus | None = None) -> int:
        with self._lock:
            if status is None:
                row = self.cn.execute("SELECT COUNT(*) FROM open_orders").fetchone()
            else:
                row = self.cn.execute(
                    "SELECT COUNT(*) FROM open_orders WHERE status = ?", (OrderStatus(status).value,)
                ).fetchone()
        return int(row[0])

    def ping(self) -> bool:
        with self._lock:
            return self.cn.execute("SELECT 1").fetchone() is not None

    def close(self) -> None:
        with self._lock:
            self.cn.close()
