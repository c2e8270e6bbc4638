"""
GEMRUSH: Balance Persistence

The round core only needs a get/set of one number. Hosts inject one of
these stores into GemTable; the table calls load() once at start-up and
save() after every action that moved the balance.

Usage:
    from config.balance_store import SqliteBalanceStore
    store = SqliteBalanceStore("gemrush.db")
    balance = store.load()
    store.save(balance + 5)
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("gemrush.store")

BALANCE_KEY = "gameBalance"


class BalanceStore(Protocol):
    def load(self) -> float: ...

    def save(self, balance: float) -> None: ...


class MemoryBalanceStore:
    """Process-local store, used by tests and the simulator."""

    def __init__(self, initial: float = 0.0):
        self.balance = float(initial)
        self.saves = 0

    def load(self) -> float:
        return self.balance

    def save(self, balance: float) -> None:
        self.balance = float(balance)
        self.saves += 1


class SqliteBalanceStore:
    """Key/value row in a SQLite file.

    A missing or unreadable value loads as 0.0; write errors propagate.
    """

    def __init__(self, path="gemrush.db", key: str = BALANCE_KEY):
        self.path = str(path)
        self.key = key
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._memory_conn = sqlite3.connect(":memory:") if self.path == ":memory:" else None
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS kv_store (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )

    @contextmanager
    def _connect(self):
        if self._memory_conn is not None:
            # :memory: databases vanish with their connection, so keep one open.
            yield self._memory_conn
            self._memory_conn.commit()
            return
        conn = sqlite3.connect(self.path, timeout=10)
        try:
            conn.execute("PRAGMA busy_timeout=5000")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def load(self) -> float:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", [self.key]
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Balance read failed ({self.path}): {e}")
            return 0.0
        if row is None:
            return 0.0
        try:
            return float(row[0])
        except (TypeError, ValueError):
            logger.warning(f"Stored balance {row[0]!r} is not a number, starting from 0")
            return 0.0

    def save(self, balance: float) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                [self.key, repr(float(balance))],
            )
        logger.debug(f"Saved balance {balance:.2f} under {self.key}")

    def close(self):
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
