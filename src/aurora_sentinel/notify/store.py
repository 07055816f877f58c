"""
Key-Value Store
===============

The notification pipeline keeps all of its state in a flat key-value
namespace: topic state, cooldown stamps, latest alerts, the threshold
configuration, subscriptions and the last-run marker.

Interface (KVStore):
    get(key)                        -> value or None
    put(key, value)
    delete(key)
    list(prefix, cursor, limit)     -> (items, next_cursor)

Values are JSON-serializable. Listing is ordered by key; the cursor is the
last key of the previous page and next_cursor is None on the last page.
Read-then-write sequences are NOT atomic: two concurrent cooldown checks
can both pass. This is an accepted tolerance.

Backends:
    MemoryKVStore   - dict-backed, for tests and one-shot runs
    SQLiteKVStore   - single `kv` table, JSON values
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from aurora_sentinel.config import DEFAULT_DB_PATH

# Key layout
STATE_PREFIX = 'STATE_'
COOLDOWN_PREFIX = 'COOLDOWN_'
LATEST_ALERT_PREFIX = 'LATEST_ALERT_'
SUB_PREFIX = 'SUB_'
CONFIG_THRESHOLDS_KEY = 'CONFIG_THRESHOLDS'
LAST_RUN_KEY = 'LAST_SUCCESSFUL_RUN_TIMESTAMP'
FLARE_PEAK_KEY = 'FLARE_PEAK'
IPS_SEEN_KEY = 'IPS_SEEN'

DEFAULT_PAGE_SIZE = 100


class KVStore(ABC):
    """Abstract key-value store."""

    @abstractmethod
    def get(self, key: str) -> Any:
        ...

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def list(self, prefix: str = '', cursor: Optional[str] = None,
             limit: int = DEFAULT_PAGE_SIZE) -> tuple[list[tuple[str, Any]], Optional[str]]:
        ...

    def iter_prefix(self, prefix: str, page_size: int = DEFAULT_PAGE_SIZE):
        """Yield (key, value) for every key under prefix, page by page."""
        cursor = None
        while True:
            items, cursor = self.list(prefix, cursor, page_size)
            yield from items
            if cursor is None:
                return

    def count(self, prefix: str = '') -> int:
        return sum(1 for _ in self.iter_prefix(prefix))

    def get_stats(self) -> dict:
        """Key counts per namespace."""
        stats = {}
        for name, prefix in (('subscriptions', SUB_PREFIX), ('topic_state', STATE_PREFIX),
                             ('cooldowns', COOLDOWN_PREFIX), ('latest_alerts', LATEST_ALERT_PREFIX)):
            stats[name] = self.count(prefix)
        stats['config'] = self.get(CONFIG_THRESHOLDS_KEY) is not None
        stats['last_run'] = self.get(LAST_RUN_KEY)
        return stats

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class MemoryKVStore(KVStore):
    """In-process store. Values are round-tripped through JSON on write."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key):
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key, value):
        self._data[key] = json.dumps(value)

    def delete(self, key):
        self._data.pop(key, None)

    def list(self, prefix='', cursor=None, limit=DEFAULT_PAGE_SIZE):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        keys = sorted(k for k in self._data
                      if k.startswith(prefix) and (cursor is None or k > cursor))
        page = keys[:limit]
        items = [(k, json.loads(self._data[k])) for k in page]
        next_cursor = page[-1] if len(keys) > limit else None
        return items, next_cursor


class SQLiteKVStore(KVStore):
    """SQLite-backed store: one table, key primary key, JSON text values."""

    DEFAULT_PATH = DEFAULT_DB_PATH

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or self.DEFAULT_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = None
        self._lock = threading.Lock()
        self._connect()
        self._create_tables()

    def _connect(self):
        # Shared between the scheduler thread and request handlers
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def _create_tables(self):
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self.conn.commit()

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def get(self, key):
        with self._lock:
            row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row['value']) if row else None

    def put(self, key, value):
        with self._lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            """, (key, json.dumps(value)))
            self.conn.commit()

    def delete(self, key):
        with self._lock:
            self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self.conn.commit()

    def list(self, prefix='', cursor=None, limit=DEFAULT_PAGE_SIZE):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        # Prefix match via range scan; avoids LIKE wildcard escaping
        upper = prefix + '\uffff'
        lower = cursor if cursor is not None and cursor >= prefix else prefix
        op = '>' if cursor is not None and cursor >= prefix else '>='
        with self._lock:
            rows = self.conn.execute(f"""
                SELECT key, value FROM kv
                WHERE key {op} ? AND key < ?
                ORDER BY key
                LIMIT ?
            """, (lower, upper, limit + 1)).fetchall()
        page = rows[:limit]
        items = [(r['key'], json.loads(r['value'])) for r in page]
        next_cursor = page[-1]['key'] if len(rows) > limit else None
        return items, next_cursor


def open_store(db_path: Optional[Path] = None) -> KVStore:
    """Open the SQLite store at db_path (or the default location)."""
    return SQLiteKVStore(db_path)
