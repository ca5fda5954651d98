"""
Storage Backend Module

Table/record storage for loans, schedule entries, repayments, chit funds and
audit events. Records are JSON-compatible dicts keyed by id; amounts travel
as Decimal strings.

Two backends: InMemoryStorage for tests and SQLiteStorage for persistence.
Both support nested atomic() blocks. A block holds the backend lock until it
ends, and an exception anywhere inside the outermost block undoes every
write made since it began.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

Row = Dict[str, Any]


@dataclass
class StorageRecord:
    """Fields shared by every stored record"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Row:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['updated_at'] = self.updated_at.isoformat()
        return {k: str(v) if isinstance(v, Decimal) else v for k, v in data.items()}


def _copy(row: Row) -> Row:
    """Detached JSON copy; callers never share state with the backend"""
    return json.loads(json.dumps(row, default=str))


def _matches(row: Row, filters: Row) -> bool:
    return all(key in row and row[key] == value for key, value in filters.items())


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Row) -> None:
        """Insert or replace a record"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Row]:
        """Record by id, None when absent"""

    @abstractmethod
    def load_all(self, table: str) -> List[Row]:
        """Every record of a table in insertion order"""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Remove a record; False when it did not exist"""

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Row) -> List[Row]:
        """Records whose fields equal every filter value"""
        return [row for row in self.load_all(table) if _matches(row, filters)]

    @contextmanager
    def atomic(self):
        """Run a block as one transaction; any exception rolls it back and propagates"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """Dict-backed storage for tests; rollback restores a snapshot"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Row]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[Dict[str, Dict[str, Row]]] = None

    def _table(self, table: str) -> Dict[str, Row]:
        return self._tables.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Row) -> None:
        with self._lock:
            self._table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Row]:
        with self._lock:
            row = self._table(table).get(record_id)
            return _copy(row) if row is not None else None

    def load_all(self, table: str) -> List[Row]:
        with self._lock:
            return [_copy(row) for row in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = _copy(self._tables)
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._tables = self._snapshot
            self._snapshot = None
        self._lock.release()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite persistence, one table per record type

    Each table stores the JSON document plus its id and timestamps. Outside
    a transaction every write commits immediately.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._known_tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @classmethod
    def from_url(cls, database_url: str) -> 'SQLiteStorage':
        """Open a sqlite:///path URL as found in configuration"""
        prefix = "sqlite:///"
        if not database_url.startswith(prefix):
            raise ValueError(f"Unsupported database URL: {database_url}")
        return cls(database_url[len(prefix):] or ":memory:")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _autocommit(self) -> None:
        if self._depth == 0:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        self._connection.execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "id TEXT PRIMARY KEY, data TEXT NOT NULL, "
            "created_at TEXT NOT NULL, updated_at TEXT NOT NULL)"
        )
        self._connection.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table}(created_at)"
        )
        self._autocommit()
        self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Row) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            # Replacing a row keeps its original insertion timestamp
            self._connection.execute(
                f"INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at) "
                f"VALUES (?, ?, COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?), ?)",
                (record_id, json.dumps(data, default=str), record_id, now, now)
            )
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Row]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Row]:
        with self._lock:
            self._ensure_table(table)
            rows = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY created_at, rowid"
            ).fetchall()
            return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._autocommit()
            return cursor.rowcount > 0

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._autocommit()

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.rollback()
                # A table created inside the transaction may be gone now
                self._known_tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
