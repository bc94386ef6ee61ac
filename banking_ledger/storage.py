"""
Storage Backend Module

Provides the abstract ledger-store interface and implementations for
in-memory (testing), SQLite (local persistence) and PostgreSQL (production).
All monetary values are stored as Decimal strings inside JSON documents.

Every backend offers the same transactional contract:

- ``atomic()`` opens a transaction; nested blocks become savepoints and an
  exception rolls back everything written inside the block that raised it.
- Transactions are serializable: in-process backends serialize them, and
  PostgreSQL additionally takes row locks through ``load_for_update``.
- ``insert()`` and ``save()`` enforce the primary key and any unique index
  declared with ``create_unique_index``, raising ``UniqueConstraintError``.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import copy
import json
import sqlite3
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager


class StorageError(Exception):
    """Raised for failures inside a storage backend"""


class UniqueConstraintError(StorageError):
    """Raised when a write violates a primary key or unique index"""

    def __init__(self, table: str, detail: str):
        super().__init__(f"Unique constraint violated on {table}: {detail}")
        self.table = table
        self.detail = detail


def _to_storable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Flatten to a JSON-safe dict (Decimal -> str, datetime -> ISO, Enum -> value)"""
        return {f.name: _to_storable(getattr(self, f.name)) for f in fields(self)}


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; fails if the id or a unique field already exists"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or update a record"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a record and lock it until the enclosing transaction ends.
        Backends that serialize whole transactions need no row lock.
        """
        return self.load(table, record_id)

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal all the given filter values"""

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""

    @abstractmethod
    def create_unique_index(self, table: str, field_name: str) -> None:
        """Declare a unique constraint on a document field (NULLs exempt)"""

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a transaction, or a savepoint when one is already open"""

    @abstractmethod
    def commit(self) -> None:
        """Commit the innermost transaction level"""

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the innermost transaction level"""

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    A transaction holds the storage lock from begin to the outermost
    commit/rollback, so concurrent transactions run one after another.
    Rollback restores the snapshot taken when the level was opened.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._unique: Dict[str, List[str]] = {}
        self._lock = threading.RLock()
        self._snapshots: List[Dict[str, Dict[str, Dict[str, Any]]]] = []

    def _ensure_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self._data:
            self._data[table] = {}
        return self._data[table]

    def _check_unique(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        rows = self._ensure_table(table)
        for field_name in self._unique.get(table, []):
            value = data.get(field_name)
            if value is None:
                continue
            for other_id, other in rows.items():
                if other_id != record_id and other.get(field_name) == value:
                    raise UniqueConstraintError(table, f"{field_name}={value}")

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            rows = self._ensure_table(table)
            if record_id in rows:
                raise UniqueConstraintError(table, f"id={record_id}")
            self._check_unique(table, record_id, data)
            rows[record_id] = json.loads(json.dumps(data, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._check_unique(table, record_id, data)
            # Deep copy to prevent external mutation
            self._ensure_table(table)[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._ensure_table(table).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._ensure_table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._ensure_table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._ensure_table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._ensure_table(table).values()
                if all(record.get(k) == v for k, v in filters.items())
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._ensure_table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def create_unique_index(self, table: str, field_name: str) -> None:
        with self._lock:
            rows = self._ensure_table(table)
            seen = set()
            for record in rows.values():
                value = record.get(field_name)
                if value is None:
                    continue
                if value in seen:
                    raise UniqueConstraintError(table, f"{field_name}={value}")
                seen.add(value)
            indexed = self._unique.setdefault(table, [])
            if field_name not in indexed:
                indexed.append(field_name)

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._snapshots.append(copy.deepcopy(self._data))

    def commit(self) -> None:
        self._snapshots.pop()
        self._lock.release()

    def rollback(self) -> None:
        self._data = self._snapshots.pop()
        self._lock.release()

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Deep copy of every table, for inspection in tests"""
        with self._lock:
            return copy.deepcopy(self._data)

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    Runs the connection in autocommit mode and issues BEGIN IMMEDIATE /
    SAVEPOINT statements itself so nested ``atomic()`` blocks map onto
    SQLite savepoints.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)

    def _write(self, table: str, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            return self._connection.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise UniqueConstraintError(table, str(e)) from e

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._write(table, f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), now, now))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            # Upsert on the primary key only; a unique-index clash still raises
            self._write(table, f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY rowid")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY rowid")
            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                if all(record.get(k) == v for k, v in filters.items()):
                    results.append(record)
            return results

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) AS count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def create_unique_index(self, table: str, field_name: str) -> None:
        with self._lock:
            self._ensure_table(table)
            try:
                self._connection.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field_name}
                    ON {table}(json_extract(data, '$.{field_name}'))
                """)
            except sqlite3.IntegrityError as e:
                raise UniqueConstraintError(table, str(e)) from e

    def begin_transaction(self) -> None:
        self._lock.acquire()
        try:
            if self._depth == 0:
                self._connection.execute("BEGIN IMMEDIATE")
            else:
                self._connection.execute(f"SAVEPOINT sp_{self._depth}")
        except Exception:
            self._lock.release()
            raise
        self._depth += 1

    def commit(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                self._connection.execute("COMMIT")
            else:
                self._connection.execute(f"RELEASE SAVEPOINT sp_{self._depth}")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                self._connection.execute("ROLLBACK")
            else:
                self._connection.execute(f"ROLLBACK TO SAVEPOINT sp_{self._depth}")
                self._connection.execute(f"RELEASE SAVEPOINT sp_{self._depth}")
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage backend.

    Within one process the connection is shared and transactions are
    serialized by the storage lock; across service instances consistency
    comes from ``SELECT ... FOR UPDATE`` row locks and unique indexes.
    """

    def __init__(self, connection_string: str):
        try:
            import psycopg2
            import psycopg2.extras
        except ImportError:
            raise ImportError(
                "psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary"
            )
        self.psycopg2 = psycopg2
        self.extras = psycopg2.extras
        self.connection_string = connection_string
        self._lock = threading.RLock()
        self._depth = 0
        self._ready_tables: set = set()
        self._connection = psycopg2.connect(
            connection_string, cursor_factory=psycopg2.extras.RealDictCursor
        )
        self._connection.autocommit = True  # Transactions are opened explicitly

    @contextmanager
    def _cursor(self, table: str):
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
            except self.psycopg2.IntegrityError as e:
                raise UniqueConstraintError(table, str(e)) from e
            finally:
                cursor.close()

    def _ensure_table(self, table: str) -> None:
        if table in self._ready_tables:
            return
        with self._cursor(table) as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    seq BIGSERIAL,
                    id TEXT PRIMARY KEY,
                    data JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_data ON {table} USING gin(data)")
        if self._depth == 0:
            self._ready_tables.add(table)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(
                f"INSERT INTO {table} (id, data) VALUES (%s, %s)",
                (record_id, json.dumps(data, default=str))
            )

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(f"""
                INSERT INTO {table} (id, data) VALUES (%s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = NOW()
            """, (record_id, json.dumps(data, default=str)))

    def _select_one(self, table: str, record_id: str, suffix: str = "") -> Optional[Dict[str, Any]]:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(f"SELECT data FROM {table} WHERE id = %s {suffix}", (record_id,))
            row = cursor.fetchone()
            return dict(row['data']) if row else None

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self._select_one(table, record_id)

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self._select_one(table, record_id, "FOR UPDATE")

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return self.find(table, {})

    def delete(self, table: str, record_id: str) -> bool:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(f"DELETE FROM {table} WHERE id = %s", (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            if filters:
                cursor.execute(
                    f"SELECT data FROM {table} WHERE data @> %s::jsonb ORDER BY seq",
                    (json.dumps(filters, default=str),)
                )
            else:
                cursor.execute(f"SELECT data FROM {table} ORDER BY seq")
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(f"SELECT COUNT(*) AS count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(f"DELETE FROM {table}")

    def create_unique_index(self, table: str, field_name: str) -> None:
        self._ensure_table(table)
        with self._cursor(table) as cursor:
            cursor.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field_name}
                ON {table} ((data ->> '{field_name}'))
            """)

    def begin_transaction(self) -> None:
        self._lock.acquire()
        try:
            with self._connection.cursor() as cursor:
                if self._depth == 0:
                    cursor.execute("BEGIN ISOLATION LEVEL READ COMMITTED")
                else:
                    cursor.execute(f"SAVEPOINT sp_{self._depth}")
        except Exception:
            self._lock.release()
            raise
        self._depth += 1

    def commit(self) -> None:
        try:
            self._depth -= 1
            with self._connection.cursor() as cursor:
                if self._depth == 0:
                    cursor.execute("COMMIT")
                else:
                    cursor.execute(f"RELEASE SAVEPOINT sp_{self._depth}")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        try:
            self._depth -= 1
            with self._connection.cursor() as cursor:
                if self._depth == 0:
                    cursor.execute("ROLLBACK")
                else:
                    cursor.execute(f"ROLLBACK TO SAVEPOINT sp_{self._depth}")
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    ``memory://`` -> InMemoryStorage, ``sqlite:///path`` (or ``sqlite://`` for
    an in-memory database) -> SQLiteStorage, ``postgresql://...`` -> PostgreSQLStorage.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
