"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (persistence) and PostgreSQL (production). Records are JSON documents;
monetary values are stored as Decimal strings and timestamps as fixed-width
UTC ISO strings.

Every backend offers a unit of work (``atomic()``) and a locking read
(``load_for_update``) that holds the record exclusively until the unit of
work ends:

- PostgreSQL takes a row lock with ``SELECT ... FOR UPDATE``.
- SQLite opens the unit of work with ``BEGIN IMMEDIATE`` (database write lock).
- In-memory holds the store lock for the whole unit of work and restores a
  snapshot on rollback.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .query import (
    Criterion, AllOf, Eq, Field, Ordering, SQLiteDialect, PostgreSQLDialect,
    format_timestamp, parse_timestamp
)
from .logging_config import get_logger


logger = get_logger("funds_transfer.storage")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = format_timestamp(value)
            elif isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @staticmethod
    def parse_audit_fields(data: Dict[str, Any]) -> Dict[str, Any]:
        """Common fields every record carries"""
        return {
            "id": data["id"],
            "created_at": parse_timestamp(data["created_at"]),
            "updated_at": parse_timestamp(data["updated_at"]),
        }


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record and lock it until the current unit of work ends"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def query(self, table: str, criterion: Optional[Criterion] = None,
              ordering: Optional[Ordering] = None, offset: int = 0,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Load records matching a criterion, ordered and sliced"""
        pass

    @abstractmethod
    def count(self, table: str, criterion: Optional[Criterion] = None) -> int:
        """Count records in table, optionally only those matching a criterion"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True while a unit of work is open"""
        pass

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose string fields equal the given values"""
        criterion = AllOf(*[Eq(Field(key), value) for key, value in filters.items()])
        return self.query(table, criterion)

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise

    def _require_transaction(self, operation: str) -> None:
        if not self.in_transaction:
            raise RuntimeError(f"{operation} requires an open unit of work (use storage.atomic())")


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._owner: Optional[int] = None
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    @staticmethod
    def _copy(value):
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(value, default=str))

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0 and self._owner == threading.get_ident()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record; the open unit of work already holds the store lock"""
        self._require_transaction("load_for_update")
        return self.load(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def query(self, table: str, criterion: Optional[Criterion] = None,
              ordering: Optional[Ordering] = None, offset: int = 0,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Filter, sort and slice records in memory"""
        with self._lock:
            self._ensure_table(table)
            records = [
                record for record in self._data[table].values()
                if criterion is None or criterion.matches(record)
            ]
            if ordering:
                records = ordering.sort(records)
            end = None if limit is None else offset + limit
            return [self._copy(record) for record in records[offset:end]]

    def count(self, table: str, criterion: Optional[Criterion] = None) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            if criterion is None:
                return len(self._data[table])
            return sum(1 for record in self._data[table].values() if criterion.matches(record))

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Take the store lock and snapshot data for rollback"""
        self._lock.acquire()
        self._depth += 1
        self._owner = threading.get_ident()
        if self._depth == 1:
            self._snapshot = self._copy(self._data)

    def commit(self) -> None:
        """Keep changes and release the store lock"""
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        """Restore the snapshot taken by the outermost unit of work"""
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    dialect = SQLiteDialect()

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._owner: Optional[int] = None
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0 and self._owner == threading.get_ident()

    def _autocommit(self) -> None:
        # Writes outside a unit of work are committed immediately
        if not self.in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
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
            self._autocommit()
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            data_json = json.dumps(data, default=str)
            created_at = data.get("created_at")
            updated_at = data.get("updated_at") or created_at

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, created_at, updated_at))
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record; BEGIN IMMEDIATE already holds the write lock"""
        self._require_transaction("load_for_update")
        return self.load(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def query(self, table: str, criterion: Optional[Criterion] = None,
              ordering: Optional[Ordering] = None, offset: int = 0,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Run a filtered, ordered, paged SELECT using JSON1 functions"""
        where, params = (criterion or AllOf()).to_sql(self.dialect)
        order = ordering.to_sql(self.dialect) if ordering else "created_at, id"
        sql = f"SELECT data FROM {table} WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?"
        params = params + [-1 if limit is None else limit, offset]

        with self._lock:
            self._ensure_table(table)
            logger.debug("sqlite query", extra={"extra": {"sql": sql}})
            cursor = self._connection.execute(sql, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str, criterion: Optional[Criterion] = None) -> int:
        """Count records in table"""
        where, params = (criterion or AllOf()).to_sql(self.dialect)
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table} WHERE {where}
            """, params)
            return cursor.fetchone()['count']

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._autocommit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._autocommit()

    def begin_transaction(self) -> None:
        """Start a write transaction, taking the database write lock"""
        self._lock.acquire()
        self._depth += 1
        self._owner = threading.get_ident()
        if self._depth == 1:
            if self._connection.in_transaction:
                self._connection.commit()
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except Exception:
                self._depth -= 1
                self._lock.release()
                raise

    def commit(self) -> None:
        """Commit current transaction"""
        if self._depth == 0:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if self._depth == 0:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.rollback()
                # Tables created inside the rolled-back transaction are gone
                self._tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with row-level locking"""

    dialect = PostgreSQLDialect()

    def __init__(self, connection_string: str):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._connection = None
        self._lock = threading.RLock()
        self._depth = 0
        self._owner: Optional[int] = None
        self._tables = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            if self._connection:
                self._connection.close()

            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            self._connection.autocommit = False  # We handle transactions manually

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0 and self._owner == threading.get_ident()

    @contextmanager
    def _cursor(self):
        """Cursor that ends implicit transactions when no unit of work is open"""
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
                if not self.in_transaction:
                    self._connection.commit()
            except Exception:
                if not self.in_transaction:
                    self._connection.rollback()
                raise
            finally:
                cursor.close()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._cursor() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_data
                ON {table} USING gin(data)
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        self._ensure_table(table)
        data_json = json.dumps(data, default=str)
        created_at = data.get("created_at")
        updated_at = data.get("updated_at") or created_at

        with self._cursor() as cursor:
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, COALESCE(%s::timestamptz, NOW()), COALESCE(%s::timestamptz, NOW()))
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, data_json, created_at, updated_at))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} WHERE id = %s
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record under a row lock (SELECT ... FOR UPDATE)"""
        self._require_transaction("load_for_update")
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} WHERE id = %s FOR UPDATE
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [dict(row['data']) for row in cursor.fetchall()]

    def query(self, table: str, criterion: Optional[Criterion] = None,
              ordering: Optional[Ordering] = None, offset: int = 0,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Run a filtered, ordered, paged SELECT using JSONB operators"""
        self._ensure_table(table)
        where, params = (criterion or AllOf()).to_sql(self.dialect)
        order = ordering.to_sql(self.dialect) if ordering else "created_at, id"
        sql = f"SELECT data FROM {table} WHERE {where} ORDER BY {order} LIMIT %s OFFSET %s"

        with self._cursor() as cursor:
            cursor.execute(sql, params + [limit, offset])
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str, criterion: Optional[Criterion] = None) -> int:
        """Count records in table"""
        self._ensure_table(table)
        where, params = (criterion or AllOf()).to_sql(self.dialect)
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT COUNT(*) as count FROM {table} WHERE {where}
            """, params)
            return cursor.fetchone()['count']

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"""
                DELETE FROM {table} WHERE id = %s
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT 1 FROM {table} WHERE id = %s LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        self._ensure_table(table)
        with self._cursor() as cursor:
            cursor.execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        # PostgreSQL transactions start automatically with the first statement
        self._lock.acquire()
        self._depth += 1
        self._owner = threading.get_ident()

    def commit(self) -> None:
        """Commit current transaction"""
        if self._depth == 0:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if self._depth == 0:
            return
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.rollback()
                self._tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Pick a storage backend from a database URL.

    ``memory://`` gives InMemoryStorage, ``sqlite:///path.db`` (or
    ``sqlite://`` for an in-memory database) gives SQLiteStorage and
    ``postgresql://...`` gives PostgreSQLStorage.
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
