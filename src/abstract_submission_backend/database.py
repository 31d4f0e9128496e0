"""
SQLite document store for submissions and named counters.

Submissions are kept as JSON documents keyed by their sequential uniqueID;
counters are plain name/value rows used by the sequence allocator. Every
operation opens its own connection, so the store is safe to share between
request threads.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4

from .errors import PersistenceError
from .models import PROTECTED_FIELDS, StoredSubmission
from .utils import ensure_directory

logger = logging.getLogger(__name__)

SQLITE_SCHEME = "sqlite:///"

# Largest value an SQLite INTEGER column can hold
MAX_SQLITE_INTEGER = 2**63 - 1


def database_path_from_url(url: str) -> Path:
    """Extract the file path from a ``sqlite:///path/to/file.db`` URL."""
    if not url.startswith(SQLITE_SCHEME):
        raise ValueError(f"Unsupported database URL: {url}")
    return Path(url[len(SQLITE_SCHEME):])


def _serialize_datetime(dt: datetime) -> str:
    return dt.isoformat()


def _deserialize_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s)


class DocumentDatabase:
    """
    Connection factory and schema owner for the submission store.

    Thread-safe: SQLite handles concurrent access with WAL mode and a
    busy timeout; writers that must read-modify-write take the write lock
    up front with BEGIN IMMEDIATE.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        ensure_directory(self.db_path.parent)
        self._init_db()

    @classmethod
    def from_url(cls, url: str) -> "DocumentDatabase":
        return cls(database_path_from_url(url))

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Yield an autocommit connection; callers open transactions explicitly.

        Any sqlite3.Error raised inside the block is rolled back and
        re-raised as PersistenceError.
        """
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database at {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            raise PersistenceError(f"Database operation failed: {exc}") from exc
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self.connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS submissions (
                    unique_id INTEGER PRIMARY KEY,
                    record_id TEXT UNIQUE NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    document TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL DEFAULT 0
                )
            """)
        logger.info(f"Document store ready at {self.db_path}")

    def ping(self) -> None:
        """Raise PersistenceError when the store cannot answer a trivial query."""
        with self.connection() as conn:
            conn.execute("SELECT 1").fetchone()


class SubmissionStore:
    """
    Persistence for submission documents.

    The store performs no field validation; it only guarantees that
    uniqueID and createdAt never change once written.
    """

    def __init__(self, database: DocumentDatabase):
        self.database = database

    def create(self, record: Dict[str, Any]) -> StoredSubmission:
        """
        Insert a new submission document.

        Args:
            record: Business fields plus ``uniqueID`` and ``createdAt``

        Returns:
            The stored submission with its generated record_id

        Raises:
            PersistenceError: If the write fails, including a duplicate uniqueID
        """
        fields = {key: value for key, value in record.items() if key not in PROTECTED_FIELDS}
        created_at = record.get("createdAt") or datetime.now(timezone.utc)
        stored = StoredSubmission(
            record_id=uuid4().hex,
            unique_id=int(record["uniqueID"]),
            created_at=created_at,
            updated_at=created_at,
            fields=fields,
        )

        with self.database.connection() as conn:
            conn.execute("""
                INSERT INTO submissions (unique_id, record_id, created_at, updated_at, document)
                VALUES (?, ?, ?, ?, ?)
            """, (
                stored.unique_id,
                stored.record_id,
                _serialize_datetime(stored.created_at),
                _serialize_datetime(stored.updated_at),
                json.dumps(stored.fields),
            ))

        return stored

    def find_by_unique_id(self, unique_id: int) -> Optional[StoredSubmission]:
        """
        Retrieve a submission by its uniqueID.

        Returns:
            The stored submission, or None if no document matches
        """
        if unique_id > MAX_SQLITE_INTEGER:
            return None

        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT * FROM submissions WHERE unique_id = ?", (unique_id,)
            ).fetchone()

        if not row:
            return None
        return self._row_to_submission(row)

    def update_by_unique_id(self, unique_id: int, patch: Dict[str, Any]) -> Optional[StoredSubmission]:
        """
        Merge patch fields into an existing submission.

        uniqueID and createdAt are kept from the stored document whatever the
        patch contains. The read and the write happen under one write lock.

        Returns:
            The post-update submission, or None if no document matches
        """
        if unique_id > MAX_SQLITE_INTEGER:
            return None
        changes = {key: value for key, value in patch.items() if key not in PROTECTED_FIELDS}

        with self.database.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM submissions WHERE unique_id = ?", (unique_id,)
            ).fetchone()

            if not row:
                conn.rollback()
                return None

            stored = self._row_to_submission(row)
            stored.fields.update(changes)
            stored.updated_at = datetime.now(timezone.utc)

            conn.execute(
                "UPDATE submissions SET document = ?, updated_at = ? WHERE unique_id = ?",
                (json.dumps(stored.fields), _serialize_datetime(stored.updated_at), unique_id),
            )
            conn.commit()

        return stored

    def count(self) -> int:
        with self.database.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM submissions").fetchone()[0]

    def _row_to_submission(self, row: sqlite3.Row) -> StoredSubmission:
        return StoredSubmission(
            record_id=row["record_id"],
            unique_id=row["unique_id"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
            fields=json.loads(row["document"] or "{}"),
        )
