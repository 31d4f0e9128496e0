from __future__ import annotations

import logging

from .database import DocumentDatabase
from .errors import PersistenceError

logger = logging.getLogger(__name__)

SUBMISSION_SEQUENCE = "submissionID"


class SequenceAllocator:
    """
    Hands out increasing integers per named counter.

    Each allocation is a single upsert-and-return under an immediate write
    lock, so concurrent callers (threads or processes sharing the database
    file) never observe the same value. A counter that does not exist yet
    starts at 0 and its first allocation returns 1.
    """

    def __init__(self, database: DocumentDatabase):
        self.database = database

    def next_value(self, name: str) -> int:
        with self.database.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute("""
                INSERT INTO counters (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
                RETURNING value
            """, (name,)).fetchall()
            conn.commit()

        if not rows:
            raise PersistenceError(f"Counter {name!r} returned no value")
        value = int(rows[0]["value"])
        logger.debug(f"Allocated {value} from counter {name}")
        return value

    def current_value(self, name: str) -> int:
        """Last value handed out for ``name``; 0 if nothing was allocated yet."""
        with self.database.connection() as conn:
            row = conn.execute("SELECT value FROM counters WHERE name = ?", (name,)).fetchone()
        return int(row["value"]) if row else 0
