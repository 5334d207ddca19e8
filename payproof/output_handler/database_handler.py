"""
Database Handler Module.

SQLite storage shared by the submission store, the decision store and
the review queue. All three live in one database file; every operation
opens its own connection so stores can be used from worker threads.

Tables:
    - submissions: orders awaiting payment
    - payment_decisions: append-only decision history per content hash
    - review_tickets: manual review queue

Author: ML Engineering Team
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Type, Union

from payproof.config import get_config
from payproof.matching.submission import (
    Submission,
    SubmissionStatus,
    SubmissionStore,
    within_amount_window,
)
from payproof.utils.exceptions import DatabaseError, PaymentProofError, StoreUnavailableError
from payproof.utils.helpers import ensure_directory, normalize_reference, phone_key, utc_now_iso
from payproof.utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL,
        expected_amount REAL NOT NULL,
        currency TEXT NOT NULL,
        payment_reference TEXT,
        payment_reference_key TEXT,
        buyer_name TEXT,
        buyer_phone TEXT,
        buyer_phone_key TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        decision_id TEXT,
        approval_confidence REAL,
        approved_at TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_submissions_order ON submissions (order_id)",
    "CREATE INDEX IF NOT EXISTS idx_submissions_reference ON submissions (payment_reference_key)",
    "CREATE INDEX IF NOT EXISTS idx_submissions_amount ON submissions (currency, expected_amount)",
    "CREATE INDEX IF NOT EXISTS idx_submissions_phone ON submissions (buyer_phone_key)",
    """
    CREATE TABLE IF NOT EXISTS payment_decisions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        decision_id TEXT NOT NULL UNIQUE,
        content_hash TEXT NOT NULL,
        run_id TEXT NOT NULL,
        outcome TEXT NOT NULL,
        reason TEXT NOT NULL,
        submission_id TEXT,
        review_ticket_id TEXT,
        rerun INTEGER NOT NULL DEFAULT 0,
        is_current INTEGER NOT NULL DEFAULT 1,
        payload TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    # One current decision per image; older runs stay as history
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_decisions_current
    ON payment_decisions (content_hash) WHERE is_current = 1
    """,
    "CREATE INDEX IF NOT EXISTS idx_decisions_hash ON payment_decisions (content_hash)",
    """
    CREATE TABLE IF NOT EXISTS review_tickets (
        ticket_id TEXT PRIMARY KEY,
        run_id TEXT NOT NULL,
        decision_id TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        reason TEXT NOT NULL,
        candidates TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'open',
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tickets_status ON review_tickets (status)",
]


def resolve_db_path(db_path: Optional[Union[str, Path]] = None) -> Path:
    """Database path from the argument or the ``database.path`` setting."""
    return Path(db_path or get_config("database.path", "data/payproof.db"))


class SQLiteDatabase:
    """
    Base class for the SQLite-backed stores.

    Subclasses set ``error_type`` to the exception raised when SQLite
    fails, so callers only ever see the engine's own error families.

    Attributes:
        db_path: Path to the SQLite database file
        timeout: Seconds to wait for a locked database
    """

    error_type: Type[PaymentProofError] = DatabaseError

    def __init__(self, db_path: Optional[Union[str, Path]] = None, timeout: float = 10.0) -> None:
        self.db_path = resolve_db_path(db_path)
        self.timeout = timeout
        ensure_directory(self.db_path.parent)
        self.init_schema()

    def init_schema(self) -> None:
        """Create all tables and indexes if they do not exist."""
        with self._connect("init schema") as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.debug(f"Database schema verified ({self.db_path})")

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and translate SQLite errors."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.Error as e:
            raise self.error_type(operation, str(e)) from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise self.error_type(operation, str(e)) from e
        finally:
            conn.close()

    def close(self) -> None:
        """Connections are closed per operation; kept for interface consistency."""


def _row_to_submission(row: sqlite3.Row) -> Submission:
    return Submission(
        id=row['id'],
        order_id=row['order_id'],
        expected_amount=row['expected_amount'],
        currency=row['currency'],
        payment_reference=row['payment_reference'],
        buyer_name=row['buyer_name'],
        buyer_phone=row['buyer_phone'],
        status=SubmissionStatus(row['status']),
    )


class SQLiteSubmissionStore(SQLiteDatabase, SubmissionStore):
    """
    SubmissionStore over the ``submissions`` table.

    Reference and phone lookups use precomputed canonical keys, so
    "1009 876 543" finds a submission stored as "1009876543".

    Example:
        >>> store = SQLiteSubmissionStore("data/payproof.db")
        >>> store.add_submission(Submission("SUB-1", "ORD-1", 1000.0, "PHP", "REF123456"))
        >>> store.find_by_reference("ref 123-456")[0].id
        'SUB-1'
    """

    error_type = StoreUnavailableError
    identity_limit = 50

    def add_submission(self, submission: Submission) -> None:
        """Insert or replace a submission."""
        self.add_submissions([submission])

    def add_submissions(self, submissions: Iterable[Submission]) -> int:
        rows = [
            (
                s.id, s.order_id, float(s.expected_amount), s.currency.upper(),
                s.payment_reference, normalize_reference(s.payment_reference) or None,
                s.buyer_name, s.buyer_phone, phone_key(s.buyer_phone) or None,
                s.status.value,
            )
            for s in submissions
        ]
        with self._connect("add submissions") as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO submissions (
                    id, order_id, expected_amount, currency,
                    payment_reference, payment_reference_key,
                    buyer_name, buyer_phone, buyer_phone_key, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows
            )
        logger.info(f"Stored {len(rows)} submissions")
        return len(rows)

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        with self._connect("get_submission") as conn:
            row = conn.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
        return _row_to_submission(row) if row else None

    def list_submissions(self, status: Optional[SubmissionStatus] = None) -> List[Submission]:
        query = "SELECT * FROM submissions"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY id"
        with self._connect("list_submissions") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_submission(row) for row in rows]

    def find_by_order(self, order_id: str) -> List[Submission]:
        with self._connect("find_by_order") as conn:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE order_id = ? AND status = ? ORDER BY id",
                (order_id, SubmissionStatus.PENDING.value)
            ).fetchall()
        return [_row_to_submission(row) for row in rows]

    def find_by_reference(self, code: str) -> List[Submission]:
        key = normalize_reference(code)
        if not key:
            return []
        with self._connect("find_by_reference") as conn:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE payment_reference_key = ? ORDER BY id", (key,)
            ).fetchall()
        return [_row_to_submission(row) for row in rows]

    def find_by_amount_window(self, amount: float, currency: str, tolerance: float) -> List[Submission]:
        # Coarse SQL bound, exact window applied below
        with self._connect("find_by_amount_window") as conn:
            rows = conn.execute(
                """
                SELECT * FROM submissions
                WHERE currency = ? AND ABS(expected_amount - ?) <= (? * expected_amount) + 0.01
                ORDER BY ABS(expected_amount - ?), id
                """,
                (currency.upper(), amount, tolerance, amount)
            ).fetchall()
        return [
            _row_to_submission(row) for row in rows
            if within_amount_window(row['expected_amount'], amount, tolerance)
        ]

    def find_by_buyer_identity(self, name_or_phone: str) -> List[Submission]:
        """
        Look up submissions by buyer phone or name.

        A value with a usable phone number matches on the canonical phone
        key; anything else matches when any name token of three or more
        letters appears in the buyer name.
        """
        key = phone_key(name_or_phone)
        if key:
            query = "SELECT * FROM submissions WHERE buyer_phone_key = ? ORDER BY id LIMIT ?"
            params: List[Any] = [key, self.identity_limit]
        else:
            tokens = [t for t in name_or_phone.lower().replace('.', ' ').split() if len(t) >= 3]
            if not tokens:
                return []
            clauses = " OR ".join("LOWER(buyer_name) LIKE ?" for _ in tokens)
            query = f"SELECT * FROM submissions WHERE {clauses} ORDER BY id LIMIT ?"
            params = [f"%{t}%" for t in tokens] + [self.identity_limit]

        with self._connect("find_by_buyer_identity") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_submission(row) for row in rows]

    def approve_if_pending(self, submission_id: str, decision_id: str, confidence: float) -> bool:
        with self._connect("approve_if_pending") as conn:
            cursor = conn.execute(
                """
                UPDATE submissions
                SET status = ?, decision_id = ?, approval_confidence = ?, approved_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    SubmissionStatus.PAID.value, decision_id, confidence, utc_now_iso(),
                    submission_id, SubmissionStatus.PENDING.value,
                )
            )
            approved = cursor.rowcount == 1

        if approved:
            logger.info(f"Submission {submission_id} marked paid by {decision_id} ({confidence:.2f})")
        else:
            logger.warning(f"Submission {submission_id} not pending; approval by {decision_id} rejected")
        return approved

    def get_statistics(self) -> Dict[str, int]:
        """Count submissions per status."""
        with self._connect("get_statistics") as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM submissions GROUP BY status").fetchall()
        return {row['status']: row['n'] for row in rows}
