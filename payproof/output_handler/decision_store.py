"""
Decision Store Module.

Persists PaymentDecisions keyed by the content hash of the uploaded
image. Each hash has at most one current decision; explicit re-runs
append a new current row and keep the previous ones as history.

Author: ML Engineering Team
"""

import json
from pathlib import Path
from typing import List, Optional, Union

from payproof.decision.payment_decision import DecisionOutcome, PaymentDecision
from payproof.utils.exceptions import DatabaseError
from payproof.utils.logger import get_logger
from .database_handler import SQLiteDatabase

logger = get_logger(__name__)

_INSERT = """
    INSERT {conflict} INTO payment_decisions (
        decision_id, content_hash, run_id, outcome, reason, submission_id,
        review_ticket_id, rerun, is_current, payload, created_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
"""


def _values(decision: PaymentDecision) -> tuple:
    return (
        decision.decision_id,
        decision.content_hash,
        decision.run_id,
        decision.outcome.value,
        decision.reason,
        decision.chosen.submission.id if decision.chosen else None,
        decision.review_ticket_id,
        1 if decision.rerun else 0,
        json.dumps(decision.to_dict(), ensure_ascii=False),
        decision.created_at,
    )


class DecisionStore(SQLiteDatabase):
    """
    Append-only store of payment decisions.

    Example:
        >>> store = DecisionStore("data/payproof.db")
        >>> stored = store.save_if_absent(decision)
        >>> stored.decision_id == decision.decision_id
        True
        >>> store.save_if_absent(other_decision_same_hash).decision_id == decision.decision_id
        True
    """

    error_type = DatabaseError

    def __init__(self, db_path: Optional[Union[str, Path]] = None, timeout: float = 10.0) -> None:
        super().__init__(db_path, timeout)
        logger.info(f"DecisionStore initialized (db: {self.db_path})")

    def save_if_absent(self, decision: PaymentDecision) -> PaymentDecision:
        """
        Store a decision unless its content hash already has one.

        The insert is a single atomic statement, so of two racing runs
        exactly one wins. An auto-approval is the exception: the run that
        marked the submission paid must stay on record, so it supersedes
        a non-approval stored first by a run that lost the approval race.

        Returns:
            The decision now current for the hash: the argument if it was
            inserted, otherwise the one stored earlier.
        """
        with self._connect("save decision") as conn:
            cursor = conn.execute(_INSERT.format(conflict="OR IGNORE"), _values(decision))
            inserted = cursor.rowcount == 1
            if not inserted and decision.outcome == DecisionOutcome.AUTO_APPROVED:
                cursor = conn.execute(
                    "UPDATE payment_decisions SET is_current = 0 "
                    "WHERE content_hash = ? AND is_current = 1 AND outcome != ?",
                    (decision.content_hash, DecisionOutcome.AUTO_APPROVED.value)
                )
                if cursor.rowcount == 1:
                    conn.execute(_INSERT.format(conflict=""), _values(decision))
                    inserted = True
                    logger.warning(
                        f"Approval {decision.decision_id} superseded an earlier decision "
                        f"for {decision.content_hash[:12]}"
                    )

        if inserted:
            logger.debug(f"Stored decision {decision.decision_id} for {decision.content_hash[:12]}")
            return decision

        existing = self.get_by_hash(decision.content_hash)
        if existing is None:
            raise DatabaseError("save decision", f"no current decision for {decision.content_hash}")
        logger.info(f"Decision for {decision.content_hash[:12]} already stored; keeping {existing.decision_id}")
        return existing

    def append(self, decision: PaymentDecision) -> PaymentDecision:
        """Make a re-run's decision current, keeping earlier ones as history."""
        with self._connect("append decision") as conn:
            conn.execute(
                "UPDATE payment_decisions SET is_current = 0 WHERE content_hash = ? AND is_current = 1",
                (decision.content_hash,)
            )
            conn.execute(_INSERT.format(conflict=""), _values(decision))
        logger.debug(f"Appended decision {decision.decision_id} for {decision.content_hash[:12]}")
        return decision

    def get_by_hash(self, content_hash: str) -> Optional[PaymentDecision]:
        with self._connect("get decision") as conn:
            row = conn.execute(
                "SELECT payload, review_ticket_id FROM payment_decisions WHERE content_hash = ? AND is_current = 1",
                (content_hash,)
            ).fetchone()
        return self._load(row) if row else None

    def history(self, content_hash: str) -> List[PaymentDecision]:
        """All decisions for a hash, oldest first."""
        with self._connect("decision history") as conn:
            rows = conn.execute(
                "SELECT payload, review_ticket_id FROM payment_decisions WHERE content_hash = ? ORDER BY id",
                (content_hash,)
            ).fetchall()
        return [self._load(row) for row in rows]

    def attach_ticket(self, decision_id: str, ticket_id: str) -> None:
        with self._connect("attach ticket") as conn:
            conn.execute(
                "UPDATE payment_decisions SET review_ticket_id = ? WHERE decision_id = ?",
                (ticket_id, decision_id)
            )

    def count(self) -> int:
        with self._connect("count decisions") as conn:
            return conn.execute("SELECT COUNT(*) FROM payment_decisions").fetchone()[0]

    @staticmethod
    def _load(row) -> PaymentDecision:
        decision = PaymentDecision.from_dict(json.loads(row['payload']))
        decision.review_ticket_id = row['review_ticket_id']
        return decision
