"""
Review Queue Module.

Tickets for decisions a person has to look at: every PENDING_REVIEW and
UNMATCHED decision opens one.

Author: ML Engineering Team
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from payproof.decision.payment_decision import PaymentDecision
from payproof.matching.match_result import MatchCandidate
from payproof.utils.exceptions import DatabaseError
from payproof.utils.helpers import generate_id, utc_now_iso
from payproof.utils.logger import get_logger
from .database_handler import SQLiteDatabase

logger = get_logger(__name__)


@dataclass
class ReviewTicket:
    """
    A request for manual review.

    Attributes:
        ticket_id: Unique ticket identifier
        run_id: Run that opened the ticket
        decision_id: Decision under review
        content_hash: Hash of the uploaded image
        reason: Why review is needed
        candidates: Summaries of the matches (or payment candidates) found
        status: "open" or "closed"
        created_at: ISO timestamp
    """
    run_id: str
    decision_id: str
    content_hash: str
    reason: str
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    ticket_id: str = field(default_factory=lambda: generate_id("ticket"))
    status: str = "open"
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticket_id': self.ticket_id,
            'run_id': self.run_id,
            'decision_id': self.decision_id,
            'content_hash': self.content_hash,
            'reason': self.reason,
            'candidates': list(self.candidates),
            'status': self.status,
            'created_at': self.created_at,
        }


def summarize_match(match: MatchCandidate) -> Dict[str, Any]:
    return {
        'submission_id': match.submission.id,
        'order_id': match.submission.order_id,
        'expected_amount': match.submission.expected_amount,
        'amount': match.candidate.amount,
        'currency': match.candidate.currency,
        'score': match.score,
        'confidence': match.confidence,
        'reasons': list(match.reasons),
    }


class ReviewQueue(SQLiteDatabase):
    """
    SQLite-backed manual review queue.

    Example:
        >>> queue = ReviewQueue("data/payproof.db")
        >>> ticket = queue.enqueue_review(decision, decision.considered, decision.reason)
        >>> [t.ticket_id for t in queue.list_open()]
        ['ticket_5b1e0c9d2a4f']
    """

    error_type = DatabaseError

    def enqueue_review(
        self,
        decision: PaymentDecision,
        candidates: Sequence[MatchCandidate],
        reason: str
    ) -> ReviewTicket:
        """
        Open a review ticket for a decision.

        Args:
            decision: Decision needing review.
            candidates: Matches considered; when empty the payment
                candidates of the decision are summarized instead.
            reason: Why review is needed.

        Returns:
            The persisted ReviewTicket.
        """
        if candidates:
            summaries = [summarize_match(m) for m in candidates]
        else:
            summaries = [c.to_dict() for c in decision.candidates]

        ticket = ReviewTicket(
            run_id=decision.run_id,
            decision_id=decision.decision_id,
            content_hash=decision.content_hash,
            reason=reason,
            candidates=summaries,
        )
        with self._connect("enqueue review") as conn:
            conn.execute(
                """
                INSERT INTO review_tickets (
                    ticket_id, run_id, decision_id, content_hash, reason, candidates, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ticket.ticket_id, ticket.run_id, ticket.decision_id, ticket.content_hash,
                    ticket.reason, json.dumps(ticket.candidates, ensure_ascii=False),
                    ticket.status, ticket.created_at,
                )
            )
        logger.info(f"Review ticket {ticket.ticket_id} opened: {reason}")
        return ticket

    def list_open(self) -> List[ReviewTicket]:
        with self._connect("list open tickets") as conn:
            rows = conn.execute(
                "SELECT * FROM review_tickets WHERE status = 'open' ORDER BY created_at, ticket_id"
            ).fetchall()
        return [
            ReviewTicket(
                ticket_id=row['ticket_id'],
                run_id=row['run_id'],
                decision_id=row['decision_id'],
                content_hash=row['content_hash'],
                reason=row['reason'],
                candidates=json.loads(row['candidates']),
                status=row['status'],
                created_at=row['created_at'],
            )
            for row in rows
        ]

    def close_ticket(self, ticket_id: str) -> bool:
        with self._connect("close ticket") as conn:
            cursor = conn.execute(
                "UPDATE review_tickets SET status = 'closed' WHERE ticket_id = ? AND status = 'open'",
                (ticket_id,)
            )
            return cursor.rowcount == 1
