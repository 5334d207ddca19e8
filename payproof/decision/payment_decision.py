"""
Payment Decision Data Class.

The PaymentDecision is the terminal record of a run. It is what callers
receive, what the decision store persists, and what review tickets
point back to.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from payproof.matching.match_result import MatchCandidate
from payproof.postprocessor.payment_candidate import PaymentCandidate
from payproof.utils.helpers import generate_id, utc_now_iso


class DecisionOutcome(str, Enum):
    AUTO_APPROVED = "auto_approved"
    PENDING_REVIEW = "pending_review"
    UNMATCHED = "unmatched"


@dataclass
class PaymentDecision:
    """
    Final decision for one payment proof.

    Attributes:
        run_id: Run that produced the decision
        content_hash: Hash of the uploaded bytes
        outcome: AUTO_APPROVED, PENDING_REVIEW or UNMATCHED
        reason: Why the outcome was chosen
        chosen: Approved match, only set for AUTO_APPROVED
        considered: Top matches kept for audit
        candidates: Reconciled payment candidates
        decision_id: Unique decision identifier
        review_ticket_id: Ticket opened for the decision, if any
        created_at: ISO timestamp
        processing_time: Seconds from upload to decision
        rerun: Whether this decision came from an explicit re-run
        warnings: Non-fatal issues met during the run

    Example:
        >>> decision.outcome, decision.reason
        (<DecisionOutcome.AUTO_APPROVED: 'auto_approved'>, 'auto-approved')
        >>> decision.chosen.submission.id
        'SUB-1'
    """
    run_id: str
    content_hash: str
    outcome: DecisionOutcome
    reason: str
    chosen: Optional[MatchCandidate] = None
    considered: List[MatchCandidate] = field(default_factory=list)
    candidates: List[PaymentCandidate] = field(default_factory=list)
    decision_id: str = field(default_factory=lambda: generate_id("dec"))
    review_ticket_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    processing_time: float = 0.0
    rerun: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.outcome in (DecisionOutcome.PENDING_REVIEW, DecisionOutcome.UNMATCHED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision_id': self.decision_id,
            'run_id': self.run_id,
            'content_hash': self.content_hash,
            'outcome': self.outcome.value,
            'reason': self.reason,
            'chosen': self.chosen.to_dict() if self.chosen else None,
            'considered': [m.to_dict() for m in self.considered],
            'candidates': [c.to_dict() for c in self.candidates],
            'review_ticket_id': self.review_ticket_id,
            'created_at': self.created_at,
            'processing_time': round(self.processing_time, 3),
            'rerun': self.rerun,
            'warnings': list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentDecision':
        chosen = data.get('chosen')
        return cls(
            decision_id=data['decision_id'],
            run_id=data['run_id'],
            content_hash=data['content_hash'],
            outcome=DecisionOutcome(data['outcome']),
            reason=data['reason'],
            chosen=MatchCandidate.from_dict(chosen) if chosen else None,
            considered=[MatchCandidate.from_dict(m) for m in data.get('considered', [])],
            candidates=[PaymentCandidate.from_dict(c) for c in data.get('candidates', [])],
            review_ticket_id=data.get('review_ticket_id'),
            created_at=data.get('created_at', utc_now_iso()),
            processing_time=float(data.get('processing_time', 0.0)),
            rerun=bool(data.get('rerun', False)),
            warnings=list(data.get('warnings', [])),
        )

    def __repr__(self) -> str:
        target = f", submission={self.chosen.submission.id}" if self.chosen else ""
        return f"PaymentDecision({self.outcome.value}, reason='{self.reason}'{target})"
