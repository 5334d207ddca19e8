"""
Match Result Data Classes.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from payproof.postprocessor.payment_candidate import PaymentCandidate
from .submission import Submission


@dataclass
class MatchCandidate:
    """
    A scored pairing of a payment candidate with a submission.

    Attributes:
        submission: Matched submission
        candidate: Payment candidate the score was computed for
        score: Weighted score in [0, 100]
        reasons: Signals that contributed to the score, in scoring order
        confidence: score / 100 scaled by the candidate's confidence
        auto_approve_eligible: Whether both approval thresholds are met
    """
    submission: Submission
    candidate: PaymentCandidate
    score: float
    reasons: List[str] = field(default_factory=list)
    confidence: float = 0.0
    auto_approve_eligible: bool = False

    def __post_init__(self) -> None:
        self.confidence = round(self.score / 100.0 * self.candidate.confidence, 6)

    @property
    def submission_id(self) -> str:
        return self.submission.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'submission': self.submission.to_dict(),
            'candidate': self.candidate.to_dict(),
            'score': self.score,
            'reasons': list(self.reasons),
            'confidence': self.confidence,
            'auto_approve_eligible': self.auto_approve_eligible,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MatchCandidate':
        return cls(
            submission=Submission.from_dict(data['submission']),
            candidate=PaymentCandidate.from_dict(data['candidate']),
            score=float(data['score']),
            reasons=list(data.get('reasons', [])),
            auto_approve_eligible=bool(data.get('auto_approve_eligible', False)),
        )

    def summary(self) -> str:
        return (
            f"{self.submission.id} (order {self.submission.order_id}): "
            f"score={self.score:.1f}, confidence={self.confidence:.2f}"
        )


@dataclass
class MatchOutcome:
    """
    Result of matching all candidates of a run.

    Attributes:
        matches: Ranked matches, best first
        store_unavailable: True when every attempted lookup failed
        lookups_attempted: Number of lookups issued
        lookups_failed: Number of lookups that failed after retries
    """
    matches: List[MatchCandidate] = field(default_factory=list)
    store_unavailable: bool = False
    lookups_attempted: int = 0
    lookups_failed: int = 0

    @property
    def top(self) -> Optional[MatchCandidate]:
        return self.matches[0] if self.matches else None
