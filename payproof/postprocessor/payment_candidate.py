"""
Payment Fact and Candidate Data Classes.

PaymentFact is the single shape every recognizer grammar produces.
PaymentCandidate is what the reconciler emits after deduplicating and
merging facts. ReconciliationResult bundles the ranked candidates with
the run-level review flag.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from payproof.recognition.result import RecognizerKind


@dataclass
class PaymentFact:
    """
    One raw payment fact read by one recognizer.

    Amount is the minimal unit; everything else is an optional
    enrichment. Currency may be None until the reconciler applies the
    caller's hint or the default currency.
    """
    amount: float
    currency: Optional[str]
    confidence: float
    source: RecognizerKind
    method: Optional[str] = None
    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    reference: Optional[str] = None
    timestamp: Optional[str] = None


ENRICHMENT_FIELDS = ('method', 'sender_name', 'sender_phone', 'reference', 'timestamp')


@dataclass(frozen=True)
class PaymentCandidate:
    """
    A deduplicated, confidence-ranked payment hypothesis.

    Attributes:
        amount: Paid amount
        currency: ISO currency code
        confidence: Normalized confidence in [0, 1]
        provenance: Recognizers that contributed to this candidate
        method: Wallet or bank key (e.g. "gcash")
        sender_name: Name of the payer as printed
        sender_phone: Payer mobile number as printed
        reference: Payment reference code as printed
        timestamp: ISO timestamp of the transaction

    Example:
        >>> candidate.amount, candidate.currency, candidate.confidence
        (1500.5, 'PHP', 0.9)
    """
    amount: float
    currency: str
    confidence: float
    provenance: FrozenSet[RecognizerKind]
    method: Optional[str] = None
    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    reference: Optional[str] = None
    timestamp: Optional[str] = None

    @property
    def has_sender_info(self) -> bool:
        return bool(self.sender_name or self.sender_phone)

    @property
    def converged(self) -> bool:
        """True when more than one recognizer backs this candidate."""
        return len(self.provenance) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'amount': self.amount,
            'currency': self.currency,
            'confidence': self.confidence,
            'provenance': sorted(kind.value for kind in self.provenance),
            'method': self.method,
            'sender_name': self.sender_name,
            'sender_phone': self.sender_phone,
            'reference': self.reference,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentCandidate':
        return cls(
            amount=float(data['amount']),
            currency=data['currency'],
            confidence=float(data['confidence']),
            provenance=frozenset(RecognizerKind(v) for v in data.get('provenance', [])),
            method=data.get('method'),
            sender_name=data.get('sender_name'),
            sender_phone=data.get('sender_phone'),
            reference=data.get('reference'),
            timestamp=data.get('timestamp'),
        )

    def __repr__(self) -> str:
        sources = '+'.join(sorted(kind.value for kind in self.provenance))
        return (
            f"PaymentCandidate({self.amount:.2f} {self.currency}, conf={self.confidence:.2f}, "
            f"ref={self.reference!r}, via={sources})"
        )


@dataclass
class ReconciliationResult:
    """
    Output of one reconciliation pass.

    Attributes:
        candidates: Candidates sorted by confidence, highest first
        requires_review: Whether the run must not auto-approve
        review_reasons: Why review is required, most important first
        warnings: Facts discarded during validation
    """
    candidates: List[PaymentCandidate] = field(default_factory=list)
    requires_review: bool = False
    review_reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def top(self) -> Optional[PaymentCandidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def review_reason(self) -> Optional[str]:
        return self.review_reasons[0] if self.review_reasons else None

    @classmethod
    def empty(cls, reason: str, warning: Optional[str] = None) -> 'ReconciliationResult':
        """A result with no candidates that forces review."""
        return cls(
            candidates=[],
            requires_review=True,
            review_reasons=[reason],
            warnings=[warning] if warning else [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'candidates': [c.to_dict() for c in self.candidates],
            'requires_review': self.requires_review,
            'review_reasons': list(self.review_reasons),
            'warnings': list(self.warnings),
        }
