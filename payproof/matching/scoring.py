"""
Match Scoring Module.

Weighted scoring of a payment candidate against a submission, plus the
auto-approval threshold checks.

Author: ML Engineering Team
"""

from typing import Dict, List, Optional, Tuple

from rapidfuzz.distance import JaroWinkler

from payproof.config import get_config
from payproof.postprocessor.payment_candidate import PaymentCandidate
from payproof.utils.helpers import normalize_reference, phone_key
from payproof.utils.logger import get_logger
from .submission import Submission

logger = get_logger(__name__)

DEFAULT_WEIGHTS = {"reference": 40, "amount": 35, "buyer_name": 15, "currency": 10}

# Threshold comparisons ignore float noise below this many decimals
_PRECISION = 6


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Jaro-Winkler similarity of the sorted lowercase name tokens, in [0, 1]."""
    if not a or not b:
        return 0.0
    a = " ".join(sorted(a.lower().split()))
    b = " ".join(sorted(b.lower().split()))
    return JaroWinkler.normalized_similarity(a, b)


class MatchScorer:
    """
    Scores candidate/submission pairs on a 0-100 scale.

    Signals and default weights:
        reference (40): exact normalized match, or partial credit when one
            contains the other
        amount (35): linear falloff with relative distance
        buyer_name (15): name similarity or exact phone match; only counted
            when the candidate carries sender information
        currency (10): same currency

    A currency mismatch forces the score to 0 regardless of other signals.

    Example:
        >>> scorer = MatchScorer()
        >>> score, reasons = scorer.score(candidate, submission)
        >>> score, reasons
        (100.0, ['reference=exact', 'amount_diff=0.00%', 'buyer_phone=', 'currency=PHP'])
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        amount_falloff: Optional[float] = None,
        partial_reference_credit: Optional[float] = None,
        auto_approve: Optional[float] = None,
        auto_approve_confidence: Optional[float] = None,
        suggest: Optional[float] = None
    ) -> None:
        self.weights = dict(DEFAULT_WEIGHTS)
        self.weights.update(weights or get_config("matching.weights", {}) or {})
        self.amount_falloff = float(
            amount_falloff if amount_falloff is not None
            else get_config("matching.amount_falloff", 0.10)
        )
        self.partial_reference_credit = float(
            partial_reference_credit if partial_reference_credit is not None
            else get_config("matching.partial_reference_credit", 0.6)
        )
        self.auto_approve = float(
            auto_approve if auto_approve is not None
            else get_config("thresholds.auto_approve", 0.92)
        )
        self.auto_approve_confidence = float(
            auto_approve_confidence if auto_approve_confidence is not None
            else get_config("thresholds.auto_approve_confidence", 0.92)
        )
        self.suggest = float(suggest if suggest is not None else get_config("thresholds.suggest", 0.65))

        logger.debug(
            f"MatchScorer initialized (auto_approve={self.auto_approve}, "
            f"auto_approve_confidence={self.auto_approve_confidence}, suggest={self.suggest})"
        )

    def score(self, candidate: PaymentCandidate, submission: Submission) -> Tuple[float, List[str]]:
        """
        Score a candidate against a submission.

        Returns:
            Tuple of (score in [0, 100], reasons).
        """
        if candidate.currency.upper() != submission.currency.upper():
            return 0.0, [f"currency_mismatch({candidate.currency}!={submission.currency})"]

        reasons: List[str] = []
        earned = 0.0
        possible = 0.0

        ref_credit, ref_reason = self._reference_credit(candidate.reference, submission.payment_reference)
        earned += self.weights["reference"] * ref_credit
        possible += self.weights["reference"]
        if ref_reason:
            reasons.append(ref_reason)

        amount_credit, distance = self._amount_credit(candidate.amount, submission.expected_amount)
        earned += self.weights["amount"] * amount_credit
        possible += self.weights["amount"]
        reasons.append(f"amount_diff={distance:.2%}")

        if candidate.has_sender_info:
            identity_credit, identity_reason = self._identity_credit(candidate, submission)
            earned += self.weights["buyer_name"] * identity_credit
            possible += self.weights["buyer_name"]
            reasons.append(identity_reason)

        earned += self.weights["currency"]
        possible += self.weights["currency"]
        reasons.append(f"currency={submission.currency}")

        score = round(earned / possible * 100.0, _PRECISION) if possible else 0.0
        return score, reasons

    def is_auto_approve_eligible(self, score: float, confidence: float) -> bool:
        """Both the score and the extraction confidence of the candidate must reach their thresholds."""
        return (
            round(score, _PRECISION) >= round(self.auto_approve * 100.0, _PRECISION)
            and round(confidence, _PRECISION) >= round(self.auto_approve_confidence, _PRECISION)
        )

    def meets_suggest(self, score: float) -> bool:
        return round(score, _PRECISION) >= round(self.suggest * 100.0, _PRECISION)

    def _reference_credit(self, found: Optional[str], expected: Optional[str]) -> Tuple[float, Optional[str]]:
        found_key = normalize_reference(found)
        expected_key = normalize_reference(expected)
        if not found_key or not expected_key:
            return 0.0, None
        if found_key == expected_key:
            return 1.0, "reference=exact"
        if found_key in expected_key or expected_key in found_key:
            return self.partial_reference_credit, "reference~partial"
        return 0.0, "reference_mismatch"

    def _amount_credit(self, amount: float, expected: float) -> Tuple[float, float]:
        if expected <= 0:
            return 0.0, 1.0
        distance = abs(amount - expected) / expected
        return max(0.0, 1.0 - distance / self.amount_falloff), distance

    @staticmethod
    def _identity_credit(candidate: PaymentCandidate, submission: Submission) -> Tuple[float, str]:
        found_phone = phone_key(candidate.sender_phone)
        if found_phone and found_phone == phone_key(submission.buyer_phone):
            return 1.0, "buyer_phone="
        similarity = name_similarity(candidate.sender_name, submission.buyer_name)
        return similarity, f"buyer~{int(round(similarity * 100))}"
