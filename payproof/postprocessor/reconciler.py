"""
Extraction Reconciler Module.

This module turns the raw results of all recognizers into a ranked list
of payment candidates.

Operations:
    - Read payment facts with the grammar matching each result's tag
    - Fill missing currencies from the caller's hint or the default
    - Drop amounts outside the sanity bounds
    - Merge facts whose amounts agree into one candidate
    - Rank candidates and decide whether the run needs review

Author: ML Engineering Team
"""

from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from payproof.config import get_config
from payproof.reasons import CONFLICTING_AMOUNTS, LOW_EXTRACTION_CONFIDENCE, NO_PAYMENT_INFO
from payproof.recognition.result import (
    RecognitionResult,
    RecognizerKind,
    TextRecognition,
    VisionRecognition,
)
from payproof.utils.exceptions import ReconciliationError
from payproof.utils.logger import get_logger
from .grammars import TextLineGrammar, VisionFieldGrammar
from .normalizers import CurrencyNormalizer
from .payment_candidate import ENRICHMENT_FIELDS, PaymentCandidate, PaymentFact, ReconciliationResult
from .validators import AmountValidator

logger = get_logger(__name__)


class _Bucket:
    """Facts sharing a currency whose amounts fall near the anchor's."""

    def __init__(self, anchor: PaymentFact) -> None:
        self.anchor = anchor
        self.members = [anchor]

    def accepts(self, fact: PaymentFact, tolerance: float) -> bool:
        if fact.currency != self.anchor.currency:
            return False
        return abs(fact.amount - self.anchor.amount) <= tolerance * self.anchor.amount


class ExtractionReconciler:
    """
    Reconciles recognizer results into payment candidates.

    The reconciler holds no per-run state: the same results always give
    the same candidates.

    Attributes:
        dedup_tolerance: Relative distance under which two amounts merge
        convergence_bonus: Confidence added when both recognizers agree
        max_consistent_candidates: Distinct amounts tolerated before review
        suggest_threshold: Minimum top confidence that avoids review

    Example:
        >>> reconciler = ExtractionReconciler()
        >>> result = reconciler.reconcile([text_result, vision_result], hint_currency="PHP")
        >>> result.top
        PaymentCandidate(1500.50 PHP, conf=0.90, ref=None, via=text+vision)
    """

    def __init__(
        self,
        dedup_tolerance: Optional[float] = None,
        convergence_bonus: Optional[float] = None,
        max_consistent_candidates: Optional[int] = None,
        suggest_threshold: Optional[float] = None,
        currencies: Optional[CurrencyNormalizer] = None,
        text_grammar: Optional[TextLineGrammar] = None,
        vision_grammar: Optional[VisionFieldGrammar] = None,
        amount_validator: Optional[AmountValidator] = None
    ) -> None:
        self.dedup_tolerance = float(
            dedup_tolerance if dedup_tolerance is not None
            else get_config("reconciliation.dedup_tolerance", 0.05)
        )
        self.convergence_bonus = float(
            convergence_bonus if convergence_bonus is not None
            else get_config("reconciliation.convergence_bonus", 0.10)
        )
        self.max_consistent_candidates = int(
            max_consistent_candidates if max_consistent_candidates is not None
            else get_config("reconciliation.max_consistent_candidates", 3)
        )
        self.suggest_threshold = float(
            suggest_threshold if suggest_threshold is not None
            else get_config("thresholds.suggest", 0.65)
        )

        self.currencies = currencies or CurrencyNormalizer()
        self.text_grammar = text_grammar or TextLineGrammar(currencies=self.currencies)
        self.vision_grammar = vision_grammar or VisionFieldGrammar(currencies=self.currencies)
        self.amount_validator = amount_validator or AmountValidator()

        logger.info(
            f"ExtractionReconciler initialized (tolerance={self.dedup_tolerance:.0%}, "
            f"bonus={self.convergence_bonus:.2f})"
        )

    def reconcile(
        self,
        results: Sequence[RecognitionResult],
        hint_currency: Optional[str] = None
    ) -> ReconciliationResult:
        """
        Reconcile recognizer results into ranked candidates.

        Args:
            results: One result per recognizer; failures are skipped.
            hint_currency: ISO code expected by the caller, used for facts
                whose currency could not be read.

        Returns:
            ReconciliationResult with candidates sorted by confidence.

        Raises:
            ReconciliationError: If hint_currency is malformed or unsupported.
        """
        fallback_currency = self._resolve_hint(hint_currency)

        facts = []
        for result in results:
            if not result.success:
                logger.debug(f"Skipping failed {result.recognizer.value} result")
                continue
            facts.extend(self._read_facts(result))

        warnings = []
        valid_facts = []
        for fact in facts:
            if fact.currency is None:
                fact = replace(fact, currency=fallback_currency)
            is_valid, message = self.amount_validator.validate(fact.amount)
            if not is_valid:
                warnings.append(f"{fact.source.value}: {message}")
                continue
            valid_facts.append(fact)

        buckets = self._bucket(valid_facts)
        candidates = sorted(
            (self._merge(bucket) for bucket in buckets),
            key=lambda c: (-c.confidence, c.amount)
        )

        reasons = []
        if not candidates:
            reasons.append(NO_PAYMENT_INFO)
        else:
            if len(candidates) > self.max_consistent_candidates:
                reasons.append(CONFLICTING_AMOUNTS)
            if round(candidates[0].confidence, 6) < round(self.suggest_threshold, 6):
                reasons.append(LOW_EXTRACTION_CONFIDENCE)

        reconciliation = ReconciliationResult(
            candidates=candidates,
            requires_review=bool(reasons),
            review_reasons=reasons,
            warnings=warnings,
        )

        logger.info(
            f"Reconciled {len(facts)} facts into {len(candidates)} candidates"
            + (f" (review: {', '.join(reasons)})" if reasons else "")
        )
        for warning in warnings:
            logger.warning(f"Discarded fact - {warning}")
        return reconciliation

    def _resolve_hint(self, hint_currency: Optional[str]) -> str:
        if hint_currency is None:
            return self.currencies.default_currency
        if not isinstance(hint_currency, str) or len(hint_currency) != 3 or not hint_currency.isalpha():
            raise ReconciliationError("Malformed currency hint", value=hint_currency)
        if not self.currencies.is_supported(hint_currency):
            raise ReconciliationError("Unsupported currency hint", value=hint_currency)
        return hint_currency.upper()

    def _read_facts(self, result: RecognitionResult) -> List[PaymentFact]:
        if result.recognizer is RecognizerKind.TEXT and isinstance(result, TextRecognition):
            return self.text_grammar.parse(result)
        if result.recognizer is RecognizerKind.VISION and isinstance(result, VisionRecognition):
            return self.vision_grammar.parse(result)
        logger.warning(f"No grammar for {type(result).__name__} tagged {result.recognizer.value}")
        return []

    def _bucket(self, facts: List[PaymentFact]) -> List[_Bucket]:
        buckets: List[_Bucket] = []
        for fact in sorted(facts, key=lambda f: (-f.confidence, f.amount)):
            for bucket in buckets:
                if bucket.accepts(fact, self.dedup_tolerance):
                    bucket.members.append(fact)
                    break
            else:
                buckets.append(_Bucket(fact))
        return buckets

    def _merge(self, bucket: _Bucket) -> PaymentCandidate:
        anchor = bucket.anchor
        enrichments: Dict[str, Optional[str]] = {}
        for name in ENRICHMENT_FIELDS:
            enrichments[name] = next(
                (getattr(m, name) for m in bucket.members if getattr(m, name)), None
            )

        provenance = frozenset(m.source for m in bucket.members)
        confidence = anchor.confidence
        if len(provenance) > 1:
            confidence += self.convergence_bonus

        return PaymentCandidate(
            amount=anchor.amount,
            currency=anchor.currency,
            confidence=round(min(1.0, confidence), 6),
            provenance=provenance,
            **enrichments,
        )
