"""
Candidate Matcher Module.

Finds and ranks the submissions a set of payment candidates could be
paying for.

Author: ML Engineering Team
"""

import asyncio
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from payproof.config import get_config
from payproof.postprocessor.payment_candidate import PaymentCandidate
from payproof.utils.exceptions import DatabaseError, StoreUnavailableError
from payproof.utils.logger import get_logger
from .match_result import MatchCandidate, MatchOutcome
from .scoring import MatchScorer
from .submission import ProcessingContext, Submission, SubmissionStore

logger = get_logger(__name__)


class CandidateMatcher:
    """
    Matches payment candidates against the submission store.

    For every candidate up to four lookups run concurrently: the caller's
    hinted submission or order, the exact reference, the amount window
    and the buyer identity. Pools are unioned by submission id and every
    pair is scored. A lookup that still fails after its retries counts as
    empty; when all of them fail the outcome is flagged store_unavailable.

    Attributes:
        store: Submission store queried in worker threads
        scorer: MatchScorer used for every pair
        amount_tolerance: Relative amount window for the amount lookup
        top_n: Matches kept for the decision and the audit trail
        lookup_retries: Extra attempts per failed lookup

    Example:
        >>> matcher = CandidateMatcher(store)
        >>> outcome = asyncio.run(matcher.match(candidates, ProcessingContext(order_id="ORD-1")))
        >>> outcome.top.submission.id
        'SUB-1'
    """

    def __init__(
        self,
        store: SubmissionStore,
        scorer: Optional[MatchScorer] = None,
        amount_tolerance: Optional[float] = None,
        top_n: Optional[int] = None,
        lookup_retries: Optional[int] = None
    ) -> None:
        self.store = store
        self.scorer = scorer or MatchScorer()
        self.amount_tolerance = float(
            amount_tolerance if amount_tolerance is not None
            else get_config("matching.amount_tolerance", 0.05)
        )
        self.top_n = int(top_n if top_n is not None else get_config("matching.top_n", 5))
        self.lookup_retries = int(
            lookup_retries if lookup_retries is not None
            else get_config("matching.lookup_retries", 1)
        )

    async def match(
        self,
        candidates: Sequence[PaymentCandidate],
        context: Optional[ProcessingContext] = None
    ) -> MatchOutcome:
        """
        Match candidates against submissions.

        Args:
            candidates: Reconciled payment candidates.
            context: Optional caller hints.

        Returns:
            MatchOutcome with at most top_n matches, best first.
        """
        context = context or ProcessingContext()
        outcome = MatchOutcome()
        best: Dict[str, MatchCandidate] = {}

        for candidate in candidates:
            pool = await self._build_pool(candidate, context, outcome)
            for submission in pool.values():
                score, reasons = self.scorer.score(candidate, submission)
                if score <= 0:
                    continue
                match = MatchCandidate(submission=submission, candidate=candidate, score=score, reasons=reasons)
                match.auto_approve_eligible = self.scorer.is_auto_approve_eligible(
                    match.score, candidate.confidence
                )
                current = best.get(submission.id)
                if current is None or self._rank_key(match) < self._rank_key(current):
                    best[submission.id] = match

        outcome.matches = sorted(best.values(), key=self._rank_key)[:self.top_n]
        outcome.store_unavailable = outcome.lookups_attempted > 0 and \
            outcome.lookups_failed == outcome.lookups_attempted

        if outcome.store_unavailable:
            logger.error(f"All {outcome.lookups_attempted} submission lookups failed")
        elif outcome.lookups_failed:
            logger.warning(f"{outcome.lookups_failed}/{outcome.lookups_attempted} submission lookups failed")
        logger.info(
            f"Matched {len(candidates)} candidates to {len(outcome.matches)} submissions"
            + (f" (best: {outcome.top.summary()})" if outcome.top else "")
        )
        return outcome

    @staticmethod
    def _rank_key(match: MatchCandidate) -> Tuple[float, float, str]:
        return (-match.confidence, -match.score, match.submission.id)

    async def _build_pool(
        self,
        candidate: PaymentCandidate,
        context: ProcessingContext,
        outcome: MatchOutcome
    ) -> Dict[str, Submission]:
        lookups = []
        if context.submission_id:
            lookups.append(self._lookup("submission", self._get_one, context.submission_id))
        elif context.order_id:
            lookups.append(self._lookup("order", self.store.find_by_order, context.order_id))
        if candidate.reference:
            lookups.append(self._lookup("reference", self.store.find_by_reference, candidate.reference))
        lookups.append(self._lookup(
            "amount", self.store.find_by_amount_window,
            candidate.amount, candidate.currency, self.amount_tolerance
        ))
        identity = candidate.sender_phone or candidate.sender_name
        if identity:
            lookups.append(self._lookup("buyer", self.store.find_by_buyer_identity, identity))

        results = await asyncio.gather(*lookups)

        pool: Dict[str, Submission] = {}
        for found in results:
            outcome.lookups_attempted += 1
            if found is None:
                outcome.lookups_failed += 1
                continue
            for submission in found:
                pool.setdefault(submission.id, submission)
        logger.debug(f"Pool for {candidate!r}: {sorted(pool)}")
        return pool

    def _get_one(self, submission_id: str) -> List[Submission]:
        submission = self.store.get_submission(submission_id)
        return [submission] if submission else []

    async def _lookup(self, name: str, func: Callable[..., List[Submission]], *args) -> Optional[List[Submission]]:
        """Run one store lookup in a worker thread, retrying on store errors. None means failed."""
        for attempt in range(self.lookup_retries + 1):
            try:
                return await asyncio.to_thread(func, *args)
            except (StoreUnavailableError, DatabaseError) as e:
                logger.warning(f"Lookup '{name}' failed (attempt {attempt + 1}/{self.lookup_retries + 1}): {e}")
        return None
