"""
Decision Engine Module.

Applies the decision rules to a reconciled, matched run and performs the
only write the engine makes to submissions: the conditional approval.

Author: ML Engineering Team
"""

import asyncio
from typing import List, Optional

from payproof import reasons
from payproof.matching.match_result import MatchCandidate, MatchOutcome
from payproof.matching.scoring import MatchScorer
from payproof.matching.submission import SubmissionStore
from payproof.postprocessor.payment_candidate import PaymentCandidate, ReconciliationResult
from payproof.utils.exceptions import ApprovalRaceError, DatabaseError, StoreUnavailableError
from payproof.utils.logger import get_logger
from .payment_decision import DecisionOutcome, PaymentDecision
from .state_machine import DecisionRun, RunState

logger = get_logger(__name__)

_OUTCOME_STATES = {
    DecisionOutcome.AUTO_APPROVED: RunState.AUTO_APPROVED,
    DecisionOutcome.PENDING_REVIEW: RunState.PENDING_REVIEW,
    DecisionOutcome.UNMATCHED: RunState.UNMATCHED,
}


class DecisionEngine:
    """
    Turns a matched run into a PaymentDecision.

    Rules, first hit wins:
        1. No candidates: PENDING_REVIEW, no payment information
        2. Store unavailable: PENDING_REVIEW, store unavailable
        3. No match reaches the suggest threshold: UNMATCHED
        4. Reconciliation requires review: PENDING_REVIEW with its reason
        5. Top match not eligible, or tied with another eligible
           submission: PENDING_REVIEW, manual review
        6. Top match eligible: approve if the submission is still pending,
           otherwise PENDING_REVIEW, already resolved

    Example:
        >>> engine = DecisionEngine(store)
        >>> decision = asyncio.run(engine.decide(run, reconciliation, outcome))
        >>> decision.outcome
        <DecisionOutcome.AUTO_APPROVED: 'auto_approved'>
    """

    def __init__(self, store: SubmissionStore, scorer: Optional[MatchScorer] = None) -> None:
        self.store = store
        self.scorer = scorer or MatchScorer()

    async def decide(
        self,
        run: DecisionRun,
        reconciliation: ReconciliationResult,
        outcome: MatchOutcome
    ) -> PaymentDecision:
        """
        Decide a run that has reached MATCHED.

        Args:
            run: Run in the MATCHED state; moved to its terminal state.
            reconciliation: Reconciled candidates.
            outcome: Matcher outcome.

        Returns:
            The terminal PaymentDecision.
        """
        candidates = reconciliation.candidates
        considered = outcome.matches

        def finish(result: DecisionOutcome, reason: str, chosen: Optional[MatchCandidate] = None) -> PaymentDecision:
            run.transition(_OUTCOME_STATES[result])
            decision = PaymentDecision(
                run_id=run.run_id,
                content_hash=run.content_hash,
                outcome=result,
                reason=reason,
                chosen=chosen,
                considered=list(considered),
                candidates=list(candidates),
                warnings=list(reconciliation.warnings),
            )
            logger.info(f"Run {run.run_id} decided: {decision!r}")
            return decision

        if not candidates:
            return finish(DecisionOutcome.PENDING_REVIEW, reconciliation.review_reason or reasons.NO_PAYMENT_INFO)

        if outcome.store_unavailable:
            return finish(DecisionOutcome.PENDING_REVIEW, reasons.STORE_UNAVAILABLE)

        suggested = [m for m in considered if self.scorer.meets_suggest(m.score)]
        if not suggested:
            return finish(DecisionOutcome.UNMATCHED, reasons.NO_MATCHING_SUBMISSIONS)

        if reconciliation.requires_review:
            return finish(DecisionOutcome.PENDING_REVIEW, reconciliation.review_reason)

        top = considered[0]
        if not top.auto_approve_eligible or self._is_ambiguous(top, considered):
            return finish(DecisionOutcome.PENDING_REVIEW, reasons.NEEDS_MANUAL_REVIEW)

        if not top.submission.is_pending:
            logger.warning(f"Submission {top.submission.id} is already {top.submission.status.value}")
            return finish(DecisionOutcome.PENDING_REVIEW, reasons.ALREADY_RESOLVED)

        decision_id = f"dec_{run.run_id}"
        try:
            await self._approve(top, decision_id)
        except ApprovalRaceError as e:
            logger.warning(f"Approval rejected: {e}")
            return finish(DecisionOutcome.PENDING_REVIEW, reasons.ALREADY_RESOLVED)
        except (StoreUnavailableError, DatabaseError) as e:
            logger.error(f"Approval failed: {e}")
            return finish(DecisionOutcome.PENDING_REVIEW, reasons.STORE_UNAVAILABLE)

        decision = finish(DecisionOutcome.AUTO_APPROVED, reasons.AUTO_APPROVED, chosen=top)
        decision.decision_id = decision_id
        return decision

    def abort(
        self,
        run: DecisionRun,
        reason: str,
        candidates: Optional[List[PaymentCandidate]] = None
    ) -> PaymentDecision:
        """
        Record a run that could not finish as PENDING_REVIEW.

        A run that already reached a terminal state keeps that state; only
        the returned decision is PENDING_REVIEW.
        """
        if not run.state.is_terminal:
            run.abort()
        logger.warning(f"Run {run.run_id} aborted: {reason}")
        return PaymentDecision(
            run_id=run.run_id,
            content_hash=run.content_hash,
            outcome=DecisionOutcome.PENDING_REVIEW,
            reason=reason,
            candidates=list(candidates or []),
        )

    async def _approve(self, match: MatchCandidate, decision_id: str) -> None:
        approved = await asyncio.to_thread(
            self.store.approve_if_pending, match.submission.id, decision_id, match.confidence
        )
        if not approved:
            raise ApprovalRaceError(match.submission.id)

    @staticmethod
    def _is_ambiguous(top: MatchCandidate, considered: List[MatchCandidate]) -> bool:
        return any(
            other.auto_approve_eligible
            and other.submission.id != top.submission.id
            and round(other.score, 6) == round(top.score, 6)
            and round(other.confidence, 6) == round(top.confidence, 6)
            for other in considered[1:]
        )
