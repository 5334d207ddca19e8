import asyncio

import pytest

from payproof import reasons
from payproof.decision import DecisionEngine, DecisionOutcome, DecisionRun, RunState
from payproof.matching import MatchCandidate, MatchOutcome, MatchScorer, Submission, SubmissionStatus
from payproof.postprocessor import PaymentCandidate, ReconciliationResult
from payproof.recognition import RecognizerKind
from payproof.utils.exceptions import InvalidTransitionError

from conftest import FlakyStore

CANDIDATE = PaymentCandidate(1000.0, "PHP", 1.0, frozenset({RecognizerKind.TEXT}), reference="1009876543")


def matched_run():
    run = DecisionRun("hash-1")
    run.transition(RunState.EXTRACTED)
    run.transition(RunState.MATCHED)
    return run


def make_match(submission_id="SUB-1", score=100.0, status=SubmissionStatus.PENDING):
    submission = Submission(submission_id, "ORD-1", 1000.0, "PHP", status=status)
    match = MatchCandidate(submission, CANDIDATE, score=score)
    match.auto_approve_eligible = MatchScorer().is_auto_approve_eligible(match.score, CANDIDATE.confidence)
    return match


def decide(store, matches=None, reconciliation=None, store_unavailable=False):
    run = matched_run()
    reconciliation = reconciliation or ReconciliationResult(candidates=[CANDIDATE])
    outcome = MatchOutcome(matches=list(matches or []), store_unavailable=store_unavailable)
    decision = asyncio.run(DecisionEngine(store).decide(run, reconciliation, outcome))
    return run, decision


def test_run_follows_the_state_machine():
    run = DecisionRun("hash-1")
    with pytest.raises(InvalidTransitionError):
        run.transition(RunState.MATCHED)

    run.transition(RunState.EXTRACTED)
    run.transition(RunState.MATCHED)
    run.transition(RunState.UNMATCHED)
    assert run.state.is_terminal
    assert [state for state, _ in run.history] == [
        RunState.NEW, RunState.EXTRACTED, RunState.MATCHED, RunState.UNMATCHED
    ]
    with pytest.raises(InvalidTransitionError):
        run.transition(RunState.AUTO_APPROVED)
    with pytest.raises(InvalidTransitionError):
        run.abort()


def test_abort_from_any_open_state():
    run = DecisionRun("hash-1")
    run.transition(RunState.EXTRACTED)
    run.abort()
    assert run.state == RunState.PENDING_REVIEW


def test_no_candidates_goes_to_review(store):
    run, decision = decide(store, reconciliation=ReconciliationResult.empty(reasons.NO_PAYMENT_INFO))
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.NO_PAYMENT_INFO
    assert run.state == RunState.PENDING_REVIEW


def test_store_unavailable_goes_to_review(store):
    _, decision = decide(store, store_unavailable=True)
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.STORE_UNAVAILABLE


@pytest.mark.parametrize("matches", [[], [make_match(score=64.0)]])
def test_nothing_above_suggest_is_unmatched(store, matches):
    run, decision = decide(store, matches=matches)
    assert decision.outcome == DecisionOutcome.UNMATCHED
    assert decision.reason == reasons.NO_MATCHING_SUBMISSIONS
    assert run.state == RunState.UNMATCHED


def test_reconciliation_review_blocks_approval(store):
    reconciliation = ReconciliationResult(candidates=[CANDIDATE], requires_review=True,
                                          review_reasons=[reasons.CONFLICTING_AMOUNTS])
    _, decision = decide(store, matches=[make_match()], reconciliation=reconciliation)
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.CONFLICTING_AMOUNTS
    assert store.get_submission("SUB-1").is_pending


def test_below_auto_approve_needs_manual_review(store):
    _, decision = decide(store, matches=[make_match(score=80.0)])
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.NEEDS_MANUAL_REVIEW
    assert decision.considered[0].submission_id == "SUB-1"


def test_tied_eligible_submissions_need_manual_review(store):
    _, decision = decide(store, matches=[make_match("SUB-1"), make_match("SUB-2")])
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.NEEDS_MANUAL_REVIEW
    assert store.get_submission("SUB-1").is_pending
    assert store.get_submission("SUB-2").is_pending


def test_eligible_match_is_approved(store):
    run, decision = decide(store, matches=[make_match()])

    assert decision.outcome == DecisionOutcome.AUTO_APPROVED
    assert decision.reason == reasons.AUTO_APPROVED
    assert decision.chosen.submission_id == "SUB-1"
    assert decision.decision_id == f"dec_{run.run_id}"
    assert run.state == RunState.AUTO_APPROVED
    assert store.get_submission("SUB-1").status == SubmissionStatus.PAID


def test_lost_approval_race_is_already_resolved(store):
    store.approve_if_pending("SUB-1", "dec_other", 0.99)
    _, decision = decide(store, matches=[make_match()])
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.ALREADY_RESOLVED
    assert decision.chosen is None


def test_paid_submission_is_already_resolved(store):
    flaky = FlakyStore(store)
    _, decision = decide(flaky, matches=[make_match(status=SubmissionStatus.PAID)])
    assert decision.reason == reasons.ALREADY_RESOLVED
    assert "approve_if_pending" not in flaky.calls


def test_approval_store_failure(store):
    flaky = FlakyStore(store, failures={"approve_if_pending": 1})
    _, decision = decide(flaky, matches=[make_match()])
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.STORE_UNAVAILABLE
    assert store.get_submission("SUB-1").is_pending


def test_abort_records_pending_review(store):
    run = DecisionRun("hash-1")
    decision = DecisionEngine(store).abort(run, reasons.PROCESSING_TIMEOUT, candidates=[CANDIDATE])
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.PROCESSING_TIMEOUT
    assert decision.candidates == [CANDIDATE]
    assert decision.needs_review


def test_abort_after_terminal_state_keeps_state(store):
    run = matched_run()
    run.transition(RunState.UNMATCHED)
    decision = DecisionEngine(store).abort(run, reasons.PROCESSING_ERROR)
    assert run.state == RunState.UNMATCHED
    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.PROCESSING_ERROR
