import asyncio

import pytest

from payproof.matching import CandidateMatcher, MatchScorer, ProcessingContext
from payproof.postprocessor import PaymentCandidate
from payproof.recognition import RecognizerKind

from conftest import FlakyStore


def candidate(amount, currency="PHP", confidence=1.0, **extra):
    return PaymentCandidate(
        amount=amount, currency=currency, confidence=confidence,
        provenance=frozenset({RecognizerKind.TEXT}), **extra,
    )


def match(store, candidates, context=None, **kwargs):
    return asyncio.run(CandidateMatcher(store, **kwargs).match(candidates, context))


def test_amount_window_edges(store):
    outcome = match(store, [candidate(1049.0)])
    assert [m.submission_id for m in outcome.matches] == ["SUB-1"]
    assert outcome.top.score == pytest.approx(32.764706, abs=1e-5)
    assert not outcome.top.auto_approve_eligible

    assert match(store, [candidate(1051.0)]).matches == []


def test_reference_and_buyer_lookups(store):
    outcome = match(store, [candidate(2500.0, confidence=0.95, reference="GOM-AB12CD34", sender_name="Maria Santos")])

    assert [m.submission_id for m in outcome.matches] == ["SUB-2"]
    assert outcome.top.score == 100.0
    assert outcome.top.confidence == pytest.approx(0.95)
    assert outcome.top.auto_approve_eligible
    assert outcome.lookups_attempted == 3
    assert outcome.lookups_failed == 0


def test_order_hint_widens_pool(store):
    outcome = match(store, [candidate(1000.0, confidence=0.9)], ProcessingContext(order_id="ORD-1"))
    assert [m.submission_id for m in outcome.matches] == ["SUB-1", "SUB-2"]
    assert outcome.matches[0].score > outcome.matches[1].score > 0


def test_submission_hint(store):
    outcome = match(store, [candidate(45.5, currency="MYR")], ProcessingContext(submission_id="SUB-3"))
    assert outcome.top.submission_id == "SUB-3"


def test_currency_mismatch_is_never_matched(store):
    outcome = match(store, [candidate(45.5, currency="PHP")], ProcessingContext(order_id="ORD-2"))
    assert outcome.matches == []
    assert not outcome.store_unavailable


def test_best_pairing_kept_per_submission(store):
    close = candidate(1000.0, confidence=0.9)
    far = candidate(1040.0, confidence=0.95)
    outcome = match(store, [far, close])
    assert len(outcome.matches) == 1
    assert outcome.top.candidate == close


def test_top_n_limits_matches(store):
    outcome = match(store, [candidate(1000.0)], ProcessingContext(order_id="ORD-1"), top_n=1)
    assert [m.submission_id for m in outcome.matches] == ["SUB-1"]


def test_all_lookups_failing_flags_store_unavailable(store):
    flaky = FlakyStore(store, fail_all=True)
    outcome = match(flaky, [candidate(2500.0, reference="GOM-AB12CD34")], lookup_retries=1)

    assert outcome.store_unavailable
    assert outcome.matches == []
    assert outcome.lookups_attempted == 2
    assert outcome.lookups_failed == 2
    assert flaky.calls["find_by_reference"] == 2


def test_failed_lookup_is_retried(store):
    flaky = FlakyStore(store, failures={"find_by_amount_window": 1})
    outcome = match(flaky, [candidate(1000.0)], lookup_retries=1)

    assert outcome.top.submission_id == "SUB-1"
    assert outcome.lookups_failed == 0
    assert flaky.calls["find_by_amount_window"] == 2


def test_partial_failure_still_matches(store):
    flaky = FlakyStore(store, failures={"find_by_reference": 5})
    outcome = match(flaky, [candidate(2500.0, reference="GOM-AB12CD34")], lookup_retries=1)

    assert not outcome.store_unavailable
    assert outcome.lookups_failed == 1
    assert outcome.top.submission_id == "SUB-2"


def test_eligibility_uses_candidate_confidence(store):
    outcome = match(store, [candidate(1017.0, confidence=0.95, reference="1009876543")])

    assert outcome.top.submission_id == "SUB-1"
    assert outcome.top.score == pytest.approx(93.0)
    assert outcome.top.confidence < 0.92
    assert outcome.top.auto_approve_eligible


@pytest.mark.parametrize("amount, confidence, eligible", [
    (1017.0, 0.95, True),
    (1017.0, 0.9499, False),
    (1018.0, 1.0, False),
])
def test_eligibility_boundaries(store, amount, confidence, eligible):
    scorer = MatchScorer(auto_approve=0.93, auto_approve_confidence=0.95)
    outcome = match(store, [candidate(amount, confidence=confidence, reference="1009876543")], scorer=scorer)
    assert outcome.top.submission_id == "SUB-1"
    assert outcome.top.auto_approve_eligible is eligible
