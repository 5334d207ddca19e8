import pytest

from payproof.postprocessor import ExtractionReconciler
from payproof.reasons import CONFLICTING_AMOUNTS, LOW_EXTRACTION_CONFIDENCE, NO_PAYMENT_INFO
from payproof.recognition import (
    RecognitionFailure,
    RecognizerKind,
    TextLine,
    TextRecognition,
    VisionField,
    VisionRecognition,
)
from payproof.utils.exceptions import ReconciliationError


def text_result(*lines, confidence=0.95):
    return TextRecognition(
        recognizer=RecognizerKind.TEXT, confidence=confidence, latency=0.0,
        lines=tuple(TextLine(line, confidence) for line in lines),
    )


def vision_result(amount, score, **extra):
    fields = [VisionField("amount", amount, score)]
    fields += [VisionField(name, value, s) for name, (value, s) in extra.items()]
    return VisionRecognition(recognizer=RecognizerKind.VISION, confidence=score, latency=0.0, answers=tuple(fields))


def test_agreeing_recognizers_merge_with_bonus():
    results = [
        text_result("Amount PHP 1,500.00", "Ref No. 1009 876 543", confidence=0.6),
        vision_result("1,500.50", 0.8, sender_name=("Juan Dela Cruz", 0.7)),
    ]
    reconciliation = ExtractionReconciler().reconcile(results)

    assert len(reconciliation.candidates) == 1
    top = reconciliation.top
    # Highest-confidence fact anchors the amount
    assert top.amount == 1500.5
    assert top.currency == "PHP"
    assert top.confidence == pytest.approx(0.9)
    assert top.provenance == {RecognizerKind.TEXT, RecognizerKind.VISION}
    assert top.reference == "1009 876 543"
    assert top.sender_name == "Juan Dela Cruz"
    assert not reconciliation.requires_review


def test_bonus_is_capped():
    results = [text_result("Amount PHP 1,000.00"), vision_result("PHP 1,000.00", 0.95)]
    top = ExtractionReconciler().reconcile(results).top
    assert top.confidence == 1.0


def test_amounts_outside_tolerance_stay_separate():
    results = [text_result("Amount PHP 1,000.00", confidence=0.7), vision_result("1,100.00", 0.9)]
    candidates = ExtractionReconciler().reconcile(results).candidates
    assert [c.amount for c in candidates] == [1100.0, 1000.0]
    assert all(not c.converged for c in candidates)


def test_different_currencies_do_not_merge():
    results = [text_result("Amount: RM 100.00"), vision_result("PHP 100.00", 0.9)]
    candidates = ExtractionReconciler().reconcile(results).candidates
    assert sorted(c.currency for c in candidates) == ["MYR", "PHP"]


def test_too_many_amounts_require_review():
    lines = [f"Amount PHP {n}00.00" for n in range(1, 5)]
    reconciliation = ExtractionReconciler().reconcile([text_result(*lines)])
    assert len(reconciliation.candidates) == 4
    assert reconciliation.requires_review
    assert reconciliation.review_reasons == [CONFLICTING_AMOUNTS]
    # Equal confidence ranks by amount
    assert reconciliation.top.amount == 100.0


def test_low_confidence_requires_review():
    reconciliation = ExtractionReconciler().reconcile([text_result("Amount PHP 100.00", confidence=0.5)])
    assert reconciliation.requires_review
    assert reconciliation.review_reason == LOW_EXTRACTION_CONFIDENCE


def test_confidence_at_suggest_threshold_passes():
    reconciler = ExtractionReconciler(suggest_threshold=0.65)
    reconciliation = reconciler.reconcile([text_result("Amount PHP 100.00", confidence=0.65)])
    assert not reconciliation.requires_review


@pytest.mark.parametrize("results", [
    [],
    [RecognitionFailure.of(RecognizerKind.TEXT, "boom"), RecognitionFailure.of(RecognizerKind.VISION, "boom")],
    [text_result("Thank you for using our app")],
])
def test_nothing_extracted(results):
    reconciliation = ExtractionReconciler().reconcile(results)
    assert reconciliation.candidates == []
    assert reconciliation.requires_review
    assert reconciliation.review_reason == NO_PAYMENT_INFO


def test_failures_are_skipped():
    results = [RecognitionFailure.of(RecognizerKind.TEXT, "timeout"), vision_result("₱250.00", 0.9)]
    top = ExtractionReconciler().reconcile(results).top
    assert top.amount == 250.0
    assert top.provenance == {RecognizerKind.VISION}


def test_out_of_bounds_amount_becomes_warning():
    reconciliation = ExtractionReconciler().reconcile([text_result("Amount PHP 500,000.00")])
    assert reconciliation.candidates == []
    assert reconciliation.review_reason == NO_PAYMENT_INFO
    assert len(reconciliation.warnings) == 1
    assert "exceeds maximum" in reconciliation.warnings[0]


def test_currency_hint_fills_unmarked_amounts():
    reconciler = ExtractionReconciler()
    assert reconciler.reconcile([text_result("Total 750.00")]).top.currency == "PHP"
    assert reconciler.reconcile([text_result("Total 750.00")], hint_currency="myr").top.currency == "MYR"
    # Marked amounts keep their own currency
    assert reconciler.reconcile([text_result("Total RM 75.00")], hint_currency="PHP").top.currency == "MYR"


@pytest.mark.parametrize("hint", ["PESO", "P1", "", "USD"])
def test_bad_currency_hint_raises(hint):
    with pytest.raises(ReconciliationError):
        ExtractionReconciler().reconcile([text_result("Amount PHP 100.00")], hint_currency=hint)


def test_reconcile_is_deterministic():
    results = [
        text_result("Amount PHP 1,500.00", "Amount PHP 20.00", confidence=0.7),
        vision_result("1,500.50", 0.8),
    ]
    reconciler = ExtractionReconciler()
    first = reconciler.reconcile(results)
    second = reconciler.reconcile(list(reversed(results)))
    assert first.to_dict() == second.to_dict()
