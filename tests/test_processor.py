import asyncio
import sqlite3
import threading
import time

import pytest

from payproof import reasons
from payproof.decision import DecisionOutcome, RunState
from payproof.matching import ProcessingContext
from payproof.output_handler import DecisionStore, ReviewQueue
from payproof.pipeline import ProofJob
from payproof.utils.exceptions import ImageError, ImageErrorKind, RecognizerUnavailableError

from conftest import GCASH_ANSWERS, GCASH_RECEIPT, FakeOCRBackend, FakeQABackend, FlakyStore, make_png


class RecordingNotifier:
    def __init__(self):
        self.decisions = []

    def notify(self, decision):
        self.decisions.append(decision)
        return True


def process(processor, *uploads, **kwargs):
    """Run uploads one after another through a started processor."""

    async def _go():
        async with processor:
            return [await processor.process_payment_proof(data, "image/png", **kwargs) for data in uploads]

    return asyncio.run(_go())


def process_concurrently(processor, *uploads):
    async def _go():
        async with processor:
            return await asyncio.gather(
                *(processor.process_payment_proof(data, "image/png") for data in uploads)
            )

    return asyncio.run(_go())


def test_clean_receipt_is_auto_approved(build, store, db_path):
    processor = build(FakeOCRBackend(GCASH_RECEIPT), FakeQABackend(GCASH_ANSWERS))
    [decision] = process(processor, make_png())

    assert decision.outcome == DecisionOutcome.AUTO_APPROVED
    assert decision.reason == reasons.AUTO_APPROVED
    assert decision.chosen.submission_id == "SUB-1"
    assert decision.chosen.score == 100.0
    assert decision.chosen.confidence == 1.0
    assert decision.candidates[0].converged
    assert decision.review_ticket_id is None
    assert decision.processing_time > 0
    assert store.get_submission("SUB-1").status.value == "paid"
    assert DecisionStore(db_path).get_by_hash(decision.content_hash).decision_id == decision.decision_id


def test_text_only_receipt_is_auto_approved(build):
    [decision] = process(build(FakeOCRBackend(GCASH_RECEIPT)), make_png())
    assert decision.outcome == DecisionOutcome.AUTO_APPROVED
    assert decision.chosen.confidence == pytest.approx(0.95)


def test_same_image_is_decided_once(build):
    ocr = FakeOCRBackend(GCASH_RECEIPT)
    first, second = process(build(ocr), make_png(), make_png())

    assert second.decision_id == first.decision_id
    assert second.outcome == DecisionOutcome.AUTO_APPROVED
    assert ocr.calls == 1


def test_concurrent_uploads_of_same_image(build, db_path):
    ocr = FakeOCRBackend(GCASH_RECEIPT, delay=0.1)
    first, second = process_concurrently(build(ocr), make_png(), make_png())

    assert first.decision_id == second.decision_id
    assert ocr.calls == 1
    assert DecisionStore(db_path).count() == 1


def test_rerun_appends_history(build, db_path):
    [first] = process(build(FakeOCRBackend(GCASH_RECEIPT)), make_png())
    [again] = process(build(FakeOCRBackend(GCASH_RECEIPT)), make_png(), rerun=True)

    assert first.outcome == DecisionOutcome.AUTO_APPROVED
    assert again.outcome == DecisionOutcome.PENDING_REVIEW
    assert again.reason == reasons.ALREADY_RESOLVED
    assert again.rerun
    assert again.review_ticket_id is not None

    decisions = DecisionStore(db_path)
    assert [d.decision_id for d in decisions.history(first.content_hash)] == [first.decision_id, again.decision_id]
    assert decisions.get_by_hash(first.content_hash).decision_id == again.decision_id


def test_two_proofs_for_one_submission_approve_once(build):
    ocr = FakeOCRBackend(GCASH_RECEIPT, delay=0.05)
    decisions = process_concurrently(build(ocr), make_png(), make_png(color=(250, 250, 250)))

    outcomes = sorted(d.outcome.value for d in decisions)
    assert outcomes == ["auto_approved", "pending_review"]
    loser = next(d for d in decisions if d.outcome == DecisionOutcome.PENDING_REVIEW)
    assert loser.reason == reasons.ALREADY_RESOLVED


def test_nothing_recognized_opens_ticket(build, db_path):
    ocr = FakeOCRBackend(errors=[RecognizerUnavailableError("text", "tesseract missing")])
    qa = FakeQABackend(error=RecognizerUnavailableError("vision", "no model"))
    [decision] = process(build(ocr, qa), make_png())

    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.NO_PAYMENT_INFO
    tickets = ReviewQueue(db_path).list_open()
    assert [t.ticket_id for t in tickets] == [decision.review_ticket_id]
    assert tickets[0].reason == reasons.NO_PAYMENT_INFO


def test_recognizers_disagreeing_slightly_merge(build):
    ocr = FakeOCRBackend("GCash\nAmount PHP 1,500.00", confidence=60.0)
    qa = FakeQABackend({"amount": ("1,500.50", 0.8)})
    [decision] = process(build(ocr, qa), make_png())

    [candidate] = decision.candidates
    assert candidate.amount == 1500.5
    assert candidate.confidence == pytest.approx(0.9)
    assert decision.outcome == DecisionOutcome.UNMATCHED
    assert decision.reason == reasons.NO_MATCHING_SUBMISSIONS
    assert decision.review_ticket_id is not None


def test_slow_run_times_out(build):
    processor = build(FakeOCRBackend(GCASH_RECEIPT, delay=1.0), run_deadline=0.2)
    [decision] = process(processor, make_png())

    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.PROCESSING_TIMEOUT
    assert decision.review_ticket_id is not None


def test_store_outage_goes_to_review(build, store):
    processor = build(FakeOCRBackend(GCASH_RECEIPT), submission_store=FlakyStore(store, fail_all=True))
    [decision] = process(processor, make_png())

    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.STORE_UNAVAILABLE
    assert store.get_submission("SUB-1").is_pending


def test_bad_image_is_raised_and_not_stored(build, db_path):
    processor = build(FakeOCRBackend(GCASH_RECEIPT))

    async def _go():
        async with processor:
            with pytest.raises(ImageError) as excinfo:
                await processor.process_payment_proof(b"not an image", "image/png")
            return excinfo.value, processor.get_status()

    error, status = asyncio.run(_go())
    assert error.kind == ImageErrorKind.CORRUPT
    assert status["rejected_images"] == 1
    assert DecisionStore(db_path).count() == 0
    assert ReviewQueue(db_path).list_open() == []


def test_batch_reports_rejections_per_job(build):
    processor = build(FakeOCRBackend(GCASH_RECEIPT))
    jobs = [
        ProofJob(make_png(), "image/png", label="good.png"),
        ProofJob(make_png(color=(0, 0, 0)), "image/gif", label="bad.gif"),
    ]

    async def _go():
        async with processor:
            return await processor.process_batch(jobs)

    good, bad = asyncio.run(_go())
    assert good.success and good.decision.outcome == DecisionOutcome.AUTO_APPROVED
    assert not bad.success and bad.error.kind == ImageErrorKind.UNSUPPORTED
    assert bad.to_dict()["label"] == "bad.gif"


def test_new_decisions_are_notified(build):
    notifier = RecordingNotifier()
    processor = build(FakeOCRBackend(GCASH_RECEIPT), notifier=notifier)
    first, duplicate = process(processor, make_png(), make_png())

    assert [d.decision_id for d in notifier.decisions] == [first.decision_id]
    assert duplicate.decision_id == first.decision_id


def test_processor_must_be_started(build):
    processor = build(FakeOCRBackend(GCASH_RECEIPT))
    with pytest.raises(RuntimeError):
        asyncio.run(processor.process_payment_proof(make_png(), "image/png"))


def test_status_counters(build):
    processor = build(FakeOCRBackend(GCASH_RECEIPT), max_workers=2)

    async def _go():
        async with processor:
            await processor.process_payment_proof(make_png(), "image/png")
            await processor.process_payment_proof(make_png(), "image/png")
            return processor.get_status()

    status = asyncio.run(_go())
    assert status["running"]
    assert status["max_workers"] == 2
    assert status["decisions"] == {"auto_approved": 1}
    assert status["duplicates"] == 1
    assert status["hashes_in_progress"] == 0
    assert not processor.is_running


def test_malformed_currency_hint_goes_to_review(build, db_path):
    processor = build(FakeOCRBackend(GCASH_RECEIPT))
    [decision] = process(processor, make_png(), context=ProcessingContext(expected_currency="P1P"))

    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.NO_PAYMENT_INFO
    assert decision.candidates == []
    assert [t.ticket_id for t in ReviewQueue(db_path).list_open()] == [decision.review_ticket_id]


def test_failure_after_terminal_state_still_returns_decision(build, store):
    processor = build(FakeOCRBackend(GCASH_RECEIPT))

    async def failing_decide(run, reconciliation, outcome):
        run.transition(RunState.UNMATCHED)
        raise RuntimeError("lost connection while building decision")

    processor.engine.decide = failing_decide
    [decision] = process(processor, make_png())

    assert decision.outcome == DecisionOutcome.PENDING_REVIEW
    assert decision.reason == reasons.PROCESSING_ERROR
    assert decision.candidates[0].amount == 1000.0
    assert decision.review_ticket_id is not None
    assert store.get_submission("SUB-1").is_pending


class SlowApprovalStore(FlakyStore):
    """Commits the approval, signals it, then stalls before reporting it."""

    def __init__(self, inner, committed):
        super().__init__(inner)
        self.committed = committed

    def approve_if_pending(self, submission_id, decision_id, confidence):
        approved = super().approve_if_pending(submission_id, decision_id, confidence)
        self.committed.set()
        time.sleep(0.5)
        return approved


class WaitingOCRBackend(FakeOCRBackend):
    """Reads only after another run has committed its approval."""

    def __init__(self, text, committed):
        super().__init__(text)
        self.committed = committed

    def extract(self, image):
        self.committed.wait(timeout=1.5)
        return super().extract(image)


def test_two_processors_keep_the_approval_on_record(build, store, db_path):
    committed = threading.Event()
    approving = build(FakeOCRBackend(GCASH_RECEIPT), submission_store=SlowApprovalStore(store, committed))
    late = build(WaitingOCRBackend(GCASH_RECEIPT, committed))
    image = make_png()

    async def _go():
        async with approving, late:
            return await asyncio.gather(
                approving.process_payment_proof(image, "image/png"),
                late.process_payment_proof(image, "image/png"),
            )

    winner, loser = asyncio.run(_go())
    assert winner.outcome == DecisionOutcome.AUTO_APPROVED
    assert loser.reason == reasons.ALREADY_RESOLVED

    decisions = DecisionStore(db_path)
    current = decisions.get_by_hash(winner.content_hash)
    assert current.decision_id == winner.decision_id
    assert current.outcome == DecisionOutcome.AUTO_APPROVED
    assert [d.decision_id for d in decisions.history(winner.content_hash)] == [
        loser.decision_id, winner.decision_id
    ]

    conn = sqlite3.connect(str(db_path))
    try:
        [(approved_by,)] = conn.execute("SELECT decision_id FROM submissions WHERE id = 'SUB-1'").fetchall()
    finally:
        conn.close()
    assert approved_by == winner.decision_id
