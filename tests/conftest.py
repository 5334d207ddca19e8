import io
import threading
import time
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

from payproof.config import ConfigurationManager
from payproof.decision.engine import DecisionEngine
from payproof.input_handler.image_processor import ImageNormalizer
from payproof.matching.matcher import CandidateMatcher
from payproof.matching.scoring import MatchScorer
from payproof.matching.submission import Submission, SubmissionStore
from payproof.model_inference.extractor import VisionRecognizer
from payproof.ocr_engine.engine import TextRecognizer
from payproof.ocr_engine.ocr_result import OCRResult
from payproof.output_handler.database_handler import SQLiteSubmissionStore
from payproof.output_handler.decision_store import DecisionStore
from payproof.output_handler.review_queue import ReviewQueue
from payproof.pipeline.processor import PaymentProofProcessor
from payproof.postprocessor.reconciler import ExtractionReconciler
from payproof.utils.exceptions import StoreUnavailableError


GCASH_RECEIPT = """GCash
Sent via GCash
Amount PHP 1,000.00
From: Juan Dela Cruz
Ref No. 1009 876 543
Jan 5, 2026 3:04 PM"""

GCASH_ANSWERS = {
    "amount": ("₱1,000.00", 0.90),
    "payment_method": ("GCash", 0.80),
    "sender_name": ("Juan Dela Cruz", 0.85),
    "reference_number": ("1009 876 543", 0.80),
}


@pytest.fixture(autouse=True)
def fresh_config():
    ConfigurationManager.reset()
    yield
    ConfigurationManager.reset()


def make_png(color=(255, 255, 255), size=(320, 480)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeOCRBackend:
    """Returns fixed text; can sleep or fail a number of times first."""

    def __init__(self, text: str = "", confidence: float = 95.0, delay: float = 0.0,
                 errors: Optional[List[Exception]] = None):
        self.text = text
        self.confidence = confidence
        self.delay = delay
        self.errors = list(errors or [])
        self.calls = 0
        self._lock = threading.Lock()

    def extract(self, image) -> OCRResult:
        with self._lock:
            self.calls += 1
            error = self.errors.pop(0) if self.errors else None
        if self.delay:
            time.sleep(self.delay)
        if error is not None:
            raise error
        return OCRResult.from_text(self.text, confidence=self.confidence, engine="fake")


class FakeQABackend:
    """Answers from a fixed table; can sleep or always fail."""

    def __init__(self, answers: Optional[Dict[str, Tuple[str, float]]] = None, delay: float = 0.0,
                 error: Optional[Exception] = None):
        self.answers = dict(answers or {})
        self.delay = delay
        self.error = error
        self.calls = 0

    def answer_fields(self, image, questions):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {name: self.answers[name] for name in questions if name in self.answers}


def text_recognizer(backend, timeout: float = 2.0, max_retries: int = 2) -> TextRecognizer:
    return TextRecognizer(backend=backend, timeout=timeout, max_retries=max_retries,
                          backoff_base=0.01, backoff_max=0.05)


def vision_recognizer(backend, timeout: float = 2.0) -> VisionRecognizer:
    return VisionRecognizer(backend=backend, timeout=timeout, max_retries=0,
                            backoff_base=0.01, backoff_max=0.05)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "payproof.db"


@pytest.fixture
def store(db_path):
    store = SQLiteSubmissionStore(db_path)
    store.add_submissions([
        Submission("SUB-1", "ORD-1", 1000.0, "PHP", payment_reference="1009876543",
                   buyer_name="Juan Dela Cruz", buyer_phone="09171234567"),
        Submission("SUB-2", "ORD-1", 2500.0, "PHP", payment_reference="GOM-AB12CD34",
                   buyer_name="Maria Santos", buyer_phone="09187654321"),
        Submission("SUB-3", "ORD-2", 45.50, "MYR", payment_reference="MBB-12345678",
                   buyer_name="Ahmad Ismail", buyer_phone="0123456789"),
    ])
    return store


@pytest.fixture
def build(db_path, store):
    """Factory for processors wired to fake backends and the tmp database."""

    def _build(ocr_backend=None, qa_backend=None, submission_store=None, run_deadline: float = 5.0,
               max_workers: int = 4, notifier=None) -> PaymentProofProcessor:
        submission_store = submission_store or store
        recognizers = []
        if ocr_backend is not None:
            recognizers.append(text_recognizer(ocr_backend))
        if qa_backend is not None:
            recognizers.append(vision_recognizer(qa_backend))
        scorer = MatchScorer()
        return PaymentProofProcessor(
            normalizer=ImageNormalizer(),
            recognizers=recognizers,
            reconciler=ExtractionReconciler(),
            matcher=CandidateMatcher(submission_store, scorer=scorer),
            engine=DecisionEngine(submission_store, scorer=scorer),
            decision_store=DecisionStore(db_path),
            review_queue=ReviewQueue(db_path),
            notifier=notifier,
            max_workers=max_workers,
            run_deadline=run_deadline,
        )

    return _build


class FlakyStore(SubmissionStore):
    """Wraps a real store and raises StoreUnavailableError a set number of times per method."""

    def __init__(self, inner: SubmissionStore, failures: Optional[Dict[str, int]] = None, fail_all: bool = False):
        self.inner = inner
        self.failures = dict(failures or {})
        self.fail_all = fail_all
        self.calls: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _call(self, name, *args):
        with self._lock:
            self.calls[name] = self.calls.get(name, 0) + 1
            remaining = self.failures.get(name, 0)
            if remaining:
                self.failures[name] = remaining - 1
        if self.fail_all or remaining:
            raise StoreUnavailableError(name, "connection refused")
        return getattr(self.inner, name)(*args)

    def get_submission(self, submission_id):
        return self._call("get_submission", submission_id)

    def find_by_order(self, order_id):
        return self._call("find_by_order", order_id)

    def find_by_reference(self, code):
        return self._call("find_by_reference", code)

    def find_by_amount_window(self, amount, currency, tolerance):
        return self._call("find_by_amount_window", amount, currency, tolerance)

    def find_by_buyer_identity(self, name_or_phone):
        return self._call("find_by_buyer_identity", name_or_phone)

    def approve_if_pending(self, submission_id, decision_id, confidence):
        return self._call("approve_if_pending", submission_id, decision_id, confidence)
