import asyncio

import pytest

from payproof.input_handler import ImageNormalizer
from payproof.ocr_engine.tesseract_backend import TesseractBackend
from payproof.recognition import RecognitionFailure, RecognizerKind, TextRecognition, VisionRecognition
from payproof.utils.exceptions import (
    MalformedResponseError,
    QuotaExceededError,
    RecognizerUnavailableError,
    TransientRecognitionError,
)

from conftest import FakeOCRBackend, FakeQABackend, make_png, text_recognizer, vision_recognizer


@pytest.fixture
def variants():
    return ImageNormalizer().normalize(make_png(), "image/png")


def test_text_recognizer_returns_lines(variants):
    backend = FakeOCRBackend("GCash\nAmount PHP 500.00", confidence=80.0)
    result = asyncio.run(text_recognizer(backend).recognize(variants))

    assert isinstance(result, TextRecognition)
    assert result.success
    assert result.recognizer == RecognizerKind.TEXT
    assert result.text == "GCash\nAmount PHP 500.00"
    assert result.confidence == pytest.approx(0.80)
    assert result.latency >= 0


def test_text_recognizer_drops_weak_words(variants):
    backend = FakeOCRBackend("noise", confidence=10.0)
    result = asyncio.run(text_recognizer(backend).recognize(variants))
    assert result.success
    assert result.lines == ()
    assert result.confidence == 0.0


def test_transient_errors_are_retried(variants):
    backend = FakeOCRBackend("Amount PHP 500.00", errors=[
        TransientRecognitionError("text", "busy"),
        TransientRecognitionError("text", "busy"),
    ])
    result = asyncio.run(text_recognizer(backend, max_retries=2).recognize(variants))
    assert result.success
    assert backend.calls == 3


def test_retries_are_bounded(variants):
    backend = FakeOCRBackend("Amount PHP 500.00", errors=[
        TransientRecognitionError("text", "busy") for _ in range(5)
    ])
    result = asyncio.run(text_recognizer(backend, max_retries=2).recognize(variants))
    assert isinstance(result, RecognitionFailure)
    assert result.confidence == 0.0
    assert backend.calls == 3


@pytest.mark.parametrize("error", [
    QuotaExceededError("text", "daily limit"),
    MalformedResponseError("text", "garbage"),
    RecognizerUnavailableError("text", "not installed"),
])
def test_non_transient_errors_fail_without_retry(variants, error):
    backend = FakeOCRBackend("Amount PHP 500.00", errors=[error])
    result = asyncio.run(text_recognizer(backend).recognize(variants))
    assert not result.success
    assert backend.calls == 1
    assert result.error


def test_adapter_timeout_becomes_failure(variants):
    backend = FakeOCRBackend("Amount PHP 500.00", delay=0.5)
    result = asyncio.run(text_recognizer(backend, timeout=0.1).recognize(variants))
    assert isinstance(result, RecognitionFailure)
    assert "timed out" in result.error


def test_unexpected_backend_error_is_absorbed(variants):
    backend = FakeOCRBackend("x", errors=[ZeroDivisionError("boom")])
    result = asyncio.run(text_recognizer(backend).recognize(variants))
    assert not result.success
    assert "boom" in result.error


def test_vision_recognizer_filters_weak_answers(variants):
    backend = FakeQABackend({
        "amount": ("1,000.00", 0.9),
        "reference_number": ("1009 876 543", 0.7),
        "sender_name": ("?", 0.01),
    })
    result = asyncio.run(vision_recognizer(backend).recognize(variants))

    assert isinstance(result, VisionRecognition)
    assert result.get("amount").value == "1,000.00"
    assert result.get("sender_name") is None
    assert result.confidence == pytest.approx(0.8)


def test_vision_backend_failure(variants):
    backend = FakeQABackend(error=RecognizerUnavailableError("vision", "no model"))
    result = asyncio.run(vision_recognizer(backend).recognize(variants))
    assert not result.success
    assert result.recognizer == RecognizerKind.VISION


def test_tesseract_words_are_grouped_into_lines():
    data = {
        "text": ["1,000.00", "PHP", "Amount", "", "GCash", "tiny"],
        "conf": [91, 88, 95, -1, 97, 40],
        "left": [200, 120, 10, 0, 10, 5],
        "top": [60, 60, 60, 0, 10, 90],
        "width": [80, 40, 90, 0, 70, 0],
        "height": [20, 20, 20, 0, 22, 0],
        "block_num": [1, 1, 1, 1, 1, 2],
        "par_num": [1, 1, 1, 1, 1, 1],
        "line_num": [2, 2, 2, 1, 1, 1],
    }
    lines = TesseractBackend()._group_into_lines(data)

    assert [line.text for line in lines] == ["GCash", "Amount PHP 1,000.00"]
    assert [line.line_index for line in lines] == [0, 1]
    assert lines[1].words[0].bbox == (10, 60, 100, 80)
