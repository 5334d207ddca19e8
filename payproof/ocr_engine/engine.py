"""
Text Recognizer Module.

Adapts a text backend (Tesseract by default) to the recognition
contract. The recognizer reads the high-contrast variant, drops
low-confidence words and reports each line with a confidence in [0, 1].

Usage:
    from payproof.ocr_engine import TextRecognizer

    recognizer = TextRecognizer()
    result = await recognizer.recognize(variants)
    print(result.text)

Author: ML Engineering Team
"""

from typing import List, Optional, Sequence

from payproof.config import get_config
from payproof.input_handler.normalized_image import NormalizedImage, VariantKind, pick_variant
from payproof.recognition.adapter import RecognitionAdapter
from payproof.recognition.result import RecognizerKind, TextLine, TextRecognition
from payproof.utils.exceptions import MalformedResponseError
from payproof.utils.logger import get_logger
from .ocr_result import OCRResult
from .tesseract_backend import TesseractBackend

logger = get_logger(__name__)


class TextRecognizer(RecognitionAdapter):
    """
    Text-recognition adapter.

    Any object with ``extract(PIL.Image) -> OCRResult`` can serve as the
    backend, which keeps the recognizer swappable.

    Attributes:
        backend: Text extraction backend
        min_word_confidence: Words below this (0-100) are discarded

    Example:
        >>> recognizer = TextRecognizer(backend=TesseractBackend(language="eng+fil"))
        >>> result = await recognizer.recognize(variants)
    """

    kind = RecognizerKind.TEXT

    def __init__(
        self,
        backend=None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        min_word_confidence: Optional[float] = None
    ) -> None:
        super().__init__(
            timeout=timeout if timeout is not None else get_config("ocr.timeout_seconds", 15.0),
            max_retries=max_retries if max_retries is not None else get_config("ocr.max_retries", 2),
            backoff_base=backoff_base if backoff_base is not None else get_config("ocr.backoff_base_seconds", 0.5),
            backoff_max=backoff_max if backoff_max is not None else get_config("ocr.backoff_max_seconds", 4.0),
        )
        self.backend = backend or TesseractBackend()
        self.min_word_confidence = (
            min_word_confidence if min_word_confidence is not None
            else get_config("ocr.min_word_confidence", 30)
        )

        logger.debug(
            f"TextRecognizer initialized (backend={type(self.backend).__name__}, "
            f"timeout={self.timeout}s)"
        )

    def _recognize_sync(self, images: Sequence[NormalizedImage]) -> TextRecognition:
        variant = pick_variant(images, VariantKind.HIGH_CONTRAST)
        if variant is None:
            raise MalformedResponseError(self.name, "no image variant available")

        ocr_result = self.backend.extract(variant.to_pil())
        lines = self._to_lines(ocr_result)
        confidence = sum(l.confidence for l in lines) / len(lines) if lines else 0.0

        logger.debug(f"Text recognizer kept {len(lines)} lines from {variant.kind.value} variant")
        return TextRecognition(
            recognizer=self.kind,
            confidence=confidence,
            latency=ocr_result.processing_time,
            lines=tuple(lines)
        )

    def _to_lines(self, ocr_result: OCRResult) -> List[TextLine]:
        """Filter weak words and rescale line confidence to [0, 1]."""
        lines = []
        for line in ocr_result.lines:
            words = [w for w in line.words if w.confidence >= self.min_word_confidence]
            if not words:
                continue
            text = ' '.join(w.text for w in words)
            confidence = sum(w.confidence for w in words) / len(words) / 100.0
            lines.append(TextLine(text=text, confidence=min(1.0, confidence)))
        return lines
