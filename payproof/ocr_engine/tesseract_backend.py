"""
Tesseract OCR Backend.

Text backend built on pytesseract. Words are read with image_to_data and
grouped into lines by Tesseract's own block/paragraph/line numbering.

Requirements:
    - Tesseract OCR installed on the system (with the configured
      language packs, e.g. eng, fil, msa)
    - pytesseract Python package

Author: ML Engineering Team
"""

import threading
import time
from typing import Dict, List, Optional, Tuple

from PIL import Image

from payproof.config import get_config
from payproof.utils.exceptions import (
    MalformedResponseError,
    RecognizerUnavailableError,
    TransientRecognitionError,
)
from payproof.utils.logger import get_logger
from .ocr_result import OCRLine, OCRResult, OCRWord

logger = get_logger(__name__)


class TesseractBackend:
    """
    pytesseract-backed text extraction.

    pytesseract and the tesseract binary are resolved on first use, so
    constructing the backend never fails; a missing installation shows
    up as a RecognizerUnavailableError at recognition time and the
    recognizer degrades instead of the service refusing to start.

    Attributes:
        language: Tesseract language code(s), e.g. "eng+fil"
        psm: Page Segmentation Mode
        oem: OCR Engine Mode
        call_timeout: Per-call timeout handed to tesseract (seconds, 0 = none)

    Example:
        >>> backend = TesseractBackend()
        >>> result = backend.extract(image)
        >>> print(result.text)
    """

    name = "tesseract"

    def __init__(
        self,
        language: Optional[str] = None,
        psm: Optional[int] = None,
        oem: Optional[int] = None,
        call_timeout: Optional[float] = None
    ) -> None:
        self.language = language or get_config("ocr.tesseract.lang", "eng")
        self.psm = psm if psm is not None else get_config("ocr.tesseract.psm", 6)
        self.oem = oem if oem is not None else get_config("ocr.tesseract.oem", 3)
        self.extra_config = get_config("ocr.tesseract.config", "")
        self.call_timeout = call_timeout if call_timeout is not None else get_config("ocr.timeout_seconds", 0)

        self._pytesseract = None
        self._lock = threading.Lock()

        logger.debug(
            f"TesseractBackend initialized (lang={self.language}, psm={self.psm}, oem={self.oem})"
        )

    def _ensure_engine(self):
        """
        Import pytesseract and check the tesseract binary once.

        Raises:
            RecognizerUnavailableError: If pytesseract or tesseract is missing.
        """
        with self._lock:
            if self._pytesseract is not None:
                return self._pytesseract

            try:
                import pytesseract
            except ImportError:
                raise RecognizerUnavailableError(
                    self.name, "pytesseract not installed (pip install pytesseract)"
                )

            try:
                version = pytesseract.get_tesseract_version()
            except (pytesseract.TesseractNotFoundError, OSError) as e:
                raise RecognizerUnavailableError(self.name, f"tesseract binary not found: {e}")

            logger.info(f"Tesseract version: {version}")
            self._pytesseract = pytesseract
            return pytesseract

    def _build_config(self) -> str:
        config_parts = [f"--psm {self.psm}", f"--oem {self.oem}"]
        if self.extra_config:
            config_parts.append(self.extra_config)
        return ' '.join(config_parts)

    def extract(self, image: Image.Image) -> OCRResult:
        """
        Extract words and lines from an image.

        Args:
            image: PIL image (the high-contrast variant is preferred).

        Returns:
            OCRResult with lines in reading order.

        Raises:
            RecognizerUnavailableError: Tesseract is not installed.
            TransientRecognitionError: The tesseract call timed out.
            MalformedResponseError: Tesseract failed on this image.
        """
        pytesseract = self._ensure_engine()
        start_time = time.time()

        if image.mode not in ('RGB', 'L'):
            image = image.convert('RGB')

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=self._build_config(),
                output_type=pytesseract.Output.DICT,
                timeout=self.call_timeout or 0
            )
        except pytesseract.TesseractError as e:
            raise MalformedResponseError(self.name, str(e))
        except RuntimeError as e:
            # pytesseract signals its own timeout with a bare RuntimeError
            raise TransientRecognitionError(self.name, str(e))

        lines = self._group_into_lines(data)
        result = OCRResult(
            lines=lines,
            engine=self.name,
            language=self.language,
            processing_time=time.time() - start_time,
            metadata={'psm': self.psm, 'oem': self.oem}
        )

        logger.debug(
            f"Tesseract read {result.word_count} words in {len(lines)} lines "
            f"(avg confidence {result.average_confidence:.1f}%, {result.processing_time:.2f}s)"
        )
        return result

    def _group_into_lines(self, data: Dict[str, List]) -> List[OCRLine]:
        """
        Turn image_to_data output into OCRLine objects.

        Tesseract numbers lines within paragraphs within blocks, so the
        full (block, paragraph, line) triple identifies a line.
        """
        groups: Dict[Tuple[int, int, int], List[OCRWord]] = {}

        for i, raw_text in enumerate(data.get('text', [])):
            text = (raw_text or '').strip()
            if not text:
                continue

            width, height = data['width'][i], data['height'][i]
            if width <= 0 or height <= 0:
                continue

            confidence = max(0.0, float(data['conf'][i]))
            left, top = data['left'][i], data['top'][i]
            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])

            groups.setdefault(key, []).append(
                OCRWord(text=text, confidence=confidence, bbox=(left, top, left + width, top + height))
            )

        lines = []
        for index, key in enumerate(sorted(groups)):
            words = sorted(groups[key], key=lambda w: w.x1)
            lines.append(OCRLine(words=words, line_index=index))
        return lines
