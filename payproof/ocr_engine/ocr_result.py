"""
OCR Result Data Classes.

Backend-neutral structures for text recognition output. A text backend
returns an OCRResult; the TextRecognizer condenses it into the
TextRecognition variant consumed by the reconciler.

Classes:
    OCRWord: Individual word with bounding box
    OCRLine: Line of text containing multiple words
    OCRResult: Complete OCR output for an image

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass
class OCRWord:
    """
    A single recognized word.

    Attributes:
        text: The recognized text content
        confidence: Backend confidence score (0-100)
        bbox: Bounding box as (x1, y1, x2, y2) in pixels

    Example:
        >>> OCRWord(text="GCash", confidence=96.0, bbox=(12, 40, 88, 62))
    """
    text: str
    confidence: float = 0.0
    bbox: Tuple[int, int, int, int] = (0, 0, 0, 0)

    @property
    def x1(self) -> int:
        return self.bbox[0]

    def __repr__(self) -> str:
        return f"OCRWord('{self.text}', conf={self.confidence:.1f})"


@dataclass
class OCRLine:
    """
    A line of words, left to right.

    Example:
        >>> line = OCRLine(words=[OCRWord("Amount", 95), OCRWord("1,000.00", 90)])
        >>> line.text
        'Amount 1,000.00'
    """
    words: List[OCRWord] = field(default_factory=list)
    line_index: int = 0

    @property
    def text(self) -> str:
        return ' '.join(word.text for word in self.words)

    @property
    def average_confidence(self) -> float:
        """Mean word confidence on the 0-100 scale."""
        if not self.words:
            return 0.0
        return sum(w.confidence for w in self.words) / len(self.words)


@dataclass
class OCRResult:
    """
    Complete OCR output for one image.

    Attributes:
        lines: Recognized lines in reading order
        engine: Backend name
        language: Backend language setting
        processing_time: Seconds spent in the backend
        metadata: Backend-specific extras
    """
    lines: List[OCRLine] = field(default_factory=list)
    engine: str = "unknown"
    language: str = "eng"
    processing_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return '\n'.join(line.text for line in self.lines)

    @property
    def word_count(self) -> int:
        return sum(len(line.words) for line in self.lines)

    @property
    def average_confidence(self) -> float:
        """Mean confidence over all words (0-100)."""
        words = [w for line in self.lines for w in line.words]
        if not words:
            return 0.0
        return sum(w.confidence for w in words) / len(words)

    @classmethod
    def from_text(cls, text: str, confidence: float = 90.0, engine: str = "text") -> 'OCRResult':
        """
        Build a result from plain text, one OCRLine per non-blank line.

        Useful for backends that only return strings, and for tests.

        Example:
            >>> OCRResult.from_text("GCash\\nAmount PHP 500.00").word_count
            4
        """
        lines = []
        for index, raw in enumerate(l for l in text.splitlines() if l.strip()):
            words = [OCRWord(text=token, confidence=confidence) for token in raw.split()]
            lines.append(OCRLine(words=words, line_index=index))
        return cls(lines=lines, engine=engine)
