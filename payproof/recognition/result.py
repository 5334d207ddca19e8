"""
Recognition Result Variants.

Every recognizer call produces exactly one immutable RecognitionResult.
The variant type and the ``recognizer`` tag tell the reconciler which
grammar reads it, so no caller ever has to probe the payload shape.

Classes:
    RecognizerKind: Which recognizer produced a result
    TextLine: One line of recognized text
    VisionField: One answered question from the vision model
    TextRecognition: Successful text recognition
    VisionRecognition: Successful vision recognition
    RecognitionFailure: Any failed call (confidence is always 0)

Author: ML Engineering Team
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class RecognizerKind(str, Enum):
    """Tag identifying the recognizer behind a result."""
    TEXT = "text"
    VISION = "vision"


@dataclass(frozen=True)
class TextLine:
    """A recognized line with its mean word confidence in [0, 1]."""
    text: str
    confidence: float


@dataclass(frozen=True)
class VisionField:
    """An answer to one field question, with the model's score in [0, 1]."""
    name: str
    value: str
    confidence: float


@dataclass(frozen=True)
class RecognitionResult:
    """
    Common shape of all recognizer outputs.

    Attributes:
        recognizer: Which recognizer produced the result
        confidence: Overall confidence in [0, 1]
        latency: Wall-clock seconds spent, retries included
    """
    recognizer: RecognizerKind
    confidence: float
    latency: float

    @property
    def success(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recognizer': self.recognizer.value,
            'success': self.success,
            'confidence': round(self.confidence, 4),
            'latency': round(self.latency, 3),
        }


@dataclass(frozen=True)
class TextRecognition(RecognitionResult):
    """
    Lines of text read from the high-contrast variant.

    Example:
        >>> result.text
        'GCash\\nAmount PHP 1,000.00\\nRef No. 1009 876 543'
    """
    lines: Tuple[TextLine, ...] = ()

    @property
    def text(self) -> str:
        return '\n'.join(line.text for line in self.lines)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['lines'] = [{'text': l.text, 'confidence': round(l.confidence, 4)} for l in self.lines]
        return data


@dataclass(frozen=True)
class VisionRecognition(RecognitionResult):
    """Per-field answers from the document question-answering model."""
    answers: Tuple[VisionField, ...] = ()

    def get(self, name: str) -> Optional[VisionField]:
        """Return the answer for a field, or None if the model gave none."""
        for answer in self.answers:
            if answer.name == name:
                return answer
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['answers'] = {
            a.name: {'value': a.value, 'confidence': round(a.confidence, 4)}
            for a in self.answers
        }
        return data


@dataclass(frozen=True)
class RecognitionFailure(RecognitionResult):
    """
    A recognizer call that produced nothing usable.

    Build it with RecognitionFailure.of() so the confidence is always 0.
    """
    error: str = ""

    @property
    def success(self) -> bool:
        return False

    @classmethod
    def of(cls, recognizer: RecognizerKind, error: str, latency: float = 0.0) -> 'RecognitionFailure':
        return cls(recognizer=recognizer, confidence=0.0, latency=latency, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['error'] = self.error
        return data
