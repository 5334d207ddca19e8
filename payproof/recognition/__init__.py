"""
Recognition Contract for the Payment Proof Engine.

Shared by the text recognizer (ocr_engine) and the vision recognizer
(model_inference):
    - Tagged RecognitionResult variants
    - RecognitionAdapter base with timeout, retry and failure absorption

Author: ML Engineering Team
"""

from .result import (
    RecognizerKind,
    TextLine,
    VisionField,
    RecognitionResult,
    TextRecognition,
    VisionRecognition,
    RecognitionFailure,
)
from .adapter import RecognitionAdapter

__all__ = [
    'RecognizerKind',
    'TextLine',
    'VisionField',
    'RecognitionResult',
    'TextRecognition',
    'VisionRecognition',
    'RecognitionFailure',
    'RecognitionAdapter',
]
