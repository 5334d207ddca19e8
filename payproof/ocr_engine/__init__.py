"""
OCR Engine Module for the Payment Proof Engine.

This module provides the text-recognition half of the engine:
    - TextRecognizer: recognition adapter over a text backend
    - TesseractBackend: pytesseract-based backend
    - OCRResult/OCRLine/OCRWord: backend-neutral OCR output

Author: ML Engineering Team
"""

from .engine import TextRecognizer
from .tesseract_backend import TesseractBackend
from .ocr_result import OCRResult, OCRWord, OCRLine

__all__ = ['TextRecognizer', 'TesseractBackend', 'OCRResult', 'OCRWord', 'OCRLine']
