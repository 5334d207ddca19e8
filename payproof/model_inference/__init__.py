"""
Model Inference Module for the Payment Proof Engine.

This module provides the vision half of the engine: a pre-trained
document question-answering model asked one question per payment field.

Author: ML Engineering Team
"""

from .extractor import VisionRecognizer, DocumentQABackend, DEFAULT_FIELD_QUESTIONS

__all__ = ['VisionRecognizer', 'DocumentQABackend', 'DEFAULT_FIELD_QUESTIONS']
