"""
Post-Processing Module for Payment Proof Matching.

This module provides functionality for:
    - Amount, currency, method and timestamp normalization
    - Amount and reference validation
    - Reading payment facts from recognizer output
    - Reconciling facts into ranked payment candidates

Author: ML Engineering Team
"""

from .grammars import TextLineGrammar, VisionFieldGrammar
from .normalizers import AmountNormalizer, CurrencyNormalizer, DateNormalizer, MethodNormalizer
from .payment_candidate import PaymentCandidate, PaymentFact, ReconciliationResult
from .reconciler import ExtractionReconciler
from .validators import AmountValidator, ReferenceValidator

__all__ = [
    'ExtractionReconciler',
    'TextLineGrammar',
    'VisionFieldGrammar',
    'PaymentFact',
    'PaymentCandidate',
    'ReconciliationResult',
    'AmountNormalizer',
    'CurrencyNormalizer',
    'DateNormalizer',
    'MethodNormalizer',
    'AmountValidator',
    'ReferenceValidator',
]
