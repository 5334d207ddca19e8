"""
Pipeline Module for Payment Proof Matching.

Author: ML Engineering Team
"""

from payproof.matching.submission import ProcessingContext
from .processor import BatchResult, PaymentProofProcessor, ProofJob, build_processor

__all__ = [
    'PaymentProofProcessor',
    'ProcessingContext',
    'ProofJob',
    'BatchResult',
    'build_processor',
]
