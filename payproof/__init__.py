"""
Payment Proof Matching Engine - Source Package.

This package turns screenshots of e-wallet and bank transfers into
decisions about which order submission was paid. Each module has a
single responsibility.

Modules:
    - input_handler: Screenshot validation and normalization
    - recognition: Recognizer contract and result variants
    - ocr_engine: Text recognition
    - model_inference: Document question-answering recognition
    - postprocessor: Grammars, normalization and reconciliation
    - matching: Submission lookup and scoring
    - decision: Run state machine and decision rules
    - output_handler: SQLite stores, review queue and notifications
    - pipeline: Orchestration

Architecture:
    Normalize → {Text, Vision} → Reconcile → Match → Decide
                                                       ↓
                                         Decision store / Review queue
"""

__version__ = "1.0.0"
__author__ = "ML Engineering Team"

__all__ = [
    'input_handler',
    'recognition',
    'ocr_engine',
    'model_inference',
    'postprocessor',
    'matching',
    'decision',
    'output_handler',
    'pipeline',
    'utils'
]
