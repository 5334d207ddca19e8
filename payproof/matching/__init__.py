"""
Matching Module for Payment Proof Matching.

This module provides:
    - Submission model and the SubmissionStore contract
    - Weighted candidate/submission scoring
    - Concurrent candidate lookup and ranking

Author: ML Engineering Team
"""

from .match_result import MatchCandidate, MatchOutcome
from .matcher import CandidateMatcher
from .scoring import MatchScorer, name_similarity
from .submission import (
    ProcessingContext,
    Submission,
    SubmissionStatus,
    SubmissionStore,
    within_amount_window,
)

__all__ = [
    'CandidateMatcher',
    'MatchScorer',
    'MatchCandidate',
    'MatchOutcome',
    'ProcessingContext',
    'Submission',
    'SubmissionStatus',
    'SubmissionStore',
    'name_similarity',
    'within_amount_window',
]
