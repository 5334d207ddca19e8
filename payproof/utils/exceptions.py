"""
Custom Exceptions Module.

This module defines the exceptions raised throughout the payment proof
matching engine. Each pipeline stage raises its own family so that the
orchestrator can decide which errors are fatal to a run and which ones
merely degrade it.

Exception Hierarchy:
    PaymentProofError (base)
    ├── ConfigurationError
    ├── ImageError                      (fatal, surfaced to caller)
    ├── RecognitionError                (absorbed by adapters)
    │   ├── TransientRecognitionError   (retried with backoff)
    │   ├── QuotaExceededError
    │   ├── MalformedResponseError
    │   └── RecognizerUnavailableError
    ├── ReconciliationError             (treated as zero candidates)
    ├── MatchingError
    │   ├── StoreUnavailableError       (lookup path treated as empty)
    │   └── ApprovalRaceError           (recorded as "already resolved")
    ├── InvalidTransitionError
    └── OutputError
        └── DatabaseError

Author: ML Engineering Team
"""

from enum import Enum
from typing import Optional


class PaymentProofError(Exception):
    """
    Base exception for all payment proof engine errors.

    Attributes:
        message: Human-readable error message.
        details: Dictionary with additional error context.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PaymentProofError):
    """Raised when the settings file is missing or invalid."""

    def __init__(self, path: str, reason: Optional[str] = None):
        message = f"Invalid configuration: {path}"
        details = {"path": path, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# IMAGE ERRORS
# =============================================================================

class ImageErrorKind(str, Enum):
    """Reasons an uploaded image cannot be processed."""
    UNSUPPORTED = "unsupported"
    TOO_LARGE = "too_large"
    CORRUPT = "corrupt"


class ImageError(PaymentProofError):
    """
    Raised when an uploaded image cannot be normalized.

    This is the only error that escapes process_payment_proof(); no
    decision is recorded and no review ticket is created for it.

    Example:
        >>> raise ImageError(ImageErrorKind.UNSUPPORTED, "image/gif")
    """

    def __init__(self, kind: ImageErrorKind, reason: Optional[str] = None):
        self.kind = kind
        message = f"Image rejected ({kind.value})"
        details = {"kind": kind.value, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# RECOGNITION ERRORS
# =============================================================================

class RecognitionError(PaymentProofError):
    """Base exception for recognizer backend failures."""

    def __init__(self, recognizer: str, reason: Optional[str] = None):
        self.recognizer = recognizer
        message = f"Recognition failed: {recognizer}"
        details = {"recognizer": recognizer, "reason": reason}
        super().__init__(message, details)


class TransientRecognitionError(RecognitionError):
    """Network blips, 5xx responses and similar; safe to retry."""
    pass


class QuotaExceededError(RecognitionError):
    """The backend refused the call because a quota was exhausted."""
    pass


class MalformedResponseError(RecognitionError):
    """The backend answered with something that cannot be interpreted."""
    pass


class RecognizerUnavailableError(RecognitionError):
    """The backend is not installed, not configured or failed to load."""
    pass


# =============================================================================
# RECONCILIATION ERRORS
# =============================================================================

class ReconciliationError(PaymentProofError):
    """Raised when reconciliation inputs are malformed (e.g. a bad currency hint)."""

    def __init__(self, reason: str, value: Optional[str] = None):
        message = f"Reconciliation failed: {reason}"
        details = {"value": value} if value is not None else None
        super().__init__(message, details)


# =============================================================================
# MATCHING ERRORS
# =============================================================================

class MatchingError(PaymentProofError):
    """Base exception for candidate matching errors."""
    pass


class StoreUnavailableError(MatchingError):
    """Raised when the submission store cannot answer a query."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Submission store unavailable during: {operation}"
        details = {"operation": operation, "reason": reason}
        super().__init__(message, details)


class ApprovalRaceError(MatchingError):
    """Raised when the conditional approval was rejected because the submission is no longer pending."""

    def __init__(self, submission_id: str):
        message = f"Submission already resolved: {submission_id}"
        details = {"submission_id": submission_id}
        super().__init__(message, details)


# =============================================================================
# DECISION ERRORS
# =============================================================================

class InvalidTransitionError(PaymentProofError):
    """Raised when a run attempts a state transition the state machine forbids."""

    def __init__(self, current: str, target: str):
        message = f"Illegal run transition: {current} -> {target}"
        details = {"from": current, "to": target}
        super().__init__(message, details)


# =============================================================================
# OUTPUT ERRORS
# =============================================================================

class OutputError(PaymentProofError):
    """Base exception for persistence errors."""
    pass


class DatabaseError(OutputError):
    """Raised when database operations fail."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Database operation failed: {operation}"
        details = {"operation": operation, "reason": reason}
        super().__init__(message, details)


__all__ = [
    'PaymentProofError',
    'ConfigurationError',
    'ImageErrorKind',
    'ImageError',
    'RecognitionError',
    'TransientRecognitionError',
    'QuotaExceededError',
    'MalformedResponseError',
    'RecognizerUnavailableError',
    'ReconciliationError',
    'MatchingError',
    'StoreUnavailableError',
    'ApprovalRaceError',
    'InvalidTransitionError',
    'OutputError',
    'DatabaseError',
]
