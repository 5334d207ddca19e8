"""
Decision Reasons.

Fixed reason strings attached to decisions and review tickets. Review
tooling and dashboards match on these exact values.

Author: ML Engineering Team
"""

NO_PAYMENT_INFO = "no payment information extracted"
CONFLICTING_AMOUNTS = "conflicting payment amounts extracted"
LOW_EXTRACTION_CONFIDENCE = "extraction confidence below suggest threshold"
STORE_UNAVAILABLE = "store unavailable"
ALREADY_RESOLVED = "already resolved"
PROCESSING_TIMEOUT = "processing timeout"
PROCESSING_ERROR = "processing error"
NEEDS_MANUAL_REVIEW = "potential matches found but require manual review"
NO_MATCHING_SUBMISSIONS = "no matching submissions found"
AUTO_APPROVED = "auto-approved"

__all__ = [
    'NO_PAYMENT_INFO',
    'CONFLICTING_AMOUNTS',
    'LOW_EXTRACTION_CONFIDENCE',
    'STORE_UNAVAILABLE',
    'ALREADY_RESOLVED',
    'PROCESSING_TIMEOUT',
    'PROCESSING_ERROR',
    'NEEDS_MANUAL_REVIEW',
    'NO_MATCHING_SUBMISSIONS',
    'AUTO_APPROVED',
]
