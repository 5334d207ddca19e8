"""
Utility Module for the Payment Proof Engine.

Provides the pieces every other module leans on:
    - Logging configuration
    - Exception hierarchy
    - Hashing, identifier and normalization helpers
"""

from .logger import setup_logger, get_logger
from .helpers import (
    ensure_directory,
    compute_content_hash,
    generate_id,
    utc_now_iso,
    normalize_reference,
    phone_key,
)

__all__ = [
    'setup_logger',
    'get_logger',
    'ensure_directory',
    'compute_content_hash',
    'generate_id',
    'utc_now_iso',
    'normalize_reference',
    'phone_key',
]
