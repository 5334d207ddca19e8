"""
Helper Utilities Module.

Small, dependency-free functions shared across the engine.

Functions:
    - ensure_directory: Create directory if it doesn't exist
    - compute_content_hash: Stable identity of an uploaded image
    - generate_id: Prefixed unique identifiers for runs and tickets
    - utc_now_iso: Timestamps for persisted records
    - normalize_reference: Canonical form of payment reference codes
    - phone_key: Canonical form of mobile numbers
    - format_file_size: Human-readable byte counts
"""

import hashlib
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it and its parents if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        Path object pointing to the directory.

    Example:
        >>> ensure_directory("data")
        PosixPath('data')
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def compute_content_hash(data: bytes) -> str:
    """
    Compute the SHA-256 hex digest of raw image bytes.

    The digest is the idempotency key for decisions: the same upload
    always maps to the same stored decision.

    Args:
        data: Raw uploaded bytes.

    Returns:
        64-character lowercase hex digest.
    """
    return hashlib.sha256(data).hexdigest()


def generate_id(prefix: str) -> str:
    """
    Generate a short unique identifier.

    Example:
        >>> generate_id("run")
        'run_3f2a9c4e1b7d'
    """
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def normalize_reference(reference: Optional[str]) -> str:
    """
    Reduce a payment reference to uppercase alphanumerics.

    Wallet screenshots print references with spaces or dashes
    ("1009 876 543", "GOM-AB12CD"); submissions store them however the
    buyer typed them. Comparing canonical forms makes both agree.

    Args:
        reference: Raw reference text.

    Returns:
        Canonical reference, or an empty string.

    Example:
        >>> normalize_reference("gom-ab12 cd")
        'GOMAB12CD'
    """
    if not reference:
        return ""
    return re.sub(r'[^A-Z0-9]', '', reference.upper())


def phone_key(phone: Optional[str]) -> str:
    """
    Reduce a mobile number to its last ten digits.

    Strips country prefixes so "+63 917 123 4567" and "09171234567"
    compare equal. Returns an empty string for anything shorter than
    nine digits.
    """
    if not phone:
        return ""
    digits = re.sub(r'\D', '', phone)
    if len(digits) < 9:
        return ""
    return digits[-10:]


def format_file_size(size_bytes: float) -> str:
    """
    Format a byte count in human-readable form.

    Example:
        >>> format_file_size(1536)
        '1.5 KB'
    """
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} TB"
