"""
Data Validators Module.

Sanity checks applied to extracted payment facts before they become
candidates:
    - Amount bounds
    - Reference code shape

Author: ML Engineering Team
"""

import re
from typing import Optional, Tuple

from payproof.config import get_config
from payproof.utils.helpers import normalize_reference
from payproof.utils.logger import get_logger

logger = get_logger(__name__)


class AmountValidator:
    """
    Validates extracted payment amounts.

    Amounts outside the configured bounds are almost always misreads:
    account numbers, phone numbers or years picked up as amounts.

    Example:
        >>> validator = AmountValidator(min_amount=1.0, max_amount=100000.0)
        >>> validator.validate(1500.0)
        (True, 'Valid amount')
        >>> validator.validate(9171234567.0)
        (False, 'Amount 9171234567.00 exceeds maximum 100000.00')
    """

    def __init__(self, min_amount: Optional[float] = None, max_amount: Optional[float] = None) -> None:
        self.min_amount = float(min_amount if min_amount is not None else get_config("payment.min_amount", 1.0))
        self.max_amount = float(max_amount if max_amount is not None else get_config("payment.max_amount", 100000.0))
        logger.debug(f"AmountValidator initialized ({self.min_amount:.2f}-{self.max_amount:.2f})")

    def is_valid(self, amount: Optional[float]) -> bool:
        valid, _ = self.validate(amount)
        return valid

    def validate(self, amount: Optional[float]) -> Tuple[bool, str]:
        """
        Validate an amount with detailed feedback.

        Returns:
            Tuple of (is_valid, message).
        """
        if amount is None:
            return False, "Amount is empty"
        if amount < self.min_amount:
            return False, f"Amount {amount:.2f} below minimum {self.min_amount:.2f}"
        if amount > self.max_amount:
            return False, f"Amount {amount:.2f} exceeds maximum {self.max_amount:.2f}"
        return True, "Valid amount"


class ReferenceValidator:
    """
    Validates payment reference codes.

    A reference must contain at least one digit and, once reduced to
    alphanumerics, be between min_length and max_length characters.

    Example:
        >>> ReferenceValidator().is_valid("1009 876 543")
        True
        >>> ReferenceValidator().is_valid("Number")
        False
    """

    def __init__(self, min_length: int = 6, max_length: int = 30) -> None:
        self.min_length = min_length
        self.max_length = max_length

    def is_valid(self, reference: Optional[str]) -> bool:
        valid, _ = self.validate(reference)
        return valid

    def validate(self, reference: Optional[str]) -> Tuple[bool, str]:
        canonical = normalize_reference(reference)
        if not canonical:
            return False, "Reference is empty"
        if not re.search(r'\d', canonical):
            return False, "Reference must contain a digit"
        if not self.min_length <= len(canonical) <= self.max_length:
            return False, f"Reference length {len(canonical)} out of range"
        return True, "Valid reference"
