"""
Submissions and the Submission Store Contract.

A Submission is an order awaiting payment. The matcher never writes to
submissions except through approve_if_pending, the single conditional
mutation of the whole engine.

Author: ML Engineering Team
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass
class Submission:
    """
    An order submission expecting a payment.

    Attributes:
        id: Submission identifier
        order_id: Order the submission belongs to
        expected_amount: Amount the buyer should pay
        currency: ISO currency code of the expected amount
        payment_reference: Reference the buyer was asked to quote
        buyer_name: Buyer's display name
        buyer_phone: Buyer's mobile number
        status: Lifecycle status; only pending submissions can be approved
    """
    id: str
    order_id: str
    expected_amount: float
    currency: str
    payment_reference: Optional[str] = None
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING

    @property
    def is_pending(self) -> bool:
        return self.status == SubmissionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'order_id': self.order_id,
            'expected_amount': self.expected_amount,
            'currency': self.currency,
            'payment_reference': self.payment_reference,
            'buyer_name': self.buyer_name,
            'buyer_phone': self.buyer_phone,
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Submission':
        return cls(
            id=str(data['id']),
            order_id=str(data['order_id']),
            expected_amount=float(data['expected_amount']),
            currency=str(data['currency']).upper(),
            payment_reference=data.get('payment_reference'),
            buyer_name=data.get('buyer_name'),
            buyer_phone=data.get('buyer_phone'),
            status=SubmissionStatus(data.get('status', SubmissionStatus.PENDING.value)),
        )


@dataclass
class ProcessingContext:
    """
    Caller hints attached to an uploaded proof.

    Attributes:
        submission_id: Submission the buyer uploaded against, if known
        order_id: Order the buyer uploaded against, if known
        expected_currency: Currency to assume when none can be read
    """
    submission_id: Optional[str] = None
    order_id: Optional[str] = None
    expected_currency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'submission_id': self.submission_id,
            'order_id': self.order_id,
            'expected_currency': self.expected_currency,
        }


def within_amount_window(expected: float, amount: float, tolerance: float) -> bool:
    """
    Check whether an amount falls inside the window around an expected amount.

    The window is relative to the expected amount:
    ``|expected - amount| <= tolerance * expected``.

    Example:
        >>> within_amount_window(1000.0, 1049.0, 0.05)
        True
        >>> within_amount_window(1000.0, 1051.0, 0.05)
        False
    """
    return round(abs(expected - amount), 6) <= round(tolerance * expected, 6)


class SubmissionStore(ABC):
    """
    Read access to submissions plus the conditional approval.

    Implementations raise StoreUnavailableError when the backing store
    cannot answer.
    """

    @abstractmethod
    def get_submission(self, submission_id: str) -> Optional[Submission]:
        pass

    @abstractmethod
    def find_by_order(self, order_id: str) -> List[Submission]:
        """Pending submissions belonging to an order."""
        pass

    @abstractmethod
    def find_by_reference(self, code: str) -> List[Submission]:
        """Submissions whose normalized payment reference equals the code's."""
        pass

    @abstractmethod
    def find_by_amount_window(self, amount: float, currency: str, tolerance: float) -> List[Submission]:
        """Submissions in a currency whose expected amount is within tolerance of amount."""
        pass

    @abstractmethod
    def find_by_buyer_identity(self, name_or_phone: str) -> List[Submission]:
        """Submissions whose buyer name or phone resembles the given value."""
        pass

    @abstractmethod
    def approve_if_pending(self, submission_id: str, decision_id: str, confidence: float) -> bool:
        """
        Mark a submission paid if, and only if, it is still pending.

        Returns:
            True if this call performed the transition, False otherwise.
        """
        pass
