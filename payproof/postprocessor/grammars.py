"""
Payment Grammars Module.

One grammar per recognizer output shape, each producing PaymentFacts:
    - TextLineGrammar: lines of OCR text
    - VisionFieldGrammar: per-field answers from the vision model

Keeping every string-matching rule here lets the reconciler merge facts
without knowing where they came from.

Author: ML Engineering Team
"""

import re
from typing import List, Optional, Sequence, Tuple

from payproof.config import get_config
from payproof.recognition.result import TextLine, TextRecognition, VisionRecognition
from payproof.utils.logger import get_logger
from .normalizers import (
    NUMBER_PATTERN,
    AmountNormalizer,
    CurrencyNormalizer,
    DateNormalizer,
    MethodNormalizer,
)
from .payment_candidate import PaymentFact
from .validators import ReferenceValidator

logger = get_logger(__name__)


REFERENCE_PATTERNS = [
    # "Ref No. 1009 876 543", "Reference: GOM-AB12CD34", "Transaction ID: 7A8B9C0D"
    re.compile(
        r'\b(?:ref(?:erence)?|txn|trans(?:action)?)\b\.?\s*(?:no\b\.?|num(?:ber)?\b|id\b|code\b|#)?\s*[:#.]?\s*'
        r'([A-Z0-9](?:[A-Z0-9]|-(?=[A-Z0-9])|\s(?=\d)){5,29})',
        re.IGNORECASE
    ),
    # Order-style references such as "GOM-AB12CD34"
    re.compile(r'\b([A-Z]{2,3}-[A-Z0-9]{6,12})\b'),
]

PHONE_PATTERN = re.compile(
    r'(?<!\d)(?:(?:\+?63\s?|0)9\d{2}[\s-]?\d{3}[\s-]?\d{4}'      # Philippines
    r'|(?:\+?60\s?|0)1\d[\s-]?\d{3,4}[\s-]?\d{4})(?!\d)'          # Malaysia
)

SENDER_PATTERN = re.compile(
    r'^\s*(?:from|sender(?:\s+name)?|sent\s+by|paid\s+by|account\s+name)\s*[:\-]\s*(.+?)\s*$',
    re.IGNORECASE
)
RECIPIENT_PATTERN = re.compile(r'\b(?:to|recipient|receiver|payee|merchant)\b', re.IGNORECASE)

AMOUNT_LABEL_PATTERN = re.compile(
    r'\b(?:amount|total|you\s+(?:paid|sent)|paid|sent|transfer(?:red)?|payment)\b',
    re.IGNORECASE
)
NON_PAYMENT_PATTERN = re.compile(
    r'\b(?:fees?|charges?|balance|available|cashback|discount|points|rewards?)\b',
    re.IGNORECASE
)


def clean_name(value: Optional[str]) -> Optional[str]:
    """
    Tidy a printed name: drop phone numbers and stray punctuation.

    Returns None when fewer than two letters remain.
    """
    if not value:
        return None
    value = PHONE_PATTERN.sub(' ', value)
    value = re.sub(r"[^\w\s.'*-]", ' ', value)
    value = ' '.join(value.split()).strip(" .-'")
    if len(re.findall(r'[A-Za-z]', value)) < 2:
        return None
    return value


def find_phone(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = PHONE_PATTERN.search(text)
    return re.sub(r'[\s-]', '', match.group(0)) if match else None


class TextLineGrammar:
    """
    Reads payment facts from OCR lines.

    Amount rules:
        - A number next to a currency marker ("₱1,000.00", "RM 45",
          "500.00 PHP") is an amount at full line confidence.
        - On a labeled line ("Amount", "Total", "You sent") without a
          marker, the last number is an amount at reduced confidence.
        - Fee, balance and reward lines are ignored.
        - Lines that carry a reference code or a date only yield
          marked amounts.

    Enrichments (method, sender, reference, timestamp) are read once
    from the whole text and attached to every fact.

    Example:
        >>> grammar = TextLineGrammar()
        >>> facts = grammar.parse(text_result)
        >>> facts[0].amount, facts[0].currency
        (1000.0, 'PHP')
    """

    def __init__(
        self,
        amounts: Optional[AmountNormalizer] = None,
        currencies: Optional[CurrencyNormalizer] = None,
        methods: Optional[MethodNormalizer] = None,
        dates: Optional[DateNormalizer] = None,
        references: Optional[ReferenceValidator] = None,
        unmarked_penalty: Optional[float] = None
    ) -> None:
        self.amounts = amounts or AmountNormalizer()
        self.currencies = currencies or CurrencyNormalizer()
        self.methods = methods or MethodNormalizer()
        self.dates = dates or DateNormalizer()
        self.references = references or ReferenceValidator()
        self.unmarked_penalty = (
            unmarked_penalty if unmarked_penalty is not None
            else get_config("reconciliation.unmarked_amount_penalty", 0.7)
        )

        symbols = self.currencies.symbol_alternation
        codes = '|'.join(sorted(self.currencies.codes))
        self._prefix_re = re.compile(
            rf'(?<![A-Za-z])(?P<symbol>{symbols})\s?(?P<number>{NUMBER_PATTERN})', re.IGNORECASE
        )
        self._suffix_re = re.compile(
            rf'(?P<number>{NUMBER_PATTERN})\s?(?P<symbol>{codes})(?![A-Za-z])', re.IGNORECASE
        )
        # OCR commonly reads the peso sign as a capital P
        self._peso_re = re.compile(r'(?<![A-Za-z0-9])P\s?(?P<number>\d{1,3}(?:,\d{3})*\.\d{2})(?!\d)')
        self._number_re = re.compile(NUMBER_PATTERN)

    def parse(self, result: TextRecognition) -> List[PaymentFact]:
        """
        Derive payment facts from a text recognition result.

        Args:
            result: Successful text recognition.

        Returns:
            Zero or more facts, one per amount found.
        """
        text = result.text
        method = self.methods.detect(text)
        document_currency = self.currencies.detect(text) or self.methods.currency_for(method)
        reference = self.find_reference(result.lines)
        sender_name, sender_phone = self.find_sender(result.lines)
        timestamp = self.find_timestamp(result.lines)

        facts = []
        for line in result.lines:
            for amount, currency, marked in self.amounts_in_line(line.text):
                confidence = line.confidence if marked else line.confidence * self.unmarked_penalty
                facts.append(PaymentFact(
                    amount=amount,
                    currency=currency or document_currency,
                    confidence=round(confidence, 6),
                    source=result.recognizer,
                    method=method,
                    sender_name=sender_name,
                    sender_phone=sender_phone,
                    reference=reference,
                    timestamp=timestamp,
                ))

        logger.debug(f"Text grammar found {len(facts)} amount facts")
        return facts

    def amounts_in_line(self, text: str) -> List[Tuple[float, Optional[str], bool]]:
        """
        Find amounts on one line.

        Returns:
            List of (amount, currency or None, marked) tuples.
        """
        if NON_PAYMENT_PATTERN.search(text):
            return []

        found = []
        for regex in (self._prefix_re, self._suffix_re):
            for match in regex.finditer(text):
                amount = self.amounts.to_float(match.group('number'))
                if amount is not None:
                    found.append((amount, self.currencies.canonical(match.group('symbol')), True))
            if found:
                return found

        for match in self._peso_re.finditer(text):
            amount = self.amounts.to_float(match.group('number'))
            if amount is not None:
                found.append((amount, 'PHP' if self.currencies.is_supported('PHP') else None, True))
        if found:
            return found

        if not AMOUNT_LABEL_PATTERN.search(text):
            return []
        if self.dates.has_date(text) or any(p.search(text) for p in REFERENCE_PATTERNS):
            return []

        numbers = self._number_re.findall(text)
        if numbers:
            amount = self.amounts.to_float(numbers[-1])
            if amount is not None:
                return [(amount, None, False)]
        return []

    def find_reference(self, lines: Sequence[TextLine]) -> Optional[str]:
        for line in lines:
            for pattern in REFERENCE_PATTERNS:
                for match in pattern.finditer(line.text):
                    candidate = ' '.join(match.group(1).split())
                    if self.references.is_valid(candidate):
                        return candidate
        return None

    def find_sender(self, lines: Sequence[TextLine]) -> Tuple[Optional[str], Optional[str]]:
        """Return (name, phone) of the payer, from labeled sender lines first."""
        name, phone = None, None
        for line in lines:
            match = SENDER_PATTERN.match(line.text)
            if match:
                value = match.group(1)
                phone = phone or find_phone(value)
                name = name or clean_name(value)

        if phone is None:
            for line in lines:
                if RECIPIENT_PATTERN.search(line.text):
                    continue
                phone = find_phone(line.text)
                if phone:
                    break
        return name, phone

    def find_timestamp(self, lines: Sequence[TextLine]) -> Optional[str]:
        for line in lines:
            timestamp = self.dates.extract_timestamp(line.text)
            if timestamp:
                return timestamp
        return None


class VisionFieldGrammar:
    """
    Reads a payment fact from the vision model's field answers.

    The fact's confidence is the model's score for the amount answer;
    without an amount answer there is no fact.

    Example:
        >>> facts = VisionFieldGrammar().parse(vision_result)
        >>> facts[0].reference
        'REF123'
    """

    def __init__(
        self,
        amounts: Optional[AmountNormalizer] = None,
        currencies: Optional[CurrencyNormalizer] = None,
        methods: Optional[MethodNormalizer] = None,
        dates: Optional[DateNormalizer] = None,
        references: Optional[ReferenceValidator] = None
    ) -> None:
        self.amounts = amounts or AmountNormalizer()
        self.currencies = currencies or CurrencyNormalizer()
        self.methods = methods or MethodNormalizer()
        self.dates = dates or DateNormalizer()
        self.references = references or ReferenceValidator()

    def parse(self, result: VisionRecognition) -> List[PaymentFact]:
        amount_field = result.get('amount')
        if amount_field is None:
            return []

        amount = self.amounts.extract_amount(amount_field.value)
        if amount is None:
            logger.debug(f"Vision amount answer not numeric: '{amount_field.value}'")
            return []

        method = self._method(result)
        currency = (
            self.currencies.detect(amount_field.value)
            or self._answer_currency(result)
            or self.methods.currency_for(method)
        )

        reference = self._value(result, 'reference_number')
        if reference and not self.references.is_valid(reference):
            reference = None

        sender_raw = self._value(result, 'sender_name')
        sender_phone = find_phone(self._value(result, 'sender_phone')) or find_phone(sender_raw)
        timestamp = self.dates.normalize(self._value(result, 'timestamp'))

        return [PaymentFact(
            amount=amount,
            currency=currency,
            confidence=round(amount_field.confidence, 6),
            source=result.recognizer,
            method=method,
            sender_name=clean_name(sender_raw),
            sender_phone=sender_phone,
            reference=' '.join(reference.split()) if reference else None,
            timestamp=timestamp,
        )]

    @staticmethod
    def _value(result: VisionRecognition, name: str) -> Optional[str]:
        answer = result.get(name)
        return answer.value if answer else None

    def _answer_currency(self, result: VisionRecognition) -> Optional[str]:
        value = self._value(result, 'currency')
        return self.currencies.canonical(value) or self.currencies.detect(value)

    def _method(self, result: VisionRecognition) -> Optional[str]:
        value = self._value(result, 'payment_method')
        return self.methods.detect(value) or (value.lower() if value else None)
