"""
Data Normalizers Module.

This module provides normalization for the values found on payment
screenshots:
    - Amounts (thousand separators, comma decimals, currency noise)
    - Currencies (symbols and codes to ISO codes)
    - Payment methods (wallet and bank keywords)
    - Timestamps

Author: ML Engineering Team
"""

import re
from datetime import datetime
from typing import Dict, List, Optional

from dateutil import parser as date_parser

from payproof.config import get_config
from payproof.utils.logger import get_logger

logger = get_logger(__name__)

# Amount with optional thousand separators and up to two decimals.
NUMBER_PATTERN = r'\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:[.,]\d{1,2})?'

DEFAULT_CURRENCIES = {
    'PHP': {'symbols': ['₱', 'PHP', 'Php']},
    'MYR': {'symbols': ['RM', 'MYR']},
}


class AmountNormalizer:
    """
    Normalizes amount strings to floats.

    Example:
        >>> normalizer = AmountNormalizer()
        >>> normalizer.to_float("₱1,234.50")
        1234.5
        >>> normalizer.to_float("RM 1.234,50")
        1234.5
    """

    def __init__(self, currency_symbols: Optional[List[str]] = None) -> None:
        if currency_symbols is None:
            currencies = get_config("payment.currencies", DEFAULT_CURRENCIES)
            currency_symbols = [s for entry in currencies.values() for s in entry.get('symbols', [])]
            currency_symbols += list(currencies.keys())
        # Longest first so "PHP" is stripped before "P"-like fragments
        self.currency_symbols = sorted(set(currency_symbols), key=len, reverse=True)
        self._number_re = re.compile(NUMBER_PATTERN)

    def normalize(self, amount_str: Optional[str]) -> Optional[str]:
        """
        Normalize an amount string to "1234.56" form.

        Args:
            amount_str: Raw amount text (e.g., "₱1,234.56").

        Returns:
            Normalized string with two decimals, or None.
        """
        if not amount_str:
            return None

        cleaned = self._clean_amount_string(amount_str)
        if not cleaned:
            return None

        cleaned = self._handle_comma_decimal(cleaned)
        cleaned = cleaned.replace(',', '')

        try:
            return f"{float(cleaned):.2f}"
        except ValueError:
            logger.debug(f"Could not parse amount: {amount_str}")
            return None

    def to_float(self, amount_str: Optional[str]) -> Optional[float]:
        normalized = self.normalize(amount_str)
        return float(normalized) if normalized is not None else None

    def extract_amount(self, text: Optional[str]) -> Optional[float]:
        """
        Find the first amount-looking number in free text.

        Example:
            >>> normalizer.extract_amount("Php1,500.50 on 05/01/2026")
            1500.5
        """
        if not text:
            return None
        stripped = self._strip_symbols(text)
        match = self._number_re.search(stripped)
        return self.to_float(match.group(0)) if match else None

    def _strip_symbols(self, text: str) -> str:
        for symbol in self.currency_symbols:
            if symbol.isalpha():
                text = re.sub(rf'(?<![A-Za-z]){re.escape(symbol)}(?![A-Za-z])', ' ', text, flags=re.IGNORECASE)
            else:
                text = text.replace(symbol, ' ')
        return text

    def _clean_amount_string(self, amount_str: str) -> str:
        amount_str = self._strip_symbols(' '.join(amount_str.split()))
        return re.sub(r'[^\d,.]', '', amount_str)

    def _handle_comma_decimal(self, amount_str: str) -> str:
        """
        Treat a single trailing comma group of at most two digits as the
        decimal separator ("1.234,50" -> "1234.50").
        """
        if amount_str.count(',') != 1:
            return amount_str

        comma_pos = amount_str.rfind(',')
        if comma_pos > amount_str.rfind('.'):
            after_comma = amount_str[comma_pos + 1:]
            if 0 < len(after_comma) <= 2 and after_comma.isdigit():
                amount_str = amount_str.replace('.', '').replace(',', '.')
        return amount_str


class CurrencyNormalizer:
    """
    Maps currency symbols and codes to ISO codes.

    Attributes:
        default_currency: Code assumed when nothing on the image says otherwise
        codes: Supported ISO codes

    Example:
        >>> normalizer = CurrencyNormalizer()
        >>> normalizer.detect("Total RM 45.00")
        'MYR'
        >>> normalizer.canonical("₱")
        'PHP'
    """

    def __init__(
        self,
        currencies: Optional[Dict[str, Dict]] = None,
        default_currency: Optional[str] = None
    ) -> None:
        currencies = currencies or get_config("payment.currencies", DEFAULT_CURRENCIES)
        self.default_currency = (default_currency or get_config("payment.default_currency", "PHP")).upper()

        self.codes = {code.upper() for code in currencies}
        self._symbol_map: Dict[str, str] = {}
        for code, entry in currencies.items():
            self._symbol_map[code.upper()] = code.upper()
            for symbol in entry.get('symbols', []):
                self._symbol_map[symbol.upper()] = code.upper()

        self.symbols = sorted(self._symbol_map, key=len, reverse=True)
        alternatives = '|'.join(re.escape(s) for s in self.symbols)
        self._detect_re = re.compile(rf'(?<![A-Za-z])({alternatives})(?![A-Za-z])', re.IGNORECASE)

    @property
    def symbol_alternation(self) -> str:
        """Regex alternation of every known symbol, longest first."""
        return '|'.join(re.escape(s) for s in self.symbols)

    def canonical(self, value: Optional[str]) -> Optional[str]:
        """Return the ISO code for a symbol or code, or None if unknown."""
        if not value:
            return None
        return self._symbol_map.get(value.strip().upper())

    def detect(self, text: Optional[str]) -> Optional[str]:
        """Return the code of the first currency marker found in text."""
        if not text:
            return None
        match = self._detect_re.search(text)
        return self.canonical(match.group(1)) if match else None

    def is_supported(self, code: str) -> bool:
        return code.upper() in self.codes


class MethodNormalizer:
    """
    Recognizes the wallet or bank named on a screenshot.

    Example:
        >>> MethodNormalizer().detect("Sent via GCash")
        'gcash'
    """

    def __init__(self, methods: Optional[Dict[str, Dict]] = None) -> None:
        methods = methods or get_config("payment.methods", {})
        self.methods = methods
        self._patterns = []
        for method, entry in methods.items():
            for keyword in entry.get('keywords', []):
                pattern = re.compile(rf'(?<![a-z0-9]){re.escape(keyword.lower())}(?![a-z0-9])')
                self._patterns.append((len(keyword), method, pattern))
        self._patterns.sort(key=lambda item: item[0], reverse=True)

    def detect(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        lowered = text.lower()
        for _, method, pattern in self._patterns:
            if pattern.search(lowered):
                return method
        return None

    def currency_for(self, method: Optional[str]) -> Optional[str]:
        """Currency implied by a wallet or bank, if it only operates in one."""
        if not method or method not in self.methods:
            return None
        return self.methods[method].get('currency')


class DateNormalizer:
    """
    Normalizes transaction timestamps.

    Explicit formats are tried first, then dateutil's fuzzy parser.

    Example:
        >>> DateNormalizer().normalize("Jan 5, 2026 3:04 PM")
        '2026-01-05T15:04:00'
    """

    TIME_SUFFIX = r'(?:[,\s]+(?:at\s+)?\d{1,2}:\d{2}(?::\d{2})?\s*(?:[AaPp][Mm])?)?'
    DATE_PATTERNS = [
        r'\b\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}\b',
        r'\b\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}\b',
        r'\b(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}',
        r'\b\d{1,2}(?:st|nd|rd|th)?\s+(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?,?\s+\d{4}',
    ]

    def __init__(self) -> None:
        self.output_format = get_config("payment.timestamp.output_format", "%Y-%m-%dT%H:%M:%S")
        self.input_formats = get_config(
            "payment.timestamp.input_formats",
            [
                "%b %d, %Y %I:%M %p",
                "%B %d, %Y %I:%M %p",
                "%d %b %Y %I:%M %p",
                "%d %b %Y, %H:%M",
                "%m/%d/%Y %I:%M %p",
                "%d/%m/%Y %H:%M",
                "%Y-%m-%d %H:%M:%S",
                "%Y-%m-%d",
            ]
        )
        self._patterns = [
            re.compile(pattern + self.TIME_SUFFIX, re.IGNORECASE) for pattern in self.DATE_PATTERNS
        ]

    def normalize(self, date_str: Optional[str]) -> Optional[str]:
        if not date_str:
            return None

        date_str = ' '.join(date_str.split())
        date_str = re.sub(r'(\d+)(st|nd|rd|th)\b', r'\1', date_str, flags=re.IGNORECASE)

        parsed = self._try_explicit_formats(date_str) or self._try_dateutil_parser(date_str)
        if parsed is None:
            logger.debug(f"Could not parse timestamp: {date_str}")
            return None
        return parsed.strftime(self.output_format)

    def has_date(self, text: str) -> bool:
        return any(p.search(text) for p in self._patterns)

    def extract_timestamp(self, text: str) -> Optional[str]:
        """Normalize the first date (with optional time) found in text."""
        for pattern in self._patterns:
            match = pattern.search(text)
            if match:
                normalized = self.normalize(match.group(0))
                if normalized:
                    return normalized
        return None

    def _try_explicit_formats(self, date_str: str) -> Optional[datetime]:
        for fmt in self.input_formats:
            try:
                return datetime.strptime(date_str, fmt)
            except ValueError:
                continue
        return None

    def _try_dateutil_parser(self, date_str: str) -> Optional[datetime]:
        try:
            return date_parser.parse(date_str, fuzzy=True)
        except (ValueError, OverflowError):
            try:
                return date_parser.parse(date_str, dayfirst=True, fuzzy=True)
            except (ValueError, OverflowError):
                return None
