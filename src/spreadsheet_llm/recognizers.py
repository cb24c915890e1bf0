"""Semantic type recognizers used by format-aware aggregation."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time
import re
from typing import Any, List, Optional, Sequence

from .utils import CURRENCY_SYMBOLS, has_currency_symbol, is_month_name_date, is_number


DATE_PATTERNS = [
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{2}/\d{2}/\d{4}$"),
    re.compile(r"^\d{2}-\d{2}-\d{4}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2}$"),
]
PERCENT_RE = re.compile(r"^-?\d+(\.\d+)?%$")
CURRENCY_RE = re.compile(r"^([$€£¥₹₽¢]\s*)?-?\d+(?:(?:,\d{3})*(?:\.\d+)?|(?:\.\d+))$")
SCIENTIFIC_RE = re.compile(r"^-?\d+(\.\d+)?[eE][+-]?\d+$")
TIME_RE = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?(\s*(AM|PM))?$", re.IGNORECASE)
FRACTION_RE = re.compile(r"^-?\d+\s*/\s*\d+$")
ACCOUNTING_VALUE_RE = re.compile(r"^\(\s*[$€£¥₹₽¢]?\s*\d+(?:,\d{3})*(?:\.\d+)?\s*\)$")

BOOLEAN_WORDS = {
    "true", "false",
    "yes", "no",
    "si", "sí",
    "verdadero", "falso",
    "oui", "non",
    "ja", "nein",
}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class TypeRecognizer(ABC):
    """Maps a raw value and its number format to a semantic type token."""

    name: str = ""
    token: str = ""

    def recognize(self, value: Any, fmt: Optional[str]) -> Optional[str]:
        if fmt and self.matches_format(fmt):
            return self.token
        return None

    def recognize_value(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        if self.matches_value(value):
            return self.token
        return None

    def matches(self, value: Any, fmt: Optional[str]) -> bool:
        return bool(self.recognize(value, fmt) or self.recognize_value(value))

    @abstractmethod
    def matches_format(self, fmt: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def matches_value(self, value: Any) -> bool:
        raise NotImplementedError


class DateRecognizer(TypeRecognizer):
    name = "Date"
    token = "yyyy-mm-dd"

    def matches_format(self, fmt: str) -> bool:
        lowered = fmt.lower()
        has_date = "yy" in lowered or "dd" in lowered or "mmm" in lowered or "m/d" in lowered or "d/m" in lowered
        has_time = "hh" in lowered or "ss" in lowered
        return has_date and not has_time

    def matches_value(self, value: Any) -> bool:
        if isinstance(value, datetime):
            return value.time() == time(0, 0)
        if isinstance(value, date):
            return True
        if not isinstance(value, str):
            return False
        text = value.strip()
        if any(pattern.match(text) for pattern in DATE_PATTERNS):
            return True
        return is_month_name_date(text)


class PercentageRecognizer(TypeRecognizer):
    name = "Percentage"
    token = "0.00%"

    def matches_format(self, fmt: str) -> bool:
        return "%" in fmt

    def matches_value(self, value: Any) -> bool:
        return isinstance(value, str) and bool(PERCENT_RE.match(value.strip()))


class CurrencyRecognizer(TypeRecognizer):
    name = "Currency"
    token = "Currency"

    def matches_format(self, fmt: str) -> bool:
        if fmt.lstrip().startswith("_("):
            return False
        return has_currency_symbol(fmt) or "currency" in fmt.lower()

    def matches_value(self, value: Any) -> bool:
        if not isinstance(value, str):
            return False
        text = value.strip()
        return has_currency_symbol(text) and bool(CURRENCY_RE.match(text))


class ScientificRecognizer(TypeRecognizer):
    name = "Scientific"
    token = "0.00E+00"

    def matches_format(self, fmt: str) -> bool:
        upper = fmt.upper()
        return "E+" in upper or "E-" in upper

    def matches_value(self, value: Any) -> bool:
        return isinstance(value, str) and bool(SCIENTIFIC_RE.match(value.strip()))


class TimeRecognizer(TypeRecognizer):
    name = "Time"
    token = "hh:mm:ss"

    def matches_format(self, fmt: str) -> bool:
        lowered = fmt.lower()
        return "hh" in lowered or "ss" in lowered or lowered.startswith("h:mm") or lowered == "mm:ss"

    def matches_value(self, value: Any) -> bool:
        if isinstance(value, time):
            return True
        return isinstance(value, str) and bool(TIME_RE.match(value.strip()))


class FractionRecognizer(TypeRecognizer):
    name = "Fraction"
    token = "# ??/??"

    def matches_format(self, fmt: str) -> bool:
        return "??/??" in fmt or "# ?/?" in fmt

    def matches_value(self, value: Any) -> bool:
        if not isinstance(value, str):
            return False
        text = value.strip()
        if any(pattern.match(text) for pattern in DATE_PATTERNS):
            return False
        return bool(FRACTION_RE.match(text))


class AccountingRecognizer(TypeRecognizer):
    name = "Accounting"
    token = "_($* #,##0.00_)"

    def matches_format(self, fmt: str) -> bool:
        return "_($" in fmt or fmt.lstrip().startswith("_(") or "accounting" in fmt.lower()

    def matches_value(self, value: Any) -> bool:
        return isinstance(value, str) and bool(ACCOUNTING_VALUE_RE.match(value.strip()))


class BooleanRecognizer(TypeRecognizer):
    name = "Boolean"
    token = "Boolean"

    def matches_format(self, fmt: str) -> bool:
        return fmt.strip().lower() in ("boolean", '"true";"true";"false"')

    def matches_value(self, value: Any) -> bool:
        if isinstance(value, bool):
            return True
        return isinstance(value, str) and value.strip().lower() in BOOLEAN_WORDS


class NumberRecognizer(TypeRecognizer):
    name = "Number"
    token = "#,##0.00"

    def matches_format(self, fmt: str) -> bool:
        if any(symbol in fmt for symbol in CURRENCY_SYMBOLS):
            return False
        return "#,##0" in fmt or fmt.strip() in ("0", "0.00", "#,##0.00", "0.0")

    def matches_value(self, value: Any) -> bool:
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return True
        return isinstance(value, str) and is_number(value)


def default_recognizers() -> List[TypeRecognizer]:
    return [
        DateRecognizer(),
        PercentageRecognizer(),
        CurrencyRecognizer(),
        ScientificRecognizer(),
        TimeRecognizer(),
        FractionRecognizer(),
        AccountingRecognizer(),
        BooleanRecognizer(),
        NumberRecognizer(),
    ]


DEFAULT_RECOGNIZERS: Sequence[TypeRecognizer] = tuple(default_recognizers())


def resolve_recognizers(selection: Sequence[Any]) -> List[TypeRecognizer]:
    """Accept recognizer instances or built-in names; empty means defaults."""
    if not selection:
        return list(DEFAULT_RECOGNIZERS)
    by_name = {recognizer.name.lower(): recognizer for recognizer in DEFAULT_RECOGNIZERS}
    resolved: List[TypeRecognizer] = []
    for item in selection:
        if isinstance(item, TypeRecognizer):
            resolved.append(item)
            continue
        recognizer = by_name.get(_text(item).lower())
        if recognizer is None:
            raise ValueError(f"Unknown type recognizer: {item!r}")
        resolved.append(recognizer)
    return resolved


def recognize_type(
    value: Any,
    fmt: Optional[str],
    recognizers: Sequence[TypeRecognizer] = DEFAULT_RECOGNIZERS,
    use_values: bool = True,
) -> Optional[str]:
    """Format-driven pass first, then value-driven pass when enabled."""
    if fmt:
        for recognizer in recognizers:
            token = recognizer.recognize(value, fmt)
            if token:
                return token
    if use_values:
        for recognizer in recognizers:
            token = recognizer.recognize_value(value)
            if token:
                return token
    return None
