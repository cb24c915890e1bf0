"""Utility helpers for addresses, value parsing and token estimation."""
from __future__ import annotations

import re
from typing import Iterator, Tuple

from dateutil import parser as date_parser


A1_RE = re.compile(r"^([A-Z]+)(\d+)$")
RANGE_RE = re.compile(r"^([A-Z]+\d+):([A-Z]+\d+)$")
NUMBER_RE = re.compile(r"^[-+]?(?:\d+(?:,\d{3})*|\d*)(?:\.\d+)?$")
CURRENCY_SYMBOLS = ("$", "€", "£", "¥", "₹", "₽", "¢")
MONTH_NAME_RE = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\b",
    re.IGNORECASE,
)

CHARS_PER_TOKEN = 4


def column_letter(index: int) -> str:
    if index < 0:
        raise ValueError(f"Column index must be non-negative: {index}")
    letters = ""
    col = index
    while col >= 0:
        letters = chr(ord("A") + col % 26) + letters
        col = col // 26 - 1
    return letters


def column_index(letters: str) -> int:
    if not letters or not letters.isalpha():
        raise ValueError(f"Invalid column letters: {letters!r}")
    value = 0
    for char in letters.upper():
        value = value * 26 + (ord(char) - ord("A") + 1)
    return value - 1


def split_label(label: str) -> Tuple[int, int]:
    """Split an A1 label into zero-based ``(row, col)``."""
    text = (label or "").strip().upper()
    match = A1_RE.match(text)
    if not match:
        raise ValueError(f"Invalid A1 reference: {label!r}")
    row = int(match.group(2)) - 1
    if row < 0:
        raise ValueError(f"Invalid A1 reference: {label!r}")
    return row, column_index(match.group(1))


def join_label(row: int, col: int) -> str:
    if row < 0:
        raise ValueError(f"Row index must be non-negative: {row}")
    return f"{column_letter(col)}{row + 1}"


def parse_range(text: str) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Parse ``A1`` or ``A1:C3`` into zero-based corner coordinates."""
    cleaned = (text or "").strip().upper()
    match = RANGE_RE.match(cleaned)
    if not match:
        start = split_label(cleaned)
        return start, start
    start = split_label(match.group(1))
    end = split_label(match.group(2))
    top, bottom = sorted((start[0], end[0]))
    left, right = sorted((start[1], end[1]))
    return (top, left), (bottom, right)


def iter_range(text: str) -> Iterator[Tuple[int, int]]:
    (top, left), (bottom, right) = parse_range(text)
    for row in range(top, bottom + 1):
        for col in range(left, right + 1):
            yield row, col


def estimate_tokens(text: str) -> int:
    """Approximate token count used for budgets, ratios and cost."""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN


def is_number(value: str) -> bool:
    if not value:
        return False
    text = value.strip()
    if not text or not NUMBER_RE.match(text):
        return False
    return any(ch.isdigit() for ch in text)


def has_currency_symbol(value: str) -> bool:
    return any(symbol in value for symbol in CURRENCY_SYMBOLS)


def is_month_name_date(value: str) -> bool:
    """True for free text such as ``15 Jan 2024`` that names a month."""
    if not value:
        return False
    text = value.strip()
    if not MONTH_NAME_RE.search(text) or not any(ch.isdigit() for ch in text):
        return False
    try:
        date_parser.parse(text, fuzzy=False)
        return True
    except (ValueError, OverflowError, TypeError):
        return False


def format_number(value: float) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        return str(value)
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))
