from __future__ import annotations

from datetime import datetime, time

import pytest

from spreadsheet_llm.recognizers import (
    DEFAULT_RECOGNIZERS,
    NumberRecognizer,
    TypeRecognizer,
    recognize_type,
    resolve_recognizers,
)


class SkuRecognizer(TypeRecognizer):
    name = "Sku"
    token = "SKU"

    def matches_format(self, fmt: str) -> bool:
        return False

    def matches_value(self, value) -> bool:
        return isinstance(value, str) and value.startswith("SKU-")


@pytest.mark.parametrize(
    "value, fmt, token",
    [
        (0.25, "0.00%", "0.00%"),
        (10, "$#,##0.00", "Currency"),
        (5, "_($* #,##0.00_)", "_($* #,##0.00_)"),
        (45000, "yyyy-mm-dd", "yyyy-mm-dd"),
        (0.5, "hh:mm:ss", "hh:mm:ss"),
        (0.5, "mm/dd/yyyy hh:mm", "hh:mm:ss"),
        (1200, "0.00E+00", "0.00E+00"),
        (0.75, "# ??/??", "# ??/??"),
        (12, "#,##0", "#,##0.00"),
    ],
)
def test_format_driven_recognition(value, fmt, token):
    assert recognize_type(value, fmt) == token


@pytest.mark.parametrize(
    "value, token",
    [
        ("2024-01-15", "yyyy-mm-dd"),
        ("15 Jan 2024", "yyyy-mm-dd"),
        (datetime(2024, 1, 1), "yyyy-mm-dd"),
        ("12%", "0.00%"),
        ("$1,200.50", "Currency"),
        ("1.5E+03", "0.00E+00"),
        ("13:45", "hh:mm:ss"),
        (time(9, 30), "hh:mm:ss"),
        ("3/4", "# ??/??"),
        ("(1,234.00)", "_($* #,##0.00_)"),
        ("yes", "Boolean"),
        (True, "Boolean"),
        (1, "#,##0.00"),
        ("1,234", "#,##0.00"),
    ],
)
def test_value_driven_recognition(value, token):
    assert recognize_type(value, None) == token


def test_plain_text_is_unrecognized():
    assert recognize_type("hello", None) is None
    assert recognize_type(None, None) is None


def test_value_pass_can_be_disabled():
    assert recognize_type(5, None, use_values=False) is None
    assert recognize_type(5, "0.00%", use_values=False) == "0.00%"


def test_numeric_one_is_not_boolean():
    recognizers = resolve_recognizers(["Boolean"])
    assert recognize_type(1, None, recognizers) is None
    assert recognize_type(False, None, recognizers) == "Boolean"


def test_resolve_by_name_and_instance():
    custom = SkuRecognizer()
    resolved = resolve_recognizers(["currency", custom, "Number"])
    assert [r.name for r in resolved] == ["Currency", "Sku", "Number"]
    assert recognize_type("SKU-001", None, resolved) == "SKU"


def test_empty_selection_means_defaults():
    assert resolve_recognizers([]) == list(DEFAULT_RECOGNIZERS)


def test_unknown_recognizer_name():
    with pytest.raises(ValueError):
        resolve_recognizers(["Roman numeral"])


def test_number_format_with_currency_symbol_is_not_plain_number():
    recognizer = NumberRecognizer()
    assert not recognizer.matches_format("$#,##0.00")
    assert recognizer.matches(3.5, None)
