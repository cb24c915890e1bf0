"""LLM-backed table detection over compressed spreadsheet text."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from .config import CostModel, QaSettings
from .models import DetectedTable, TableDetectionResult
from .ports import ChatCompletion, CostLedger
from .utils import estimate_tokens, split_label


logger = logging.getLogger(__name__)

DEFAULT_SHEET = "Sheet1"
DEFAULT_CONFIDENCE = 0.8
PATTERN_CONFIDENCE = 0.5
PATTERN_DESCRIPTION = "Extracted from text pattern"
TABLE_REFERENCE_RE = re.compile(r"(\w+)!\s*([A-Z]+\d+):([A-Z]+\d+)")
CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

DETECTION_SYSTEM_PROMPT = """You analyze compressed spreadsheet text and locate the tables it contains.
A table is a contiguous rectangular block of cells, usually with headers in its first row or column,
holding related records. Empty rows or columns often separate tables; headers may span several rows;
consistent formats (dates, currency, percentages) down a column are a strong table signal.

Reply with JSON only, in this shape:
{"tables": [{"sheet": "Sheet1", "top": 1, "left": 1, "bottom": 100, "right": 10,
             "confidence": 0.95, "type": "financial", "description": "Monthly revenue by product"}]}

Coordinates are 1-based as shown in Excel: row 1 is the first row, column 1 is column A."""


def build_detection_prompt(compressed_text: str, hint: Optional[str] = None) -> str:
    prompt = f"Analyze this compressed spreadsheet and identify all tables:\n\n{compressed_text}"
    if hint and hint.strip():
        prompt += f"\n\nAdditional context: {hint.strip()}"
    return prompt


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Expected an integer coordinate, got {value!r}")
    return int(value)


def _table_from_json(raw: Dict[str, Any]) -> DetectedTable:
    top, bottom = sorted((_as_int(raw["top"]), _as_int(raw["bottom"])))
    left, right = sorted((_as_int(raw["left"]), _as_int(raw["right"])))
    if top < 1 or left < 1:
        raise ValueError(f"Table coordinates must be 1-based: {raw!r}")
    confidence = raw.get("confidence")
    return DetectedTable(
        sheet_name=str(raw.get("sheet") or DEFAULT_SHEET),
        top_row=top,
        left_column=left,
        bottom_row=bottom,
        right_column=right,
        confidence=float(confidence) if confidence is not None else DEFAULT_CONFIDENCE,
        table_type=raw.get("type"),
        description=raw.get("description"),
    )


def extract_tables_from_text(text: str) -> List[DetectedTable]:
    tables: List[DetectedTable] = []
    for match in TABLE_REFERENCE_RE.finditer(text or ""):
        start_row, start_col = split_label(match.group(2))
        end_row, end_col = split_label(match.group(3))
        tables.append(
            DetectedTable(
                sheet_name=match.group(1),
                top_row=start_row + 1,
                left_column=start_col + 1,
                bottom_row=end_row + 1,
                right_column=end_col + 1,
                confidence=PATTERN_CONFIDENCE,
                description=PATTERN_DESCRIPTION,
            )
        )
    return tables


def parse_detection_response(response: str) -> List[DetectedTable]:
    text = CODE_FENCE_RE.sub("", (response or "").strip())
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Table detection response is not JSON, falling back to range patterns")
        return extract_tables_from_text(text)

    if not isinstance(payload, dict) or not payload.get("tables"):
        logger.warning("No tables detected in table detection response")
        return []

    tables: List[DetectedTable] = []
    for raw in payload["tables"]:
        if not isinstance(raw, dict):
            logger.warning("Skipping malformed table entry: %r", raw)
            continue
        try:
            tables.append(_table_from_json(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed table entry %r: %s", raw, exc)
    return tables


class LlmTableDetector:
    def __init__(
        self,
        chat: ChatCompletion,
        settings: Optional[QaSettings] = None,
        cost_model: Optional[CostModel] = None,
        cost_ledger: Optional[CostLedger] = None,
    ) -> None:
        self.chat = chat
        self.settings = settings or QaSettings()
        self.cost_model = cost_model or CostModel()
        self.cost_ledger = cost_ledger

    async def detect(self, compressed_text: str, hint: Optional[str] = None) -> TableDetectionResult:
        logger.info("Starting table detection for compressed text of length %d", len(compressed_text))
        prompt = build_detection_prompt(compressed_text, hint)
        response = await self.chat.complete(
            prompt,
            temperature=self.settings.detection_temperature,
            max_tokens=self.settings.detection_max_tokens,
            system_prompt=DETECTION_SYSTEM_PROMPT,
            json_mode=True,
        )
        input_tokens = estimate_tokens(DETECTION_SYSTEM_PROMPT + prompt)
        output_tokens = estimate_tokens(response)
        tables = parse_detection_response(response)
        cost = self.cost_model.cost(input_tokens, output_tokens)

        if self.cost_ledger is not None:
            try:
                self.cost_ledger.record("table_detection", cost, {"tokens": input_tokens + output_tokens})
            except Exception:
                logger.warning("Cost ledger rejected table_detection entry", exc_info=True)

        logger.info(
            "Detected %d tables using %d tokens (cost: $%.4f)",
            len(tables),
            input_tokens + output_tokens,
            cost,
        )
        return TableDetectionResult(
            tables=tables,
            tokens_used=input_tokens + output_tokens,
            estimated_cost=cost,
            raw_response=response,
        )
