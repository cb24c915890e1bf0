"""Chain-of-Spreadsheet question answering over compressed workbooks."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import CostModel, QaSettings
from .models import (
    ChainOfSpreadsheetResponse,
    DetectedTable,
    QuestionAnsweringTrace,
    ReasoningTrace,
    TableDetectionTrace,
    WorkbookContext,
)
from .pipeline import WorkbookCompressor
from .ports import ActivitySink, ChatCompletion, CostLedger, LoadOptions, TableDetector, WorkbookLoader
from .table_detection import build_detection_prompt
from .utils import estimate_tokens


logger = logging.getLogger(__name__)

FULL_CONTEXT_LABEL = "Full spreadsheet context"
NO_ANSWER = "Unable to generate answer"
ANSWER_INSTRUCTIONS = (
    "Provide a clear, concise answer based only on the data shown. "
    "If the data doesn't contain the answer, say so."
)


@dataclass
class _Answer:
    text: str
    prompt: str
    raw: str
    tokens: int
    cost: float
    duration_ms: float


def detection_hint(question: str) -> str:
    return f"Focus on tables that might contain information relevant to: {question}"


def select_table(tables: List[DetectedTable]) -> Optional[DetectedTable]:
    """Highest confidence wins; the earliest table wins ties."""
    if not tables:
        return None
    return max(tables, key=lambda table: table.confidence)


def extract_table_content(workbook: WorkbookContext, table: DetectedTable) -> str:
    worksheet = workbook.sheet(table.sheet_name)
    if worksheet is None:
        logger.warning("Worksheet %s not found", table.sheet_name)
        return ""
    lines = [f"Table: {table.a1_range()}"]
    if table.description:
        lines.append(f"Description: {table.description}")
    lines.append("Content:")
    for cell in worksheet.non_empty_cells():
        if table.contains(cell.address):
            lines.append(f"{cell.address.label}: {cell.text}")
    return "\n".join(lines) + "\n"


def table_answer_prompt(question: str, table: DetectedTable, table_content: str) -> str:
    return (
        f"Based on the following table data, answer this question: {question}\n\n"
        f"Table Location: {table.a1_range()}\n"
        f"{table_content}\n"
        f"{ANSWER_INSTRUCTIONS}"
    )


def full_context_prompt(question: str, compressed_text: str) -> str:
    return (
        f"Based on the following spreadsheet data, answer this question: {question}\n\n"
        f"{compressed_text}\n\n"
        f"{ANSWER_INSTRUCTIONS}"
    )


def _check_cancelled(cancel_event: Optional[Any], phase: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise asyncio.CancelledError(f"Chain-of-Spreadsheet cancelled before {phase}")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


class ChainOfSpreadsheet:
    def __init__(
        self,
        loader: WorkbookLoader,
        detector: TableDetector,
        chat: ChatCompletion,
        compressor: Optional[WorkbookCompressor] = None,
        cost_ledger: Optional[CostLedger] = None,
        activity_sink: Optional[ActivitySink] = None,
        settings: Optional[QaSettings] = None,
        cost_model: Optional[CostModel] = None,
    ) -> None:
        self.loader = loader
        self.detector = detector
        self.chat = chat
        self.compressor = compressor or WorkbookCompressor()
        self.cost_ledger = cost_ledger
        self.activity_sink = activity_sink
        self.settings = settings or QaSettings()
        self.cost_model = cost_model or CostModel()

    async def ask(
        self,
        file_path: str,
        question: str,
        strategy: Optional[str] = None,
        include_trace: Optional[bool] = None,
        cancel_event: Optional[Any] = None,
    ) -> ChainOfSpreadsheetResponse:
        async def load() -> WorkbookContext:
            options = LoadOptions(include_styles=True, include_formulas=False)
            return await asyncio.to_thread(self.loader.load, file_path, options)

        return await self._cascade(load, question, strategy, include_trace, cancel_event, source=file_path)

    async def ask_workbook(
        self,
        workbook: WorkbookContext,
        question: str,
        strategy: Optional[str] = None,
        include_trace: Optional[bool] = None,
        cancel_event: Optional[Any] = None,
    ) -> ChainOfSpreadsheetResponse:
        async def load() -> WorkbookContext:
            return workbook

        return await self._cascade(load, question, strategy, include_trace, cancel_event, source=workbook.name)

    async def _cascade(
        self,
        load: Callable[[], Awaitable[WorkbookContext]],
        question: str,
        strategy: Optional[str],
        include_trace: Optional[bool],
        cancel_event: Optional[Any],
        source: str,
    ) -> ChainOfSpreadsheetResponse:
        started = time.perf_counter()
        with_trace = self.settings.include_trace if include_trace is None else include_trace
        strategy_name = strategy or self.settings.default_strategy
        try:
            self.compressor.config.strategy(strategy_name)

            _check_cancelled(cancel_event, "loading")
            workbook = await load()

            _check_cancelled(cancel_event, "compression")
            compression = await asyncio.to_thread(
                self.compressor.compress,
                workbook,
                strategy_name,
                None,
                True,
                False,
            )
            if not compression.success:
                logger.warning("Compression failed for %s: %s", source, compression.error)
                return ChainOfSpreadsheetResponse(
                    success=False,
                    error="Failed to compress spreadsheet",
                    duration_ms=_elapsed_ms(started),
                )
            compressed_text = compression.compressed_text

            _check_cancelled(cancel_event, "table detection")
            hint = detection_hint(question)
            detection_started = time.perf_counter()
            detection = await self.detector.detect(compressed_text, hint)
            detection_ms = _elapsed_ms(detection_started)
            detection_trace = None
            if with_trace:
                detection_trace = TableDetectionTrace(
                    compressed_text=compressed_text,
                    prompt=build_detection_prompt(compressed_text, hint),
                    response=detection.raw_response or "",
                    tables_detected=len(detection.tables),
                    duration_ms=detection_ms,
                    tokens_used=detection.tokens_used,
                    cost=detection.estimated_cost,
                )

            table = select_table(detection.tables)
            if table is None:
                logger.warning("No relevant tables found for question: %s", question)
                _check_cancelled(cancel_event, "answering")
                answer = await self._answer(full_context_prompt(question, compressed_text))
                total_cost = detection.estimated_cost + answer.cost
                self._record_cost(
                    "chain_of_spreadsheet_full_context_answer",
                    total_cost,
                    {"question": question, "context": "full_spreadsheet", "tokens": answer.tokens},
                )
                detected = FULL_CONTEXT_LABEL
                context_text = compressed_text
            else:
                _check_cancelled(cancel_event, "table extraction")
                table_content = extract_table_content(workbook, table)
                _check_cancelled(cancel_event, "answering")
                answer = await self._answer(table_answer_prompt(question, table, table_content))
                total_cost = detection.estimated_cost + answer.cost
                self._record_cost(
                    "chain_of_spreadsheet_answer",
                    answer.cost,
                    {"question": question, "table_range": table.a1_range(), "tokens": answer.tokens},
                )
                detected = table.a1_range()
                context_text = table_content

            duration_ms = _elapsed_ms(started)
            trace = None
            if with_trace and detection_trace is not None:
                trace = ReasoningTrace(
                    table_detection=detection_trace,
                    question_answering=QuestionAnsweringTrace(
                        table_context=context_text,
                        prompt=answer.prompt,
                        response=answer.raw,
                        duration_ms=answer.duration_ms,
                        tokens_used=answer.tokens,
                        cost=answer.cost,
                    ),
                    total_duration_ms=duration_ms,
                    total_cost=total_cost,
                )

            self._publish(
                {
                    "question": question,
                    "source": source,
                    "tables_detected": len(detection.tables),
                    "selected_table": detected,
                    "answer": answer.text,
                    "total_duration_ms": duration_ms,
                    "total_cost": total_cost,
                }
            )
            logger.info("Answered question against %s in %.1f ms (cost: $%.4f)", detected, duration_ms, total_cost)
            return ChainOfSpreadsheetResponse(
                success=True,
                answer=answer.text,
                detected_table=detected,
                trace=trace,
                total_cost=total_cost,
                duration_ms=duration_ms,
            )
        except Exception as exc:
            logger.exception("Error in Chain-of-Spreadsheet execution for %s", source)
            return ChainOfSpreadsheetResponse(
                success=False,
                error=str(exc),
                duration_ms=_elapsed_ms(started),
            )

    async def _answer(self, prompt: str) -> _Answer:
        started = time.perf_counter()
        raw = await self.chat.complete(
            prompt,
            temperature=self.settings.answer_temperature,
            max_tokens=self.settings.answer_max_tokens,
            system_prompt=self.settings.system_prompt,
        )
        raw = raw or ""
        input_tokens = estimate_tokens(prompt)
        output_tokens = estimate_tokens(raw)
        return _Answer(
            text=raw or NO_ANSWER,
            prompt=prompt,
            raw=raw,
            tokens=input_tokens + output_tokens,
            cost=self.cost_model.cost(input_tokens, output_tokens),
            duration_ms=_elapsed_ms(started),
        )

    def _record_cost(self, action: str, cost: float, metadata: Dict[str, Any]) -> None:
        if self.cost_ledger is None:
            return
        try:
            self.cost_ledger.record(action, cost, metadata)
        except Exception:
            logger.warning("Cost ledger rejected %s entry", action, exc_info=True)

    def _publish(self, payload: Dict[str, Any]) -> None:
        if self.activity_sink is None:
            return
        try:
            self.activity_sink.publish("chain_of_spreadsheet", payload)
        except Exception:
            logger.warning("Activity sink rejected chain_of_spreadsheet event", exc_info=True)
