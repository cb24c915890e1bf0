from __future__ import annotations

import asyncio
import threading

import pytest

from spreadsheet_llm.chain import (
    FULL_CONTEXT_LABEL,
    ChainOfSpreadsheet,
    extract_table_content,
    select_table,
)
from spreadsheet_llm.config import CostModel, QaSettings
from spreadsheet_llm.models import CompressionResult, DetectedTable
from spreadsheet_llm.pipeline import WorkbookCompressor
from spreadsheet_llm.table_detection import build_detection_prompt
from spreadsheet_llm.utils import estimate_tokens

from sheet_helpers import (
    FakeChat,
    FakeDetector,
    FakeLoader,
    RecordingLedger,
    RecordingSink,
    sales_grid,
    sheet_from_grid,
    workbook,
)


QUESTION = "Which region sold Product 1?"
SALES_TABLE = DetectedTable("Sales", 1, 1, 3, 2, 0.9, description="Regional sales")
EXPECTED_CONTENT = (
    "Table: Sales!A1:B3\n"
    "Description: Regional sales\n"
    "Content:\n"
    "A1: Region\n"
    "B1: Product\n"
    "A2: Region 0\n"
    "B2: Product 0\n"
    "A3: Region 1\n"
    "B3: Product 1\n"
)


@pytest.fixture
def book():
    return workbook(sheet_from_grid("Sales", sales_grid(5), bold_first_row=True))


def _chain(detector, chat, book=None, **kwargs):
    loader = FakeLoader(book) if book is not None else None
    return ChainOfSpreadsheet(loader=loader, detector=detector, chat=chat, **kwargs)


class FailingCompressor(WorkbookCompressor):
    def compress(self, workbook, strategy="balanced", target_token_limit=None, include_formatting=True, include_formulas=True):
        return CompressionResult(
            compressed_text="",
            original_token_count=0,
            compressed_token_count=0,
            success=False,
            error="skeleton_extraction exploded",
        )


class CancellingDetector(FakeDetector):
    def __init__(self, cancel_event, tables):
        super().__init__(tables)
        self.cancel_event = cancel_event

    async def detect(self, compressed_text, hint=None):
        result = await super().detect(compressed_text, hint)
        self.cancel_event.set()
        return result


def test_extract_table_content(book):
    assert extract_table_content(book, SALES_TABLE) == EXPECTED_CONTENT


def test_extract_table_content_for_unknown_sheet(book):
    assert extract_table_content(book, DetectedTable("Missing", 1, 1, 2, 2, 0.9)) == ""


def test_select_table_prefers_confidence_then_order():
    first = DetectedTable("A", 1, 1, 2, 2, 0.7)
    second = DetectedTable("B", 1, 1, 2, 2, 0.9)
    third = DetectedTable("C", 1, 1, 2, 2, 0.9)
    assert select_table([first, second, third]) is second
    assert select_table([]) is None


@pytest.mark.asyncio
async def test_answers_from_selected_table(book):
    detector = FakeDetector([DetectedTable("Sales", 1, 1, 6, 4, 0.4), SALES_TABLE])
    chat = FakeChat("Region 1")
    ledger = RecordingLedger()
    sink = RecordingSink()
    chain = _chain(detector, chat, cost_ledger=ledger, activity_sink=sink)

    response = await chain.ask_workbook(book, QUESTION)

    assert response.success
    assert response.answer == "Region 1"
    assert response.detected_table == "Sales!A1:B3"
    assert detector.calls[0]["hint"] == f"Focus on tables that might contain information relevant to: {QUESTION}"

    call = chat.calls[0]
    assert call["prompt"].startswith(f"Based on the following table data, answer this question: {QUESTION}")
    assert "Table Location: Sales!A1:B3\n" in call["prompt"]
    assert EXPECTED_CONTENT in call["prompt"]
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 500
    assert call["system_prompt"] == QaSettings().system_prompt
    assert call["json_mode"] is False

    answer_cost = CostModel().cost(estimate_tokens(call["prompt"]), estimate_tokens("Region 1"))
    assert response.total_cost == pytest.approx(0.002 + answer_cost)
    assert ledger.entries[0][0] == "chain_of_spreadsheet_answer"
    assert ledger.entries[0][1] == pytest.approx(answer_cost)
    assert ledger.entries[0][2]["table_range"] == "Sales!A1:B3"

    assert [event for event, _ in sink.events] == ["chain_of_spreadsheet"]
    assert sink.events[0][1]["selected_table"] == "Sales!A1:B3"
    assert sink.events[0][1]["tables_detected"] == 2

    trace = response.trace
    assert trace is not None
    detection = trace.table_detection
    assert detection.tables_detected == 2
    assert detection.prompt == build_detection_prompt(detection.compressed_text, detector.calls[0]["hint"])
    assert detection.compressed_text == detector.calls[0]["text"]
    assert detection.cost == 0.002
    assert trace.question_answering.table_context == EXPECTED_CONTENT
    assert trace.question_answering.response == "Region 1"
    assert trace.total_cost == pytest.approx(response.total_cost)


@pytest.mark.asyncio
async def test_falls_back_to_full_context(book):
    detector = FakeDetector([])
    chat = FakeChat("Nothing relevant")
    ledger = RecordingLedger()
    response = await _chain(detector, chat, cost_ledger=ledger).ask_workbook(book, QUESTION)

    assert response.success
    assert response.detected_table == FULL_CONTEXT_LABEL
    compressed = detector.calls[0]["text"]
    assert chat.calls[0]["prompt"].startswith(f"Based on the following spreadsheet data, answer this question: {QUESTION}")
    assert compressed in chat.calls[0]["prompt"]
    assert response.trace.question_answering.table_context == compressed
    assert ledger.entries[0][0] == "chain_of_spreadsheet_full_context_answer"
    assert ledger.entries[0][1] == pytest.approx(response.total_cost)


@pytest.mark.asyncio
async def test_empty_completion_yields_placeholder(book):
    response = await _chain(FakeDetector([SALES_TABLE]), FakeChat("")).ask_workbook(book, QUESTION)
    assert response.success
    assert response.answer == "Unable to generate answer"


@pytest.mark.asyncio
async def test_trace_can_be_turned_off(book):
    chain = _chain(FakeDetector([SALES_TABLE]), FakeChat("Region 1"))
    response = await chain.ask_workbook(book, QUESTION, include_trace=False)
    assert response.success
    assert response.trace is None

    quiet = _chain(FakeDetector([SALES_TABLE]), FakeChat("Region 1"), settings=QaSettings(include_trace=False))
    assert (await quiet.ask_workbook(book, QUESTION)).trace is None


@pytest.mark.asyncio
async def test_ask_loads_workbook_from_path(book):
    chain = _chain(FakeDetector([SALES_TABLE]), FakeChat("Region 1"), book=book)
    response = await chain.ask("reports/sales.xlsx", QUESTION)
    assert response.success
    assert chain.loader.calls == ["reports/sales.xlsx"]


@pytest.mark.asyncio
async def test_collaborator_failure_is_reported(book):
    sink = RecordingSink()
    ledger = RecordingLedger()
    chain = _chain(FakeDetector(error=RuntimeError("detector down")), FakeChat(), cost_ledger=ledger, activity_sink=sink)
    response = await chain.ask_workbook(book, QUESTION)
    assert not response.success
    assert response.error == "detector down"
    assert response.answer is None
    assert sink.events == []
    assert ledger.entries == []


@pytest.mark.asyncio
async def test_ledger_and_sink_failures_are_tolerated(book):
    chain = _chain(
        FakeDetector([SALES_TABLE]),
        FakeChat("Region 1"),
        cost_ledger=RecordingLedger(fail=True),
        activity_sink=RecordingSink(fail=True),
    )
    response = await chain.ask_workbook(book, QUESTION)
    assert response.success
    assert response.answer == "Region 1"


@pytest.mark.asyncio
async def test_unknown_strategy_fails_before_loading(book):
    chain = _chain(FakeDetector([SALES_TABLE]), FakeChat("x"), book=book)
    response = await chain.ask("sales.xlsx", QUESTION, strategy="extreme")
    assert not response.success
    assert "Unsupported compression strategy" in response.error
    assert chain.loader.calls == []


@pytest.mark.asyncio
async def test_compression_failure(book):
    chat = FakeChat("x")
    chain = _chain(FakeDetector([SALES_TABLE]), chat, compressor=FailingCompressor())
    response = await chain.ask_workbook(book, QUESTION)
    assert not response.success
    assert response.error == "Failed to compress spreadsheet"
    assert chat.calls == []


@pytest.mark.asyncio
async def test_cancelled_before_start(book):
    cancel = threading.Event()
    cancel.set()
    detector = FakeDetector([SALES_TABLE])
    with pytest.raises(asyncio.CancelledError):
        await _chain(detector, FakeChat("x")).ask_workbook(book, QUESTION, cancel_event=cancel)
    assert detector.calls == []


@pytest.mark.asyncio
async def test_cancelled_between_detection_and_answer(book):
    cancel = threading.Event()
    chat = FakeChat("x")
    sink = RecordingSink()
    chain = _chain(CancellingDetector(cancel, [SALES_TABLE]), chat, activity_sink=sink)
    with pytest.raises(asyncio.CancelledError):
        await chain.ask_workbook(book, QUESTION, cancel_event=cancel)
    assert chat.calls == []
    assert sink.events == []
