from __future__ import annotations

import asyncio
import threading
import time

import pytest

from spreadsheet_llm.config import CompressorConfig
from spreadsheet_llm.errors import ConfigurationError
from spreadsheet_llm.models import Dimensions
from spreadsheet_llm.pipeline import (
    CompressionPipeline,
    PipelineBuilder,
    WorkbookCompressor,
    optimal_pipeline,
    strategy_pipeline,
)
from spreadsheet_llm.serializer import VanillaSerializer
from spreadsheet_llm.steps.base import PipelineContext, PipelineStep

from sheet_helpers import numeric_block, sales_grid, sheet_from_grid, sheet_from_labels, workbook


AGGRESSIVE_WARNING = "Aggressive compression applied - some context may be lost"


def _metrics_book(rows=200, cols=5):
    return workbook(sheet_from_grid("Metrics", numeric_block(rows, cols), bold_first_row=True))


def _sales_book(rows=40):
    return workbook(sheet_from_grid("Sales", sales_grid(rows), bold_first_row=True, formats={3: "$#,##0.00"}))


class MarkerStep(PipelineStep):
    name = "marker"

    def run(self, context: PipelineContext) -> None:
        context.extras["marked"] = True
        context.compressed_text = "marked"


class TestBuilder:
    def test_empty_builder_is_rejected(self):
        with pytest.raises(ConfigurationError):
            PipelineBuilder().build()
        with pytest.raises(ConfigurationError):
            CompressionPipeline([])

    def test_step_returning_false_halts_pipeline(self):
        pipeline = (
            PipelineBuilder("gated")
            .add_step(lambda context: False, name="gate")
            .add_vanilla_serialization()
            .build()
        )
        result = pipeline.run(_metrics_book(rows=5))
        assert not result.success
        assert result.error == "Step 'gate' reported failure"
        assert list(result.step_timings) == ["gate"]
        assert result.compressed_text == ""

    def test_raising_step_reports_its_error(self):
        def explode(context):
            raise RuntimeError("boom")

        result = PipelineBuilder().add_step(explode).add_vanilla_serialization().build().run(_metrics_book(rows=5))
        assert not result.success
        assert result.error == "boom"
        assert list(result.step_timings) == ["explode"]

    def test_skeleton_without_anchors_fails(self):
        result = PipelineBuilder().add_skeleton_extraction().build().run(_metrics_book(rows=5))
        assert not result.success
        assert result.error == "Skeleton extraction requires anchor detection to run first"

    def test_custom_step_instance(self):
        result = PipelineBuilder().add_step(MarkerStep()).build().run(_metrics_book(rows=5))
        assert result.success
        assert result.compressed_text == "marked"

    def test_text_falls_back_to_vanilla_serialization(self):
        book = _metrics_book(rows=5)
        result = PipelineBuilder().add_step(lambda context: None, name="noop").build().run(book)
        assert result.success
        assert result.compressed_text == VanillaSerializer().serialize(book)

    def test_repeated_step_names_get_distinct_timings(self):
        result = (
            PipelineBuilder()
            .add_vanilla_serialization()
            .add_vanilla_serialization()
            .build()
            .run(_metrics_book(rows=5))
        )
        assert list(result.step_timings) == ["vanilla_serialization", "vanilla_serialization_2"]

    def test_structural_pipeline_artifacts(self):
        result = (
            PipelineBuilder()
            .add_anchor_detection(k=1)
            .add_skeleton_extraction()
            .add_format_aggregation()
            .build()
            .run(_metrics_book(rows=30, cols=3))
        )
        assert result.success
        assert [artifact.name for artifact in result.artifacts] == ["anchors", "format_aggregation"]
        assert result.compressed_text.startswith("## Sheet: Metrics\n")
        assert "#,##0.00:A2-C3" in result.compressed_text

    def test_cancellation_before_next_step(self):
        cancel = threading.Event()

        def cancel_after(context):
            cancel.set()

        pipeline = PipelineBuilder().add_step(cancel_after).add_vanilla_serialization().build()
        with pytest.raises(asyncio.CancelledError):
            pipeline.run(_metrics_book(rows=5), cancel_event=cancel)


class TestPresets:
    def test_none_strategy_is_plain_serialization(self):
        result = WorkbookCompressor().compress(_metrics_book(rows=10), strategy="none")
        assert result.success
        assert result.strategy == "none"
        assert list(result.step_timings) == ["vanilla_serialization"]
        assert result.warnings == []
        assert "A11,45" in result.compressed_text

    def test_balanced_keeps_header_neighbourhood(self):
        result = WorkbookCompressor().compress(_metrics_book(), strategy="balanced")
        assert result.success
        assert list(result.step_timings) == ["anchor_detection", "skeleton_extraction", "vanilla_serialization"]
        assert result.compression_ratio > 1.0
        assert result.statistics.original_cell_count == 201 * 5
        assert result.statistics.compressed_cell_count == 20
        assert result.statistics.sheets_processed == 1
        assert "A5," not in result.compressed_text
        assert result.warnings == []

    def test_balanced_warns_when_little_is_removed(self):
        result = WorkbookCompressor().compress(_sales_book(), strategy="balanced")
        assert result.warnings == [
            "Sheet 'Sales' compression ratio 0.00 is below target 0.50",
            "Low compression ratio achieved: 0.00%",
        ]

    def test_balanced_keeps_a_sheet_without_anchors(self):
        grid = [[row * 4 + col for col in range(4)] for row in range(20)]
        result = WorkbookCompressor().compress(workbook(sheet_from_grid("N", grid)), strategy="balanced")
        assert result.success
        assert "(empty worksheet)" not in result.compressed_text
        assert "A20,76" in result.compressed_text
        assert result.statistics.compressed_cell_count == 80
        assert "No structural anchors found in sheet 'N'; all 80 cells kept" in result.warnings

    def test_aggressive_adds_fixed_warning(self):
        result = WorkbookCompressor().compress(_metrics_book(), strategy="aggressive")
        assert result.success
        assert result.warnings == [AGGRESSIVE_WARNING]
        assert result.statistics.compressed_cell_count == 10
        assert "$" not in result.compressed_text

    def test_statistics_count_populated_cells_only(self):
        sparse = workbook(sheet_from_labels("S", {"A1": "x", "C9": 4}, dimensions=Dimensions(400, 400)))
        stats = WorkbookCompressor().compress(sparse, strategy="none").statistics
        assert stats.original_cell_count == 2
        assert stats.compressed_cell_count == 2
        assert stats.compression_ratio == 0.0

    def test_strategy_names_are_case_insensitive(self):
        result = WorkbookCompressor().compress(_metrics_book(rows=5), strategy="Balanced")
        assert result.strategy == "balanced"

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError):
            WorkbookCompressor().compress(_metrics_book(rows=5), strategy="extreme")

    def test_non_positive_limit(self):
        with pytest.raises(ConfigurationError):
            WorkbookCompressor().compress(_metrics_book(rows=5), target_token_limit=0)

    def test_formatting_can_be_dropped(self):
        pipeline = strategy_pipeline(CompressorConfig.default().strategy("none"), include_formatting=False)
        result = pipeline.run(_sales_book(rows=3))
        assert "$#,##0.00" not in result.compressed_text
        assert "[bold]" not in result.compressed_text


class TestTokenBudget:
    def test_within_limit_is_left_alone(self):
        result = WorkbookCompressor().compress(_metrics_book(rows=50), target_token_limit=100_000)
        assert result.strategy == "balanced"
        assert result.warnings == []

    def test_escalates_to_aggressive(self):
        result = WorkbookCompressor().compress(_sales_book(), strategy="balanced", target_token_limit=50)
        assert result.strategy == "aggressive"
        assert any(
            w.startswith("Compressed content (") and w.endswith("exceeds target limit (50 tokens)")
            for w in result.warnings
        )
        assert "Escalated from balanced to aggressive compression to meet the token limit" in result.warnings
        assert AGGRESSIVE_WARNING in result.warnings
        assert "... (truncated at 12 cells)" in result.compressed_text

    def test_aggressive_over_limit_only_warns(self):
        result = WorkbookCompressor().compress(_sales_book(), strategy="aggressive", target_token_limit=5)
        assert result.strategy == "aggressive"
        assert not any(w.startswith("Escalated") for w in result.warnings)
        assert result.warnings[-1].endswith("exceeds target limit (5 tokens)")

    def test_config_default_limit_applies(self):
        config = CompressorConfig.default()
        config.default_token_limit = 50
        result = WorkbookCompressor(config).compress(_sales_book())
        assert result.strategy == "aggressive"


class TestOptimalPipeline:
    def test_small_or_sparse_books_use_inverted_index(self):
        sparse = workbook(sheet_from_labels("S", {"A1": "x", "B2": "x"}, dimensions=Dimensions(400, 400)))
        pipeline = optimal_pipeline(sparse)
        assert pipeline.name == "lightweight"
        result = pipeline.run(sparse)
        assert result.compressed_text == '## Sheet: S\n{"x":["A1","B2"]}'

    def test_medium_dense_books_use_aggregation(self):
        assert optimal_pipeline(_metrics_book(rows=120, cols=100)).name == "standard"

    def test_large_dense_books_use_structural_compression(self):
        assert optimal_pipeline(_metrics_book(rows=1000, cols=100)).name == "high_compression"


def test_fifty_thousand_cells_under_a_second():
    book = _metrics_book(rows=5000, cols=10)
    assert book.statistics.non_empty_cells > 50_000
    started = time.perf_counter()
    result = WorkbookCompressor().compress(book, strategy="balanced")
    elapsed = time.perf_counter() - started
    assert result.success
    assert result.compression_ratio > 1.0
    assert elapsed < 1.0
