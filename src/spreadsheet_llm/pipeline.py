"""Compression pipeline, builder, strategy presets and budget escalation."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

from .config import (
    AnchorDetectionOptions,
    CompressorConfig,
    FormatAggregationOptions,
    InvertedIndexOptions,
    SerializationOptions,
    SkeletonExtractionOptions,
    StrategyConfig,
)
from .errors import ConfigurationError
from .models import CompressionResult, CompressionStatistics, WorkbookContext
from .serializer import VanillaSerializer
from .steps.base import FunctionStep, PipelineContext, PipelineStep, StepResult
from .steps.encoding import FormatAggregationStep, InvertedIndexStep, VanillaSerializationStep
from .steps.structural import AnchorDetectionStep, SkeletonExtractionStep
from .utils import estimate_tokens


logger = logging.getLogger(__name__)

LIGHTWEIGHT_SPARSITY = 70.0
LIGHTWEIGHT_MAX_CELLS = 10_000
STANDARD_MAX_CELLS = 100_000


class CompressionPipeline:
    def __init__(self, steps: List[PipelineStep], name: str = "custom") -> None:
        if not steps:
            raise ConfigurationError("A compression pipeline needs at least one step")
        self.steps = list(steps)
        self.name = name

    def run(self, workbook: WorkbookContext, cancel_event: Optional[Any] = None) -> CompressionResult:
        started = time.perf_counter()
        original_text = VanillaSerializer().serialize(workbook, SerializationOptions())
        context = PipelineContext(workbook=workbook)
        timings: Dict[str, float] = {}
        failure: Optional[StepResult] = None

        for step in self.steps:
            if cancel_event is not None and cancel_event.is_set():
                raise asyncio.CancelledError(f"Pipeline '{self.name}' cancelled before step {step.name}")
            result = step.execute(context)
            timings[self._timing_key(timings, step.name)] = result.duration_ms
            if not result.success:
                failure = result
                break

        if failure is None and context.compressed_text is None:
            context.compressed_text = VanillaSerializer().serialize(context.current_workbook())

        compressed_text = context.compressed_text or ""
        result = CompressionResult(
            compressed_text=compressed_text,
            original_token_count=estimate_tokens(original_text),
            compressed_token_count=estimate_tokens(compressed_text),
            step_timings=timings,
            artifacts=list(context.artifacts),
            warnings=list(context.warnings),
            success=failure is None,
            error=failure.error if failure else None,
            strategy=self.name,
        )
        result.statistics = _statistics(workbook, context, started)
        if failure is not None:
            logger.warning("Pipeline %s halted at step %s: %s", self.name, failure.name, failure.error)
        else:
            logger.info(
                "Pipeline %s: %d -> %d tokens in %.1f ms",
                self.name,
                result.original_token_count,
                result.compressed_token_count,
                result.statistics.processing_time_ms,
            )
        return result

    @staticmethod
    def _timing_key(timings: Dict[str, float], name: str) -> str:
        if name not in timings:
            return name
        suffix = 2
        while f"{name}_{suffix}" in timings:
            suffix += 1
        return f"{name}_{suffix}"


def _statistics(workbook: WorkbookContext, context: PipelineContext, started: float) -> CompressionStatistics:
    original_cells = workbook.statistics.non_empty_cells
    if context.skeleton is not None:
        compressed_cells = context.skeleton.skeleton_cell_count
    else:
        compressed_cells = original_cells
    ratio = 1.0 - compressed_cells / original_cells if original_cells else 0.0
    return CompressionStatistics(
        original_cell_count=original_cells,
        compressed_cell_count=compressed_cells,
        compression_ratio=ratio,
        sheets_processed=len(workbook.worksheets),
        processing_time_ms=(time.perf_counter() - started) * 1000.0,
    )


class PipelineBuilder:
    def __init__(self, name: str = "custom") -> None:
        self.name = name
        self._steps: List[PipelineStep] = []

    def add_anchor_detection(
        self,
        k: int = 2,
        options: Optional[AnchorDetectionOptions] = None,
        max_workers: int = 1,
    ) -> "PipelineBuilder":
        self._steps.append(AnchorDetectionStep(k, options, max_workers))
        return self

    def add_skeleton_extraction(
        self,
        options: Optional[SkeletonExtractionOptions] = None,
        k: Optional[int] = None,
        low_ratio_warning: Optional[float] = None,
    ) -> "PipelineBuilder":
        self._steps.append(SkeletonExtractionStep(k, options, low_ratio_warning))
        return self

    def add_inverted_index(self, options: Optional[InvertedIndexOptions] = None) -> "PipelineBuilder":
        self._steps.append(InvertedIndexStep(options))
        return self

    def add_format_aggregation(self, options: Optional[FormatAggregationOptions] = None) -> "PipelineBuilder":
        self._steps.append(FormatAggregationStep(options))
        return self

    def add_vanilla_serialization(self, options: Optional[SerializationOptions] = None) -> "PipelineBuilder":
        self._steps.append(VanillaSerializationStep(options))
        return self

    def add_step(
        self,
        step: Union[PipelineStep, Callable[[PipelineContext], Optional[bool]]],
        name: Optional[str] = None,
    ) -> "PipelineBuilder":
        if isinstance(step, PipelineStep):
            self._steps.append(step)
        elif callable(step):
            self._steps.append(FunctionStep(name or getattr(step, "__name__", "custom_step"), step))
        else:
            raise ConfigurationError(f"Unsupported pipeline step: {step!r}")
        return self

    def build(self) -> CompressionPipeline:
        if not self._steps:
            raise ConfigurationError("Cannot build a compression pipeline without steps")
        return CompressionPipeline(self._steps, self.name)


def _warning_step(message: str) -> FunctionStep:
    def add_warning(context: PipelineContext) -> None:
        context.warnings.append(message)

    return FunctionStep("strategy_warning", add_warning)


def strategy_pipeline(
    strategy: StrategyConfig,
    max_cells: Optional[int] = None,
    include_formatting: bool = True,
    include_formulas: bool = True,
    max_workers: int = 1,
) -> CompressionPipeline:
    builder = PipelineBuilder(strategy.name)
    if strategy.minimal_serialization:
        serialization = SerializationOptions(
            include_number_formats=False,
            include_formulas=False,
            include_styles=False,
        )
    else:
        serialization = SerializationOptions(
            include_number_formats=include_formatting,
            include_formulas=include_formulas,
            include_styles=include_formatting,
        )
    if strategy.cap_cells_to_budget:
        serialization.max_cells = max_cells

    if strategy.detect_structure:
        anchors = AnchorDetectionOptions(
            min_heterogeneity_score=strategy.anchors.min_heterogeneity_score,
            consider_styles=strategy.anchors.consider_styles and include_formatting,
            consider_number_formats=strategy.anchors.consider_number_formats and include_formatting,
            detect_multi_level_headers=strategy.anchors.detect_multi_level_headers,
            max_header_depth=strategy.anchors.max_header_depth,
        )
        skeleton = SkeletonExtractionOptions(
            preserve_nearby_non_empty=strategy.skeleton.preserve_nearby_non_empty,
            preserve_formulas=strategy.skeleton.preserve_formulas and include_formulas,
            preserve_formatted_cells=strategy.skeleton.preserve_formatted_cells and include_formatting,
            min_compression_ratio=strategy.skeleton.min_compression_ratio,
        )
        builder.add_anchor_detection(strategy.k, anchors, max_workers)
        builder.add_skeleton_extraction(skeleton, low_ratio_warning=strategy.low_ratio_warning)
    if strategy.warning:
        builder.add_step(_warning_step(strategy.warning))
    builder.add_vanilla_serialization(serialization)
    return builder.build()


def lightweight_pipeline() -> CompressionPipeline:
    return (
        PipelineBuilder("lightweight")
        .add_inverted_index(InvertedIndexOptions(optimize_ranges=True, include_formats=True, range_threshold=2))
        .build()
    )


def standard_pipeline() -> CompressionPipeline:
    return (
        PipelineBuilder("standard")
        .add_format_aggregation(FormatAggregationOptions(enable_type_recognition=True, min_group_size=3))
        .build()
    )


def high_compression_pipeline() -> CompressionPipeline:
    return (
        PipelineBuilder("high_compression")
        .add_anchor_detection(
            k=1,
            options=AnchorDetectionOptions(
                min_heterogeneity_score=0.7,
                consider_styles=True,
                consider_number_formats=True,
                detect_multi_level_headers=True,
            ),
        )
        .add_skeleton_extraction(
            SkeletonExtractionOptions(
                preserve_nearby_non_empty=False,
                preserve_formulas=True,
                preserve_formatted_cells=False,
                min_compression_ratio=0.7,
            )
        )
        .add_format_aggregation(FormatAggregationOptions(enable_type_recognition=True, min_group_size=2))
        .build()
    )


def optimal_pipeline(workbook: WorkbookContext) -> CompressionPipeline:
    stats = workbook.statistics
    if stats.empty_percentage > LIGHTWEIGHT_SPARSITY or stats.total_cells < LIGHTWEIGHT_MAX_CELLS:
        return lightweight_pipeline()
    if stats.total_cells < STANDARD_MAX_CELLS:
        return standard_pipeline()
    return high_compression_pipeline()


class WorkbookCompressor:
    def __init__(self, config: Optional[CompressorConfig] = None) -> None:
        self.config = config or CompressorConfig.default()

    def compress(
        self,
        workbook: WorkbookContext,
        strategy: str = "balanced",
        target_token_limit: Optional[int] = None,
        include_formatting: bool = True,
        include_formulas: bool = True,
    ) -> CompressionResult:
        preset = self.config.strategy(strategy)
        limit = target_token_limit if target_token_limit is not None else self.config.default_token_limit
        if limit is not None and limit <= 0:
            raise ConfigurationError(f"Target token limit must be positive: {limit}")

        started = time.perf_counter()
        result = self._run(preset, workbook, limit, include_formatting, include_formulas)
        if not result.success or limit is None or result.compressed_token_count <= limit:
            return result

        warnings = list(result.warnings)
        warnings.append(
            f"Compressed content ({result.compressed_token_count} tokens) "
            f"exceeds target limit ({limit} tokens)"
        )
        if preset.name == "aggressive":
            result.warnings = warnings
            return result

        logger.warning("Applying aggressive compression to meet token limit of %d", limit)
        escalated = self._run(self.config.strategy("aggressive"), workbook, limit, include_formatting, include_formulas)
        warnings.append(f"Escalated from {preset.name} to aggressive compression to meet the token limit")
        escalated.warnings = warnings + escalated.warnings
        escalated.original_token_count = result.original_token_count
        escalated.statistics.processing_time_ms = (time.perf_counter() - started) * 1000.0
        return escalated

    def _run(
        self,
        preset: StrategyConfig,
        workbook: WorkbookContext,
        limit: Optional[int],
        include_formatting: bool,
        include_formulas: bool,
    ) -> CompressionResult:
        max_cells = limit // 4 if limit is not None else None
        pipeline = strategy_pipeline(
            preset,
            max_cells=max_cells,
            include_formatting=include_formatting,
            include_formulas=include_formulas,
            max_workers=self.config.max_workers,
        )
        return pipeline.run(workbook)
