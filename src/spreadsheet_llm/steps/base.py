"""Pipeline step contract and the shared context steps read and extend."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..inverted_index import InvertedIndex
from ..models import (
    AggregatedWorksheet,
    PipelineArtifact,
    SkeletonWorkbook,
    WorkbookAnchors,
    WorkbookContext,
)


logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    workbook: WorkbookContext
    anchors: Optional[WorkbookAnchors] = None
    skeleton: Optional[SkeletonWorkbook] = None
    inverted_index: Dict[str, InvertedIndex] = field(default_factory=dict)
    aggregation: List[AggregatedWorksheet] = field(default_factory=list)
    compressed_text: Optional[str] = None
    artifacts: List[PipelineArtifact] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    def current_workbook(self) -> WorkbookContext:
        """Skeleton when one has been extracted, otherwise the source grid."""
        if self.skeleton is not None:
            return self.skeleton.to_workbook()
        return self.workbook

    def add_artifact(self, name: str, media_type: str, data: str) -> None:
        self.artifacts.append(PipelineArtifact(name=name, media_type=media_type, data=data))


@dataclass
class StepResult:
    name: str
    success: bool
    duration_ms: float
    error: Optional[str] = None


class PipelineStep(ABC):
    name: str = "step"

    @abstractmethod
    def run(self, context: PipelineContext) -> Optional[bool]:
        """Mutate ``context``; returning ``False`` reports failure."""
        raise NotImplementedError

    def execute(self, context: PipelineContext) -> StepResult:
        started = time.perf_counter()
        try:
            outcome = self.run(context)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000.0
            logger.exception("Pipeline step %s failed", self.name)
            return StepResult(name=self.name, success=False, duration_ms=elapsed, error=str(exc))
        elapsed = (time.perf_counter() - started) * 1000.0
        if outcome is False:
            return StepResult(
                name=self.name,
                success=False,
                duration_ms=elapsed,
                error=f"Step '{self.name}' reported failure",
            )
        logger.debug("Pipeline step %s finished in %.1f ms", self.name, elapsed)
        return StepResult(name=self.name, success=True, duration_ms=elapsed)


class FunctionStep(PipelineStep):
    """Wraps a caller-supplied callable taking the pipeline context."""

    def __init__(self, name: str, func: Callable[[PipelineContext], Optional[bool]]) -> None:
        self.name = name
        self.func = func

    def run(self, context: PipelineContext) -> Optional[bool]:
        return self.func(context)
