"""Anchor detection and skeleton extraction steps."""
from __future__ import annotations

import json
from typing import Optional

from ..anchors import StructuralAnchorDetector
from ..config import AnchorDetectionOptions, SkeletonExtractionOptions
from ..errors import PipelineStepError
from ..skeleton import SkeletonExtractor
from .base import PipelineContext, PipelineStep


class AnchorDetectionStep(PipelineStep):
    name = "anchor_detection"

    def __init__(
        self,
        k: int = 2,
        options: Optional[AnchorDetectionOptions] = None,
        max_workers: int = 1,
    ) -> None:
        self.k = k
        self.options = options or AnchorDetectionOptions()
        self.max_workers = max_workers
        self.detector = StructuralAnchorDetector()

    def run(self, context: PipelineContext) -> None:
        anchors = self.detector.find_workbook_anchors(
            context.workbook,
            k=self.k,
            options=self.options,
            max_workers=self.max_workers,
        )
        context.anchors = anchors
        summary = {
            name: {
                "rows": sorted(sheet.rows),
                "columns": sorted(sheet.columns),
                "signature": sheet.signature,
            }
            for name, sheet in anchors.sheets.items()
        }
        context.add_artifact("anchors", "application/json", json.dumps(summary))


class SkeletonExtractionStep(PipelineStep):
    name = "skeleton_extraction"

    def __init__(
        self,
        k: Optional[int] = None,
        options: Optional[SkeletonExtractionOptions] = None,
        low_ratio_warning: Optional[float] = None,
    ) -> None:
        self.k = k
        self.options = options or SkeletonExtractionOptions()
        self.low_ratio_warning = low_ratio_warning
        self.extractor = SkeletonExtractor()

    def run(self, context: PipelineContext) -> None:
        if context.anchors is None:
            raise PipelineStepError("Skeleton extraction requires anchor detection to run first")
        skeleton = self.extractor.extract_workbook(context.workbook, context.anchors, self.k, self.options)
        context.skeleton = skeleton
        context.warnings.extend(skeleton.warnings)
        if self.low_ratio_warning is not None and skeleton.compression_ratio < self.low_ratio_warning:
            context.warnings.append(f"Low compression ratio achieved: {skeleton.compression_ratio:.2%}")
