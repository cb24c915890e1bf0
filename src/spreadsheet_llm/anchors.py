"""Structural anchor detection: heterogeneous rows/columns and header bands."""
from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
from typing import Dict, List, Optional, Tuple

from .config import AnchorDetectionOptions
from .models import (
    AnchorMetrics,
    CellData,
    CellDataType,
    CrossSheetPattern,
    HeaderRegion,
    StructuralAnchors,
    WorkbookAnchors,
    WorkbookContext,
    WorksheetContext,
)


logger = logging.getLogger(__name__)

TYPE_DIVERSITY_SCALE = 7.0
FORMAT_DIVERSITY_SCALE = 5.0
COLOR_DIVERSITY_SCALE = 3.0

HEADER_STRING_RATIO = 0.7
HEADER_STRONG_STRING_RATIO = 0.9
HEADER_UNIQUE_RATIO = 0.8

NUMERIC_TYPES = (CellDataType.NUMBER, CellDataType.DATETIME)


@dataclass
class _LineProfile:
    count: int = 0
    types: Counter = field(default_factory=Counter)
    formats: Counter = field(default_factory=Counter)
    fills: Counter = field(default_factory=Counter)
    bold: int = 0
    values: set = field(default_factory=set)
    first: Optional[int] = None
    last: Optional[int] = None

    def add(self, cell: CellData, data_type: CellDataType, position: int, track_values: bool) -> None:
        self.count += 1
        self.types[data_type] += 1
        self.formats[cell.format_string] += 1
        style = cell.style
        if style is not None and style.bold:
            self.bold += 1
        self.fills[style.background_color if style is not None else None] += 1
        if track_values:
            self.values.add(cell.text)
        if self.first is None or position < self.first:
            self.first = position
        if self.last is None or position > self.last:
            self.last = position

    def share(self, data_type: CellDataType) -> float:
        return self.types[data_type] / self.count if self.count else 0.0

    @property
    def bold_share(self) -> float:
        return self.bold / self.count if self.count else 0.0

    @property
    def numeric_count(self) -> int:
        return sum(self.types[t] for t in NUMERIC_TYPES)


def _variation(left: Counter, left_total: int, right: Counter, right_total: int) -> float:
    """Total-variation distance between two categorical distributions."""
    if not left_total or not right_total:
        return 0.0
    keys = set(left) | set(right)
    return 0.5 * sum(abs(left[key] / left_total - right[key] / right_total) for key in keys)


class StructuralAnchorDetector:
    def find_anchors(
        self,
        worksheet: WorksheetContext,
        k: int = 2,
        options: Optional[AnchorDetectionOptions] = None,
    ) -> StructuralAnchors:
        options = options or AnchorDetectionOptions()
        if k < 0:
            raise ValueError(f"Expansion radius must be non-negative: {k}")

        header_depth = max(1, options.max_header_depth) if options.detect_multi_level_headers else 1
        rows, columns = self._profiles(worksheet, header_depth)
        if not rows:
            return StructuralAnchors(radius=k)

        row_scores = self._score_lines(rows, options)
        col_scores = self._score_lines(columns, options)
        threshold = options.min_heterogeneity_score

        anchor_rows = {index: score for index, score in row_scores.items() if score >= threshold}
        anchor_cols = {index: score for index, score in col_scores.items() if score >= threshold}

        header_regions = self._detect_headers(rows, options)
        for region in header_regions:
            for index in range(region.start_row, region.end_row + 1):
                if index in rows:
                    anchor_rows[index] = max(row_scores.get(index, 0.0), anchor_rows.get(index, 0.0))

        anchors = StructuralAnchors(
            rows=dict(sorted(anchor_rows.items())),
            columns=dict(sorted(anchor_cols.items())),
            header_regions=header_regions,
            radius=k,
        )
        anchors.metrics = self._metrics(worksheet, anchors, row_scores, col_scores)
        logger.debug(
            "Sheet %s: %d anchor rows, %d anchor columns, %d header regions",
            worksheet.name,
            len(anchors.rows),
            len(anchors.columns),
            len(header_regions),
        )
        return anchors

    def find_workbook_anchors(
        self,
        workbook: WorkbookContext,
        k: int = 2,
        options: Optional[AnchorDetectionOptions] = None,
        max_workers: int = 1,
    ) -> WorkbookAnchors:
        sheets = workbook.worksheets
        if max_workers > 1 and len(sheets) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = list(executor.map(lambda sheet: self.find_anchors(sheet, k, options), sheets))
        else:
            results = [self.find_anchors(sheet, k, options) for sheet in sheets]

        per_sheet = {sheet.name: result for sheet, result in zip(sheets, results)}
        patterns = self._cross_sheet_patterns(per_sheet)
        return WorkbookAnchors(
            sheets=per_sheet,
            cross_sheet_patterns=patterns,
            global_metrics=self._global_metrics(per_sheet),
        )

    def _profiles(
        self, worksheet: WorksheetContext, header_depth: int
    ) -> Tuple[Dict[int, _LineProfile], Dict[int, _LineProfile]]:
        rows: Dict[int, _LineProfile] = {}
        columns: Dict[int, _LineProfile] = {}
        non_empty = [cell for cell in worksheet.cells.values() if not cell.is_empty]
        if not non_empty:
            return rows, columns
        top = min(cell.address.row for cell in non_empty)
        for cell in non_empty:
            data_type = cell.data_type
            row, col = cell.address.row, cell.address.col
            rows.setdefault(row, _LineProfile()).add(cell, data_type, col, row < top + header_depth)
            columns.setdefault(col, _LineProfile()).add(cell, data_type, row, False)
        return rows, columns

    def _score_lines(
        self, profiles: Dict[int, _LineProfile], options: AnchorDetectionOptions
    ) -> Dict[int, float]:
        order = sorted(profiles)
        scores: Dict[int, float] = {}
        for position, index in enumerate(order):
            profile = profiles[index]
            contrast = 0.0
            if position > 0:
                contrast = self._distance(profile, profiles[order[position - 1]], options)
            if position + 1 < len(order):
                contrast = max(contrast, self._distance(profile, profiles[order[position + 1]], options))
            scores[index] = min(1.0, max(contrast, self._diversity(profile, options)))
        return scores

    def _distance(self, left: _LineProfile, right: _LineProfile, options: AnchorDetectionOptions) -> float:
        distance = _variation(left.types, left.count, right.types, right.count)
        if options.consider_number_formats:
            distance = max(distance, _variation(left.formats, left.count, right.formats, right.count))
        if options.consider_styles:
            distance = max(distance, abs(left.bold_share - right.bold_share))
            distance = max(distance, _variation(left.fills, left.count, right.fills, right.count))
        return distance

    def _diversity(self, profile: _LineProfile, options: AnchorDetectionOptions) -> float:
        factors = [min(1.0, len(profile.types) / TYPE_DIVERSITY_SCALE)]
        if options.consider_number_formats:
            formats = [fmt for fmt in profile.formats if fmt]
            factors.append(min(1.0, len(formats) / FORMAT_DIVERSITY_SCALE))
        if options.consider_styles:
            style = 0.5 if 0 < profile.bold < profile.count else 0.0
            colors = [color for color in profile.fills if color]
            factors.append(min(1.0, style + len(colors) / COLOR_DIVERSITY_SCALE))
        strings = profile.types[CellDataType.STRING]
        numbers = profile.numeric_count
        factors.append(min(strings, numbers) / profile.count if profile.count else 0.0)
        return sum(factors) / len(factors)

    def _is_header_like(self, profile: _LineProfile) -> bool:
        if not profile.count:
            return False
        string_ratio = profile.share(CellDataType.STRING)
        unique_ratio = len(profile.values) / profile.count
        return (
            string_ratio > HEADER_STRING_RATIO
            and profile.types[CellDataType.FORMULA] == 0
            and unique_ratio > HEADER_UNIQUE_RATIO
            and (profile.bold_share >= 0.5 or string_ratio > HEADER_STRONG_STRING_RATIO)
        )

    def _detect_headers(
        self, rows: Dict[int, _LineProfile], options: AnchorDetectionOptions
    ) -> List[HeaderRegion]:
        order = sorted(rows)
        first = order[0]
        if not self._is_header_like(rows[first]):
            return []

        band = [first]
        if options.detect_multi_level_headers:
            depth = max(1, options.max_header_depth)
            for index in order[1:]:
                if index != band[-1] + 1 or index >= first + depth:
                    break
                if not self._is_header_like(rows[index]):
                    break
                band.append(index)
            if len(band) == len(order) and len(band) > 1:
                # every populated row looks like a header: keep only the top one
                band = [first]

        profiles = [rows[index] for index in band]
        start_col = min(p.first for p in profiles if p.first is not None)
        end_col = max(p.last for p in profiles if p.last is not None)
        confidence = sum(
            (p.share(CellDataType.STRING) + len(p.values) / p.count) / 2.0 for p in profiles
        ) / len(profiles)
        return [
            HeaderRegion(
                start_row=band[0],
                end_row=band[-1],
                start_col=start_col,
                end_col=end_col,
                confidence=round(confidence, 4),
                multi_level=len(band) > 1,
            )
        ]

    def _metrics(
        self,
        worksheet: WorksheetContext,
        anchors: StructuralAnchors,
        row_scores: Dict[int, float],
        col_scores: Dict[int, float],
    ) -> AnchorMetrics:
        total = len(anchors.rows) + len(anchors.columns)
        extent = worksheet.dimensions.row_count + worksheet.dimensions.col_count
        anchor_rows = sorted(anchors.rows)
        gaps = [b - a for a, b in zip(anchor_rows, anchor_rows[1:])]
        heterogeneity = {
            "row_average": sum(row_scores.values()) / len(row_scores) if row_scores else 0.0,
            "row_max": max(row_scores.values(), default=0.0),
            "column_average": sum(col_scores.values()) / len(col_scores) if col_scores else 0.0,
            "column_max": max(col_scores.values(), default=0.0),
        }
        return AnchorMetrics(
            total_anchors=total,
            anchor_density=total / extent if extent else 0.0,
            average_anchor_distance=sum(gaps) / len(gaps) if gaps else 0.0,
            heterogeneity=heterogeneity,
        )

    def _cross_sheet_patterns(self, per_sheet: Dict[str, StructuralAnchors]) -> List[CrossSheetPattern]:
        groups: Dict[str, List[str]] = {}
        for name, anchors in per_sheet.items():
            groups.setdefault(anchors.signature, []).append(name)
        patterns = []
        for signature, names in groups.items():
            if len(names) < 2:
                continue
            patterns.append(
                CrossSheetPattern(
                    name=signature,
                    sheets=names,
                    confidence=len(names) / len(per_sheet),
                )
            )
        return patterns

    def _global_metrics(self, per_sheet: Dict[str, StructuralAnchors]) -> Dict[str, float]:
        count = len(per_sheet)
        unique = len({anchors.signature for anchors in per_sheet.values()})
        consistency = 1.0 if count <= 1 else 1.0 - (unique - 1) / (count - 1)
        total = sum(anchors.metrics.total_anchors for anchors in per_sheet.values())
        return {
            "sheet_count": float(count),
            "total_anchors": float(total),
            "average_anchors_per_sheet": total / count if count else 0.0,
            "structural_consistency": consistency,
        }
