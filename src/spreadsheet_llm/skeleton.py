"""Skeleton extraction: keep anchor neighbourhoods, drop homogeneous bulk."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .config import SkeletonExtractionOptions
from .errors import PipelineStepError
from .models import (
    CellAddress,
    CellData,
    SkeletonWorkbook,
    SkeletonWorksheet,
    StructuralAnchors,
    WorkbookAnchors,
    WorkbookContext,
    WorksheetContext,
    row_major,
)


logger = logging.getLogger(__name__)


def has_structure(anchors: StructuralAnchors) -> bool:
    return bool(anchors.rows or anchors.columns or anchors.header_regions)


class SkeletonExtractor:
    def extract(
        self,
        worksheet: WorksheetContext,
        anchors: StructuralAnchors,
        k: Optional[int] = None,
        options: Optional[SkeletonExtractionOptions] = None,
    ) -> SkeletonWorksheet:
        options = options or SkeletonExtractionOptions()
        radius = anchors.radius if k is None else k
        if radius < 0:
            raise ValueError(f"Expansion radius must be non-negative: {radius}")

        rows = anchors.expanded_rows(worksheet.dimensions.row_count, radius)
        columns = anchors.expanded_columns(worksheet.dimensions.col_count, radius)

        non_empty = worksheet.non_empty_cells()
        kept: Dict[CellAddress, CellData] = {}
        if not has_structure(anchors):
            # nothing to expand from, so the sheet is passed through whole
            kept = {cell.address: cell for cell in non_empty}
        else:
            for cell in non_empty:
                if self._keep(cell, rows, columns, anchors, options):
                    kept[cell.address] = cell

        if options.preserve_nearby_non_empty and kept:
            seeds = list(kept)
            for address in seeds:
                for col in (address.col - 1, address.col + 1):
                    if col < 0:
                        continue
                    neighbour = worksheet.cells.get(CellAddress(address.row, col))
                    if neighbour is not None and not neighbour.is_empty:
                        kept.setdefault(neighbour.address, neighbour)

        cells = {address: kept[address] for address in sorted(kept, key=row_major)}
        skeleton = SkeletonWorksheet(
            name=worksheet.name,
            cells=cells,
            dimensions=worksheet.dimensions,
            original_cell_count=len(non_empty),
            skeleton_cell_count=len(cells),
        )
        logger.debug(
            "Skeleton for sheet %s keeps %d of %d cells",
            worksheet.name,
            skeleton.skeleton_cell_count,
            skeleton.original_cell_count,
        )
        return skeleton

    def _keep(
        self,
        cell: CellData,
        rows: set[int],
        columns: set[int],
        anchors: StructuralAnchors,
        options: SkeletonExtractionOptions,
    ) -> bool:
        address = cell.address
        if address.row in rows or address.col in columns:
            return True
        if any(region.contains(address) for region in anchors.header_regions):
            return True
        if options.preserve_formulas and cell.formula:
            return True
        if options.preserve_formatted_cells and cell.style is not None and cell.style.is_special:
            return True
        return False

    def extract_workbook(
        self,
        workbook: WorkbookContext,
        workbook_anchors: WorkbookAnchors,
        k: Optional[int] = None,
        options: Optional[SkeletonExtractionOptions] = None,
    ) -> SkeletonWorkbook:
        options = options or SkeletonExtractionOptions()
        sheets: List[SkeletonWorksheet] = []
        warnings: List[str] = []
        for worksheet in workbook.worksheets:
            anchors = workbook_anchors.sheets.get(worksheet.name)
            if anchors is None:
                raise PipelineStepError(f"No structural anchors computed for sheet '{worksheet.name}'")
            skeleton = self.extract(worksheet, anchors, k, options)
            sheets.append(skeleton)
            if skeleton.original_cell_count and not has_structure(anchors):
                warnings.append(
                    f"No structural anchors found in sheet '{worksheet.name}'; "
                    f"all {skeleton.original_cell_count} cells kept"
                )
                logger.warning("No structural anchors found in sheet %s, keeping every cell", worksheet.name)
                continue
            if skeleton.original_cell_count and skeleton.compression_ratio < options.min_compression_ratio:
                warnings.append(
                    f"Sheet '{worksheet.name}' compression ratio {skeleton.compression_ratio:.2f} "
                    f"is below target {options.min_compression_ratio:.2f}"
                )
        return SkeletonWorkbook(name=workbook.name, sheets=sheets, warnings=warnings)
