"""openpyxl-based workbook loading into the in-memory grid model."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Set, Tuple
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import WorkbookLoadError
from ..models import CellAddress, CellData, CellStyle, Dimensions, WorkbookContext, WorksheetContext
from ..ports import LoadOptions


logger = logging.getLogger(__name__)

NO_FILL_COLORS = {"00000000", "FFFFFFFF", "00FFFFFF"}


def _merged_positions(worksheet: Any) -> Set[Tuple[int, int]]:
    positions: Set[Tuple[int, int]] = set()
    merged = getattr(worksheet, "merged_cells", None)
    for cell_range in getattr(merged, "ranges", []) or []:
        for row in range(cell_range.min_row, cell_range.max_row + 1):
            for col in range(cell_range.min_col, cell_range.max_col + 1):
                positions.add((row - 1, col - 1))
    return positions


def _fill_color(cell: Any) -> Optional[str]:
    fill = getattr(cell, "fill", None)
    if fill is None or getattr(fill, "fill_type", None) != "solid":
        return None
    rgb = getattr(getattr(fill, "fgColor", None), "rgb", None)
    if not isinstance(rgb, str) or rgb.upper() in NO_FILL_COLORS:
        return None
    return rgb.upper()


def _has_borders(cell: Any) -> bool:
    border = getattr(cell, "border", None)
    if border is None:
        return False
    sides = (border.left, border.right, border.top, border.bottom)
    return any(side is not None and side.style for side in sides)


def _cell_style(cell: Any, merged: bool) -> Optional[CellStyle]:
    font = getattr(cell, "font", None)
    style = CellStyle(
        bold=bool(font is not None and font.bold),
        background_color=_fill_color(cell),
        merged=merged,
        has_borders=_has_borders(cell),
    )
    return style if style.is_special else None


class OpenpyxlWorkbookLoader:
    def load(self, path: str, options: Optional[LoadOptions] = None) -> WorkbookContext:
        options = options or LoadOptions()
        source = Path(path)
        if not source.exists():
            raise WorkbookLoadError(f"Workbook not found: {source}")

        read_only = options.memory_optimization_level == "aggressive"
        values_book = None
        formula_book = None
        try:
            values_book = load_workbook(str(source), data_only=True, read_only=read_only)
            if options.include_formulas:
                formula_book = load_workbook(str(source), data_only=False, read_only=read_only)
            sheets: List[WorksheetContext] = []
            for worksheet in values_book.worksheets:
                formula_sheet = formula_book[worksheet.title] if formula_book is not None else None
                sheets.append(self._load_sheet(worksheet, formula_sheet, options, read_only))
        except (OSError, InvalidFileException, BadZipFile, KeyError) as exc:
            raise WorkbookLoadError(f"Could not load workbook {source}: {exc}") from exc
        finally:
            for book in (values_book, formula_book):
                if book is not None:
                    book.close()

        logger.info("Loaded workbook %s with %d sheets", source.name, len(sheets))
        return WorkbookContext(worksheets=sheets, name=source.name)

    def _load_sheet(
        self,
        worksheet: Any,
        formula_sheet: Any,
        options: LoadOptions,
        read_only: bool,
    ) -> WorksheetContext:
        merged = _merged_positions(worksheet) if options.include_styles and not read_only else set()
        formulas: List[Tuple[Any, ...]] = []
        if formula_sheet is not None:
            formulas = list(formula_sheet.iter_rows(min_row=1, min_col=1, values_only=True))

        cells: List[CellData] = []
        max_row = -1
        max_col = -1
        for row_index, row in enumerate(worksheet.iter_rows(min_row=1, min_col=1)):
            for col_index, cell in enumerate(row):
                value = cell.value
                formula = None
                if row_index < len(formulas) and col_index < len(formulas[row_index]):
                    raw = formulas[row_index][col_index]
                    if isinstance(raw, str) and raw.startswith("="):
                        formula = raw
                if value is None and formula is not None:
                    value = formula
                if value is None:
                    continue
                style = None
                if options.include_styles:
                    style = _cell_style(cell, (row_index, col_index) in merged)
                cells.append(
                    CellData(
                        address=CellAddress(row_index, col_index),
                        value=value,
                        number_format=getattr(cell, "number_format", None),
                        formula=formula,
                        style=style,
                    )
                )
                max_row = max(max_row, row_index)
                max_col = max(max_col, col_index)

        dimensions = Dimensions(
            row_count=max(max_row + 1, int(getattr(worksheet, "max_row", 0) or 0)),
            col_count=max(max_col + 1, int(getattr(worksheet, "max_column", 0) or 0)),
        )
        return WorksheetContext.from_cells(str(worksheet.title), cells, dimensions)
