"""Literal serialization of worksheets into plain text."""
from __future__ import annotations

from typing import Dict, List, Optional

from .config import SerializationOptions
from .models import CellData, WorkbookContext, WorksheetContext


def format_cell(cell: CellData, options: SerializationOptions) -> str:
    parts = [cell.address.label, cell.text]
    if options.include_number_formats and cell.format_string:
        parts.append(cell.format_string)
    if options.include_formulas and cell.formula:
        formula = cell.formula if cell.formula.startswith("=") else f"={cell.formula}"
        parts.append(formula)
    if options.include_styles and cell.style is not None:
        described = cell.style.describe()
        if described:
            parts.append(described)
    return ",".join(parts)


class VanillaSerializer:
    def serialize(self, workbook: WorkbookContext, options: Optional[SerializationOptions] = None) -> str:
        options = options or SerializationOptions()
        budget = options.max_cells
        blocks: List[str] = []
        for position, worksheet in enumerate(workbook.worksheets):
            if budget is not None and budget <= 0 and blocks:
                omitted = len(workbook.worksheets) - position
                blocks[-1] += f"\n... (truncated: {omitted} more sheets omitted)"
                break
            text, used = self._render(worksheet, options, budget)
            blocks.append(text)
            if budget is not None:
                budget -= used
        return "\n\n".join(blocks)

    def serialize_worksheet(
        self, worksheet: WorksheetContext, options: Optional[SerializationOptions] = None
    ) -> str:
        options = options or SerializationOptions()
        text, _ = self._render(worksheet, options, options.max_cells)
        return text

    def _render(self, worksheet: WorksheetContext, options: SerializationOptions, budget: Optional[int]):
        lines = [f"## Sheet: {worksheet.name}"]
        cells = worksheet.non_empty_cells()
        if not cells:
            lines.append("(empty worksheet)")
            return "\n".join(lines), 0

        limit = len(cells) if budget is None else max(0, budget)
        rows: Dict[int, List[str]] = {}
        for cell in cells[:limit]:
            rows.setdefault(cell.address.row, []).append(format_cell(cell, options))
        for row in sorted(rows):
            lines.append(options.cell_separator.join(rows[row]))
        if limit < len(cells):
            lines.append(f"... (truncated at {limit} cells)")
        return "\n".join(lines), min(limit, len(cells))
