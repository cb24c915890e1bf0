"""Inverted-index translation: rendered value -> addresses or ranges."""
from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional, Tuple, Union

from .config import InvertedIndexOptions
from .models import CellAddress, CellData, WorksheetContext
from .utils import iter_range, join_label


logger = logging.getLogger(__name__)

IndexValue = Union[str, List[str]]
InvertedIndex = Dict[str, IndexValue]

# ((col, row) of the start cell, label)
_Entry = Tuple[Tuple[int, int], str]


def index_key(cell: CellData, include_formats: bool) -> str:
    fmt = cell.format_string
    if include_formats and fmt:
        return f"{cell.text}|{fmt}"
    return cell.text


class InvertedIndexTranslator:
    def translate(
        self,
        worksheet: WorksheetContext,
        options: Optional[InvertedIndexOptions] = None,
    ) -> InvertedIndex:
        options = options or InvertedIndexOptions()
        groups: Dict[str, List[Tuple[int, int]]] = {}
        for cell in worksheet.non_empty_cells():
            key = index_key(cell, options.include_formats)
            groups.setdefault(key, []).append((cell.address.row, cell.address.col))

        threshold = max(2, options.range_threshold)
        index: InvertedIndex = {}
        for key, positions in groups.items():
            if options.optimize_ranges:
                labels = self._collapse(positions, threshold)
            else:
                labels = [
                    join_label(row, col)
                    for row, col in sorted(positions, key=lambda p: (p[1], p[0]))
                ]
            index[key] = labels[0] if len(labels) == 1 else labels

        logger.debug("Indexed sheet %s into %d keys", worksheet.name, len(index))
        return index

    def _collapse(self, positions: List[Tuple[int, int]], threshold: int) -> List[str]:
        remaining = set(positions)
        entries: List[_Entry] = []

        by_column: Dict[int, List[int]] = {}
        for row, col in positions:
            by_column.setdefault(col, []).append(row)
        for col, rows in by_column.items():
            for start, end in _runs(sorted(rows)):
                if end - start + 1 >= threshold:
                    entries.append(((col, start), f"{join_label(start, col)}:{join_label(end, col)}"))
                    for row in range(start, end + 1):
                        remaining.discard((row, col))

        by_row: Dict[int, List[int]] = {}
        for row, col in remaining:
            by_row.setdefault(row, []).append(col)
        for row, cols in by_row.items():
            for start, end in _runs(sorted(cols)):
                if end - start + 1 >= threshold:
                    entries.append(((start, row), f"{join_label(row, start)}:{join_label(row, end)}"))
                    for col in range(start, end + 1):
                        remaining.discard((row, col))

        for row, col in remaining:
            entries.append(((col, row), join_label(row, col)))

        entries.sort(key=lambda entry: entry[0])
        return [label for _, label in entries]

    def render(self, index: InvertedIndex) -> str:
        return json.dumps(index, ensure_ascii=False, separators=(",", ":"))


def _runs(values: List[int]) -> List[Tuple[int, int]]:
    runs: List[Tuple[int, int]] = []
    if not values:
        return runs
    start = previous = values[0]
    for value in values[1:]:
        if value == previous + 1:
            previous = value
            continue
        runs.append((start, previous))
        start = previous = value
    runs.append((start, previous))
    return runs


def expand_index(index: InvertedIndex) -> Dict[CellAddress, str]:
    """Flatten every range back to single addresses mapped to their key."""
    expanded: Dict[CellAddress, str] = {}
    for key, value in index.items():
        labels = [value] if isinstance(value, str) else value
        for label in labels:
            for row, col in iter_range(label):
                address = CellAddress(row, col)
                if address in expanded:
                    raise ValueError(f"Address {address.label} appears under more than one key")
                expanded[address] = key
    return expanded


def index_to_worksheet(index: InvertedIndex, name: str) -> WorksheetContext:
    """Literal worksheet whose cell values are the index keys."""
    cells = [CellData(address=address, value=key) for address, key in expand_index(index).items()]
    return WorksheetContext.from_cells(name, cells)
