"""Format-aware aggregation of homogeneous rectangular regions."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .config import FormatAggregationOptions
from .models import (
    AggregatedRegion,
    AggregatedWorksheet,
    CellAddress,
    CellData,
    WorksheetContext,
    row_major,
)
from .recognizers import TypeRecognizer, recognize_type, resolve_recognizers


logger = logging.getLogger(__name__)

TypeKey = Tuple[str, Optional[str]]


class FormatAwareAggregator:
    def aggregate(
        self,
        worksheet: WorksheetContext,
        options: Optional[FormatAggregationOptions] = None,
    ) -> AggregatedWorksheet:
        options = options or FormatAggregationOptions()
        recognizers = resolve_recognizers(options.type_recognizers)
        min_group = max(1, options.min_group_size)

        cells = worksheet.non_empty_cells()
        keys = self._type_keys(cells, recognizers, options)

        claimed: set[Tuple[int, int]] = set()
        regions: List[AggregatedRegion] = []
        literals: List[CellData] = []
        for cell in cells:
            position = (cell.address.row, cell.address.col)
            if position in claimed:
                continue
            key = keys.get(position)
            if key is None:
                claimed.add(position)
                literals.append(cell)
                continue
            height, width = self._largest_rectangle(position, key, keys, claimed)
            if height * width < min_group:
                claimed.add(position)
                literals.append(cell)
                continue
            row, col = position
            for r in range(row, row + height):
                for c in range(col, col + width):
                    claimed.add((r, c))
            regions.append(
                AggregatedRegion(
                    start=cell.address,
                    end=CellAddress(row + height - 1, col + width - 1),
                    type_token=key[0],
                    format_string=key[1],
                    cell_count=height * width,
                )
            )

        logger.debug(
            "Aggregated sheet %s into %d regions and %d literal cells",
            worksheet.name,
            len(regions),
            len(literals),
        )
        return AggregatedWorksheet(name=worksheet.name, regions=regions, literal_cells=literals)

    def _type_keys(
        self,
        cells: List[CellData],
        recognizers: Sequence[TypeRecognizer],
        options: FormatAggregationOptions,
    ) -> Dict[Tuple[int, int], TypeKey]:
        keys: Dict[Tuple[int, int], TypeKey] = {}
        for cell in cells:
            fmt = cell.format_string
            token = recognize_type(
                cell.value,
                fmt,
                recognizers,
                use_values=options.enable_type_recognition,
            )
            if token is None:
                continue
            keys[(cell.address.row, cell.address.col)] = (token, fmt if options.match_formats else None)
        return keys

    def _largest_rectangle(
        self,
        origin: Tuple[int, int],
        key: TypeKey,
        keys: Dict[Tuple[int, int], TypeKey],
        claimed: set[Tuple[int, int]],
    ) -> Tuple[int, int]:
        """Largest all-matching rectangle anchored at ``origin``; first found wins ties."""
        row, col = origin

        def run_length(r: int, limit: Optional[int]) -> int:
            length = 0
            c = col
            while limit is None or length < limit:
                position = (r, c)
                if position in claimed or keys.get(position) != key:
                    break
                length += 1
                c += 1
            return length

        best = (1, 1)
        best_area = 1
        width = run_length(row, None)
        height = 1
        while width > 0:
            area = height * width
            if area > best_area:
                best = (height, width)
                best_area = area
            width = run_length(row + height, width)
            height += 1
        return best

    def render(self, aggregated: AggregatedWorksheet) -> List[str]:
        entries: List[Tuple[CellAddress, str]] = []
        for region in aggregated.regions:
            entries.append((region.start, region.render()))
        for cell in aggregated.literal_cells:
            entries.append((cell.address, f"{cell.address.label}={cell.text}"))
        entries.sort(key=lambda item: row_major(item[0]))
        return [text for _, text in entries]
