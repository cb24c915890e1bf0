"""Data models for workbooks, compression artifacts and QA results."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .utils import format_number, join_label, split_label


class CellDataType(str, Enum):
    EMPTY = "empty"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    FORMULA = "formula"
    ERROR = "error"


ERROR_LITERALS = {"#DIV/0!", "#N/A", "#NAME?", "#NULL!", "#NUM!", "#REF!", "#VALUE!", "#SPILL!", "#CALC!"}
GENERIC_FORMATS = {"general", "@"}


@dataclass(frozen=True, order=True)
class CellAddress:
    row: int
    col: int

    def __post_init__(self) -> None:
        if self.row < 0 or self.col < 0:
            raise ValueError(f"Cell coordinates must be non-negative: ({self.row}, {self.col})")

    @property
    def label(self) -> str:
        return join_label(self.row, self.col)

    @classmethod
    def from_label(cls, label: str) -> "CellAddress":
        row, col = split_label(label)
        return cls(row, col)

    def __str__(self) -> str:
        return self.label


def row_major(address: CellAddress) -> Tuple[int, int]:
    return address.row, address.col


@dataclass(frozen=True)
class CellStyle:
    bold: bool = False
    background_color: Optional[str] = None
    merged: bool = False
    has_borders: bool = False

    @property
    def is_special(self) -> bool:
        return self.bold or self.merged or self.has_borders or bool(self.background_color)

    def describe(self) -> str:
        parts = []
        if self.bold:
            parts.append("bold")
        if self.merged:
            parts.append("merged")
        if self.has_borders:
            parts.append("borders")
        if self.background_color:
            parts.append(f"bg:{self.background_color}")
        return f"[{','.join(parts)}]" if parts else ""


def render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        return format_number(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class CellData:
    address: CellAddress
    value: Any = None
    number_format: Optional[str] = None
    formula: Optional[str] = None
    style: Optional[CellStyle] = None

    @property
    def is_empty(self) -> bool:
        if self.value is None:
            return True
        if isinstance(self.value, str):
            return not self.value.strip()
        return False

    @property
    def text(self) -> str:
        return render_value(self.value)

    @property
    def format_string(self) -> Optional[str]:
        if not self.number_format or self.number_format.strip().lower() in GENERIC_FORMATS:
            return None
        return self.number_format

    @property
    def data_type(self) -> CellDataType:
        value = self.value
        if self.is_empty:
            return CellDataType.EMPTY
        if self.formula:
            return CellDataType.FORMULA
        if isinstance(value, bool):
            return CellDataType.BOOLEAN
        if isinstance(value, (int, float)):
            return CellDataType.NUMBER
        if isinstance(value, (date, time)):
            return CellDataType.DATETIME
        if isinstance(value, str) and value.strip() in ERROR_LITERALS:
            return CellDataType.ERROR
        return CellDataType.STRING


@dataclass(frozen=True)
class Dimensions:
    row_count: int = 0
    col_count: int = 0


@dataclass(frozen=True)
class SheetStatistics:
    total_cells: int = 0
    non_empty_cells: int = 0

    @property
    def empty_percentage(self) -> float:
        if not self.total_cells:
            return 0.0
        return (self.total_cells - self.non_empty_cells) / self.total_cells * 100.0


@dataclass
class WorksheetContext:
    name: str
    cells: Dict[CellAddress, CellData] = field(default_factory=dict)
    dimensions: Dimensions = field(default_factory=Dimensions)

    def __post_init__(self) -> None:
        for address in self.cells:
            if address.row >= self.dimensions.row_count or address.col >= self.dimensions.col_count:
                raise ValueError(
                    f"Cell {address.label} lies outside sheet '{self.name}' dimensions "
                    f"({self.dimensions.row_count}x{self.dimensions.col_count})"
                )

    @classmethod
    def from_cells(
        cls,
        name: str,
        cells: Iterable[CellData],
        dimensions: Optional[Dimensions] = None,
    ) -> "WorksheetContext":
        mapping = {cell.address: cell for cell in cells}
        if dimensions is None:
            row_count = max((address.row for address in mapping), default=-1) + 1
            col_count = max((address.col for address in mapping), default=-1) + 1
            dimensions = Dimensions(row_count, col_count)
        return cls(name=name, cells=mapping, dimensions=dimensions)

    @property
    def statistics(self) -> SheetStatistics:
        non_empty = sum(1 for cell in self.cells.values() if not cell.is_empty)
        return SheetStatistics(
            total_cells=self.dimensions.row_count * self.dimensions.col_count,
            non_empty_cells=non_empty,
        )

    def non_empty_cells(self) -> List[CellData]:
        ordered = sorted(self.cells, key=row_major)
        return [self.cells[address] for address in ordered if not self.cells[address].is_empty]

    def get(self, row: int, col: int) -> Optional[CellData]:
        return self.cells.get(CellAddress(row, col))


@dataclass
class WorkbookContext:
    worksheets: List[WorksheetContext] = field(default_factory=list)
    name: str = ""

    @property
    def statistics(self) -> SheetStatistics:
        total = 0
        non_empty = 0
        for sheet in self.worksheets:
            stats = sheet.statistics
            total += stats.total_cells
            non_empty += stats.non_empty_cells
        return SheetStatistics(total_cells=total, non_empty_cells=non_empty)

    def sheet(self, name: str) -> Optional[WorksheetContext]:
        for worksheet in self.worksheets:
            if worksheet.name == name:
                return worksheet
        return None


@dataclass
class HeaderRegion:
    start_row: int
    end_row: int
    start_col: int
    end_col: int
    confidence: float
    multi_level: bool = False

    def contains(self, address: CellAddress) -> bool:
        return (
            self.start_row <= address.row <= self.end_row
            and self.start_col <= address.col <= self.end_col
        )


@dataclass
class AnchorMetrics:
    total_anchors: int = 0
    anchor_density: float = 0.0
    average_anchor_distance: float = 0.0
    heterogeneity: Dict[str, float] = field(default_factory=dict)


@dataclass
class StructuralAnchors:
    rows: Dict[int, float] = field(default_factory=dict)
    columns: Dict[int, float] = field(default_factory=dict)
    header_regions: List[HeaderRegion] = field(default_factory=list)
    radius: int = 0
    metrics: AnchorMetrics = field(default_factory=AnchorMetrics)

    @property
    def signature(self) -> str:
        return f"R{len(self.rows)}_C{len(self.columns)}_H{len(self.header_regions)}"

    def expanded_rows(self, row_count: int, k: Optional[int] = None) -> set[int]:
        return _expand(self.rows, self.radius if k is None else k, row_count)

    def expanded_columns(self, col_count: int, k: Optional[int] = None) -> set[int]:
        return _expand(self.columns, self.radius if k is None else k, col_count)


def _expand(indices: Iterable[int], k: int, limit: int) -> set[int]:
    expanded: set[int] = set()
    radius = max(0, k)
    for index in indices:
        for neighbour in range(max(0, index - radius), min(limit - 1, index + radius) + 1):
            expanded.add(neighbour)
    return expanded


@dataclass
class CrossSheetPattern:
    name: str
    sheets: List[str]
    confidence: float


@dataclass
class WorkbookAnchors:
    sheets: Dict[str, StructuralAnchors] = field(default_factory=dict)
    cross_sheet_patterns: List[CrossSheetPattern] = field(default_factory=list)
    global_metrics: Dict[str, float] = field(default_factory=dict)


@dataclass
class SkeletonWorksheet:
    name: str
    cells: Dict[CellAddress, CellData]
    dimensions: Dimensions
    original_cell_count: int
    skeleton_cell_count: int

    @property
    def compression_ratio(self) -> float:
        if not self.original_cell_count:
            return 0.0
        return 1.0 - self.skeleton_cell_count / self.original_cell_count

    def to_worksheet(self) -> WorksheetContext:
        return WorksheetContext(name=self.name, cells=dict(self.cells), dimensions=self.dimensions)


@dataclass
class SkeletonWorkbook:
    name: str
    sheets: List[SkeletonWorksheet] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def original_cell_count(self) -> int:
        return sum(sheet.original_cell_count for sheet in self.sheets)

    @property
    def skeleton_cell_count(self) -> int:
        return sum(sheet.skeleton_cell_count for sheet in self.sheets)

    @property
    def compression_ratio(self) -> float:
        original = self.original_cell_count
        if not original:
            return 0.0
        return 1.0 - self.skeleton_cell_count / original

    def to_workbook(self) -> WorkbookContext:
        return WorkbookContext(
            worksheets=[sheet.to_worksheet() for sheet in self.sheets],
            name=self.name,
        )


@dataclass(frozen=True)
class AggregatedRegion:
    start: CellAddress
    end: CellAddress
    type_token: str
    format_string: Optional[str]
    cell_count: int

    def contains(self, address: CellAddress) -> bool:
        return (
            self.start.row <= address.row <= self.end.row
            and self.start.col <= address.col <= self.end.col
        )

    def render(self) -> str:
        suffix = f":{self.format_string}" if self.format_string else ""
        return f"{self.type_token}:{self.start.label}-{self.end.label}{suffix}"


@dataclass
class AggregatedWorksheet:
    name: str
    regions: List[AggregatedRegion] = field(default_factory=list)
    literal_cells: List[CellData] = field(default_factory=list)

    @property
    def compression_ratio(self) -> float:
        original = sum(region.cell_count for region in self.regions) + len(self.literal_cells)
        emitted = len(self.regions) + len(self.literal_cells)
        return original / emitted if emitted else 1.0


@dataclass
class PipelineArtifact:
    name: str
    media_type: str
    data: str


@dataclass
class CompressionStatistics:
    original_cell_count: int = 0
    compressed_cell_count: int = 0
    compression_ratio: float = 0.0
    sheets_processed: int = 0
    processing_time_ms: float = 0.0


@dataclass
class CompressionResult:
    compressed_text: str
    original_token_count: int
    compressed_token_count: int
    step_timings: Dict[str, float] = field(default_factory=dict)
    artifacts: List[PipelineArtifact] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    strategy: Optional[str] = None
    statistics: CompressionStatistics = field(default_factory=CompressionStatistics)

    @property
    def compression_ratio(self) -> float:
        if not self.compressed_token_count:
            return 0.0
        return self.original_token_count / self.compressed_token_count


@dataclass
class DetectedTable:
    sheet_name: str
    top_row: int
    left_column: int
    bottom_row: int
    right_column: int
    confidence: float
    table_type: Optional[str] = None
    description: Optional[str] = None

    def a1_range(self) -> str:
        top_left = join_label(max(0, self.top_row - 1), max(0, self.left_column - 1))
        bottom_right = join_label(max(0, self.bottom_row - 1), max(0, self.right_column - 1))
        return f"{self.sheet_name}!{top_left}:{bottom_right}"

    def contains(self, address: CellAddress) -> bool:
        return (
            self.top_row - 1 <= address.row <= self.bottom_row - 1
            and self.left_column - 1 <= address.col <= self.right_column - 1
        )


@dataclass
class TableDetectionResult:
    tables: List[DetectedTable] = field(default_factory=list)
    tokens_used: int = 0
    estimated_cost: float = 0.0
    raw_response: str = ""


@dataclass
class TableDetectionTrace:
    compressed_text: str
    prompt: str
    response: str
    tables_detected: int
    duration_ms: float
    tokens_used: int
    cost: float


@dataclass
class QuestionAnsweringTrace:
    table_context: str
    prompt: str
    response: str
    duration_ms: float
    tokens_used: int
    cost: float


@dataclass
class ReasoningTrace:
    table_detection: TableDetectionTrace
    question_answering: QuestionAnsweringTrace
    total_duration_ms: float
    total_cost: float


@dataclass
class ChainOfSpreadsheetResponse:
    success: bool
    answer: Optional[str] = None
    detected_table: Optional[str] = None
    trace: Optional[ReasoningTrace] = None
    error: Optional[str] = None
    total_cost: float = 0.0
    duration_ms: float = 0.0
