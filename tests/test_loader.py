from __future__ import annotations

import pytest
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from spreadsheet_llm.errors import WorkbookLoadError
from spreadsheet_llm.loaders.openpyxl_loader import OpenpyxlWorkbookLoader
from spreadsheet_llm.models import CellAddress, CellDataType, Dimensions
from spreadsheet_llm.ports import LoadOptions


@pytest.fixture
def sales_file(tmp_path):
    book = Workbook()
    sheet = book.active
    sheet.title = "Sales"
    sheet["A1"] = "Region"
    sheet["A1"].font = Font(bold=True)
    sheet["B1"] = "Revenue"
    sheet["C1"] = "Flag"
    sheet["C1"].fill = PatternFill(fill_type="solid", fgColor="FFFFFF00")
    sheet["D1"] = "Merged"
    sheet.merge_cells("D1:E1")
    sheet["A2"] = "North"
    sheet["B2"] = 1200.5
    sheet["B2"].number_format = "$#,##0.00"
    sheet["B3"] = "=SUM(B2:B2)"
    notes = book.create_sheet("Notes")
    notes["A1"] = "hello"
    path = tmp_path / "sales.xlsx"
    book.save(path)
    return path


def test_loads_values_formats_and_styles(sales_file):
    book = OpenpyxlWorkbookLoader().load(str(sales_file))
    assert book.name == "sales.xlsx"
    assert [sheet.name for sheet in book.worksheets] == ["Sales", "Notes"]

    sales = book.sheet("Sales")
    assert sales.dimensions == Dimensions(3, 5)
    assert sales.get(0, 0).style.bold
    assert sales.get(0, 1).style is None
    assert sales.get(0, 2).style.background_color == "FFFFFF00"
    assert sales.get(0, 3).style.merged
    assert sales.get(0, 4) is None
    assert sales.get(1, 1).value == 1200.5
    assert sales.get(1, 1).format_string == "$#,##0.00"
    assert sales.get(1, 0).format_string is None


def test_formula_text_is_kept(sales_file):
    sales = OpenpyxlWorkbookLoader().load(str(sales_file)).sheet("Sales")
    cell = sales.cells[CellAddress(2, 1)]
    assert cell.formula == "=SUM(B2:B2)"
    assert cell.data_type == CellDataType.FORMULA


def test_formulas_can_be_skipped(sales_file):
    options = LoadOptions(include_formulas=False)
    sales = OpenpyxlWorkbookLoader().load(str(sales_file), options).sheet("Sales")
    assert all(cell.formula is None for cell in sales.cells.values())


def test_styles_can_be_skipped(sales_file):
    options = LoadOptions(include_styles=False)
    sales = OpenpyxlWorkbookLoader().load(str(sales_file), options).sheet("Sales")
    assert all(cell.style is None for cell in sales.cells.values())


def test_read_only_mode(sales_file):
    options = LoadOptions(memory_optimization_level="aggressive")
    book = OpenpyxlWorkbookLoader().load(str(sales_file), options)
    assert book.sheet("Notes").get(0, 0).value == "hello"
    assert book.sheet("Sales").get(1, 0).value == "North"


def test_missing_file(tmp_path):
    with pytest.raises(WorkbookLoadError):
        OpenpyxlWorkbookLoader().load(str(tmp_path / "nope.xlsx"))


def test_corrupt_file(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_text("not a zip archive", encoding="utf-8")
    with pytest.raises(WorkbookLoadError):
        OpenpyxlWorkbookLoader().load(str(path))
