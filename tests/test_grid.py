import math
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from logitforest.grid import (
    Grid,
    WorkbookDecodeError,
    coerce_cell,
    is_empty,
    load_grid,
    to_float,
)


def test_coerce_cell_normalizes_decoder_values():
    assert coerce_cell(None) is None
    assert coerce_cell(float("nan")) is None
    assert coerce_cell(np.int64(3)) == 3.0
    assert coerce_cell(True) == 1.0
    assert coerce_cell(pd.NaT) is None
    # strings are kept verbatim, whitespace included
    assert coerce_cell("  Paso 1 ") == "  Paso 1 "


def test_to_float_accepts_comma_decimal_and_returns_nan_otherwise():
    assert to_float("1,25") == pytest.approx(1.25)
    assert to_float(" 0.004 ") == pytest.approx(0.004)
    assert to_float(2.5) == 2.5
    assert math.isnan(to_float(None))
    assert math.isnan(to_float(""))
    assert math.isnan(to_float("n/a"))


def test_is_empty():
    assert is_empty(None)
    assert is_empty("")
    assert not is_empty(" ")
    assert not is_empty(0.0)


def test_grid_out_of_range_reads_are_empty():
    grid = Grid([["a", 1.0], ["b"]])
    assert grid.n_rows == 2
    assert len(grid) == 2
    assert grid.cell(0, 1) == 1.0
    assert grid.cell(1, 1) is None
    assert grid.cell(5, 0) is None
    assert grid.cell(-1, 0) is None
    assert grid.row(9) == ()


def test_grid_text_renders_integral_floats_without_decimals():
    grid = Grid([[3.0, 0.25, None, "x"]])
    assert grid.text(0, 0) == "3"
    assert grid.text(0, 1) == "0.25"
    assert grid.text(0, 2) == ""
    assert grid.text(0, 3) == "x"


def test_row_contains_is_exact_match():
    grid = Grid([[None, "Inferior", "Superior"]])
    assert grid.row_contains(0, "Inferior")
    assert not grid.row_contains(0, "Infer")


def test_load_grid_reads_xlsx_without_header(tmp_path: Path):
    path = tmp_path / "spss.xlsx"
    df = pd.DataFrame([["USE ALL.", None], ["Variables en la ecuación", 1.5]])
    df.to_excel(path, header=False, index=False)

    grid = load_grid(path)
    assert grid.n_rows == 2
    assert grid.cell(0, 0) == "USE ALL."
    assert grid.cell(0, 1) is None
    assert grid.cell(1, 0) == "Variables en la ecuación"
    assert grid.cell(1, 1) == pytest.approx(1.5)


def test_load_grid_missing_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_grid(tmp_path / "missing.xlsx")


def test_load_grid_wraps_decoder_errors(tmp_path: Path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"this is not a workbook")
    with pytest.raises(WorkbookDecodeError):
        load_grid(path)


def test_load_grid_legacy_xls_uses_installed_engine(tmp_path: Path):
    # OLE2 signature followed by junk: pandas routes it to the xls engine,
    # which must be installed and fail on the content, not on import.
    path = tmp_path / "legacy.xls"
    path.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504)
    with pytest.raises(WorkbookDecodeError) as exc:
        load_grid(path)
    assert "Missing optional dependency" not in str(exc.value)
