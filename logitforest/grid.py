"""
Cell grid model and the workbook decode collaborator.

The scanner never touches files: it walks a read-only Grid of cells, where a
cell is a string, a float, or None for an empty cell. load_grid() is the only
place that decodes a workbook, using pandas (openpyxl engine for .xlsx, xlrd
for legacy .xls).
"""

import logging
import math
from pathlib import Path
from typing import Any, Iterable, Sequence, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

Cell = Union[str, float, None]


class LogitForestError(Exception):
    """Base exception for logitforest errors."""

    pass


class WorkbookDecodeError(LogitForestError):
    """Raised when the spreadsheet decoder cannot read the workbook."""

    pass


def coerce_cell(value: Any) -> Cell:
    """
    Normalize a decoded spreadsheet value into a Cell.

    - None, NaN and NaT become None (empty)
    - bool/int/numpy numbers become float
    - strings are kept verbatim (not stripped)
    - anything else (dates, times) is stringified
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, np.bool_)):
        return float(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        f = float(value)
        return None if math.isnan(f) else f
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


def is_empty(value: Cell) -> bool:
    """An empty cell is None or a string with no characters."""
    return value is None or value == ""


def to_float(value: Cell) -> float:
    """
    Parse a cell as a float, returning NaN when it holds no number.

    Strings are stripped and accept a comma decimal separator ("1,25"), which
    is what Spanish-locale exports produce when a value is stored as text.
    """
    if value is None:
        return float("nan")
    if isinstance(value, float):
        return value
    s = str(value).strip().replace(",", ".")
    if s == "":
        return float("nan")
    try:
        return float(s)
    except ValueError:
        return float("nan")


class Grid:
    """
    Read-only rectangular view over decoded cells, indexed by (row, column).

    Rows may be ragged; reading past the end of a row or of the grid yields
    None so the scanner can probe fixed column positions without bounds checks.
    """

    def __init__(self, rows: Iterable[Sequence[Any]]) -> None:
        self._rows: Tuple[Tuple[Cell, ...], ...] = tuple(
            tuple(coerce_cell(v) for v in row) for row in rows
        )

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "Grid":
        """Build a grid from a header-less DataFrame (one frame row per grid row)."""
        return cls(df.itertuples(index=False, name=None))

    @property
    def n_rows(self) -> int:
        return len(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def row(self, r: int) -> Tuple[Cell, ...]:
        if 0 <= r < len(self._rows):
            return self._rows[r]
        return ()

    def cell(self, r: int, c: int) -> Cell:
        row = self.row(r)
        if 0 <= c < len(row):
            return row[c]
        return None

    def text(self, r: int, c: int) -> str:
        """Cell rendered as text; numbers use their shortest repr, empty is ''."""
        v = self.cell(r, c)
        if v is None:
            return ""
        if isinstance(v, float):
            return str(int(v)) if v.is_integer() else repr(v)
        return v

    def row_contains(self, r: int, needle: str) -> bool:
        """True if any cell of row r equals `needle` exactly."""
        return any(v == needle for v in self.row(r))


def load_grid(path: Union[str, Path], sheet: Union[int, str] = 0) -> Grid:
    """
    Decode the given sheet of a workbook into a Grid.

    Args:
        path: Path to an .xlsx/.xls workbook exported from the statistics viewer.
        sheet: Sheet index or name (default: first sheet).

    Returns:
        Grid: the decoded cells.

    Raises:
        FileNotFoundError: If the workbook does not exist
        WorkbookDecodeError: If the decoder fails; message is the decoder's own
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Workbook not found: {p}")
    if not p.is_file():
        raise WorkbookDecodeError(f"Path is not a file: {p}")

    try:
        df = pd.read_excel(p, sheet_name=sheet, header=None, dtype=object)
    except Exception as e:
        raise WorkbookDecodeError(str(e)) from e

    grid = Grid.from_frame(df)
    logger.debug("Decoded %s sheet=%r -> %d rows", p.name, sheet, grid.n_rows)
    return grid
