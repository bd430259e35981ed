"""
Results workbook export: one worksheet per selected model.

Sheets are built as DataFrames and written through pandas' openpyxl engine;
styling (title fonts, header fill, column widths) is applied on the openpyxl
worksheets before the writer closes.
"""

import logging
import math
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Union

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill

from .grid import LogitForestError
from .reducer import Model

logger = logging.getLogger(__name__)

HEADER = ["Variable", "Status", "OR", "95% CI Lower", "95% CI Upper", "P-Value"]
COLUMN_WIDTHS = {"A": 25, "B": 10, "C": 10, "D": 12, "E": 12, "F": 12}
SHEET_NAME_MAX = 28
P_VALUE_FLOOR = 0.001


class ExportError(LogitForestError):
    """Raised when the results workbook cannot be produced."""

    pass


def round_value(value) -> Optional[float]:
    """One-decimal rounding; None for values that are not numbers."""
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f):
        return None
    return round(f, 1)


def format_p_value(value) -> Union[str, float, None]:
    try:
        if float(value) < P_VALUE_FLOOR:
            return "<0.001"
    except (TypeError, ValueError):
        pass
    return round_value(value)


def sanitize_sheet_name(name: str) -> str:
    """Truncate to 28 characters and replace characters Excel forbids in sheet names."""
    return re.sub(r"[:\\/?*\[\]]", "_", name[:SHEET_NAME_MAX])


def unique_sheet_name(name: str, used: Set[str]) -> str:
    """
    Sanitized sheet name, de-duplicated against `used` by appending _1, _2, ...

    Excel compares sheet titles case-insensitively, so `used` holds casefolded
    names; the casefolded choice is added to it.
    """
    base = sanitize_sheet_name(name)
    candidate = base
    counter = 1
    while candidate.casefold() in used:
        candidate = f"{base}_{counter}"
        counter += 1
    used.add(candidate.casefold())
    return candidate


def model_sheet_rows(model: Model) -> List[list]:
    """Title rows, a blank separator, the header row and one row per variable."""
    rows: List[list] = [
        [f"Outcome Variable: {model.outcome or 'Unknown'}"],
        [f"Population: {model.population_name}"],
        [f"Analysis: {model.final_step_label} ({model.total_steps} total steps)"],
        [],
        list(HEADER),
    ]
    for v in model.variables:
        rows.append(
            [
                v.name,
                v.status.value,
                round_value(v.odds_ratio),
                round_value(v.lower_ci),
                round_value(v.upper_ci),
                format_p_value(v.p_value),
            ]
        )
    return rows


def model_sheet_frame(model: Model) -> pd.DataFrame:
    rows = model_sheet_rows(model)
    width = len(HEADER)
    return pd.DataFrame([r + [None] * (width - len(r)) for r in rows])


def _style_sheet(ws) -> None:
    for col, width in COLUMN_WIDTHS.items():
        ws.column_dimensions[col].width = width
    ws["A1"].font = Font(bold=True, size=14)
    ws["A2"].font = Font(bold=True)
    ws["A3"].font = Font(italic=True)
    fill = PatternFill(fill_type="solid", fgColor="E0E0E0")
    for cell in ws[5]:
        cell.font = Font(bold=True)
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center")


def select_models(models: Sequence[Model], selected_ids: Iterable[int]) -> List[Model]:
    """Models in selection order; unknown ids are ignored."""
    by_id = {m.id: m for m in models}
    return [by_id[i] for i in selected_ids if i in by_id]


def export_models(
    models: Sequence[Model],
    selected_ids: Iterable[int],
    output_path: Union[str, Path],
) -> str:
    """
    Write one worksheet per selected model to an .xlsx workbook.

    Raises:
        ExportError: nothing selected, or the workbook could not be written.
            Models are never modified, so a failed export can be retried.
    """
    chosen = select_models(models, selected_ids)
    if not chosen:
        raise ExportError("Please select at least one model to export")

    out = Path(output_path)
    used: Set[str] = set()
    try:
        with pd.ExcelWriter(out, engine="openpyxl") as writer:
            for model in chosen:
                sheet = unique_sheet_name(model.population_name or f"Model_{model.id + 1}", used)
                model_sheet_frame(model).to_excel(
                    writer, sheet_name=sheet, header=False, index=False
                )
                _style_sheet(writer.sheets[sheet])
                logger.debug("Wrote sheet %r for model %d", sheet, model.id)
    except OSError as e:
        raise ExportError(f"Error creating file: {e}") from e

    logger.info("Exported %d model(s) to %s", len(chosen), out)
    return str(out)
