"""
Marker strings and column positions that describe the exported output format.

Defaults match the Spanish-language SPSS viewer export. Other locales or
versions can override any field through a JSON file (see load_marker_config).
"""

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple, Union


@dataclass(frozen=True)
class TableLayout:
    """
    Zero-based column positions inside a "Variables en la ecuación" table.

    Attributes:
        label_col: column holding step labels ("Paso 1") and directives.
        name_col: column holding the variable name ("Constante" for the intercept).
        p_value_col: column of the significance (Sig.) value.
        odds_ratio_col: column of Exp(B).
        lower_col / upper_col: 95% C.I. for Exp(B) bounds.
        ci_header_col: column where the second header row carries the lower-bound label.
    """

    label_col: int = 0
    name_col: int = 1
    p_value_col: int = 6
    odds_ratio_col: int = 7
    lower_col: int = 8
    upper_col: int = 9
    ci_header_col: int = 8


@dataclass(frozen=True)
class MarkerConfig:
    """
    Text markers recognized by the scanner plus its search windows.

    Matching rules:
      - filter_keyword / all_records_keyword: case-sensitive substring of column 0.
      - table_marker: exact equality with column 0.
      - outcome_keywords: case-insensitive, all must appear in the same cell;
        the outcome name follows the last keyword.
    """

    filter_keyword: str = "FILTER BY"
    all_records_keyword: str = "USE ALL"
    table_marker: str = "Variables en la ecuación"
    outcome_keywords: Tuple[str, ...] = ("LOGISTIC", "REGRESSION", "VARIABLES")
    ci_label: str = "Inferior"
    step_keyword: str = "Paso"
    constant_label: str = "Constante"
    default_step_label: str = "Paso 1"
    all_records_population: str = "All patients"
    unknown_population: str = "Unknown"
    filter_lookahead_rows: int = 5
    outcome_lookback_rows: int = 500
    table_max_rows: int = 200
    empty_rows_to_stop: int = 3
    layout: TableLayout = field(default_factory=TableLayout)


DEFAULT_MARKERS = MarkerConfig()


def marker_config_to_dict(markers: MarkerConfig) -> Dict[str, Any]:
    """JSON-friendly mapping of a MarkerConfig (tuples become lists)."""
    d = dataclasses.asdict(markers)
    d["outcome_keywords"] = list(markers.outcome_keywords)
    return d


def marker_config_from_dict(overrides: Dict[str, Any]) -> MarkerConfig:
    """
    Build a MarkerConfig from DEFAULT_MARKERS plus the given overrides.

    Raises:
        ValueError: on unknown keys or wrongly-typed values.
    """
    if not isinstance(overrides, dict):
        raise ValueError(
            f"Marker overrides must be a JSON object, got {type(overrides).__name__}"
        )

    known = {f.name for f in dataclasses.fields(MarkerConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown marker setting(s): {', '.join(unknown)}")

    kwargs: Dict[str, Any] = dict(overrides)

    if "layout" in kwargs:
        layout_over = kwargs["layout"]
        if not isinstance(layout_over, dict):
            raise ValueError("'layout' must be an object of column indexes")
        layout_known = {f.name for f in dataclasses.fields(TableLayout)}
        bad = sorted(set(layout_over) - layout_known)
        if bad:
            raise ValueError(f"Unknown layout column(s): {', '.join(bad)}")
        for k, v in layout_over.items():
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise ValueError(f"Layout column {k} must be a non-negative int, got {v!r}")
        kwargs["layout"] = dataclasses.replace(DEFAULT_MARKERS.layout, **layout_over)

    if "outcome_keywords" in kwargs:
        kw = kwargs["outcome_keywords"]
        if isinstance(kw, str) or not kw or not all(isinstance(k, str) and k for k in kw):
            raise ValueError("'outcome_keywords' must be a non-empty list of strings")
        kwargs["outcome_keywords"] = tuple(kw)

    for name in (
        "filter_lookahead_rows",
        "outcome_lookback_rows",
        "table_max_rows",
        "empty_rows_to_stop",
    ):
        if name in kwargs:
            v = kwargs[name]
            if not isinstance(v, int) or isinstance(v, bool) or v < 1:
                raise ValueError(f"{name} must be a positive int, got {v!r}")

    return dataclasses.replace(DEFAULT_MARKERS, **kwargs)


def load_marker_config(path: Union[str, Path]) -> MarkerConfig:
    """Read marker overrides from a UTF-8 JSON file."""
    p = Path(path)
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in marker config {p}: {e}") from e
    return marker_config_from_dict(payload)
