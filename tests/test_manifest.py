import datetime
import math
from pathlib import Path

from logitforest.main import LoadParams, build_manifest_dict
from logitforest.markers import DEFAULT_MARKERS
from logitforest.utils import (
    build_effective_parameters,
    canonical_json_hash,
    sanitize_for_json,
    utc_timestamp_seconds,
)


def test_build_manifest_dict():
    abs_input_posix = "/test/path/spss_output.xlsx"
    counts = {
        "total_rows": 420,
        "tables_found": 3,
        "tables_skipped": 1,
        "model_count": 2,
        "selected_model_ids": [0, 1],
    }
    effective_params = {
        "load": {"workbook_path": abs_input_posix, "sheet": 0},
        "markers": {"table_marker": "Variables en la ecuación"},
    }
    hashes = ("testhash", "fulltesthash")
    artifacts = {
        "workbook": "results-testhash.xlsx",
        "plots": ["00-forest-plot-groupA.svg", "01-forest-plot-groupB.svg"],
    }

    manifest = build_manifest_dict(abs_input_posix, counts, effective_params, hashes, artifacts)

    assert manifest["version"] == "1"
    assert "timestamp_utc" in manifest
    assert manifest["absolute_input_path"] == abs_input_posix
    assert manifest["total_rows"] == 420
    assert manifest["tables_found"] == 3
    assert manifest["tables_skipped"] == 1
    assert manifest["model_count"] == 2
    assert manifest["selected_model_ids"] == [0, 1]
    assert manifest["effective_parameters"] == effective_params
    assert manifest["canonical_hash"] == "fulltesthash"
    assert manifest["canonical_hash_short"] == "testhash"
    assert manifest["artifacts"]["plots"] == artifacts["plots"]


def test_manifest_timestamp_format():
    timestamp = utc_timestamp_seconds()
    # ISO-8601 UTC timestamp with seconds precision and Z suffix
    assert timestamp.endswith("Z")
    assert "T" in timestamp
    datetime.datetime.fromisoformat(timestamp[:-1])


def test_effective_parameters_are_json_primitives(tmp_path: Path):
    load = LoadParams(workbook_path=tmp_path / "x.xlsx", sheet="Output")
    params = build_effective_parameters(load, DEFAULT_MARKERS)
    assert params["load"]["workbook_path"] == (tmp_path / "x.xlsx").resolve().as_posix()
    assert params["load"]["sheet"] == "Output"
    assert params["markers"]["layout"]["odds_ratio_col"] == 7
    assert params["markers"]["outcome_keywords"] == ["LOGISTIC", "REGRESSION", "VARIABLES"]


def test_sanitize_for_json_drops_non_finite_floats():
    assert sanitize_for_json({"a": math.nan, "b": (1.5, math.inf)}) == {"a": None, "b": [1.5, None]}


def test_canonical_hash_ignores_key_order():
    short_a, full_a = canonical_json_hash({"a": 1, "b": [1, 2]})
    short_b, full_b = canonical_json_hash({"b": [1, 2], "a": 1})
    assert full_a == full_b
    assert short_a == full_a[:8]
