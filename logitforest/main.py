#!/usr/bin/env python3
"""
logit-forest - stepwise logistic regression results from SPSS viewer exports.

This module exposes the pipeline as pure functional units:
- load_workbook_grid()
- parse_models()
- render_model_plots()
- assemble_text_report()

plus the command line entry point. Each function takes explicit inputs and
returns explicit outputs; logging is used for internal diagnostics only.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .export import export_models, select_models
from .extractor import ModelGroup, ScanDiagnostics, scan_grid
from .grid import Grid, LogitForestError, load_grid
from .markers import DEFAULT_MARKERS, MarkerConfig, load_marker_config, marker_config_to_dict
from .plot import (
    PlotConfiguration,
    PlotStatus,
    compose_forest_plot,
    plot_filename,
    render_scene,
)
from .reducer import Model, reduce_groups
from .scale import ScaleKind
from .utils import (
    build_effective_parameters,
    canonical_json_hash,
    create_zip_async,
    normalize_abs_posix,
    utc_timestamp_seconds,
    write_manifest,
)

# Configure logging for debugging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 4


@dataclass
class LoadParams:
    """
    Parameters used when decoding the workbook.

    Attributes:
        workbook_path: Path to the .xlsx/.xls SPSS viewer export.
        sheet: Sheet index or name holding the output (SPSS exports one sheet).
    """

    workbook_path: Optional[Path]
    sheet: Union[int, str] = 0


@dataclass
class RenderParams:
    """
    Forest plot settings applied to every plotted model.

    formats: any of "svg" / "png"; an empty tuple disables plotting.
    """

    scale: ScaleKind = ScaleKind.LINEAR
    font_size: int = 14
    width: int = 1100
    height: int = 600
    formats: Tuple[str, ...] = ("svg",)


@dataclass
class ParseOutputs:
    models: List[Model]
    groups: List[ModelGroup]
    diagnostics: ScanDiagnostics


@dataclass
class PlotOutputs:
    artifact_paths: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


def load_workbook_grid(params: LoadParams) -> Grid:
    """Decode the workbook named by params; decoder errors propagate verbatim."""
    if params.workbook_path is None:
        raise ValueError("No workbook path given")
    return load_grid(params.workbook_path, sheet=params.sheet)


def parse_models(grid: Grid, markers: MarkerConfig = DEFAULT_MARKERS) -> ParseOutputs:
    """
    Scan `grid` and reduce every model group.

    An unrecognized grid yields zero models, not an error.
    """
    scanned = scan_grid(grid, markers)
    models = reduce_groups(scanned.groups)
    scanned.diagnostics.add_metric("models", len(models))
    if scanned.diagnostics.tables_found == 0:
        scanned.diagnostics.add_warning(
            f"No '{markers.table_marker}' tables found; is this an SPSS logistic regression export?"
        )
    scanned.diagnostics.add_event(f"Found {len(models)} logistic regression model(s)")
    return ParseOutputs(models=models, groups=scanned.groups, diagnostics=scanned.diagnostics)


def status_message(outputs: ParseOutputs) -> str:
    n = len(outputs.models)
    if n == 0:
        return "No logistic regression models found in this file"
    return f"Found {n} logistic regression model(s)"


def model_title(model: Model) -> str:
    title = f"Outcome: {model.outcome or 'Unknown'}"
    if model.population_name != DEFAULT_MARKERS.all_records_population:
        title += f" | Population: {model.population_name}"
    return title


def model_preview(model: Model, limit: int = PREVIEW_LIMIT) -> Tuple[str, str]:
    """Comma-joined first `limit` retained and removed names, '...' when truncated."""

    def _join(names: Sequence[str]) -> str:
        text = ", ".join(names[:limit])
        return text + "..." if len(names) > limit else text

    return (
        _join([v.name for v in model.retained]),
        _join([v.name for v in model.removed]),
    )


def model_summary_line(model: Model) -> str:
    return (
        f"[{model.id}] {model_title(model)} - {model.total_steps} steps "
        f"(final: {model.final_step_label}) - {model.retained_count} retained, "
        f"{model.removed_count} removed"
    )


def render_model_plots(
    models: Sequence[Model],
    render: RenderParams,
    output_dir: Union[str, Path],
) -> PlotOutputs:
    """
    Compose and render a forest plot per model with default variable styles.

    Models whose plot is an empty state produce a note instead of a file.
    """
    out = PlotOutputs()
    if not render.formats:
        return out

    for model in models:
        config = PlotConfiguration.for_model(
            model,
            scale=render.scale,
            font_size=render.font_size,
            width=render.width,
            height=render.height,
        )
        plot = compose_forest_plot(model, config)
        if plot.status is not PlotStatus.OK:
            out.notes.append(f"[{model.id}] {model.population_name}: {plot.message}")
            continue
        if plot.banner:
            out.notes.append(f"[{model.id}] {model.population_name}: {plot.banner}")
        for fmt in render.formats:
            filename = f"{model.id:02d}-{plot_filename(model, fmt)}"
            out.artifact_paths.append(
                render_scene(plot.scene, Path(output_dir) / filename, fmt=fmt)
            )
    return out


def get_default_params() -> tuple[LoadParams, MarkerConfig, RenderParams]:
    """Build default LoadParams, MarkerConfig and RenderParams."""
    return LoadParams(workbook_path=None, sheet=0), DEFAULT_MARKERS, RenderParams()


def build_run_identity(
    load: LoadParams, markers: MarkerConfig
) -> tuple[str, str, str, dict]:
    """
    Returns (abs_input_posix, short_hash, full_hash, effective_params)
    """
    abs_input_posix = normalize_abs_posix(load.workbook_path)
    effective_params = build_effective_parameters(load, markers)
    canonical_payload = {
        "absolute_input_path": abs_input_posix,
        "effective_parameters": effective_params,
    }
    short_hash, full_hash = canonical_json_hash(canonical_payload)
    return abs_input_posix, short_hash, full_hash, effective_params


def build_manifest_dict(
    abs_input_posix: str,
    counts: dict,
    effective_params: dict,
    hashes: tuple[str, str],
    artifact_paths: dict,
) -> dict:
    short_hash, full_hash = hashes
    return {
        "version": "1",
        "timestamp_utc": utc_timestamp_seconds(),
        "absolute_input_path": abs_input_posix,
        "total_rows": int(counts.get("total_rows", 0)),
        "tables_found": int(counts.get("tables_found", 0)),
        "tables_skipped": int(counts.get("tables_skipped", 0)),
        "model_count": int(counts.get("model_count", 0)),
        "selected_model_ids": list(counts.get("selected_model_ids", [])),
        "effective_parameters": effective_params,
        "canonical_hash": full_hash,
        "canonical_hash_short": short_hash,
        "artifacts": artifact_paths,
    }


def assemble_text_report(
    outputs: ParseOutputs,
    selected_ids: Optional[Sequence[int]] = None,
    plot_notes: Optional[Sequence[str]] = None,
) -> str:
    """
    Readable report: status line, one block per model with its variable table,
    scan diagnostics and plot notes.
    """
    selected = set(m.id for m in outputs.models) if selected_ids is None else set(selected_ids)
    parts: List[str] = [status_message(outputs), ""]

    for model in outputs.models:
        mark = "x" if model.id in selected else " "
        parts.append(f"[{mark}] {model_summary_line(model)}")
        retained, removed = model_preview(model)
        parts.append(f"    Retained: {retained or '-'}")
        if model.removed_count:
            parts.append(f"    Removed: {removed}")
        parts.append(
            f"    {'Variable':<25} {'Status':<9} {'OR':>8} {'Lower':>8} {'Upper':>8} {'P':>8}"
        )
        for v in model.variables:
            parts.append(
                f"    {v.name[:25]:<25} {v.status.value:<9} {v.odds_ratio:>8.3f} "
                f"{v.lower_ci:>8.3f} {v.upper_ci:>8.3f} {v.p_value:>8.3f}"
            )
        parts.append("")

    parts.append("Scan diagnostics:")
    parts.append(f"  {outputs.diagnostics.summarize()}")
    for row_index, reason in outputs.diagnostics.skipped_tables:
        parts.append(f"  skipped table at row {row_index}: {reason}")
    for w in outputs.diagnostics.warnings:
        parts.append(f"  warning: {w}")

    if plot_notes:
        parts.append("")
        parts.append("Plot notes:")
        parts.extend(f"  {n}" for n in plot_notes)

    return "\n".join(parts) + "\n"


def _orchestrate(
    params_load: LoadParams,
    markers: MarkerConfig,
    render: RenderParams,
    selected_ids: Optional[Sequence[int]] = None,
    output_root: Union[str, Path] = "output",
) -> Path:
    """
    Run the full pipeline: decode, parse, export workbook, render plots,
    write report and manifest into output_root/<timestamp>/. Returns the run dir.
    """
    run_output_dir = Path(output_root) / datetime.now().strftime("%Y%m%dT%H%M%S")
    run_output_dir.mkdir(parents=True, exist_ok=True)

    abs_input_posix, short_hash, full_hash, effective_params = build_run_identity(
        params_load, markers
    )

    grid = load_workbook_grid(params_load)
    outputs = parse_models(grid, markers)

    if selected_ids is None:
        selected_ids = [m.id for m in outputs.models]
    chosen = select_models(outputs.models, selected_ids)

    artifacts: dict = {"workbook": None, "plots": []}
    if chosen:
        workbook_path = run_output_dir / f"results-{short_hash}.xlsx"
        artifacts["workbook"] = export_models(outputs.models, selected_ids, workbook_path)
    else:
        logger.warning("No models selected; results workbook not written")

    plots = render_model_plots(chosen, render, run_output_dir)
    artifacts["plots"] = plots.artifact_paths

    report = assemble_text_report(outputs, selected_ids, plots.notes)
    report_path = run_output_dir / f"report-{short_hash}.txt"
    try:
        report_path.write_text(report, encoding="utf-8")
        artifacts["report"] = str(report_path)
    except OSError:
        logger.exception("Failed to write textual report to %s", str(report_path))

    counts = {
        "total_rows": grid.n_rows,
        "tables_found": outputs.diagnostics.tables_found,
        "tables_skipped": outputs.diagnostics.tables_skipped,
        "model_count": len(outputs.models),
        "selected_model_ids": [m.id for m in chosen],
    }
    manifest = build_manifest_dict(
        abs_input_posix=abs_input_posix,
        counts=counts,
        effective_params=effective_params,
        hashes=(short_hash, full_hash),
        artifact_paths=artifacts,
    )
    write_manifest(str(run_output_dir / f"manifest-{short_hash}.json"), manifest)

    bundle_paths = [Path(p) for p in plots.artifact_paths]
    if artifacts["workbook"]:
        bundle_paths.append(Path(artifacts["workbook"]))
    if bundle_paths:
        zip_thread = create_zip_async(
            str(run_output_dir / f"bundle-{short_hash}.zip"), bundle_paths
        )
        zip_thread.join(timeout=60)

    print(report)
    return run_output_dir


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="logitforest",
        description="Extract stepwise logistic regression results from an SPSS Excel export "
        "and produce a results workbook and forest plots.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks and debug logging (also LOGITFOREST_DEBUG=1).",
    )

    g_load = parser.add_argument_group("Input")
    g_load.add_argument(
        "--input", type=str, required=True, help="Path to the SPSS Excel export (required)."
    )
    g_load.add_argument(
        "--sheet", type=str, default="0", help="Sheet index or name to read."
    )
    g_load.add_argument(
        "--markers-json",
        type=str,
        default=None,
        help="JSON file overriding marker strings / column layout for other export locales.",
    )

    g_out = parser.add_argument_group("Output")
    g_out.add_argument(
        "--output-dir", type=str, default="output", help="Root directory for run folders."
    )
    g_out.add_argument(
        "--select",
        type=int,
        action="append",
        metavar="MODEL_ID",
        help="Model id to export/plot. Repeatable; default is every model.",
    )

    g_plot = parser.add_argument_group("Forest plot")
    g_plot.add_argument(
        "--scale", choices=[k.value for k in ScaleKind], default=ScaleKind.LINEAR.value
    )
    g_plot.add_argument("--font-size", type=int, default=14)
    g_plot.add_argument("--width", type=int, default=1100, help="Plot width in pixels.")
    g_plot.add_argument("--height", type=int, default=600, help="Plot height in pixels.")
    g_plot.add_argument("--png", action="store_true", help="Also write 800-DPI PNG plots.")
    g_plot.add_argument("--no-plots", action="store_true", help="Skip forest plots.")
    return parser


def _parse_sheet(raw: str) -> Union[int, str]:
    s = str(raw).strip()
    return int(s) if s.isdigit() else s


def _args_to_params(args) -> tuple[LoadParams, MarkerConfig, RenderParams]:
    d_load, d_markers, d_render = get_default_params()

    load = LoadParams(workbook_path=Path(args.input), sheet=_parse_sheet(args.sheet))
    markers = load_marker_config(args.markers_json) if args.markers_json else d_markers

    for name in ("font_size", "width", "height"):
        if getattr(args, name) <= 0:
            raise ValueError(f"--{name.replace('_', '-')} must be positive")

    formats: Tuple[str, ...] = ()
    if not args.no_plots:
        formats = ("svg", "png") if args.png else d_render.formats
    render = RenderParams(
        scale=ScaleKind(args.scale),
        font_size=args.font_size,
        width=args.width,
        height=args.height,
        formats=formats,
    )
    if render.width <= 520 or render.height <= 160:
        raise ValueError("Plot must be wider than 520 px and taller than 160 px (margins)")
    return load, markers, render


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    CLI entry point. Parses arguments, builds parameter objects, then orchestrates.
    """
    import sys

    argv = list(sys.argv[1:] if argv is None else argv)

    if "--print-defaults" in argv:
        import json

        d_load, d_markers, d_render = get_default_params()
        payload = {
            "LoadParams": {
                "workbook_path": None,
                "sheet": d_load.sheet,
            },
            "MarkerConfig": marker_config_to_dict(d_markers),
            "RenderParams": {
                "scale": d_render.scale.value,
                "font_size": d_render.font_size,
                "width": d_render.width,
                "height": d_render.height,
                "formats": list(d_render.formats),
            },
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    parser = _build_cli_parser()
    args = parser.parse_args(argv)
    debug_mode = bool(
        getattr(args, "debug", False) or os.getenv("LOGITFOREST_DEBUG", "") == "1"
    )
    if debug_mode:
        logging.getLogger("logitforest").setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)

    try:
        params_load, markers, render = _args_to_params(args)
        _orchestrate(params_load, markers, render, args.select, args.output_dir)
    except (FileNotFoundError, ValueError, LogitForestError) as e:
        # Concise, user-facing errors for user-correctable problems
        # (missing file, decode failure, bad settings, export failure).
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set LOGITFOREST_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
