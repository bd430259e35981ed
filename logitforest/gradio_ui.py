"""Gradio UI wrapper for the logitforest pipeline.

Upload an SPSS Excel export, pick the models to export, and style a forest
plot per model with inline SVG preview and SVG/PNG downloads.
"""

import logging
import os
import shutil
import time
import traceback
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import gradio as gr
import pandas as pd

from .export import ExportError, export_models
from .grid import LogitForestError
from .main import (
    LoadParams,
    assemble_text_report,
    get_default_params,
    load_workbook_grid,
    model_summary_line,
    parse_models,
    status_message,
)
from .plot import (
    PlotConfiguration,
    PlotExportError,
    PlotStatus,
    compose_forest_plot,
    plot_filename,
    render_scene,
    render_scene_svg,
)
from .reducer import Model
from .utils import ensure_run_dir

logger = logging.getLogger(__name__)

RUN_ROOT = Path("output_gradio")
VARIABLE_COLUMNS = ["Variable", "Enabled", "Color", "Display name"]


def _prune_old_runs(run_root: Path, keep: Optional[int] = None) -> None:
    """
    Retention helper: keep only the newest `keep` subdirectories under `run_root`.

    Timestamp-named run directories (YYYYmmddTHHMMSS) are ordered by name;
    anything else falls back to mtime. Deletion failures are logged at WARNING
    and retried on a future run.
    """
    if keep is None:
        try:
            keep = int(os.getenv("LOGITFOREST_GRADIO_RETENTION_KEEP", "10"))
        except ValueError:
            keep = 10
    if keep <= 0:
        logger.debug(f"retention keep <=0 ({keep}) -> skipping prune")
        return

    if not run_root.exists() or not run_root.is_dir():
        return

    subdirs = [p for p in run_root.iterdir() if p.is_dir()]
    if not subdirs:
        return

    def _looks_like_run_ts(name: str) -> bool:
        return (
            len(name) >= 15
            and name[0:8].isdigit()
            and name[8] == "T"
            and name[9:15].isdigit()
        )

    if all(_looks_like_run_ts(p.name) for p in subdirs):
        subdirs_sorted = sorted(subdirs, key=lambda p: p.name, reverse=True)
    else:
        subdirs_sorted = sorted(subdirs, key=lambda p: p.stat().st_mtime, reverse=True)

    run_root_resolved = run_root.resolve()
    for d in subdirs_sorted[keep:]:
        try:
            # Never follow links out of the app-owned directory.
            if d.is_symlink():
                logger.warning(f"Skipping symlink during prune: {d}")
                continue
            if os.path.commonpath([str(run_root_resolved), str(d.resolve())]) != str(
                run_root_resolved
            ):
                logger.warning(f"Skipping prune of {d} - resolved outside run_root")
                continue
            shutil.rmtree(d)
            logger.info(f"Pruned old run dir: {d}")
        except OSError as e:
            logger.warning(f"Failed to prune {d}: {e}")


def _file_path(file_obj: Any) -> Optional[str]:
    # gr.File returns a path string, a dict with "name"/"tmp_path", or a tempfile wrapper
    if file_obj is None:
        return None
    if isinstance(file_obj, str):
        return file_obj
    if isinstance(file_obj, dict):
        return file_obj.get("name") or file_obj.get("tmp_path")
    return getattr(file_obj, "name", None)


def _find_model(models: Sequence[Model], model_id: Any) -> Optional[Model]:
    if model_id is None:
        return None
    try:
        wanted = int(model_id)
    except (TypeError, ValueError):
        return None
    return next((m for m in models if m.id == wanted), None)


def _load_workbook(uploaded_file_path: Optional[str]):
    """
    Decode and parse an uploaded workbook.

    Returns (status, report_text, models, checkbox_choices).
    """
    t0 = time.time()
    logger.info(f"_load_workbook START - uploaded_file_path={uploaded_file_path!r}")
    if not uploaded_file_path:
        return "Upload an SPSS Excel file to begin", "", [], []

    d_load, d_markers, _ = get_default_params()
    params = LoadParams(workbook_path=Path(uploaded_file_path).resolve(), sheet=d_load.sheet)
    try:
        grid = load_workbook_grid(params)
    except (FileNotFoundError, LogitForestError) as e:
        logger.info("Workbook decode failed: %s", e)
        return f"Error: {e}", "", [], []

    outputs = parse_models(grid, d_markers)
    choices = [(model_summary_line(m), m.id) for m in outputs.models]
    logger.info(
        f"_load_workbook COMPLETE (models={len(outputs.models)}, "
        f"duration_ms={(time.time() - t0) * 1000:.1f})"
    )
    return status_message(outputs), assemble_text_report(outputs), outputs.models, choices


def _export_selected(models: Sequence[Model], selected: Optional[Sequence[Any]]):
    """Returns (status, workbook_path or None)."""
    selected_ids = [int(s) for s in (selected or [])]
    if not selected_ids:
        return "Error: Please select at least one model to export", None
    run_dir = ensure_run_dir(".", prefix=str(RUN_ROOT))
    _prune_old_runs(RUN_ROOT)
    try:
        path = export_models(
            models, selected_ids, run_dir / "SPSS_Logistic_Regression_Results.xlsx"
        )
    except ExportError as e:
        return f"Error: {e}", None
    return f"Excel file written ({len(selected_ids)} model(s))", path


def _cell_str(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y", "x")
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    return bool(value)


def _variable_table(model: Model, config: PlotConfiguration) -> pd.DataFrame:
    rows = []
    for v in model.variables:
        style = config.style_for(v)
        rows.append([v.name, bool(style.enabled), style.color, style.display_name])
    return pd.DataFrame(rows, columns=VARIABLE_COLUMNS)


def _set_all_enabled(table: Optional[pd.DataFrame], enabled: bool) -> pd.DataFrame:
    """Copy of the variable table with every row enabled or disabled."""
    if table is None or len(table) == 0:
        return pd.DataFrame(columns=VARIABLE_COLUMNS)
    out = table.copy()
    out["Enabled"] = bool(enabled)
    return out


def _config_from_inputs(
    model: Model,
    title: Optional[str],
    footnote: Optional[str],
    scale: str,
    font_size: Optional[float],
    width: Optional[float],
    height: Optional[float],
    table: Optional[pd.DataFrame],
) -> PlotConfiguration:
    """
    Build a fresh PlotConfiguration from the widget values; rows of the
    variable table become per-variable overrides.
    """
    d = PlotConfiguration.for_model(model)
    config = d.with_settings(
        title=title if title is not None else d.title,
        footnote=footnote if footnote is not None else d.footnote,
        scale=scale or d.scale,
        font_size=int(font_size) if font_size else d.font_size,
        width=int(width) if width else d.width,
        height=int(height) if height else d.height,
    )
    if table is None or len(table) == 0:
        return config

    by_name = {v.name: v for v in model.variables}
    for _, row in table.iterrows():
        v = by_name.get(str(row["Variable"]))
        if v is None:
            continue
        color = _cell_str(row["Color"]) or config.style_for(v).color
        display = _cell_str(row["Display name"]) or v.name
        config = config.with_variable(
            v, enabled=_as_bool(row["Enabled"]), color=color, display_name=display
        )
    return config


def _open_model(models: Sequence[Model], model_id: Any):
    """Fresh plot settings for the chosen model: (title, footnote, scale, table)."""
    model = _find_model(models, model_id)
    if model is None:
        return "", "", "linear", pd.DataFrame(columns=VARIABLE_COLUMNS)
    config = PlotConfiguration.for_model(model)
    return config.title, config.footnote, config.scale.value, _variable_table(model, config)


def _render_plot(
    models: Sequence[Model],
    model_id: Any,
    title: Optional[str],
    footnote: Optional[str],
    scale: str,
    font_size: Optional[float],
    width: Optional[float],
    height: Optional[float],
    table: Optional[pd.DataFrame],
) -> Tuple[str, List[str]]:
    """Returns (html, download_paths)."""
    model = _find_model(models, model_id)
    if model is None:
        return "<p>Select a model to plot.</p>", []

    try:
        config = _config_from_inputs(
            model, title, footnote, scale, font_size, width, height, table
        )
    except ValueError as e:
        return f"<p>Invalid plot settings: {e}</p>", []

    plot = compose_forest_plot(model, config)
    if plot.status is not PlotStatus.OK:
        return f"<p>{plot.message}</p>", []

    parts = []
    if plot.banner:
        parts.append(f"<p><b>{plot.banner}</b></p>")
    parts.append(f"<div>{render_scene_svg(plot.scene)}</div>")

    downloads: List[str] = []
    try:
        run_dir = ensure_run_dir(".", prefix=str(RUN_ROOT))
        for fmt in ("svg", "png"):
            downloads.append(render_scene(plot.scene, run_dir / plot_filename(model, fmt), fmt))
        _prune_old_runs(RUN_ROOT)
    except (OSError, PlotExportError) as e:
        logger.warning("Plot export failed: %s\n%s", e, traceback.format_exc())
        parts.append(f"<p>Export failed: {e}</p>")
    return "\n".join(parts), downloads


def _build_ui():
    with gr.Blocks() as demo:
        gr.Markdown(
            "### SPSS Logistic Regression Parser\n"
            "Extract stepwise logistic regression results and draw forest plots."
        )
        models_state = gr.State([])

        with gr.Row():
            file_input = gr.File(
                label="Upload SPSS Output (Excel format)", file_types=[".xlsx", ".xls"]
            )
        status = gr.Textbox(label="Status", value="Upload an SPSS Excel file to begin", interactive=False)
        report = gr.Textbox(label="Report", lines=16, interactive=False)

        selected = gr.CheckboxGroup(label="Models to export", choices=[])
        export_button = gr.Button("Export selected models to Excel")
        export_file = gr.File(label="Download results workbook")

        gr.Markdown("#### Forest plot")
        model_choice = gr.Dropdown(label="Model", choices=[])
        with gr.Row():
            title = gr.Textbox(label="Title")
            footnote = gr.Textbox(label="Footnote")
            scale = gr.Radio(label="Scale", choices=["linear", "log"], value="linear")
        with gr.Row():
            font_size = gr.Number(label="Font size", value=14, precision=0)
            width = gr.Number(label="Width (px)", value=1100, precision=0)
            height = gr.Number(label="Height (px)", value=600, precision=0)
        variables = gr.Dataframe(
            headers=VARIABLE_COLUMNS,
            datatype=["str", "bool", "str", "str"],
            type="pandas",
            interactive=True,
            label="Variables",
        )
        with gr.Row():
            select_all = gr.Button("Select All")
            clear_all = gr.Button("Clear All")
            plot_button = gr.Button("Update plot")
        plot_html = gr.HTML(label="Plot")
        plot_files = gr.File(label="Download SVG / PNG", file_count="multiple")

        def _on_upload(file_obj):
            st, rpt, models, choices = _load_workbook(_file_path(file_obj))
            ids = [c[1] for c in choices]
            return (
                st,
                rpt,
                models,
                gr.update(choices=choices, value=ids),
                gr.update(choices=choices, value=ids[0] if ids else None),
            )

        file_input.change(
            _on_upload,
            inputs=[file_input],
            outputs=[status, report, models_state, selected, model_choice],
        )
        export_button.click(
            _export_selected, inputs=[models_state, selected], outputs=[status, export_file]
        )
        model_choice.change(
            _open_model,
            inputs=[models_state, model_choice],
            outputs=[title, footnote, scale, variables],
        )
        plot_inputs = [
            models_state,
            model_choice,
            title,
            footnote,
            scale,
            font_size,
            width,
            height,
            variables,
        ]
        plot_button.click(_render_plot, inputs=plot_inputs, outputs=[plot_html, plot_files])
        # Any settings change recomputes the plot; text boxes re-render on Enter.
        for control in (scale, font_size, width, height, variables):
            control.change(_render_plot, inputs=plot_inputs, outputs=[plot_html, plot_files])
        for control in (title, footnote):
            control.submit(_render_plot, inputs=plot_inputs, outputs=[plot_html, plot_files])
        select_all.click(
            lambda table: _set_all_enabled(table, True), inputs=[variables], outputs=[variables]
        )
        clear_all.click(
            lambda table: _set_all_enabled(table, False), inputs=[variables], outputs=[variables]
        )

    return demo


if __name__ == "__main__":
    demo = _build_ui()
    demo.launch()
