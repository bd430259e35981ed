from pathlib import Path

import pandas as pd

from logitforest.gradio_ui import (
    VARIABLE_COLUMNS,
    _build_ui,
    _config_from_inputs,
    _export_selected,
    _file_path,
    _load_workbook,
    _open_model,
    _render_plot,
    _set_all_enabled,
)
from logitforest.reducer import Model, VariableResult, VariableStatus
from logitforest.scale import ScaleKind


def var(name, or_, lo, hi, retained=True):
    return VariableResult(
        name=name,
        odds_ratio=or_,
        lower_ci=lo,
        upper_ci=hi,
        p_value=0.01,
        last_step_label="Paso 1",
        last_step_number=1,
        in_final_model=retained,
        status=VariableStatus.RETAINED if retained else VariableStatus.REMOVED,
    )


def make_model():
    return Model(
        id=0,
        population_name="groupA",
        outcome="Exitus",
        total_steps=1,
        final_step_label="Paso 1",
        variables=(var("edad", 2.0, 1.2, 3.1), var("sexo", 1.3, 0.8, 2.0, retained=False)),
    )


def test_file_path_variants():
    assert _file_path(None) is None
    assert _file_path("/tmp/x.xlsx") == "/tmp/x.xlsx"
    assert _file_path({"name": "/tmp/y.xlsx"}) == "/tmp/y.xlsx"


def test_open_model_builds_variable_table():
    title, footnote, scale, table = _open_model([make_model()], 0)
    assert title == "Exitus - groupA"
    assert scale == "linear"
    assert list(table.columns) == VARIABLE_COLUMNS
    assert table["Enabled"].tolist() == [True, False]


def test_config_from_inputs_applies_table_overrides():
    model = make_model()
    table = pd.DataFrame(
        [["edad", False, "", "Age"], ["sexo", "true", "#00ff00", ""]],
        columns=VARIABLE_COLUMNS,
    )
    config = _config_from_inputs(model, "My title", None, "log", 12, None, None, table)
    assert config.title == "My title"
    assert config.scale is ScaleKind.LOG
    assert config.font_size == 12
    assert config.width == 1100

    edad, sexo = model.variables
    assert config.style_for(edad).enabled is False
    assert config.style_for(edad).display_name == "Age"
    assert config.style_for(edad).color == "#000000"
    assert config.style_for(sexo).enabled is True
    assert config.style_for(sexo).color == "#00ff00"
    assert config.style_for(sexo).display_name == "sexo"


def test_render_plot_empty_state_and_invalid_settings():
    models = [make_model()]
    table = pd.DataFrame(
        [["edad", False, "", ""], ["sexo", False, "", ""]], columns=VARIABLE_COLUMNS
    )
    html, files = _render_plot(models, 0, None, None, "linear", 14, 1100, 600, table)
    assert "No variables selected" in html
    assert files == []

    html, files = _render_plot(models, 0, None, None, "linear", 14, 300, 600, None)
    assert html.startswith("<p>Invalid plot settings")


def test_render_plot_writes_downloads(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    html, files = _render_plot([make_model()], 0, None, None, "log", 14, 600, 300, None)
    assert "<svg" in html
    assert [Path(f).suffix for f in files] == [".svg", ".png"]
    assert all(Path(f).exists() for f in files)


def test_load_and_export_round_trip(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    rows = [
        ["LOGISTIC REGRESSION VARIABLES Exitus /METHOD=FSTEP(LR) edad"] + [None] * 9,
        ["Variables en la ecuación"] + [None] * 9,
        [None, None, "B", "E.T.", "Wald", "gl", "Sig.", "Exp(B)", "I.C. 95% para EXP(B)", None],
        [None] * 8 + ["Inferior", "Superior"],
        ["Paso 1", "edad", None, None, None, None, 0.01, 2.0, 1.2, 3.1],
    ]
    path = tmp_path / "spss.xlsx"
    pd.DataFrame(rows).to_excel(path, header=False, index=False)

    status, report, models, choices = _load_workbook(str(path))
    assert status == "Found 1 logistic regression model(s)"
    assert "edad" in report
    assert choices[0][1] == 0
    assert models[0].population_name == "All patients"

    status, out = _export_selected(models, [])
    assert status.startswith("Error: Please select")
    assert out is None

    status, out = _export_selected(models, [0])
    assert Path(out).exists()


def test_load_workbook_reports_decode_errors(tmp_path: Path):
    bad = tmp_path / "bad.xlsx"
    bad.write_text("nope", encoding="utf-8")
    status, report, models, choices = _load_workbook(str(bad))
    assert status.startswith("Error:")
    assert models == []


def test_select_all_and_clear_all():
    _, _, _, table = _open_model([make_model()], 0)
    assert _set_all_enabled(table, True)["Enabled"].tolist() == [True, True]
    cleared = _set_all_enabled(table, False)
    assert cleared["Enabled"].tolist() == [False, False]
    # the source table is left untouched
    assert table["Enabled"].tolist() == [True, False]
    assert list(_set_all_enabled(None, True).columns) == VARIABLE_COLUMNS


def test_clear_all_table_renders_empty_state():
    _, _, _, table = _open_model([make_model()], 0)
    html, files = _render_plot(
        [make_model()], 0, None, None, "linear", 14, 1100, 600, _set_all_enabled(table, False)
    )
    assert "No variables selected" in html
    assert files == []


def test_build_ui_constructs_blocks():
    assert _build_ui() is not None
