import math
from pathlib import Path

import pytest

from logitforest.plot import (
    MSG_NO_SCALE,
    MSG_NO_VARIABLES,
    NON_SIGNIFICANT_COLOR,
    SIGNIFICANT_COLOR,
    PlotConfiguration,
    PlotExportError,
    PlotStatus,
    SceneLine,
    SceneRect,
    SceneText,
    compose_forest_plot,
    default_variable_style,
    is_significant,
    plot_filename,
    png_scale_factor,
    render_scene,
    render_scene_svg,
)
from logitforest.reducer import Model, VariableResult, VariableStatus
from logitforest.scale import ScaleKind


def var(name, or_, lo, hi, p=0.01, retained=True):
    return VariableResult(
        name=name,
        odds_ratio=or_,
        lower_ci=lo,
        upper_ci=hi,
        p_value=p,
        last_step_label="Paso 2" if retained else "Paso 1",
        last_step_number=2 if retained else 1,
        in_final_model=retained,
        status=VariableStatus.RETAINED if retained else VariableStatus.REMOVED,
    )


def make_model(*variables, population="groupA"):
    return Model(
        id=0,
        population_name=population,
        outcome="Exitus",
        total_steps=2,
        final_step_label="Paso 2",
        variables=tuple(variables),
    )


def texts(scene):
    return [el.text for el in scene.elements if isinstance(el, SceneText)]


def test_significance_and_default_colors():
    sig = var("Edad", 2.0, 1.2, 3.1)
    non_sig = var("Sexo", 1.3, 0.8, 2.0)
    assert is_significant(sig)
    assert not is_significant(non_sig)
    assert default_variable_style(sig).color == SIGNIFICANT_COLOR
    assert default_variable_style(non_sig).color == NON_SIGNIFICANT_COLOR


def test_default_enabled_follows_retained_status():
    removed = var("Old", 1.3, 0.8, 2.0, retained=False)
    assert default_variable_style(removed).enabled is False
    assert default_variable_style(removed, show_only_retained=False).enabled is True


def test_configuration_title_and_lazy_defaults():
    model = make_model(var("Edad", 2.0, 1.2, 3.1))
    config = PlotConfiguration.for_model(model)
    assert config.title == "Exitus - groupA"
    assert config.variables == {}
    assert config.style_for(model.variables[0]).enabled is True


def test_with_variable_returns_new_configuration():
    v = var("Edad", 2.0, 1.2, 3.1)
    config = PlotConfiguration.for_model(make_model(v))
    changed = config.with_variable(v, color="#ff0000", display_name="Age")
    assert changed is not config
    assert config.style_for(v).color == SIGNIFICANT_COLOR
    assert changed.style_for(v).color == "#ff0000"
    assert changed.style_for(v).display_name == "Age"
    assert changed.style_for(v).enabled is True


def test_with_settings_accepts_scale_string():
    config = PlotConfiguration().with_settings(scale="LOG", font_size=12)
    assert config.scale is ScaleKind.LOG
    assert config.font_size == 12


def test_configuration_rejects_sizes_smaller_than_margins():
    with pytest.raises(ValueError):
        PlotConfiguration(width=400)
    with pytest.raises(ValueError):
        PlotConfiguration(height=100)
    with pytest.raises(ValueError):
        PlotConfiguration(font_size=0)


def test_no_variables_selected():
    v = var("Edad", 2.0, 1.2, 3.1)
    model = make_model(v)
    config = PlotConfiguration.for_model(model).with_variable(v, enabled=False)
    plot = compose_forest_plot(model, config)
    assert plot.status is PlotStatus.NO_VARIABLES_SELECTED
    assert plot.scene is None
    assert plot.message == MSG_NO_VARIABLES


def test_no_displayable_scale_is_distinct_from_no_selection():
    model = make_model(var("Broken", 0.0, 0.0, float("nan")))
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model))
    assert plot.status is PlotStatus.NO_DISPLAYABLE_SCALE
    assert plot.message == MSG_NO_SCALE
    assert len(plot.displayed) == 1


def test_zero_odds_ratio_listed_without_geometry():
    good = var("Edad", 2.0, 1.2, 3.1)
    zero = var("Raro", 0.0, 0.0, 1e30, p=0.99)
    model = make_model(good, zero)
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model))

    assert plot.status is PlotStatus.OK
    assert plot.non_estimable_count == 1
    assert plot.banner.startswith("Note: 1 variable(s) displayed without confidence intervals")
    # scale built from the valid record only
    assert plot.scale.data_min == 1.2
    assert plot.scale.data_max == 3.1
    assert zero in plot.displayed
    assert zero.status is VariableStatus.RETAINED

    scene_texts = texts(plot.scene)
    assert "Raro" in scene_texts
    assert any(t.endswith("Not estimable") for t in scene_texts)
    assert "2.00 (1.20-3.10)" in scene_texts
    # one marker for the single valid row
    assert sum(isinstance(el, SceneRect) for el in plot.scene.elements) == 1


def test_scene_geometry_stays_inside_plot_area():
    model = make_model(var("Edad", 2.0, 1.2, 3.1), var("Sexo", 0.6, 0.4, 0.9))
    config = PlotConfiguration.for_model(model, scale=ScaleKind.LOG)
    plot = compose_forest_plot(model, config)
    for el in plot.scene.elements:
        if isinstance(el, SceneRect):
            assert 280 <= el.x + 4 <= config.width - 240


def test_null_line_drawn_when_one_in_range():
    model = make_model(var("Edad", 2.0, 0.8, 3.1))
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model))
    assert any(isinstance(el, SceneLine) and el.width == 1.5 for el in plot.scene.elements)

    model = make_model(var("Edad", 5.0, 4.0, 6.0))
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model))
    assert not any(isinstance(el, SceneLine) and el.width == 1.5 for el in plot.scene.elements)


def test_display_name_override_used_in_scene():
    v = var("edad_cat", 2.0, 1.2, 3.1)
    model = make_model(v)
    config = PlotConfiguration.for_model(model).with_variable(v, display_name="Age group")
    assert "Age group" in texts(compose_forest_plot(model, config).scene)


def test_render_svg_and_png(tmp_path: Path):
    model = make_model(var("Edad", 2.0, 1.2, 3.1), population="group A/B")
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model, width=600, height=300))

    svg = render_scene_svg(plot.scene)
    assert "<svg" in svg

    name = plot_filename(model, "png")
    assert name == "forest-plot-group_A_B.png"
    png_path = Path(render_scene(plot.scene, tmp_path / name, fmt="png"))
    assert png_path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"

    svg_path = Path(render_scene(plot.scene, tmp_path / plot_filename(model), fmt="svg"))
    assert svg_path.suffix == ".svg"
    assert svg_path.stat().st_size > 0


def test_png_export_scale_factor():
    assert math.isclose(png_scale_factor(), 800 / 96)


def test_render_rejects_unknown_format(tmp_path: Path):
    model = make_model(var("Edad", 2.0, 1.2, 3.1))
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model))
    with pytest.raises(ValueError):
        render_scene(plot.scene, tmp_path / "plot.pdf", fmt="pdf")


def test_render_unwritable_path_raises_plot_export_error(tmp_path: Path):
    model = make_model(var("Edad", 2.0, 1.2, 3.1))
    plot = compose_forest_plot(model, PlotConfiguration.for_model(model))
    with pytest.raises(PlotExportError):
        render_scene(plot.scene, tmp_path / "missing_dir" / "plot.svg", fmt="svg")
