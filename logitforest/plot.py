"""
Forest plot composition and rendering.

compose_forest_plot() is pure: it turns a Model and a PlotConfiguration into a
Scene, a flat list of pixel-space primitives (lines, rectangles, text).
render_scene() is the thin output collaborator that draws a Scene with
matplotlib and writes SVG, or PNG at an 800-DPI-equivalent scale.

Every settings change builds a new PlotConfiguration and a new Scene; nothing
is patched in place.
"""

import dataclasses
import io
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Non-interactive backend before pyplot is imported (headless rendering).
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
from matplotlib.patches import Rectangle

from .grid import LogitForestError
from .reducer import Model, VariableResult
from .scale import (
    ScaleKind,
    ScaleRange,
    collect_scale_values,
    compute_range,
    format_tick,
    is_plot_valid,
    shows_null_line,
    ticks,
    value_to_pixel,
)

logger = logging.getLogger(__name__)

SIGNIFICANT_COLOR = "#000000"
NON_SIGNIFICANT_COLOR = "#808080"
INVALID_TEXT_COLOR = "#999999"
GRID_COLOR = "#e0e0e0"

SCREEN_DPI = 96
EXPORT_DPI = 800

DEFAULT_FOOTNOTE = "Error bars represent 95% confidence intervals"

MSG_NO_VARIABLES = "No variables selected. Please enable at least one variable to display."
MSG_NO_SCALE = (
    "Cannot calculate plot scale: all selected variables have invalid values "
    "(zero, NaN, or negative). These variables will be listed but cannot be plotted."
)


class PlotExportError(LogitForestError):
    """Raised when a rendered plot cannot be written."""

    pass


@dataclass(frozen=True)
class Margins:
    top: int = 80
    right: int = 240
    bottom: int = 80
    left: int = 280


MARGINS = Margins()


@dataclass(frozen=True)
class VariableStyle:
    enabled: bool
    color: str
    display_name: str


def is_significant(v: VariableResult) -> bool:
    """The CI excludes the null effect (OR = 1)."""
    return not (v.lower_ci <= 1.0 and v.upper_ci >= 1.0)


def default_variable_style(v: VariableResult, show_only_retained: bool = True) -> VariableStyle:
    return VariableStyle(
        enabled=v.in_final_model if show_only_retained else True,
        color=SIGNIFICANT_COLOR if is_significant(v) else NON_SIGNIFICANT_COLOR,
        display_name=v.name,
    )


@dataclass(frozen=True)
class PlotConfiguration:
    """
    Settings of one plotting session.

    variables holds only user overrides keyed by variable name; style_for()
    falls back to default_variable_style() for names without one.
    """

    title: str = "Forest Plot"
    footnote: str = DEFAULT_FOOTNOTE
    scale: ScaleKind = ScaleKind.LINEAR
    font_size: int = 14
    width: int = 1100
    height: int = 600
    show_only_retained: bool = True
    variables: Mapping[str, VariableStyle] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.font_size <= 0:
            raise ValueError(f"font_size must be positive, got {self.font_size}")
        if self.width <= MARGINS.left + MARGINS.right:
            raise ValueError(f"width must exceed {MARGINS.left + MARGINS.right} px, got {self.width}")
        if self.height <= MARGINS.top + MARGINS.bottom:
            raise ValueError(f"height must exceed {MARGINS.top + MARGINS.bottom} px, got {self.height}")

    @classmethod
    def for_model(cls, model: Model, **settings: Any) -> "PlotConfiguration":
        """Fresh configuration for a model opened for plotting."""
        title = f"{model.outcome or 'Outcome'} - {model.population_name}"
        return cls(title=title, **settings)

    def style_for(self, v: VariableResult) -> VariableStyle:
        style = self.variables.get(v.name)
        if style is None:
            style = default_variable_style(v, self.show_only_retained)
        return style

    def with_variable(self, v: VariableResult, **changes: Any) -> "PlotConfiguration":
        """New configuration with `changes` (enabled/color/display_name) applied to v."""
        style = dataclasses.replace(self.style_for(v), **changes)
        variables: Dict[str, VariableStyle] = dict(self.variables)
        variables[v.name] = style
        return dataclasses.replace(self, variables=variables)

    def with_settings(self, **changes: Any) -> "PlotConfiguration":
        if "scale" in changes and not isinstance(changes["scale"], ScaleKind):
            changes["scale"] = ScaleKind(str(changes["scale"]).lower())
        return dataclasses.replace(self, **changes)

    @property
    def plot_width(self) -> int:
        return self.width - MARGINS.left - MARGINS.right

    @property
    def plot_height(self) -> int:
        return self.height - MARGINS.top - MARGINS.bottom


# --- Scene primitives (pixel coordinates, y grows downwards) ---


@dataclass(frozen=True)
class SceneLine:
    x1: float
    y1: float
    x2: float
    y2: float
    color: str = "#000000"
    width: float = 1.0
    dash: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class SceneRect:
    x: float
    y: float
    width: float
    height: float
    fill: str


@dataclass(frozen=True)
class SceneText:
    x: float
    y: float
    text: str
    size: float
    anchor: str = "start"  # start | middle | end
    color: str = "#000000"
    bold: bool = False
    italic: bool = False


SceneElement = Union[SceneLine, SceneRect, SceneText]


@dataclass(frozen=True)
class Scene:
    width: int
    height: int
    elements: Tuple[SceneElement, ...]
    background: str = "#FFFFFF"


class PlotStatus(Enum):
    OK = auto()
    NO_VARIABLES_SELECTED = auto()
    NO_DISPLAYABLE_SCALE = auto()


@dataclass(frozen=True)
class ForestPlot:
    status: PlotStatus
    scene: Optional[Scene] = None
    scale: Optional[ScaleRange] = None
    displayed: Tuple[VariableResult, ...] = ()
    non_estimable_count: int = 0

    @property
    def message(self) -> Optional[str]:
        """User-facing empty-state text, or None when a scene was produced."""
        if self.status is PlotStatus.NO_VARIABLES_SELECTED:
            return MSG_NO_VARIABLES
        if self.status is PlotStatus.NO_DISPLAYABLE_SCALE:
            return MSG_NO_SCALE
        return None

    @property
    def banner(self) -> Optional[str]:
        if self.non_estimable_count > 0:
            return (
                f"Note: {self.non_estimable_count} variable(s) displayed without "
                "confidence intervals (zero, NaN, or not estimable values)"
            )
        return None


def enabled_variables(model: Model, config: PlotConfiguration) -> List[VariableResult]:
    return [v for v in model.variables if config.style_for(v).enabled]


def format_raw(value: float) -> str:
    """Unscaled value for non-estimable rows."""
    try:
        f = float(value)
    except (TypeError, ValueError):
        return str(value)
    if math.isnan(f):
        return "NaN"
    return f"{f:g}"


def layout(model: Model, config: PlotConfiguration, scale: ScaleRange) -> Scene:
    """
    Lay out one row per enabled variable (model order) against `scale`.

    Valid rows get a CI whisker with end caps, a square marker and an
    "OR (lower-upper)" label; invalid rows get a gray italic text row with the
    raw values.
    """
    rows = enabled_variables(model, config)
    m = MARGINS
    fs = config.font_size
    w, h = config.width, config.height
    plot_w = config.plot_width
    axis_y = h - m.bottom
    right_x = w - m.right + 10
    row_height = config.plot_height / max(len(rows), 1)

    def x_of(v: float) -> float:
        return value_to_pixel(v, scale, plot_w, left=m.left)

    els: List[SceneElement] = [
        SceneText(w / 2, 30, config.title, size=fs + 4, anchor="middle", bold=True),
        SceneText(m.left - 10, m.top - 20, "Variable", size=fs, anchor="end", bold=True),
        SceneText(right_x, m.top - 20, "OR (95% CI)", size=fs, anchor="start", bold=True),
    ]

    tick_values = ticks(scale)
    if scale.kind is ScaleKind.LOG:
        for t in tick_values:
            els.append(
                SceneLine(
                    x_of(t), m.top, x_of(t), axis_y,
                    color=GRID_COLOR,
                    dash=None if t == 1 else (3, 3),
                )
            )

    if shows_null_line(scale):
        els.append(SceneLine(x_of(1.0), m.top, x_of(1.0), axis_y, color="#000000", width=1.5))

    for idx, v in enumerate(rows):
        style = config.style_for(v)
        y = m.top + (idx + 0.5) * row_height
        valid = is_plot_valid(v)
        els.append(
            SceneText(
                m.left - 10, y + 5, style.display_name or v.name,
                size=fs, anchor="end",
                color="#000000" if valid else INVALID_TEXT_COLOR,
            )
        )
        if valid:
            lo, hi, est = x_of(v.lower_ci), x_of(v.upper_ci), x_of(v.odds_ratio)
            els.extend(
                [
                    SceneLine(lo, y, hi, y, color=style.color, width=2),
                    SceneLine(lo, y - 5, lo, y + 5, color=style.color, width=2),
                    SceneLine(hi, y - 5, hi, y + 5, color=style.color, width=2),
                    SceneRect(est - 4, y - 4, 8, 8, fill=style.color),
                    SceneText(
                        right_x, y + 5,
                        f"{v.odds_ratio:.2f} ({v.lower_ci:.2f}-{v.upper_ci:.2f})",
                        size=fs,
                    ),
                ]
            )
        else:
            els.append(
                SceneText(
                    right_x, y + 5,
                    f"{format_raw(v.odds_ratio)} ({format_raw(v.lower_ci)}-"
                    f"{format_raw(v.upper_ci)}) - Not estimable",
                    size=fs, color=INVALID_TEXT_COLOR, italic=True,
                )
            )

    for t in tick_values:
        els.append(SceneLine(x_of(t), axis_y, x_of(t), axis_y + 5))
        els.append(
            SceneText(x_of(t), axis_y + 20, format_tick(t, scale.kind), size=fs - 2, anchor="middle")
        )

    els.append(SceneText(w / 2, h - 20, config.footnote, size=fs - 2, anchor="middle", italic=True))
    return Scene(width=w, height=h, elements=tuple(els))


def compose_forest_plot(model: Model, config: PlotConfiguration) -> ForestPlot:
    """
    Build the forest plot for `model`, or an empty state.

    NO_VARIABLES_SELECTED: no variable is enabled.
    NO_DISPLAYABLE_SCALE: variables are enabled but none is plot-valid.
    """
    displayed = tuple(enabled_variables(model, config))
    if not displayed:
        return ForestPlot(status=PlotStatus.NO_VARIABLES_SELECTED)

    non_estimable = sum(1 for v in displayed if not is_plot_valid(v))
    scale = compute_range(collect_scale_values(displayed), config.scale)
    if scale is None:
        return ForestPlot(
            status=PlotStatus.NO_DISPLAYABLE_SCALE,
            displayed=displayed,
            non_estimable_count=non_estimable,
        )

    return ForestPlot(
        status=PlotStatus.OK,
        scene=layout(model, config, scale),
        scale=scale,
        displayed=displayed,
        non_estimable_count=non_estimable,
    )


# --- Rendering collaborator ---

_HA = {"start": "left", "middle": "center", "end": "right"}
_PX_TO_PT = 72.0 / SCREEN_DPI


def png_scale_factor(target_dpi: int = EXPORT_DPI) -> float:
    return target_dpi / SCREEN_DPI


def _draw_scene(scene: Scene):
    fig = plt.figure(
        figsize=(scene.width / SCREEN_DPI, scene.height / SCREEN_DPI),
        dpi=SCREEN_DPI,
        facecolor=scene.background,
    )
    ax = fig.add_axes((0, 0, 1, 1))
    ax.set_xlim(0, scene.width)
    ax.set_ylim(scene.height, 0)
    ax.axis("off")

    for el in scene.elements:
        if isinstance(el, SceneLine):
            ax.plot(
                [el.x1, el.x2],
                [el.y1, el.y2],
                color=el.color,
                linewidth=el.width * _PX_TO_PT,
                linestyle=(0, el.dash) if el.dash else "-",
                solid_capstyle="butt",
            )
        elif isinstance(el, SceneRect):
            ax.add_patch(Rectangle((el.x, el.y), el.width, el.height, facecolor=el.fill, edgecolor="none"))
        elif isinstance(el, SceneText):
            ax.text(
                el.x,
                el.y,
                el.text,
                ha=_HA.get(el.anchor, "left"),
                va="baseline",
                fontsize=el.size * _PX_TO_PT,
                color=el.color,
                fontweight="bold" if el.bold else "normal",
                fontstyle="italic" if el.italic else "normal",
                fontfamily="sans-serif",
            )
    return fig


def render_scene_svg(scene: Scene) -> str:
    """SVG markup of the scene, for inline display."""
    fig = _draw_scene(scene)
    buf = io.StringIO()
    try:
        fig.savefig(buf, format="svg", facecolor=scene.background)
    finally:
        plt.close(fig)
    return buf.getvalue()


def render_scene(scene: Scene, output_path: Union[str, Path], fmt: str = "svg") -> str:
    """
    Write the scene to `output_path` as "svg" (configured pixel size) or "png"
    (rasterized at EXPORT_DPI / SCREEN_DPI times the configured size).

    Raises:
        ValueError: unknown format
        PlotExportError: the file could not be written
    """
    fmt = fmt.lower()
    if fmt not in ("svg", "png"):
        raise ValueError(f"Unsupported plot format: {fmt!r} (expected 'svg' or 'png')")

    fig = _draw_scene(scene)
    try:
        if fmt == "png":
            fig.savefig(
                str(output_path),
                format="png",
                dpi=SCREEN_DPI * png_scale_factor(),
                facecolor=scene.background,
            )
        else:
            fig.savefig(str(output_path), format="svg", facecolor=scene.background)
    except OSError as e:
        raise PlotExportError(f"Failed to write plot {output_path}: {e}") from e
    finally:
        plt.close(fig)
    logger.debug("Rendered %s -> %s", fmt, output_path)
    return str(output_path)


def plot_filename(model: Model, ext: str = "svg") -> str:
    safe = re.sub(r"[^a-z0-9]", "_", model.population_name, flags=re.IGNORECASE)
    return f"forest-plot-{safe}.{ext}"
