"""
Value ranges, pixel mapping and tick marks for the forest plot axis.

Only plot-valid records (odds ratio and both CI bounds finite and > 0) take
part in range computation. compute_range() returns None when nothing is
displayable; callers must report that separately from an empty selection.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

import numpy as np

# Candidate log-scale ticks, filtered to the padded range.
LOG_TICK_LADDER = (
    0.01, 0.02, 0.05,
    0.1, 0.2, 0.5,
    1, 2, 5,
    10, 20, 50,
    100, 200, 500,
)

LINEAR_PAD_LOW = 0.7
LINEAR_PAD_HIGH = 1.3
LOG_PAD_FRACTION = 0.2
NULL_EFFECT = 1.0


class ScaleKind(Enum):
    LINEAR = "linear"
    LOG = "log"


@dataclass(frozen=True)
class ScaleRange:
    data_min: float
    data_max: float
    padded_min: float
    padded_max: float
    kind: ScaleKind

    def contains(self, value: float) -> bool:
        return self.padded_min <= value <= self.padded_max


def _positive_finite(value) -> bool:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(v) and v > 0


def is_plot_valid(record) -> bool:
    """
    True when the record's odds ratio and CI bounds are all finite and > 0.

    Accepts anything with odds_ratio / lower_ci / upper_ci attributes
    (StepRecord or VariableResult).
    """
    return (
        _positive_finite(record.odds_ratio)
        and _positive_finite(record.lower_ci)
        and _positive_finite(record.upper_ci)
    )


def collect_scale_values(records: Iterable) -> List[float]:
    """Lower bound, estimate and upper bound of every plot-valid record."""
    values: List[float] = []
    for rec in records:
        if is_plot_valid(rec):
            values.extend([float(rec.lower_ci), float(rec.odds_ratio), float(rec.upper_ci)])
    return values


def compute_range(values: Iterable[float], kind: ScaleKind) -> Optional[ScaleRange]:
    """
    Pad the data extent for display.

    - LINEAR: [min * 0.7, max * 1.3]
    - LOG:    extend the log10 span by 20% on each side; a zero-width span is
              treated as one decade so identical values still get a visible axis.

    Returns None when no finite positive value is given.
    """
    arr = np.asarray([v for v in values if _positive_finite(v)], dtype=float)
    if arr.size == 0:
        return None

    data_min = float(arr.min())
    data_max = float(arr.max())

    if kind is ScaleKind.LOG:
        log_min = math.log10(data_min)
        log_max = math.log10(data_max)
        log_span = (log_max - log_min) or 1.0
        padded_min = 10 ** (log_min - log_span * LOG_PAD_FRACTION)
        padded_max = 10 ** (log_max + log_span * LOG_PAD_FRACTION)
    else:
        padded_min = data_min * LINEAR_PAD_LOW
        padded_max = data_max * LINEAR_PAD_HIGH

    return ScaleRange(
        data_min=data_min,
        data_max=data_max,
        padded_min=padded_min,
        padded_max=padded_max,
        kind=kind,
    )


def _transform(value: float, kind: ScaleKind) -> float:
    return math.log(value) if kind is ScaleKind.LOG else value


def value_to_pixel(value: float, scale: ScaleRange, pixel_span: float, left: float = 0.0) -> float:
    """Map a data value onto [left, left + pixel_span]."""
    t_min = _transform(scale.padded_min, scale.kind)
    t_max = _transform(scale.padded_max, scale.kind)
    return left + (_transform(value, scale.kind) - t_min) / (t_max - t_min) * pixel_span


def log_ticks(scale: ScaleRange) -> List[float]:
    found = [float(t) for t in LOG_TICK_LADDER if scale.contains(t)]
    if scale.contains(NULL_EFFECT) and NULL_EFFECT not in found:
        found.append(NULL_EFFECT)
        found.sort()

    if len(found) < 3:
        log_min = math.log10(scale.padded_min)
        log_max = math.log10(scale.padded_max)
        for tick in np.logspace(log_min, log_max, num=5):
            tick = float(tick)
            if not any(abs(t - tick) < tick * 0.01 for t in found):
                found.append(tick)
        found.sort()
    return found


def linear_ticks(scale: ScaleRange) -> List[float]:
    mid = (scale.padded_min + scale.padded_max) / 2
    return [scale.padded_min, mid, scale.padded_max]


def ticks(scale: ScaleRange) -> List[float]:
    if scale.kind is ScaleKind.LOG:
        return log_ticks(scale)
    return linear_ticks(scale)


def shows_null_line(scale: ScaleRange) -> bool:
    """The OR = 1 reference line is drawn only when 1 lies inside the padded range."""
    return scale.contains(NULL_EFFECT)


def format_tick(value: float, kind: ScaleKind) -> str:
    if kind is ScaleKind.LINEAR:
        return f"{value:.2f}"
    if value < 1:
        return f"{value:.2f}"
    return f"{value:.0f}" if value >= 10 else f"{value:.1f}"
