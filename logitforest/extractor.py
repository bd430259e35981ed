"""
Locate "Variables en la ecuación" tables in a Grid and extract their rows.

scan_grid() drives the whole row loop: it feeds each row to the
ContextTracker, extracts every confidence-interval table it meets, splits the
table into one RegressionStep per step label, and closes ModelGroups when the
population context changes. Irregular tables are skipped and recorded in the
diagnostics; the scan never raises for malformed input.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .context import ContextTracker
from .grid import Grid, is_empty, to_float
from .markers import DEFAULT_MARKERS, MarkerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepRecord:
    variable_name: str
    odds_ratio: float
    lower_ci: float
    upper_ci: float
    p_value: float
    step_label: str


@dataclass(frozen=True)
class RegressionStep:
    step_label: str
    outcome: Optional[str]
    records: Tuple[StepRecord, ...]


@dataclass(frozen=True)
class ModelGroup:
    """Consecutive steps collected under one population context, in encounter order."""

    context: Optional[str]
    steps: Tuple[RegressionStep, ...]


class ScanDiagnostics:
    """Container for scan counters, events and warnings."""

    def __init__(self, label: Optional[str] = None) -> None:
        self.label: Optional[str] = label

        self.rows_scanned: int = 0
        self.tables_found: int = 0
        self.tables_extracted: int = 0
        self.tables_skipped: int = 0

        self.skipped_tables: list[tuple[int, str]] = []
        self.warnings: list[str] = []
        self.events: list[str] = []
        self.metrics: dict[str, int | float | str] = {}

        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def start(self) -> None:
        import time

        self.started_at = time.perf_counter()

    def stop(self) -> None:
        import time

        self.finished_at = time.perf_counter()
        if self.started_at is not None:
            self.elapsed_ms = (self.finished_at - self.started_at) * 1000.0

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning(message)

    def add_event(self, message: str) -> None:
        """Add an info-level event message."""
        self.events.append(message)
        logger.info(message)

    def add_metric(self, name: str, value: int | float | str) -> None:
        self.metrics[name] = value

    def log_skipped_table(self, row_index: int, reason: str) -> None:
        """Record a table header that produced no step."""
        self.tables_skipped += 1
        self.skipped_tables.append((row_index, reason))
        logger.debug(f"Table at row {row_index} skipped: {reason}")

    def summarize(self) -> str:
        """Produce a concise summary string for diagnostics."""
        lbl = f"{self.label} " if self.label else ""
        parts = [
            f"{lbl}scan: rows={self.rows_scanned}",
            f"tables={self.tables_found}",
            f"extracted={self.tables_extracted}",
        ]
        if self.tables_skipped:
            parts.append(f"skipped={self.tables_skipped}")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed_ms={self.elapsed_ms:.1f}")
        if self.metrics:
            parts.append(f"metrics={self.metrics}")
        return " | ".join(parts)


@dataclass
class TableScanState:
    """Per-table loop state for extract_records()."""

    step_label: Optional[str] = None
    consecutive_empty: int = 0


@dataclass
class ScannerState:
    """Whole-grid loop state for scan_grid()."""

    pending_steps: List[RegressionStep] = field(default_factory=list)
    groups: List[ModelGroup] = field(default_factory=list)

    def flush(self, context: Optional[str]) -> None:
        if self.pending_steps:
            self.groups.append(ModelGroup(context=context, steps=tuple(self.pending_steps)))
            self.pending_steps = []


@dataclass
class ScanOutputs:
    groups: List[ModelGroup]
    diagnostics: ScanDiagnostics


def is_table_marker(grid: Grid, row_index: int, markers: MarkerConfig = DEFAULT_MARKERS) -> bool:
    return grid.cell(row_index, markers.layout.label_col) == markers.table_marker


def resolve_outcome(
    grid: Grid, row_index: int, markers: MarkerConfig = DEFAULT_MARKERS
) -> Optional[str]:
    """
    Find the outcome variable of the table whose header sits at `row_index`.

    Walks backwards (nearest first) over at most markers.outcome_lookback_rows
    rows for a command line containing every outcome keyword, and returns the
    identifier after the last keyword ("LOGISTIC REGRESSION VARIABLES Exitus
    /METHOD=..." -> "Exitus"). Returns None when nothing matches.
    """
    col = markers.layout.label_col
    keywords = [k.upper() for k in markers.outcome_keywords]
    pattern = re.compile(
        re.escape(markers.outcome_keywords[-1]) + r"\s+([^\W\d]\w*)", re.IGNORECASE
    )
    first = max(0, row_index - markers.outcome_lookback_rows)
    for k in range(row_index - 1, first - 1, -1):
        text = grid.text(k, col).strip()
        upper = text.upper()
        if not all(kw in upper for kw in keywords):
            continue
        m = pattern.search(text)
        if m:
            logger.debug(f"Outcome {m.group(1)!r} for table at row {row_index} (row {k})")
            return m.group(1)
    return None


def has_ci_columns(grid: Grid, row_index: int, markers: MarkerConfig = DEFAULT_MARKERS) -> bool:
    """The second header row must carry the CI lower-bound label."""
    header_row = row_index + 2
    if grid.cell(header_row, markers.layout.ci_header_col) == markers.ci_label:
        return True
    return grid.row_contains(header_row, markers.ci_label)


def extract_records(
    grid: Grid, row_index: int, markers: MarkerConfig = DEFAULT_MARKERS
) -> List[StepRecord]:
    """
    Extract the variable rows of the table whose header sits at `row_index`.

    Rules, per row after the two header rows:
      - a step label in the label column updates the current step; the same row
        may also hold the first variable of that step
      - an empty name column counts as an empty row; enough consecutive empty
        rows end the table
      - the regression constant is skipped
      - a row is recorded only when its odds-ratio column is non-empty
    """
    layout = markers.layout
    state = TableScanState()
    records: List[StepRecord] = []

    stop = min(grid.n_rows, row_index + markers.table_max_rows)
    for j in range(row_index + 3, stop):
        label_text = grid.text(j, layout.label_col)
        if markers.step_keyword in label_text:
            state.step_label = label_text.strip()
            state.consecutive_empty = 0

        name = grid.cell(j, layout.name_col)
        if is_empty(name):
            state.consecutive_empty += 1
            if state.consecutive_empty >= markers.empty_rows_to_stop:
                break
            continue
        state.consecutive_empty = 0

        if name == markers.constant_label:
            continue

        if is_empty(grid.cell(j, layout.odds_ratio_col)):
            continue

        records.append(
            StepRecord(
                variable_name=grid.text(j, layout.name_col),
                odds_ratio=to_float(grid.cell(j, layout.odds_ratio_col)),
                lower_ci=to_float(grid.cell(j, layout.lower_col)),
                upper_ci=to_float(grid.cell(j, layout.upper_col)),
                p_value=to_float(grid.cell(j, layout.p_value_col)),
                step_label=state.step_label or markers.default_step_label,
            )
        )
    return records


def split_steps(records: Sequence[StepRecord], outcome: Optional[str]) -> List[RegressionStep]:
    """Group consecutive records sharing a step label into RegressionSteps."""
    steps: List[RegressionStep] = []
    run: List[StepRecord] = []
    for rec in records:
        if run and rec.step_label != run[-1].step_label:
            steps.append(RegressionStep(run[-1].step_label, outcome, tuple(run)))
            run = []
        run.append(rec)
    if run:
        steps.append(RegressionStep(run[-1].step_label, outcome, tuple(run)))
    return steps


def scan_grid(grid: Grid, markers: MarkerConfig = DEFAULT_MARKERS) -> ScanOutputs:
    """
    Scan the whole grid top to bottom and return the model groups in encounter order.

    Groups that started before any directive keep a None context; the last
    group falls back to the all-records population when no directive was seen.
    """
    diag = ScanDiagnostics(label="scan_grid")
    diag.start()

    tracker = ContextTracker(grid, markers)
    state = ScannerState()

    for i in range(grid.n_rows):
        diag.rows_scanned += 1

        transition = tracker.advance(i, has_pending_steps=bool(state.pending_steps))
        if transition is not None and transition.flush:
            state.flush(transition.previous)

        if not is_table_marker(grid, i, markers):
            continue

        diag.tables_found += 1
        outcome = resolve_outcome(grid, i, markers)

        if not has_ci_columns(grid, i, markers):
            diag.log_skipped_table(i, "no confidence-interval columns")
            continue

        records = extract_records(grid, i, markers)
        if not records:
            diag.log_skipped_table(i, "no variable rows")
            continue

        steps = split_steps(records, outcome)
        state.pending_steps.extend(steps)
        diag.tables_extracted += 1
        logger.debug(
            f"Table at row {i}: outcome={outcome!r} steps={len(steps)} records={len(records)}"
        )

    state.flush(tracker.current or markers.all_records_population)

    diag.add_metric("model_groups", len(state.groups))
    diag.stop()
    logger.debug(diag.summarize())
    return ScanOutputs(groups=state.groups, diagnostics=diag)
