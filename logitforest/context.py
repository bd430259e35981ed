"""
Population context tracking for the row scanner.

Two directives in column 0 change which sub-population the following tables
belong to:

- FILTER:      "FILTER BY <population>." selects a filtered sub-population.
- ALL_RECORDS: "USE ALL." selects every record, unless a FILTER directive
               follows within the lookahead window (then "USE ALL" was only the
               preamble SPSS writes before every filter and is ignored).
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .grid import Grid
from .markers import DEFAULT_MARKERS, MarkerConfig

logger = logging.getLogger(__name__)


class DirectiveKind(Enum):
    FILTER = auto()
    ALL_RECORDS = auto()


@dataclass(frozen=True)
class ContextTransition:
    """
    A population change detected at `row_index`.

    flush is True when steps accumulated under `previous` must be closed into
    a model group before tables under `current` are collected.
    """

    row_index: int
    kind: DirectiveKind
    previous: Optional[str]
    current: str
    flush: bool


def filter_population(text: str, markers: MarkerConfig = DEFAULT_MARKERS) -> Optional[str]:
    """
    Return the population named by a FILTER directive, or None if `text` is not one.

    The population is the token right after the keyword, up to whitespace or a
    period. A directive without a readable token yields markers.unknown_population.
    """
    if markers.filter_keyword not in text or "." not in text:
        return None
    m = re.search(re.escape(markers.filter_keyword) + r"\s+([^.\s]+)", text)
    return m.group(1) if m else markers.unknown_population


class ContextTracker:
    """
    Scans column 0 row by row and keeps the currently active population.

    The tracker only reads the grid; the caller owns the accumulated steps and
    performs the flush when a transition asks for it.
    """

    def __init__(self, grid: Grid, markers: MarkerConfig = DEFAULT_MARKERS) -> None:
        self.grid = grid
        self.markers = markers
        self.current: Optional[str] = None

    def _filter_follows(self, row_index: int) -> bool:
        col = self.markers.layout.label_col
        stop = min(row_index + self.markers.filter_lookahead_rows, self.grid.n_rows)
        return any(
            self.markers.filter_keyword in self.grid.text(j, col)
            for j in range(row_index, stop)
        )

    def advance(
        self, row_index: int, has_pending_steps: bool = False
    ) -> Optional[ContextTransition]:
        """
        Inspect row `row_index` and return the transition it causes, if any.

        Side effect: updates self.current on a transition.
        """
        text = self.grid.text(row_index, self.markers.layout.label_col)
        if not text:
            return None

        population = filter_population(text, self.markers)
        if population is not None:
            transition = ContextTransition(
                row_index=row_index,
                kind=DirectiveKind.FILTER,
                previous=self.current,
                current=population,
                flush=has_pending_steps,
            )
        elif self.markers.all_records_keyword in text:
            if self._filter_follows(row_index):
                logger.debug(
                    "Row %d: %r followed by a filter directive; treated as preamble",
                    row_index,
                    self.markers.all_records_keyword,
                )
                return None
            transition = ContextTransition(
                row_index=row_index,
                kind=DirectiveKind.ALL_RECORDS,
                previous=self.current,
                current=self.markers.all_records_population,
                flush=has_pending_steps,
            )
        else:
            return None

        logger.debug(
            "Row %d: population %r -> %r (flush=%s)",
            row_index,
            transition.previous,
            transition.current,
            transition.flush,
        )
        self.current = transition.current
        return transition
