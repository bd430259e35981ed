"""
Reduce a ModelGroup (all steps of one stepwise run) into a final Model.

Each variable keeps the values from the last step it appeared in. A variable
is Retained when it is present in the final step and Removed otherwise.
Variables are ordered retained-first, then alphabetically.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .extractor import ModelGroup, StepRecord


class VariableStatus(Enum):
    RETAINED = "Retained"
    REMOVED = "Removed"


@dataclass(frozen=True)
class VariableResult:
    name: str
    odds_ratio: float
    lower_ci: float
    upper_ci: float
    p_value: float
    last_step_label: str
    last_step_number: int
    in_final_model: bool
    status: VariableStatus


@dataclass(frozen=True)
class Model:
    id: int
    population_name: str
    outcome: Optional[str]
    total_steps: int
    final_step_label: str
    variables: Tuple[VariableResult, ...]

    @property
    def retained(self) -> Tuple[VariableResult, ...]:
        return tuple(v for v in self.variables if v.in_final_model)

    @property
    def removed(self) -> Tuple[VariableResult, ...]:
        return tuple(v for v in self.variables if not v.in_final_model)

    @property
    def retained_count(self) -> int:
        return len(self.retained)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


def step_number(label: str) -> int:
    """Digits of a step label as an int ("Paso 12" -> 12); 1 when there are none."""
    digits = re.sub(r"\D", "", label)
    return int(digits) if digits else 1


def variable_sort_key(v: VariableResult) -> tuple:
    return (not v.in_final_model, v.name.casefold(), v.name)


def reduce_group(group: ModelGroup, model_id: int) -> Model:
    """
    Merge the steps of `group` into a Model.

    Pure: the same group always yields an equal Model.

    Raises:
        ValueError: if the group has no steps (the scanner never emits one).
    """
    if not group.steps:
        raise ValueError("Cannot reduce a model group without steps")

    outcome = next((s.outcome for s in group.steps if s.outcome), None)

    # last-step-wins: later steps overwrite earlier records of the same name
    latest: Dict[str, Tuple[StepRecord, str]] = {}
    for step in group.steps:
        for rec in step.records:
            latest[rec.variable_name] = (rec, step.step_label)

    final_step = group.steps[-1]
    final_names = {rec.variable_name for rec in final_step.records}

    variables: List[VariableResult] = []
    for name, (rec, label) in latest.items():
        in_final = name in final_names
        variables.append(
            VariableResult(
                name=name,
                odds_ratio=rec.odds_ratio,
                lower_ci=rec.lower_ci,
                upper_ci=rec.upper_ci,
                p_value=rec.p_value,
                last_step_label=label,
                last_step_number=step_number(label),
                in_final_model=in_final,
                status=VariableStatus.RETAINED if in_final else VariableStatus.REMOVED,
            )
        )
    variables.sort(key=variable_sort_key)

    return Model(
        id=model_id,
        population_name=group.context or f"Model {model_id + 1}",
        outcome=outcome,
        total_steps=len(group.steps),
        final_step_label=final_step.step_label,
        variables=tuple(variables),
    )


def reduce_groups(groups: Iterable[ModelGroup]) -> List[Model]:
    """Reduce every group, numbering models 0.. in encounter order."""
    return [reduce_group(g, idx) for idx, g in enumerate(groups)]
