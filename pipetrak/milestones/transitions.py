"""
Milestone state transitions.

Turns an update value into the exact field values to write on a milestone.
Completion is derived per workflow type, and completed_at/completed_by are
set together when a milestone becomes complete, kept while it stays
complete, and cleared together when it stops being complete.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

from ..database.models import WorkflowTypeEnum
from ..models.values import (
    MilestoneValue,
    DiscreteValue,
    PercentageValue,
    QuantityValue,
)


@dataclass
class MilestoneTransition:
    """Field values to write plus the completion flip they cause."""
    values: Dict[str, Any] = field(default_factory=dict)
    was_completed: bool = False
    is_completed: bool = False

    @property
    def completion_changed(self) -> bool:
        return self.was_completed != self.is_completed


def is_quantity_complete(quantity: Optional[float], target: Optional[float]) -> bool:
    """A quantity milestone is complete only against a positive target."""
    if not target or target <= 0:
        return False
    return (quantity or 0) >= target


def compute_transition(
    milestone: Any,
    value: MilestoneValue,
    actor_id: str,
    effective_date: date,
    now: datetime,
) -> MilestoneTransition:
    """
    Compute the writes for applying `value` to `milestone`.

    Args:
        milestone: Current milestone (read only)
        value: Tagged update value, already checked against the workflow type
        actor_id: User recorded as completed_by on a completion
        effective_date: Date the work happened
        now: Timestamp recorded as completed_at on a completion
    """
    values: Dict[str, Any] = {}

    if isinstance(value, PercentageValue):
        values["percentage_complete"] = value.value
        completed = value.value >= 100
    elif isinstance(value, QuantityValue):
        target = value.total if value.total is not None else milestone.quantity_total
        values["quantity_complete"] = value.value
        if value.total is not None:
            values["quantity_total"] = value.total
        completed = is_quantity_complete(value.value, target)
    else:
        completed = bool(value.completed)

    was_completed = bool(milestone.is_completed)
    values["is_completed"] = completed

    if completed and not was_completed:
        values["completed_at"] = now
        values["completed_by"] = actor_id
    elif not completed:
        values["completed_at"] = None
        values["completed_by"] = None

    values["effective_date"] = effective_date

    return MilestoneTransition(values=values, was_completed=was_completed, is_completed=completed)


def value_from_fields(workflow_type: str, fields: Dict[str, Any]) -> MilestoneValue:
    """
    Build a tagged value from loose client fields
    (is_completed / percentage_complete / quantity_complete).
    """
    if workflow_type == WorkflowTypeEnum.MILESTONE_PERCENTAGE.value:
        return PercentageValue(value=fields.get("percentage_complete") or 0)
    if workflow_type == WorkflowTypeEnum.MILESTONE_QUANTITY.value:
        return QuantityValue(
            value=fields.get("quantity_complete") or 0,
            total=fields.get("quantity_total"),
        )
    return DiscreteValue(completed=bool(fields.get("is_completed")))


def current_value(workflow_type: str, milestone: Any) -> Dict[str, Any]:
    """The value fields of a milestone that matter for its workflow type."""
    data: Dict[str, Any] = {"is_completed": bool(milestone.is_completed)}
    if workflow_type == WorkflowTypeEnum.MILESTONE_PERCENTAGE.value:
        data["percentage_complete"] = milestone.percentage_complete
    elif workflow_type == WorkflowTypeEnum.MILESTONE_QUANTITY.value:
        data["quantity_complete"] = milestone.quantity_complete
        data["quantity_total"] = milestone.quantity_total
    return data
