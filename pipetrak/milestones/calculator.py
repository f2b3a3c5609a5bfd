"""
Milestone completion calculator.

Derives a component's completion percentage and status from its milestone
set and the weights of its template. `calculate_completion` and
`derive_status` are pure; `CompletionCalculator.recalculate` loads a
component, computes, and persists the result. Nothing else writes
completion_percent or status.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import WorkflowTypeEnum, ComponentStatusEnum
from ..database.repositories.components import ComponentRepository, get_component_repository

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1.0


@dataclass
class CompletionResult:
    """Derived completion for one component."""
    completion_percent: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"completion_percent": self.completion_percent, "status": self.status}


def weight_lookup(template_milestones: Optional[Iterable[Dict[str, Any]]]) -> Dict[int, float]:
    """Map template order → weight."""
    weights = {}
    for entry in template_milestones or []:
        order = entry.get("order")
        weight = entry.get("weight")
        if order is not None and weight is not None:
            weights[int(order)] = float(weight)
    return weights


def _quantity_ratio(milestone: Any) -> float:
    total = milestone.quantity_total or 0
    if total <= 0:
        return 0.0
    return (milestone.quantity_complete or 0) / total * 100


def calculate_completion(
    workflow_type: str,
    milestones: List[Any],
    template_milestones: Optional[Iterable[Dict[str, Any]]],
) -> float:
    """
    Weighted completion percentage, clamped to [0, 100] and rounded to 2 places.

    Each milestone's weight is the template weight at its order (1 when the
    template has no entry). Quantity milestones without a positive target
    contribute nothing but keep their weight in the denominator.
    """
    if not milestones:
        return 0.0

    weights = weight_lookup(template_milestones)
    weighted = [(m, weights.get(m.milestone_order, DEFAULT_WEIGHT)) for m in milestones]
    total_weight = sum(w for _, w in weighted)
    if total_weight <= 0:
        return 0.0

    if workflow_type == WorkflowTypeEnum.MILESTONE_PERCENTAGE.value:
        earned = sum((m.percentage_complete or 0) * w for m, w in weighted)
    elif workflow_type == WorkflowTypeEnum.MILESTONE_QUANTITY.value:
        earned = sum(_quantity_ratio(m) * w for m, w in weighted)
    else:
        earned = sum(w for m, w in weighted if m.is_completed) * 100

    percent = earned / total_weight
    return round(min(100.0, max(0.0, percent)), 2)


def derive_status(completion_percent: float) -> str:
    """0 → NOT_STARTED, 100 → COMPLETED, anything else → IN_PROGRESS."""
    if completion_percent <= 0:
        return ComponentStatusEnum.NOT_STARTED.value
    if completion_percent >= 100:
        return ComponentStatusEnum.COMPLETED.value
    return ComponentStatusEnum.IN_PROGRESS.value


def evaluate(
    workflow_type: str,
    milestones: List[Any],
    template_milestones: Optional[Iterable[Dict[str, Any]]],
) -> CompletionResult:
    """Completion percentage and status in one call."""
    percent = calculate_completion(workflow_type, milestones, template_milestones)
    return CompletionResult(completion_percent=percent, status=derive_status(percent))


class CompletionCalculator:
    """Recalculates and persists component completion."""

    def __init__(self, component_repo: Optional[ComponentRepository] = None):
        self.component_repo = component_repo or get_component_repository()

    async def recalculate(
        self,
        session: AsyncSession,
        component_id: str,
    ) -> Optional[CompletionResult]:
        """
        Recompute a component's completion from its current milestones.

        Returns None (and writes nothing) when the component does not exist.
        """
        component = await self.component_repo.get(component_id, session=session)
        if component is None:
            logger.info(f"Skipping recalculation for missing component {component_id}")
            return None

        template_milestones = component.template.milestones if component.template else []
        result = evaluate(component.workflow_type, list(component.milestones), template_milestones)

        if (
            component.completion_percent != result.completion_percent
            or component.status != result.status
        ):
            logger.debug(
                f"Component {component_id}: {component.completion_percent}% → "
                f"{result.completion_percent}% ({result.status})"
            )

        await self.component_repo.update_completion(
            component, result.completion_percent, result.status, session=session
        )
        return result
