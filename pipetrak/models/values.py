"""
Milestone update values.

A value is a tagged union keyed by `kind`; each kind belongs to exactly one
workflow type, so a value can be checked against its component before
anything is written.
"""

from datetime import date
from typing import Annotated, Optional, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..database.models import WorkflowTypeEnum


class _Value(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class DiscreteValue(_Value):
    """Done / not done."""
    kind: Literal["discrete"] = "discrete"
    completed: bool


class PercentageValue(_Value):
    """Percent complete, 0-100."""
    kind: Literal["percentage"] = "percentage"
    value: float = Field(..., ge=0, le=100)


class QuantityValue(_Value):
    """Installed quantity, optionally with a new target."""
    kind: Literal["quantity"] = "quantity"
    value: float = Field(..., ge=0)
    total: Optional[float] = Field(None, ge=0)


MilestoneValue = Annotated[
    Union[DiscreteValue, PercentageValue, QuantityValue],
    Field(discriminator="kind"),
]

VALUE_WORKFLOW_TYPES = {
    "discrete": WorkflowTypeEnum.MILESTONE_DISCRETE.value,
    "percentage": WorkflowTypeEnum.MILESTONE_PERCENTAGE.value,
    "quantity": WorkflowTypeEnum.MILESTONE_QUANTITY.value,
}


def workflow_type_for(value: MilestoneValue) -> str:
    """Workflow type a value kind applies to."""
    return VALUE_WORKFLOW_TYPES[value.kind]


class MilestoneUpdate(_Value):
    """One proposed milestone change."""
    component_id: str = Field(..., min_length=1, max_length=64)
    milestone_name: str = Field(..., min_length=1, max_length=100)
    value: MilestoneValue
    effective_date: Optional[date] = None
    welder_id: Optional[str] = Field(None, max_length=100)
    comments: Optional[str] = Field(None, max_length=2000)
