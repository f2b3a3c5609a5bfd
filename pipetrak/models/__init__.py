"""
Pydantic models for milestone update values and API requests.
"""

from .values import (
    DiscreteValue,
    PercentageValue,
    QuantityValue,
    MilestoneValue,
    MilestoneUpdate,
    workflow_type_for,
)

__all__ = [
    "DiscreteValue",
    "PercentageValue",
    "QuantityValue",
    "MilestoneValue",
    "MilestoneUpdate",
    "workflow_type_for",
]
