"""
Pydantic models for API endpoint input validation.

Request bodies accept camelCase (as sent by the web client) or snake_case
field names. Schema violations are rejected by FastAPI with 422 before the
engine runs.
"""

from datetime import date, datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from config import settings
from .values import MilestoneUpdate


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================
# BULK UPDATES
# ============================================

class BulkOptions(_Request):
    """Bulk update behaviour."""
    validate_only: bool = False
    atomic: bool = False
    notify: bool = True
    batch_size: int = Field(default=settings.bulk_default_batch_size, ge=1)

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v):
        if v > settings.bulk_max_batch_size:
            raise ValueError(f"batch_size must be at most {settings.bulk_max_batch_size}")
        return v


class BulkMetadata(_Request):
    """Caller-supplied bulk metadata."""
    transaction_id: Optional[str] = Field(None, min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_\-:.]+$")


class BulkUpdateRequest(_Request):
    """Bulk milestone update payload."""
    updates: List[MilestoneUpdate] = Field(..., min_length=1)
    options: BulkOptions = Field(default_factory=BulkOptions)
    metadata: BulkMetadata = Field(default_factory=BulkMetadata)

    @field_validator("updates")
    @classmethod
    def validate_updates_size(cls, v):
        if len(v) > settings.bulk_max_updates:
            raise ValueError(f"At most {settings.bulk_max_updates} updates per request")
        return v


class PreviewRequest(_Request):
    """Bulk preview payload."""
    updates: List[MilestoneUpdate] = Field(..., min_length=1)


# ============================================
# CONFLICT RESOLUTION
# ============================================

class ClientMilestoneValues(_Request):
    """Values the client holds for a conflicting milestone."""
    is_completed: Optional[bool] = None
    percentage_complete: Optional[float] = Field(None, ge=0, le=100)
    quantity_complete: Optional[float] = Field(None, ge=0)
    quantity_total: Optional[float] = Field(None, ge=0)
    effective_date: Optional[date] = None


class CustomMilestoneValues(ClientMilestoneValues):
    """Explicit values for the custom strategy."""
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = Field(None, max_length=100)


class ConflictResolutionRequest(_Request):
    """Conflict resolution payload. Strategy is checked by the engine."""
    milestone_id: str = Field(..., min_length=1, max_length=64)
    strategy: str = Field(..., min_length=1, max_length=50)
    client_values: Optional[ClientMilestoneValues] = None
    custom_values: Optional[CustomMilestoneValues] = None
    notify: bool = True

