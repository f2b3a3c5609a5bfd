"""
Milestone engine errors.

Each error carries the HTTP status the route layer maps it to. Bulk
operations never raise these for individual items; they are converted into
per-item failures instead.
"""

from typing import Optional, List, Dict, Any


class MilestoneError(Exception):
    """Base exception for milestone engine errors."""
    status_code = 500
    code = "MILESTONE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(MilestoneError):
    """Update does not fit the milestone's workflow type, or bad input."""
    status_code = 400
    code = "VALIDATION_ERROR"


class AccessDeniedError(MilestoneError):
    """Actor is not allowed to touch the target."""
    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(MilestoneError):
    """Milestone, component or transaction does not exist."""
    status_code = 404
    code = "NOT_FOUND"


class TemporalPolicyError(MilestoneError):
    """Effective date outside the backdating window."""
    status_code = 422
    code = "TEMPORAL_POLICY"


class PersistenceError(MilestoneError):
    """Write failed in the store."""
    status_code = 500
    code = "PERSISTENCE_ERROR"


class AtomicBatchRejectedError(MilestoneError):
    """Atomic bulk update refused because at least one item is invalid."""
    status_code = 409
    code = "ATOMIC_BATCH_REJECTED"

    def __init__(self, message: str, failures: List[Dict[str, Any]]):
        super().__init__(message, details={"invalid": failures})
        self.failures = failures


class TransactionConflictError(MilestoneError):
    """Bulk transaction id already in use."""
    status_code = 409
    code = "TRANSACTION_EXISTS"
