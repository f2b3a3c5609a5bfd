"""
Audit log writer for milestone and field weld mutations.

Builds field-level {old, new} change maps from before/after snapshots and
writes them through the audit repository inside the caller's transaction.
Values are stored JSON-safe (dates as ISO strings) and decoded again by
`restore_values` when undo replays an entry.
"""

import logging
from datetime import datetime, date
from enum import Enum
from typing import Optional, Dict, Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import AuditLogDB
from ..database.repositories.audit import AuditRepository, get_audit_repository

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Types of auditable actions."""
    UPDATE = "UPDATE"
    CONFLICT_RESOLUTION = "CONFLICT_RESOLUTION"
    ROLLBACK = "ROLLBACK"


# Fields whose stored value must be decoded back from ISO strings
DATETIME_FIELDS = {"completed_at"}
DATE_FIELDS = {"effective_date", "date_welded"}


def serialize_value(value: Any) -> Any:
    """Make a column value JSON-safe."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def deserialize_value(field: str, value: Any) -> Any:
    """Decode a stored change value back to the column's Python type."""
    if value is None or not isinstance(value, str):
        return value
    if field in DATETIME_FIELDS:
        return datetime.fromisoformat(value)
    if field in DATE_FIELDS:
        return date.fromisoformat(value[:10])
    return value


def build_changes(
    before: Dict[str, Any],
    after: Dict[str, Any],
    fields: Optional[Iterable[str]] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Build the {field: {"old", "new"}} map for fields whose value changed.

    Args:
        before: Snapshot taken before the mutation
        after: Snapshot taken after the mutation
        fields: Fields to compare (defaults to every key in either snapshot)
    """
    keys = list(fields) if fields is not None else list(dict.fromkeys([*before, *after]))
    changes = {}
    for field in keys:
        old = serialize_value(before.get(field))
        new = serialize_value(after.get(field))
        if old != new:
            changes[field] = {"old": old, "new": new}
    return changes


def restore_values(changes: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Values that put an entity back to its state before `changes`."""
    return {
        field: deserialize_value(field, change.get("old"))
        for field, change in changes.items()
    }


def invert_changes(changes: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Change map describing the reversal of `changes`."""
    return {
        field: {"old": change.get("new"), "new": change.get("old")}
        for field, change in changes.items()
    }


class AuditLogWriter:
    """Writes audit entries in the caller's session."""

    def __init__(self, audit_repo: Optional[AuditRepository] = None):
        self.audit_repo = audit_repo or get_audit_repository()

    async def record(
        self,
        session: AsyncSession,
        user_id: str,
        entity_type: str,
        entity_id: str,
        changes: Dict[str, Dict[str, Any]],
        action: AuditAction = AuditAction.UPDATE,
        project_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AuditLogDB:
        """Write one audit entry. Failures propagate so the mutation fails with it."""
        entry = await self.audit_repo.log(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value if isinstance(action, AuditAction) else action,
            changes=changes,
            project_id=project_id,
            transaction_id=transaction_id,
            reason=reason,
            session=session,
        )
        logger.debug(
            f"Audit {action} {entity_type}/{entity_id} fields={sorted(changes)} tx={transaction_id}"
        )
        return entry
