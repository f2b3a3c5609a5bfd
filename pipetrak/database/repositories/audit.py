"""
Audit log repository for tracking milestone and field weld changes.

Every entry records:
- What changed ({field: {"old", "new"}} map)
- Who changed it
- When it changed
- Which bulk transaction it belongs to (undo replays by this id)
- Why it changed (optional reason)
"""

import logging
from typing import Optional, List, Dict, Any, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..connection import get_database, session_scope
from ..models import AuditLogDB
from ..exceptions import DatabaseOperationError

logger = logging.getLogger(__name__)


class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self):
        self.db = get_database()

    async def log(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        changes: Dict[str, Dict[str, Any]],
        project_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> AuditLogDB:
        """
        Write an audit entry.

        Runs inside the caller's transaction so that a failed write fails the
        mutation it describes.
        """
        async with session_scope(self.db, session) as s:
            try:
                entry = AuditLogDB(
                    project_id=project_id,
                    user_id=user_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action=action,
                    changes=changes,
                    transaction_id=transaction_id,
                    reason=reason,
                )
                s.add(entry)
                await s.flush()

                logger.debug(f"Audit log: {action} on {entity_type}/{entity_id} by {user_id}")
                return entry

            except Exception as e:
                logger.error(f"Error creating audit log for {entity_type}/{entity_id}: {e}")
                raise DatabaseOperationError(f"Failed to write audit log: {e}")

    async def get_by_transaction(
        self,
        transaction_id: str,
        actions: Optional[Sequence[str]] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[AuditLogDB]:
        """Get a transaction's entries, newest first."""
        async with session_scope(self.db, session) as s:
            query = select(AuditLogDB).where(AuditLogDB.transaction_id == transaction_id)
            if actions:
                query = query.where(AuditLogDB.action.in_(list(actions)))
            result = await s.execute(query.order_by(AuditLogDB.id.desc()))
            return list(result.scalars().all())

    async def get_recent(
        self,
        project_id: str,
        entity_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        session: Optional[AsyncSession] = None,
    ) -> Tuple[List[AuditLogDB], int]:
        """Get a page of recent project activity and the total entry count."""
        async with session_scope(self.db, session) as s:
            conditions = [AuditLogDB.project_id == project_id]
            if entity_type:
                conditions.append(AuditLogDB.entity_type == entity_type)

            total = (
                await s.execute(select(func.count(AuditLogDB.id)).where(*conditions))
            ).scalar() or 0

            result = await s.execute(
                select(AuditLogDB)
                .where(*conditions)
                .order_by(AuditLogDB.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total


# Singleton
_audit_repository: Optional[AuditRepository] = None


def get_audit_repository() -> AuditRepository:
    """Get the audit repository singleton."""
    global _audit_repository
    if _audit_repository is None:
        _audit_repository = AuditRepository()
    return _audit_repository
