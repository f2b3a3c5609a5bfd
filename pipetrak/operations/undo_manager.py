"""
Undo for bulk milestone transactions.

A bulk transaction is undone by replaying its audit trail: the entries
carrying its transaction id are reverted newest first, each by writing back
the recorded old values. Every revert runs in its own savepoint so one bad
entry does not block the rest, and is itself audited as ROLLBACK.

Provides:
- Undo by explicit transaction id (not a time window)
- Owner or organization admin/owner authorization
- Per-entry success/failure reporting
- Redis-cached history of a user's undoable transactions
"""

import logging
from typing import Dict, List, Optional, Any

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from ..cache.redis_client import cache
from ..database.connection import Database, get_database
from ..database.models import AuditLogDB, AuditEntityEnum, TransactionStatusEnum
from ..database.repositories.audit import AuditRepository, get_audit_repository
from ..database.repositories.components import ComponentRepository, get_component_repository
from ..database.repositories.field_welds import FieldWeldRepository, get_field_weld_repository
from ..database.repositories.projects import ProjectRepository, get_project_repository
from ..database.repositories.transactions import TransactionRepository, get_transaction_repository
from ..milestones.calculator import CompletionCalculator
from ..milestones.exceptions import NotFoundError, ValidationError, AccessDeniedError
from ..milestones.validator import AccessChecker
from ..utils.audit_logger import (
    AuditLogWriter,
    AuditAction,
    restore_values,
    invert_changes,
)

logger = logging.getLogger(__name__)


def history_cache_key(user_id: str) -> str:
    return f"undo:history:{user_id}"


class UndoManager:
    """Undoes bulk transactions by audit replay."""

    def __init__(
        self,
        db: Optional[Database] = None,
        component_repo: Optional[ComponentRepository] = None,
        field_weld_repo: Optional[FieldWeldRepository] = None,
        audit_repo: Optional[AuditRepository] = None,
        transaction_repo: Optional[TransactionRepository] = None,
        project_repo: Optional[ProjectRepository] = None,
        calculator: Optional[CompletionCalculator] = None,
        audit_writer: Optional[AuditLogWriter] = None,
    ):
        self.db = db or get_database()
        self.component_repo = component_repo or get_component_repository()
        self.field_weld_repo = field_weld_repo or get_field_weld_repository()
        self.audit_repo = audit_repo or get_audit_repository()
        self.transaction_repo = transaction_repo or get_transaction_repository()
        self.project_repo = project_repo or get_project_repository()
        self.calculator = calculator or CompletionCalculator(self.component_repo)
        self.audit_writer = audit_writer or AuditLogWriter(self.audit_repo)
        self.cache_ttl = settings.undo_history_cache_ttl
        self.history_limit = settings.undo_history_limit

    async def _authorize(self, session: AsyncSession, transaction: Any, actor_id: str):
        """Only the transaction's owner or an organization owner/admin may undo it."""
        if transaction.user_id == actor_id:
            return

        project = None
        if transaction.project_id:
            project = await self.project_repo.get(transaction.project_id, session=session)

        access = AccessChecker(self.project_repo)
        if project is None or not await access.is_admin(session, project.organization_id, actor_id):
            raise AccessDeniedError(
                f"User {actor_id} may not undo transaction {transaction.id}"
            )

    async def _revert_entry(
        self,
        session: AsyncSession,
        entry: AuditLogDB,
        actor_id: str,
        transaction_id: str,
    ) -> Optional[str]:
        """Write back an entry's old values. Returns the touched component id, if any."""
        values = restore_values(entry.changes or {})
        component_id = None

        if entry.entity_type == AuditEntityEnum.COMPONENT_MILESTONE.value:
            milestone = await self.component_repo.get_milestone_by_id(entry.entity_id, session=session)
            if milestone is None:
                raise NotFoundError(f"Milestone {entry.entity_id} no longer exists")
            if values:
                await self.component_repo.update_milestone(milestone, values, session=session)
            component_id = milestone.component_id

        elif entry.entity_type == AuditEntityEnum.FIELD_WELD.value:
            weld = await self.field_weld_repo.get(entry.entity_id, session=session)
            if weld is None:
                raise NotFoundError(f"Field weld {entry.entity_id} no longer exists")
            if values:
                await self.field_weld_repo.update(weld, values, session=session)

        else:
            raise ValidationError(f"Cannot undo changes to {entry.entity_type}")

        await self.audit_writer.record(
            session,
            user_id=actor_id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            changes=invert_changes(entry.changes or {}),
            action=AuditAction.ROLLBACK,
            project_id=entry.project_id,
            reason=f"Rollback of {transaction_id}",
        )
        return component_id

    async def undo_transaction(self, transaction_id: str, actor_id: str) -> Dict[str, Any]:
        """
        Undo a bulk transaction.

        Args:
            transaction_id: Bulk transaction to undo
            actor_id: User requesting the undo

        Returns:
            {"transaction_id", "project_id", "undone", "failed", "results"}

        Raises:
            NotFoundError: Unknown transaction, or nothing recorded under it
            ValidationError: Transaction already rolled back
            AccessDeniedError: Actor is neither owner nor organization admin
        """
        async with self.db.session() as session:
            transaction = await self.transaction_repo.get(transaction_id, session=session)
            if transaction is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")

            if transaction.status == TransactionStatusEnum.ROLLED_BACK.value:
                raise ValidationError(f"Transaction {transaction_id} has already been rolled back")
            if transaction.status == TransactionStatusEnum.IN_PROGRESS.value:
                raise ValidationError(f"Transaction {transaction_id} is still in progress")

            await self._authorize(session, transaction, actor_id)

            entries = await self.audit_repo.get_by_transaction(
                transaction_id, actions=[AuditAction.UPDATE.value], session=session
            )
            if not entries:
                raise NotFoundError(f"No changes recorded for transaction {transaction_id}")

            results: List[Dict[str, Any]] = []
            touched: List[str] = []

            for entry in entries:
                try:
                    async with session.begin_nested():
                        component_id = await self._revert_entry(session, entry, actor_id, transaction_id)
                except Exception as e:
                    logger.error(f"Undo of audit entry {entry.id} ({entry.entity_type}/{entry.entity_id}) failed: {e}")
                    results.append({
                        "entity_type": entry.entity_type,
                        "entity_id": entry.entity_id,
                        "success": False,
                        "error": str(e),
                    })
                    continue

                if component_id and component_id not in touched:
                    touched.append(component_id)
                results.append({
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "success": True,
                    "reverted": sorted((entry.changes or {}).keys()),
                })

            for component_id in touched:
                await self.calculator.recalculate(session, component_id)

            await self.transaction_repo.mark_rolled_back(transaction, actor_id, session=session)
            project_id = transaction.project_id
            owner_id = transaction.user_id

        await cache.delete(history_cache_key(owner_id))

        undone = sum(1 for r in results if r["success"])
        logger.info(
            f"Undid transaction {transaction_id}: {undone} reverted, {len(results) - undone} failed (by {actor_id})"
        )
        return {
            "transaction_id": transaction_id,
            "project_id": project_id,
            "undone": undone,
            "failed": len(results) - undone,
            "results": results,
        }

    async def list_transactions(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        A user's most recent bulk transactions, newest first.

        Served from cache when present.
        """
        limit = limit or self.history_limit
        cache_key = history_cache_key(user_id)
        cached = await cache.get(cache_key)
        if cached:
            return cached[:limit]

        async with self.db.session() as session:
            transactions = await self.transaction_repo.list_for_user(user_id, limit=self.history_limit, session=session)

        history = [
            {
                "transaction_id": t.id,
                "project_id": t.project_id,
                "status": t.status,
                "operation_count": t.operation_count,
                "success_count": t.success_count,
                "failure_count": t.failure_count,
                "started_at": t.started_at.isoformat() if t.started_at else None,
                "completed_at": t.completed_at.isoformat() if t.completed_at else None,
                "undoable": t.status != TransactionStatusEnum.ROLLED_BACK.value and (t.success_count or 0) > 0,
            }
            for t in transactions
        ]
        await cache.set(cache_key, history, ttl=self.cache_ttl)
        return history[:limit]

    async def invalidate_history(self, user_id: str):
        await cache.delete(history_cache_key(user_id))
