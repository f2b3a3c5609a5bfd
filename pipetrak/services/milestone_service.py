"""
Milestone service: the operations the route layer exposes.

Single update, bulk update (validate-only, atomic, chunked), preview,
conflict resolution, undo, and the read operations around them (component
milestones, recent activity, project statistics, bulk progress, undo
history). Each operation opens its own database sessions; the engine pieces
(validator, batch processor, resolver, undo manager) run inside them.
"""

import logging
import time
import uuid
from datetime import datetime
from types import SimpleNamespace
from typing import Optional, List, Dict, Any, Callable

from config import settings
from ..database.connection import Database, get_database
from ..database.exceptions import DatabaseConstraintError, DatabaseError
from ..database.models import TransactionStatusEnum
from ..database.repositories.audit import AuditRepository, get_audit_repository
from ..database.repositories.components import (
    ComponentRepository,
    get_component_repository,
    component_to_dict,
    milestone_to_dict,
)
from ..database.repositories.field_welds import FieldWeldRepository, get_field_weld_repository
from ..database.repositories.projects import ProjectRepository, get_project_repository
from ..database.repositories.transactions import TransactionRepository, get_transaction_repository
from ..milestones.calculator import CompletionCalculator, evaluate
from ..milestones.exceptions import (
    NotFoundError,
    PersistenceError,
    ValidationError,
    AtomicBatchRejectedError,
    TransactionConflictError,
)
from ..milestones.transitions import compute_transition, current_value
from ..milestones.validator import MilestoneValidator, AccessChecker
from ..milestones.weld_sync import WeldSynchronizer
from ..models.api_validation import BulkOptions, ConflictResolutionRequest
from ..models.values import MilestoneUpdate
from ..operations.batch import BatchProcessor, BulkUpdateResult
from ..operations.conflicts import ConflictResolver
from ..operations.undo_manager import UndoManager
from ..utils.audit_logger import AuditLogWriter
from ..utils.datetime_utils import get_local_now
from .notifications import MilestoneNotifier

logger = logging.getLogger(__name__)


def generate_transaction_id() -> str:
    """bulk_<epoch millis>_<8 hex>"""
    return f"bulk_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class MilestoneService:
    """Facade over the milestone engine."""

    def __init__(
        self,
        db: Optional[Database] = None,
        component_repo: Optional[ComponentRepository] = None,
        project_repo: Optional[ProjectRepository] = None,
        transaction_repo: Optional[TransactionRepository] = None,
        audit_repo: Optional[AuditRepository] = None,
        field_weld_repo: Optional[FieldWeldRepository] = None,
        validator: Optional[MilestoneValidator] = None,
        calculator: Optional[CompletionCalculator] = None,
        synchronizer: Optional[WeldSynchronizer] = None,
        processor: Optional[BatchProcessor] = None,
        resolver: Optional[ConflictResolver] = None,
        undo_manager: Optional[UndoManager] = None,
        notifier: Optional[MilestoneNotifier] = None,
        clock: Callable[[], datetime] = get_local_now,
    ):
        self.db = db or get_database()
        self.component_repo = component_repo or get_component_repository()
        self.project_repo = project_repo or get_project_repository()
        self.transaction_repo = transaction_repo or get_transaction_repository()
        self.audit_repo = audit_repo or get_audit_repository()
        self.field_weld_repo = field_weld_repo or get_field_weld_repository()
        self.clock = clock

        audit_writer = AuditLogWriter(self.audit_repo)
        self.validator = validator or MilestoneValidator(self.component_repo, self.project_repo, clock=clock)
        self.calculator = calculator or CompletionCalculator(self.component_repo)
        self.synchronizer = synchronizer or WeldSynchronizer(
            component_repo=self.component_repo,
            field_weld_repo=self.field_weld_repo,
            audit_writer=audit_writer,
            today=lambda: clock().date(),
        )
        self.processor = processor or BatchProcessor(
            db=self.db,
            component_repo=self.component_repo,
            calculator=self.calculator,
            synchronizer=self.synchronizer,
            audit_writer=audit_writer,
            clock=clock,
        )
        self.resolver = resolver or ConflictResolver(
            component_repo=self.component_repo,
            project_repo=self.project_repo,
            calculator=self.calculator,
            synchronizer=self.synchronizer,
            audit_writer=audit_writer,
            clock=clock,
        )
        self.undo_manager = undo_manager or UndoManager(
            db=self.db,
            component_repo=self.component_repo,
            field_weld_repo=self.field_weld_repo,
            audit_repo=self.audit_repo,
            transaction_repo=self.transaction_repo,
            project_repo=self.project_repo,
            calculator=self.calculator,
            audit_writer=audit_writer,
        )
        self.notifier = notifier or MilestoneNotifier()

    # ==================== UPDATES ====================

    async def update_milestone(self, update: MilestoneUpdate, actor_id: str) -> Dict[str, Any]:
        """
        Apply one update.

        Raises the first failed check (NotFoundError, AccessDeniedError,
        ValidationError, TemporalPolicyError) or PersistenceError.
        """
        try:
            async with self.db.session() as session:
                validated = await self.validator.validate(session, update, actor_id)
                milestone, transition = await self.processor.apply_update(session, validated, actor_id)
                completion = await self.calculator.recalculate(session, validated.component_id)

                if transition.completion_changed and self.synchronizer.is_weld_milestone(update.milestone_name):
                    await self.synchronizer.sync(
                        session,
                        component_id=validated.component_id,
                        completed=transition.is_completed,
                        actor_id=actor_id,
                        effective_date=validated.effective_date,
                        welder_id=update.welder_id,
                        comments=update.comments,
                    )

                milestone_data = milestone_to_dict(milestone)
        except DatabaseError as e:
            raise PersistenceError(f"Failed to save milestone update: {e}")

        await self.notifier.milestone_updated(validated.project_id, milestone_data, actor_id)
        return {
            "milestone": milestone_data,
            "component": completion.to_dict() if completion else None,
        }

    async def bulk_update(
        self,
        updates: List[MilestoneUpdate],
        actor_id: str,
        options: Optional[BulkOptions] = None,
        transaction_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply many updates.

        - validate_only: report valid/invalid counts, persist nothing
        - atomic: any invalid item rejects the whole request
          (AtomicBatchRejectedError) and valid items run in one transaction
        - otherwise: valid items run in chunks of batch_size, failures are
          reported per item

        Returns:
            {"transaction_id", "successful", "failed", "results", "processing_time"}
        """
        options = options or BulkOptions()
        if not updates:
            raise ValidationError("No updates provided")
        batch_size = min(options.batch_size, settings.bulk_max_batch_size)

        async with self.db.session() as session:
            report = await self.validator.validate_many(session, updates, actor_id)

        if options.validate_only:
            return {
                "validate_only": True,
                "total": len(updates),
                "valid": len(report.valid),
                "invalid": len(report.invalid),
                "invalid_updates": [f.to_dict() for f in report.invalid],
            }

        if options.atomic and report.invalid:
            raise AtomicBatchRejectedError(
                f"{len(report.invalid)} of {len(updates)} updates failed validation; nothing was applied",
                [f.to_dict() for f in report.invalid],
            )

        transaction_id = transaction_id or generate_transaction_id()
        result = BulkUpdateResult(transaction_id, len(updates))
        for failure in report.invalid:
            result.add_validation_failure(failure)

        project_ids = list(dict.fromkeys(v.project_id for v in report.valid))
        try:
            await self.transaction_repo.create(
                transaction_id=transaction_id,
                user_id=actor_id,
                operation_count=len(updates),
                project_id=project_ids[0] if project_ids else None,
                metadata={
                    "batch_size": batch_size,
                    "atomic": options.atomic,
                    "notify": options.notify,
                    "project_ids": project_ids,
                },
            )
        except DatabaseConstraintError:
            raise TransactionConflictError(f"Transaction id {transaction_id} is already in use")
        except DatabaseError as e:
            raise PersistenceError(f"Failed to start bulk transaction {transaction_id}: {e}")

        try:
            if report.valid:
                await self.processor.process(
                    report.valid,
                    actor_id=actor_id,
                    transaction_id=transaction_id,
                    batch_size=len(report.valid) if options.atomic else batch_size,
                    result=result,
                    atomic=options.atomic,
                )
            result.finalize()
        except Exception as e:
            logger.error(f"Bulk {transaction_id} aborted: {e}", exc_info=True)
            await self.transaction_repo.finalize(
                transaction_id,
                status=TransactionStatusEnum.FAILED.value,
                success_count=result.successful,
                failure_count=len(updates) - result.successful,
                errors=[str(e)],
            )
            raise PersistenceError(f"Bulk update {transaction_id} aborted: {e}")

        status = (
            TransactionStatusEnum.COMPLETED.value
            if result.successful > 0
            else TransactionStatusEnum.FAILED.value
        )
        await self.transaction_repo.finalize(
            transaction_id,
            status=status,
            success_count=result.successful,
            failure_count=result.failed,
            errors=result.errors,
            metadata={
                "batch_count": result.chunk_count,
                "processing_time": round(result.duration_seconds, 3),
            },
        )
        await self.undo_manager.invalidate_history(actor_id)

        response = result.to_dict()
        if options.notify and result.successful:
            await self.notifier.bulk_completed(project_ids, response, actor_id)
        return response

    async def preview_bulk(self, updates: List[MilestoneUpdate], actor_id: str) -> Dict[str, Any]:
        """
        Show what a bulk update would change without writing anything.

        Returns per-item current/new values and per-component completion
        before and after.
        """
        previews = []
        projected: Dict[str, Dict[str, Any]] = {}

        async with self.db.session() as session:
            report = await self.validator.validate_many(session, updates, actor_id)
            now = self.clock()

            for item in report.valid:
                milestone = await self.component_repo.get_milestone_by_id(item.milestone_id, session=session)
                if item.component_id not in projected:
                    component = await self.component_repo.get(item.component_id, session=session)
                    projected[item.component_id] = {
                        "component": component,
                        "milestones": {
                            m.id: SimpleNamespace(**{
                                "milestone_order": m.milestone_order,
                                "is_completed": m.is_completed,
                                "percentage_complete": m.percentage_complete,
                                "quantity_complete": m.quantity_complete,
                                "quantity_total": m.quantity_total,
                            })
                            for m in component.milestones
                        },
                    }

                state = projected[item.component_id]["milestones"][milestone.id]
                before = current_value(item.workflow_type, state)
                transition = compute_transition(state, item.update.value, actor_id, item.effective_date, now)
                for field in ("is_completed", "percentage_complete", "quantity_complete", "quantity_total"):
                    if field in transition.values:
                        setattr(state, field, transition.values[field])
                after = current_value(item.workflow_type, state)

                previews.append({
                    "index": item.index,
                    "component_id": item.component_id,
                    "milestone_id": milestone.id,
                    "milestone_name": milestone.milestone_name,
                    "current_values": before,
                    "new_values": after,
                    "has_changes": before != after,
                })

        components = []
        for component_id, state in projected.items():
            component = state["component"]
            template = component.template.milestones if component.template else []
            after = evaluate(component.workflow_type, list(state["milestones"].values()), template)
            components.append({
                "component_id": component_id,
                "current_completion": component.completion_percent,
                "current_status": component.status,
                "projected_completion": after.completion_percent,
                "projected_status": after.status,
            })

        return {
            "total_updates": len(updates),
            "valid_updates": len(report.valid),
            "invalid_updates": len(report.invalid),
            "preview": previews,
            "components": components,
            "invalid": [f.to_dict() for f in report.invalid],
        }

    # ==================== CONFLICTS & UNDO ====================

    async def resolve_conflict(self, request: ConflictResolutionRequest, actor_id: str) -> Dict[str, Any]:
        """Resolve a conflicting milestone edit."""
        client_values = request.client_values.model_dump(exclude_none=True) if request.client_values else None
        custom_values = request.custom_values.model_dump(exclude_unset=True) if request.custom_values else None

        try:
            async with self.db.session() as session:
                resolution = await self.resolver.resolve(
                    session,
                    milestone_id=request.milestone_id,
                    strategy=request.strategy,
                    actor_id=actor_id,
                    client_values=client_values,
                    custom_values=custom_values,
                )
        except DatabaseError as e:
            raise PersistenceError(f"Failed to resolve conflict: {e}")

        response = resolution.to_dict()
        if request.notify:
            await self.notifier.conflict_resolved(resolution.project_id, response, actor_id)
        return response

    async def undo_transaction(self, transaction_id: str, actor_id: str) -> Dict[str, Any]:
        """Undo a bulk transaction."""
        result = await self.undo_manager.undo_transaction(transaction_id, actor_id)
        await self.notifier.transaction_undone(result.get("project_id"), result, actor_id)
        return result

    async def list_transactions(self, actor_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """The actor's recent bulk transactions."""
        return await self.undo_manager.list_transactions(actor_id, limit=limit)

    async def get_progress(self, transaction_id: str) -> Dict[str, Any]:
        """Latest progress of a running or finished bulk update."""
        progress = await self.processor.get_progress(transaction_id)
        if progress is None:
            raise NotFoundError(f"No progress recorded for transaction {transaction_id}")
        return {"transaction_id": transaction_id, **progress}

    # ==================== READS ====================

    async def _require_project_member(self, session, project_id: str, actor_id: str):
        project = await self.project_repo.get(project_id, session=session)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        await AccessChecker(self.project_repo).require_member(session, project.organization_id, actor_id)
        return project

    async def list_component_milestones(self, component_id: str, actor_id: str) -> Dict[str, Any]:
        """A component with its milestones in template order."""
        async with self.db.session() as session:
            component = await self.component_repo.get(component_id, session=session)
            if component is None:
                raise NotFoundError(f"Component {component_id} not found")
            await AccessChecker(self.project_repo).require_member(
                session, component.project.organization_id, actor_id
            )
            return component_to_dict(component)

    async def recent_activity(
        self,
        project_id: str,
        actor_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Recent audited milestone and field weld changes for a project."""
        async with self.db.session() as session:
            await self._require_project_member(session, project_id, actor_id)
            entries, total = await self.audit_repo.get_recent(
                project_id, limit=limit, offset=offset, session=session
            )

        return {
            "items": [
                {
                    "id": e.id,
                    "entity_type": e.entity_type,
                    "entity_id": e.entity_id,
                    "action": e.action,
                    "changes": e.changes,
                    "user_id": e.user_id,
                    "transaction_id": e.transaction_id,
                    "reason": e.reason,
                    "timestamp": e.timestamp.isoformat() if e.timestamp else None,
                }
                for e in entries
            ],
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(entries) < total,
        }

    async def project_stats(self, project_id: str, actor_id: str) -> Dict[str, Any]:
        """Milestone progress per milestone name and component counts per status."""
        async with self.db.session() as session:
            await self._require_project_member(session, project_id, actor_id)
            milestones = await self.component_repo.get_project_milestone_stats(project_id, session=session)
            by_status = await self.component_repo.get_status_counts(project_id, session=session)

        return {
            "project_id": project_id,
            "total_components": sum(by_status.values()),
            "components_by_status": by_status,
            "milestones": milestones,
        }


# Singleton
_milestone_service: Optional[MilestoneService] = None


def get_milestone_service() -> MilestoneService:
    """Get the milestone service singleton."""
    global _milestone_service
    if _milestone_service is None:
        _milestone_service = MilestoneService()
    return _milestone_service
