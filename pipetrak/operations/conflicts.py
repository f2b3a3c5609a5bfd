"""
Conflict resolution for concurrent milestone edits.

Strategies:
- accept_server: keep the stored values
- accept_client: write the client's is_completed / percentage / quantity,
  deriving completion the same way a normal update does
- custom: write explicitly supplied field values

Every resolution is audited as CONFLICT_RESOLUTION, recalculates the
component, and mirrors a "Weld Made" completion flip onto the field weld.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import AuditEntityEnum
from ..database.repositories.components import (
    ComponentRepository,
    get_component_repository,
    milestone_values,
    milestone_to_dict,
    MILESTONE_VALUE_FIELDS,
)
from ..database.repositories.projects import ProjectRepository, get_project_repository
from ..milestones.calculator import CompletionCalculator, CompletionResult
from ..milestones.exceptions import NotFoundError, ValidationError
from ..milestones.transitions import compute_transition, value_from_fields
from ..milestones.validator import AccessChecker
from ..milestones.weld_sync import WeldSynchronizer
from ..utils.audit_logger import AuditLogWriter, AuditAction, build_changes
from ..utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

ACCEPT_SERVER = "accept_server"
ACCEPT_CLIENT = "accept_client"
CUSTOM = "custom"
STRATEGIES = (ACCEPT_SERVER, ACCEPT_CLIENT, CUSTOM)


@dataclass
class ConflictResolution:
    """Outcome of one resolution."""
    strategy: str
    milestone: Dict[str, Any]
    project_id: str
    changes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    completion: Optional[CompletionResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "milestone": self.milestone,
            "changes": self.changes,
            "component": self.completion.to_dict() if self.completion else None,
        }


class ConflictResolver:
    """Resolves a milestone conflict with one of the supported strategies."""

    def __init__(
        self,
        component_repo: Optional[ComponentRepository] = None,
        project_repo: Optional[ProjectRepository] = None,
        calculator: Optional[CompletionCalculator] = None,
        synchronizer: Optional[WeldSynchronizer] = None,
        audit_writer: Optional[AuditLogWriter] = None,
        clock: Callable[[], datetime] = get_local_now,
    ):
        self.component_repo = component_repo or get_component_repository()
        self.project_repo = project_repo or get_project_repository()
        self.calculator = calculator or CompletionCalculator(self.component_repo)
        self.audit_writer = audit_writer or AuditLogWriter()
        self.synchronizer = synchronizer or WeldSynchronizer(
            component_repo=self.component_repo, audit_writer=self.audit_writer
        )
        self.clock = clock

    def _custom_values(self, milestone: Any, custom_values: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
        unknown = set(custom_values) - set(MILESTONE_VALUE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot set milestone fields: {', '.join(sorted(unknown))}")

        values = dict(custom_values)
        if "is_completed" in values:
            completed = bool(values["is_completed"])
            if completed and not milestone.is_completed:
                values.setdefault("completed_at", self.clock())
                values.setdefault("completed_by", actor_id)
            elif not completed:
                values.setdefault("completed_at", None)
                values.setdefault("completed_by", None)
        return values

    async def resolve(
        self,
        session: AsyncSession,
        milestone_id: str,
        strategy: str,
        actor_id: str,
        client_values: Optional[Dict[str, Any]] = None,
        custom_values: Optional[Dict[str, Any]] = None,
    ) -> ConflictResolution:
        """
        Resolve a conflict on one milestone.

        Raises:
            ValidationError: Unknown strategy or missing values for it
            NotFoundError: Milestone does not exist
            AccessDeniedError: Actor is not a member of the owning organization
        """
        if strategy not in STRATEGIES:
            raise ValidationError(f"Unknown conflict resolution strategy: {strategy}")

        milestone = await self.component_repo.get_milestone_by_id(milestone_id, session=session)
        if milestone is None:
            raise NotFoundError("Milestone not found", details={"milestone_id": milestone_id})

        component = milestone.component
        access = AccessChecker(self.project_repo)
        await access.require_member(session, component.project.organization_id, actor_id)

        before = milestone_values(milestone)
        was_completed = bool(milestone.is_completed)

        if strategy == ACCEPT_CLIENT:
            if not client_values:
                raise ValidationError("accept_client requires client values")
            transition = compute_transition(
                milestone,
                value_from_fields(component.workflow_type, client_values),
                actor_id=actor_id,
                effective_date=client_values.get("effective_date") or milestone.effective_date or self.clock().date(),
                now=self.clock(),
            )
            values = transition.values
        elif strategy == CUSTOM:
            if not custom_values:
                raise ValidationError("custom strategy requires custom values")
            values = self._custom_values(milestone, custom_values, actor_id)
        else:
            values = {}

        if values:
            await self.component_repo.update_milestone(milestone, values, session=session)

        changes = build_changes(before, milestone_values(milestone))
        await self.audit_writer.record(
            session,
            user_id=actor_id,
            entity_type=AuditEntityEnum.COMPONENT_MILESTONE.value,
            entity_id=milestone.id,
            changes=changes,
            action=AuditAction.CONFLICT_RESOLUTION,
            project_id=component.project_id,
            reason=f"Conflict resolved with {strategy}",
        )

        if changes:
            completion = await self.calculator.recalculate(session, component.id)
        else:
            completion = CompletionResult(component.completion_percent, component.status)

        if (
            bool(milestone.is_completed) != was_completed
            and self.synchronizer.is_weld_milestone(milestone.milestone_name)
        ):
            await self.synchronizer.sync(
                session,
                component_id=component.id,
                completed=bool(milestone.is_completed),
                actor_id=actor_id,
                effective_date=milestone.effective_date,
            )

        logger.info(
            f"Resolved conflict on milestone {milestone.id} with {strategy} "
            f"({len(changes)} field(s) changed) by {actor_id}"
        )
        return ConflictResolution(
            strategy=strategy,
            milestone=milestone_to_dict(milestone),
            project_id=component.project_id,
            changes=changes,
            completion=completion,
        )
