"""
Milestone update validator.

Checks, in order, stopping at the first failure:
1. the milestone exists for (component, name)        → NotFoundError
2. the actor belongs to the owning organization      → AccessDeniedError
3. the value kind matches the component workflow type → ValidationError
4. the effective date passes the backdating policy   → TemporalPolicyError

`validate_many` never raises for an individual item; failures are returned
alongside the valid updates.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Callable, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import MemberRoleEnum
from ..database.repositories.components import ComponentRepository, get_component_repository
from ..database.repositories.projects import ProjectRepository, get_project_repository
from ..models.values import MilestoneUpdate, workflow_type_for
from ..utils.datetime_utils import get_local_now, check_backdating
from .exceptions import (
    MilestoneError,
    NotFoundError,
    AccessDeniedError,
    ValidationError,
    TemporalPolicyError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

ADMIN_ROLES = {MemberRoleEnum.OWNER.value, MemberRoleEnum.ADMIN.value}


@dataclass
class ValidatedUpdate:
    """An update that passed every check, with the ids it resolved to."""
    index: int
    update: MilestoneUpdate
    milestone_id: str
    component_id: str
    project_id: str
    organization_id: str
    workflow_type: str
    effective_date: date


@dataclass
class ValidationFailure:
    """An update rejected by one of the checks."""
    index: int
    update: MilestoneUpdate
    error: MilestoneError

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "component_id": self.update.component_id,
            "milestone_name": self.update.milestone_name,
            "error": self.error.message,
            "code": self.error.code,
        }


@dataclass
class ValidationReport:
    """Split of a batch into valid and invalid updates, in submission order."""
    valid: List[ValidatedUpdate] = field(default_factory=list)
    invalid: List[ValidationFailure] = field(default_factory=list)

    @property
    def all_valid(self) -> bool:
        return not self.invalid


class AccessChecker:
    """Organization membership checks, memoized per instance."""

    def __init__(self, project_repo: Optional[ProjectRepository] = None):
        self.project_repo = project_repo or get_project_repository()
        self._memberships: Dict[Tuple[str, str], Optional[str]] = {}

    async def get_role(self, session: AsyncSession, organization_id: str, user_id: str) -> Optional[str]:
        """Role of the user in the organization, None when not a member."""
        key = (organization_id, user_id)
        if key not in self._memberships:
            membership = await self.project_repo.get_membership(organization_id, user_id, session=session)
            self._memberships[key] = membership.role if membership else None
        return self._memberships[key]

    async def require_member(self, session: AsyncSession, organization_id: str, user_id: str) -> str:
        role = await self.get_role(session, organization_id, user_id)
        if role is None:
            raise AccessDeniedError(f"User is not a member of organization {organization_id}")
        return role

    async def is_admin(self, session: AsyncSession, organization_id: str, user_id: str) -> bool:
        return await self.get_role(session, organization_id, user_id) in ADMIN_ROLES


class MilestoneValidator:
    """Validates proposed milestone updates."""

    def __init__(
        self,
        component_repo: Optional[ComponentRepository] = None,
        project_repo: Optional[ProjectRepository] = None,
        clock: Callable[[], datetime] = get_local_now,
    ):
        self.component_repo = component_repo or get_component_repository()
        self.project_repo = project_repo or get_project_repository()
        self.clock = clock

    async def validate(
        self,
        session: AsyncSession,
        update: MilestoneUpdate,
        actor_id: str,
        index: int = 0,
        access: Optional[AccessChecker] = None,
    ) -> ValidatedUpdate:
        """Validate one update, raising the first failed check."""
        access = access or AccessChecker(self.project_repo)

        milestone = await self.component_repo.get_milestone(
            update.component_id, update.milestone_name, session=session
        )
        if milestone is None:
            raise NotFoundError(
                "Milestone not found",
                details={"component_id": update.component_id, "milestone_name": update.milestone_name},
            )

        component = milestone.component
        organization_id = component.project.organization_id
        await access.require_member(session, organization_id, actor_id)

        if workflow_type_for(update.value) != component.workflow_type:
            raise ValidationError(
                "Invalid update for workflow type",
                details={"workflow_type": component.workflow_type, "value_kind": update.value.kind},
            )

        now = self.clock()
        effective_date = update.effective_date or now.date()
        reason = check_backdating(effective_date, now)
        if reason:
            raise TemporalPolicyError(reason, details={"effective_date": effective_date.isoformat()})

        return ValidatedUpdate(
            index=index,
            update=update,
            milestone_id=milestone.id,
            component_id=component.id,
            project_id=component.project_id,
            organization_id=organization_id,
            workflow_type=component.workflow_type,
            effective_date=effective_date,
        )

    async def validate_many(
        self,
        session: AsyncSession,
        updates: List[MilestoneUpdate],
        actor_id: str,
    ) -> ValidationReport:
        """Validate a batch. Item failures are collected, never raised."""
        report = ValidationReport()
        access = AccessChecker(self.project_repo)

        for index, update in enumerate(updates):
            try:
                report.valid.append(
                    await self.validate(session, update, actor_id, index=index, access=access)
                )
            except MilestoneError as e:
                report.invalid.append(ValidationFailure(index=index, update=update, error=e))
            except Exception as e:
                logger.error(
                    f"Validation lookup failed for {update.component_id}/{update.milestone_name}: {e}"
                )
                report.invalid.append(
                    ValidationFailure(index=index, update=update, error=PersistenceError(str(e)))
                )

        logger.info(
            f"Validated {len(updates)} updates: {len(report.valid)} valid, {len(report.invalid)} invalid"
        )
        return report
