"""
Project and organization membership repository.

Membership is what access checks consume: a user may touch a component when
they belong to the organization owning its project.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..connection import get_database, session_scope
from ..models import ProjectDB, OrganizationMemberDB

logger = logging.getLogger(__name__)


class ProjectRepository:
    """Repository for projects and organization members."""

    def __init__(self):
        self.db = get_database()

    # ==================== PROJECTS ====================

    async def get(
        self,
        project_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ProjectDB]:
        """Get project by id."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(select(ProjectDB).where(ProjectDB.id == project_id))
            return result.scalar_one_or_none()

    # ==================== MEMBERS ====================

    async def get_membership(
        self,
        organization_id: str,
        user_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[OrganizationMemberDB]:
        """Get a user's membership in an organization (None when not a member)."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(OrganizationMemberDB).where(
                    OrganizationMemberDB.organization_id == organization_id,
                    OrganizationMemberDB.user_id == user_id,
                )
            )
            return result.scalar_one_or_none()


# Singleton
_project_repository: Optional[ProjectRepository] = None


def get_project_repository() -> ProjectRepository:
    """Get the project repository singleton."""
    global _project_repository
    if _project_repository is None:
        _project_repository = ProjectRepository()
    return _project_repository
