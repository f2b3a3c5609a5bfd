"""
Milestone template repository.

Templates are validated (weights sum to 100, 1-based orders) before insert
and never mutated afterwards.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..connection import get_database, session_scope
from ..models import MilestoneTemplateDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError, TemplateValidationError
from ...milestones.templates import (
    DEFAULT_TEMPLATES,
    validate_template_milestones,
    resolve_template_name,
)

logger = logging.getLogger(__name__)


class TemplateRepository:
    """Repository for milestone templates."""

    def __init__(self):
        self.db = get_database()

    async def create(
        self,
        project_id: str,
        name: str,
        milestones: List[Dict[str, Any]],
        description: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> MilestoneTemplateDB:
        """Create a template after validating its weights and orders."""
        errors = validate_template_milestones(milestones)
        if errors:
            raise TemplateValidationError(f"Invalid template {name!r}: {'; '.join(errors)}")

        async with session_scope(self.db, session) as s:
            try:
                template = MilestoneTemplateDB(
                    project_id=project_id,
                    name=name,
                    description=description,
                    milestones=[dict(m) for m in milestones],
                )
                s.add(template)
                await s.flush()
                logger.info(f"Created milestone template {name} for project {project_id}")
                return template

            except IntegrityError as e:
                logger.error(f"Constraint violation creating template {name}: {e}")
                raise DatabaseConstraintError(f"Template {name!r} already exists for project {project_id}")

            except Exception as e:
                logger.error(f"Template creation failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to create template: {e}")

    async def get(
        self,
        template_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[MilestoneTemplateDB]:
        """Get template by id."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(MilestoneTemplateDB).where(MilestoneTemplateDB.id == template_id)
            )
            return result.scalar_one_or_none()

    async def list_for_project(
        self,
        project_id: str,
        session: Optional[AsyncSession] = None,
    ) -> List[MilestoneTemplateDB]:
        """List a project's templates."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(MilestoneTemplateDB)
                .where(MilestoneTemplateDB.project_id == project_id)
                .order_by(MilestoneTemplateDB.name)
            )
            return list(result.scalars().all())

    async def ensure_default_templates(
        self,
        project_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Dict[str, MilestoneTemplateDB]:
        """Create any missing default templates for a project. Returns all templates by name."""
        async with session_scope(self.db, session) as s:
            existing = {t.name: t for t in await self.list_for_project(project_id, session=s)}

            for name, definition in DEFAULT_TEMPLATES.items():
                if name in existing:
                    continue
                existing[name] = await self.create(
                    project_id=project_id,
                    name=name,
                    milestones=definition["milestones"],
                    description=definition["description"],
                    session=s,
                )

            return existing

    async def get_for_component_type(
        self,
        project_id: str,
        component_type: str,
        session: Optional[AsyncSession] = None,
    ) -> MilestoneTemplateDB:
        """Pick the project's template for a component type (fuzzy match with fallbacks)."""
        templates = await self.ensure_default_templates(project_id, session=session)
        return templates[resolve_template_name(component_type, list(templates))]


# Singleton
_template_repository: Optional[TemplateRepository] = None


def get_template_repository() -> TemplateRepository:
    """Get the template repository singleton."""
    global _template_repository
    if _template_repository is None:
        _template_repository = TemplateRepository()
    return _template_repository
