"""
Component repository.

Handles:
- Component creation with the milestone set instantiated from its template
- Component and milestone lookups (with project/template eagerly loaded)
- Milestone value writes
- Derived completion writes (recalculation only)
- Per-project milestone statistics
"""

import logging
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import select, func, case
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..connection import get_database, session_scope
from ..models import ComponentDB, ComponentMilestoneDB, MilestoneTemplateDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError

logger = logging.getLogger(__name__)

# Fields the engine may write on a milestone
MILESTONE_VALUE_FIELDS = (
    "is_completed",
    "percentage_complete",
    "quantity_complete",
    "quantity_total",
    "completed_at",
    "completed_by",
    "effective_date",
)


class ComponentRepository:
    """Repository for components and their milestones."""

    def __init__(self):
        self.db = get_database()

    # ==================== COMPONENTS ====================

    async def create_with_milestones(
        self,
        component_data: Dict[str, Any],
        template: MilestoneTemplateDB,
        session: Optional[AsyncSession] = None,
    ) -> ComponentDB:
        """Create a component and instantiate its milestone set from the template in one insert."""
        async with session_scope(self.db, session) as s:
            try:
                component = ComponentDB(
                    project_id=component_data["project_id"],
                    drawing_id=component_data.get("drawing_id"),
                    component_id=component_data["component_id"],
                    type=component_data.get("type", "SPOOL"),
                    workflow_type=component_data.get("workflow_type", "MILESTONE_DISCRETE"),
                    milestone_template_id=template.id,
                    weld_id=component_data.get("weld_id"),
                    completion_percent=0.0,
                    status="NOT_STARTED",
                )
                quantity_totals = component_data.get("quantity_totals") or {}
                component.milestones = [
                    ComponentMilestoneDB(
                        milestone_name=entry["name"],
                        milestone_order=entry["order"],
                        is_completed=False,
                        quantity_total=quantity_totals.get(entry["name"]),
                    )
                    for entry in sorted(template.milestones, key=lambda m: m["order"])
                ]
                s.add(component)
                await s.flush()

                logger.info(
                    f"Created component {component.component_id} with "
                    f"{len(component.milestones)} milestones from {template.name}"
                )
                return component

            except IntegrityError as e:
                logger.error(f"Constraint violation creating component: {e}")
                raise DatabaseConstraintError(
                    f"Cannot create component {component_data.get('component_id')}: constraint violation"
                )

            except Exception as e:
                logger.error(f"Component creation failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to create component: {e}")

    async def get(
        self,
        component_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ComponentDB]:
        """Get component with milestones, template and project loaded."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(ComponentDB)
                .options(
                    selectinload(ComponentDB.milestones),
                    selectinload(ComponentDB.template),
                    selectinload(ComponentDB.project),
                )
                .where(ComponentDB.id == component_id)
            )
            return result.scalar_one_or_none()

    async def update_completion(
        self,
        component: ComponentDB,
        completion_percent: float,
        status: str,
        session: Optional[AsyncSession] = None,
    ) -> ComponentDB:
        """Persist derived completion. Only the recalculation step calls this."""
        async with session_scope(self.db, session) as s:
            try:
                component.completion_percent = completion_percent
                component.status = status
                await s.flush()
                return component
            except Exception as e:
                logger.error(f"Failed to update completion for component {component.id}: {e}")
                raise DatabaseOperationError(f"Failed to update component completion: {e}")

    # ==================== MILESTONES ====================

    async def get_milestone(
        self,
        component_id: str,
        milestone_name: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ComponentMilestoneDB]:
        """Get milestone by (component, name) with its component and project loaded."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(ComponentMilestoneDB)
                .options(
                    selectinload(ComponentMilestoneDB.component).selectinload(ComponentDB.project),
                )
                .where(
                    ComponentMilestoneDB.component_id == component_id,
                    ComponentMilestoneDB.milestone_name == milestone_name,
                )
            )
            return result.scalar_one_or_none()

    async def get_milestone_by_id(
        self,
        milestone_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ComponentMilestoneDB]:
        """Get milestone by primary key with its component and project loaded."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(ComponentMilestoneDB)
                .options(
                    selectinload(ComponentMilestoneDB.component).selectinload(ComponentDB.project),
                )
                .where(ComponentMilestoneDB.id == milestone_id)
            )
            return result.scalar_one_or_none()

    async def update_milestone(
        self,
        milestone: ComponentMilestoneDB,
        values: Dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> ComponentMilestoneDB:
        """Write milestone value fields."""
        unknown = set(values) - set(MILESTONE_VALUE_FIELDS)
        if unknown:
            raise DatabaseOperationError(f"Cannot write milestone fields: {sorted(unknown)}")

        async with session_scope(self.db, session) as s:
            try:
                for field, value in values.items():
                    setattr(milestone, field, value)
                await s.flush()
                return milestone

            except IntegrityError as e:
                logger.error(f"Constraint violation updating milestone {milestone.id}: {e}")
                raise DatabaseConstraintError(f"Cannot update milestone {milestone.id}")

            except Exception as e:
                logger.error(f"Milestone update failed for {milestone.id}: {e}")
                raise DatabaseOperationError(f"Failed to update milestone: {e}")

    # ==================== STATISTICS ====================

    async def get_project_milestone_stats(
        self,
        project_id: str,
        session: Optional[AsyncSession] = None,
    ) -> List[Dict[str, Any]]:
        """Aggregate milestone progress per milestone name for a project."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(
                    ComponentMilestoneDB.milestone_name,
                    func.min(ComponentMilestoneDB.milestone_order).label("milestone_order"),
                    func.count(ComponentMilestoneDB.id).label("total"),
                    func.sum(case((ComponentMilestoneDB.is_completed.is_(True), 1), else_=0)).label("completed"),
                    func.avg(ComponentMilestoneDB.percentage_complete).label("avg_percentage"),
                )
                .join(ComponentDB, ComponentDB.id == ComponentMilestoneDB.component_id)
                .where(ComponentDB.project_id == project_id)
                .group_by(ComponentMilestoneDB.milestone_name)
                .order_by("milestone_order")
            )

            stats = []
            for row in result.all():
                total = row.total or 0
                completed = int(row.completed or 0)
                stats.append({
                    "milestone_name": row.milestone_name,
                    "total": total,
                    "completed": completed,
                    "completion_rate": round(completed * 100 / total, 2) if total else 0.0,
                    "average_percentage": round(float(row.avg_percentage), 2) if row.avg_percentage is not None else None,
                })
            return stats

    async def get_status_counts(
        self,
        project_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Dict[str, int]:
        """Count project components per derived status."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(ComponentDB.status, func.count(ComponentDB.id))
                .where(ComponentDB.project_id == project_id)
                .group_by(ComponentDB.status)
            )
            return {status: count for status, count in result.all()}


def milestone_values(milestone: ComponentMilestoneDB, fields: Iterable[str] = MILESTONE_VALUE_FIELDS) -> Dict[str, Any]:
    """Snapshot a milestone's value fields."""
    return {field: getattr(milestone, field) for field in fields}


def milestone_to_dict(milestone: ComponentMilestoneDB) -> Dict[str, Any]:
    """Convert a milestone to an API-friendly dict."""
    return {
        "id": milestone.id,
        "component_id": milestone.component_id,
        "milestone_name": milestone.milestone_name,
        "milestone_order": milestone.milestone_order,
        "is_completed": bool(milestone.is_completed),
        "percentage_complete": milestone.percentage_complete,
        "quantity_complete": milestone.quantity_complete,
        "quantity_total": milestone.quantity_total,
        "completed_at": milestone.completed_at.isoformat() if milestone.completed_at else None,
        "completed_by": milestone.completed_by,
        "effective_date": milestone.effective_date.isoformat() if milestone.effective_date else None,
    }


def component_to_dict(component: ComponentDB, include_milestones: bool = True) -> Dict[str, Any]:
    """Convert a component to an API-friendly dict."""
    data = {
        "id": component.id,
        "project_id": component.project_id,
        "drawing_id": component.drawing_id,
        "component_id": component.component_id,
        "type": component.type,
        "workflow_type": component.workflow_type,
        "milestone_template_id": component.milestone_template_id,
        "completion_percent": component.completion_percent,
        "status": component.status,
        "weld_id": component.weld_id,
    }
    if include_milestones:
        data["milestones"] = [milestone_to_dict(m) for m in component.milestones]
    return data


# Singleton
_component_repository: Optional[ComponentRepository] = None


def get_component_repository() -> ComponentRepository:
    """Get the component repository singleton."""
    global _component_repository
    if _component_repository is None:
        _component_repository = ComponentRepository()
    return _component_repository
