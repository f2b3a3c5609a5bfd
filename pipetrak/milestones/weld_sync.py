"""
Field weld synchronizer.

Mirrors the "Weld Made" milestone onto the paired field weld record:
completion sets the weld date (plus welder and comments when given),
un-completion clears all three. The weld change is audited with the bulk
transaction id so undo restores it together with the milestone.
"""

import logging
from datetime import date
from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from ..database.models import FieldWeldDB, AuditEntityEnum
from ..database.repositories.components import ComponentRepository, get_component_repository
from ..database.repositories.field_welds import (
    FieldWeldRepository,
    get_field_weld_repository,
    WELD_SYNC_FIELDS,
)
from ..utils.audit_logger import AuditLogWriter, AuditAction, build_changes
from ..utils.datetime_utils import get_local_today

logger = logging.getLogger(__name__)


class WeldSynchronizer:
    """Keeps field weld records in step with their "Weld Made" milestone."""

    def __init__(
        self,
        component_repo: Optional[ComponentRepository] = None,
        field_weld_repo: Optional[FieldWeldRepository] = None,
        audit_writer: Optional[AuditLogWriter] = None,
        weld_milestone_name: Optional[str] = None,
        today: Callable[[], date] = get_local_today,
    ):
        self.component_repo = component_repo or get_component_repository()
        self.field_weld_repo = field_weld_repo or get_field_weld_repository()
        self.audit_writer = audit_writer or AuditLogWriter()
        self.weld_milestone_name = weld_milestone_name or settings.weld_milestone_name
        self.today = today

    def is_weld_milestone(self, milestone_name: str) -> bool:
        return milestone_name == self.weld_milestone_name

    async def sync(
        self,
        session: AsyncSession,
        component_id: str,
        completed: bool,
        actor_id: str,
        effective_date: Optional[date] = None,
        welder_id: Optional[str] = None,
        comments: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Optional[FieldWeldDB]:
        """
        Apply a "Weld Made" transition to the paired field weld.

        Returns the updated weld, or None when the component has no weld id
        or no matching field weld exists.
        """
        component = await self.component_repo.get(component_id, session=session)
        if component is None or not component.weld_id:
            logger.info(f"Component {component_id} has no weld id, skipping field weld sync")
            return None

        weld = await self.field_weld_repo.get_by_weld_number(
            component.project_id, component.weld_id, session=session
        )
        if weld is None:
            logger.info(
                f"No field weld {component.weld_id} in project {component.project_id}, skipping sync"
            )
            return None

        before = {f: getattr(weld, f) for f in WELD_SYNC_FIELDS}

        if completed:
            values = {"date_welded": effective_date or self.today()}
            if welder_id is not None:
                values["welder_id"] = welder_id
            if comments is not None:
                values["comments"] = comments
        else:
            values = {f: None for f in WELD_SYNC_FIELDS}

        await self.field_weld_repo.update(weld, values, session=session)

        changes = build_changes(before, {f: getattr(weld, f) for f in WELD_SYNC_FIELDS})
        if changes:
            await self.audit_writer.record(
                session,
                user_id=actor_id,
                entity_type=AuditEntityEnum.FIELD_WELD.value,
                entity_id=weld.id,
                changes=changes,
                action=AuditAction.UPDATE,
                project_id=component.project_id,
                transaction_id=transaction_id,
            )

        logger.info(
            f"Field weld {weld.weld_id_number} {'welded' if completed else 'cleared'} "
            f"from component {component.component_id}"
        )
        return weld
