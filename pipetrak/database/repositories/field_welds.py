"""Field weld repository."""

import logging
from typing import Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..connection import get_database, session_scope
from ..models import FieldWeldDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError

logger = logging.getLogger(__name__)

WELD_SYNC_FIELDS = ("date_welded", "welder_id", "comments")


class FieldWeldRepository:
    """Repository for field weld records."""

    def __init__(self):
        self.db = get_database()

    async def create(
        self,
        project_id: str,
        weld_id_number: str,
        session: Optional[AsyncSession] = None,
        **fields: Any,
    ) -> FieldWeldDB:
        """Create a field weld record."""
        async with session_scope(self.db, session) as s:
            try:
                weld = FieldWeldDB(project_id=project_id, weld_id_number=weld_id_number, **fields)
                s.add(weld)
                await s.flush()
                return weld
            except IntegrityError:
                raise DatabaseConstraintError(f"Field weld {weld_id_number} already exists")

    async def get(
        self,
        weld_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[FieldWeldDB]:
        """Get field weld by primary key."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(select(FieldWeldDB).where(FieldWeldDB.id == weld_id))
            return result.scalar_one_or_none()

    async def get_by_weld_number(
        self,
        project_id: str,
        weld_id_number: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[FieldWeldDB]:
        """Get the field weld paired with a component's weld id."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(FieldWeldDB).where(
                    FieldWeldDB.project_id == project_id,
                    FieldWeldDB.weld_id_number == weld_id_number,
                )
            )
            return result.scalar_one_or_none()

    async def update(
        self,
        weld: FieldWeldDB,
        values: Dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> FieldWeldDB:
        """Write synchronized weld fields."""
        unknown = set(values) - set(WELD_SYNC_FIELDS)
        if unknown:
            raise DatabaseOperationError(f"Cannot write field weld fields: {sorted(unknown)}")

        async with session_scope(self.db, session) as s:
            try:
                for field, value in values.items():
                    setattr(weld, field, value)
                await s.flush()
                return weld
            except Exception as e:
                logger.error(f"Field weld update failed for {weld.weld_id_number}: {e}")
                raise DatabaseOperationError(f"Failed to update field weld: {e}")


# Singleton
_field_weld_repository: Optional[FieldWeldRepository] = None


def get_field_weld_repository() -> FieldWeldRepository:
    """Get the field weld repository singleton."""
    global _field_weld_repository
    if _field_weld_repository is None:
        _field_weld_repository = FieldWeldRepository()
    return _field_weld_repository
