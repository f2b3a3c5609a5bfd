"""
Chunked bulk milestone updates with per-item savepoints and progress tracking.

Validated updates are split into ordered chunks of `batch_size`:
- each chunk is one database transaction, chunks run one after another
- each item runs inside a savepoint; an item that fails is rolled back
  alone and reported failed while its siblings commit
- after a chunk's items are written, every touched component is
  recalculated once, then "Weld Made" transitions are mirrored onto
  field welds
- if the chunk transaction itself fails (recalculation, weld sync, commit),
  every item of that chunk is reported failed and later chunks still run
- progress is published to Redis after each chunk
"""
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any, Callable, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from ..cache.redis_client import cache
from ..database.connection import Database, get_database
from ..database.models import AuditEntityEnum
from ..database.repositories.components import (
    ComponentRepository,
    get_component_repository,
    milestone_values,
    milestone_to_dict,
)
from ..milestones.calculator import CompletionCalculator
from ..milestones.exceptions import MilestoneError, NotFoundError
from ..milestones.transitions import MilestoneTransition, compute_transition
from ..milestones.validator import ValidatedUpdate, ValidationFailure
from ..milestones.weld_sync import WeldSynchronizer
from ..utils.audit_logger import AuditLogWriter, AuditAction, build_changes
from ..utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)


def progress_key(transaction_id: str) -> str:
    return f"bulk:progress:{transaction_id}"


class BulkUpdateResult:
    """Per-item outcome of a bulk update, reported in submission order."""

    def __init__(self, transaction_id: str, total: int):
        self.transaction_id = transaction_id
        self.total = total
        self._items: Dict[int, Dict[str, Any]] = {}
        self.chunk_count = 0
        self.start_time = datetime.now()
        self.end_time: Optional[datetime] = None

    def add_success(self, index: int, component_id: str, milestone_name: str, milestone: Dict[str, Any]):
        """Record a committed update."""
        self._items[index] = {
            "index": index,
            "component_id": component_id,
            "milestone_name": milestone_name,
            "success": True,
            "milestone": milestone,
        }

    def add_failure(
        self,
        index: int,
        component_id: str,
        milestone_name: str,
        error: str,
        code: str = "UPDATE_FAILED",
    ):
        """Record a failed update."""
        self._items[index] = {
            "index": index,
            "component_id": component_id,
            "milestone_name": milestone_name,
            "success": False,
            "error": error,
            "code": code,
        }

    def add_validation_failure(self, failure: ValidationFailure):
        self.add_failure(
            failure.index,
            failure.update.component_id,
            failure.update.milestone_name,
            failure.error.message,
            failure.error.code,
        )

    @property
    def results(self) -> List[Dict[str, Any]]:
        return [self._items[index] for index in sorted(self._items)]

    @property
    def successful(self) -> int:
        return sum(1 for item in self._items.values() if item["success"])

    @property
    def failed(self) -> int:
        return sum(1 for item in self._items.values() if not item["success"])

    @property
    def errors(self) -> List[str]:
        return [
            f"{item['component_id']}/{item['milestone_name']}: {item['error']}"
            for item in self.results
            if not item["success"]
        ]

    def finalize(self):
        """Finalize the result with end time."""
        self.end_time = datetime.now()

    @property
    def duration_seconds(self) -> float:
        if not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "transaction_id": self.transaction_id,
            "successful": self.successful,
            "failed": self.failed,
            "results": self.results,
            "processing_time": round(self.duration_seconds, 3),
        }


class BatchProcessor:
    """Applies validated milestone updates in chunked transactions."""

    def __init__(
        self,
        db: Optional[Database] = None,
        component_repo: Optional[ComponentRepository] = None,
        calculator: Optional[CompletionCalculator] = None,
        synchronizer: Optional[WeldSynchronizer] = None,
        audit_writer: Optional[AuditLogWriter] = None,
        clock: Callable[[], datetime] = get_local_now,
    ):
        self.db = db or get_database()
        self.component_repo = component_repo or get_component_repository()
        self.calculator = calculator or CompletionCalculator(self.component_repo)
        self.audit_writer = audit_writer or AuditLogWriter()
        self.synchronizer = synchronizer or WeldSynchronizer(
            component_repo=self.component_repo, audit_writer=self.audit_writer
        )
        self.clock = clock
        self.progress_cache_ttl = settings.progress_cache_ttl

    @staticmethod
    def chunk(items: List[Any], batch_size: int) -> List[List[Any]]:
        """Split into ordered chunks of at most batch_size."""
        if batch_size < 1:
            raise ValueError(f"Batch size must be at least 1, got {batch_size}")
        return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]

    async def process(
        self,
        updates: List[ValidatedUpdate],
        actor_id: str,
        transaction_id: str,
        batch_size: int,
        result: Optional[BulkUpdateResult] = None,
        atomic: bool = False,
    ) -> BulkUpdateResult:
        """
        Apply validated updates chunk by chunk.

        Args:
            updates: Validated updates in submission order
            actor_id: User performing the bulk
            transaction_id: Bulk transaction recorded on every audit entry
            batch_size: Items per chunk transaction
            result: Result to fill (created when omitted)
            atomic: Any item failure fails the whole chunk instead of just that item

        Returns:
            BulkUpdateResult with one outcome per update
        """
        result = result or BulkUpdateResult(transaction_id, len(updates))
        chunks = self.chunk(updates, batch_size)
        result.chunk_count = len(chunks)
        processed = 0

        for chunk_index, chunk in enumerate(chunks, start=1):
            await self._process_chunk(chunk, chunk_index, actor_id, transaction_id, result, atomic)
            processed += len(chunk)
            await self._update_progress(transaction_id, processed, len(updates), chunk_index, len(chunks))

        result.finalize()
        logger.info(
            f"Bulk {transaction_id}: {result.successful} succeeded, {result.failed} failed "
            f"in {len(chunks)} chunk(s)"
        )
        return result

    async def _process_chunk(
        self,
        chunk: List[ValidatedUpdate],
        chunk_index: int,
        actor_id: str,
        transaction_id: str,
        result: BulkUpdateResult,
        atomic: bool = False,
    ):
        """Run one chunk in its own transaction."""
        outcomes: List[Tuple[ValidatedUpdate, Optional[Dict[str, Any]], Optional[Exception]]] = []

        try:
            async with self.db.session() as session:
                touched: List[str] = []
                weld_transitions: List[Tuple[ValidatedUpdate, MilestoneTransition]] = []

                for item in chunk:
                    try:
                        async with session.begin_nested():
                            milestone, transition = await self.apply_update(
                                session, item, actor_id, transaction_id
                            )
                            milestone_data = milestone_to_dict(milestone)
                    except Exception as e:
                        logger.error(
                            f"Bulk item {item.index} ({item.component_id}/{item.update.milestone_name}) failed: {e}"
                        )
                        if atomic:
                            raise
                        outcomes.append((item, None, e))
                        continue

                    outcomes.append((item, milestone_data, None))
                    if item.component_id not in touched:
                        touched.append(item.component_id)
                    if (
                        transition.completion_changed
                        and self.synchronizer.is_weld_milestone(item.update.milestone_name)
                    ):
                        weld_transitions.append((item, transition))

                for component_id in touched:
                    await self.calculator.recalculate(session, component_id)

                for item, transition in weld_transitions:
                    await self.synchronizer.sync(
                        session,
                        component_id=item.component_id,
                        completed=transition.is_completed,
                        actor_id=actor_id,
                        effective_date=item.effective_date,
                        welder_id=item.update.welder_id,
                        comments=item.update.comments,
                        transaction_id=transaction_id,
                    )

        except Exception as e:
            logger.error(f"Bulk {transaction_id} chunk {chunk_index} transaction failed: {e}")
            for item in chunk:
                result.add_failure(
                    item.index,
                    item.component_id,
                    item.update.milestone_name,
                    f"Chunk transaction failed: {e}",
                    "CHUNK_FAILED",
                )
            return

        for item, milestone_data, error in outcomes:
            if error is None:
                result.add_success(item.index, item.component_id, item.update.milestone_name, milestone_data)
            else:
                code = error.code if isinstance(error, MilestoneError) else "UPDATE_FAILED"
                result.add_failure(item.index, item.component_id, item.update.milestone_name, str(error), code)

    async def apply_update(
        self,
        session: AsyncSession,
        item: ValidatedUpdate,
        actor_id: str,
        transaction_id: Optional[str] = None,
    ):
        """Write one validated update and its audit entry. Returns (milestone, transition)."""
        milestone = await self.component_repo.get_milestone_by_id(item.milestone_id, session=session)
        if milestone is None:
            raise NotFoundError("Milestone not found")

        before = milestone_values(milestone)
        transition = compute_transition(
            milestone,
            item.update.value,
            actor_id=actor_id,
            effective_date=item.effective_date,
            now=self.clock(),
        )
        await self.component_repo.update_milestone(milestone, transition.values, session=session)

        await self.audit_writer.record(
            session,
            user_id=actor_id,
            entity_type=AuditEntityEnum.COMPONENT_MILESTONE.value,
            entity_id=milestone.id,
            changes=build_changes(before, milestone_values(milestone)),
            action=AuditAction.UPDATE,
            project_id=item.project_id,
            transaction_id=transaction_id,
        )
        return milestone, transition

    async def _update_progress(
        self,
        transaction_id: str,
        current: int,
        total: int,
        chunk: int,
        chunks: int,
    ):
        """Publish bulk progress."""
        progress = {
            "current": current,
            "total": total,
            "percent": round((current / total) * 100, 2) if total else 100.0,
            "chunk": chunk,
            "chunks": chunks,
            "timestamp": datetime.now().isoformat(),
        }
        await cache.set(progress_key(transaction_id), progress, ttl=self.progress_cache_ttl)

    async def get_progress(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """Latest published progress for a bulk transaction."""
        return await cache.get(progress_key(transaction_id))
