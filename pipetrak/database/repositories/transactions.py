"""
Bulk operation transaction repository.

A transaction row is created before a bulk update starts, finalized with
counts and errors when it ends, and marked rolled_back by undo.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..connection import get_database, session_scope
from ..models import BulkOperationTransactionDB, TransactionStatusEnum
from ..exceptions import DatabaseConstraintError, DatabaseOperationError

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Repository for bulk operation transactions."""

    def __init__(self):
        self.db = get_database()

    async def create(
        self,
        transaction_id: str,
        user_id: str,
        operation_count: int,
        project_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> BulkOperationTransactionDB:
        """Record the start of a bulk operation."""
        async with session_scope(self.db, session) as s:
            try:
                transaction = BulkOperationTransactionDB(
                    id=transaction_id,
                    project_id=project_id,
                    user_id=user_id,
                    operation_type="bulk_milestone_update",
                    operation_count=operation_count,
                    success_count=0,
                    failure_count=0,
                    status=TransactionStatusEnum.IN_PROGRESS.value,
                    extra_metadata=metadata or {},
                    errors=[],
                )
                s.add(transaction)
                await s.flush()
                logger.info(f"Started bulk transaction {transaction_id} ({operation_count} operations)")
                return transaction

            except IntegrityError:
                raise DatabaseConstraintError(f"Transaction {transaction_id} already exists")

            except Exception as e:
                logger.error(f"Failed to create bulk transaction {transaction_id}: {e}")
                raise DatabaseOperationError(f"Failed to create transaction: {e}")

    async def get(
        self,
        transaction_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[BulkOperationTransactionDB]:
        """Get transaction by id."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(BulkOperationTransactionDB).where(BulkOperationTransactionDB.id == transaction_id)
            )
            return result.scalar_one_or_none()

    async def finalize(
        self,
        transaction_id: str,
        status: str,
        success_count: int,
        failure_count: int,
        errors: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[BulkOperationTransactionDB]:
        """Record the outcome of a bulk operation."""
        async with session_scope(self.db, session) as s:
            transaction = await self.get(transaction_id, session=s)
            if not transaction:
                logger.warning(f"Cannot finalize unknown transaction {transaction_id}")
                return None

            transaction.status = status
            transaction.success_count = success_count
            transaction.failure_count = failure_count
            transaction.errors = list(errors or [])
            transaction.extra_metadata = {**(transaction.extra_metadata or {}), **(metadata or {})}
            transaction.completed_at = datetime.now()
            await s.flush()
            return transaction

    async def mark_rolled_back(
        self,
        transaction: BulkOperationTransactionDB,
        rolled_back_by: str,
        session: Optional[AsyncSession] = None,
    ) -> BulkOperationTransactionDB:
        """Mark a transaction as undone."""
        async with session_scope(self.db, session) as s:
            transaction.status = TransactionStatusEnum.ROLLED_BACK.value
            transaction.rolled_back_at = datetime.now()
            transaction.rolled_back_by = rolled_back_by
            await s.flush()
            return transaction

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 10,
        session: Optional[AsyncSession] = None,
    ) -> List[BulkOperationTransactionDB]:
        """List a user's most recent transactions."""
        async with session_scope(self.db, session) as s:
            result = await s.execute(
                select(BulkOperationTransactionDB)
                .where(BulkOperationTransactionDB.user_id == user_id)
                .order_by(BulkOperationTransactionDB.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())


# Singleton
_transaction_repository: Optional[TransactionRepository] = None


def get_transaction_repository() -> TransactionRepository:
    """Get the transaction repository singleton."""
    global _transaction_repository
    if _transaction_repository is None:
        _transaction_repository = TransactionRepository()
    return _transaction_repository
