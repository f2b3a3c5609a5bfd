"""
Operations on milestones that span several writes: chunked bulk updates,
conflict resolution and transaction undo.
"""

from .batch import BatchProcessor, BulkUpdateResult
from .conflicts import ConflictResolver, ConflictResolution, STRATEGIES
from .undo_manager import UndoManager

__all__ = [
    "BatchProcessor",
    "BulkUpdateResult",
    "ConflictResolver",
    "ConflictResolution",
    "STRATEGIES",
    "UndoManager",
]
