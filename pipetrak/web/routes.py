"""
Milestone API routes.

The caller's identity arrives in the X-User-Id header; authentication
happens upstream. Engine errors are mapped to HTTP status codes through
their `status_code`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from ..milestones.exceptions import MilestoneError
from ..models.api_validation import (
    BulkUpdateRequest,
    ConflictResolutionRequest,
    PreviewRequest,
)
from ..models.values import MilestoneUpdate
from ..services.milestone_service import MilestoneService, get_milestone_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pipetrak/milestones", tags=["milestones"])


async def get_actor_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Acting user from the request header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def _http_error(error: MilestoneError) -> HTTPException:
    if error.status_code >= 500:
        logger.error(f"Milestone operation failed: {error.message}")
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


# ============================================================================
# Updates
# ============================================================================

@router.patch("/update")
async def update_milestone(
    update: MilestoneUpdate,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Update a single milestone."""
    try:
        return await service.update_milestone(update, actor_id)
    except MilestoneError as e:
        raise _http_error(e)


@router.post("/bulk-update")
async def bulk_update(
    request: BulkUpdateRequest,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Apply many milestone updates with per-item results."""
    try:
        return await service.bulk_update(
            request.updates,
            actor_id,
            options=request.options,
            transaction_id=request.metadata.transaction_id,
        )
    except MilestoneError as e:
        raise _http_error(e)


@router.post("/preview-bulk")
async def preview_bulk(
    request: PreviewRequest,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Preview a bulk update without persisting it."""
    try:
        return await service.preview_bulk(request.updates, actor_id)
    except MilestoneError as e:
        raise _http_error(e)


@router.get("/progress/{transaction_id}")
async def bulk_progress(
    transaction_id: str,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Progress of a bulk update."""
    try:
        return await service.get_progress(transaction_id)
    except MilestoneError as e:
        raise _http_error(e)


# ============================================================================
# Conflicts & Undo
# ============================================================================

@router.post("/resolve-conflict")
async def resolve_conflict(
    request: ConflictResolutionRequest,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Resolve a conflicting milestone edit."""
    try:
        return await service.resolve_conflict(request, actor_id)
    except MilestoneError as e:
        raise _http_error(e)


@router.post("/undo/{transaction_id}")
async def undo_transaction(
    transaction_id: str,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Undo a bulk transaction."""
    try:
        return await service.undo_transaction(transaction_id, actor_id)
    except MilestoneError as e:
        raise _http_error(e)


@router.get("/transactions")
async def list_transactions(
    limit: int = Query(10, ge=1, le=50),
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """The caller's recent bulk transactions."""
    return {"transactions": await service.list_transactions(actor_id, limit=limit)}


# ============================================================================
# Reads
# ============================================================================

@router.get("/component/{component_id}")
async def component_milestones(
    component_id: str,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """A component with its milestones."""
    try:
        return await service.list_component_milestones(component_id, actor_id)
    except MilestoneError as e:
        raise _http_error(e)


@router.get("/recent/{project_id}")
async def recent_activity(
    project_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Recent milestone activity for a project."""
    try:
        return await service.recent_activity(project_id, actor_id, limit=limit, offset=offset)
    except MilestoneError as e:
        raise _http_error(e)


@router.get("/stats/{project_id}")
async def project_stats(
    project_id: str,
    actor_id: str = Depends(get_actor_id),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Milestone statistics for a project."""
    try:
        return await service.project_stats(project_id, actor_id)
    except MilestoneError as e:
        raise _http_error(e)
