"""
API Router — Review Queue Endpoints.

Human review workflow for quotation data extracted from email.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from quotememory.api.deps import get_actor, get_services
from quotememory.errors import ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.review import (
    CorrectionRequest,
    RejectRequest,
    ReviewDecision,
    ReviewItem,
    ReviewItemCreate,
    ReviewItemSummary,
    ReviewQueueStats,
    ReviewStatus,
)
from quotememory.services.container import Services

logger = get_logger(__name__)
router = APIRouter(prefix="/review-queue", tags=["Reviews"], dependencies=[Depends(get_actor)])


def _parse_status(status: str) -> Optional[ReviewStatus]:
    if status == "all":
        return None
    try:
        return ReviewStatus(status)
    except ValueError:
        allowed = ", ".join([s.value for s in ReviewStatus] + ["all"])
        raise ValidationError("Unknown status filter", fields={"status": f"must be one of {allowed}"}) from None


@router.get("")
async def list_review_items(
    status: str = "pending",
    search: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Review items filtered by status and subject/sender text, newest first."""
    settings = services.settings
    limit = min(limit or settings.review_list_default_limit, settings.review_list_max_limit)
    items = await services.review_queue.list_items(
        status=_parse_status(status),
        search=search,
        limit=limit,
    )
    summaries = [
        ReviewItemSummary.from_item(item, settings.review_confidence_threshold) for item in items
    ]
    return {"data": summaries, "total": len(summaries)}


@router.post("", status_code=201, response_model=ReviewItem)
async def enqueue_review_item(
    body: ReviewItemCreate,
    services: Services = Depends(get_services),
) -> ReviewItem:
    """Queue an extraction result for review."""
    return await services.review_queue.enqueue(body)


@router.get("/stats", response_model=ReviewQueueStats)
async def review_queue_stats(services: Services = Depends(get_services)) -> ReviewQueueStats:
    return await services.review_queue.stats()


@router.get("/{item_id}", response_model=ReviewItem)
async def get_review_item(item_id: str, services: Services = Depends(get_services)) -> ReviewItem:
    """Full item, including payload; use after an ambiguous write to re-check status."""
    return await services.review_queue.get(item_id)


@router.post("/{item_id}/approve", response_model=ReviewDecision)
async def approve_review_item(
    item_id: str,
    actor: str = Depends(get_actor),
    services: Services = Depends(get_services),
) -> ReviewDecision:
    """Approve a pending item and commit it to reference data and price history."""
    return await services.review_queue.approve(item_id, actor)


@router.post("/{item_id}/reject", response_model=ReviewDecision)
async def reject_review_item(
    item_id: str,
    body: Optional[RejectRequest] = None,
    actor: str = Depends(get_actor),
    services: Services = Depends(get_services),
) -> ReviewDecision:
    """Reject a pending item with an optional reason."""
    reason = body.reason if body else None
    return await services.review_queue.reject(item_id, actor, reason=reason)


@router.post("/{item_id}/correct", response_model=ReviewDecision)
async def correct_review_item(
    item_id: str,
    body: CorrectionRequest,
    actor: str = Depends(get_actor),
    services: Services = Depends(get_services),
) -> ReviewDecision:
    """Apply corrections to a pending item and commit the corrected data."""
    return await services.review_queue.correct(
        item_id,
        actor,
        body.corrections,
        material_matches=body.material_matches,
        client_matches=body.client_matches,
    )
