"""
Data models for the human review queue.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from quotememory.schemas.extraction import ExtractionMethod, ExtractionPayload


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CORRECTED = "corrected"

    @property
    def is_terminal(self) -> bool:
        return self is not ReviewStatus.PENDING


class ReviewItemCreate(BaseModel):
    """An extraction result arriving from the ingestion side."""

    source_message_id: str = Field(min_length=1)
    thread_id: Optional[str] = None
    subject: Optional[str] = None
    sender_address: Optional[str] = None
    received_at: datetime
    extraction_method: ExtractionMethod
    confidence: float = Field(ge=0.0, le=1.0)
    payload: dict[str, Any]


class ReviewItem(BaseModel):
    """
    One pending decision wrapping an extraction payload.

    Instances are frozen; a transition produces a new instance through
    the store's conditional update.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source_message_id: str
    thread_id: Optional[str] = None
    subject: Optional[str] = None
    sender_address: Optional[str] = None
    received_at: datetime
    extraction_method: ExtractionMethod
    confidence: float = Field(ge=0.0, le=1.0)
    payload: ExtractionPayload
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    corrections: Optional[dict[str, Any]] = None
    rejection_reason: Optional[str] = None


class ReviewItemSummary(BaseModel):
    id: str
    subject: Optional[str] = None
    sender_address: Optional[str] = None
    received_at: datetime
    extraction_method: ExtractionMethod
    confidence: float
    low_confidence: bool
    status: ReviewStatus
    client_name: Optional[str] = None
    item_count: int
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None

    @classmethod
    def from_item(cls, item: ReviewItem, threshold: float) -> ReviewItemSummary:
        return cls(
            id=item.id,
            subject=item.subject,
            sender_address=item.sender_address,
            received_at=item.received_at,
            extraction_method=item.extraction_method,
            confidence=item.confidence,
            low_confidence=item.confidence < threshold,
            status=item.status,
            client_name=item.payload.client.name if item.payload.client else None,
            item_count=len(item.payload.items),
            decided_at=item.decided_at,
            decided_by=item.decided_by,
        )


class ReviewDecision(BaseModel):
    """Outcome of approve / reject / correct."""

    id: str
    status: ReviewStatus
    decided_at: datetime
    decided_by: str
    price_records_created: int = 0


class ReviewQueueStats(BaseModel):
    total_items: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    corrected: int = 0
    avg_confidence: Optional[float] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class CorrectionRequest(BaseModel):
    """
    Reviewer corrections for a pending item.

    ``corrections`` overlays the payload's top-level fields. The match
    maps pin extracted text to existing reference records and are
    learned as aliases.
    """

    corrections: dict[str, Any] = Field(default_factory=dict)
    material_matches: dict[str, str] = Field(default_factory=dict)
    client_matches: dict[str, str] = Field(default_factory=dict)
