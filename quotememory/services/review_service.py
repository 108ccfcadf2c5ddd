"""
Review Service.

Manages the human review queue for quotation data extracted from email.
Every item starts ``pending`` and moves exactly once to ``approved``,
``rejected`` or ``corrected``. Approve and correct commit the payload to
reference data. Matching only reads; new clients and materials, learned
aliases and one price-history row per line are all written by the same
conditional store write that flips the status. Two reviewers acting on
the same item get one success and one InvalidStateTransition, and the
loser leaves nothing behind.

Confidence is informational only; low-confidence items are flagged in
listings but can be approved like any other.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from quotememory.errors import InvalidStateTransition, NotFound, ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.extraction import ExtractionPayload, apply_corrections, validate_payload
from quotememory.schemas.price_history import PriceHistoryCreate, PriceSource
from quotememory.schemas.reference import ReferenceSource
from quotememory.schemas.review import (
    ReviewDecision,
    ReviewItem,
    ReviewItemCreate,
    ReviewQueueStats,
    ReviewStatus,
)
from quotememory.services.reference_data import ReferenceDataService, ReferencePlan
from quotememory.stores.base import ReferenceWrites, ReviewItemStore, Transition

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewQueueService:
    """State machine and commit logic for review items."""

    def __init__(
        self,
        items: ReviewItemStore,
        reference: ReferenceDataService,
        confidence_threshold: float = 0.90,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.items = items
        self.reference = reference
        self.confidence_threshold = confidence_threshold
        self._clock = clock

    # ── Intake ───────────────────────────────────────────────────

    async def enqueue(self, data: ReviewItemCreate) -> ReviewItem:
        """
        Add an extraction result to the queue as a pending item.

        The payload is validated here so nothing malformed ever reaches a
        reviewer. Re-delivery of the same message returns the existing item.
        """
        payload = validate_payload(data.payload)

        existing = await self.items.find_by_source_message(data.source_message_id)
        if existing is not None:
            logger.info(
                "review_item_duplicate",
                item_id=existing.id,
                source_message_id=data.source_message_id,
            )
            return existing

        item = ReviewItem(
            id=str(uuid.uuid4()),
            source_message_id=data.source_message_id,
            thread_id=data.thread_id,
            subject=data.subject,
            sender_address=data.sender_address,
            received_at=data.received_at,
            extraction_method=data.extraction_method,
            confidence=data.confidence,
            payload=payload,
            created_at=self._clock(),
        )
        item = await self.items.insert(item)
        logger.info(
            "queued_for_review",
            item_id=item.id,
            method=item.extraction_method.value,
            confidence=item.confidence,
            low_confidence=item.confidence < self.confidence_threshold,
            line_items=len(payload.items),
        )
        return item

    # ── Reads ────────────────────────────────────────────────────

    async def get(self, item_id: str) -> ReviewItem:
        item = await self.items.get(item_id)
        if item is None:
            raise NotFound("review_item", item_id)
        return item

    async def list_items(
        self,
        status: ReviewStatus | None = ReviewStatus.PENDING,
        search: str | None = None,
        limit: int = 100,
    ) -> list[ReviewItem]:
        """Items with ``status`` (None for all), newest message first."""
        search = search.strip() if search else None
        return await self.items.list(status=status, search=search or None, limit=limit)

    async def stats(self, sample_limit: int = 10_000) -> ReviewQueueStats:
        items = await self.items.list(status=None, limit=sample_limit)
        counts = {status: 0 for status in ReviewStatus}
        for item in items:
            counts[item.status] += 1
        return ReviewQueueStats(
            total_items=len(items),
            pending=counts[ReviewStatus.PENDING],
            approved=counts[ReviewStatus.APPROVED],
            rejected=counts[ReviewStatus.REJECTED],
            corrected=counts[ReviewStatus.CORRECTED],
            avg_confidence=(sum(i.confidence for i in items) / len(items)) if items else None,
        )

    # ── Transitions ──────────────────────────────────────────────

    async def approve(self, item_id: str, actor: str) -> ReviewDecision:
        """Commit the payload exactly as extracted."""
        item = await self._pending(item_id, ReviewStatus.APPROVED)
        now = self._clock()
        plan = self.reference.plan(ReferenceSource.GMAIL, now)
        records = await self._price_records(item, item.payload, plan, corrected=False)
        transition = Transition(
            status=ReviewStatus.APPROVED,
            decided_by=actor,
            decided_at=now,
        )
        return await self._commit(item, transition, records, plan.writes())

    async def reject(self, item_id: str, actor: str, reason: str | None = None) -> ReviewDecision:
        """Close the item without touching reference data."""
        item = await self._pending(item_id, ReviewStatus.REJECTED)
        transition = Transition(
            status=ReviewStatus.REJECTED,
            decided_by=actor,
            decided_at=self._clock(),
            rejection_reason=reason or None,
        )
        return await self._commit(item, transition, [])

    async def correct(
        self,
        item_id: str,
        actor: str,
        corrections: dict[str, Any],
        material_matches: Optional[dict[str, str]] = None,
        client_matches: Optional[dict[str, str]] = None,
    ) -> ReviewDecision:
        """
        Overlay reviewer corrections, then commit like ``approve``.

        ``corrections`` replaces top-level payload fields wholesale. The
        merged payload must pass the same checks as a fresh extraction.
        Match maps pin extracted text to existing materials/clients.
        """
        item = await self._pending(item_id, ReviewStatus.CORRECTED)
        merged = apply_corrections(item.payload, corrections)

        pinned_materials, pinned_clients = await self.reference.check_matches(
            material_matches or {}, client_matches or {}
        )
        now = self._clock()
        plan = self.reference.plan(
            ReferenceSource.GMAIL,
            now,
            pinned_materials=pinned_materials,
            pinned_clients=pinned_clients,
        )
        records = await self._price_records(item, merged, plan, corrected=True)
        transition = Transition(
            status=ReviewStatus.CORRECTED,
            decided_by=actor,
            decided_at=now,
            payload=merged.model_dump(mode="json"),
            corrections={
                "fields": corrections,
                "material_matches": material_matches or {},
                "client_matches": client_matches or {},
            },
        )
        return await self._commit(item, transition, records, plan.writes())

    # ── Internals ────────────────────────────────────────────────

    async def _pending(self, item_id: str, attempted: ReviewStatus) -> ReviewItem:
        item = await self.get(item_id)
        if item.status is not ReviewStatus.PENDING:
            logger.warning(
                "review_transition_refused",
                item_id=item_id,
                current_status=item.status.value,
                attempted_status=attempted.value,
            )
            raise InvalidStateTransition(item_id, item.status.value, attempted.value)
        return item

    async def _price_records(
        self,
        item: ReviewItem,
        payload: ExtractionPayload,
        plan: ReferencePlan,
        corrected: bool,
    ) -> list[PriceHistoryCreate]:
        """Match or plan reference records and build one price row per line."""
        client_id: Optional[str] = None
        if payload.client is not None:
            client_id = (await plan.client(payload.client)).id

        records = []
        for index, line in enumerate(payload.items):
            material = await plan.material(line.material, line.hsn_code)
            try:
                records.append(
                    PriceHistoryCreate(
                        material_id=material.id,
                        client_id=client_id,
                        quantity=line.quantity,
                        unit=line.unit,
                        rate_per_unit=line.rate_per_unit,
                        currency=line.currency,
                        ex_works_location=line.ex_works,
                        source=PriceSource.GMAIL,
                        quoted_at=line.quoted_at or payload.quotation_date or item.received_at,
                        review_item_id=item.id,
                        thread_id=item.thread_id,
                        corrected=corrected,
                    )
                )
            except ValueError as e:
                raise ValidationError(
                    "Line item cannot be recorded as a price",
                    fields={f"items[{index}]": str(e)},
                    line_indices=[index],
                ) from e
        return records

    async def _commit(
        self,
        item: ReviewItem,
        transition: Transition,
        records: list[PriceHistoryCreate],
        reference: ReferenceWrites = ReferenceWrites(),
    ) -> ReviewDecision:
        updated = await self.items.transition(
            item.id,
            expected=ReviewStatus.PENDING,
            transition=transition,
            price_records=records,
            reference=reference,
        )
        if updated is None:
            # Another reviewer got there between our read and the conditional write
            current = await self.items.get(item.id)
            current_status = current.status.value if current else "missing"
            logger.warning(
                "review_transition_conflict",
                item_id=item.id,
                current_status=current_status,
                attempted_status=transition.status.value,
                actor=transition.decided_by,
            )
            if current is None:
                raise NotFound("review_item", item.id)
            raise InvalidStateTransition(item.id, current_status, transition.status.value)

        logger.info(
            f"review_item_{transition.status.value}",
            item_id=item.id,
            actor=transition.decided_by,
            price_records=len(records),
            new_materials=len(reference.materials),
            new_clients=len(reference.clients),
            aliases_learned=len(reference.material_aliases) + len(reference.client_aliases),
            confidence=item.confidence,
        )
        return ReviewDecision(
            id=updated.id,
            status=updated.status,
            decided_at=updated.decided_at or transition.decided_at,
            decided_by=updated.decided_by or transition.decided_by,
            price_records_created=len(records),
        )
