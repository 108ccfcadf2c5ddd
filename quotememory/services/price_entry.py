"""
Manual price entry.

Appends a single hand-entered or master-list price. Mail-derived prices
are only written by the review queue, so ``gmail`` is refused here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from quotememory.errors import ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.price_history import (
    ManualPriceEntry,
    PriceHistoryCreate,
    PriceHistoryRecord,
    PriceSource,
)
from quotememory.services.reference_data import ReferenceDataService
from quotememory.stores.base import PriceHistoryStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceEntryService:
    def __init__(
        self,
        price_history: PriceHistoryStore,
        reference: ReferenceDataService,
        default_currency: str = "INR",
        default_unit: str = "MT",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.price_history = price_history
        self.reference = reference
        self.default_currency = default_currency
        self.default_unit = default_unit
        self._clock = clock

    async def record(self, entry: ManualPriceEntry, actor: str) -> PriceHistoryRecord:
        if entry.source == PriceSource.GMAIL:
            raise ValidationError(
                "gmail prices are recorded through the review queue",
                fields={"source": "must be manual or master"},
            )

        await self.reference.get_material(entry.material_id)
        if entry.client_id:
            await self.reference.get_client(entry.client_id)

        data = PriceHistoryCreate(
            material_id=entry.material_id,
            client_id=entry.client_id,
            quantity=entry.quantity,
            unit=entry.unit or self.default_unit,
            rate_per_unit=entry.rate_per_unit,
            currency=entry.currency or self.default_currency,
            ex_works=entry.ex_works,
            ex_works_location=entry.ex_works_location,
            source=entry.source,
            quoted_at=entry.quoted_at or self._clock(),
        )
        [record] = await self.price_history.append([data])
        logger.info(
            "price_recorded",
            record_id=record.id,
            material_id=record.material_id,
            client_id=record.client_id,
            source=record.source.value,
            actor=actor,
        )
        return record
