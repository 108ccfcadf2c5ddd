"""
Price Resolver.

Picks the most relevant historical rate for a material. A price quoted
to the same client wins even when older; otherwise the most recent price
to anyone is used. Records sharing a ``quoted_at`` are ordered by id, so
identical input always gives the same answer.

Resolution is read-only. An empty history is a normal outcome ("no
suggestion"); only an unknown material is an error.
"""

from __future__ import annotations

from typing import Optional

from quotememory.errors import ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.price_history import (
    MaterialPriceStats,
    PriceHistoryEntry,
    PriceHistoryRecord,
    PriceResolution,
    PriceSuggestion,
)
from quotememory.services.reference_data import ReferenceDataService
from quotememory.stores.base import PriceHistoryStore

logger = get_logger(__name__)

# Records considered when summarizing a material's price range
STATS_SAMPLE = 10_000


class PriceResolver:
    def __init__(
        self,
        price_history: PriceHistoryStore,
        reference: ReferenceDataService,
        default_limit: int = 20,
        max_limit: int = 100,
    ) -> None:
        self.price_history = price_history
        self.reference = reference
        self.default_limit = default_limit
        self.max_limit = max_limit

    def _bounded(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_limit
        if limit < 1 or limit > self.max_limit:
            raise ValidationError(
                "limit out of range",
                fields={"limit": f"must be between 1 and {self.max_limit}"},
            )
        return limit

    async def resolve(
        self,
        material_id: str,
        client_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> PriceResolution:
        """Suggested price plus ranked history for ``material_id``."""
        limit = self._bounded(limit)
        await self.reference.get_material(material_id)

        history = await self.price_history.for_material(material_id, limit=limit)
        chosen, client_specific = await self._choose(material_id, client_id, history[0] if history else None)

        names = await self._client_names([r.client_id for r in history] + ([chosen.client_id] if chosen else []))

        suggestion = None
        if chosen is not None:
            suggestion = PriceSuggestion(
                record_id=chosen.id,
                rate_per_unit=chosen.rate_per_unit,
                currency=chosen.currency,
                unit=chosen.unit,
                source=chosen.source,
                corrected=chosen.corrected,
                quoted_at=chosen.quoted_at,
                client_id=chosen.client_id,
                client_name=names.get(chosen.client_id) if chosen.client_id else None,
                client_specific=client_specific,
            )

        logger.debug(
            "price_resolved",
            material_id=material_id,
            client_id=client_id,
            history=len(history),
            suggested=suggestion.rate_per_unit if suggestion else None,
            client_specific=client_specific,
        )
        return PriceResolution(
            material_id=material_id,
            client_id=client_id,
            suggestion=suggestion,
            history=[self._entry(r, names) for r in history],
        )

    async def history(
        self,
        material_id: str,
        client_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[PriceHistoryEntry]:
        """History for a material, narrowed to one client when given."""
        limit = self._bounded(limit)
        await self.reference.get_material(material_id)
        records = await self.price_history.for_material(material_id, client_id=client_id, limit=limit)
        names = await self._client_names([r.client_id for r in records])
        return [self._entry(r, names) for r in records]

    async def latest(self, material_id: str, client_id: Optional[str] = None) -> Optional[PriceHistoryEntry]:
        """The single record ``resolve`` would suggest, or None."""
        await self.reference.get_material(material_id)
        record, _ = await self._choose(material_id, client_id, await self.price_history.latest(material_id))
        if record is None:
            return None
        names = await self._client_names([record.client_id])
        return self._entry(record, names)

    async def client_history(self, client_id: str, limit: Optional[int] = None) -> list[PriceHistoryEntry]:
        limit = self._bounded(limit)
        client = await self.reference.get_client(client_id)
        records = await self.price_history.for_client(client_id, limit=limit)
        return [PriceHistoryEntry(record=r, client_name=client.name) for r in records]

    async def material_stats(self, material_id: str) -> MaterialPriceStats:
        await self.reference.get_material(material_id)
        records = await self.price_history.for_material(material_id, limit=STATS_SAMPLE)
        if not records:
            return MaterialPriceStats(material_id=material_id)
        rates = [r.rate_per_unit for r in records]
        return MaterialPriceStats(
            material_id=material_id,
            quote_count=len(records),
            min_rate=min(rates),
            max_rate=max(rates),
            avg_rate=sum(rates) / len(rates),
            client_count=len({r.client_id for r in records if r.client_id}),
            last_quoted_at=records[0].quoted_at,
        )

    async def _choose(
        self,
        material_id: str,
        client_id: Optional[str],
        most_recent: Optional[PriceHistoryRecord],
    ) -> tuple[Optional[PriceHistoryRecord], bool]:
        """Client-specific record if one exists, else the most recent overall."""
        if client_id:
            record = await self.price_history.latest(material_id, client_id=client_id)
            if record is not None:
                return record, True
        return most_recent, False

    async def _client_names(self, client_ids: list[Optional[str]]) -> dict[str, str]:
        ids = [cid for cid in client_ids if cid]
        if not ids:
            return {}
        clients = await self.reference.clients.get_many(ids)
        return {cid: client.name for cid, client in clients.items()}

    @staticmethod
    def _entry(record: PriceHistoryRecord, names: dict[str, str]) -> PriceHistoryEntry:
        return PriceHistoryEntry(
            record=record,
            client_name=names.get(record.client_id) if record.client_id else None,
        )
