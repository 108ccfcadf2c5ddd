"""
Supabase (PostgREST) store backend.

Each call runs the blocking client in a worker thread under
``asyncio.wait_for`` so no request can hang on the database. Timeouts,
transport errors and unexpected PostgREST errors become
``StoreUnavailable``; for writes that were already sent, the error is
flagged ``outcome_unknown``. Constraint violations are refusals of the
data itself and surface as ``ValidationError``. A unique violation on a
record that may have been written concurrently is resolved by reading
the row that won.

The two multi-table writes (review decision + price history, quote +
price history) are Postgres functions called over RPC, see
``migrations/0001_quote_memory.sql``.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Callable, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from quotememory.errors import StoreUnavailable, ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.price_history import PriceHistoryCreate, PriceHistoryRecord
from quotememory.schemas.quote import Quote
from quotememory.schemas.reference import Client as ClientRecord, ClientCreate, Material, MaterialCreate
from quotememory.schemas.review import ReviewItem, ReviewStatus
from quotememory.stores.base import (
    ClientStore,
    MaterialStore,
    PriceHistoryStore,
    QuoteStore,
    ReferenceWrites,
    ReviewItemStore,
    Stores,
    Transition,
)

logger = get_logger(__name__)

# Characters with meaning inside a PostgREST or=() filter
_FILTER_UNSAFE = re.compile(r"[,()*%\\:\"]")

# Postgres SQLSTATEs for writes the database refused on their content
UNIQUE_VIOLATION = "23505"
_REJECTED_DATA = frozenset({"23502", "23503", "23514", "22P02"})


class DuplicateRow(ValidationError):
    """A unique constraint refused the write because the row already exists."""

    def __init__(self, operation: str, reason: str | None) -> None:
        super().__init__(f"Duplicate row during {operation}", fields={operation: reason or "already exists"})
        self.operation = operation


class SupabaseTable:
    """Shared plumbing: bounded execution and error translation."""

    def __init__(self, client: Client, timeout: float) -> None:
        self._client = client
        self._timeout = timeout

    async def _execute(self, operation: str, build: Callable[[], Any], write: bool = False) -> Any:
        def call() -> Any:
            return build().execute()

        try:
            return await asyncio.wait_for(asyncio.to_thread(call), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error("store_timeout", operation=operation, timeout=self._timeout, write=write)
            raise StoreUnavailable(operation, f"timed out after {self._timeout}s", outcome_unknown=write) from e
        except APIError as e:
            # The server answered, so a rejected write was not applied
            if e.code == UNIQUE_VIOLATION:
                logger.info("store_duplicate_row", operation=operation, error=e.message)
                raise DuplicateRow(operation, e.message) from e
            if e.code in _REJECTED_DATA:
                logger.warning("store_rejected_data", operation=operation, code=e.code, error=e.message)
                raise ValidationError(
                    f"Store rejected data during {operation}",
                    fields={operation: e.message or e.code},
                ) from e
            logger.error("store_api_error", operation=operation, code=e.code, error=e.message)
            raise StoreUnavailable(operation, e.message or "api error") from e
        except httpx.HTTPError as e:
            logger.error("store_transport_error", operation=operation, error=str(e), write=write)
            raise StoreUnavailable(operation, str(e) or type(e).__name__, outcome_unknown=write) from e

    async def _rows(self, operation: str, build: Callable[[], Any], write: bool = False) -> list[dict[str, Any]]:
        result = await self._execute(operation, build, write=write)
        return list(result.data or [])

    async def _first(self, operation: str, build: Callable[[], Any], write: bool = False) -> dict[str, Any] | None:
        rows = await self._rows(operation, build, write=write)
        return rows[0] if rows else None


class SupabaseReviewItemStore(SupabaseTable, ReviewItemStore):
    TABLE = "review_items"

    async def insert(self, item: ReviewItem) -> ReviewItem:
        try:
            row = await self._first(
                "review_items.insert",
                lambda: self._client.table(self.TABLE).insert(item.model_dump(mode="json")),
                write=True,
            )
        except DuplicateRow:
            # Same message enqueued concurrently
            existing = await self.find_by_source_message(item.source_message_id)
            if existing is None:
                raise
            return existing
        return ReviewItem.model_validate(row) if row else item

    async def get(self, item_id: str) -> ReviewItem | None:
        row = await self._first(
            "review_items.get",
            lambda: self._client.table(self.TABLE).select("*").eq("id", item_id).limit(1),
        )
        return ReviewItem.model_validate(row) if row else None

    async def find_by_source_message(self, source_message_id: str) -> ReviewItem | None:
        row = await self._first(
            "review_items.find_by_source_message",
            lambda: self._client.table(self.TABLE)
            .select("*")
            .eq("source_message_id", source_message_id)
            .limit(1),
        )
        return ReviewItem.model_validate(row) if row else None

    async def list(
        self,
        status: ReviewStatus | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> list[ReviewItem]:
        def build() -> Any:
            query = self._client.table(self.TABLE).select("*")
            if status is not None:
                query = query.eq("status", status.value)
            term = _FILTER_UNSAFE.sub("", search or "").strip()
            if term:
                query = query.or_(f"subject.ilike.*{term}*,sender_address.ilike.*{term}*")
            return query.order("received_at", desc=True).order("id", desc=True).limit(limit)

        rows = await self._rows("review_items.list", build)
        return [ReviewItem.model_validate(row) for row in rows]

    async def transition(
        self,
        item_id: str,
        expected: ReviewStatus,
        transition: Transition,
        price_records: Sequence[PriceHistoryCreate] = (),
        reference: ReferenceWrites = ReferenceWrites(),
    ) -> ReviewItem | None:
        params = {
            "p_item_id": item_id,
            "p_expected_status": expected.value,
            "p_status": transition.status.value,
            "p_decided_by": transition.decided_by,
            "p_decided_at": transition.decided_at.isoformat(),
            "p_payload": transition.payload,
            "p_corrections": transition.corrections,
            "p_rejection_reason": transition.rejection_reason,
            "p_price_records": [r.model_dump(mode="json") for r in price_records],
            "p_materials": [m.model_dump(mode="json") for m in reference.materials],
            "p_clients": [c.model_dump(mode="json") for c in reference.clients],
            "p_material_aliases": [
                {"alias": alias, "material_id": material_id} for alias, material_id in reference.material_aliases
            ],
            "p_client_aliases": [
                {"alias": alias, "client_id": client_id} for alias, client_id in reference.client_aliases
            ],
        }
        row = await self._first(
            "review_items.transition",
            lambda: self._client.rpc("commit_review_decision", params),
            write=True,
        )
        return ReviewItem.model_validate(row) if row else None


class SupabasePriceHistoryStore(SupabaseTable, PriceHistoryStore):
    TABLE = "price_history"

    async def append(self, records: Sequence[PriceHistoryCreate]) -> list[PriceHistoryRecord]:
        if not records:
            return []
        payload = [r.model_dump(mode="json") for r in records]
        rows = await self._rows(
            "price_history.append",
            lambda: self._client.table(self.TABLE).insert(payload),
            write=True,
        )
        return [PriceHistoryRecord.model_validate(row) for row in rows]

    async def for_material(
        self,
        material_id: str,
        client_id: str | None = None,
        limit: int = 20,
    ) -> list[PriceHistoryRecord]:
        def build() -> Any:
            query = self._client.table(self.TABLE).select("*").eq("material_id", material_id)
            if client_id is not None:
                query = query.eq("client_id", client_id)
            return query.order("quoted_at", desc=True).order("id", desc=True).limit(limit)

        rows = await self._rows("price_history.for_material", build)
        return [PriceHistoryRecord.model_validate(row) for row in rows]

    async def for_client(self, client_id: str, limit: int = 50) -> list[PriceHistoryRecord]:
        rows = await self._rows(
            "price_history.for_client",
            lambda: self._client.table(self.TABLE)
            .select("*")
            .eq("client_id", client_id)
            .order("quoted_at", desc=True)
            .order("id", desc=True)
            .limit(limit),
        )
        return [PriceHistoryRecord.model_validate(row) for row in rows]

    async def for_review_item(self, review_item_id: str) -> list[PriceHistoryRecord]:
        rows = await self._rows(
            "price_history.for_review_item",
            lambda: self._client.table(self.TABLE)
            .select("*")
            .eq("review_item_id", review_item_id)
            .order("quoted_at", desc=True)
            .order("id", desc=True),
        )
        return [PriceHistoryRecord.model_validate(row) for row in rows]


class SupabaseQuoteStore(SupabaseTable, QuoteStore):
    TABLE = "quotes"

    async def insert(self, quote: Quote, price_records: Sequence[PriceHistoryCreate] = ()) -> Quote:
        params = {
            "p_quote": quote.model_dump(mode="json"),
            "p_price_records": [r.model_dump(mode="json") for r in price_records],
        }
        row = await self._first(
            "quotes.insert",
            lambda: self._client.rpc("save_quote_with_history", params),
            write=True,
        )
        return Quote.model_validate(row) if row else quote

    async def replace(self, quote: Quote) -> Quote | None:
        row = quote.model_dump(mode="json")
        updated = await self._first(
            "quotes.replace",
            lambda: self._client.table(self.TABLE).update(row).eq("id", quote.id),
            write=True,
        )
        return Quote.model_validate(updated) if updated else None

    async def get(self, quote_id: str) -> Quote | None:
        row = await self._first(
            "quotes.get",
            lambda: self._client.table(self.TABLE).select("*").eq("id", quote_id).limit(1),
        )
        return Quote.model_validate(row) if row else None

    async def list(self, client_id: str | None = None, limit: int = 50) -> list[Quote]:
        def build() -> Any:
            query = self._client.table(self.TABLE).select("*")
            if client_id is not None:
                query = query.eq("client_id", client_id)
            return query.order("created_at", desc=True).limit(limit)

        rows = await self._rows("quotes.list", build)
        return [Quote.model_validate(row) for row in rows]


class SupabaseMaterialStore(SupabaseTable, MaterialStore):
    TABLE = "materials"
    ALIASES = "material_aliases"

    async def create(self, data: MaterialCreate, normalized_name: str) -> Material:
        row = {**data.model_dump(mode="json"), "normalized_name": normalized_name}
        try:
            created = await self._first(
                "materials.create",
                lambda: self._client.table(self.TABLE).insert(row),
                write=True,
            )
        except DuplicateRow:
            existing = await self.find_by_normalized_name(normalized_name)
            if existing is None:
                raise
            return existing
        if not created:
            raise StoreUnavailable("materials.create", "insert returned no row", outcome_unknown=True)
        return Material.model_validate(created)

    async def get(self, material_id: str) -> Material | None:
        row = await self._first(
            "materials.get",
            lambda: self._client.table(self.TABLE).select("*").eq("id", material_id).limit(1),
        )
        return Material.model_validate(row) if row else None

    async def find_by_normalized_name(self, normalized_name: str) -> Material | None:
        rows = await self._rows(
            "materials.find_by_normalized_name",
            lambda: self._client.table(self.TABLE)
            .select("*")
            .eq("normalized_name", normalized_name)
            .order("created_at"),
        )
        materials = [Material.model_validate(row) for row in rows]
        materials.sort(key=lambda m: m.source.value != "master")
        return materials[0] if materials else None

    async def list_all(self) -> list[Material]:
        rows = await self._rows(
            "materials.list_all",
            lambda: self._client.table(self.TABLE).select("*").order("name"),
        )
        return [Material.model_validate(row) for row in rows]

    async def find_alias(self, alias: str) -> str | None:
        row = await self._first(
            "material_aliases.find",
            lambda: self._client.table(self.ALIASES).select("material_id").eq("alias", alias).limit(1),
        )
        return row["material_id"] if row else None


class SupabaseClientStore(SupabaseTable, ClientStore):
    TABLE = "clients"
    ALIASES = "client_aliases"

    async def create(self, data: ClientCreate, normalized_name: str) -> ClientRecord:
        row = {**data.model_dump(mode="json"), "normalized_name": normalized_name}
        try:
            created = await self._first(
                "clients.create",
                lambda: self._client.table(self.TABLE).insert(row),
                write=True,
            )
        except DuplicateRow:
            existing = await self.find_by_normalized_name(normalized_name)
            if existing is None:
                raise
            return existing
        if not created:
            raise StoreUnavailable("clients.create", "insert returned no row", outcome_unknown=True)
        return ClientRecord.model_validate(created)

    async def get(self, client_id: str) -> ClientRecord | None:
        row = await self._first(
            "clients.get",
            lambda: self._client.table(self.TABLE).select("*").eq("id", client_id).limit(1),
        )
        return ClientRecord.model_validate(row) if row else None

    async def get_many(self, client_ids: Sequence[str]) -> dict[str, ClientRecord]:
        ids = sorted(set(client_ids))
        if not ids:
            return {}
        rows = await self._rows(
            "clients.get_many",
            lambda: self._client.table(self.TABLE).select("*").in_("id", ids),
        )
        return {row["id"]: ClientRecord.model_validate(row) for row in rows}

    async def find_by_normalized_name(self, normalized_name: str) -> ClientRecord | None:
        rows = await self._rows(
            "clients.find_by_normalized_name",
            lambda: self._client.table(self.TABLE)
            .select("*")
            .eq("normalized_name", normalized_name)
            .order("created_at"),
        )
        clients = [ClientRecord.model_validate(row) for row in rows]
        clients.sort(key=lambda c: c.source.value != "master")
        return clients[0] if clients else None

    async def find_by_email(self, email: str) -> ClientRecord | None:
        row = await self._first(
            "clients.find_by_email",
            lambda: self._client.table(self.TABLE).select("*").ilike("email", email.strip()).limit(1),
        )
        return ClientRecord.model_validate(row) if row else None

    async def list_all(self) -> list[ClientRecord]:
        rows = await self._rows(
            "clients.list_all",
            lambda: self._client.table(self.TABLE).select("*").order("name"),
        )
        return [ClientRecord.model_validate(row) for row in rows]

    async def find_alias(self, alias: str) -> str | None:
        row = await self._first(
            "client_aliases.find",
            lambda: self._client.table(self.ALIASES).select("client_id").eq("alias", alias).limit(1),
        )
        return row["client_id"] if row else None


def build_supabase_stores(client: Client, timeout: float) -> Stores:
    return Stores(
        review_items=SupabaseReviewItemStore(client, timeout),
        price_history=SupabasePriceHistoryStore(client, timeout),
        quotes=SupabaseQuoteStore(client, timeout),
        materials=SupabaseMaterialStore(client, timeout),
        clients=SupabaseClientStore(client, timeout),
    )
