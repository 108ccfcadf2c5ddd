"""
In-process store backend.

Used for local development and the test suite. All five collections share
one ``MemoryDatabase`` whose lock makes each store call a single critical
section, which gives the conditional review transition and the quote +
price-history write the same all-or-nothing behaviour as the Postgres
functions behind the Supabase backend.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Sequence, TypeVar

from quotememory.schemas.price_history import PriceHistoryCreate, PriceHistoryRecord
from quotememory.schemas.quote import Quote
from quotememory.schemas.reference import Client, ClientCreate, Material, MaterialCreate
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

R = TypeVar("R", Material, Client)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryDatabase:
    """Shared tables and the lock that serializes every access."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.review_items: dict[str, ReviewItem] = {}
        self.price_history: dict[str, PriceHistoryRecord] = {}
        self.quotes: dict[str, Quote] = {}
        self.materials: dict[str, Material] = {}
        self.material_aliases: dict[str, str] = {}
        self.clients: dict[str, Client] = {}
        self.client_aliases: dict[str, str] = {}

    # Callers of the helpers below must hold ``lock``.

    def append_price_records(self, records: Sequence[PriceHistoryCreate]) -> list[PriceHistoryRecord]:
        written = []
        for data in records:
            record = PriceHistoryRecord(id=_new_id(), created_at=_now(), **data.model_dump())
            self.price_history[record.id] = record
            written.append(record)
        return written

    @staticmethod
    def named(table: dict[str, R], normalized_name: str) -> R | None:
        # Master list entries win over ones learned from mail
        matches = [r for r in table.values() if r.normalized_name == normalized_name]
        matches.sort(key=lambda r: (r.source.value != "master", r.created_at))
        return matches[0] if matches else None

    def apply_reference(self, reference: ReferenceWrites) -> dict[str, str]:
        """Insert new materials/clients and learn aliases; returns provisional id -> stored id."""
        remap: dict[str, str] = {}
        for table, records in ((self.materials, reference.materials), (self.clients, reference.clients)):
            for record in records:
                existing = self.named(table, record.normalized_name)
                if existing is not None:
                    remap[record.id] = existing.id
                else:
                    table[record.id] = record
        for alias, material_id in reference.material_aliases:
            self.material_aliases[alias] = remap.get(material_id, material_id)
        for alias, client_id in reference.client_aliases:
            self.client_aliases[alias] = remap.get(client_id, client_id)
        return remap


def _recent_first(records: list[PriceHistoryRecord]) -> list[PriceHistoryRecord]:
    return sorted(records, key=lambda r: (r.quoted_at, r.id), reverse=True)


def _repoint(records: Sequence[PriceHistoryCreate], remap: dict[str, str]) -> list[PriceHistoryCreate]:
    if not remap:
        return list(records)
    return [
        r.model_copy(
            update={
                "material_id": remap.get(r.material_id, r.material_id),
                "client_id": remap.get(r.client_id, r.client_id) if r.client_id else None,
            }
        )
        for r in records
    ]


class MemoryReviewItemStore(ReviewItemStore):
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def insert(self, item: ReviewItem) -> ReviewItem:
        with self._db.lock:
            self._db.review_items[item.id] = item
        return item

    async def get(self, item_id: str) -> ReviewItem | None:
        with self._db.lock:
            return self._db.review_items.get(item_id)

    async def find_by_source_message(self, source_message_id: str) -> ReviewItem | None:
        with self._db.lock:
            for item in self._db.review_items.values():
                if item.source_message_id == source_message_id:
                    return item
        return None

    async def list(
        self,
        status: ReviewStatus | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> list[ReviewItem]:
        needle = search.lower() if search else None
        with self._db.lock:
            items = list(self._db.review_items.values())

        def matches(item: ReviewItem) -> bool:
            if status is not None and item.status != status:
                return False
            if needle:
                haystacks = (item.subject or "", item.sender_address or "")
                return any(needle in h.lower() for h in haystacks)
            return True

        selected = [i for i in items if matches(i)]
        selected.sort(key=lambda i: (i.received_at, i.id), reverse=True)
        return selected[:limit]

    async def transition(
        self,
        item_id: str,
        expected: ReviewStatus,
        transition: Transition,
        price_records: Sequence[PriceHistoryCreate] = (),
        reference: ReferenceWrites = ReferenceWrites(),
    ) -> ReviewItem | None:
        with self._db.lock:
            current = self._db.review_items.get(item_id)
            if current is None or current.status != expected:
                return None

            update = {
                "status": transition.status,
                "decided_by": transition.decided_by,
                "decided_at": transition.decided_at,
                "corrections": transition.corrections,
                "rejection_reason": transition.rejection_reason,
            }
            if transition.payload is not None:
                update["payload"] = transition.payload
            # Validate everything before the first write so a failure leaves no trace
            updated = ReviewItem.model_validate({**current.model_dump(), **update})

            remap = self._db.apply_reference(reference)
            self._db.append_price_records(_repoint(price_records, remap))
            self._db.review_items[item_id] = updated
            return updated


class MemoryPriceHistoryStore(PriceHistoryStore):
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def append(self, records: Sequence[PriceHistoryCreate]) -> list[PriceHistoryRecord]:
        with self._db.lock:
            return self._db.append_price_records(records)

    async def for_material(
        self,
        material_id: str,
        client_id: str | None = None,
        limit: int = 20,
    ) -> list[PriceHistoryRecord]:
        with self._db.lock:
            records = [
                r
                for r in self._db.price_history.values()
                if r.material_id == material_id and (client_id is None or r.client_id == client_id)
            ]
        return _recent_first(records)[:limit]

    async def for_client(self, client_id: str, limit: int = 50) -> list[PriceHistoryRecord]:
        with self._db.lock:
            records = [r for r in self._db.price_history.values() if r.client_id == client_id]
        return _recent_first(records)[:limit]

    async def for_review_item(self, review_item_id: str) -> list[PriceHistoryRecord]:
        with self._db.lock:
            records = [r for r in self._db.price_history.values() if r.review_item_id == review_item_id]
        return _recent_first(records)


class MemoryQuoteStore(QuoteStore):
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def insert(self, quote: Quote, price_records: Sequence[PriceHistoryCreate] = ()) -> Quote:
        with self._db.lock:
            self._db.quotes[quote.id] = quote
            self._db.append_price_records(price_records)
        return quote

    async def replace(self, quote: Quote) -> Quote | None:
        with self._db.lock:
            if quote.id not in self._db.quotes:
                return None
            self._db.quotes[quote.id] = quote
        return quote

    async def get(self, quote_id: str) -> Quote | None:
        with self._db.lock:
            return self._db.quotes.get(quote_id)

    async def list(self, client_id: str | None = None, limit: int = 50) -> list[Quote]:
        with self._db.lock:
            quotes = [q for q in self._db.quotes.values() if client_id is None or q.client_id == client_id]
        quotes.sort(key=lambda q: (q.created_at, q.id), reverse=True)
        return quotes[:limit]


class MemoryMaterialStore(MaterialStore):
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def create(self, data: MaterialCreate, normalized_name: str) -> Material:
        material = Material(id=_new_id(), normalized_name=normalized_name, created_at=_now(), **data.model_dump())
        with self._db.lock:
            self._db.materials[material.id] = material
        return material

    async def get(self, material_id: str) -> Material | None:
        with self._db.lock:
            return self._db.materials.get(material_id)

    async def find_by_normalized_name(self, normalized_name: str) -> Material | None:
        with self._db.lock:
            return self._db.named(self._db.materials, normalized_name)

    async def list_all(self) -> list[Material]:
        with self._db.lock:
            return sorted(self._db.materials.values(), key=lambda m: m.name)

    async def find_alias(self, alias: str) -> str | None:
        with self._db.lock:
            return self._db.material_aliases.get(alias)


class MemoryClientStore(ClientStore):
    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db

    async def create(self, data: ClientCreate, normalized_name: str) -> Client:
        client = Client(id=_new_id(), normalized_name=normalized_name, created_at=_now(), **data.model_dump())
        with self._db.lock:
            self._db.clients[client.id] = client
        return client

    async def get(self, client_id: str) -> Client | None:
        with self._db.lock:
            return self._db.clients.get(client_id)

    async def get_many(self, client_ids: Sequence[str]) -> dict[str, Client]:
        with self._db.lock:
            return {cid: self._db.clients[cid] for cid in set(client_ids) if cid in self._db.clients}

    async def find_by_normalized_name(self, normalized_name: str) -> Client | None:
        with self._db.lock:
            return self._db.named(self._db.clients, normalized_name)

    async def find_by_email(self, email: str) -> Client | None:
        wanted = email.strip().lower()
        with self._db.lock:
            for client in self._db.clients.values():
                if client.email and client.email.strip().lower() == wanted:
                    return client
        return None

    async def list_all(self) -> list[Client]:
        with self._db.lock:
            return sorted(self._db.clients.values(), key=lambda c: c.name)

    async def find_alias(self, alias: str) -> str | None:
        with self._db.lock:
            return self._db.client_aliases.get(alias)


def build_memory_stores(db: MemoryDatabase | None = None) -> Stores:
    db = db or MemoryDatabase()
    return Stores(
        review_items=MemoryReviewItemStore(db),
        price_history=MemoryPriceHistoryStore(db),
        quotes=MemoryQuoteStore(db),
        materials=MemoryMaterialStore(db),
        clients=MemoryClientStore(db),
    )
