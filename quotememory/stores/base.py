"""
Store contracts.

Services depend on these abstract stores only; ``build_stores`` picks the
concrete backend from settings. Implementations never swallow failures:
infrastructure faults surface as ``StoreUnavailable``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from quotememory.schemas.price_history import PriceHistoryCreate, PriceHistoryRecord
from quotememory.schemas.quote import Quote
from quotememory.schemas.reference import Client, ClientCreate, Material, MaterialCreate
from quotememory.schemas.review import ReviewItem, ReviewStatus


@dataclass(frozen=True)
class Transition:
    """Everything written when a review item leaves ``pending``."""

    status: ReviewStatus
    decided_by: str
    decided_at: datetime
    payload: Optional[dict[str, Any]] = None  # replaces the payload (corrections only)
    corrections: Optional[dict[str, Any]] = None
    rejection_reason: Optional[str] = None


@dataclass(frozen=True)
class ReferenceWrites:
    """
    Reference data committed in the same unit as a review transition.

    ``materials`` and ``clients`` are new records with provisional ids. When
    a record with the same normalized name exists by commit time, the store
    keeps that one and repoints price records and aliases at its id.
    Aliases are ``(normalized alias, target id)`` pairs learned from
    reviewer corrections.
    """

    materials: tuple[Material, ...] = ()
    clients: tuple[Client, ...] = ()
    material_aliases: tuple[tuple[str, str], ...] = ()
    client_aliases: tuple[tuple[str, str], ...] = ()


class ReviewItemStore(ABC):
    @abstractmethod
    async def insert(self, item: ReviewItem) -> ReviewItem: ...

    @abstractmethod
    async def get(self, item_id: str) -> ReviewItem | None: ...

    @abstractmethod
    async def find_by_source_message(self, source_message_id: str) -> ReviewItem | None: ...

    @abstractmethod
    async def list(
        self,
        status: ReviewStatus | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> list[ReviewItem]:
        """Items ordered by ``received_at`` descending. ``status=None`` means all."""

    @abstractmethod
    async def transition(
        self,
        item_id: str,
        expected: ReviewStatus,
        transition: Transition,
        price_records: Sequence[PriceHistoryCreate] = (),
        reference: ReferenceWrites = ReferenceWrites(),
    ) -> ReviewItem | None:
        """
        Conditionally apply a transition with its reference data and prices.

        Applies only if the stored status still equals ``expected``. The
        status change, ``reference`` and ``price_records`` are written as one
        unit. Returns the updated item, or None when the condition no longer
        held and nothing was written.
        """


class PriceHistoryStore(ABC):
    @abstractmethod
    async def append(self, records: Sequence[PriceHistoryCreate]) -> list[PriceHistoryRecord]: ...

    @abstractmethod
    async def for_material(
        self,
        material_id: str,
        client_id: str | None = None,
        limit: int = 20,
    ) -> list[PriceHistoryRecord]:
        """Most recent first; ties on ``quoted_at`` broken by id, descending."""

    @abstractmethod
    async def for_client(self, client_id: str, limit: int = 50) -> list[PriceHistoryRecord]: ...

    @abstractmethod
    async def for_review_item(self, review_item_id: str) -> list[PriceHistoryRecord]: ...

    async def latest(self, material_id: str, client_id: str | None = None) -> PriceHistoryRecord | None:
        records = await self.for_material(material_id, client_id=client_id, limit=1)
        return records[0] if records else None


class QuoteStore(ABC):
    @abstractmethod
    async def insert(self, quote: Quote, price_records: Sequence[PriceHistoryCreate] = ()) -> Quote:
        """Persist a quote together with its price records, as one unit."""

    @abstractmethod
    async def replace(self, quote: Quote) -> Quote | None:
        """Full replacement by id. Returns None if the id is unknown."""

    @abstractmethod
    async def get(self, quote_id: str) -> Quote | None: ...

    @abstractmethod
    async def list(self, client_id: str | None = None, limit: int = 50) -> list[Quote]: ...


class MaterialStore(ABC):
    @abstractmethod
    async def create(self, data: MaterialCreate, normalized_name: str) -> Material: ...

    @abstractmethod
    async def get(self, material_id: str) -> Material | None: ...

    @abstractmethod
    async def find_by_normalized_name(self, normalized_name: str) -> Material | None: ...

    @abstractmethod
    async def list_all(self) -> list[Material]: ...

    @abstractmethod
    async def find_alias(self, alias: str) -> str | None:
        """Material id a normalized alias points at."""


class ClientStore(ABC):
    @abstractmethod
    async def create(self, data: ClientCreate, normalized_name: str) -> Client: ...

    @abstractmethod
    async def get(self, client_id: str) -> Client | None: ...

    @abstractmethod
    async def get_many(self, client_ids: Sequence[str]) -> dict[str, Client]: ...

    @abstractmethod
    async def find_by_normalized_name(self, normalized_name: str) -> Client | None: ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Client | None: ...

    @abstractmethod
    async def list_all(self) -> list[Client]: ...

    @abstractmethod
    async def find_alias(self, alias: str) -> str | None: ...


@dataclass
class Stores:
    review_items: ReviewItemStore
    price_history: PriceHistoryStore
    quotes: QuoteStore
    materials: MaterialStore
    clients: ClientStore
