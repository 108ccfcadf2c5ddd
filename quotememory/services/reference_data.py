"""
Reference Data Service.

Maps names extracted from email onto existing materials and clients.
Resolution order is: learned alias, exact normalized name, (clients only)
email, fuzzy name similarity. Names that match nothing become new records,
but matching itself never writes: new records and learned aliases are
collected in a ``ReferencePlan`` and committed by the review store in the
same unit as the status transition.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from difflib import SequenceMatcher
from typing import Iterable, Optional, Sequence, TypeVar

from quotememory.errors import NotFound, ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.extraction import ExtractedClient
from quotememory.schemas.reference import Client, Material, ReferenceSource
from quotememory.stores.base import ClientStore, MaterialStore, ReferenceWrites

logger = get_logger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

T = TypeVar("T", Material, Client)


def normalize_name(name: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    name = _PUNCTUATION.sub("", name.lower())
    return _WHITESPACE.sub(" ", name).strip()


def similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


def best_match(normalized: str, candidates: Sequence[T], threshold: float) -> tuple[Optional[T], float]:
    """Highest-similarity candidate at or above ``threshold``; first wins ties."""
    best: Optional[T] = None
    best_score = 0.0
    for candidate in candidates:
        score = similarity(normalized, candidate.normalized_name)
        if score > best_score:
            best, best_score = candidate, score
    if best is not None and best_score >= threshold:
        return best, best_score
    return None, best_score


class ReferenceDataService:
    """Read-side matching for the materials and clients a review commits to."""

    def __init__(
        self,
        materials: MaterialStore,
        clients: ClientStore,
        material_threshold: float = 0.85,
        client_threshold: float = 0.80,
    ) -> None:
        self.materials = materials
        self.clients = clients
        self.material_threshold = material_threshold
        self.client_threshold = client_threshold

    async def get_material(self, material_id: str) -> Material:
        material = await self.materials.get(material_id)
        if material is None:
            raise NotFound("material", material_id)
        return material

    async def get_client(self, client_id: str) -> Client:
        client = await self.clients.get(client_id)
        if client is None:
            raise NotFound("client", client_id)
        return client

    async def match_material(self, name: str, pending: Iterable[Material] = ()) -> Optional[Material]:
        """
        Existing material for extracted text, or None.

        ``pending`` holds records planned earlier in the same commit; they
        take part in fuzzy matching so one payload never plans two records
        for near-identical names.
        """
        normalized = normalize_name(name)

        alias_target = await self.materials.find_alias(normalized)
        if alias_target:
            material = await self.materials.get(alias_target)
            if material is not None:
                logger.debug("material_matched", match_type="alias", text=name, material_id=material.id)
                return material

        material = await self.materials.find_by_normalized_name(normalized)
        if material is not None:
            logger.debug("material_matched", match_type="exact", text=name, material_id=material.id)
            return material

        candidates = [*await self.materials.list_all(), *pending]
        candidate, score = best_match(normalized, candidates, self.material_threshold)
        if candidate is not None:
            logger.info(
                "material_matched",
                match_type="fuzzy",
                text=name,
                material_id=candidate.id,
                matched_name=candidate.name,
                score=round(score, 3),
            )
        return candidate

    async def match_client(self, extracted: ExtractedClient, pending: Iterable[Client] = ()) -> Optional[Client]:
        normalized = normalize_name(extracted.name)

        alias_target = await self.clients.find_alias(normalized)
        if alias_target:
            client = await self.clients.get(alias_target)
            if client is not None:
                return client

        client = await self.clients.find_by_normalized_name(normalized)
        if client is not None:
            return client

        if extracted.email:
            client = await self.clients.find_by_email(extracted.email)
            if client is not None:
                logger.debug("client_matched", match_type="email", text=extracted.name, client_id=client.id)
                return client

        candidates = [*await self.clients.list_all(), *pending]
        candidate, score = best_match(normalized, candidates, self.client_threshold)
        if candidate is not None:
            logger.info(
                "client_matched",
                match_type="fuzzy",
                text=extracted.name,
                client_id=candidate.id,
                matched_name=candidate.name,
                score=round(score, 3),
            )
        return candidate

    async def check_matches(
        self,
        material_matches: dict[str, str],
        client_matches: dict[str, str],
    ) -> tuple[dict[str, Material], dict[str, Client]]:
        """
        Look up reviewer-pinned ids, keyed by normalized extracted text.

        Both maps are checked before anything is reported, so one
        ValidationError names every unknown id.
        """
        materials: dict[str, Material] = {}
        clients: dict[str, Client] = {}
        missing: dict[str, str] = {}
        for text, material_id in material_matches.items():
            material = await self.materials.get(material_id)
            if material is None:
                missing[f"material_matches.{text}"] = f"unknown material {material_id}"
            else:
                materials[normalize_name(text)] = material
        for text, client_id in client_matches.items():
            client = await self.clients.get(client_id)
            if client is None:
                missing[f"client_matches.{text}"] = f"unknown client {client_id}"
            else:
                clients[normalize_name(text)] = client
        if missing:
            raise ValidationError("Corrections reference unknown materials or clients", fields=missing)
        return materials, clients

    def plan(
        self,
        source: ReferenceSource,
        now: datetime,
        pinned_materials: Optional[dict[str, Material]] = None,
        pinned_clients: Optional[dict[str, Client]] = None,
    ) -> ReferencePlan:
        return ReferencePlan(self, source, now, pinned_materials or {}, pinned_clients or {})


class ReferencePlan:
    """
    The reference records one review commit points at.

    Lookups go through the service; anything that does not exist yet is
    given a provisional id and kept here until ``writes()`` hands it to
    the store. Pinned matches are learned as aliases.
    """

    def __init__(
        self,
        service: ReferenceDataService,
        source: ReferenceSource,
        now: datetime,
        pinned_materials: dict[str, Material],
        pinned_clients: dict[str, Client],
    ) -> None:
        self._service = service
        self._source = source
        self._now = now
        self._pinned_materials = pinned_materials
        self._pinned_clients = pinned_clients
        self._new_materials: dict[str, Material] = {}
        self._new_clients: dict[str, Client] = {}

    async def material(self, name: str, hsn_code: str | None = None) -> Material:
        normalized = normalize_name(name)
        known = self._pinned_materials.get(normalized) or self._new_materials.get(normalized)
        if known is not None:
            return known

        material = await self._service.match_material(name, pending=self._new_materials.values())
        if material is None:
            material = Material(
                id=str(uuid.uuid4()),
                name=name,
                hsn_code=hsn_code,
                source=self._source,
                normalized_name=normalized,
                created_at=self._now,
            )
            self._new_materials[normalized] = material
        return material

    async def client(self, extracted: ExtractedClient) -> Client:
        normalized = normalize_name(extracted.name)
        known = self._pinned_clients.get(normalized) or self._new_clients.get(normalized)
        if known is not None:
            return known

        client = await self._service.match_client(extracted, pending=self._new_clients.values())
        if client is None:
            client = Client(
                id=str(uuid.uuid4()),
                name=extracted.name,
                email=extracted.email,
                contact=extracted.contact_person,
                source=self._source,
                normalized_name=normalized,
                created_at=self._now,
            )
            self._new_clients[normalized] = client
        return client

    def writes(self) -> ReferenceWrites:
        return ReferenceWrites(
            materials=tuple(self._new_materials.values()),
            clients=tuple(self._new_clients.values()),
            material_aliases=tuple((alias, m.id) for alias, m in self._pinned_materials.items()),
            client_aliases=tuple((alias, c.id) for alias, c in self._pinned_clients.items()),
        )
