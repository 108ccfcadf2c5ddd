# tests/conftest.py
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from factories import T0
from quotememory.config import Settings
from quotememory.schemas.reference import ClientCreate, MaterialCreate, ReferenceSource
from quotememory.services.container import build_services
from quotememory.services.reference_data import normalize_name
from quotememory.stores.memory import MemoryDatabase, build_memory_stores


class TickingClock:
    """Advances one second per call so every write gets a distinct timestamp."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def db() -> MemoryDatabase:
    return MemoryDatabase()


@pytest.fixture
def stores(db):
    return build_memory_stores(db)


@pytest.fixture
def services(settings, stores, clock):
    return build_services(settings, stores=stores, clock=clock)


@pytest.fixture
def make_material(stores):
    def make(name: str, hsn_code: str | None = None, source: ReferenceSource = ReferenceSource.MASTER):
        return asyncio.run(
            stores.materials.create(
                MaterialCreate(name=name, hsn_code=hsn_code, source=source),
                normalized_name=normalize_name(name),
            )
        )

    return make


@pytest.fixture
def make_client(stores):
    def make(name: str, email: str | None = None, source: ReferenceSource = ReferenceSource.MASTER):
        return asyncio.run(
            stores.clients.create(
                ClientCreate(name=name, email=email, source=source),
                normalized_name=normalize_name(name),
            )
        )

    return make
