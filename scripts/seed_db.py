"""
Database Seeding Script.

Populates master materials, clients and opening prices through the
configured store backend (``STORE_BACKEND=supabase`` to seed the real
database). Re-running skips records that already exist.
"""

import asyncio
import os
import sys
from datetime import datetime, timezone

# Add project root to path so we can import quotememory
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from quotememory.config import get_settings
from quotememory.logging_config import setup_logging, get_logger
from quotememory.schemas.price_history import ManualPriceEntry, PriceSource
from quotememory.schemas.reference import ClientCreate, MaterialCreate, ReferenceSource
from quotememory.services.container import build_services
from quotememory.services.reference_data import normalize_name

setup_logging()
logger = get_logger(__name__)

SAMPLE_MATERIALS = [
    {"name": "MS Angle 50x50x5", "hsn_code": "7216", "description": "Mild steel equal angle"},
    {"name": "MS Channel 100x50", "hsn_code": "7216", "description": "Mild steel channel"},
    {"name": "TMT Bar Fe500D 12mm", "hsn_code": "7214", "description": "Thermo-mechanically treated bar"},
    {"name": "HR Plate 10mm", "hsn_code": "7208", "description": "Hot rolled plate"},
]

SAMPLE_CLIENTS = [
    {"name": "Shree Ganesh Steel", "email": "purchase@sgsteel.in", "contact": "R. Mehta"},
    {"name": "Kiran Infra Projects", "email": "procurement@kiraninfra.com", "contact": "S. Iyer"},
]

# (material, client or None, rate per MT)
SAMPLE_PRICES = [
    ("MS Angle 50x50x5", None, 58500.0),
    ("MS Channel 100x50", None, 61200.0),
    ("TMT Bar Fe500D 12mm", "Kiran Infra Projects", 54800.0),
    ("HR Plate 10mm", "Shree Ganesh Steel", 63900.0),
]


async def seed():
    services = build_services(get_settings())
    stores = services.stores

    logger.info("seeding_started", backend=services.settings.store_backend.value)

    materials = {}
    for material in SAMPLE_MATERIALS:
        normalized = normalize_name(material["name"])
        existing = await stores.materials.find_by_normalized_name(normalized)
        if existing:
            logger.info("seed_skipped", kind="material", name=material["name"])
            materials[material["name"]] = existing
            continue
        created = await stores.materials.create(
            MaterialCreate(source=ReferenceSource.MASTER, **material),
            normalized_name=normalized,
        )
        logger.info("seed_created", kind="material", name=created.name, id=created.id)
        materials[material["name"]] = created

    clients = {}
    for client in SAMPLE_CLIENTS:
        normalized = normalize_name(client["name"])
        existing = await stores.clients.find_by_normalized_name(normalized)
        if existing:
            logger.info("seed_skipped", kind="client", name=client["name"])
            clients[client["name"]] = existing
            continue
        created = await stores.clients.create(
            ClientCreate(source=ReferenceSource.MASTER, **client),
            normalized_name=normalized,
        )
        logger.info("seed_created", kind="client", name=created.name, id=created.id)
        clients[client["name"]] = created

    quoted_at = datetime.now(timezone.utc)
    for material_name, client_name, rate in SAMPLE_PRICES:
        material = materials[material_name]
        if await stores.price_history.latest(material.id):
            logger.info("seed_skipped", kind="price", material=material_name)
            continue
        await services.price_entry.record(
            ManualPriceEntry(
                material_id=material.id,
                client_id=clients[client_name].id if client_name else None,
                rate_per_unit=rate,
                source=PriceSource.MASTER,
                quoted_at=quoted_at,
            ),
            actor="seed_db",
        )

    logger.info("seeding_complete", materials=len(materials), clients=len(clients))


if __name__ == "__main__":
    asyncio.run(seed())
