"""
API Router — Price History Endpoints.

Ranked history, the single best price, and manual price entry.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from quotememory.api.deps import get_actor, get_services
from quotememory.schemas.price_history import (
    ManualPriceEntry,
    MaterialPriceStats,
    PriceHistoryEntry,
    PriceHistoryRecord,
    PriceResolution,
)
from quotememory.services.container import Services

router = APIRouter(prefix="/price-history", tags=["Price History"], dependencies=[Depends(get_actor)])


@router.get("/material/{material_id}", response_model=list[PriceHistoryEntry])
async def material_price_history(
    material_id: str,
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    limit: Optional[int] = None,
    services: Services = Depends(get_services),
) -> list[PriceHistoryEntry]:
    """Most recent prices for a material, optionally for one client."""
    return await services.price_resolver.history(material_id, client_id=client_id, limit=limit)


@router.get("/latest/{material_id}")
async def latest_price(
    material_id: str,
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Best single record: the client's latest, else the latest overall; {} if none."""
    entry = await services.price_resolver.latest(material_id, client_id=client_id)
    return entry.model_dump(mode="json") if entry else {}


@router.get("/resolve/{material_id}", response_model=PriceResolution)
async def resolve_price(
    material_id: str,
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    limit: Optional[int] = None,
    services: Services = Depends(get_services),
) -> PriceResolution:
    """Suggested price with provenance plus the ranked history behind it."""
    return await services.price_resolver.resolve(material_id, client_id=client_id, limit=limit)


@router.get("/stats/{material_id}", response_model=MaterialPriceStats)
async def material_price_stats(
    material_id: str,
    services: Services = Depends(get_services),
) -> MaterialPriceStats:
    return await services.price_resolver.material_stats(material_id)


@router.get("/client/{client_id}", response_model=list[PriceHistoryEntry])
async def client_price_history(
    client_id: str,
    limit: Optional[int] = None,
    services: Services = Depends(get_services),
) -> list[PriceHistoryEntry]:
    return await services.price_resolver.client_history(client_id, limit=limit)


@router.post("", status_code=201, response_model=PriceHistoryRecord)
async def record_price(
    body: ManualPriceEntry,
    actor: str = Depends(get_actor),
    services: Services = Depends(get_services),
) -> PriceHistoryRecord:
    """Append one manual or master-list price."""
    return await services.price_entry.record(body, actor)
