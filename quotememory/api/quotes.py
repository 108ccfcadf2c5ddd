"""
API Router — Quote Endpoints.

Build, save and render quotations; saved quotes feed price history.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from quotememory.api.deps import get_actor, get_services
from quotememory.schemas.quote import LineSuggestion, Quote, QuoteCreate, SuggestionRequest
from quotememory.services.container import Services

router = APIRouter(prefix="/quotes", tags=["Quotes"], dependencies=[Depends(get_actor)])


@router.post("", status_code=201, response_model=Quote)
async def create_quote(
    body: QuoteCreate,
    actor: str = Depends(get_actor),
    services: Services = Depends(get_services),
) -> Quote:
    """Validate, total and persist a quote; each line joins price history."""
    return await services.quotes.save(body, actor)


@router.post("/suggestions", response_model=list[LineSuggestion])
async def suggest_prices(
    body: SuggestionRequest,
    services: Services = Depends(get_services),
) -> list[LineSuggestion]:
    """Historical price suggestions for the lines of a quote being built."""
    return await services.quotes.suggest(body)


@router.get("", response_model=list[Quote])
async def list_quotes(
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    limit: int = Query(default=50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> list[Quote]:
    return await services.quotes.list_quotes(client_id=client_id, limit=limit)


@router.get("/{quote_id}", response_model=Quote)
async def get_quote(quote_id: str, services: Services = Depends(get_services)) -> Quote:
    return await services.quotes.get(quote_id)


@router.put("/{quote_id}", response_model=Quote)
async def replace_quote(
    quote_id: str,
    body: QuoteCreate,
    actor: str = Depends(get_actor),
    services: Services = Depends(get_services),
) -> Quote:
    """Replace a quote's client, notes and lines wholesale."""
    return await services.quotes.replace(quote_id, body, actor)


@router.get("/{quote_id}/markdown")
async def quote_markdown(quote_id: str, services: Services = Depends(get_services)) -> dict[str, str]:
    return {"markdown": await services.quotes.render_markdown(quote_id)}
