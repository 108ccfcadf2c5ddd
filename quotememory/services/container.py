"""
Service wiring.

One ``Services`` bundle per process, built from settings (or from
explicitly supplied stores in tests) and attached to the FastAPI app.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from quotememory.config import Settings
from quotememory.services.price_entry import PriceEntryService
from quotememory.services.price_resolver import PriceResolver
from quotememory.services.quote_assembler import QuoteAssembler
from quotememory.services.reference_data import ReferenceDataService
from quotememory.services.review_service import ReviewQueueService
from quotememory.stores.base import Stores
from quotememory.stores.factory import build_stores


@dataclass
class Services:
    settings: Settings
    stores: Stores
    reference: ReferenceDataService
    review_queue: ReviewQueueService
    price_resolver: PriceResolver
    price_entry: PriceEntryService
    quotes: QuoteAssembler


def build_services(
    settings: Settings,
    stores: Optional[Stores] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    stores = stores or build_stores(settings)
    clock_kw = {"clock": clock} if clock else {}

    reference = ReferenceDataService(
        stores.materials,
        stores.clients,
        material_threshold=settings.material_match_threshold,
        client_threshold=settings.client_match_threshold,
    )
    resolver = PriceResolver(
        stores.price_history,
        reference,
        default_limit=settings.price_history_default_limit,
        max_limit=settings.price_history_max_limit,
    )
    return Services(
        settings=settings,
        stores=stores,
        reference=reference,
        review_queue=ReviewQueueService(
            stores.review_items,
            reference,
            confidence_threshold=settings.review_confidence_threshold,
            **clock_kw,
        ),
        price_resolver=resolver,
        price_entry=PriceEntryService(
            stores.price_history,
            reference,
            default_currency=settings.default_currency,
            default_unit=settings.default_unit,
            **clock_kw,
        ),
        quotes=QuoteAssembler(
            stores.quotes,
            resolver,
            reference,
            default_unit=settings.default_unit,
            default_delivery_terms=settings.default_delivery_terms,
            default_currency=settings.default_currency,
            **clock_kw,
        ),
    )
