"""
Quote Assembler.

Builds priced quotations from caller-supplied line items. Totals are
always recomputed from the lines; a caller's ``total_amount`` is ignored.
Saving a quote also appends one ``manual`` price-history row per line, in
the same store write, so every saved quote feeds future suggestions.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from quotememory.errors import NotFound, ValidationError
from quotememory.logging_config import get_logger
from quotememory.schemas.price_history import PriceHistoryCreate, PriceSource
from quotememory.schemas.quote import (
    LineSuggestion,
    Quote,
    QuoteCreate,
    QuoteLineItem,
    SuggestionRequest,
)
from quotememory.services.price_resolver import PriceResolver
from quotememory.services.reference_data import ReferenceDataService
from quotememory.stores.base import QuoteStore

logger = get_logger(__name__)

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuoteAssembler:
    def __init__(
        self,
        quotes: QuoteStore,
        resolver: PriceResolver,
        reference: ReferenceDataService,
        default_unit: str = "MT",
        default_delivery_terms: str = "From Ready Stock",
        default_currency: str = "INR",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.quotes = quotes
        self.resolver = resolver
        self.reference = reference
        self.default_unit = default_unit
        self.default_delivery_terms = default_delivery_terms
        self.default_currency = default_currency
        self._clock = clock

    async def suggest(self, request: SuggestionRequest) -> list[LineSuggestion]:
        """
        Resolver suggestion for every line that names a material.

        ``prefill_rate`` is only filled for lines without a caller rate;
        an explicit rate is never overridden.
        """
        suggestions = []
        for index, line in enumerate(request.items):
            if not line.material_id:
                suggestions.append(LineSuggestion(index=index))
                continue
            resolution = await self.resolver.resolve(line.material_id, client_id=request.client_id, limit=1)
            suggestion = resolution.suggestion
            prefill = suggestion.rate_per_unit if suggestion and line.rate_per_unit is None else None
            suggestions.append(
                LineSuggestion(
                    index=index,
                    material_id=line.material_id,
                    suggestion=suggestion,
                    prefill_rate=prefill,
                )
            )
        return suggestions

    async def save(self, request: QuoteCreate, actor: str) -> Quote:
        lines = await self._build_lines(request)
        now = self._clock()
        quote = Quote(
            id=str(uuid.uuid4()),
            client_id=request.client_id,
            quote_number=request.quote_number,
            notes=request.notes,
            created_at=now,
            created_by=actor,
            line_items=lines,
        )
        if request.total_amount is not None and abs(request.total_amount - quote.total_amount) > 0.005:
            logger.warning(
                "quote_total_mismatch",
                supplied=request.total_amount,
                computed=quote.total_amount,
                actor=actor,
            )

        records = [
            PriceHistoryCreate(
                material_id=line.material_id,
                client_id=quote.client_id,
                quantity=line.quantity,
                unit=line.unit,
                rate_per_unit=line.rate_per_unit,
                currency=self.default_currency,
                ex_works=line.ex_works,
                ex_works_location=line.ex_works_location,
                source=PriceSource.MANUAL,
                quoted_at=now,
                quote_id=quote.id,
            )
            for line in lines
        ]
        saved = await self.quotes.insert(quote, records)
        logger.info(
            "quote_saved",
            quote_id=saved.id,
            client_id=saved.client_id,
            lines=len(lines),
            total=saved.total_amount,
            actor=actor,
        )
        return saved

    async def replace(self, quote_id: str, request: QuoteCreate, actor: str) -> Quote:
        """Replace a quote wholesale. Price history is not touched."""
        existing = await self.get(quote_id)
        lines = await self._build_lines(request)
        quote = Quote(
            id=existing.id,
            client_id=request.client_id,
            quote_number=request.quote_number,
            notes=request.notes,
            created_at=existing.created_at,
            updated_at=self._clock(),
            created_by=existing.created_by,
            line_items=lines,
        )
        replaced = await self.quotes.replace(quote)
        if replaced is None:
            raise NotFound("quote", quote_id)
        logger.info("quote_replaced", quote_id=quote_id, lines=len(lines), total=replaced.total_amount, actor=actor)
        return replaced

    async def get(self, quote_id: str) -> Quote:
        quote = await self.quotes.get(quote_id)
        if quote is None:
            raise NotFound("quote", quote_id)
        return quote

    async def list_quotes(self, client_id: Optional[str] = None, limit: int = 50) -> list[Quote]:
        return await self.quotes.list(client_id=client_id, limit=limit)

    async def render_markdown(self, quote_id: str) -> str:
        quote = await self.get(quote_id)
        client = await self.reference.clients.get(quote.client_id)
        symbol = CURRENCY_SYMBOLS.get(self.default_currency, f"{self.default_currency} ")

        def money(value: float) -> str:
            return f"{symbol}{value:,.2f}"

        out = ["# Quotation", ""]
        out.append(f"**Client:** {client.name if client else quote.client_id}  ")
        out.append(f"**Date:** {quote.created_at.date().isoformat()}  ")
        if quote.quote_number:
            out.append(f"**Quote Number:** {quote.quote_number}  ")
        out.append("")
        out.append("| No | Materials | QTY | Unit | Rate/Unit | Ex Works | Delivery |")
        out.append("|----|-----------|-----|------|-----------|----------|----------|")
        for number, line in enumerate(quote.line_items, start=1):
            material = await self.reference.materials.get(line.material_id)
            ex_works = line.ex_works_location or money(line.ex_works)
            out.append(
                f"| {number} | {material.name if material else line.material_id} | {line.quantity:g} "
                f"| {line.unit} | {money(line.rate_per_unit)} | {ex_works} | {line.delivery_terms} |"
            )
        out.append("")
        out.append(f"**Total Amount:** {money(quote.total_amount)}")
        if quote.notes:
            out.append("")
            out.append(f"**Notes:** {quote.notes}")
        return "\n".join(out) + "\n"

    async def _build_lines(self, request: QuoteCreate) -> list[QuoteLineItem]:
        """Check every line and report all problems at once."""
        await self.reference.get_client(request.client_id)

        if not request.items:
            raise ValidationError("A quote needs at least one line item", fields={"items": "must not be empty"})

        fields: dict[str, str] = {}
        bad: set[int] = set()

        def fail(index: int, name: str, message: str) -> None:
            fields[f"items[{index}].{name}"] = message
            bad.add(index)

        known: dict[str, bool] = {}
        for index, line in enumerate(request.items):
            if not line.material_id:
                fail(index, "material_id", "is required")
            else:
                if line.material_id not in known:
                    known[line.material_id] = await self.reference.materials.get(line.material_id) is not None
                if not known[line.material_id]:
                    fail(index, "material_id", "unknown material")
            if line.quantity is None or not math.isfinite(line.quantity) or line.quantity <= 0:
                fail(index, "quantity", "must be a finite number greater than 0")
            if line.rate_per_unit is None or not math.isfinite(line.rate_per_unit) or line.rate_per_unit <= 0:
                fail(index, "rate_per_unit", "must be a finite number greater than 0")
            if not math.isfinite(line.ex_works) or line.ex_works < 0:
                fail(index, "ex_works", "must be a finite number, not negative")

        if bad:
            logger.info("quote_rejected", client_id=request.client_id, invalid_lines=sorted(bad))
            raise ValidationError("Quote has invalid line items", fields=fields, line_indices=bad)

        return [
            QuoteLineItem(
                material_id=line.material_id,
                quantity=line.quantity,
                unit=line.unit or self.default_unit,
                rate_per_unit=line.rate_per_unit,
                ex_works=line.ex_works,
                ex_works_location=line.ex_works_location,
                delivery_terms=line.delivery_terms or self.default_delivery_terms,
            )
            for line in request.items
        ]
