"""
Data models for quotations built from priced line items.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from quotememory.schemas.price_history import PriceSuggestion


class QuoteLineInput(BaseModel):
    """
    A line as sent by the caller.

    Fields are loose on purpose: the assembler checks every line and
    reports all bad indices together.
    """

    material_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("material_id", "materialId"))
    quantity: Optional[float] = None
    unit: Optional[str] = None
    rate_per_unit: Optional[float] = Field(default=None, validation_alias=AliasChoices("rate_per_unit", "ratePerUnit"))
    ex_works: float = Field(default=0.0, validation_alias=AliasChoices("ex_works", "exWorks"))
    ex_works_location: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ex_works_location", "exWorksLocation")
    )
    delivery_terms: Optional[str] = Field(default=None, validation_alias=AliasChoices("delivery_terms", "deliveryTerms"))


class QuoteCreate(BaseModel):
    client_id: str = Field(validation_alias=AliasChoices("client_id", "clientId"))
    quote_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("quote_number", "quoteNumber"))
    notes: Optional[str] = None
    items: list[QuoteLineInput] = Field(default_factory=list)
    # Accepted for compatibility with older clients, never persisted
    total_amount: Optional[float] = Field(default=None, validation_alias=AliasChoices("total_amount", "totalAmount"))


class QuoteLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    material_id: str
    quantity: float
    unit: str
    rate_per_unit: float
    ex_works: float = 0.0
    ex_works_location: Optional[str] = None
    delivery_terms: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def line_total(self) -> float:
        return self.quantity * self.rate_per_unit + self.ex_works


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    client_id: str
    quote_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    line_items: list[QuoteLineItem]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_amount(self) -> float:
        return sum(line.line_total for line in self.line_items)


class SuggestionRequest(BaseModel):
    client_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("client_id", "clientId"))
    items: list[QuoteLineInput] = Field(default_factory=list)


class LineSuggestion(BaseModel):
    index: int
    material_id: Optional[str] = None
    suggestion: Optional[PriceSuggestion] = None
    # Only set when the caller left the rate empty
    prefill_rate: Optional[float] = None
