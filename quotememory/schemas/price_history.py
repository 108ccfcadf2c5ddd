"""
Data models for the append-only price history log and price resolution.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PriceSource(str, Enum):
    """Provenance of a quoted price."""

    MASTER = "master"  # imported master price list
    GMAIL = "gmail"  # committed from the review queue
    MANUAL = "manual"  # entered by hand or saved with a quote


class PriceHistoryCreate(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    material_id: str
    client_id: Optional[str] = None
    quantity: Optional[float] = Field(default=None, gt=0)
    unit: str = "MT"
    rate_per_unit: float = Field(gt=0)
    currency: str = "INR"
    ex_works: float = Field(default=0.0, ge=0)
    ex_works_location: Optional[str] = None
    source: PriceSource = PriceSource.MANUAL
    quoted_at: datetime
    review_item_id: Optional[str] = None
    quote_id: Optional[str] = None
    thread_id: Optional[str] = None
    corrected: bool = False


class PriceHistoryRecord(PriceHistoryCreate):
    """A written price record. Never updated; corrections append new rows."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime


class ManualPriceEntry(BaseModel):
    """Body of ``POST /price-history``."""

    model_config = ConfigDict(allow_inf_nan=False)

    material_id: str
    client_id: Optional[str] = None
    quantity: Optional[float] = Field(default=None, gt=0)
    unit: Optional[str] = None
    rate_per_unit: float = Field(gt=0)
    currency: Optional[str] = None
    ex_works: float = Field(default=0.0, ge=0)
    ex_works_location: Optional[str] = None
    source: PriceSource = PriceSource.MANUAL
    quoted_at: Optional[datetime] = None


class PriceHistoryEntry(BaseModel):
    """A record as returned to callers, with names for display."""

    record: PriceHistoryRecord
    client_name: Optional[str] = None


class PriceSuggestion(BaseModel):
    """The chosen rate and why it was chosen."""

    record_id: str
    rate_per_unit: float
    currency: str
    unit: str
    source: PriceSource
    corrected: bool
    quoted_at: datetime
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_specific: bool


class PriceResolution(BaseModel):
    material_id: str
    client_id: Optional[str] = None
    suggestion: Optional[PriceSuggestion] = None
    history: list[PriceHistoryEntry] = Field(default_factory=list)


class MaterialPriceStats(BaseModel):
    material_id: str
    quote_count: int = 0
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None
    avg_rate: Optional[float] = None
    client_count: int = 0
    last_quoted_at: Optional[datetime] = None
