"""
Data models for structured quotation data extracted from inbound email.

The extraction payload is validated here, at the point it enters the
review queue, and again after a correction overlay is merged into it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from quotememory.errors import ValidationError


class ExtractionMethod(str, Enum):
    """Which extraction strategy produced a payload."""

    HTML_TABLE = "html_table"  # rule-based table parser
    LLM = "gpt-4o-mini"
    HYBRID = "hybrid"


class ExtractedClient(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1)
    email: Optional[str] = None
    contact_person: Optional[str] = None


class ExtractedLineItem(BaseModel):
    """One quoted material line as read from the message."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", allow_inf_nan=False)

    material: str = Field(min_length=1)
    hsn_code: Optional[str] = None
    quantity: float = Field(gt=0)
    unit: str = "MT"
    rate_per_unit: float = Field(gt=0)
    currency: str = "INR"
    ex_works: Optional[str] = None  # ex-works location, e.g. "Ex-Mumbai"
    quoted_at: Optional[datetime] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ExtractionPayload(BaseModel):
    """Candidate client plus candidate line items."""

    model_config = ConfigDict(extra="forbid")

    client: Optional[ExtractedClient] = None
    items: list[ExtractedLineItem] = Field(min_length=1)
    quotation_date: Optional[datetime] = None


# Keys a correction overlay may replace
PAYLOAD_FIELDS = frozenset(ExtractionPayload.model_fields)


def field_path(loc: tuple[Any, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "payload"


def validate_payload(data: Any) -> ExtractionPayload:
    """
    Parse an extraction payload, raising our ValidationError on failure.

    Each offending field is reported by path, e.g. ``items[1].rate_per_unit``.
    """
    if isinstance(data, ExtractionPayload):
        data = data.model_dump()
    try:
        return ExtractionPayload.model_validate(data)
    except PydanticValidationError as e:
        fields = {field_path(err["loc"]): err["msg"] for err in e.errors()}
        line_indices = [
            err["loc"][1]
            for err in e.errors()
            if len(err["loc"]) > 1 and err["loc"][0] == "items" and isinstance(err["loc"][1], int)
        ]
        raise ValidationError(
            "Extraction payload failed validation",
            fields=fields,
            line_indices=line_indices,
        ) from e


def apply_corrections(payload: ExtractionPayload, corrections: dict[str, Any]) -> ExtractionPayload:
    """
    Overlay corrections onto a payload, field by field.

    Top-level keys replace the payload's value wholesale (a corrected
    ``items`` list replaces every line). Unknown keys are rejected so a
    typo cannot silently leave the machine value in place.
    """
    unknown = sorted(set(corrections) - PAYLOAD_FIELDS)
    if unknown:
        raise ValidationError(
            "Corrections contain unknown fields",
            fields={key: "not a payload field" for key in unknown},
        )
    merged = {**payload.model_dump(), **corrections}
    return validate_payload(merged)
