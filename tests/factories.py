# tests/factories.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from quotememory.schemas.review import ReviewItemCreate

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def review_payload(
    client: str | None = "Acme Steel Traders",
    lines: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    if lines is None:
        lines = [
            {"material": "MS Angle 50x50x5", "quantity": 10, "rate_per_unit": 100.0, "ex_works": "Ex-Mumbai"},
            {"material": "MS Channel 100x50", "quantity": 5, "rate_per_unit": 200.0},
        ]
    payload: dict[str, Any] = {"items": lines}
    if client is not None:
        payload["client"] = {"name": client, "email": "buy@acmesteel.in"}
    return payload


def review_create(
    source_message_id: str = "msg-001",
    confidence: float = 0.95,
    payload: dict[str, Any] | None = None,
    subject: str = "Re: Quotation for MS sections",
    sender_address: str = "buy@acmesteel.in",
    received_at: datetime = T0,
) -> ReviewItemCreate:
    return ReviewItemCreate(
        source_message_id=source_message_id,
        thread_id=f"thread-{source_message_id}",
        subject=subject,
        sender_address=sender_address,
        received_at=received_at,
        extraction_method="html_table",
        confidence=confidence,
        payload=payload if payload is not None else review_payload(),
    )
