"""
Typed exceptions for the review queue, price resolution and quoting.

Every error carries a machine-readable ``code``, the HTTP status the API
layer should answer with, and structured details, so callers catch by
type and never parse messages:

    QuoteMemoryError
    +-- ValidationError          422  caller data malformed, fix and resend
    +-- InvalidStateTransition   409  review item no longer pending
    +-- NotFound                 404  unknown id
    +-- StoreUnavailable         503  transient store fault, retryable

``StoreUnavailable.outcome_unknown`` is set when a write was sent but no
answer came back. The write may or may not have been applied, so the
caller must re-read the current state before trying again.
"""

from __future__ import annotations

from typing import Any, Iterable


class QuoteMemoryError(Exception):
    """Base class for all domain errors."""

    code: str = "QUOTE_MEMORY_ERROR"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(QuoteMemoryError):
    """Caller-supplied data failed shape or value checks."""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str,
        fields: dict[str, str] | None = None,
        line_indices: Iterable[int] | None = None,
    ) -> None:
        super().__init__(message)
        self.fields = dict(fields or {})
        self.line_indices = sorted(set(line_indices or ()))

    @property
    def details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"fields": self.fields}
        if self.line_indices:
            details["line_indices"] = self.line_indices
        return details


class InvalidStateTransition(QuoteMemoryError):
    """A review item was not in the state the transition requires."""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, item_id: str, current_status: str, attempted_status: str) -> None:
        super().__init__(
            f"Review item {item_id} is {current_status}; cannot move to {attempted_status}"
        )
        self.item_id = item_id
        self.current_status = current_status
        self.attempted_status = attempted_status

    @property
    def details(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "current_status": self.current_status,
            "attempted_status": self.attempted_status,
        }


class NotFound(QuoteMemoryError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    @property
    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


class StoreUnavailable(QuoteMemoryError):
    """The backing store timed out or failed; safe to retry reads."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, operation: str, reason: str, outcome_unknown: bool = False) -> None:
        super().__init__(f"Store unavailable during {operation}: {reason}")
        self.operation = operation
        self.reason = reason
        self.outcome_unknown = outcome_unknown

    @property
    def details(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "retryable": self.retryable,
            "outcome_unknown": self.outcome_unknown,
        }
