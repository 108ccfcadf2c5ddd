# tests/test_logging_config.py
from __future__ import annotations

import structlog

from quotememory.errors import InvalidStateTransition
from quotememory.logging_config import _add_domain_error, _mask_secrets, bind_actor, bind_request


def test_domain_error_fields_are_flattened():
    exc = InvalidStateTransition("item-1", "approved", "rejected")
    event = _add_domain_error(None, "warning", {"event": "x", "exc_info": exc})
    assert event["error_code"] == "INVALID_STATE_TRANSITION"
    assert event["error_current_status"] == "approved"
    assert event["error_item_id"] == "item-1"


def test_other_exceptions_are_left_alone():
    event = _add_domain_error(None, "error", {"event": "x", "exc_info": ValueError("nope")})
    assert "error_code" not in event


def test_secrets_are_masked():
    event = _mask_secrets(None, "info", {"event": "x", "supabase_service_key": "eyJ...", "item_id": "a"})
    assert event["supabase_service_key"] == "***"
    assert event["item_id"] == "a"


def test_request_binding_replaces_previous_context():
    bind_request("trace-1")
    bind_actor("user-1")
    bind_request("trace-2")
    assert structlog.contextvars.get_contextvars() == {"trace_id": "trace-2"}
    structlog.contextvars.clear_contextvars()
