# tests/test_supabase_store.py
from __future__ import annotations

import asyncio
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from factories import T0, review_payload
from quotememory.errors import StoreUnavailable, ValidationError
from quotememory.schemas.price_history import PriceHistoryCreate
from quotememory.schemas.reference import Material, MaterialCreate, ReferenceSource
from quotememory.schemas.review import ReviewItem, ReviewStatus
from quotememory.stores.base import ReferenceWrites, Transition
from quotememory.stores.supabase_backend import (
    DuplicateRow,
    SupabaseMaterialStore,
    SupabasePriceHistoryStore,
    SupabaseReviewItemStore,
)

QUERY_METHODS = ("select", "insert", "update", "upsert", "eq", "in_", "ilike", "or_", "order", "limit")


def fake_client(rows=None, execute=None):
    """A Supabase client double whose query builder chains back to itself."""
    query = MagicMock(name="query")
    for method in QUERY_METHODS:
        getattr(query, method).return_value = query
    if execute is not None:
        query.execute.side_effect = execute
    else:
        query.execute.return_value = SimpleNamespace(data=rows or [])

    client = MagicMock(name="client")
    client.table.return_value = query
    client.rpc.return_value = query
    return client, query


def review_row(status="pending"):
    return {
        "id": "item-1",
        "source_message_id": "msg-001",
        "thread_id": "thread-1",
        "subject": "Quotation",
        "sender_address": "buy@acmesteel.in",
        "received_at": T0.isoformat(),
        "extraction_method": "html_table",
        "confidence": 0.93,
        "payload": review_payload(),
        "status": status,
        "created_at": T0.isoformat(),
        "decided_at": None if status == "pending" else T0.isoformat(),
        "decided_by": None if status == "pending" else "alice",
        "corrections": None,
        "rejection_reason": None,
    }


def approval():
    return Transition(status=ReviewStatus.APPROVED, decided_by="alice", decided_at=T0)


def test_transition_calls_commit_function_with_expected_status():
    client, _ = fake_client(rows=[review_row("approved")])
    store = SupabaseReviewItemStore(client, timeout=1.0)
    record = PriceHistoryCreate(material_id="m-1", rate_per_unit=100.0, quoted_at=T0)

    updated = asyncio.run(store.transition("item-1", ReviewStatus.PENDING, approval(), [record]))

    assert updated.status is ReviewStatus.APPROVED
    name, params = client.rpc.call_args.args
    assert name == "commit_review_decision"
    assert params["p_item_id"] == "item-1"
    assert params["p_expected_status"] == "pending"
    assert params["p_status"] == "approved"
    assert params["p_price_records"][0]["material_id"] == "m-1"


def test_transition_sends_reference_writes_in_the_same_call():
    client, _ = fake_client(rows=[review_row("approved")])
    store = SupabaseReviewItemStore(client, timeout=1.0)
    coil = Material(
        id="m-new", name="HR Coil 2mm", source=ReferenceSource.GMAIL, normalized_name="hr coil 2mm", created_at=T0
    )
    reference = ReferenceWrites(materials=(coil,), client_aliases=(("sgs pvt ltd", "c-1"),))

    asyncio.run(store.transition("item-1", ReviewStatus.PENDING, approval(), reference=reference))

    client.rpc.assert_called_once()
    _, params = client.rpc.call_args.args
    assert [m["id"] for m in params["p_materials"]] == ["m-new"]
    assert params["p_materials"][0]["normalized_name"] == "hr coil 2mm"
    assert params["p_clients"] == []
    assert params["p_client_aliases"] == [{"alias": "sgs pvt ltd", "client_id": "c-1"}]
    client.table.assert_not_called()


def test_transition_returns_none_when_condition_fails():
    client, _ = fake_client(rows=[])
    store = SupabaseReviewItemStore(client, timeout=1.0)
    assert asyncio.run(store.transition("item-1", ReviewStatus.PENDING, approval())) is None


def test_api_error_becomes_store_unavailable():
    def boom():
        raise APIError({"message": "relation does not exist", "code": "42P01"})

    client, _ = fake_client(execute=boom)
    store = SupabaseReviewItemStore(client, timeout=1.0)

    with pytest.raises(StoreUnavailable) as exc:
        asyncio.run(store.get("item-1"))
    assert exc.value.operation == "review_items.get"
    assert exc.value.outcome_unknown is False
    assert exc.value.status_code == 503


def test_unique_violation_on_create_returns_the_stored_material():
    row = {"id": "m-1", "name": "HR Coil 2mm", "source": "gmail", "normalized_name": "hr coil 2mm",
           "created_at": T0.isoformat()}
    client, _ = fake_client(
        execute=[APIError({"message": "duplicate key value", "code": "23505"}), SimpleNamespace(data=[row])]
    )
    store = SupabaseMaterialStore(client, timeout=1.0)

    material = asyncio.run(
        store.create(MaterialCreate(name="HR Coil 2mm", source=ReferenceSource.GMAIL), normalized_name="hr coil 2mm")
    )
    assert material.id == "m-1"


def test_unique_violation_on_enqueue_returns_the_stored_item():
    client, _ = fake_client(
        execute=[APIError({"message": "duplicate key value", "code": "23505"}), SimpleNamespace(data=[review_row()])]
    )
    store = SupabaseReviewItemStore(client, timeout=1.0)
    item = ReviewItem.model_validate({**review_row(), "id": "item-2"})

    stored = asyncio.run(store.insert(item))
    assert stored.id == "item-1"


def test_unique_violation_without_a_stored_row_is_a_validation_error():
    client, _ = fake_client(
        execute=[APIError({"message": "duplicate key value", "code": "23505"}), SimpleNamespace(data=[])]
    )
    store = SupabaseMaterialStore(client, timeout=1.0)

    with pytest.raises(DuplicateRow) as exc:
        asyncio.run(store.create(MaterialCreate(name="HR Coil 2mm"), normalized_name="hr coil 2mm"))
    assert exc.value.status_code == 422


def test_foreign_key_violation_is_not_a_store_fault():
    def refuse():
        raise APIError({"message": "violates foreign key constraint", "code": "23503"})

    client, _ = fake_client(execute=refuse)
    store = SupabasePriceHistoryStore(client, timeout=1.0)
    record = PriceHistoryCreate(material_id="m-gone", rate_per_unit=100.0, quoted_at=T0)

    with pytest.raises(ValidationError) as exc:
        asyncio.run(store.append([record]))
    assert not isinstance(exc.value, StoreUnavailable)
    assert exc.value.status_code == 422


def test_timeout_on_write_marks_outcome_unknown():
    def slow():
        time.sleep(0.3)
        return SimpleNamespace(data=[])

    client, _ = fake_client(execute=slow)
    store = SupabaseReviewItemStore(client, timeout=0.05)

    with pytest.raises(StoreUnavailable) as exc:
        asyncio.run(store.transition("item-1", ReviewStatus.PENDING, approval()))
    assert exc.value.outcome_unknown is True
    assert exc.value.retryable is True


def test_transport_error_on_read_is_retryable():
    def down():
        raise httpx.ConnectError("connection refused")

    client, _ = fake_client(execute=down)
    store = SupabasePriceHistoryStore(client, timeout=1.0)

    with pytest.raises(StoreUnavailable) as exc:
        asyncio.run(store.for_material("m-1"))
    assert exc.value.outcome_unknown is False


def test_price_history_query_orders_by_time_then_id():
    client, query = fake_client(rows=[])
    store = SupabasePriceHistoryStore(client, timeout=1.0)

    asyncio.run(store.for_material("m-1", client_id="c-1", limit=5))

    client.table.assert_called_with("price_history")
    eq_calls = [c.args for c in query.eq.call_args_list]
    assert ("material_id", "m-1") in eq_calls
    assert ("client_id", "c-1") in eq_calls
    assert [c.args for c in query.order.call_args_list] == [("quoted_at",), ("id",)]
    assert all(c.kwargs == {"desc": True} for c in query.order.call_args_list)
    query.limit.assert_called_with(5)


def test_search_term_is_stripped_of_filter_syntax():
    client, query = fake_client(rows=[])
    store = SupabaseReviewItemStore(client, timeout=1.0)

    asyncio.run(store.list(status=ReviewStatus.PENDING, search="acme,(steel)*"))

    query.or_.assert_called_once_with("subject.ilike.*acmesteel*,sender_address.ilike.*acmesteel*")


def test_master_material_preferred_on_name_match():
    rows = [
        {"id": "g", "name": "Binding Wire", "source": "gmail", "normalized_name": "binding wire",
         "created_at": T0.isoformat()},
        {"id": "m", "name": "Binding Wire", "source": "master", "normalized_name": "binding wire",
         "created_at": T0.isoformat()},
    ]
    client, _ = fake_client(rows=rows)
    store = SupabaseMaterialStore(client, timeout=1.0)

    assert asyncio.run(store.find_by_normalized_name("binding wire")).id == "m"
