# tests/test_api.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from factories import review_create
from quotememory.api_server import create_app

ACTOR = {"X-Actor-Id": "user-42"}


@pytest.fixture
def api(services):
    return TestClient(create_app(services=services))


def enqueue(api, **kwargs):
    body = review_create(**kwargs).model_dump(mode="json")
    r = api.post("/review-queue", json=body, headers=ACTOR)
    assert r.status_code == 201
    return r.json()


def test_health_needs_no_identity(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert "X-Request-ID" in r.headers


def test_missing_actor_is_401(api):
    assert api.get("/review-queue").status_code == 401
    assert api.post("/quotes", json={}).status_code == 401
    assert api.get("/price-history/latest/anything").status_code == 401


def test_review_listing_envelope(api):
    enqueue(api, source_message_id="m1", confidence=0.5)
    enqueue(api, source_message_id="m2", confidence=0.97)

    r = api.get("/review-queue", headers=ACTOR)
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    flags = {row["confidence"]: row["low_confidence"] for row in body["data"]}
    assert flags == {0.5: True, 0.97: False}
    assert all(row["item_count"] == 2 for row in body["data"])


def test_review_listing_rejects_unknown_status(api):
    r = api.get("/review-queue?status=archived", headers=ACTOR)
    assert r.status_code == 422
    assert r.json()["error"] == "VALIDATION_ERROR"


def test_approve_then_approve_again_conflicts(api):
    item = enqueue(api)

    r = api.post(f"/review-queue/{item['id']}/approve", headers=ACTOR)
    assert r.status_code == 200
    assert r.json()["status"] == "approved"
    assert r.json()["decided_by"] == "user-42"
    assert r.json()["price_records_created"] == 2

    r = api.post(f"/review-queue/{item['id']}/approve", headers=ACTOR)
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "INVALID_STATE_TRANSITION"
    assert body["details"]["current_status"] == "approved"


def test_reject_without_body(api):
    item = enqueue(api)
    r = api.post(f"/review-queue/{item['id']}/reject", headers=ACTOR)
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"

    r = api.get(f"/review-queue/{item['id']}", headers=ACTOR)
    assert r.json()["status"] == "rejected"


def test_correct_with_unknown_field_is_422(api):
    item = enqueue(api)
    r = api.post(f"/review-queue/{item['id']}/correct", json={"corrections": {"totl": 1}}, headers=ACTOR)
    assert r.status_code == 422
    assert "totl" in r.json()["details"]["fields"]


def test_unknown_review_item_is_404(api):
    r = api.post("/review-queue/does-not-exist/approve", headers=ACTOR)
    assert r.status_code == 404
    assert r.json()["details"] == {"entity": "review_item", "entity_id": "does-not-exist"}


def test_review_stats(api):
    item = enqueue(api, source_message_id="m1")
    enqueue(api, source_message_id="m2")
    api.post(f"/review-queue/{item['id']}/approve", headers=ACTOR)

    stats = api.get("/review-queue/stats", headers=ACTOR).json()
    assert stats["total_items"] == 2
    assert stats["pending"] == 1
    assert stats["approved"] == 1


def test_quote_flow_feeds_price_history(api, make_material, make_client):
    angle = make_material("MS Angle 50x50x5")
    buyer = make_client("Shree Ganesh Steel")

    r = api.post(
        "/quotes",
        json={
            "clientId": buyer.id,
            "items": [{"materialId": angle.id, "quantity": 10, "ratePerUnit": 100.0, "exWorks": 50.0}],
            "totalAmount": 1.0,
        },
        headers=ACTOR,
    )
    assert r.status_code == 201
    quote = r.json()
    assert quote["total_amount"] == 1050.0
    assert quote["created_by"] == "user-42"

    latest = api.get(f"/price-history/latest/{angle.id}?clientId={buyer.id}", headers=ACTOR).json()
    assert latest["record"]["rate_per_unit"] == 100.0
    assert latest["record"]["quote_id"] == quote["id"]
    assert latest["client_name"] == "Shree Ganesh Steel"

    markdown = api.get(f"/quotes/{quote['id']}/markdown", headers=ACTOR).json()["markdown"]
    assert "₹1,050.00" in markdown


def test_quote_with_bad_lines_reports_indices(api, make_material, make_client):
    angle = make_material("MS Angle 50x50x5")
    buyer = make_client("Shree Ganesh Steel")

    r = api.post(
        "/quotes",
        json={
            "client_id": buyer.id,
            "items": [
                {"material_id": angle.id, "quantity": 1, "rate_per_unit": 10.0},
                {"material_id": angle.id, "quantity": -1, "rate_per_unit": 10.0},
                {"material_id": "ghost", "quantity": 1, "rate_per_unit": 10.0},
            ],
        },
        headers=ACTOR,
    )
    assert r.status_code == 422
    assert r.json()["details"]["line_indices"] == [1, 2]


@pytest.mark.parametrize("literal", ["NaN", "Infinity"])
def test_quote_with_non_finite_number_is_422(api, make_material, make_client, literal):
    angle = make_material("MS Angle 50x50x5")
    buyer = make_client("Shree Ganesh Steel")
    body = (
        f'{{"client_id": "{buyer.id}", "items": '
        f'[{{"material_id": "{angle.id}", "quantity": {literal}, "rate_per_unit": 10.0}}]}}'
    )

    r = api.post("/quotes", content=body, headers={**ACTOR, "Content-Type": "application/json"})

    assert r.status_code == 422
    assert r.json()["details"]["line_indices"] == [0]
    assert api.get("/quotes", headers=ACTOR).json() == []


def test_manual_price_with_infinite_rate_is_422(api, make_material):
    angle = make_material("MS Angle 50x50x5")
    body = f'{{"material_id": "{angle.id}", "rate_per_unit": Infinity}}'

    r = api.post("/price-history", content=body, headers={**ACTOR, "Content-Type": "application/json"})

    assert r.status_code == 422
    assert "body.rate_per_unit" in r.json()["details"]["fields"]
    assert api.get(f"/price-history/material/{angle.id}", headers=ACTOR).json() == []


def test_price_history_endpoints(api, make_material, make_client):
    angle = make_material("MS Angle 50x50x5")
    buyer = make_client("Shree Ganesh Steel")

    assert api.get(f"/price-history/latest/{angle.id}", headers=ACTOR).json() == {}
    assert api.get("/price-history/material/ghost", headers=ACTOR).status_code == 404

    r = api.post(
        "/price-history",
        json={"material_id": angle.id, "client_id": buyer.id, "rate_per_unit": 101.5, "source": "master"},
        headers=ACTOR,
    )
    assert r.status_code == 201
    assert r.json()["source"] == "master"

    history = api.get(f"/price-history/material/{angle.id}", headers=ACTOR).json()
    assert [h["record"]["rate_per_unit"] for h in history] == [101.5]

    resolution = api.get(f"/price-history/resolve/{angle.id}?clientId={buyer.id}", headers=ACTOR).json()
    assert resolution["suggestion"]["client_specific"] is True

    assert api.get(f"/price-history/material/{angle.id}?limit=1000", headers=ACTOR).status_code == 422
