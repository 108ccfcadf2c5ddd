# tests/test_reference_data.py
from __future__ import annotations

import asyncio
import threading

import pytest

from factories import T0
from quotememory.errors import NotFound, ValidationError
from quotememory.schemas.extraction import ExtractedClient
from quotememory.schemas.reference import ReferenceSource
from quotememory.services.reference_data import best_match, normalize_name
from quotememory.stores.base import ReferenceWrites


def test_normalize_name():
    assert normalize_name("  Acme   Steel, Ltd. ") == "acme steel ltd"
    assert normalize_name("M.S. Angle (50x50x5)") == "ms angle 50x50x5"


def test_best_match_respects_threshold(make_material):
    angle = make_material("MS Angle 50x50x5")
    assert best_match("ms angle 50x50x6", [angle], 0.85)[0] == angle
    assert best_match("hr coil 2mm", [angle], 0.85)[0] is None


def test_material_exact_match_ignores_case_and_punctuation(services, make_material):
    angle = make_material("MS Angle 50x50x5")
    matched = asyncio.run(services.reference.match_material("ms angle, 50x50x5"))
    assert matched.id == angle.id


def test_material_fuzzy_match(services, make_material):
    angle = make_material("MS Angle 50x50x5")
    matched = asyncio.run(services.reference.match_material("MS Angle 50x50x6"))
    assert matched.id == angle.id


def test_unmatched_material_is_planned_not_written(services, stores, make_material):
    make_material("MS Angle 50x50x5")
    plan = services.reference.plan(ReferenceSource.GMAIL, T0)

    planned = asyncio.run(plan.material("HR Coil 2mm", hsn_code="7208"))

    assert planned.source is ReferenceSource.GMAIL
    assert planned.hsn_code == "7208"
    assert planned.normalized_name == "hr coil 2mm"
    assert plan.writes().materials == (planned,)
    assert len(asyncio.run(stores.materials.list_all())) == 1


def test_plan_reuses_a_record_planned_for_a_similar_name(services):
    plan = services.reference.plan(ReferenceSource.GMAIL, T0)

    first = asyncio.run(plan.material("HR Coil 2mm"))
    second = asyncio.run(plan.material("HR Coil 2 mm"))

    assert second.id == first.id
    assert len(plan.writes().materials) == 1


def test_master_record_wins_exact_match(services, make_material):
    make_material("Binding Wire", source=ReferenceSource.GMAIL)
    master = make_material("Binding Wire")
    matched = asyncio.run(services.reference.match_material("binding wire"))
    assert matched.id == master.id


def test_alias_beats_exact_name(services, db, make_material):
    learned = make_material("TMT Bar 12mm")
    make_material("TMT 12")
    with db.lock:
        db.apply_reference(ReferenceWrites(material_aliases=(("tmt 12", learned.id),)))

    matched = asyncio.run(services.reference.match_material("TMT 12"))
    assert matched.id == learned.id


def test_client_match_by_email(services, make_client):
    client = make_client("Kiran Infra Projects", email="Purchase@KiranInfra.com")
    matched = asyncio.run(
        services.reference.match_client(ExtractedClient(name="KIPL Purchase Dept", email="purchase@kiraninfra.com"))
    )
    assert matched.id == client.id


def test_planned_client_keeps_contact(services):
    plan = services.reference.plan(ReferenceSource.GMAIL, T0)
    planned = asyncio.run(plan.client(ExtractedClient(name="New Buyer", contact_person="R. Mehta")))
    assert planned.source is ReferenceSource.GMAIL
    assert planned.contact == "R. Mehta"
    assert planned.created_at == T0


def test_pinned_matches_become_aliases_only_in_the_plan(services, stores, make_client):
    client = make_client("Shree Ganesh Steel")
    materials, clients = asyncio.run(services.reference.check_matches({}, {"SGS Pvt. Ltd.": client.id}))
    plan = services.reference.plan(ReferenceSource.GMAIL, T0, pinned_clients=clients)

    assert materials == {}
    assert clients == {"sgs pvt ltd": client}
    assert asyncio.run(plan.client(ExtractedClient(name="SGS Pvt Ltd"))) == client
    assert plan.writes().client_aliases == (("sgs pvt ltd", client.id),)
    assert asyncio.run(stores.clients.find_alias("sgs pvt ltd")) is None


def test_check_matches_reports_every_unknown_id(services, make_material):
    angle = make_material("MS Angle 50x50x5")
    with pytest.raises(ValidationError) as exc:
        asyncio.run(
            services.reference.check_matches(
                {"A": "x", "B": "y", "MS Angle": angle.id},
                {"Acme": "nope"},
            )
        )
    assert set(exc.value.fields) == {"material_matches.A", "material_matches.B", "client_matches.Acme"}


def test_apply_reference_keeps_existing_record_with_same_name(db, make_material):
    existing = make_material("HR Coil 2mm")
    duplicate = existing.model_copy(update={"id": "provisional", "source": ReferenceSource.GMAIL})

    with db.lock:
        remap = db.apply_reference(
            ReferenceWrites(materials=(duplicate,), material_aliases=(("hr coil", "provisional"),))
        )

    assert remap == {"provisional": existing.id}
    assert set(db.materials) == {existing.id}
    assert db.material_aliases == {"hr coil": existing.id}


def test_lookups_raise_not_found(services):
    with pytest.raises(NotFound):
        asyncio.run(services.reference.get_material("nope"))
    with pytest.raises(NotFound):
        asyncio.run(services.reference.get_client("nope"))


@pytest.mark.parametrize(
    "read",
    [
        lambda stores: stores.review_items.get("item-1"),
        lambda stores: stores.quotes.get("quote-1"),
        lambda stores: stores.materials.get("m-1"),
        lambda stores: stores.materials.find_alias("ms angle"),
        lambda stores: stores.clients.get("c-1"),
        lambda stores: stores.clients.find_alias("acme"),
    ],
)
def test_reads_wait_while_a_writer_holds_the_lock(db, stores, read):
    results = []
    reader = threading.Thread(target=lambda: results.append(asyncio.run(read(stores))))

    with db.lock:
        reader.start()
        reader.join(timeout=0.1)
        assert reader.is_alive()
    reader.join(timeout=5)

    assert results == [None]
