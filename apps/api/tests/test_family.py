import asyncio

import pytest

from familyscope.errors import Forbidden, NotFound, Unauthenticated, ValidationFailed
from familyscope.family import FamilyService
from familyscope.journeys import JourneyService
from familyscope.store import MemoryDocumentStore

from family_helpers import (
    PARENT_A,
    PARENT_B,
    TEST_CONFIG,
    FixedClock,
    InterleavingStore,
    child_payload,
    no_sleep,
    seed_journey,
)


def _service(store):
    return FamilyService(store, clock=FixedClock(), config=TEST_CONFIG)


def test_add_child_scopes_to_caller_family():
    store = MemoryDocumentStore()
    payload = child_payload(name="  Ava ", medications="  ", allergies=" peanuts ")

    child = asyncio.run(_service(store).add_child(PARENT_A, payload))

    assert child.family_id == "family_parent-a"
    assert child.name == "Ava"
    assert child.medications is None
    assert child.allergies == "peanuts"
    stored = asyncio.run(store.get("children", child.id))
    assert "medications" not in stored
    assert stored["createdAt"] == stored["updatedAt"]


@pytest.mark.parametrize("age", [-5, 30])
def test_add_child_rejects_age_out_of_range(age):
    store = MemoryDocumentStore()

    with pytest.raises(ValidationFailed) as exc:
        asyncio.run(_service(store).add_child(PARENT_A, child_payload(age=age)))

    assert exc.value.field == "age"
    assert asyncio.run(store.query("children", {})) == []


@pytest.mark.parametrize("age", [True, 8.0, "8"])
def test_add_child_requires_a_real_integer_age(age):
    store = MemoryDocumentStore()

    with pytest.raises(ValidationFailed) as exc:
        asyncio.run(_service(store).add_child(PARENT_A, child_payload(age=age)))

    assert exc.value.field == "age"
    assert asyncio.run(store.query("children", {})) == []


def test_add_child_requires_principal():
    with pytest.raises(Unauthenticated):
        asyncio.run(_service(MemoryDocumentStore()).add_child(None, child_payload()))


def test_create_child_document_for_other_family_is_forbidden():
    store = MemoryDocumentStore()
    document = {**child_payload(), "familyId": "family_parent-b"}

    with pytest.raises(Forbidden):
        asyncio.run(_service(store).create_child_document(PARENT_A, document))
    assert asyncio.run(store.query("children", {})) == []


def test_list_children_only_returns_own_family():
    store = MemoryDocumentStore()
    service = _service(store)
    asyncio.run(service.add_child(PARENT_A, child_payload(name="Ava")))
    asyncio.run(service.add_child(PARENT_A, child_payload(name="Ben")))
    asyncio.run(service.add_child(PARENT_B, child_payload(name="Cal")))

    names = [child.name for child in asyncio.run(service.list_children(PARENT_A))]

    assert names == ["Ava", "Ben"]


def test_foreign_and_missing_children_are_indistinguishable():
    store = MemoryDocumentStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))

    with pytest.raises(Forbidden) as foreign:
        asyncio.run(service.get_child(PARENT_B, child.id))
    with pytest.raises(NotFound) as missing:
        asyncio.run(service.get_child(PARENT_B, "no-such-child"))

    assert foreign.value.status_code == missing.value.status_code == 404
    assert foreign.value.detail() == missing.value.detail()


def test_update_child_merges_and_bumps_updated_at():
    store = MemoryDocumentStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload(allergies="dust")))

    updated = asyncio.run(service.update_child(PARENT_A, child.id, {"age": 9, "allergies": ""}))

    assert updated.age == 9
    assert updated.name == "Ava"
    assert updated.allergies is None
    assert updated.updated_at > child.updated_at
    assert updated.created_at == child.created_at


def test_update_child_validates_merged_document():
    store = MemoryDocumentStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))

    with pytest.raises(ValidationFailed):
        asyncio.run(service.update_child(PARENT_A, child.id, {"age": 30}))
    assert asyncio.run(store.get("children", child.id))["age"] == 8


def test_update_child_does_not_resurrect_a_deleted_child():
    store = InterleavingStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))
    store.before_next_commit = lambda: service.delete_child(PARENT_A, child.id)

    with pytest.raises(NotFound):
        asyncio.run(service.update_child(PARENT_A, child.id, {"age": 9}))

    assert asyncio.run(store.get("children", child.id)) is None


def test_interleaved_child_updates_both_land():
    store = InterleavingStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))
    store.before_next_commit = lambda: service.update_child(PARENT_A, child.id, {"name": "Bea"})

    updated = asyncio.run(service.update_child(PARENT_A, child.id, {"age": 9}))

    assert (updated.name, updated.age) == ("Bea", 9)
    stored = asyncio.run(store.get("children", child.id))
    assert (stored["name"], stored["age"]) == ("Bea", 9)


def test_update_child_cannot_change_family():
    store = MemoryDocumentStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))

    with pytest.raises(Forbidden):
        asyncio.run(service.update_child(PARENT_A, child.id, {"familyId": "family_parent-b"}))
    with pytest.raises(Forbidden):
        asyncio.run(service.update_child(PARENT_B, child.id, {"name": "Mine now"}))


def test_deleted_child_leaves_journeys_unreachable():
    store = MemoryDocumentStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))
    seed_journey(store, child.id)

    asyncio.run(service.delete_child(PARENT_A, child.id))

    journeys = JourneyService(store, clock=FixedClock(), config=TEST_CONFIG, sleep=no_sleep)
    with pytest.raises(NotFound):
        asyncio.run(journeys.get_journeys(PARENT_A, child.id))
    with pytest.raises(NotFound):
        asyncio.run(service.get_child(PARENT_A, child.id))


def test_delete_child_of_other_family_is_forbidden():
    store = MemoryDocumentStore()
    service = _service(store)
    child = asyncio.run(service.add_child(PARENT_A, child_payload()))

    with pytest.raises(Forbidden):
        asyncio.run(service.delete_child(PARENT_B, child.id))
    assert asyncio.run(store.get("children", child.id)) is not None


def test_delete_all_children_only_touches_own_family():
    store = MemoryDocumentStore()
    service = _service(store)
    asyncio.run(service.add_child(PARENT_A, child_payload(name="Ava")))
    asyncio.run(service.add_child(PARENT_A, child_payload(name="Ben")))
    asyncio.run(service.add_child(PARENT_B, child_payload(name="Cal")))

    deleted = asyncio.run(service.delete_all_children(PARENT_A))

    assert deleted == 2
    assert asyncio.run(service.list_children(PARENT_A)) == []
    assert [child.name for child in asyncio.run(service.list_children(PARENT_B))] == ["Cal"]


def test_register_user_is_self_only_and_keeps_created_at():
    store = MemoryDocumentStore()
    service = _service(store)
    payload = {"email": "a@example.com", "firstName": "Alex", "lastName": "Parent"}

    first = asyncio.run(service.register_user(PARENT_A, "parent-a", payload))
    again = asyncio.run(service.register_user(PARENT_A, "parent-a", {**payload, "firstName": "Alexis"}))

    assert again.first_name == "Alexis"
    assert again.created_at == first.created_at
    assert asyncio.run(service.get_user(PARENT_A, "parent-a")).email == "a@example.com"
    with pytest.raises(Forbidden):
        asyncio.run(service.register_user(PARENT_B, "parent-a", payload))
    with pytest.raises(Forbidden):
        asyncio.run(service.get_user(PARENT_B, "parent-a"))
