import asyncio

import pytest

from familyscope.errors import Forbidden, NotFound, Unauthenticated, ValidationFailed
from familyscope.policy import (
    COLLECTION_POLICIES,
    DenyReason,
    Operation,
    OwnershipGuard,
    Scope,
    decide,
    decide_query,
    policy_for,
)
from familyscope.principal import Principal
from familyscope.store import MemoryDocumentStore

from family_helpers import PARENT_A, PARENT_B, TEST_CONFIG, seed_child, seed_journey

FAMILIES = {"parent-a": "family_parent-a", "parent-b": "family_parent-b"}


def _child(family_id="family_parent-a", **overrides):
    doc = {
        "id": "child-1",
        "name": "Ava",
        "age": 8,
        "diagnosis": "ADHD",
        "familyId": family_id,
        "strengths": [],
        "challenges": [],
        "createdAt": "2025-01-01T00:00:00+00:00",
        "updatedAt": "2025-01-01T00:00:00+00:00",
    }
    doc.update(overrides)
    return doc


def _journey(child_id="child-1"):
    return {
        "id": f"{child_id}__skill_1",
        "childId": child_id,
        "skillData": {
            "id": "skill_1",
            "name": "Tying shoes",
            "category": "self-care",
            "difficulty": "beginner",
            "estimatedDays": 14,
        },
        "progress": {"adventureCount": 0, "lastUpdated": "2025-01-01T00:00:00+00:00"},
    }


def _adventure(child_id="child-1"):
    return {"childId": child_id, "skillId": "skill_1", "text": "Tried!", "winType": "tried-best"}


@pytest.mark.parametrize("caller", ["parent-a", "parent-b"])
@pytest.mark.parametrize("owner", ["parent-a", "parent-b"])
@pytest.mark.parametrize("operation", [Operation.READ, Operation.UPDATE, Operation.DELETE])
def test_child_access_iff_family_matches(caller, owner, operation):
    existing = _child(FAMILIES[owner])
    payload = _child(FAMILIES[owner], name="Ava B") if operation is Operation.UPDATE else None

    decision = decide(
        Principal(uid=caller), operation, "children", key="child-1", existing=existing, payload=payload
    )

    assert decision.allowed is (caller == owner)
    if caller != owner:
        assert decision.reason is DenyReason.FORBIDDEN


@pytest.mark.parametrize("collection, document", [("journeys", _journey()), ("ai_stories", {"childId": "child-1", "title": "t", "content": "c"})])
def test_transitive_access_follows_owning_child(collection, document):
    owner = _child("family_parent-a")

    mine = decide(PARENT_A, Operation.READ, collection, existing=document, owner=owner)
    theirs = decide(PARENT_B, Operation.READ, collection, existing=document, owner=owner)
    orphan = decide(PARENT_A, Operation.READ, collection, existing=document, owner=None)

    assert mine.allowed
    assert theirs.reason is DenyReason.FORBIDDEN
    assert orphan.reason is DenyReason.NOT_FOUND


def test_adventure_create_for_foreign_child_is_forbidden():
    owner = _child("family_parent-a")
    assert decide(PARENT_A, Operation.CREATE, "adventures", payload=_adventure(), owner=owner).allowed
    decision = decide(PARENT_B, Operation.CREATE, "adventures", payload=_adventure(), owner=owner)
    assert decision.reason is DenyReason.FORBIDDEN


@pytest.mark.parametrize("operation", [Operation.UPDATE, Operation.DELETE])
def test_adventures_are_append_only(operation):
    existing = {**_adventure(), "id": "adv-1"}
    decision = decide(
        PARENT_A,
        operation,
        "adventures",
        key="adv-1",
        existing=existing,
        payload={**existing, "text": "edited"} if operation is Operation.UPDATE else None,
        owner=_child("family_parent-a"),
    )
    assert decision.reason is DenyReason.FORBIDDEN


@pytest.mark.parametrize("collection", sorted(COLLECTION_POLICIES))
@pytest.mark.parametrize("operation", list(Operation))
def test_unauthenticated_everywhere(collection, operation):
    decision = decide(None, operation, collection, key="parent-a", existing={"uid": "parent-a"}, payload={})
    assert decision.reason is DenyReason.UNAUTHENTICATED
    assert isinstance(decision.as_error(collection), Unauthenticated)


def test_moving_child_to_another_family_is_forbidden():
    existing = _child("family_parent-a")
    payload = _child("family_parent-b")
    decision = decide(PARENT_A, Operation.UPDATE, "children", key="child-1", existing=existing, payload=payload)
    assert decision.reason is DenyReason.FORBIDDEN


def test_reparenting_a_journey_is_forbidden():
    existing = _journey("child-1")
    payload = {**existing, "childId": "child-2"}
    decision = decide(
        PARENT_A, Operation.UPDATE, "journeys", existing=existing, payload=payload, owner=_child("family_parent-a")
    )
    assert decision.reason is DenyReason.FORBIDDEN


def test_create_child_with_foreign_family_is_forbidden():
    decision = decide(PARENT_A, Operation.CREATE, "children", payload=_child("family_parent-b"))
    assert decision.reason is DenyReason.FORBIDDEN


def test_create_child_with_invalid_age_is_invalid():
    decision = decide(PARENT_A, Operation.CREATE, "children", payload=_child(age=-5), config=TEST_CONFIG)
    assert decision.reason is DenyReason.INVALID
    error = decision.as_error("children")
    assert isinstance(error, ValidationFailed)
    assert error.field == "age"


def test_missing_record_is_not_found():
    decision = decide(PARENT_A, Operation.READ, "children", key="nope", existing=None)
    assert decision.reason is DenyReason.NOT_FOUND


def test_user_documents_are_self_scoped():
    profile = {
        "uid": "parent-a",
        "email": "a@example.com",
        "firstName": "A",
        "lastName": "Parent",
        "createdAt": "2025-01-01T00:00:00+00:00",
    }
    assert decide(PARENT_A, Operation.CREATE, "users", key="parent-a", payload=profile).allowed
    assert decide(PARENT_A, Operation.READ, "users", key="parent-a", existing=profile).allowed
    assert decide(PARENT_B, Operation.READ, "users", key="parent-a", existing=profile).reason is DenyReason.FORBIDDEN
    assert decide(PARENT_A, Operation.DELETE, "users", key="parent-a", existing=profile).reason is DenyReason.FORBIDDEN
    hijack = {**profile, "uid": "parent-b"}
    assert decide(PARENT_A, Operation.CREATE, "users", key="parent-a", payload=hijack).reason is DenyReason.FORBIDDEN


def test_query_must_be_confined_to_caller_family():
    assert decide_query(PARENT_A, "children", {"familyId": "family_parent-a"}).allowed
    assert decide_query(PARENT_A, "children", {"familyId": "family_parent-b"}).reason is DenyReason.FORBIDDEN
    assert decide_query(PARENT_A, "events", {}).reason is DenyReason.FORBIDDEN
    owner = _child("family_parent-a")
    assert decide_query(PARENT_A, "journeys", {"childId": "child-1"}, owner=owner).allowed
    assert decide_query(PARENT_B, "journeys", {"childId": "child-1"}, owner=owner).reason is DenyReason.FORBIDDEN
    assert decide_query(PARENT_A, "journeys", {"childId": "child-1"}, owner=None).reason is DenyReason.NOT_FOUND


def test_policy_table_shape():
    assert policy_for("children").scope is Scope.DIRECT
    assert policy_for("adventures").append_only
    assert not policy_for("users").deletable
    with pytest.raises(ValueError):
        policy_for("pets")


def test_forbidden_and_not_found_look_the_same():
    assert Forbidden().status_code == NotFound().status_code == 404
    assert Forbidden().detail() == NotFound().detail()


def test_guard_resolves_owner_from_store():
    store = MemoryDocumentStore()
    child_id = seed_child(store)
    skill_id = seed_journey(store, child_id)
    guard = OwnershipGuard(store, TEST_CONFIG)

    journey = asyncio.run(guard.fetch(PARENT_A, "journeys", f"{child_id}__{skill_id}"))
    assert journey["childId"] == child_id

    with pytest.raises(Forbidden):
        asyncio.run(guard.fetch(PARENT_B, "journeys", f"{child_id}__{skill_id}"))
    with pytest.raises(NotFound):
        asyncio.run(guard.fetch(PARENT_A, "journeys", f"{child_id}__missing"))
    with pytest.raises(Unauthenticated):
        asyncio.run(guard.fetch(None, "journeys", f"{child_id}__{skill_id}"))
