import pytest

from familyscope.config import AppConfig
from familyscope.errors import ValidationFailed
from familyscope.schemas import CreateChildPayload, CreateSkillForm, UpdateChildPayload
from familyscope.validation import parse_form, require_valid, validate


def _child(**overrides):
    doc = {
        "name": "Ava",
        "age": 8,
        "diagnosis": "ADHD",
        "familyId": "family_parent-a",
        "strengths": [],
        "challenges": ["loud rooms"],
    }
    doc.update(overrides)
    return doc


def _journey(**skill_overrides):
    skill = {
        "id": "skill_1",
        "name": "Tying shoes",
        "category": "self-care",
        "difficulty": "beginner",
        "estimatedDays": 14,
    }
    skill.update(skill_overrides)
    return {
        "childId": "child-1",
        "skillData": skill,
        "progress": {"adventureCount": 0, "lastUpdated": "2025-01-01T00:00:00+00:00"},
    }


@pytest.mark.parametrize("age, ok", [(-5, False), (0, False), (1, True), (8, True), (25, True), (30, False)])
def test_child_age_bounds(age, ok):
    result = validate("children", _child(age=age))
    assert result.ok is ok
    if not ok:
        assert set(result.errors) == {"age"}


def test_child_age_bounds_follow_config():
    config = AppConfig(min_child_age=3, max_child_age=10)
    assert not validate("children", _child(age=2), config=config).ok
    assert validate("children", _child(age=3), config=config).ok
    assert not validate("children", _child(age=11), config=config).ok


def test_child_age_must_be_an_integer():
    assert validate("children", _child(age="8")).errors == {"age": "must be an integer"}
    assert validate("children", _child(age=True)).errors == {"age": "must be an integer"}


def test_child_requires_fields_and_string_lists():
    doc = _child(strengths=["ok", 3])
    del doc["diagnosis"]
    errors = validate("children", doc).errors
    assert set(errors) == {"diagnosis", "strengths"}


def test_child_blank_name_rejected():
    assert "name" in validate("children", _child(name="   ")).errors


@pytest.mark.parametrize("win_type", ["tried-best", "no-frustration", "laughed-about-it", "made-progress", "kept-going", "custom"])
def test_adventure_known_win_types(win_type):
    doc = {"childId": "c1", "skillId": "s1", "text": "Did it", "winType": win_type}
    assert validate("adventures", doc).ok


def test_adventure_unknown_win_type():
    doc = {"childId": "c1", "skillId": "s1", "text": "Did it", "winType": "total-failure"}
    with pytest.raises(ValidationFailed) as exc:
        require_valid("adventures", doc)
    assert exc.value.field == "winType"
    assert exc.value.status_code == 422


def test_journey_nested_rules():
    assert validate("journeys", _journey()).ok
    assert set(validate("journeys", _journey(estimatedDays=0)).errors) == {"skillData.estimatedDays"}
    assert set(validate("journeys", _journey(category="cooking")).errors) == {"skillData.category"}
    missing = _journey()
    del missing["skillData"]["name"]
    assert set(validate("journeys", missing).errors) == {"skillData.name"}


def test_event_end_before_start():
    doc = {
        "familyId": "family_a",
        "createdBy": "a",
        "title": "Dentist",
        "category": "Medical",
        "startTime": "2025-03-01T10:00:00Z",
        "endTime": "2025-03-01T09:00:00Z",
    }
    assert validate("events", doc).errors == {"endTime": "must not be earlier than startTime"}
    assert validate("events", {**doc, "endTime": "2025-03-01T10:00:00Z"}).ok


def test_event_timestamps_must_parse():
    doc = {
        "familyId": "family_a",
        "createdBy": "a",
        "title": "Dentist",
        "category": "Medical",
        "startTime": "next tuesday",
        "endTime": "2025-03-01T09:00:00Z",
    }
    assert set(validate("events", doc).errors) == {"startTime"}


def test_user_uid_must_match_key():
    doc = {"uid": "u1", "email": "u@example.com", "firstName": "U", "lastName": "One", "createdAt": "2025-01-01T00:00:00Z"}
    assert validate("users", doc, key="u1").ok
    assert set(validate("users", doc, key="u2").errors) == {"uid"}


def test_unknown_collection_and_non_object_payload():
    assert set(validate("pets", {}).errors) == {"collection"}
    assert set(validate("children", ["not", "a", "dict"]).errors) == {"payload"}


def test_parse_form_reports_field_paths():
    with pytest.raises(ValidationFailed) as exc:
        parse_form(CreateSkillForm, {"name": "Reading", "category": "academic", "difficulty": "expert", "estimatedDays": 0})
    assert set(exc.value.errors) == {"difficulty", "estimatedDays"}


@pytest.mark.parametrize("days", [True, 14.0])
def test_skill_form_needs_whole_number_of_days(days):
    with pytest.raises(ValidationFailed) as exc:
        parse_form(CreateSkillForm, {"name": "Reading", "category": "academic", "difficulty": "beginner", "estimatedDays": days})
    assert set(exc.value.errors) == {"estimatedDays"}


@pytest.mark.parametrize("form", [CreateChildPayload, UpdateChildPayload])
def test_child_forms_do_not_coerce_age(form):
    with pytest.raises(ValidationFailed) as exc:
        parse_form(form, {"name": "Ava", "age": True, "diagnosis": "ADHD"})
    assert set(exc.value.errors) == {"age"}
    assert parse_form(form, {"name": "Ava", "age": 8, "diagnosis": "ADHD"}).age == 8


def test_config_rejects_inverted_age_bounds():
    with pytest.raises(ValueError):
        AppConfig(min_child_age=10, max_child_age=5)
