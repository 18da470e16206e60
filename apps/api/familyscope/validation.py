"""Per-collection structural rules.

Validation is identity-blind: it only answers whether a payload is
well-formed for its collection. Who may write it is decided in ``policy``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import CONFIG, AppConfig
from .errors import ValidationFailed
from .schemas import Collection, Difficulty, SkillCategory, WinType
from .store import Document, get_field

_ABSENT = object()

Bounds = Tuple[Optional[int], Optional[int]]
Check = Callable[[Document], Dict[str, str]]
ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ValidationResult:
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class CollectionRules:
    required: Tuple[str, ...]
    strings: Tuple[str, ...] = ()
    optional_strings: Tuple[str, ...] = ()
    string_lists: Tuple[str, ...] = ()
    enums: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    integers: Mapping[str, Callable[[AppConfig], Bounds]] = field(default_factory=dict)
    timestamps: Tuple[str, ...] = ()
    key_field: Optional[str] = None
    checks: Tuple[Check, ...] = ()


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _end_not_before_start(document: Document) -> Dict[str, str]:
    start = parse_timestamp(document.get("startTime"))
    end = parse_timestamp(document.get("endTime"))
    if start and end and end < start:
        return {"endTime": "must not be earlier than startTime"}
    return {}


def _child_age_bounds(config: AppConfig) -> Bounds:
    return config.min_child_age, config.max_child_age


def _enum_values(enum_cls) -> FrozenSet[str]:
    return frozenset(member.value for member in enum_cls)


COLLECTION_RULES: Dict[str, CollectionRules] = {
    Collection.USERS.value: CollectionRules(
        required=("uid", "email", "firstName", "lastName", "createdAt"),
        strings=("uid", "email", "firstName", "lastName"),
        timestamps=("createdAt",),
        key_field="uid",
    ),
    Collection.CHILDREN.value: CollectionRules(
        required=("name", "age", "diagnosis", "familyId", "strengths", "challenges"),
        strings=("name", "diagnosis", "familyId"),
        optional_strings=("medications", "allergies"),
        string_lists=("strengths", "challenges"),
        integers={"age": _child_age_bounds},
    ),
    Collection.JOURNEYS.value: CollectionRules(
        required=(
            "childId",
            "skillData.id",
            "skillData.name",
            "skillData.category",
            "skillData.difficulty",
            "skillData.estimatedDays",
            "progress.adventureCount",
            "progress.lastUpdated",
        ),
        strings=("childId", "skillData.id", "skillData.name"),
        enums={
            "skillData.category": _enum_values(SkillCategory),
            "skillData.difficulty": _enum_values(Difficulty),
        },
        integers={
            "skillData.estimatedDays": lambda _: (1, None),
            "progress.adventureCount": lambda _: (0, None),
        },
        timestamps=("progress.lastUpdated",),
    ),
    Collection.ADVENTURES.value: CollectionRules(
        required=("childId", "skillId", "text", "winType"),
        strings=("childId", "skillId", "text"),
        optional_strings=("photoUrl",),
        enums={"winType": _enum_values(WinType)},
    ),
    Collection.EVENTS.value: CollectionRules(
        required=("familyId", "createdBy", "title", "startTime", "endTime", "category"),
        strings=("familyId", "createdBy", "title", "category"),
        timestamps=("startTime", "endTime"),
        checks=(_end_not_before_start,),
    ),
    Collection.AI_STORIES.value: CollectionRules(
        required=("childId", "title", "content"),
        strings=("childId", "title", "content"),
    ),
}


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate(
    collection: str,
    payload: Optional[Mapping[str, Any]],
    *,
    key: Optional[str] = None,
    config: Optional[AppConfig] = None,
) -> ValidationResult:
    """Check ``payload`` against the rules of ``collection``."""
    rules = COLLECTION_RULES.get(collection)
    if rules is None:
        return ValidationResult({"collection": f"unknown collection {collection!r}"})
    if not isinstance(payload, Mapping):
        return ValidationResult({"payload": "must be an object"})

    config = config or CONFIG
    document = dict(payload)
    errors: Dict[str, str] = {}

    for path in rules.required:
        if get_field(document, path, _ABSENT) in (_ABSENT, None):
            errors[path] = "is required"

    def present(path: str) -> bool:
        return path not in errors and get_field(document, path, _ABSENT) not in (_ABSENT, None)

    for path in rules.strings:
        if present(path):
            value = get_field(document, path)
            if not isinstance(value, str) or not value.strip():
                errors[path] = "must be a non-empty string"

    for path in rules.optional_strings:
        if present(path) and not isinstance(get_field(document, path), str):
            errors[path] = "must be a string"

    for path in rules.string_lists:
        if present(path):
            value = get_field(document, path)
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                errors[path] = "must be a list of strings"

    for path, allowed in rules.enums.items():
        if present(path) and get_field(document, path) not in allowed:
            errors[path] = f"must be one of {', '.join(sorted(allowed))}"

    for path, bounds in rules.integers.items():
        if not present(path):
            continue
        value = get_field(document, path)
        if not _is_integer(value):
            errors[path] = "must be an integer"
            continue
        low, high = bounds(config)
        if low is not None and value < low:
            errors[path] = f"must be at least {low}"
        elif high is not None and value > high:
            errors[path] = f"must be at most {high}"

    for path in rules.timestamps:
        if present(path) and parse_timestamp(get_field(document, path)) is None:
            errors[path] = "must be an ISO-8601 timestamp"

    if rules.key_field and key is not None and present(rules.key_field):
        if get_field(document, rules.key_field) != key:
            errors[rules.key_field] = "must equal the document key"

    if not errors:
        for check in rules.checks:
            errors.update(check(document))

    return ValidationResult(errors)


def require_valid(
    collection: str,
    payload: Optional[Mapping[str, Any]],
    *,
    key: Optional[str] = None,
    config: Optional[AppConfig] = None,
) -> None:
    result = validate(collection, payload, key=key, config=config)
    if not result.ok:
        raise ValidationFailed(result.errors, collection=collection)


def parse_form(model_cls: Type[ModelT], data: Any) -> ModelT:
    """Coerce ``data`` into ``model_cls``, reporting failures as ValidationFailed."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        errors = {
            ".".join(str(part) for part in error["loc"]) or "payload": error["msg"]
            for error in exc.errors()
        }
        raise ValidationFailed(errors) from exc
