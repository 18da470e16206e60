"""Family-scoped authorization.

``COLLECTION_POLICIES`` classifies every collection; ``decide`` is a pure
function over (principal, operation, collection, existing, payload, owner)
so the same table can back an API guard or be replicated into a store's
native rule language. ``OwnershipGuard`` adds the one store read the table
needs: resolving the owning Child of a child-scoped record.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .config import AppConfig
from .errors import FamilyScopeError, Forbidden, NotFound, Unauthenticated, ValidationFailed
from .principal import Principal, resolve_family_id
from .schemas import Collection
from .store import Document, DocumentStore
from .validation import validate

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Scope(str, Enum):
    DIRECT = "direct"
    TRANSITIVE = "transitive"
    SELF = "self"


class DenyReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


@dataclass(frozen=True)
class CollectionPolicy:
    scope: Scope
    link_field: Optional[str] = None
    append_only: bool = False
    deletable: bool = True


COLLECTION_POLICIES: Dict[str, CollectionPolicy] = {
    Collection.USERS.value: CollectionPolicy(Scope.SELF, link_field="uid", deletable=False),
    Collection.CHILDREN.value: CollectionPolicy(Scope.DIRECT, link_field="familyId"),
    Collection.EVENTS.value: CollectionPolicy(Scope.DIRECT, link_field="familyId"),
    Collection.JOURNEYS.value: CollectionPolicy(Scope.TRANSITIVE, link_field="childId"),
    Collection.ADVENTURES.value: CollectionPolicy(Scope.TRANSITIVE, link_field="childId", append_only=True),
    Collection.AI_STORIES.value: CollectionPolicy(Scope.TRANSITIVE, link_field="childId"),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenyReason, errors: Optional[Dict[str, str]] = None) -> "Decision":
        return cls(False, reason, dict(errors or {}))

    def as_error(self, collection: str) -> Optional[FamilyScopeError]:
        if self.allowed:
            return None
        if self.reason is DenyReason.UNAUTHENTICATED:
            return Unauthenticated("No resolvable principal.")
        if self.reason is DenyReason.NOT_FOUND:
            return NotFound(f"{collection}: referenced record missing")
        if self.reason is DenyReason.INVALID:
            return ValidationFailed(self.errors, collection=collection)
        return Forbidden(f"{collection}: no family relationship")


def policy_for(collection: str) -> CollectionPolicy:
    try:
        return COLLECTION_POLICIES[collection]
    except KeyError as exc:
        raise ValueError(f"No access policy for collection {collection!r}") from exc


def _family_of(principal: Optional[Principal]) -> Optional[str]:
    try:
        return resolve_family_id(principal)
    except Unauthenticated:
        return None


def _link(document: Optional[Mapping[str, Any]], link_field: Optional[str]) -> Any:
    if not document or not link_field:
        return None
    return document.get(link_field)


def _check_payload(
    collection: str,
    payload: Optional[Mapping[str, Any]],
    key: Optional[str],
    config: Optional[AppConfig],
) -> Decision:
    result = validate(collection, payload, key=key, config=config)
    if not result.ok:
        return Decision.deny(DenyReason.INVALID, result.errors)
    return Decision.allow()


def _decide_self(
    principal: Principal,
    operation: Operation,
    collection: str,
    key: Optional[str],
    existing: Optional[Mapping[str, Any]],
    payload: Optional[Mapping[str, Any]],
    config: Optional[AppConfig],
) -> Decision:
    if key is None or key != principal.uid:
        return Decision.deny(DenyReason.FORBIDDEN)
    if operation is Operation.DELETE:
        return Decision.deny(DenyReason.FORBIDDEN)
    if operation is Operation.READ:
        return Decision.allow() if existing is not None else Decision.deny(DenyReason.NOT_FOUND)
    if operation is Operation.UPDATE and existing is None:
        return Decision.deny(DenyReason.NOT_FOUND)
    uid = _link(payload, "uid")
    if uid is not None and uid != key:
        return Decision.deny(DenyReason.FORBIDDEN)
    return _check_payload(collection, payload, key, config)


def _decide_linked(
    expected: Any,
    operation: Operation,
    collection: str,
    policy: CollectionPolicy,
    key: Optional[str],
    existing: Optional[Mapping[str, Any]],
    payload: Optional[Mapping[str, Any]],
    config: Optional[AppConfig],
    caller_family: str,
) -> Decision:
    """Shared tail for direct and transitive scopes.

    ``expected`` is the family id the record must belong to: the record's own
    ``familyId`` for direct scope, the owning Child's for transitive scope.
    """
    if expected != caller_family:
        return Decision.deny(DenyReason.FORBIDDEN)
    if operation in (Operation.READ, Operation.DELETE):
        return Decision.allow()
    if operation is Operation.UPDATE:
        if _link(payload, policy.link_field) != _link(existing, policy.link_field):
            return Decision.deny(DenyReason.FORBIDDEN)
    return _check_payload(collection, payload, key, config)


def decide(
    principal: Optional[Principal],
    operation: Operation,
    collection: str,
    *,
    key: Optional[str] = None,
    existing: Optional[Mapping[str, Any]] = None,
    payload: Optional[Mapping[str, Any]] = None,
    owner: Optional[Mapping[str, Any]] = None,
    config: Optional[AppConfig] = None,
) -> Decision:
    """Return the access decision for one operation.

    ``existing`` is the stored document (read/update/delete), ``payload`` the
    full proposed document (create/update) and ``owner`` the resolved Child
    for child-scoped collections, or ``None`` when it does not exist.
    """
    caller_family = _family_of(principal)
    if caller_family is None:
        return Decision.deny(DenyReason.UNAUTHENTICATED)
    policy = policy_for(collection)

    if policy.scope is Scope.SELF:
        return _decide_self(principal, operation, collection, key, existing, payload, config)

    if policy.append_only and operation in (Operation.UPDATE, Operation.DELETE):
        return Decision.deny(DenyReason.FORBIDDEN)
    if operation is Operation.UPDATE and payload is None:
        return Decision.deny(DenyReason.INVALID, {"payload": "is required"})
    if operation is not Operation.CREATE and existing is None:
        return Decision.deny(DenyReason.NOT_FOUND)

    subject = payload if operation is Operation.CREATE else existing
    link = _link(subject, policy.link_field)
    if link is None:
        # Nothing to scope on: report the structural problem.
        return _check_payload(collection, payload, key, config) if payload is not None else Decision.deny(
            DenyReason.FORBIDDEN
        )

    if policy.scope is Scope.DIRECT:
        expected = link
    else:
        if owner is None or owner.get("id", link) != link:
            return Decision.deny(DenyReason.NOT_FOUND)
        expected = owner.get("familyId")

    return _decide_linked(
        expected, operation, collection, policy, key, existing, payload, config, caller_family
    )


def decide_query(
    principal: Optional[Principal],
    collection: str,
    filters: Mapping[str, Any],
    *,
    owner: Optional[Mapping[str, Any]] = None,
) -> Decision:
    """Decide whether a filtered listing is confined to the caller's family."""
    caller_family = _family_of(principal)
    if caller_family is None:
        return Decision.deny(DenyReason.UNAUTHENTICATED)
    policy = policy_for(collection)
    link = filters.get(policy.link_field) if policy.link_field else None
    if policy.scope is Scope.SELF:
        return Decision.allow() if link == principal.uid else Decision.deny(DenyReason.FORBIDDEN)
    if link is None:
        return Decision.deny(DenyReason.FORBIDDEN)
    if policy.scope is Scope.DIRECT:
        return Decision.allow() if link == caller_family else Decision.deny(DenyReason.FORBIDDEN)
    if owner is None:
        return Decision.deny(DenyReason.NOT_FOUND)
    if owner.get("familyId") != caller_family:
        return Decision.deny(DenyReason.FORBIDDEN)
    return Decision.allow()


class OwnershipGuard:
    """Store-backed enforcement of ``decide``/``decide_query``."""

    def __init__(self, store: DocumentStore, config: Optional[AppConfig] = None) -> None:
        self.store = store
        self.config = config

    async def _owner(self, child_id: Any) -> Optional[Document]:
        if not isinstance(child_id, str) or not child_id:
            return None
        return await self.store.get(Collection.CHILDREN.value, child_id)

    def _enforce(self, decision: Decision, principal: Optional[Principal], collection: str, action: str) -> None:
        if decision.allowed:
            return
        logger.info(
            "access denied",
            extra={
                "collection": collection,
                "operation": action,
                "reason": decision.reason.value if decision.reason else None,
                "uid": principal.uid if principal else None,
            },
        )
        error = decision.as_error(collection)
        if error is not None:
            raise error

    async def authorize(
        self,
        principal: Optional[Principal],
        operation: Operation,
        collection: str,
        *,
        key: Optional[str] = None,
        existing: Optional[Document] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        owner = None
        policy = policy_for(collection)
        if policy.scope is Scope.TRANSITIVE and _family_of(principal) is not None:
            subject = payload if operation is Operation.CREATE else existing
            owner = await self._owner(_link(subject, policy.link_field))
        decision = decide(
            principal,
            operation,
            collection,
            key=key,
            existing=existing,
            payload=payload,
            owner=owner,
            config=self.config,
        )
        self._enforce(decision, principal, collection, operation.value)

    async def authorize_query(
        self,
        principal: Optional[Principal],
        collection: str,
        filters: Mapping[str, Any],
    ) -> None:
        owner = None
        policy = policy_for(collection)
        if policy.scope is Scope.TRANSITIVE and _family_of(principal) is not None:
            owner = await self._owner(filters.get(policy.link_field))
        self._enforce(decide_query(principal, collection, filters, owner=owner), principal, collection, "query")

    async def fetch(self, principal: Optional[Principal], collection: str, doc_id: str) -> Document:
        """Load ``collection/doc_id`` and authorize a read of it."""
        if _family_of(principal) is None:
            raise Unauthenticated("No resolvable principal.")
        existing = await self.store.get(collection, doc_id)
        await self.authorize(principal, Operation.READ, collection, key=doc_id, existing=existing)
        return existing
