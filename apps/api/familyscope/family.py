"""User accounts and child profiles for a family."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from .clock import Clock, to_utc_iso, utc_now
from .config import CONFIG, AppConfig
from .errors import Unauthenticated
from .policy import Operation, OwnershipGuard
from .principal import Principal, resolve_family_id
from .schemas import Child, Collection, CreateChildPayload, RegisterUserPayload, UpdateChildPayload, UserProfile
from .store import DocumentStore, Transaction, run_transaction
from .validation import parse_form

logger = logging.getLogger(__name__)

USERS = Collection.USERS.value
CHILDREN = Collection.CHILDREN.value

_OPTIONAL_TEXT_FIELDS = ("medications", "allergies")


def _clean_optional_text(document: Dict[str, Any]) -> Dict[str, Any]:
    """Drop optional free-text fields that are blank; trim the rest."""
    for field_name in _OPTIONAL_TEXT_FIELDS:
        if field_name not in document:
            continue
        value = document[field_name]
        if isinstance(value, str) and value.strip():
            document[field_name] = value.strip()
        else:
            document.pop(field_name)
    return document


class FamilyService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        guard: Optional[OwnershipGuard] = None,
        clock: Clock = utc_now,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.store = store
        self.config = config or CONFIG
        self.guard = guard or OwnershipGuard(store, self.config)
        self.clock = clock

    # Users

    async def register_user(self, principal: Optional[Principal], uid: str, payload: Any) -> UserProfile:
        form = parse_form(RegisterUserPayload, payload)
        existing = await self.store.get(USERS, uid) if principal and principal.uid == uid else None
        document = {
            "uid": uid,
            "email": form.email.strip(),
            "firstName": form.first_name.strip(),
            "lastName": form.last_name.strip(),
            "createdAt": existing["createdAt"] if existing else to_utc_iso(self.clock()),
        }
        operation = Operation.UPDATE if existing else Operation.CREATE
        await self.guard.authorize(principal, operation, USERS, key=uid, existing=existing, payload=document)
        stored = await self.store.set(USERS, uid, document)
        return UserProfile.model_validate(stored)

    async def get_user(self, principal: Optional[Principal], uid: str) -> UserProfile:
        document = await self.guard.fetch(principal, USERS, uid)
        return UserProfile.model_validate(document)

    # Children

    async def add_child(self, principal: Optional[Principal], payload: Any) -> Child:
        form = parse_form(CreateChildPayload, payload)
        family_id = resolve_family_id(principal)
        now = to_utc_iso(self.clock())
        document = _clean_optional_text(
            {
                **form.model_dump(by_alias=True, exclude_none=True),
                "name": form.name.strip(),
                "diagnosis": form.diagnosis.strip(),
                "familyId": family_id,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        return await self.create_child_document(principal, document)

    async def create_child_document(self, principal: Optional[Principal], document: Mapping[str, Any]) -> Child:
        """Store a fully formed child document, e.g. one carrying its own ``familyId``."""
        document = dict(document)
        await self.guard.authorize(principal, Operation.CREATE, CHILDREN, payload=document)
        stored = await self.store.add(CHILDREN, document)
        logger.info("child added", extra={"family_id": document.get("familyId"), "child_id": stored["id"]})
        return Child.model_validate(stored)

    async def list_children(self, principal: Optional[Principal]) -> List[Child]:
        filters = {"familyId": resolve_family_id(principal)}
        await self.guard.authorize_query(principal, CHILDREN, filters)
        rows = await self.store.query(CHILDREN, filters, order_by="createdAt")
        return [Child.model_validate(row) for row in rows]

    async def get_child(self, principal: Optional[Principal], child_id: str) -> Child:
        return Child.model_validate(await self.guard.fetch(principal, CHILDREN, child_id))

    async def update_child(
        self,
        principal: Optional[Principal],
        child_id: str,
        updates: Union[UpdateChildPayload, Mapping[str, Any]],
    ) -> Child:
        if principal is None:
            raise Unauthenticated("No resolvable principal.")
        if isinstance(updates, UpdateChildPayload):
            changes = updates.model_dump(by_alias=True, exclude_unset=True)
        else:
            changes = dict(updates)
        changes.pop("id", None)
        for field_name in ("name", "diagnosis"):
            if isinstance(changes.get(field_name), str):
                changes[field_name] = changes[field_name].strip()
        changes["updatedAt"] = to_utc_iso(self.clock())

        async def merge_and_write(txn: Transaction) -> Dict[str, Any]:
            existing = await txn.get(CHILDREN, child_id)
            proposed = _clean_optional_text({**(existing or {}), **changes})
            await self.guard.authorize(
                principal, Operation.UPDATE, CHILDREN, key=child_id, existing=existing, payload=proposed
            )
            document = {k: v for k, v in proposed.items() if k != "id"}
            txn.set(CHILDREN, child_id, document)
            return {**document, "id": child_id}

        stored = await run_transaction(
            self.store,
            merge_and_write,
            operation=f"update_child {child_id}",
            max_attempts=self.config.transaction_max_attempts,
            base_delay=self.config.transaction_backoff_seconds,
            max_delay=self.config.transaction_backoff_max_seconds,
        )
        return Child.model_validate(stored)

    async def delete_child(self, principal: Optional[Principal], child_id: str) -> None:
        # Journeys, adventures and stories are left in place; with the child
        # gone the guard answers NotFound for every one of them.
        if principal is None:
            raise Unauthenticated("No resolvable principal.")
        existing = await self.store.get(CHILDREN, child_id)
        await self.guard.authorize(principal, Operation.DELETE, CHILDREN, key=child_id, existing=existing)
        await self.store.delete(CHILDREN, child_id)
        logger.info("child deleted", extra={"child_id": child_id})

    async def delete_all_children(self, principal: Optional[Principal]) -> int:
        children = await self.list_children(principal)
        for child in children:
            await self.delete_child(principal, child.id)
        logger.info(
            "all children deleted",
            extra={"family_id": resolve_family_id(principal), "count": len(children)},
        )
        return len(children)
