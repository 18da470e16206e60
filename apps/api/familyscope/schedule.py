"""Family schedule events."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .clock import to_utc_iso
from .config import CONFIG, AppConfig
from .errors import Unauthenticated
from .policy import Operation, OwnershipGuard
from .principal import Principal, resolve_family_id
from .schemas import Collection, CreateEventPayload, ScheduleEvent, UpdateEventPayload
from .store import DocumentStore, Transaction, run_transaction
from .validation import parse_form

logger = logging.getLogger(__name__)

EVENTS = Collection.EVENTS.value


def _event_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    for name in ("startTime", "endTime"):
        if values.get(name) is not None:
            values[name] = to_utc_iso(values[name])
    if isinstance(values.get("title"), str):
        values["title"] = values["title"].strip()
    return values


class ScheduleService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        guard: Optional[OwnershipGuard] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.store = store
        self.config = config or CONFIG
        self.guard = guard or OwnershipGuard(store, self.config)

    async def add_event(self, principal: Optional[Principal], payload: Any) -> ScheduleEvent:
        form = parse_form(CreateEventPayload, payload)
        family_id = resolve_family_id(principal)
        document = _event_fields(form.model_dump(by_alias=True))
        document.update({"familyId": family_id, "createdBy": principal.uid})
        await self.guard.authorize(principal, Operation.CREATE, EVENTS, payload=document)
        stored = await self.store.add(EVENTS, document)
        logger.info("event added", extra={"family_id": family_id, "event_id": stored["id"]})
        return ScheduleEvent.model_validate(stored)

    async def list_events(self, principal: Optional[Principal]) -> List[ScheduleEvent]:
        filters = {"familyId": resolve_family_id(principal)}
        await self.guard.authorize_query(principal, EVENTS, filters)
        rows = await self.store.query(EVENTS, filters, order_by="startTime")
        return [ScheduleEvent.model_validate(row) for row in rows]

    async def update_event(self, principal: Optional[Principal], event_id: str, payload: Any) -> ScheduleEvent:
        if principal is None:
            raise Unauthenticated("No resolvable principal.")
        form = parse_form(UpdateEventPayload, payload)
        changes = _event_fields(form.model_dump(by_alias=True, exclude_unset=True))

        async def merge_and_write(txn: Transaction) -> Dict[str, Any]:
            existing = await txn.get(EVENTS, event_id)
            proposed = {**(existing or {}), **changes}
            await self.guard.authorize(
                principal, Operation.UPDATE, EVENTS, key=event_id, existing=existing, payload=proposed
            )
            document = {k: v for k, v in proposed.items() if k != "id"}
            txn.set(EVENTS, event_id, document)
            return {**document, "id": event_id}

        stored = await run_transaction(
            self.store,
            merge_and_write,
            operation=f"update_event {event_id}",
            max_attempts=self.config.transaction_max_attempts,
            base_delay=self.config.transaction_backoff_seconds,
            max_delay=self.config.transaction_backoff_max_seconds,
        )
        return ScheduleEvent.model_validate(stored)

    async def delete_event(self, principal: Optional[Principal], event_id: str) -> None:
        if principal is None:
            raise Unauthenticated("No resolvable principal.")
        existing = await self.store.get(EVENTS, event_id)
        await self.guard.authorize(principal, Operation.DELETE, EVENTS, key=event_id, existing=existing)
        await self.store.delete(EVENTS, event_id)
