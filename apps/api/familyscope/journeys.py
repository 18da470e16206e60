"""Skill journeys and the adventure log.

A Journey's ``progress.adventureCount`` is derived from the Adventure log.
``log_adventure`` appends the Adventure and bumps the counter in one
optimistic transaction, retried with exponential backoff when another writer
touched the same Journey first.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from .clock import Clock, to_utc_iso, utc_now
from .config import CONFIG, AppConfig
from .errors import JourneyNotFound
from .policy import Operation, OwnershipGuard
from .principal import Principal
from .schemas import (
    Adventure,
    AdventureLogResult,
    Collection,
    CreateAdventureForm,
    CreateSkillForm,
    Journey,
    JourneyProgress,
)
from .store import DocumentStore, Transaction, get_field, new_document_id, run_transaction
from .validation import parse_form, require_valid

logger = logging.getLogger(__name__)

JOURNEYS = Collection.JOURNEYS.value
ADVENTURES = Collection.ADVENTURES.value


def journey_key(child_id: str, skill_id: str) -> str:
    """Document key of the single Journey for ``(child_id, skill_id)``."""
    return f"{child_id}__{skill_id}"


class JourneyService:
    """Create and read journeys, and log adventures against them."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        guard: Optional[OwnershipGuard] = None,
        clock: Clock = utc_now,
        config: Optional[AppConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.config = config or CONFIG
        self.guard = guard or OwnershipGuard(store, self.config)
        self.clock = clock
        self._sleep = sleep

    async def create_journey(self, principal: Optional[Principal], child_id: str, skill_form: Any) -> Journey:
        form = parse_form(CreateSkillForm, skill_form)
        now = to_utc_iso(self.clock())
        skill_id = f"skill_{new_document_id()}"
        document = {
            "childId": child_id,
            "skillData": {
                "id": skill_id,
                "name": form.name.strip(),
                "category": form.category.value,
                "difficulty": form.difficulty.value,
                "estimatedDays": form.estimated_days,
                "createdAt": now,
            },
            "progress": {"adventureCount": 0, "lastUpdated": now},
            "createdAt": now,
        }
        key = journey_key(child_id, skill_id)
        await self.guard.authorize(principal, Operation.CREATE, JOURNEYS, key=key, payload=document)
        stored = await self.store.add(JOURNEYS, document, doc_id=key)
        logger.info(
            "journey created",
            extra={"child_id": child_id, "skill_id": skill_id, "category": form.category.value},
        )
        return Journey.model_validate(stored)

    async def get_journeys(self, principal: Optional[Principal], child_id: str) -> List[Journey]:
        filters = {"childId": child_id}
        await self.guard.authorize_query(principal, JOURNEYS, filters)
        rows = await self.store.query(JOURNEYS, filters, order_by="createdAt", descending=True)
        return [Journey.model_validate(row) for row in rows]

    async def get_adventures(self, principal: Optional[Principal], child_id: str, skill_id: str) -> List[Adventure]:
        await self.guard.authorize_query(principal, ADVENTURES, {"childId": child_id})
        rows = await self.store.query(
            ADVENTURES,
            {"childId": child_id, "skillId": skill_id},
            order_by="createdAt",
            descending=True,
        )
        return [Adventure.model_validate(row) for row in rows]

    async def log_adventure(
        self,
        principal: Optional[Principal],
        child_id: str,
        skill_id: str,
        adventure_input: Any,
    ) -> AdventureLogResult:
        form = parse_form(CreateAdventureForm, adventure_input)
        now = self.clock()
        stamp = to_utc_iso(now)
        adventure = {
            "childId": child_id,
            "skillId": skill_id,
            "text": form.text.strip(),
            "winType": form.win_type,
            "createdAt": stamp,
        }
        if form.photo_url:
            adventure["photoUrl"] = form.photo_url
        require_valid(ADVENTURES, adventure, config=self.config)
        await self.guard.authorize(principal, Operation.CREATE, ADVENTURES, payload=adventure)

        key = journey_key(child_id, skill_id)

        async def append_and_count(txn: Transaction) -> tuple[str, int]:
            journey = await txn.get(JOURNEYS, key)
            if journey is None:
                raise JourneyNotFound(f"No journey for child {child_id} and skill {skill_id}")
            count = int(get_field(journey, "progress.adventureCount", 0) or 0) + 1
            adventure_id = txn.create(ADVENTURES, adventure)
            txn.update(
                JOURNEYS,
                key,
                {"progress.adventureCount": count, "progress.lastUpdated": stamp},
            )
            return adventure_id, count

        adventure_id, count = await run_transaction(
            self.store,
            append_and_count,
            operation=f"log_adventure {key}",
            max_attempts=self.config.transaction_max_attempts,
            base_delay=self.config.transaction_backoff_seconds,
            max_delay=self.config.transaction_backoff_max_seconds,
            sleep=self._sleep,
        )
        logger.info(
            "adventure logged",
            extra={"child_id": child_id, "skill_id": skill_id, "win_type": form.win_type, "count": count},
        )
        return AdventureLogResult(
            adventure=Adventure.model_validate({**adventure, "id": adventure_id}),
            progress=JourneyProgress(adventure_count=count, last_updated=now),
        )
