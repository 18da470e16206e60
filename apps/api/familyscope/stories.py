"""AI stories generated from a child's skill journey."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from .clock import Clock, to_utc_iso, utc_now
from .config import CONFIG, AppConfig
from .errors import Unauthenticated
from .journeys import journey_key
from .policy import Operation, OwnershipGuard
from .principal import Principal
from .schemas import AIStory, Collection
from .store import DocumentStore, get_field
from .story_writer import StoryDraft, write_story

logger = logging.getLogger(__name__)

STORIES = Collection.AI_STORIES.value


class StoryService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        guard: Optional[OwnershipGuard] = None,
        clock: Clock = utc_now,
        config: Optional[AppConfig] = None,
        writer: Callable[..., StoryDraft] = write_story,
    ) -> None:
        self.store = store
        self.config = config or CONFIG
        self.guard = guard or OwnershipGuard(store, self.config)
        self.clock = clock
        self.writer = writer

    async def generate_story(self, principal: Optional[Principal], child_id: str, skill_id: str) -> AIStory:
        journey = await self.guard.fetch(principal, Collection.JOURNEYS.value, journey_key(child_id, skill_id))
        child = await self.store.get(Collection.CHILDREN.value, child_id)
        adventures = await self.store.query(
            Collection.ADVENTURES.value,
            {"childId": child_id, "skillId": skill_id},
            order_by="createdAt",
            descending=True,
            limit=5,
        )
        draft = await asyncio.to_thread(
            self.writer,
            skill_name=get_field(journey, "skillData.name", "new skill"),
            child_name=(child or {}).get("name"),
            adventure_count=int(get_field(journey, "progress.adventureCount", 0) or 0),
            recent_wins=[row.get("text", "") for row in adventures],
        )
        document = {
            "childId": child_id,
            "skillId": skill_id,
            "title": draft.title,
            "content": draft.content,
            "isPlaceholder": draft.is_placeholder,
            "isRead": False,
            "isFavorite": False,
            "createdAt": to_utc_iso(self.clock()),
        }
        await self.guard.authorize(principal, Operation.CREATE, STORIES, payload=document)
        stored = await self.store.add(STORIES, document)
        logger.info(
            "story generated",
            extra={"child_id": child_id, "skill_id": skill_id, "placeholder": draft.is_placeholder},
        )
        return AIStory.model_validate(stored)

    async def list_stories(self, principal: Optional[Principal], child_id: str) -> List[AIStory]:
        filters = {"childId": child_id}
        await self.guard.authorize_query(principal, STORIES, filters)
        rows = await self.store.query(STORIES, filters, order_by="createdAt", descending=True)
        return [AIStory.model_validate(row) for row in rows]

    async def _patch(self, principal: Optional[Principal], story_id: str, changes: dict) -> AIStory:
        if principal is None:
            raise Unauthenticated("No resolvable principal.")
        existing = await self.store.get(STORIES, story_id)
        proposed = {**(existing or {}), **changes}
        await self.guard.authorize(
            principal, Operation.UPDATE, STORIES, key=story_id, existing=existing, payload=proposed
        )
        return AIStory.model_validate(await self.store.update(STORIES, story_id, changes))

    async def mark_story_read(self, principal: Optional[Principal], story_id: str) -> AIStory:
        return await self._patch(principal, story_id, {"isRead": True})

    async def toggle_story_favorite(self, principal: Optional[Principal], story_id: str) -> AIStory:
        story = await self.guard.fetch(principal, STORIES, story_id)
        return await self._patch(principal, story_id, {"isFavorite": not story.get("isFavorite", False)})
