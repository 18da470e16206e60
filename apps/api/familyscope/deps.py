"""FastAPI dependency wiring for the store and services."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from .clock import Clock, utc_now
from .config import CONFIG
from .family import FamilyService
from .journeys import JourneyService
from .schedule import ScheduleService
from .stories import StoryService
from .store import DocumentStore, MemoryDocumentStore, SqliteDocumentStore


@lru_cache
def get_store() -> DocumentStore:
    if CONFIG.store_backend == "memory":
        return MemoryDocumentStore()
    return SqliteDocumentStore(CONFIG.resolved_database_path)


def get_clock() -> Clock:
    return utc_now


def get_family_service(
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> FamilyService:
    return FamilyService(store, clock=clock)


def get_journey_service(
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> JourneyService:
    return JourneyService(store, clock=clock)


def get_schedule_service(store: DocumentStore = Depends(get_store)) -> ScheduleService:
    return ScheduleService(store)


def get_story_service(
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> StoryService:
    return StoryService(store, clock=clock)
