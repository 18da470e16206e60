from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends

from ..deps import get_journey_service, get_story_service
from ..journeys import JourneyService
from ..principal import Principal, get_principal
from ..schemas import AIStory, Adventure, AdventureLogResult, CreateAdventureForm, CreateSkillForm, Journey
from ..stories import StoryService

router = APIRouter(prefix="/api/v1", tags=["journeys"])
logger = logging.getLogger(__name__)


@router.post("/children/{child_id}/journeys", response_model=Journey, status_code=201)
async def create_journey_endpoint(
    child_id: str,
    payload: CreateSkillForm,
    principal: Principal = Depends(get_principal),
    service: JourneyService = Depends(get_journey_service),
) -> Journey:
    logger.info(
        "child-scoped request",
        extra={"method": "POST", "path": "/children/{child_id}/journeys", "child_id": child_id},
    )
    return await service.create_journey(principal, child_id, payload)


@router.get("/children/{child_id}/journeys", response_model=List[Journey])
async def list_journeys_endpoint(
    child_id: str,
    principal: Principal = Depends(get_principal),
    service: JourneyService = Depends(get_journey_service),
) -> List[Journey]:
    return await service.get_journeys(principal, child_id)


@router.post(
    "/children/{child_id}/journeys/{skill_id}/adventures",
    response_model=AdventureLogResult,
    status_code=201,
)
async def log_adventure_endpoint(
    child_id: str,
    skill_id: str,
    payload: CreateAdventureForm,
    principal: Principal = Depends(get_principal),
    service: JourneyService = Depends(get_journey_service),
) -> AdventureLogResult:
    logger.info(
        "child-scoped request",
        extra={"method": "POST", "path": "/adventures", "child_id": child_id, "skill_id": skill_id},
    )
    return await service.log_adventure(principal, child_id, skill_id, payload)


@router.get("/children/{child_id}/journeys/{skill_id}/adventures", response_model=List[Adventure])
async def list_adventures_endpoint(
    child_id: str,
    skill_id: str,
    principal: Principal = Depends(get_principal),
    service: JourneyService = Depends(get_journey_service),
) -> List[Adventure]:
    return await service.get_adventures(principal, child_id, skill_id)


@router.post("/children/{child_id}/journeys/{skill_id}/stories", response_model=AIStory, status_code=201)
async def generate_story_endpoint(
    child_id: str,
    skill_id: str,
    principal: Principal = Depends(get_principal),
    service: StoryService = Depends(get_story_service),
) -> AIStory:
    return await service.generate_story(principal, child_id, skill_id)


@router.get("/children/{child_id}/stories", response_model=List[AIStory])
async def list_stories_endpoint(
    child_id: str,
    principal: Principal = Depends(get_principal),
    service: StoryService = Depends(get_story_service),
) -> List[AIStory]:
    return await service.list_stories(principal, child_id)


@router.post("/stories/{story_id}/read", response_model=AIStory)
async def mark_story_read_endpoint(
    story_id: str,
    principal: Principal = Depends(get_principal),
    service: StoryService = Depends(get_story_service),
) -> AIStory:
    return await service.mark_story_read(principal, story_id)


@router.post("/stories/{story_id}/favorite", response_model=AIStory)
async def toggle_story_favorite_endpoint(
    story_id: str,
    principal: Principal = Depends(get_principal),
    service: StoryService = Depends(get_story_service),
) -> AIStory:
    return await service.toggle_story_favorite(principal, story_id)
