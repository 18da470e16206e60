from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response

from ..deps import get_schedule_service
from ..principal import Principal, get_principal
from ..schedule import ScheduleService
from ..schemas import CreateEventPayload, ScheduleEvent, UpdateEventPayload

router = APIRouter(prefix="/api/v1", tags=["events"])


@router.post("/events", response_model=ScheduleEvent, status_code=201)
async def add_event_endpoint(
    payload: CreateEventPayload,
    principal: Principal = Depends(get_principal),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleEvent:
    return await service.add_event(principal, payload)


@router.get("/events", response_model=List[ScheduleEvent])
async def list_events_endpoint(
    principal: Principal = Depends(get_principal),
    service: ScheduleService = Depends(get_schedule_service),
) -> List[ScheduleEvent]:
    """Return the caller's family schedule ordered by start time."""
    return await service.list_events(principal)


@router.patch("/events/{event_id}", response_model=ScheduleEvent)
async def update_event_endpoint(
    event_id: str,
    payload: UpdateEventPayload,
    principal: Principal = Depends(get_principal),
    service: ScheduleService = Depends(get_schedule_service),
) -> ScheduleEvent:
    return await service.update_event(principal, event_id, payload)


@router.delete("/events/{event_id}", status_code=204)
async def delete_event_endpoint(
    event_id: str,
    principal: Principal = Depends(get_principal),
    service: ScheduleService = Depends(get_schedule_service),
) -> Response:
    await service.delete_event(principal, event_id)
    return Response(status_code=204)
