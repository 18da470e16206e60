from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response

from ..deps import get_family_service
from ..family import FamilyService
from ..principal import Principal, get_principal
from ..schemas import Child, CreateChildPayload, RegisterUserPayload, UpdateChildPayload, UserProfile

router = APIRouter(prefix="/api/v1", tags=["family"])


@router.put("/users/{uid}", response_model=UserProfile)
async def register_user_endpoint(
    uid: str,
    payload: RegisterUserPayload,
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> UserProfile:
    return await service.register_user(principal, uid, payload)


@router.get("/users/{uid}", response_model=UserProfile)
async def get_user_endpoint(
    uid: str,
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> UserProfile:
    return await service.get_user(principal, uid)


@router.post("/children", response_model=Child, status_code=201)
async def add_child_endpoint(
    payload: CreateChildPayload,
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> Child:
    return await service.add_child(principal, payload)


@router.get("/children", response_model=List[Child])
async def list_children_endpoint(
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> List[Child]:
    return await service.list_children(principal)


@router.delete("/children", status_code=200)
async def delete_all_children_endpoint(
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> dict:
    deleted = await service.delete_all_children(principal)
    return {"deleted": deleted}


@router.get("/children/{child_id}", response_model=Child)
async def get_child_endpoint(
    child_id: str,
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> Child:
    return await service.get_child(principal, child_id)


@router.patch("/children/{child_id}", response_model=Child)
async def update_child_endpoint(
    child_id: str,
    payload: UpdateChildPayload,
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> Child:
    return await service.update_child(principal, child_id, payload)


@router.delete("/children/{child_id}", status_code=204)
async def delete_child_endpoint(
    child_id: str,
    principal: Principal = Depends(get_principal),
    service: FamilyService = Depends(get_family_service),
) -> Response:
    await service.delete_child(principal, child_id)
    return Response(status_code=204)
