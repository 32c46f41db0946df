# fuelhub/routes/driver.py

from fastapi import APIRouter, Depends, HTTPException, Request, status

from fuelhub.models.user import Role
from fuelhub.schemas.vendor import AvailabilityUpdate, DriverCreate, DriverResponse
from fuelhub.services.actor import Actor
from fuelhub.services.catalog import create_driver_service, set_driver_availability_service
from fuelhub.routes.auth import get_current_actor, get_current_user

router = APIRouter()


@router.post(
    "/me",
    response_model=DriverResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Создать профиль водителя",
    responses={
        403: {"description": "Пользователь не водитель"},
        404: {"description": "Продавец не найден"},
        409: {"description": "Профиль уже существует"},
    },
)
async def create_driver(payload: DriverCreate, request: Request, user=Depends(get_current_user)):
    if user.role != Role.DRIVER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver access required")
    return await create_driver_service(payload, user, request)


@router.patch(
    "/me/availability",
    response_model=DriverResponse,
    summary="Переключить доступность (available / offline)",
    responses={409: {"description": "Водитель занят доставкой"}},
)
async def update_availability(payload: AvailabilityUpdate, request: Request,
                              actor: Actor = Depends(get_current_actor)):
    if actor.role != Role.DRIVER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver access required")
    return await set_driver_availability_service(actor, payload.status, request)
