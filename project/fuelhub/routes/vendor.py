# fuelhub/routes/vendor.py

from fastapi import APIRouter, Depends, HTTPException, Request, status
from typing import List

from fuelhub.models.user import Role
from fuelhub.models.vendor import ProductStatus
from fuelhub.schemas.vendor import (
    DriverResponse,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    VendorCreate,
    VendorDetail,
    VendorResponse,
    VerificationUpdate,
)
from fuelhub.services.actor import Actor
from fuelhub.services.catalog import (
    create_product_service,
    create_vendor_service,
    read_vendor_drivers_service,
    read_vendor_service,
    read_vendors_service,
    update_product_service,
    update_verification_service,
)
from fuelhub.routes.auth import get_current_actor, get_current_user

router = APIRouter()


def require_vendor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != Role.VENDOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vendor access required")
    return actor


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


# ────────────── Публичный каталог ──────────────
@router.get(
    "/",
    response_model=List[VendorResponse],
    summary="Список верифицированных продавцов",
)
async def read_vendors(request: Request, skip: int = 0, limit: int = 100):
    return await read_vendors_service(request, skip, limit)


# ────────────── Кабинет продавца ──────────────
@router.post(
    "/me",
    response_model=VendorResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Создать профиль продавца",
    responses={
        403: {"description": "Пользователь не продавец"},
        409: {"description": "Профиль уже существует"},
    },
)
async def create_vendor(payload: VendorCreate, request: Request, user=Depends(get_current_user)):
    if user.role != Role.VENDOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vendor access required")
    return await create_vendor_service(payload, user, request)


@router.post(
    "/me/products",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Добавить товар",
)
async def create_product(payload: ProductCreate, request: Request, actor: Actor = Depends(require_vendor)):
    return await create_product_service(actor, payload, request)


@router.patch(
    "/me/products/{product_id}",
    response_model=ProductResponse,
    summary="Обновить товар (цена, остаток, статус)",
    responses={404: {"description": "Товар не найден"}},
)
async def update_product(product_id: int, payload: ProductUpdate, request: Request,
                         actor: Actor = Depends(require_vendor)):
    return await update_product_service(actor, product_id, payload, request)


@router.get(
    "/me/drivers",
    response_model=List[DriverResponse],
    summary="Водители продавца",
)
async def read_drivers(request: Request, actor: Actor = Depends(require_vendor)):
    return await read_vendor_drivers_service(actor, request)


@router.get(
    "/{vendor_id}",
    response_model=VendorDetail,
    summary="Продавец с товарами",
    responses={404: {"description": "Продавец не найден"}},
)
async def read_vendor(vendor_id: int, request: Request):
    detail = VendorDetail.model_validate(await read_vendor_service(vendor_id, request))
    detail.products = [p for p in detail.products if p.status == ProductStatus.AVAILABLE]
    return detail


# ────────────── Администратор ──────────────
@router.patch(
    "/{vendor_id}/verification",
    response_model=VendorResponse,
    summary="Верификация продавца (админ)",
    responses={403: {"description": "Только администратор"}, 404: {"description": "Продавец не найден"}},
)
async def update_verification(vendor_id: int, payload: VerificationUpdate, request: Request,
                              _: Actor = Depends(require_admin)):
    return await update_verification_service(vendor_id, payload.verification_status, request)
