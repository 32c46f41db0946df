# fuelhub/services/catalog.py

from sqlalchemy.future import select
from fastapi import HTTPException, Request

from fuelhub.models.driver import Driver, DriverStatus
from fuelhub.models.user import User as UserModel
from fuelhub.models.vendor import Product, ProductStatus, Vendor, VerificationStatus
from fuelhub.schemas.vendor import DriverCreate, ProductCreate, ProductUpdate, VendorCreate
from fuelhub.services.actor import Actor
from fuelhub.services.lifecycle import assert_driver_self_transition
from fuelhub.utils.db_service import transaction


# ────────────── Продавцы ──────────────
async def read_vendors_service(request: Request, skip: int = 0, limit: int = 100) -> list[Vendor]:
    """
    Продавцы, видимые покупателям: активные и верифицированные.
    """
    db = request.state.db
    log = request.app.state.log

    result = await db.execute(
        select(Vendor)
        .where(Vendor.is_active.is_(True), Vendor.verification_status == VerificationStatus.VERIFIED.value)
        .order_by(Vendor.id)
        .offset(skip)
        .limit(limit)
    )
    vendors = result.scalars().all()

    await log.log_info("vendor", f"{len(vendors)} продавцов загружено")
    return vendors


async def read_vendor_service(vendor_id: int, request: Request, public: bool = True) -> Vendor:
    db = request.state.db
    log = request.app.state.log

    vendor = await db.get(Vendor, vendor_id)
    visible = vendor is not None and (
        not public or (vendor.is_active and vendor.verification_status == VerificationStatus.VERIFIED)
    )
    if not visible:
        await log.log_error("vendor", "Продавец не найден", {"id": vendor_id})
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor


async def create_vendor_service(payload: VendorCreate, user: UserModel, request: Request) -> Vendor:
    """
    Профиль продавца для пользователя с ролью vendor.
    Новый продавец ждёт верификации администратором.
    """
    db = request.state.db
    log = request.app.state.log

    result = await db.execute(select(Vendor).where(Vendor.user_id == user.id))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail="Vendor profile already exists")

    vendor = Vendor(user_id=user.id, verification_status=VerificationStatus.PENDING.value, **payload.model_dump())
    async with transaction(db):
        db.add(vendor)

    await log.log_info("vendor", "Профиль продавца создан", {"id": vendor.id, "user_id": user.id})
    return vendor


async def update_verification_service(vendor_id: int, status: str, request: Request) -> Vendor:
    db = request.state.db
    log = request.app.state.log

    vendor = await read_vendor_service(vendor_id, request, public=False)
    async with transaction(db):
        vendor.verification_status = VerificationStatus(status).value

    await log.log_info("vendor", "Статус верификации изменён", {"id": vendor_id, "status": vendor.verification_status})
    return vendor


# ────────────── Товары ──────────────
async def create_product_service(actor: Actor, payload: ProductCreate, request: Request) -> Product:
    db = request.state.db
    log = request.app.state.log

    if payload.min_order_qty > payload.max_order_qty:
        raise HTTPException(status_code=400, detail="min_order_qty cannot exceed max_order_qty")

    product = Product(vendor_id=actor.id, **payload.model_dump())
    if product.available_qty <= 0:
        product.status = ProductStatus.OUT_OF_STOCK.value
    async with transaction(db):
        db.add(product)

    await log.log_info("vendor", "Товар добавлен", {"id": product.id, "vendor_id": actor.id})
    return product


async def update_product_service(actor: Actor, product_id: int, payload: ProductUpdate, request: Request) -> Product:
    """
    Обновление товара продавцом. Цена в уже созданных заказах не меняется:
    позиции заказа хранят снимок цены.
    """
    db = request.state.db
    log = request.app.state.log

    product = await db.get(Product, product_id)
    if product is None or product.vendor_id != actor.id:
        raise HTTPException(status_code=404, detail="Product not found")

    changes = payload.model_dump(exclude_unset=True)
    async with transaction(db):
        for key, value in changes.items():
            setattr(product, key, value)
        # остаток без явного статуса: пополнение возвращает товар в продажу, ноль снимает
        if "status" not in changes and "available_qty" in changes:
            if product.available_qty > 0 and product.status == ProductStatus.OUT_OF_STOCK:
                product.status = ProductStatus.AVAILABLE.value
            elif product.available_qty <= 0 and product.status == ProductStatus.AVAILABLE:
                product.status = ProductStatus.OUT_OF_STOCK.value
        if product.min_order_qty > product.max_order_qty:
            raise HTTPException(status_code=400, detail="min_order_qty cannot exceed max_order_qty")

    await log.log_info("vendor", "Товар обновлён", {"id": product_id})
    return product


# ────────────── Водители ──────────────
async def create_driver_service(payload: DriverCreate, user: UserModel, request: Request) -> Driver:
    """Профиль водителя, привязанный к продавцу. Новый водитель offline."""
    db = request.state.db
    log = request.app.state.log

    result = await db.execute(select(Driver).where(Driver.user_id == user.id))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail="Driver profile already exists")
    await read_vendor_service(payload.vendor_id, request, public=False)

    driver = Driver(user_id=user.id, status=DriverStatus.OFFLINE.value, **payload.model_dump())
    async with transaction(db):
        db.add(driver)

    await log.log_info("driver", "Профиль водителя создан", {"id": driver.id, "vendor_id": payload.vendor_id})
    return driver


async def read_vendor_drivers_service(actor: Actor, request: Request) -> list[Driver]:
    db = request.state.db
    result = await db.execute(select(Driver).where(Driver.vendor_id == actor.id).order_by(Driver.id))
    return result.scalars().all()


async def set_driver_availability_service(actor: Actor, status: str, request: Request) -> Driver:
    """
    Водитель сам переключает available <-> offline.
    busy выставляет только система при назначении на заказ.
    """
    db = request.state.db
    log = request.app.state.log

    async with transaction(db):
        driver = await db.get(Driver, actor.id, populate_existing=True, with_for_update=True)
        if driver is None:
            raise HTTPException(status_code=404, detail="Driver not found")
        previous = driver.status
        assert_driver_self_transition(previous, status)
        driver.status = DriverStatus(status).value

    await log.log_info("driver", "Доступность водителя изменена", {"id": driver.id, "from": previous, "to": driver.status})
    return driver
