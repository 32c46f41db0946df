# fuelhub/services/profile.py

from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException, Request

from fuelhub.models.driver import Driver
from fuelhub.models.user import Role, User as UserModel
from fuelhub.models.vendor import Vendor
from fuelhub.schemas.user import UserCreate
from fuelhub.services.actor import Actor
from fuelhub.utils.security import hash_password


async def create_user_service(user: UserCreate, request: Request) -> UserModel:
    """
    Регистрация пользователя. Пароль хэшируется перед сохранением.
    Занятый логин -> 409.
    """
    db = request.state.db
    log = request.app.state.log

    db_user = UserModel(
        name=user.name,
        login=user.login,
        phone=user.phone,
        password=hash_password(user.password),
        role=Role(user.role).value,
    )
    db.add(db_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        await log.log_warning("auth", "Логин уже занят", {"login": user.login})
        raise HTTPException(status_code=409, detail=f"Пользователь с логином '{user.login}' уже существует")
    await db.refresh(db_user)

    await log.log_info("auth", "Пользователь создан", {"id": db_user.id, "role": db_user.role})
    return db_user


async def read_user_by_login_service(login: str, request: Request) -> UserModel | None:
    db = request.state.db
    result = await db.execute(select(UserModel).where(UserModel.login == login))
    return result.scalar_one_or_none()


async def resolve_actor_service(user: UserModel, request: Request) -> Actor:
    """
    Actor для пользователя: продавцу и водителю нужен профиль.
    Без профиля операции с заказами недоступны (403).
    """
    db = request.state.db
    role = Role(user.role)

    if role == Role.VENDOR:
        result = await db.execute(select(Vendor).where(Vendor.user_id == user.id))
        vendor = result.scalar_one_or_none()
        if vendor is None:
            raise HTTPException(status_code=403, detail="Vendor profile required")
        return Actor.vendor(vendor.id, user.id)

    if role == Role.DRIVER:
        result = await db.execute(select(Driver).where(Driver.user_id == user.id))
        driver = result.scalar_one_or_none()
        if driver is None:
            raise HTTPException(status_code=403, detail="Driver profile required")
        return Actor.driver(driver.id, user.id)

    if role == Role.ADMIN:
        return Actor.admin(user.id)
    return Actor.customer(user.id)
