# fuelhub/routes/auth.py

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jwt import ExpiredSignatureError, InvalidTokenError
from datetime import timedelta

from fuelhub.config import settings
from fuelhub.models.user import User as UserModel
from fuelhub.schemas.user import TokenResponse, UserCreate, UserResponse
from fuelhub.services.actor import Actor
from fuelhub.services.profile import (
    create_user_service,
    read_user_by_login_service,
    resolve_actor_service,
)
from fuelhub.utils.security import create_access_token, decode_access_token, verify_password

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


async def authenticate_token(token: str, request) -> UserModel:
    """
    Проверяет JWT и возвращает пользователя.
    Используется и HTTP-зависимостями, и WebSocket-эндпоинтом.
    """
    log = request.app.state.log
    try:
        payload = decode_access_token(token, settings.AUTH_SECRET_KEY)
    except ExpiredSignatureError:
        await log.log_warning("auth", "Токен истёк")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except InvalidTokenError:
        await log.log_warning("auth", "Неверный токен")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token invalid")

    login = payload.get("sub")
    if login is None:
        await log.log_error("auth", "Токен не содержит login")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = await read_user_by_login_service(login, request)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)):
    """
    Пользователь по Bearer-токену.

    **Статусы:**
    - 401 Unauthorized – токен истёк, неверный или пользователь не найден
    """
    return await authenticate_token(token, request)


async def get_current_actor(request: Request, user=Depends(get_current_user)) -> Actor:
    """Actor (роль + id профиля) для сервисов заказов."""
    return await resolve_actor_service(user, request)


# ────────────── TOKEN ──────────────
@router.post(
    "/token",
    response_model=TokenResponse,
    summary="Получение JWT токена",
    responses={
        200: {"description": "Токен выдан"},
        401: {"description": "Неверный логин или пароль"},
        422: {"description": "Ошибка валидации входных данных"},
    },
)
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends()
):
    """
    Проверяет логин и пароль, возвращает JWT (`sub` = login, `role`) и данные пользователя.
    """
    log = request.app.state.log

    user = await read_user_by_login_service(form_data.username, request)
    if not user or not user.is_active or not verify_password(form_data.password, user.password):
        await log.log_warning("auth", "Неудачная попытка входа", {"username": form_data.username})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный логин или пароль",
            headers={"WWW-Authenticate": "Bearer"}
        )

    access_token = create_access_token(
        data={"sub": user.login, "role": user.role},
        secret_key=settings.AUTH_SECRET_KEY,
        expires_delta=timedelta(minutes=settings.AUTH_TOKEN_EXPIRE_MINUTES),
    )
    await log.log_info("auth", "Пользователь авторизован", {"id": user.id, "role": user.role})

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": UserResponse.model_validate(user),
    }


# ────────────── Регистрация ──────────────
@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Регистрация покупателя, продавца или водителя",
    responses={
        201: {"description": "Пользователь зарегистрирован"},
        409: {"description": "Логин уже занят"},
        422: {"description": "Ошибка валидации (в т.ч. попытка зарегистрировать admin)"},
    }
)
async def register_user(user: UserCreate, request: Request):
    return await create_user_service(user, request)


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Текущий пользователь",
)
async def read_me(user=Depends(get_current_user)):
    return user
