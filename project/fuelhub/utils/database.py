# fuelhub/utils/database.py

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.future import select
from fuelhub.config import settings
from fuelhub.utils.security import hash_password

# ────────────── Base для моделей ──────────────
Base = declarative_base()


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (одинаково для SQLite и Postgres)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ────────────── Асинхронный движок ──────────────
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False
)

# ────────────── Асинхронная сессия ──────────────
# expire_on_commit=False: объекты остаются читаемыми после commit без ленивых запросов
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)


# ────────────── Инициализация базы данных ──────────────
async def init_db():
    """
    Создаёт все таблицы (если ещё не созданы) и гарантирует наличие администратора.
        - Если ни одного пользователя с ролью admin нет, создаётся
          ADMIN_LOGIN / ADMIN_PASSWORD из настроек.
    Возвращает True, если администратор был создан.
    """
    # регистрируем модели в metadata
    from fuelhub.models import user, vendor, driver, order  # noqa: F401
    from fuelhub.models.user import User, Role

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.role == Role.ADMIN.value))
        if result.scalars().first() is not None:
            return False

        session.add(User(
            name="Administrator",
            login=settings.ADMIN_LOGIN,
            password=hash_password(settings.ADMIN_PASSWORD),
            role=Role.ADMIN.value,
        ))
        await session.commit()
        return True


async def drop_db():
    """Удаляет все таблицы (используется тестами)."""
    from fuelhub.models import user, vendor, driver, order  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
