# fuelhub/utils/db_service.py

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from fuelhub.services.errors import ConcurrencyError


@asynccontextmanager
async def transaction(db: AsyncSession):
    """
    Одна операция - одна транзакция: commit при успехе, rollback при любой ошибке.
    Проигравший гонку по version_id_col получает ConcurrencyError.
    """
    try:
        yield db
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConcurrencyError("Order was modified by another request, reload and retry")
    except BaseException:
        await db.rollback()
        raise
