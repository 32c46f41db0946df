# fuelhub/middleware/db_middleware.py

from fuelhub.utils import database


class DBSessionMiddleware:
    """Открывает AsyncSession на каждый HTTP-запрос и кладёт её в request.state.db."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        session = database.AsyncSessionLocal()
        state["db"] = session
        try:
            await self.app(scope, receive, send)
        finally:
            # незакоммиченные изменения (ошибка в обработчике) откатываются при закрытии
            await session.close()
