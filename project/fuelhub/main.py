# fuelhub/main.py

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
from dotenv import load_dotenv
from contextlib import asynccontextmanager

from fuelhub.utils.log import Log
from fuelhub.utils.database import init_db
from fuelhub.services.errors import OrderError
from fuelhub.services.notification import WebSocketRelay
from fuelhub.middleware.db_middleware import DBSessionMiddleware

import os
import multiprocessing

# --- загрузка переменных окружения ---
load_dotenv()

# --- sync логгер для раннего старта ---
boot_log = Log()
if os.environ.get("RUN_MAIN") == "true" or multiprocessing.current_process().name == "MainProcess":
    boot_log.log_info_sync(target="startup", message="Импорты main.py выполнены")


# ────────────── Lifespan ──────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    boot_log.log_info_sync(target="startup", message="lifespan: startup начат")

    # Инициализация БД
    admin_created = await init_db()
    boot_log.log_info_sync(target="startup", message="База инициализирована", data={"admin_created": admin_created})

    app.state.log = Log()
    await app.state.log.log_info(target="startup", message="Async Log инициализирован")

    app.state.relay = WebSocketRelay(app.state.log)
    await app.state.log.log_info(target="startup", message="WebSocket relay добавлен в app.state")

    yield

    # shutdown
    await app.state.log.log_info(target="shutdown", message="Остановка приложения")
    await app.state.log.shutdown()
    boot_log.log_info_sync(target="shutdown", message="Log корректно завершён")


# ────────────── Создаём FastAPI приложение ──────────────
app = FastAPI(title="FuelHub Order API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# DB middleware для request.state.db
app.add_middleware(DBSessionMiddleware)


# ────────────── Ошибки заказов ──────────────
@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
def read_root():
    return {"message": "FuelHub order service"}


# ────────────── Подключение роутов ──────────────
from fuelhub.routes import auth, vendor, driver, order, ws

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(vendor.router, prefix="/vendors", tags=["vendors"])
app.include_router(driver.router, prefix="/drivers", tags=["drivers"])
app.include_router(order.router, prefix="/orders", tags=["orders"])
app.include_router(ws.router, tags=["relay"])

# ────────────── Запуск uvicorn ──────────────
if __name__ == "__main__":
    boot_log.log_info_sync(target="startup", message="Запуск uvicorn.run")
    uvicorn.run(
        "fuelhub.main:app",
        host="127.0.0.1",
        port=8000,
        log_level="info",
        reload=True
    )
