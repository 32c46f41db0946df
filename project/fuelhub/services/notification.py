# fuelhub/services/notification.py

"""
Исходящий канал уведомлений (relay).

Сервис заказов публикует факты ("статус изменился") через NotificationSink
уже после commit. Доставка best-effort, at-most-once: без подтверждений и
повторов, ошибка доставки не откатывает изменение заказа.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from fastapi import WebSocket

ORDER_STATUS_UPDATED = "order_status_updated"
DELIVERY_UPDATED = "delivery_updated"
NOTIFICATION_RECEIVED = "notification_received"
DRIVER_LOCATION_UPDATED = "driver_location_updated"
PAYMENT_UPDATED = "payment_updated"


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class OrderEvent:
    name: str
    recipients: list[int]                       # id пользователей
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.recipients = sorted({r for r in self.recipients if r is not None})
        self.payload.setdefault("timestamp", timestamp())

    def message(self) -> dict:
        return {"event": self.name, "data": self.payload}


class NotificationSink(Protocol):
    async def publish(self, event: OrderEvent) -> None:
        ...


class RecordingSink:
    """Хранит события в памяти (тесты, запуск без WebSocket)."""

    def __init__(self):
        self.events: list[OrderEvent] = []

    async def publish(self, event: OrderEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[OrderEvent]:
        return [e for e in self.events if e.name == name]

    def clear(self):
        self.events.clear()


class WebSocketRelay:
    """
    Рассылка событий подключённым WebSocket-клиентам.
    Один пользователь может держать несколько соединений (вкладки, приложения).
    """

    def __init__(self, log=None):
        self.log = log
        self.connections: dict[int, set[WebSocket]] = {}

    async def connect(self, user_id: int, websocket: WebSocket):
        await websocket.accept()
        self.connections.setdefault(user_id, set()).add(websocket)
        if self.log:
            await self.log.log_info("relay", "Клиент подключён", {"user_id": user_id})

    async def disconnect(self, user_id: int, websocket: WebSocket):
        sockets = self.connections.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            self.connections.pop(user_id, None)
        if self.log:
            await self.log.log_info("relay", "Клиент отключён", {"user_id": user_id})

    def is_connected(self, user_id: int) -> bool:
        return bool(self.connections.get(user_id))

    async def publish(self, event: OrderEvent) -> None:
        text = json.dumps(event.message(), default=str)
        for user_id in event.recipients:
            for websocket in list(self.connections.get(user_id, ())):
                try:
                    await websocket.send_text(text)
                except Exception as e:
                    # соединение умерло: убираем его, событие для него теряется
                    if self.log:
                        await self.log.log_warning(
                            "relay", f"Не удалось отправить событие: {e}",
                            {"event": event.name, "user_id": user_id},
                        )
                    await self.disconnect(user_id, websocket)
