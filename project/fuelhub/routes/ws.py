# fuelhub/routes/ws.py

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from fuelhub.models.user import Role
from fuelhub.routes.auth import authenticate_token
from fuelhub.services.errors import OrderError
from fuelhub.services.order import OrderLifecycle
from fuelhub.services.profile import resolve_actor_service
from fuelhub.utils import database

router = APIRouter()


@router.websocket("/ws")
async def relay_socket(websocket: WebSocket, token: str = Query(...)):
    """
    Канал событий для клиентов.
    Сервер шлёт {"event": ..., "data": {...}}; клиент может прислать
    ping и (водитель) driver_location_update.
    """
    relay = websocket.app.state.relay
    log = websocket.app.state.log

    async with database.AsyncSessionLocal() as session:
        websocket.state.db = session
        try:
            user = await authenticate_token(token, websocket)
            actor = await resolve_actor_service(user, websocket)
        except HTTPException as e:
            await log.log_warning("relay", "WebSocket отклонён", {"detail": e.detail})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await relay.connect(user.id, websocket)
        lifecycle = OrderLifecycle(session, log, relay)
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    await websocket.send_json({"event": "error", "data": {"detail": "Malformed JSON message"}})
                    continue
                event = message.get("event") if isinstance(message, dict) else None

                if event == "ping":
                    await websocket.send_json({"event": "pong"})
                elif event == "driver_location_update" and actor.role == Role.DRIVER:
                    data = message.get("data") or {}
                    try:
                        await lifecycle.update_driver_location(
                            actor, int(data["orderId"]), float(data["latitude"]), float(data["longitude"]),
                        )
                    except OrderError as e:
                        await websocket.send_json({"event": "error", "data": e.to_dict()})
                    except (KeyError, TypeError, ValueError):
                        await websocket.send_json({"event": "error", "data": {"detail": "orderId, latitude and longitude are required"}})
                else:
                    await websocket.send_json({"event": "error", "data": {"detail": f"Unsupported event: {event}"}})
        except WebSocketDisconnect:
            pass
        finally:
            await relay.disconnect(user.id, websocket)
