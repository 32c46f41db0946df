# fuelhub/routes/order.py

from fastapi import APIRouter, Depends, Query, Request, status
from typing import Literal, Optional

from fuelhub.config import settings
from fuelhub.schemas.order import (
    AssignDriverRequest,
    CancelRequest,
    ConfirmPaymentRequest,
    InterventionRequest,
    LocationUpdate,
    OrderAnalytics,
    OrderCreate,
    OrderFilter,
    OrderPage,
    OrderResponse,
    OrderSummaryLine,
    OrderSummaryRequest,
    OrderSummaryResponse,
    StatusUpdate,
)
from fuelhub.services.actor import Actor
from fuelhub.services.order import OrderLifecycle
from fuelhub.routes.auth import get_current_actor

router = APIRouter()

ERRORS = {
    400: {"description": "Неверные данные заказа"},
    401: {"description": "Некорректный пользователь или токен"},
    403: {"description": "Действие недоступно для роли"},
    404: {"description": "Заказ не найден"},
    409: {"description": "Недопустимый переход статуса или конфликт"},
}


def order_filter(
    status: Literal["all", "pending", "confirmed", "preparing", "out_for_delivery", "delivered", "cancelled"] = Query("all"),
    date_range: Literal["today", "week", "month", "year", "all"] = Query("all"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
) -> OrderFilter:
    return OrderFilter(status=status, date_range=date_range, search=search, page=page, limit=limit)


async def run(request: Request, action: str, data: dict, coro):
    """Выполняет операцию сервиса; ошибка логируется и пробрасывается в обработчик приложения."""
    try:
        return await coro
    except Exception as e:
        await request.app.state.log.log_error("order", f"Ошибка: {action}: {e}", data)
        raise


# ────────────── CREATE ──────────────
@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Создать заказ",
    responses={201: {"description": "Заказ создан"}, **ERRORS},
)
async def create_order(request: Request, payload: OrderCreate, actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    order = await run(request, "создание заказа", {"vendor_id": payload.vendor_id}, lifecycle.create_order(
        actor,
        payload.vendor_id,
        payload.items,
        payload.delivery_address,
        payload.phone_number,
        payload.payment_method,
        payload.special_instructions,
    ))
    return OrderResponse.from_order(order)


@router.post(
    "/summary",
    response_model=OrderSummaryResponse,
    summary="Предварительный расчёт стоимости",
    responses=ERRORS,
)
async def order_summary(request: Request, payload: OrderSummaryRequest, _: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    quote = await run(request, "расчёт заказа", {"vendor_id": payload.vendor_id},
                      lifecycle.get_order_summary(payload.vendor_id, payload.items))
    return OrderSummaryResponse(
        items=[OrderSummaryLine.model_validate(line) for line in quote.lines],
        subtotal=quote.subtotal,
        delivery_fee=quote.delivery_fee,
        total=quote.total,
        minimum_order=quote.minimum_order,
        meets_minimum=quote.meets_minimum,
    )


# ────────────── READ LISTS ──────────────
@router.get("/customer", response_model=OrderPage, summary="Заказы покупателя", responses=ERRORS)
async def customer_orders(request: Request, filters: OrderFilter = Depends(order_filter),
                          actor: Actor = Depends(get_current_actor)):
    return await OrderLifecycle.from_request(request).get_customer_orders(actor, filters)


@router.get("/vendor", response_model=OrderPage, summary="Заказы продавца", responses=ERRORS)
async def vendor_orders(request: Request, filters: OrderFilter = Depends(order_filter),
                        actor: Actor = Depends(get_current_actor)):
    return await OrderLifecycle.from_request(request).get_vendor_orders(actor, filters)


@router.get("/driver", response_model=OrderPage, summary="Доставки водителя", responses=ERRORS)
async def driver_orders(request: Request, filters: OrderFilter = Depends(order_filter),
                        actor: Actor = Depends(get_current_actor)):
    return await OrderLifecycle.from_request(request).get_driver_orders(actor, filters)


@router.get("/admin/all", response_model=OrderPage, summary="Все заказы (админ)", responses=ERRORS)
async def all_orders(request: Request, filters: OrderFilter = Depends(order_filter),
                     actor: Actor = Depends(get_current_actor)):
    return await OrderLifecycle.from_request(request).get_all_orders(actor, filters)


@router.get("/admin/analytics", response_model=OrderAnalytics, summary="Статистика заказов (админ)", responses=ERRORS)
async def order_analytics(request: Request, actor: Actor = Depends(get_current_actor)):
    return await OrderLifecycle.from_request(request).get_order_analytics(actor)


# ────────────── READ ONE ──────────────
@router.get("/{id}", response_model=OrderResponse, summary="Получить заказ по ID", responses=ERRORS)
async def read_order(id: int, request: Request, actor: Actor = Depends(get_current_actor)):
    order = await OrderLifecycle.from_request(request).get_order(actor, id)
    return OrderResponse.from_order(order)


# ────────────── STATUS ──────────────
@router.patch("/{id}/status", response_model=OrderResponse, summary="Сменить статус заказа", responses=ERRORS)
async def update_status(id: int, payload: StatusUpdate, request: Request, actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    order = await run(request, "смена статуса", {"id": id, "status": payload.status},
                      lifecycle.update_order_status(actor, id, payload.status, payload.notes))
    return OrderResponse.from_order(order)


@router.patch("/{id}/cancel", response_model=OrderResponse, summary="Отменить заказ (покупатель)", responses=ERRORS)
async def cancel_order(id: int, request: Request, payload: Optional[CancelRequest] = None,
                       actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    reason = payload.reason if payload else None
    order = await run(request, "отмена заказа", {"id": id}, lifecycle.cancel_order(actor, id, reason))
    return OrderResponse.from_order(order)


@router.patch("/{id}/complete-delivery", response_model=OrderResponse, summary="Завершить доставку", responses=ERRORS)
async def complete_delivery(id: int, request: Request, actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    order = await run(request, "завершение доставки", {"id": id}, lifecycle.complete_delivery(actor, id))
    return OrderResponse.from_order(order)


# ────────────── DRIVER ──────────────
@router.patch("/{id}/assign-driver", response_model=OrderResponse, summary="Назначить водителя", responses=ERRORS)
async def assign_driver(id: int, payload: AssignDriverRequest, request: Request,
                        actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    order = await run(request, "назначение водителя", {"id": id, "driver_id": payload.driver_id},
                      lifecycle.assign_driver(actor, id, payload.driver_id))
    return OrderResponse.from_order(order)


@router.patch("/{id}/location", summary="Обновить местоположение водителя", responses=ERRORS)
async def update_location(id: int, payload: LocationUpdate, request: Request,
                          actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    await run(request, "обновление местоположения", {"id": id},
              lifecycle.update_driver_location(actor, id, payload.latitude, payload.longitude))
    return {"message": "Location updated successfully"}


# ────────────── PAYMENT ──────────────
@router.patch("/{id}/confirm-payment", response_model=OrderResponse, summary="Подтвердить оплату наличными",
              responses=ERRORS)
async def confirm_payment(id: int, payload: ConfirmPaymentRequest, request: Request,
                          actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    order = await run(request, "подтверждение оплаты", {"id": id, "amount": payload.amount_received},
                      lifecycle.confirm_payment(actor, id, payload.amount_received, payload.method))
    return OrderResponse.from_order(order)


# ────────────── ADMIN ──────────────
@router.patch("/{id}/intervene", response_model=OrderResponse, summary="Вмешательство администратора",
              responses=ERRORS)
async def intervene(id: int, payload: InterventionRequest, request: Request,
                    actor: Actor = Depends(get_current_actor)):
    lifecycle = OrderLifecycle.from_request(request)
    order = await run(request, "вмешательство администратора", {"id": id, "action": payload.action},
                      lifecycle.admin_intervention(actor, id, payload.action, payload.reason,
                                                   payload.new_status, payload.driver_id))
    return OrderResponse.from_order(order)
