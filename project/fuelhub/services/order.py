# fuelhub/services/order.py

import math
from datetime import timedelta
from uuid import uuid4

from fastapi import Request
from sqlalchemy import String, cast, func, or_, select

from fuelhub.models.driver import Driver, DriverStatus
from fuelhub.models.order import Order, OrderItem, OrderStatus, Payment, PaymentMethod, PaymentStatus
from fuelhub.models.user import Role, User
from fuelhub.models.vendor import Product, ProductStatus, Vendor, VerificationStatus
from fuelhub.schemas.order import OrderFilter, OrderPage, OrderResponse
from fuelhub.services import notification as events
from fuelhub.services.actor import Actor
from fuelhub.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    PaymentMismatchError,
    PermissionDeniedError,
    ValidationError,
)
from fuelhub.services.lifecycle import assert_transition, parse_status
from fuelhub.services.notification import OrderEvent
from fuelhub.services.pricing import Quote, check_quantity, merge_items, price_order
from fuelhub.utils.database import utcnow
from fuelhub.utils.db_service import transaction

MIN_QUANTITY = 0.1

PRE_ASSIGNMENT_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

DATE_RANGES = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

INTERVENTION_ACTIONS = ("force_cancel", "force_confirm", "assign_driver", "update_status", "refund")


class OrderLifecycle:
    """
    Жизненный цикл заказа: создание и расчёт, смена статуса, назначение
    водителя, подтверждение оплаты наличными, выборки.

    Каждая изменяющая операция выполняется одной транзакцией; уведомления
    публикуются только после commit и не влияют на результат операции.
    """

    def __init__(self, db, log, relay=None):
        self.db = db
        self.log = log
        self.relay = relay

    @classmethod
    def from_request(cls, request: Request) -> "OrderLifecycle":
        return cls(
            request.state.db,
            request.app.state.log,
            getattr(request.app.state, "relay", None),
        )

    # ==========================================================
    # ВСПОМОГАТЕЛЬНЫЕ МЕТОДЫ
    # ==========================================================
    @staticmethod
    def _require_role(actor: Actor, *roles: Role):
        if actor.role not in roles:
            raise PermissionDeniedError(f"Action not allowed for role {Role(actor.role).value}")

    @staticmethod
    def _check_visible(actor: Actor, order: Order):
        """Чужой заказ для роли не существует: 404, а не 403."""
        owner = {
            Role.CUSTOMER: order.customer_id,
            Role.VENDOR: order.vendor_id,
            Role.DRIVER: order.driver_id,
        }
        if actor.role != Role.ADMIN and owner.get(actor.role) != actor.id:
            raise NotFoundError("Order not found")

    async def _load_order(self, order_id: int, for_update: bool = False) -> Order:
        query = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    async def _load_vendor(self, vendor_id: int) -> Vendor:
        vendor = await self.db.get(Vendor, vendor_id)
        if (
            vendor is None
            or not vendor.is_active
            or vendor.verification_status != VerificationStatus.VERIFIED
        ):
            raise NotFoundError("Vendor not found or not available")
        return vendor

    async def _load_products(self, vendor: Vendor, product_ids: list[int], for_update: bool = False) -> dict[int, Product]:
        query = select(Product).where(
            Product.id.in_(product_ids),
            Product.vendor_id == vendor.id,
            Product.status == ProductStatus.AVAILABLE.value,
        ).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        products = {p.id: p for p in result.scalars().all()}

        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise NotFoundError(
                f"Product {missing[0]} not found or unavailable",
                [{"field": "items", "product_id": pid} for pid in missing],
            )
        return products

    @staticmethod
    def _merge_items(items) -> list[tuple[int, float]]:
        if not items:
            raise ValidationError.field("items", "At least one order item is required")
        # каждая строка корзины отдельно: отрицательная строка не прячется в сумме по товару
        errors = [
            {"field": "items", "product_id": item.product_id, "message": f"Quantity must be at least {MIN_QUANTITY}"}
            for item in items if float(item.quantity) < MIN_QUANTITY
        ]
        if errors:
            raise ValidationError("Invalid item quantity", errors)
        return merge_items(items)

    async def _quote(self, vendor_id: int, items, for_update: bool = False) -> tuple[Vendor, dict[int, Product], list, Quote]:
        merged = self._merge_items(items)
        vendor = await self._load_vendor(vendor_id)
        products = await self._load_products(vendor, [pid for pid, _ in merged], for_update)
        return vendor, products, merged, price_order(vendor, products, merged)

    async def _release_driver(self, order: Order, completed: bool = False):
        if order.driver_id is None:
            return
        driver = await self.db.get(Driver, order.driver_id, populate_existing=True, with_for_update=True)
        if driver is None:
            return
        if driver.active_order_id == order.id:
            driver.status = DriverStatus.AVAILABLE.value
            driver.active_order_id = None
        if completed:
            driver.total_deliveries = (driver.total_deliveries or 0) + 1

    async def _restore_stock(self, order: Order):
        for item in order.items:
            product = await self.db.get(Product, item.product_id, populate_existing=True, with_for_update=True)
            if product is None:
                continue
            product.available_qty = round(product.available_qty + item.quantity, 3)
            if product.status == ProductStatus.OUT_OF_STOCK and product.available_qty > 0:
                product.status = ProductStatus.AVAILABLE.value

    async def _apply_status(self, order: Order, status: OrderStatus, notes: str | None = None):
        now = utcnow()
        if status == OrderStatus.DELIVERED:
            order.delivered_at = now
            await self._release_driver(order, completed=True)
        elif status == OrderStatus.CANCELLED:
            order.cancellation_reason = notes
            await self._restore_stock(order)
            await self._release_driver(order)
        elif status in PRE_ASSIGNMENT_STATUSES and order.driver_id is not None:
            # откат админом до preparing: назначение водителя больше не действует
            await self._release_driver(order)
            order.driver_id = None
        order.status = status.value
        order.updated_at = now

    @staticmethod
    def _parties(order: Order) -> list[int]:
        """Пользователи, которым интересен заказ: покупатель, продавец, водитель."""
        recipients = [order.customer_id]
        if order.vendor is not None:
            recipients.append(order.vendor.user_id)
        if order.driver is not None:
            recipients.append(order.driver.user_id)
        return recipients

    async def _publish(self, *order_events: OrderEvent):
        """Best-effort: ошибка relay логируется и не отменяет уже выполненную операцию."""
        if self.relay is None:
            return
        for event in order_events:
            try:
                await self.relay.publish(event)
            except Exception as e:
                await self.log.log_error("relay", f"Не удалось опубликовать событие: {e}", {"event": event.name})

    def _status_event(self, order: Order, previous: str | None = None) -> OrderEvent:
        payload = {"orderId": order.id, "status": order.status}
        if previous is not None:
            payload["previousStatus"] = previous
        return OrderEvent(events.ORDER_STATUS_UPDATED, self._parties(order), payload)

    # ==========================================================
    # СОЗДАНИЕ И РАСЧЁТ
    # ==========================================================
    async def get_order_summary(self, vendor_id: int, items) -> Quote:
        """Предпросмотр стоимости без сохранения. Минимальную сумму не проверяет, только сообщает."""
        _, _, _, quote = await self._quote(vendor_id, items)
        return quote

    async def create_order(
        self,
        actor: Actor,
        vendor_id: int,
        items,
        delivery_address,
        phone_number: str | None,
        payment_method,
        special_instructions: str | None = None,
    ) -> Order:
        self._require_role(actor, Role.CUSTOMER)
        try:
            method = PaymentMethod(str(getattr(payment_method, "value", payment_method)).lower())
        except ValueError:
            raise ValidationError.field("payment_method", "Valid payment method is required (cash, card, transfer)")

        address = delivery_address.model_dump() if hasattr(delivery_address, "model_dump") else dict(delivery_address or {})
        if not address.get("city") or not address.get("state"):
            raise ValidationError.field("delivery_address", "City and state are required")

        async with transaction(self.db):
            vendor, products, merged, quote = await self._quote(vendor_id, items, for_update=True)

            errors = []
            for pid, qty in merged:
                message = check_quantity(products[pid], qty)
                if message:
                    errors.append({"field": "items", "product_id": pid, "message": message})
            if errors:
                raise ValidationError(errors[0]["message"], errors)

            if not quote.meets_minimum:
                raise ValidationError.field("items", f"Minimum order amount is {vendor.minimum_order}")

            now = utcnow()
            order = Order(
                customer_id=actor.id,
                vendor_id=vendor.id,
                status=OrderStatus.PENDING.value,
                subtotal=quote.subtotal,
                delivery_fee=quote.delivery_fee,
                total_amount=quote.total,
                delivery_address=address,
                phone_number=phone_number,
                special_instructions=special_instructions,
                payment_method=method.value,
                payment_status=PaymentStatus.PENDING.value,
                created_at=now,
                updated_at=now,
                items=[
                    OrderItem(
                        product_id=line.product_id,
                        product_name=line.product_name,
                        unit=line.unit,
                        price_per_unit=line.price_per_unit,
                        quantity=line.quantity,
                        total_price=line.total_price,
                    )
                    for line in quote.lines
                ],
            )
            self.db.add(order)

            # резервируем остаток в той же транзакции
            for pid, qty in merged:
                product = products[pid]
                product.available_qty = round(product.available_qty - qty, 3)
                if product.available_qty <= 0:
                    product.available_qty = 0.0
                    product.status = ProductStatus.OUT_OF_STOCK.value

            if phone_number:
                customer = await self.db.get(User, actor.id)
                if customer is not None:
                    customer.phone = phone_number

        order = await self._load_order(order.id)
        await self.log.log_info("order", "Заказ создан", {
            "id": order.id, "customer_id": actor.id, "vendor_id": vendor_id, "total": order.total_amount,
        })
        await self._publish(
            self._status_event(order),
            OrderEvent(events.NOTIFICATION_RECEIVED, [order.vendor.user_id], {
                "orderId": order.id,
                "type": "new_order",
                "title": "New order",
                "message": f"New order #{order.id} for {order.total_amount}",
            }),
        )
        return order

    # ==========================================================
    # СТАТУСЫ
    # ==========================================================
    async def update_order_status(self, actor: Actor, order_id: int, new_status, notes: str | None = None) -> Order:
        requested = parse_status(new_status)
        if requested is None:
            raise ValidationError.field("status", f"Unknown order status: {new_status}")

        async with transaction(self.db):
            order = await self._load_order(order_id, for_update=True)
            self._check_visible(actor, order)
            previous = order.status
            assert_transition(previous, requested, actor.role)
            await self._apply_status(order, requested, notes)

        order = await self._load_order(order_id)
        await self.log.log_info("order", "Статус заказа изменён", {
            "id": order.id, "from": previous, "to": order.status, "role": Role(actor.role).value, "actor": actor.id,
        })
        await self._publish(self._status_event(order, previous))
        return order

    async def cancel_order(self, actor: Actor, order_id: int, reason: str | None = None) -> Order:
        return await self.update_order_status(actor, order_id, OrderStatus.CANCELLED, reason)

    async def complete_delivery(self, actor: Actor, order_id: int) -> Order:
        self._require_role(actor, Role.DRIVER, Role.VENDOR, Role.ADMIN)
        return await self.update_order_status(actor, order_id, OrderStatus.DELIVERED)

    # ==========================================================
    # ВОДИТЕЛЬ
    # ==========================================================
    async def assign_driver(self, actor: Actor, order_id: int, driver_id: int) -> Order:
        """
        Назначает водителя заказу в статусе preparing. Статус заказа не меняется.
        Повторное назначение того же водителя ничего не делает.
        """
        self._require_role(actor, Role.VENDOR, Role.ADMIN)

        async with transaction(self.db):
            order = await self._load_order(order_id, for_update=True)
            self._check_visible(actor, order)

            if order.status != OrderStatus.PREPARING:
                raise InvalidTransitionError(
                    order.status, order.status, Role(actor.role).value,
                    detail=f"Driver can only be assigned while order is preparing (current: {order.status})",
                )

            driver = await self.db.get(Driver, driver_id, populate_existing=True, with_for_update=True)
            if driver is None or driver.vendor_id != order.vendor_id:
                raise NotFoundError("Driver not found")

            if order.driver_id == driver.id:
                return order

            if driver.status != DriverStatus.AVAILABLE:
                raise ValidationError.field("driver_id", f"Driver is not available (status: {driver.status})")

            previous_driver_id = order.driver_id
            await self._release_driver(order)

            driver.status = DriverStatus.BUSY.value
            driver.active_order_id = order.id
            order.driver_id = driver.id
            order.updated_at = utcnow()

        order = await self._load_order(order_id)
        await self.log.log_info("order", "Водитель назначен", {
            "id": order.id, "driver_id": driver_id, "previous_driver_id": previous_driver_id,
        })
        await self._publish(
            OrderEvent(events.DELIVERY_UPDATED, [order.customer_id, order.vendor.user_id], {
                "orderId": order.id, "driverId": driver_id, "status": order.status,
            }),
            OrderEvent(events.NOTIFICATION_RECEIVED, [order.driver.user_id], {
                "orderId": order.id,
                "type": "delivery_assigned",
                "title": "New delivery",
                "message": f"You have been assigned order #{order.id}",
            }),
        )
        return order

    async def update_driver_location(self, actor: Actor, order_id: int, latitude: float, longitude: float) -> Driver:
        self._require_role(actor, Role.DRIVER)
        if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
            raise ValidationError.field("location", "Valid latitude and longitude are required")

        async with transaction(self.db):
            order = await self._load_order(order_id)
            self._check_visible(actor, order)
            if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
                raise InvalidTransitionError(order.status, order.status, Role.DRIVER.value,
                                             detail="Order is already closed")
            driver = await self.db.get(Driver, actor.id, populate_existing=True)
            driver.latitude = latitude
            driver.longitude = longitude
            driver.location_updated_at = utcnow()

        await self._publish(OrderEvent(events.DRIVER_LOCATION_UPDATED, [order.customer_id, order.vendor.user_id], {
            "driverId": driver.id,
            "orderId": order.id,
            "location": {"lat": latitude, "lng": longitude},
        }))
        return driver

    # ==========================================================
    # ОПЛАТА
    # ==========================================================
    async def confirm_payment(self, actor: Actor, order_id: int, amount_received: float, method: str = "CASH") -> Order:
        """
        Подтверждение оплаты наличными при доставке.
        Сумма должна точно совпасть с total_amount, иначе PaymentMismatchError и заказ не меняется.
        """
        self._require_role(actor, Role.DRIVER, Role.VENDOR, Role.ADMIN)
        if str(getattr(method, "value", method)).lower() != PaymentMethod.CASH.value:
            raise ValidationError.field("method", "Only cash payments can be confirmed manually")

        async with transaction(self.db):
            order = await self._load_order(order_id, for_update=True)
            self._check_visible(actor, order)

            if order.status == OrderStatus.CANCELLED:
                raise InvalidTransitionError(order.status, order.status, Role(actor.role).value,
                                             detail="Cannot confirm payment for a cancelled order")
            if order.payment_method != PaymentMethod.CASH:
                raise ValidationError.field("payment_method", "Order is not cash on delivery")
            if order.payment_status == PaymentStatus.COMPLETED:
                raise ValidationError.field("payment_status", "Payment already completed")

            received = round(float(amount_received), 2)
            if received != round(order.total_amount, 2):
                raise PaymentMismatchError(order.total_amount, received)

            order.payment_status = PaymentStatus.COMPLETED.value
            order.updated_at = utcnow()
            self.db.add(Payment(
                order_id=order.id,
                amount=received,
                method=PaymentMethod.CASH.value,
                status="success",
                transaction_ref=f"COD-{order.id}-{uuid4().hex[:12].upper()}",
                received_by=actor.user_id,
            ))

        order = await self._load_order(order_id)
        await self.log.log_info("order", "Оплата наличными подтверждена", {
            "id": order.id, "amount": received, "actor": actor.user_id,
        })
        await self._publish(OrderEvent(events.PAYMENT_UPDATED, self._parties(order), {
            "orderId": order.id, "status": order.payment_status,
        }))
        return order

    async def refund_payment(self, actor: Actor, order_id: int) -> Order:
        self._require_role(actor, Role.ADMIN)

        async with transaction(self.db):
            order = await self._load_order(order_id, for_update=True)
            if order.payment_status != PaymentStatus.COMPLETED:
                raise ValidationError.field("payment_status", "Only completed payments can be refunded")
            order.payment_status = PaymentStatus.REFUNDED.value
            order.updated_at = utcnow()
            self.db.add(Payment(
                order_id=order.id,
                amount=order.total_amount,
                method=order.payment_method,
                status="refunded",
                transaction_ref=f"REF-{order.id}-{uuid4().hex[:12].upper()}",
                received_by=actor.user_id,
            ))

        order = await self._load_order(order_id)
        await self.log.log_info("order", "Оплата возвращена", {"id": order.id, "amount": order.total_amount})
        await self._publish(OrderEvent(events.PAYMENT_UPDATED, self._parties(order), {
            "orderId": order.id, "status": order.payment_status,
        }))
        return order

    # ==========================================================
    # АДМИНИСТРАТОР
    # ==========================================================
    async def admin_intervention(
        self,
        actor: Actor,
        order_id: int,
        action: str,
        reason: str,
        new_status=None,
        driver_id: int | None = None,
    ) -> Order:
        self._require_role(actor, Role.ADMIN)
        if action not in INTERVENTION_ACTIONS:
            raise ValidationError.field("action", f"Unknown admin action: {action}")
        if not reason or not (10 <= len(reason) <= 500):
            raise ValidationError.field("reason", "Reason must be 10 to 500 characters")

        if action == "force_cancel":
            order = await self.update_order_status(actor, order_id, OrderStatus.CANCELLED, reason)
        elif action == "force_confirm":
            order = await self.update_order_status(actor, order_id, OrderStatus.CONFIRMED, reason)
        elif action == "update_status":
            if new_status is None:
                raise ValidationError.field("new_status", "New status required")
            order = await self.update_order_status(actor, order_id, new_status, reason)
        elif action == "assign_driver":
            if driver_id is None:
                raise ValidationError.field("driver_id", "Driver ID required")
            order = await self.assign_driver(actor, order_id, driver_id)
        else:
            order = await self.refund_payment(actor, order_id)

        await self.log.log_warning("order", "Вмешательство администратора", {
            "id": order_id, "action": action, "reason": reason, "admin": actor.user_id,
        })
        await self._publish(OrderEvent(events.NOTIFICATION_RECEIVED, [order.customer_id], {
            "orderId": order.id,
            "type": "admin_intervention",
            "title": "Admin Intervention",
            "message": f"Admin performed action: {action}. Reason: {reason}",
        }))
        return order

    async def get_order_analytics(self, actor: Actor) -> dict:
        self._require_role(actor, Role.ADMIN)
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        week_start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)

        delivered = Order.status == OrderStatus.DELIVERED.value
        revenue = func.coalesce(func.sum(Order.total_amount), 0.0)
        row = (await self.db.execute(select(
            func.count(Order.id),
            func.count(Order.id).filter(Order.status == OrderStatus.PENDING.value),
            func.count(Order.id).filter(delivered),
            func.count(Order.id).filter(Order.status == OrderStatus.CANCELLED.value),
            func.count(Order.id).filter(Order.created_at >= month_start),
            func.count(Order.id).filter(Order.created_at >= week_start),
        ))).one()
        revenues = [
            (await self.db.execute(select(revenue).where(delivered, *extra))).scalar_one()
            for extra in ((), (Order.created_at >= month_start,), (Order.created_at >= week_start,))
        ]
        return {
            "total_orders": row[0],
            "pending_orders": row[1],
            "completed_orders": row[2],
            "cancelled_orders": row[3],
            "monthly_orders": row[4],
            "weekly_orders": row[5],
            "total_revenue": round(float(revenues[0]), 2),
            "monthly_revenue": round(float(revenues[1]), 2),
            "weekly_revenue": round(float(revenues[2]), 2),
        }

    # ==========================================================
    # ВЫБОРКИ
    # ==========================================================
    async def get_order(self, actor: Actor, order_id: int) -> Order:
        order = await self._load_order(order_id)
        self._check_visible(actor, order)
        return order

    async def _list(self, conditions: list, filters: OrderFilter | None, search_vendor: bool) -> OrderPage:
        filters = filters or OrderFilter()
        query = (
            select(Order)
            .join(User, Order.customer_id == User.id)
            .join(Vendor, Order.vendor_id == Vendor.id)
            .where(*conditions)
        )

        if filters.status != "all":
            query = query.where(Order.status == OrderStatus(filters.status).value)

        if filters.date_range == "today":
            query = query.where(Order.created_at >= utcnow().replace(hour=0, minute=0, second=0, microsecond=0))
        elif filters.date_range in DATE_RANGES:
            query = query.where(Order.created_at >= utcnow() - DATE_RANGES[filters.date_range])

        search = (filters.search or "").strip().lower()
        if search:
            term = f"%{search}%"
            matches = [
                cast(Order.id, String).like(term),
                func.lower(User.name).like(term),
                User.phone.like(term),
                Order.phone_number.like(term),
            ]
            if search_vendor:
                matches.append(func.lower(Vendor.business_name).like(term))
            query = query.where(or_(*matches))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await self.db.execute(
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .execution_options(populate_existing=True)
        )
        orders = result.scalars().all()

        return OrderPage(
            items=[OrderResponse.from_order(o) for o in orders],
            page=filters.page,
            limit=filters.limit,
            total=total,
            pages=math.ceil(total / filters.limit) if total else 0,
        )

    async def get_customer_orders(self, actor: Actor, filters: OrderFilter | None = None) -> OrderPage:
        self._require_role(actor, Role.CUSTOMER)
        return await self._list([Order.customer_id == actor.id], filters, search_vendor=True)

    async def get_vendor_orders(self, actor: Actor, filters: OrderFilter | None = None) -> OrderPage:
        self._require_role(actor, Role.VENDOR)
        return await self._list([Order.vendor_id == actor.id], filters, search_vendor=False)

    async def get_driver_orders(self, actor: Actor, filters: OrderFilter | None = None) -> OrderPage:
        self._require_role(actor, Role.DRIVER)
        return await self._list([Order.driver_id == actor.id], filters, search_vendor=False)

    async def get_all_orders(self, actor: Actor, filters: OrderFilter | None = None) -> OrderPage:
        if not actor.is_admin:
            raise PermissionDeniedError("Admin access required")
        return await self._list([], filters, search_vendor=True)
