# tests/test_order_service.py

import asyncio

import pytest
from sqlalchemy import select

from fuelhub.models.driver import Driver
from fuelhub.models.order import Order
from fuelhub.models.vendor import Product
from fuelhub.schemas.order import OrderFilter
from fuelhub.services import notification as events
from fuelhub.services.errors import (
    ConcurrencyError,
    InvalidTransitionError,
    NotFoundError,
    PaymentMismatchError,
    PermissionDeniedError,
    ValidationError,
)
from fuelhub.services.order import OrderLifecycle
from fuelhub.utils import database
from fuelhub.utils.db_service import transaction


async def stock(db, product_id):
    return (await db.execute(select(Product.available_qty).where(Product.id == product_id))).scalar_one()


async def fresh_driver(db, driver_id):
    return await db.get(Driver, driver_id, populate_existing=True)


# ────────────── Создание ──────────────
async def test_create_reserves_stock_and_notifies_vendor(db, world, sink, place_order):
    order = await place_order()

    assert await stock(db, world.diesel_id) == 980.0
    created = sink.named(events.ORDER_STATUS_UPDATED)[0]
    assert created.payload["status"] == "pending"
    assert world.customer.user_id in created.recipients
    assert world.vendor.user_id in created.recipients

    notice = sink.named(events.NOTIFICATION_RECEIVED)[0]
    assert notice.recipients == [world.vendor.user_id]
    assert notice.payload["orderId"] == order.id


async def test_stock_exhaustion_marks_product_out_of_stock(db, world, place_order):
    await place_order((world.petrol_id, 40))
    with pytest.raises(ValidationError):
        await place_order((world.petrol_id, 20))

    product = await db.get(Product, world.petrol_id, populate_existing=True)
    assert product.available_qty == 10.0
    assert product.status == "available"


async def test_only_customers_create_orders(place_order, world):
    with pytest.raises(PermissionDeniedError):
        await place_order(actor=world.vendor)


# ────────────── Статусы ──────────────
async def test_preparing_to_out_for_delivery_emits_event(lifecycle, world, sink, place_order, advance):
    order = await place_order()
    order_id = order.id
    before = (await advance(order_id, "preparing")).updated_at
    sink.clear()

    order = await lifecycle.update_order_status(world.vendor, order_id, "out_for_delivery")

    assert order.status == "out_for_delivery"
    assert order.updated_at >= before
    [event] = sink.named(events.ORDER_STATUS_UPDATED)
    assert event.payload["status"] == "out_for_delivery"
    assert event.payload["previousStatus"] == "preparing"


async def test_illegal_transition_leaves_order_unchanged(lifecycle, world, sink, place_order):
    order_id = (await place_order()).id
    sink.clear()

    with pytest.raises(InvalidTransitionError):
        await lifecycle.update_order_status(world.vendor, order_id, "delivered")

    order = await lifecycle.get_order(world.admin, order_id)
    assert order.status == "pending"
    assert sink.events == []


async def test_unknown_status_is_validation_error(lifecycle, world, place_order):
    order_id = (await place_order()).id
    with pytest.raises(ValidationError):
        await lifecycle.update_order_status(world.vendor, order_id, "shipped")


async def test_customer_cancel_restores_stock(db, lifecycle, world, place_order):
    order_id = (await place_order()).id

    order = await lifecycle.cancel_order(world.customer, order_id, "Changed my mind")

    assert order.status == "cancelled"
    assert order.cancellation_reason == "Changed my mind"
    assert await stock(db, world.diesel_id) == 1000.0


async def test_customer_cannot_cancel_once_preparing(lifecycle, world, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")

    with pytest.raises(InvalidTransitionError):
        await lifecycle.cancel_order(world.customer, order_id)


async def test_other_parties_do_not_see_order(lifecycle, world, place_order):
    order_id = (await place_order()).id

    with pytest.raises(NotFoundError):
        await lifecycle.get_order(world.other_customer, order_id)
    with pytest.raises(NotFoundError):
        await lifecycle.update_order_status(world.rival, order_id, "confirmed")


async def test_relay_failure_does_not_undo_transition(lifecycle, world, place_order):
    class BrokenRelay:
        async def publish(self, event):
            raise RuntimeError("relay is down")

    order_id = (await place_order()).id
    lifecycle.relay = BrokenRelay()

    order = await lifecycle.update_order_status(world.vendor, order_id, "confirmed")

    assert order.status == "confirmed"
    assert (await lifecycle.get_order(world.admin, order_id)).status == "confirmed"


# ────────────── Водитель ──────────────
async def test_assign_driver_requires_preparing(lifecycle, world, place_order):
    order_id = (await place_order()).id
    with pytest.raises(InvalidTransitionError):
        await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)


async def test_assign_driver_marks_driver_busy(db, lifecycle, world, sink, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    sink.clear()

    order = await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)

    assert order.driver_id == world.driver.id
    assert order.status == "preparing"
    driver = await fresh_driver(db, world.driver.id)
    assert driver.status == "busy"
    assert driver.active_order_id == order_id
    assert sink.named(events.DELIVERY_UPDATED)[0].payload["driverId"] == world.driver.id
    assert sink.named(events.NOTIFICATION_RECEIVED)[0].recipients == [world.driver.user_id]


async def test_assigning_same_driver_twice_is_a_no_op(lifecycle, world, sink, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)
    sink.clear()

    order = await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)

    assert order.driver_id == world.driver.id
    assert sink.events == []


async def test_reassignment_releases_previous_driver(db, lifecycle, world, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)

    await lifecycle.assign_driver(world.vendor, order_id, world.second_driver.id)

    assert (await fresh_driver(db, world.driver.id)).status == "available"
    assert (await fresh_driver(db, world.second_driver.id)).status == "busy"


async def test_busy_driver_cannot_take_second_order(lifecycle, world, place_order, advance):
    first = (await place_order()).id
    second = (await place_order()).id
    await advance(first, "preparing")
    await advance(second, "preparing")
    await lifecycle.assign_driver(world.vendor, first, world.driver.id)

    with pytest.raises(ValidationError):
        await lifecycle.assign_driver(world.vendor, second, world.driver.id)


async def test_foreign_driver_is_not_found(lifecycle, world, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    with pytest.raises(NotFoundError):
        await lifecycle.assign_driver(world.vendor, order_id, world.rival_driver.id)


async def test_delivery_frees_driver(db, lifecycle, world, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)
    await advance(order_id, "out_for_delivery")

    order = await lifecycle.complete_delivery(world.driver, order_id)

    assert order.status == "delivered"
    assert order.delivered_at is not None
    driver = await fresh_driver(db, world.driver.id)
    assert driver.status == "available"
    assert driver.active_order_id is None
    assert driver.total_deliveries == 1


async def test_driver_location_is_relayed(db, lifecycle, world, sink, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)
    sink.clear()

    await lifecycle.update_driver_location(world.driver, order_id, 6.5244, 3.3792)

    [event] = sink.named(events.DRIVER_LOCATION_UPDATED)
    assert event.payload["location"] == {"lat": 6.5244, "lng": 3.3792}
    assert world.customer.user_id in event.recipients
    assert (await fresh_driver(db, world.driver.id)).latitude == 6.5244

    with pytest.raises(NotFoundError):
        await lifecycle.update_driver_location(world.second_driver, order_id, 6.5, 3.3)


# ────────────── Оплата наличными ──────────────
@pytest.fixture
async def cod_order(world, lifecycle, place_order, advance):
    """Заказ на 25000 (48 л по 500 + доставка 1000) в пути с назначенным водителем."""
    order_id = (await place_order((world.diesel_id, 48))).id
    await advance(order_id, "preparing")
    await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)
    order = await advance(order_id, "out_for_delivery")
    assert order.total_amount == 25000.0
    return order_id


async def test_cash_confirmation_then_delivery(lifecycle, world, sink, cod_order):
    order = await lifecycle.confirm_payment(world.driver, cod_order, 25000)

    assert order.payment_status == "completed"
    assert len(order.payments) == 1
    assert order.payments[0].transaction_ref.startswith(f"COD-{cod_order}-")
    assert sink.named(events.PAYMENT_UPDATED)[0].payload["status"] == "completed"

    order = await lifecycle.update_order_status(world.driver, cod_order, "delivered")
    assert order.status == "delivered"


async def test_amount_mismatch_changes_nothing(lifecycle, world, cod_order):
    with pytest.raises(PaymentMismatchError) as exc:
        await lifecycle.confirm_payment(world.driver, cod_order, 24000)
    assert exc.value.expected == 25000.0

    order = await lifecycle.get_order(world.admin, cod_order)
    assert order.payment_status == "pending"
    assert order.payments == []


async def test_payment_confirmed_only_once(lifecycle, world, cod_order):
    await lifecycle.confirm_payment(world.driver, cod_order, 25000)
    with pytest.raises(ValidationError):
        await lifecycle.confirm_payment(world.vendor, cod_order, 25000)


async def test_customer_cannot_confirm_payment(lifecycle, world, cod_order):
    with pytest.raises(PermissionDeniedError):
        await lifecycle.confirm_payment(world.customer, cod_order, 25000)


async def test_card_order_is_not_confirmed_manually(lifecycle, world, place_order):
    order = await place_order(method="card")
    order_id = order.id
    with pytest.raises(ValidationError):
        await lifecycle.confirm_payment(world.vendor, order_id, order.total_amount)


async def test_cancelled_order_payment_rejected(lifecycle, world, place_order):
    order_id = (await place_order()).id
    await lifecycle.cancel_order(world.customer, order_id)
    with pytest.raises(InvalidTransitionError):
        await lifecycle.confirm_payment(world.vendor, order_id, 11000)


# ────────────── Выборки ──────────────
async def test_customer_listing_filters_and_pages(lifecycle, world, place_order):
    ids = [(await place_order()).id for _ in range(3)]
    await lifecycle.cancel_order(world.customer, ids[0])

    page = await lifecycle.get_customer_orders(world.customer)
    assert page.total == 3
    assert [o.id for o in page.items] == list(reversed(ids))

    cancelled = await lifecycle.get_customer_orders(world.customer, OrderFilter(status="cancelled"))
    assert [o.id for o in cancelled.items] == [ids[0]]

    second_page = await lifecycle.get_customer_orders(world.customer, OrderFilter(page=2, limit=2))
    assert second_page.pages == 2
    assert len(second_page.items) == 1

    by_vendor = await lifecycle.get_customer_orders(world.customer, OrderFilter(search="lagos fuel", date_range="today"))
    assert by_vendor.total == 3
    assert (await lifecycle.get_customer_orders(world.other_customer)).total == 0


async def test_vendor_and_driver_listings_are_scoped(lifecycle, world, place_order, advance):
    mine = (await place_order()).id
    other = (await place_order(actor=world.other_customer)).id
    await advance(mine, "preparing")
    await lifecycle.assign_driver(world.vendor, mine, world.driver.id)

    assert (await lifecycle.get_vendor_orders(world.vendor)).total == 2
    assert (await lifecycle.get_vendor_orders(world.rival)).total == 0

    searched = await lifecycle.get_vendor_orders(world.vendor, OrderFilter(search="other"))
    assert [o.id for o in searched.items] == [other]

    driver_page = await lifecycle.get_driver_orders(world.driver)
    assert [o.id for o in driver_page.items] == [mine]
    assert driver_page.items[0].customer_name == "Customer"


async def test_all_orders_is_admin_only(lifecycle, world, place_order):
    await place_order()
    assert (await lifecycle.get_all_orders(world.admin)).total == 1
    with pytest.raises(PermissionDeniedError):
        await lifecycle.get_all_orders(world.customer)


# ────────────── Администратор ──────────────
async def test_admin_force_cancel_notifies_customer(db, lifecycle, world, sink, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    sink.clear()

    order = await lifecycle.admin_intervention(world.admin, order_id, "force_cancel", "Vendor reported a tanker breakdown")

    assert order.status == "cancelled"
    assert await stock(db, world.diesel_id) == 1000.0
    notice = sink.named(events.NOTIFICATION_RECEIVED)[-1]
    assert notice.recipients == [world.customer.user_id]
    assert notice.payload["type"] == "admin_intervention"


async def test_admin_intervention_validates_input(lifecycle, world, place_order):
    order_id = (await place_order()).id
    with pytest.raises(ValidationError):
        await lifecycle.admin_intervention(world.admin, order_id, "force_cancel", "too short")
    with pytest.raises(ValidationError):
        await lifecycle.admin_intervention(world.admin, order_id, "update_status", "Status correction by support")
    with pytest.raises(PermissionDeniedError):
        await lifecycle.admin_intervention(world.vendor, order_id, "force_cancel", "Vendor tries admin action")


async def test_admin_refund_after_cash_payment(lifecycle, world, cod_order):
    await lifecycle.confirm_payment(world.driver, cod_order, 25000)

    order = await lifecycle.admin_intervention(world.admin, cod_order, "refund", "Customer received wrong product")

    assert order.payment_status == "refunded"
    assert [p.status for p in order.payments] == ["success", "refunded"]


async def test_analytics_counts_delivered_revenue(lifecycle, world, place_order, advance):
    delivered = (await place_order()).id
    cancelled = (await place_order()).id
    await advance(delivered, "out_for_delivery")
    await lifecycle.complete_delivery(world.vendor, delivered)
    await lifecycle.cancel_order(world.customer, cancelled)

    stats = await lifecycle.get_order_analytics(world.admin)

    assert stats["total_orders"] == 2
    assert stats["completed_orders"] == 1
    assert stats["cancelled_orders"] == 1
    assert stats["pending_orders"] == 0
    assert stats["total_revenue"] == 11000.0
    assert stats["monthly_revenue"] == 11000.0


# ────────────── Конкурентные изменения ──────────────
async def test_stale_order_write_is_rejected(place_order):
    order_id = (await place_order()).id

    async with database.AsyncSessionLocal() as first, database.AsyncSessionLocal() as second:
        winner = await first.get(Order, order_id)
        loser = await second.get(Order, order_id)

        async with transaction(first):
            winner.status = "confirmed"

        with pytest.raises(ConcurrencyError):
            async with transaction(second):
                loser.status = "cancelled"

    async with database.AsyncSessionLocal() as check:
        assert (await check.get(Order, order_id)).status == "confirmed"


async def test_driver_cannot_be_assigned_twice_concurrently(db, log, lifecycle, world, place_order, advance):
    first = (await place_order()).id
    second = (await place_order()).id
    await advance(first, "preparing")
    await advance(second, "preparing")

    async with database.AsyncSessionLocal() as one, database.AsyncSessionLocal() as two:
        results = await asyncio.gather(
            OrderLifecycle(one, log).assign_driver(world.vendor, first, world.driver.id),
            OrderLifecycle(two, log).assign_driver(world.vendor, second, world.driver.id),
            return_exceptions=True,
        )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], (ConcurrencyError, ValidationError))

    assigned = {oid: (await lifecycle.get_order(world.admin, oid)).driver_id for oid in (first, second)}
    assert list(assigned.values()).count(world.driver.id) == 1
    driver = await fresh_driver(db, world.driver.id)
    assert driver.status == "busy"
    assert assigned[driver.active_order_id] == world.driver.id


async def test_admin_rollback_before_preparing_frees_driver(db, lifecycle, world, place_order, advance):
    order_id = (await place_order()).id
    await advance(order_id, "preparing")
    await lifecycle.assign_driver(world.vendor, order_id, world.driver.id)
    await advance(order_id, "out_for_delivery")

    order = await lifecycle.admin_intervention(
        world.admin, order_id, "update_status", "Tanker sent back to the depot", new_status="confirmed",
    )

    assert order.status == "confirmed"
    assert order.driver_id is None
    driver = await fresh_driver(db, world.driver.id)
    assert driver.status == "available"
    assert driver.active_order_id is None
