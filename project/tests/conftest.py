# tests/conftest.py

import os
import tempfile

# настройки читаются при импорте fuelhub.config, поэтому окружение готовим до импорта
_TMP = tempfile.mkdtemp(prefix="fuelhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'fuelhub.db')}"
os.environ["LOG_DIR"] = os.path.join(_TMP, "log")
os.environ["LOG_PRINT"] = "0"
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key")

from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from fuelhub.models.driver import Driver, DriverStatus
from fuelhub.models.user import Role, User
from fuelhub.models.vendor import Product, Vendor, VerificationStatus
from fuelhub.schemas.order import DeliveryAddress, OrderItemIn
from fuelhub.services.actor import Actor
from fuelhub.services.notification import RecordingSink
from fuelhub.services.order import OrderLifecycle
from fuelhub.utils import database
from fuelhub.utils.log import Log
from fuelhub.utils.security import hash_password


@pytest.fixture
async def db():
    """Чистая база на каждый тест."""
    await database.drop_db()
    await database.init_db()
    async with database.AsyncSessionLocal() as session:
        yield session
    await database.engine.dispose()


@pytest.fixture
async def log():
    log = Log(log_print="0")
    yield log
    await log.shutdown()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def lifecycle(db, log, sink):
    return OrderLifecycle(db, log, sink)


@pytest.fixture
async def world(db):
    """
    Верифицированный продавец с дизелем (500 за литр, доставка 1000, минимум 5000),
    покупатель, два доступных водителя продавца и водитель чужого продавца.
    """
    def user(login, role):
        return User(name=login.title(), login=login, password=hash_password("secret"), role=role.value)

    customer = user("customer", Role.CUSTOMER)
    other_customer = user("other", Role.CUSTOMER)
    vendor_user = user("vendor", Role.VENDOR)
    rival_user = user("rival", Role.VENDOR)
    driver_user = user("driver", Role.DRIVER)
    second_driver_user = user("driver2", Role.DRIVER)
    rival_driver_user = user("rivaldriver", Role.DRIVER)
    db.add_all([customer, other_customer, vendor_user, rival_user,
                driver_user, second_driver_user, rival_driver_user])
    await db.flush()

    vendor = Vendor(user_id=vendor_user.id, business_name="Lagos Fuel Depot", address="Ikeja",
                    delivery_fee=1000.0, minimum_order=5000.0,
                    verification_status=VerificationStatus.VERIFIED.value)
    rival = Vendor(user_id=rival_user.id, business_name="Rival Energy", delivery_fee=500.0,
                   verification_status=VerificationStatus.VERIFIED.value)
    db.add_all([vendor, rival])
    await db.flush()

    diesel = Product(vendor_id=vendor.id, name="Diesel (AGO)", price_per_unit=500.0, available_qty=1000.0)
    petrol = Product(vendor_id=vendor.id, name="Petrol (PMS)", price_per_unit=650.0, available_qty=50.0,
                     min_order_qty=10.0, max_order_qty=40.0)
    rival_product = Product(vendor_id=rival.id, name="Kerosene (DPK)", price_per_unit=900.0, available_qty=100.0)
    db.add_all([diesel, petrol, rival_product])

    driver = Driver(user_id=driver_user.id, vendor_id=vendor.id, vehicle_type="Truck",
                    status=DriverStatus.AVAILABLE.value)
    second_driver = Driver(user_id=second_driver_user.id, vendor_id=vendor.id, vehicle_type="Van",
                           status=DriverStatus.AVAILABLE.value)
    rival_driver = Driver(user_id=rival_driver_user.id, vendor_id=rival.id, status=DriverStatus.AVAILABLE.value)
    db.add_all([driver, second_driver, rival_driver])
    await db.commit()

    admin = (await db.execute(select(User).where(User.role == Role.ADMIN.value))).scalar_one()

    return SimpleNamespace(
        customer=Actor.customer(customer.id),
        other_customer=Actor.customer(other_customer.id),
        vendor=Actor.vendor(vendor.id, vendor_user.id),
        rival=Actor.vendor(rival.id, rival_user.id),
        driver=Actor.driver(driver.id, driver_user.id),
        second_driver=Actor.driver(second_driver.id, second_driver_user.id),
        rival_driver=Actor.driver(rival_driver.id, rival_driver_user.id),
        admin=Actor.admin(admin.id),
        vendor_id=vendor.id,
        rival_id=rival.id,
        diesel_id=diesel.id,
        petrol_id=petrol.id,
        rival_product_id=rival_product.id,
    )


def items(*pairs):
    """Строки корзины без pydantic-валидации: сервис проверяет количества сам."""
    return [OrderItemIn.model_construct(product_id=pid, quantity=qty) for pid, qty in pairs]


ADDRESS = DeliveryAddress(street="12 Allen Avenue", city="Ikeja", state="Lagos")


@pytest.fixture
def place_order(lifecycle, world):
    """Создаёт заказ покупателя world.customer: по умолчанию 20 л дизеля наличными."""
    async def place(*pairs, actor=None, method="cash"):
        return await lifecycle.create_order(
            actor or world.customer,
            world.vendor_id,
            items(*(pairs or ((world.diesel_id, 20),))),
            ADDRESS,
            "+2348012345678",
            method,
        )
    return place


@pytest.fixture
def advance(lifecycle, world):
    """Проводит заказ продавцом от текущего статуса до указанного."""
    chain = ["pending", "confirmed", "preparing", "out_for_delivery"]

    async def run(order_id, until):
        order = await lifecycle.get_order(world.admin, order_id)
        for status in chain[chain.index(order.status) + 1:chain.index(until) + 1]:
            order = await lifecycle.update_order_status(world.vendor, order_id, status)
        return order
    return run


@pytest.fixture
async def client(db, log, sink):
    from fuelhub.main import app

    app.state.log = log
    app.state.relay = sink
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
