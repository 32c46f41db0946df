# fuelhub/services/lifecycle.py

"""
Таблицы переходов статусов заказа и водителя.

Проверка выполняется на сервере независимо от того, какие кнопки
показывает клиент: (текущий статус, запрошенный статус, роль) -> разрешено / нет.
"""

from fuelhub.models.driver import DriverStatus
from fuelhub.models.order import OrderStatus
from fuelhub.models.user import Role
from fuelhub.services.errors import InvalidTransitionError

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# (from, to) -> роли, которым разрешён переход. admin дополнительно может
# принудительно перевести любой нетерминальный заказ (см. is_transition_allowed)
ORDER_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[Role]] = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): frozenset({Role.VENDOR}),
    (OrderStatus.CONFIRMED, OrderStatus.PREPARING): frozenset({Role.VENDOR}),
    (OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY): frozenset({Role.VENDOR}),
    (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED): frozenset({Role.DRIVER, Role.VENDOR}),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): frozenset({Role.CUSTOMER}),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED): frozenset({Role.CUSTOMER}),
}


def parse_status(value) -> OrderStatus | None:
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def is_transition_allowed(current, requested, role) -> bool:
    current, requested = OrderStatus(current), OrderStatus(requested)
    if current in TERMINAL_STATUSES or current == requested:
        return False
    if Role(role) == Role.ADMIN:
        return True
    return Role(role) in ORDER_TRANSITIONS.get((current, requested), frozenset())


def assert_transition(current, requested, role) -> None:
    if not is_transition_allowed(current, requested, role):
        raise InvalidTransitionError(str(OrderStatus(current).value), str(OrderStatus(requested).value), Role(role).value)


def allowed_next_statuses(current, role) -> list[OrderStatus]:
    """Статусы, в которые роль может перевести заказ (для подсказок клиенту)."""
    return [s for s in OrderStatus if is_transition_allowed(current, s, role)]


# ────────────── Водитель ──────────────
# available <-> busy меняет только система (назначение / доставка / отмена),
# available <-> offline переключает сам водитель
DRIVER_SELF_TRANSITIONS = frozenset({
    (DriverStatus.AVAILABLE, DriverStatus.OFFLINE),
    (DriverStatus.OFFLINE, DriverStatus.AVAILABLE),
})


def assert_driver_self_transition(current, requested) -> None:
    current, requested = DriverStatus(current), DriverStatus(requested)
    if current == requested:
        return
    if (current, requested) not in DRIVER_SELF_TRANSITIONS:
        raise InvalidTransitionError(
            current.value, requested.value, Role.DRIVER.value,
            detail=f"Driver cannot change availability from {current.value} to {requested.value}",
        )
