# fuelhub/services/errors.py

"""
Доменные ошибки жизненного цикла заказа.
Каждая ошибка знает свой HTTP-статус; преобразование в ответ делает
обработчик в main.py.
"""

from typing import Any


class OrderError(Exception):
    status_code = 500

    def __init__(self, detail: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(detail)
        self.detail = detail
        self.errors = errors or []

    def to_dict(self) -> dict:
        body = {"detail": self.detail}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(OrderError):
    """Некорректные входные данные: пустая корзина, количество вне диапазона и т.п."""
    status_code = 400

    @classmethod
    def field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, [{"field": field, "message": message}])


class NotFoundError(OrderError):
    status_code = 404


class PermissionDeniedError(OrderError):
    status_code = 403


class InvalidTransitionError(OrderError):
    """Переход статуса не разрешён из текущего состояния для данной роли."""
    status_code = 409

    def __init__(self, current: str, requested: str, role: str | None = None, detail: str | None = None):
        self.current = current
        self.requested = requested
        self.role = role
        super().__init__(detail or f"Invalid status transition from {current} to {requested}")


class PaymentMismatchError(OrderError):
    """Полученная наличными сумма не совпадает с суммой заказа."""
    status_code = 409

    def __init__(self, expected: float, received: float):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Amount received {received} does not match order total {expected}",
            [{"field": "amount_received", "expected": expected, "received": received}],
        )


class ConcurrencyError(OrderError):
    """Заказ был изменён параллельным запросом."""
    status_code = 409
