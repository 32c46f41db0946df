# fuelhub/services/actor.py

from dataclasses import dataclass

from fuelhub.models.user import Role


@dataclass(frozen=True)
class Actor:
    """
    Кто выполняет операцию.
    id - id профиля роли: для customer/admin это id пользователя,
    для vendor - id продавца, для driver - id водителя.
    user_id - всегда id пользователя (адресат уведомлений).
    """
    role: Role
    id: int
    user_id: int

    @classmethod
    def customer(cls, user_id: int) -> "Actor":
        return cls(Role.CUSTOMER, user_id, user_id)

    @classmethod
    def vendor(cls, vendor_id: int, user_id: int) -> "Actor":
        return cls(Role.VENDOR, vendor_id, user_id)

    @classmethod
    def driver(cls, driver_id: int, user_id: int) -> "Actor":
        return cls(Role.DRIVER, driver_id, user_id)

    @classmethod
    def admin(cls, user_id: int) -> "Actor":
        return cls(Role.ADMIN, user_id, user_id)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
