# fuelhub/models/user.py

from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from fuelhub.utils.database import Base, utcnow


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    DRIVER = "driver"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    login = Column(String, unique=True, nullable=False)       # логин
    password = Column(String, nullable=True)                  # хэш пароля
    phone = Column(String, nullable=True)                     # телефон
    role = Column(String, nullable=False, default=Role.CUSTOMER.value, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
