# fuelhub/schemas/user.py

from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import datetime


class UserBase(BaseModel):
    name: Optional[str] = None
    login: str = Field(..., min_length=3, max_length=64)
    phone: Optional[str] = None


class UserCreate(UserBase):
    """
    Регистрация пользователя.
    Администратора через регистрацию создать нельзя.
    """
    password: str = Field(..., min_length=4)
    role: Literal["customer", "vendor", "driver"] = "customer"


class UserResponse(UserBase):
    id: int
    role: str
    is_active: bool
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
