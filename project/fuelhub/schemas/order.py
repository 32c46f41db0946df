# fuelhub/schemas/order.py

from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime

from fuelhub.models.order import OrderStatus, PaymentMethod


# ────────────── Входные данные ──────────────
class OrderItemIn(BaseModel):
    product_id: int
    quantity: float = Field(..., ge=0.1)


class DeliveryAddress(BaseModel):
    street: Optional[str] = None
    city: str
    state: str
    additional_info: Optional[str] = None


class OrderCreate(BaseModel):
    vendor_id: int
    items: List[OrderItemIn]
    delivery_address: DeliveryAddress
    phone_number: str = Field(..., min_length=7, max_length=20)
    payment_method: PaymentMethod
    special_instructions: Optional[str] = Field(None, max_length=500)


class OrderSummaryRequest(BaseModel):
    vendor_id: int
    items: List[OrderItemIn]


class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = Field(None, max_length=200)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class AssignDriverRequest(BaseModel):
    driver_id: int


class ConfirmPaymentRequest(BaseModel):
    amount_received: float
    method: str = "CASH"


class LocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class InterventionRequest(BaseModel):
    action: Literal["force_cancel", "force_confirm", "assign_driver", "update_status", "refund"]
    reason: str = Field(..., min_length=10, max_length=500)
    new_status: Optional[OrderStatus] = None
    driver_id: Optional[int] = None


class OrderFilter(BaseModel):
    """Фильтр списков заказов; одинаков для покупателя, продавца, водителя и админа."""
    status: Literal["all"] | OrderStatus = "all"
    date_range: Literal["today", "week", "month", "year", "all"] = "all"
    search: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


# ────────────── Ответы ──────────────
class OrderSummaryLine(BaseModel):
    product_id: int
    product_name: str
    unit: str
    quantity: float
    price_per_unit: float
    total_price: float

    model_config = {
        "from_attributes": True
    }


class OrderSummaryResponse(BaseModel):
    items: List[OrderSummaryLine]
    subtotal: float
    delivery_fee: float
    total: float
    minimum_order: float
    meets_minimum: bool


class OrderItemResponse(OrderSummaryLine):
    id: int


class PaymentResponse(BaseModel):
    id: int
    amount: float
    method: str
    status: str
    transaction_ref: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class OrderResponse(BaseModel):
    id: int
    customer_id: int
    customer_name: Optional[str] = None
    vendor_id: int
    vendor_name: Optional[str] = None
    driver_id: Optional[int] = None
    status: str
    items: List[OrderItemResponse]
    subtotal: float
    delivery_fee: float
    total_amount: float
    delivery_address: DeliveryAddress
    phone_number: Optional[str] = None
    special_instructions: Optional[str] = None
    cancellation_reason: Optional[str] = None
    payment_method: str
    payment_status: str
    payments: List[PaymentResponse] = []
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True
    }

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        response = cls.model_validate(order)
        response.customer_name = order.customer.name if order.customer else None
        response.vendor_name = order.vendor.business_name if order.vendor else None
        return response


class OrderPage(BaseModel):
    items: List[OrderResponse]
    page: int
    limit: int
    total: int
    pages: int


class OrderAnalytics(BaseModel):
    total_orders: int
    pending_orders: int
    completed_orders: int
    cancelled_orders: int
    monthly_orders: int
    weekly_orders: int
    total_revenue: float
    monthly_revenue: float
    weekly_revenue: float
