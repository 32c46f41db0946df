# fuelhub/schemas/vendor.py

from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime


# ────────────── Продавец ──────────────
class VendorCreate(BaseModel):
    business_name: str = Field(..., min_length=2, max_length=200)
    address: Optional[str] = None
    delivery_fee: float = Field(0.0, ge=0)
    minimum_order: float = Field(0.0, ge=0)


class VendorResponse(VendorCreate):
    id: int
    user_id: int
    verification_status: str
    is_active: bool

    model_config = {
        "from_attributes": True
    }


class VerificationUpdate(BaseModel):
    verification_status: Literal["pending", "verified", "rejected"]


# ────────────── Товары ──────────────
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    unit: str = "litre"
    price_per_unit: float = Field(..., gt=0)
    available_qty: float = Field(0.0, ge=0)
    min_order_qty: float = Field(1.0, gt=0)
    max_order_qty: float = Field(100000.0, gt=0)


class ProductUpdate(BaseModel):
    """Передаются только изменяемые поля."""
    name: Optional[str] = None
    unit: Optional[str] = None
    price_per_unit: Optional[float] = Field(None, gt=0)
    available_qty: Optional[float] = Field(None, ge=0)
    min_order_qty: Optional[float] = Field(None, gt=0)
    max_order_qty: Optional[float] = Field(None, gt=0)
    status: Optional[Literal["available", "out_of_stock", "discontinued"]] = None


class ProductResponse(ProductCreate):
    id: int
    vendor_id: int
    status: str

    model_config = {
        "from_attributes": True
    }


class VendorDetail(VendorResponse):
    products: List[ProductResponse] = []


# ────────────── Водители ──────────────
class DriverCreate(BaseModel):
    vendor_id: int
    vehicle_type: Optional[Literal["Truck", "Van", "Bike"]] = None
    plate_number: Optional[str] = None


class DriverResponse(BaseModel):
    id: int
    user_id: int
    vendor_id: int
    vehicle_type: Optional[str] = None
    plate_number: Optional[str] = None
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_updated_at: Optional[datetime] = None
    total_deliveries: int
    active_order_id: Optional[int] = None

    model_config = {
        "from_attributes": True
    }


class AvailabilityUpdate(BaseModel):
    status: Literal["available", "offline"]
