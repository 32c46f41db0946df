# fuelhub/models/vendor.py

from enum import Enum

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from fuelhub.utils.database import Base, utcnow


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ProductStatus(str, Enum):
    AVAILABLE = "available"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    business_name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    delivery_fee = Column(Float, nullable=False, default=0.0)     # стоимость доставки
    minimum_order = Column(Float, nullable=False, default=0.0)    # минимальная сумма заказа (без доставки)

    verification_status = Column(String, nullable=False, default=VerificationStatus.PENDING.value, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", lazy="selectin")
    products = relationship("Product", back_populates="vendor", lazy="selectin", order_by="Product.id")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)

    name = Column(String, nullable=False)                 # например "Diesel (AGO)"
    unit = Column(String, nullable=False, default="litre")
    price_per_unit = Column(Float, nullable=False)
    available_qty = Column(Float, nullable=False, default=0.0)
    min_order_qty = Column(Float, nullable=False, default=1.0)
    max_order_qty = Column(Float, nullable=False, default=100000.0)
    status = Column(String, nullable=False, default=ProductStatus.AVAILABLE.value)

    vendor = relationship("Vendor", back_populates="products")
