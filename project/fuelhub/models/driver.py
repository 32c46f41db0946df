# fuelhub/models/driver.py

from enum import Enum

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from fuelhub.utils.database import Base


class DriverStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Driver(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)

    vehicle_type = Column(String, nullable=True)          # Truck / Van / Bike
    plate_number = Column(String, nullable=True)
    status = Column(String, nullable=False, default=DriverStatus.OFFLINE.value, index=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location_updated_at = Column(DateTime, nullable=True)

    total_deliveries = Column(Integer, nullable=False, default=0)
    active_order_id = Column(Integer, nullable=True)      # текущий заказ, пока водитель busy

    # счётчик версии: два параллельных назначения одного водителя не проходят оба
    version = Column(Integer, nullable=False)

    user = relationship("User", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}
