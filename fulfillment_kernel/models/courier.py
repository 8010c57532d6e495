"""
Module: fulfillment_kernel.models.courier
Responsibility: ORM persistence for the courier (delivery partner) registry.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - 1 <= capacity_per_day <= 500 (CHECK constraint).
    - Only active couriers receive new assignments (DeliveryService).
"""

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase
from fulfillment_kernel.domain.dtos import CourierInfo


class Courier(TrackedBase):
    """A delivery partner. Deactivated, never deleted, once it has history."""

    __tablename__ = "couriers"

    __table_args__ = (
        CheckConstraint(
            "capacity_per_day >= 1 AND capacity_per_day <= 500",
            name="ck_courier_capacity_range",
        ),
        Index("idx_courier_active", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    phone: Mapped[str] = mapped_column(String(20), nullable=False)

    email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    vehicle_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    service_area: Mapped[str | None] = mapped_column(String(200), nullable=True)

    capacity_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=20)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> CourierInfo:
        return CourierInfo(
            id=self.id,
            name=self.name,
            phone=self.phone,
            email=self.email,
            vehicle_number=self.vehicle_number,
            service_area=self.service_area,
            capacity_per_day=self.capacity_per_day,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<Courier {self.name} ({state})>"
