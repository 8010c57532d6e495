"""
Module: fulfillment_kernel.models.delivery
Responsibility: ORM persistence for delivery assignments (order -> courier
    binding with its own handoff sub-status).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one assignment per order (uq_assignment_order).
    - order_id and courier_id reference existing rows (FK).
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase, UUIDString
from fulfillment_kernel.domain.dtos import AssignmentInfo
from fulfillment_kernel.domain.order_state import AssignmentStatus
from fulfillment_kernel.domain.values import DeliveryPriority


class DeliveryAssignment(TrackedBase):
    """
    Binding of an order to a courier.

    Created once while the order is APPROVED; afterwards only its status
    (and the pickup / delivery stamps) advance.
    """

    __tablename__ = "delivery_assignments"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_assignment_order"),
        Index("idx_assignment_courier", "courier_id"),
        Index("idx_assignment_status", "status"),
        Index("idx_assignment_scheduled_date", "scheduled_date"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    courier_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("couriers.id"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AssignmentStatus.ASSIGNED.value,
    )

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)

    scheduled_time: Mapped[str | None] = mapped_column(String(20), nullable=True)

    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=DeliveryPriority.NORMAL.value,
    )

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    picked_up_at: Mapped[datetime | None] = mapped_column(nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def status_enum(self) -> AssignmentStatus:
        return AssignmentStatus(self.status)

    def to_dto(self) -> AssignmentInfo:
        return AssignmentInfo(
            id=self.id,
            order_id=self.order_id,
            courier_id=self.courier_id,
            status=self.status_enum,
            scheduled_date=self.scheduled_date,
            scheduled_time=self.scheduled_time,
            priority=DeliveryPriority(self.priority),
            notes=self.notes,
            picked_up_at=self.picked_up_at,
            delivered_at=self.delivered_at,
        )

    def __repr__(self) -> str:
        return f"<DeliveryAssignment {self.order_id} -> {self.courier_id}: {self.status}>"
