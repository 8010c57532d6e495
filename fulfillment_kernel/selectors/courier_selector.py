"""
Module: fulfillment_kernel.selectors.courier_selector
Responsibility: Courier registry listing, per-day workload and delivery
    dashboard stats.

Capacity is reported here and never enforced when assigning; operators
read ``CourierLoad.remaining_capacity`` before choosing a courier.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import CourierInfo, CourierLoad, DeliveryStats
from fulfillment_kernel.domain.order_state import AssignmentStatus, OrderStatus
from fulfillment_kernel.exceptions import CourierNotFoundError
from fulfillment_kernel.models import Courier, DeliveryAssignment, Order
from fulfillment_kernel.selectors.base import BaseSelector


class CourierSelector(BaseSelector[Courier]):
    """Courier read models."""

    def get(self, courier_id: UUID) -> CourierInfo:
        courier = self.session.get(Courier, courier_id)
        if courier is None:
            raise CourierNotFoundError(str(courier_id))
        return courier.to_dto()

    def list_couriers(self, active_only: bool = False) -> tuple[CourierInfo, ...]:
        stmt = select(Courier).order_by(Courier.name)
        if active_only:
            stmt = stmt.where(Courier.is_active.is_(True))
        return tuple(row.to_dto() for row in self.session.execute(stmt).scalars())

    def daily_load(self, courier_id: UUID, day: date) -> CourierLoad:
        """Assignments scheduled for ``courier_id`` on ``day``, by outcome."""
        courier = self.get(courier_id)
        counts = dict(
            self.session.execute(
                select(DeliveryAssignment.status, func.count(DeliveryAssignment.id))
                .where(
                    DeliveryAssignment.courier_id == courier_id,
                    DeliveryAssignment.scheduled_date == day,
                )
                .group_by(DeliveryAssignment.status)
            ).all()
        )
        active = sum(counts.get(status.value, 0) for status in AssignmentStatus if status.is_active)
        return CourierLoad(
            courier_id=courier.id,
            day=day,
            active_assignments=active,
            capacity_per_day=courier.capacity_per_day,
            total_assignments=sum(counts.values()),
            completed_assignments=counts.get(AssignmentStatus.DELIVERED.value, 0),
        )

    def delivery_stats(self, day: date) -> DeliveryStats:
        """
        Assignment outcomes overall, deliveries completed on ``day`` (UTC)
        and APPROVED orders still waiting for a courier.
        """
        counts = dict(
            self.session.execute(
                select(DeliveryAssignment.status, func.count(DeliveryAssignment.id))
                .group_by(DeliveryAssignment.status)
            ).all()
        )
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        completed = self.session.execute(
            select(func.count(DeliveryAssignment.id)).where(
                DeliveryAssignment.status == AssignmentStatus.DELIVERED.value,
                DeliveryAssignment.delivered_at >= start,
                DeliveryAssignment.delivered_at < start + timedelta(days=1),
            )
        ).scalar_one()
        awaiting = self.session.execute(
            select(func.count(Order.id))
            .outerjoin(DeliveryAssignment, DeliveryAssignment.order_id == Order.id)
            .where(
                Order.status == OrderStatus.APPROVED.value,
                DeliveryAssignment.id.is_(None),
            )
        ).scalar_one()
        couriers = dict(
            self.session.execute(
                select(Courier.is_active, func.count(Courier.id)).group_by(Courier.is_active)
            ).all()
        )

        delivered = counts.get(AssignmentStatus.DELIVERED.value, 0)
        finished = delivered + counts.get(AssignmentStatus.FAILED.value, 0)
        success_rate = None
        if finished:
            success_rate = (Decimal(delivered * 100) / finished).quantize(Decimal("0.1"))
        return DeliveryStats(
            day=day,
            total_assignments=sum(counts.values()),
            active_assignments=sum(
                counts.get(status.value, 0) for status in AssignmentStatus if status.is_active
            ),
            completed_on_day=completed,
            awaiting_assignment=awaiting,
            total_couriers=sum(couriers.values()),
            active_couriers=couriers.get(True, 0),
            success_rate=success_rate,
        )
