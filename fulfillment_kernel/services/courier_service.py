"""
CourierService -- the delivery partner registry.

Couriers are registered, edited and deactivated; they are never deleted
once they may have assignments, so the delivery history keeps resolving.
Daily capacity is recorded here and reported by CourierSelector; it is not
enforced when assigning.
"""

from uuid import UUID

from fulfillment_kernel.domain.commands import RegisterCourier, UpdateCourier
from fulfillment_kernel.domain.dtos import CourierInfo
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import Courier
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.lookups import load_courier

logger = get_logger("services.courier")


class CourierService(BaseService[Courier]):
    """Register / update / deactivate couriers."""

    def register(self, command: RegisterCourier, actor_id: UUID) -> CourierInfo:
        command = command.validated(self.policy)
        courier = Courier(
            name=command.name,
            phone=command.phone,
            email=command.email,
            vehicle_number=command.vehicle_number,
            service_area=command.service_area,
            capacity_per_day=command.capacity_per_day,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(courier)
        self.session.flush()
        logger.info(
            "courier_registered",
            extra={"courier_id": str(courier.id), "capacity_per_day": courier.capacity_per_day},
        )
        return courier.to_dto()

    def update(self, courier_id: UUID, command: UpdateCourier, actor_id: UUID) -> CourierInfo:
        """Apply the non-None fields of ``command``."""
        command = command.validated(self.policy)
        courier = load_courier(self.session, courier_id, lock=True)
        changes = command.changes()
        for name, value in changes.items():
            setattr(courier, name, value)
        courier.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "courier_updated",
            extra={"courier_id": str(courier.id), "fields": sorted(changes)},
        )
        return courier.to_dto()

    def deactivate(self, courier_id: UUID, actor_id: UUID) -> CourierInfo:
        return self.update(courier_id, UpdateCourier(is_active=False), actor_id)
