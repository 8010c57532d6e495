"""
OwnerService -- account holders and their allowance baseline.

Responsibility:
    Registers owners with an initially granted quota, applies
    administrative allowance corrections (through AllowanceService) and
    deletes an owner account together with its orders.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - A new owner starts with granted_quota == remaining_quota.
    - Owner deletion is the only path that physically removes orders,
      payments, assignments and order events.  It uses bulk DELETE
      statements in foreign-key order; stock adjustments keep their plain
      order_id cross-references.

Failure modes:
    - DuplicateOwnerError when the email is already registered.
    - OwnerNotFoundError for unknown ids.
"""

from uuid import UUID, uuid4

from sqlalchemy import delete, select

from fulfillment_kernel.domain.commands import CorrectAllowance, RegisterOwner
from fulfillment_kernel.domain.dtos import OwnerInfo
from fulfillment_kernel.exceptions import DuplicateOwnerError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import DeliveryAssignment, Order, OrderEvent, Owner, PaymentRecord
from fulfillment_kernel.services.allowance_service import AllowanceService
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.lookups import load_owner

logger = get_logger("services.owner")


class OwnerService(BaseService[Owner]):
    """Owner registry."""

    def register(self, command: RegisterOwner, actor_id: UUID | None = None) -> OwnerInfo:
        command = command.validated(self.policy)
        existing = self.session.execute(
            select(Owner.id).where(Owner.email == command.email)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateOwnerError(command.email)

        # Self-registration: the owner is its own creator.
        owner_id = uuid4()
        owner = Owner(
            id=owner_id,
            name=command.name,
            email=command.email,
            phone=command.phone,
            address=command.address,
            role=command.role.value,
            granted_quota=command.initial_quota,
            remaining_quota=command.initial_quota,
            created_by_id=actor_id or owner_id,
        )
        self.session.add(owner)
        self.session.flush()

        logger.info(
            "owner_registered",
            extra={"owner_id": str(owner.id), "role": owner.role, "quota": owner.granted_quota},
        )
        return owner.to_dto()

    def get(self, owner_id: UUID) -> OwnerInfo:
        return load_owner(self.session, owner_id).to_dto()

    def correct_allowance(
        self,
        owner_id: UUID,
        command: CorrectAllowance,
        actor_id: UUID,
    ) -> OwnerInfo:
        return AllowanceService(self.session, self.clock, self.policy).correct(
            owner_id, command, actor_id
        )

    def delete_owner(self, owner_id: UUID, actor_id: UUID) -> int:
        """
        Delete an owner and everything hanging off their orders.

        Returns:
            Number of orders removed.
        """
        load_owner(self.session, owner_id)
        order_ids = select(Order.id).where(Order.owner_id == owner_id)
        order_count = len(self.session.execute(order_ids).scalars().all())

        for model in (OrderEvent, PaymentRecord, DeliveryAssignment):
            self.session.execute(
                delete(model)
                .where(model.order_id.in_(order_ids))
                .execution_options(synchronize_session=False)
            )
        self.session.execute(
            delete(Order)
            .where(Order.owner_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(
            delete(Owner)
            .where(Owner.id == owner_id)
            .execution_options(synchronize_session=False)
        )
        # Rows removed by bulk statements are still in the identity map.
        self.session.expire_all()

        logger.warning(
            "owner_deleted",
            extra={
                "owner_id": str(owner_id),
                "deleted_by": str(actor_id),
                "order_count": order_count,
            },
        )
        return order_count
