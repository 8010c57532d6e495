"""
AllowanceService -- per-owner quota reservation and release.

Responsibility:
    Reserves units against an owner's remaining quota when an order is
    created or grows, releases them when an order is cancelled or shrinks,
    and applies administrative corrections to the granted quota.

Architecture position:
    Kernel > Services -- imperative shell.  Called by OrderService (reserve /
    release) and OwnerService (correct).

Invariants enforced:
    - remaining_quota never observably negative: reservation is a single
      compare-and-decrement UPDATE (``WHERE remaining_quota >= :n``), so two
      concurrent reservations can never both succeed past the limit.
    - Conservation: granted_quota == remaining_quota + reserved quantity of
      non-cancelled orders.  Corrections move granted and remaining together.

Failure modes:
    - OwnerNotFoundError: no owner row matched.
    - InsufficientAllowanceError: remaining_quota < requested (409).
    - AllowanceCorrectionError: correction would drive a quota negative.

Audit relevance:
    Every reservation, release and correction is logged with owner_id and
    the resulting remaining quota.
"""

from uuid import UUID

from sqlalchemy import select, update

from fulfillment_kernel.domain.commands import CorrectAllowance
from fulfillment_kernel.domain.dtos import OwnerInfo
from fulfillment_kernel.exceptions import (
    AllowanceCorrectionError,
    InsufficientAllowanceError,
    OwnerNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.owner import Owner
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.allowance")


def _stamped(actor_id: UUID | None, **values) -> dict:
    if actor_id is not None:
        values["updated_by_id"] = actor_id
    return values


class AllowanceService(BaseService[Owner]):
    """
    Allowance ledger over Owner.remaining_quota.

    Guarantees:
        - reserve() either decrements by exactly ``amount`` or changes
          nothing and raises.
        - release() is an unconditional increment.
    """

    def _current(self, owner_id: UUID) -> Owner | None:
        # Bulk UPDATEs bypass the identity map; re-read the row.
        return self.session.get(Owner, owner_id, populate_existing=True)

    def reserve(self, owner_id: UUID, amount: int, actor_id: UUID | None = None) -> int:
        """
        Take ``amount`` units from the owner's remaining quota.

        Returns:
            The remaining quota after the reservation.

        Raises:
            OwnerNotFoundError, InsufficientAllowanceError.
        """
        if amount <= 0:
            raise ValidationError("reservation amount must be positive", field="quantity")

        result = self.session.execute(
            update(Owner)
            .where(Owner.id == owner_id, Owner.remaining_quota >= amount)
            .values(_stamped(actor_id, remaining_quota=Owner.remaining_quota - amount))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            remaining = self.session.execute(
                select(Owner.remaining_quota).where(Owner.id == owner_id)
            ).scalar_one_or_none()
            if remaining is None:
                raise OwnerNotFoundError(str(owner_id))
            logger.warning(
                "allowance_insufficient",
                extra={"owner_id": str(owner_id), "requested": amount, "remaining": remaining},
            )
            raise InsufficientAllowanceError(str(owner_id), amount, remaining)

        owner = self._current(owner_id)
        logger.info(
            "allowance_reserved",
            extra={"owner_id": str(owner_id), "amount": amount, "remaining": owner.remaining_quota},
        )
        return owner.remaining_quota

    def release(self, owner_id: UUID, amount: int, actor_id: UUID | None = None) -> int:
        """Give ``amount`` units back. Returns the new remaining quota."""
        if amount <= 0:
            raise ValidationError("release amount must be positive", field="quantity")

        result = self.session.execute(
            update(Owner)
            .where(Owner.id == owner_id)
            .values(_stamped(actor_id, remaining_quota=Owner.remaining_quota + amount))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise OwnerNotFoundError(str(owner_id))

        owner = self._current(owner_id)
        logger.info(
            "allowance_released",
            extra={"owner_id": str(owner_id), "amount": amount, "remaining": owner.remaining_quota},
        )
        return owner.remaining_quota

    def correct(self, owner_id: UUID, command: CorrectAllowance, actor_id: UUID) -> OwnerInfo:
        """
        Administrative correction of granted and remaining quota by ``delta``.

        Rejected (nothing changes) when either quota would go negative.
        """
        command = command.validated(self.policy)
        delta = command.delta

        result = self.session.execute(
            update(Owner)
            .where(
                Owner.id == owner_id,
                Owner.granted_quota + delta >= 0,
                Owner.remaining_quota + delta >= 0,
            )
            .values(
                _stamped(
                    actor_id,
                    granted_quota=Owner.granted_quota + delta,
                    remaining_quota=Owner.remaining_quota + delta,
                )
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if self._current(owner_id) is None:
                raise OwnerNotFoundError(str(owner_id))
            raise AllowanceCorrectionError(str(owner_id), delta)

        owner = self._current(owner_id)
        logger.info(
            "allowance_corrected",
            extra={
                "owner_id": str(owner_id),
                "delta": delta,
                "reason": command.reason,
                "granted": owner.granted_quota,
                "remaining": owner.remaining_quota,
            },
        )
        return owner.to_dto()

    def remaining(self, owner_id: UUID) -> int:
        remaining = self.session.execute(
            select(Owner.remaining_quota).where(Owner.id == owner_id)
        ).scalar_one_or_none()
        if remaining is None:
            raise OwnerNotFoundError(str(owner_id))
        return remaining
