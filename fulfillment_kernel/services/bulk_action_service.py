"""
BulkActionService -- one operator action applied across many orders.

Responsibility:
    Approves, assigns or cancels a selection of orders.  The selection is
    checked as a whole first (unknown ids are reported, any DELIVERED order
    blocks the whole call), then filtered to the eligible subset, and each
    eligible order is mutated inside its own SAVEPOINT.

Architecture position:
    Kernel > Services -- orchestrates OrderService and DeliveryService; it
    never changes an order itself.

Invariants enforced:
    - A selection containing a DELIVERED order mutates nothing.
    - Eligibility is decided by the same guards the single-order
      operations use (``OrderService.violation_for``), so bulk and single calls
      cannot disagree.
    - An item that fails is rolled back alone; the rest still apply.
    - Re-running the same call is safe: already-processed orders are no
      longer eligible and are reported as skipped.

Failure modes:
    - BulkActionBlockedError (409) naming the DELIVERED ids.
    - CourierNotFoundError / CourierInactiveError for a bad courier
      parameter on assign-delivery.
"""

from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.domain.commands import BulkAction
from fulfillment_kernel.domain.dtos import BulkActionResult, BulkItemError
from fulfillment_kernel.domain.order_state import OrderStatus
from fulfillment_kernel.domain.values import BulkActionType
from fulfillment_kernel.exceptions import (
    BulkActionBlockedError,
    CourierInactiveError,
    FulfillmentKernelError,
    OrderNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import Courier, Order
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.delivery_service import DeliveryService
from fulfillment_kernel.services.lookups import assignment_for_order, load_courier
from fulfillment_kernel.services.order_service import OrderService

logger = get_logger("services.bulk_action")


class BulkActionService(BaseService[Order]):
    """Bulk approve / assign-delivery / cancel."""

    def __init__(self, session, clock=None, policy=None):
        super().__init__(session, clock, policy)
        self._orders = OrderService(session, self.clock, self.policy)
        self._deliveries = DeliveryService(session, self.clock, self.policy)

    def _is_eligible(self, order: Order, command: BulkAction, courier: Courier | None) -> bool:
        if command.action == BulkActionType.APPROVE:
            return self._orders.violation_for(order, OrderStatus.APPROVED) is None
        if command.action == BulkActionType.ASSIGN_DELIVERY:
            return (
                order.status == OrderStatus.APPROVED
                and assignment_for_order(self.session, order.id) is None
                and courier is not None
                and courier.is_active
            )
        return not order.status_enum.is_terminal

    def _apply(self, order: Order, command: BulkAction, actor_id: UUID) -> None:
        if command.action == BulkActionType.APPROVE:
            self._orders.transition(order, OrderStatus.APPROVED, actor_id)
        elif command.action == BulkActionType.ASSIGN_DELIVERY:
            self._deliveries.assign(order.id, command.assignment(), actor_id)
        else:
            self._orders.cancel_order(
                order,
                command.reason,
                actor_id,
                description=f"Booking cancelled by admin: {command.reason}",
            )

    def execute(self, command: BulkAction, actor_id: UUID) -> BulkActionResult:
        """
        Run ``command`` over its order ids.

        Returns:
            BulkActionResult with the mutated ids, the skipped (ineligible)
            ids and per-item errors (unknown ids, items that failed).
        """
        command = command.validated(self.policy)

        found = {
            order.id: order
            for order in self.session.execute(
                select(Order)
                .where(Order.id.in_(command.order_ids))
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        }

        errors: list[BulkItemError] = []
        for order_id in command.order_ids:
            if order_id not in found:
                missing = OrderNotFoundError(str(order_id))
                errors.append(BulkItemError(order_id, missing.code, str(missing)))

        delivered = [
            str(order_id)
            for order_id in command.order_ids
            if order_id in found and found[order_id].status == OrderStatus.DELIVERED
        ]
        if delivered:
            logger.warning(
                "bulk_action_blocked",
                extra={"action": command.action.value, "delivered_ids": delivered},
            )
            raise BulkActionBlockedError(command.action.value, delivered)

        courier = None
        if command.action == BulkActionType.ASSIGN_DELIVERY:
            courier = load_courier(self.session, command.courier_id)
            if not courier.is_active:
                raise CourierInactiveError(str(courier.id))

        eligible = [
            found[order_id]
            for order_id in command.order_ids
            if order_id in found and self._is_eligible(found[order_id], command, courier)
        ]
        skipped = tuple(
            order_id
            for order_id in command.order_ids
            if order_id in found and found[order_id] not in eligible
        )

        affected: list[UUID] = []
        for order in eligible:
            try:
                with self.session.begin_nested():
                    self._apply(order, command, actor_id)
            except FulfillmentKernelError as exc:
                logger.warning(
                    "bulk_item_failed",
                    extra={"order_id": str(order.id), "error_code": exc.code},
                )
                errors.append(BulkItemError(order.id, exc.code, str(exc)))
            else:
                affected.append(order.id)

        result = BulkActionResult(
            action=command.action,
            requested=len(command.order_ids),
            affected_count=len(affected),
            affected_ids=tuple(affected),
            skipped_ids=skipped,
            errors=tuple(errors),
        )
        logger.info(
            "bulk_action_completed",
            extra={
                "action": command.action.value,
                "requested": result.requested,
                "affected_count": result.affected_count,
                "skipped": len(skipped),
                "errors": len(errors),
            },
        )
        return result
