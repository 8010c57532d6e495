"""
DeliveryService -- binding orders to couriers and advancing the handoff.

Responsibility:
    Creates the single delivery assignment of an APPROVED order and moves
    its sub-status through pickup, dispatch and delivery (or failure),
    propagating each step to the order through OrderService.

Architecture position:
    Kernel > Services -- imperative shell.  Delegates every order status
    change to OrderService.transition / cancel_order so the order guards
    are evaluated in exactly one place.

Invariants enforced:
    - At most one assignment per order (checked, then enforced by the
      unique constraint at flush).
    - Only APPROVED orders and active couriers are assigned.
    - Assignment sub-status follows VALID_ASSIGNMENT_TRANSITIONS.
    - FAILED cancels the order through the central cancellation routine,
      so the allowance is restored exactly once.

Failure modes:
    - OrderNotFoundError, CourierNotFoundError, AssignmentNotFoundError.
    - AssignmentNotAllowedError, DuplicateAssignmentError,
      CourierInactiveError, InvalidAssignmentTransitionError (409).
"""

from uuid import UUID

from sqlalchemy.exc import IntegrityError

from fulfillment_kernel.domain.commands import AdvanceDelivery, AssignDelivery
from fulfillment_kernel.domain.dtos import AssignmentInfo
from fulfillment_kernel.domain.order_state import (
    ASSIGNMENT_ORDER_PROPAGATION,
    AssignmentStatus,
    OrderStatus,
    guard_assignment_transition,
)
from fulfillment_kernel.exceptions import (
    AssignmentNotAllowedError,
    CourierInactiveError,
    DuplicateAssignmentError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import Courier, DeliveryAssignment, Order
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.lookups import (
    assignment_for_order,
    load_assignment,
    load_courier,
    load_order,
)
from fulfillment_kernel.services.order_event_recorder import (
    OrderEventRecorder,
    delivery_description,
    delivery_title,
)
from fulfillment_kernel.services.order_service import OrderService

logger = get_logger("services.delivery")

DELIVERY_FAILED_REASON = "Delivery failed"


class DeliveryService(BaseService[DeliveryAssignment]):
    """Delivery assignment lifecycle."""

    def __init__(self, session, clock=None, policy=None):
        super().__init__(session, clock, policy)
        self._orders = OrderService(session, self.clock, self.policy)
        self._events = OrderEventRecorder(session, self.clock)

    def check_assignable(self, order: Order, courier: Courier) -> None:
        """Raise the first reason ``order`` cannot be assigned to ``courier``."""
        if order.status != OrderStatus.APPROVED:
            raise AssignmentNotAllowedError(str(order.id), order.status)
        existing = assignment_for_order(self.session, order.id)
        if existing is not None:
            raise DuplicateAssignmentError(str(order.id), str(existing.id))
        if not courier.is_active:
            raise CourierInactiveError(str(courier.id))

    def assign(self, order_id: UUID, command: AssignDelivery, actor_id: UUID) -> AssignmentInfo:
        """
        Bind an APPROVED order to an active courier.

        The order stays APPROVED; its delivery_date follows the schedule.
        """
        command = command.validated(self.policy)
        order = load_order(self.session, order_id, lock=True)
        courier = load_courier(self.session, command.courier_id)
        self.check_assignable(order, courier)

        assignment = DeliveryAssignment(
            order_id=order.id,
            courier_id=courier.id,
            status=AssignmentStatus.ASSIGNED.value,
            scheduled_date=command.scheduled_date,
            scheduled_time=command.scheduled_time,
            priority=command.priority.value,
            notes=command.notes,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(assignment)
                order.delivery_date = command.scheduled_date
                order.updated_by_id = actor_id
                self.session.flush()
        except IntegrityError:
            existing = assignment_for_order(self.session, order.id)
            raise DuplicateAssignmentError(
                str(order.id), str(existing.id) if existing else "unknown"
            ) from None

        when = command.scheduled_date.isoformat()
        if command.scheduled_time:
            when = f"{when} {command.scheduled_time}"
        self._events.record(
            order,
            "Delivery Assigned",
            f"Assigned to {courier.name} for delivery on {when}.",
            actor_id,
        )
        logger.info(
            "delivery_assigned",
            extra={
                "order_id": str(order.id),
                "assignment_id": str(assignment.id),
                "courier_id": str(courier.id),
                "scheduled_date": when,
            },
        )
        return assignment.to_dto()

    def advance(
        self,
        assignment_id: UUID,
        command: AdvanceDelivery,
        actor_id: UUID,
    ) -> AssignmentInfo:
        """
        Move an assignment to its next sub-status and propagate to the order.

        PICKED_UP leaves the order as it is; OUT_FOR_DELIVERY and DELIVERED
        move the order along; FAILED cancels it.
        """
        command = command.validated(self.policy)
        assignment = load_assignment(self.session, assignment_id, lock=True)
        target = command.status
        guard_assignment_transition(assignment.id, assignment.status, target)

        order = load_order(self.session, assignment.order_id, lock=True)
        previous = assignment.status
        now = self.clock.now()

        assignment.status = target.value
        assignment.updated_by_id = actor_id
        if target in (AssignmentStatus.PICKED_UP, AssignmentStatus.OUT_FOR_DELIVERY):
            assignment.picked_up_at = assignment.picked_up_at or now
        if target == AssignmentStatus.DELIVERED:
            assignment.delivered_at = now
        if command.notes:
            assignment.notes = f"{assignment.notes}\n{command.notes}" if assignment.notes else command.notes
        self.session.flush()

        order_target = ASSIGNMENT_ORDER_PROPAGATION[target]
        if order_target is None or order.status == order_target:
            self._events.record(
                order,
                delivery_title(target),
                delivery_description(target),
                actor_id,
            )
        elif order_target == OrderStatus.CANCELLED:
            self._orders.cancel_order(
                order,
                DELIVERY_FAILED_REASON,
                actor_id,
                title=delivery_title(target),
                description=delivery_description(target, order_target, order.status),
            )
        else:
            self._orders.transition(
                order,
                order_target,
                actor_id,
                sync_assignment=False,
                title=delivery_title(target),
                description=delivery_description(target, order_target, order.status),
            )

        logger.info(
            "delivery_advanced",
            extra={
                "assignment_id": str(assignment.id),
                "order_id": str(order.id),
                "from_status": previous,
                "to_status": target.value,
                "order_status": order.status,
            },
        )
        return assignment.to_dto()
