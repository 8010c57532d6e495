"""
OrderService -- order creation, status transitions, cancellation, resize
and detail edits.

Responsibility:
    Owns every mutation of Order.status.  Creation reserves allowance,
    inserts the order, seeds its timeline and opens the first payment
    attempt.  Status changes consult the state machine in
    ``domain/order_state.py`` before touching anything.  Cancellation is
    one central routine used by requesters, operators, delivery failure and
    the bulk coordinator alike.

Architecture position:
    Kernel > Services -- imperative shell.  Uses AllowanceService and
    OrderEventRecorder; used by DeliveryService and BulkActionService.

Invariants enforced:
    - Status transitions follow VALID_ORDER_TRANSITIONS; terminal states
      never change.
    - Allowance conservation: create reserves quantity, cancel releases it
      exactly once (a second cancel is rejected before releasing), resize
      reserves or releases the difference.
    - SUCCESS payments are never cancelled or re-priced.
    - Every stored status change writes exactly one OrderEvent.

Failure modes:
    - OwnerNotFoundError / OrderNotFoundError (404).
    - ValidationError from command validation (400), before any mutation.
    - AuthorizationError when a requester cancels someone else's order.
    - InvalidOrderTransitionError, PaymentNotSettledError,
      AssignmentRequiredError, InsufficientAllowanceError,
      PaymentStateConflictError, DuplicatePaymentReferenceError,
      OrderClosedError (409).

Audit relevance:
    order_created / order_transitioned / order_cancelled / order_resized /
    order_details_updated are logged with order_id, owner_id and the
    before/after values.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fulfillment_kernel.db.types import order_amount
from fulfillment_kernel.domain.commands import (
    CancelOrder,
    ChangeOrderStatus,
    CreateOrder,
    ResizeOrder,
    UpdateOrderDetails,
)
from fulfillment_kernel.domain.dtos import OrderInfo
from fulfillment_kernel.domain.order_state import (
    ORDER_ASSIGNMENT_SYNC,
    AssignmentStatus,
    OrderStatus,
    PaymentStatus,
    guard_requester_cancel,
    guard_transition,
    transition_violation,
)
from fulfillment_kernel.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicatePaymentReferenceError,
    OrderClosedError,
    PaymentStateConflictError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import Order, PaymentRecord
from fulfillment_kernel.services.allowance_service import AllowanceService
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.lookups import (
    assignment_for_order,
    latest_payment,
    load_order,
    load_owner,
    reference_in_use,
)
from fulfillment_kernel.services.order_event_recorder import (
    OrderEventRecorder,
    status_change_description,
    status_change_title,
)

logger = get_logger("services.order")

# Payment statuses flipped to CANCELLED when their order is cancelled.
_CANCELLABLE_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


class OrderService(BaseService[Order]):
    """
    Order aggregate operations.

    Contract:
        Public methods take ids plus a typed command and return OrderInfo.
        ``transition`` and ``cancel_order`` take a loaded Order and are the
        building blocks other kernel services reuse.

    Non-goals:
        - Does NOT commit.
        - Does NOT send notifications (the gateway does, after commit).
    """

    def __init__(self, session, clock=None, policy=None):
        super().__init__(session, clock, policy)
        self._allowance = AllowanceService(session, self.clock, self.policy)
        self._events = OrderEventRecorder(session, self.clock)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order(
        self,
        owner_id: UUID,
        command: CreateOrder,
        actor_id: UUID | None = None,
    ) -> OrderInfo:
        """
        Submit an order for ``owner_id``.

        One unit of work: reserve allowance, insert the order, seed the
        Started / Booking Requested events, open payment attempt #1.
        """
        command = command.validated(self.policy, today=self.clock.today())
        actor_id = actor_id or owner_id
        owner = load_owner(self.session, owner_id)

        if command.external_reference and reference_in_use(self.session, command.external_reference):
            raise DuplicatePaymentReferenceError(command.external_reference)

        self._allowance.reserve(owner_id, command.quantity, actor_id)

        order = Order(
            owner_id=owner_id,
            quantity=command.quantity,
            payment_method=command.payment_method.value,
            status=OrderStatus.PENDING.value,
            requested_at=self.clock.now(),
            expected_date=command.expected_date,
            notes=command.notes,
            contact_name=owner.name,
            contact_email=owner.email,
            contact_phone=owner.phone,
            delivery_address=command.delivery_address or owner.address,
            receiver_name=command.receiver_name,
            receiver_phone=command.receiver_phone,
            created_by_id=actor_id,
        )
        self.session.add(order)
        self.session.flush()

        self._events.record(order, "Started", "Booking process started.", actor_id)
        self._events.record(
            order,
            "Booking Requested",
            "Your booking request was submitted and is pending approval.",
            actor_id,
        )

        payment = PaymentRecord(
            order_id=order.id,
            attempt_no=1,
            amount=order_amount(order.quantity, self.policy.unit_price),
            method=order.payment_method,
            status=PaymentStatus.PENDING.value,
            external_reference=command.external_reference,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(payment)
                self.session.flush()
        except IntegrityError:
            if command.external_reference is None:
                raise
            raise DuplicatePaymentReferenceError(command.external_reference) from None

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "owner_id": str(owner_id),
                "quantity": order.quantity,
                "payment_method": order.payment_method,
                "amount": payment.amount,
            },
        )
        return order.to_dto()

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _guard_inputs(self, order: Order) -> dict:
        latest = latest_payment(self.session, order.id)
        return {
            "payment_method": order.payment_method,
            "latest_payment_status": latest.status if latest else None,
            "has_assignment": assignment_for_order(self.session, order.id) is not None,
        }

    def violation_for(self, order: Order, target: OrderStatus) -> ConflictError | None:
        """Non-raising guard check (used to filter bulk selections)."""
        return transition_violation(order.id, order.status, target, **self._guard_inputs(order))

    def transition(
        self,
        order: Order,
        target: OrderStatus,
        actor_id: UUID,
        *,
        reason: str | None = None,
        sync_assignment: bool = True,
        title: str | None = None,
        description: str | None = None,
    ) -> Order:
        """
        Move ``order`` to ``target`` (any target except CANCELLED).

        Guards run first; on success the status is stored, DELIVERED stamps
        delivered_at, the assignment sub-status follows when
        ``sync_assignment`` is set, and one event is written.
        """
        if target == OrderStatus.CANCELLED:
            return self.cancel_order(order, reason, actor_id, title=title, description=description)

        guard_transition(order.id, order.status, target, **self._guard_inputs(order))

        previous = order.status
        order.status = target.value
        order.updated_by_id = actor_id
        if target == OrderStatus.DELIVERED:
            order.delivered_at = self.clock.now()

        if sync_assignment and target in ORDER_ASSIGNMENT_SYNC:
            self._sync_assignment(order, ORDER_ASSIGNMENT_SYNC[target], actor_id)

        self.session.flush()
        self._events.record(
            order,
            title or status_change_title(target),
            description or status_change_description(previous, target, reason),
            actor_id,
        )
        logger.info(
            "order_transitioned",
            extra={
                "order_id": str(order.id),
                "from_status": previous,
                "to_status": target.value,
            },
        )
        return order

    def _sync_assignment(self, order: Order, status: AssignmentStatus, actor_id: UUID) -> None:
        assignment = assignment_for_order(self.session, order.id)
        if assignment is None or assignment.status == status.value:
            return
        now = self.clock.now()
        if assignment.picked_up_at is None:
            assignment.picked_up_at = now
        if status == AssignmentStatus.DELIVERED:
            assignment.delivered_at = now
        assignment.status = status.value
        assignment.updated_by_id = actor_id
        logger.debug(
            "assignment_synced_from_order",
            extra={"order_id": str(order.id), "assignment_status": status.value},
        )

    def change_status(
        self,
        order_id: UUID,
        command: ChangeOrderStatus,
        actor_id: UUID,
    ) -> OrderInfo:
        """Operator-driven status change (CANCELLED requires a reason)."""
        command = command.validated(self.policy)
        order = load_order(self.session, order_id, lock=True)
        self.transition(order, command.status, actor_id, reason=command.reason)
        return order.to_dto()

    def approve(self, order_id: UUID, actor_id: UUID) -> OrderInfo:
        return self.change_status(order_id, ChangeOrderStatus(OrderStatus.APPROVED), actor_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_order(
        self,
        order: Order,
        reason: str | None,
        actor_id: UUID,
        *,
        title: str | None = None,
        description: str | None = None,
    ) -> Order:
        """
        Central cancellation routine.

        Releases the full quantity, cancels PENDING/FAILED payments (SUCCESS
        is left alone), records the reason in notes, fails an active
        assignment and writes one event.  A terminal order is rejected
        before anything changes, so repeating a cancel never releases twice.
        """
        guard_transition(order.id, order.status, OrderStatus.CANCELLED, **self._guard_inputs(order))
        previous = order.status

        self._allowance.release(order.owner_id, order.quantity, actor_id)

        payments = self.session.execute(
            select(PaymentRecord).where(
                PaymentRecord.order_id == order.id,
                PaymentRecord.status.in_(_CANCELLABLE_PAYMENT_STATUSES),
            )
        ).scalars().all()
        for payment in payments:
            payment.status = PaymentStatus.CANCELLED.value
            payment.updated_by_id = actor_id

        assignment = assignment_for_order(self.session, order.id)
        if assignment is not None and assignment.status_enum.is_active:
            assignment.status = AssignmentStatus.FAILED.value
            assignment.updated_by_id = actor_id

        if reason:
            order.append_note(f"Cancellation reason: {reason}")
        order.status = OrderStatus.CANCELLED.value
        order.updated_by_id = actor_id
        self.session.flush()

        self._events.record(
            order,
            title or status_change_title(OrderStatus.CANCELLED),
            description or status_change_description(previous, OrderStatus.CANCELLED, reason),
            actor_id,
        )
        logger.info(
            "order_cancelled",
            extra={
                "order_id": str(order.id),
                "owner_id": str(order.owner_id),
                "from_status": previous,
                "released": order.quantity,
                "reason": reason,
            },
        )
        return order

    def cancel_by_requester(
        self,
        order_id: UUID,
        owner_id: UUID,
        command: CancelOrder,
        actor_id: UUID | None = None,
    ) -> OrderInfo:
        """Owner withdraws a PENDING or APPROVED order; reason optional."""
        command = command.validated(self.policy)
        order = load_order(self.session, order_id, lock=True)
        if order.owner_id != owner_id:
            raise AuthorizationError(
                f"Order {order_id} does not belong to the requester",
                actor_id=str(owner_id),
            )
        guard_requester_cancel(order.id, order.status)
        self.cancel_order(order, command.reason, actor_id or owner_id)
        return order.to_dto()

    def cancel_by_operator(
        self,
        order_id: UUID,
        command: CancelOrder,
        actor_id: UUID,
    ) -> OrderInfo:
        """Operator cancels any non-terminal order; reason required."""
        command = command.validated(self.policy, reason_required=True)
        order = load_order(self.session, order_id, lock=True)
        self.cancel_order(order, command.reason, actor_id)
        return order.to_dto()

    # ------------------------------------------------------------------
    # Resize
    # ------------------------------------------------------------------

    def resize(self, order_id: UUID, command: ResizeOrder, actor_id: UUID) -> OrderInfo:
        """
        Change the quantity of a non-terminal order.

        A positive difference is reserved (409 when the owner lacks quota),
        a negative one released.  The latest payment is re-priced; an order
        whose latest payment is SUCCESS cannot be resized.
        """
        command = command.validated(self.policy)
        order = load_order(self.session, order_id, lock=True)
        if order.status_enum.is_terminal:
            raise ConflictError(f"Order {order_id} is {order.status} and cannot be resized")

        latest = latest_payment(self.session, order.id)
        if latest is not None and latest.status == PaymentStatus.SUCCESS:
            raise PaymentStateConflictError(
                str(latest.id),
                latest.status,
                "settled amount cannot be changed by a resize",
            )

        old_quantity = order.quantity
        delta = command.quantity - old_quantity
        if delta == 0:
            return order.to_dto()

        if delta > 0:
            self._allowance.reserve(order.owner_id, delta, actor_id)
        else:
            self._allowance.release(order.owner_id, -delta, actor_id)

        order.quantity = command.quantity
        order.updated_by_id = actor_id
        if latest is not None:
            latest.amount = order_amount(command.quantity, self.policy.unit_price)
            latest.updated_by_id = actor_id
        self.session.flush()

        self._events.record(
            order,
            "Quantity Updated",
            f"Quantity changed from {old_quantity} to {command.quantity}.",
            actor_id,
        )
        logger.info(
            "order_resized",
            extra={
                "order_id": str(order.id),
                "old_quantity": old_quantity,
                "new_quantity": command.quantity,
            },
        )
        return order.to_dto()

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    def update_details(
        self,
        order_id: UUID,
        command: UpdateOrderDetails,
        actor_id: UUID,
    ) -> OrderInfo:
        """
        Operator edits receiver, address, expected date or notes of an open
        order.  Fields already holding the given value are not reported as
        changed; when nothing differs no event is written.
        """
        command = command.validated(self.policy, today=self.clock.today())
        order = load_order(self.session, order_id, lock=True)
        if order.status_enum.is_terminal:
            raise OrderClosedError(str(order.id), order.status)

        changed = [
            name for name, value in command.changes().items() if getattr(order, name) != value
        ]
        if not changed:
            return order.to_dto()

        for name in changed:
            setattr(order, name, getattr(command, name))
        order.updated_by_id = actor_id
        self.session.flush()

        self._events.record(
            order,
            "Booking Details Updated",
            f"Updated {', '.join(name.replace('_', ' ') for name in changed)}.",
            actor_id,
        )
        logger.info(
            "order_details_updated",
            extra={"order_id": str(order.id), "fields": changed},
        )
        return order.to_dto()
