"""
Order state machine -- the single authority on order status legality.

Responsibility:
    Declares the lifecycle enumerations (order status, payment method,
    payment status, assignment sub-status) and every status-transition guard.
    Services never re-derive legality; they call ``guard_transition`` (or
    ``transition_violation`` when they only need a yes/no, as the bulk
    coordinator does) before mutating anything.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Inputs are plain
    values (statuses, flags) so the guards can be evaluated without a
    session.

Invariants enforced:
    - Order status transitions follow VALID_ORDER_TRANSITIONS only.
    - DELIVERED and CANCELLED are terminal.
    - PENDING -> APPROVED for PREPAID_TRANSFER requires a SUCCESS payment.
    - OUT_FOR_DELIVERY / DELIVERED require a delivery assignment.
    - Assignment sub-status follows VALID_ASSIGNMENT_TRANSITIONS and
      propagates to the order via ASSIGNMENT_ORDER_PROPAGATION.

Failure modes:
    - InvalidOrderTransitionError, PaymentNotSettledError,
      AssignmentRequiredError, InvalidAssignmentTransitionError (all 409).
"""

from enum import Enum
from uuid import UUID

from fulfillment_kernel.exceptions import (
    AssignmentRequiredError,
    ConflictError,
    InvalidAssignmentTransitionError,
    InvalidOrderTransitionError,
    PaymentNotSettledError,
)


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    State machine:
        PENDING -> APPROVED | CANCELLED
        APPROVED -> OUT_FOR_DELIVERY | CANCELLED
        OUT_FOR_DELIVERY -> DELIVERED | CANCELLED
        DELIVERED: terminal
        CANCELLED: terminal
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATUSES


class PaymentMethod(str, Enum):
    """How the order is paid for."""

    ON_DELIVERY = "ON_DELIVERY"            # Cash collected by the courier
    PREPAID_TRANSFER = "PREPAID_TRANSFER"  # External transfer, reconciled by operator


class PaymentStatus(str, Enum):
    """Payment record status. SUCCESS is terminal."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class AssignmentStatus(str, Enum):
    """
    Delivery assignment sub-status.

    State machine:
        ASSIGNED -> PICKED_UP | OUT_FOR_DELIVERY | FAILED
        PICKED_UP -> OUT_FOR_DELIVERY | FAILED
        OUT_FOR_DELIVERY -> DELIVERED | FAILED
        DELIVERED: terminal
        FAILED: terminal
    """

    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_ASSIGNMENT_STATUSES


TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})

# Allowed order transitions (from -> set of valid targets)
VALID_ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.APPROVED, OrderStatus.CANCELLED,
    }),
    OrderStatus.APPROVED: frozenset({
        OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED,
    }),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({
        OrderStatus.DELIVERED, OrderStatus.CANCELLED,
    }),
    # Terminal states -- no transitions allowed
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Owners may only withdraw orders that have not left the depot.
REQUESTER_CANCELLABLE: frozenset[OrderStatus] = frozenset({
    OrderStatus.PENDING,
    OrderStatus.APPROVED,
})

# Targets that need a courier bound to the order.
ASSIGNMENT_GATED: frozenset[OrderStatus] = frozenset({
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
})

ACTIVE_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset({
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.PICKED_UP,
    AssignmentStatus.OUT_FOR_DELIVERY,
})

VALID_ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.ASSIGNED: frozenset({
        AssignmentStatus.PICKED_UP,
        AssignmentStatus.OUT_FOR_DELIVERY,
        AssignmentStatus.FAILED,
    }),
    AssignmentStatus.PICKED_UP: frozenset({
        AssignmentStatus.OUT_FOR_DELIVERY,
        AssignmentStatus.FAILED,
    }),
    AssignmentStatus.OUT_FOR_DELIVERY: frozenset({
        AssignmentStatus.DELIVERED,
        AssignmentStatus.FAILED,
    }),
    AssignmentStatus.DELIVERED: frozenset(),
    AssignmentStatus.FAILED: frozenset(),
}

# Order status implied by an assignment sub-status (None = unchanged).
ASSIGNMENT_ORDER_PROPAGATION: dict[AssignmentStatus, OrderStatus | None] = {
    AssignmentStatus.PICKED_UP: None,
    AssignmentStatus.OUT_FOR_DELIVERY: OrderStatus.OUT_FOR_DELIVERY,
    AssignmentStatus.DELIVERED: OrderStatus.DELIVERED,
    AssignmentStatus.FAILED: OrderStatus.CANCELLED,
}

# Assignment sub-status implied by an operator-driven order status change.
ORDER_ASSIGNMENT_SYNC: dict[OrderStatus, AssignmentStatus] = {
    OrderStatus.OUT_FOR_DELIVERY: AssignmentStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: AssignmentStatus.DELIVERED,
}


def _as_order_status(value: OrderStatus | str) -> OrderStatus:
    return value if isinstance(value, OrderStatus) else OrderStatus(value)


def transition_violation(
    order_id: UUID | str,
    current: OrderStatus | str,
    target: OrderStatus | str,
    *,
    payment_method: PaymentMethod | str,
    latest_payment_status: PaymentStatus | str | None,
    has_assignment: bool,
) -> ConflictError | None:
    """
    Evaluate every guard for ``current -> target`` without raising.

    Returns:
        The first violated guard as an exception instance, or None when the
        transition is legal.
    """
    current = _as_order_status(current)
    target = _as_order_status(target)
    order_ref = str(order_id)

    if target not in VALID_ORDER_TRANSITIONS[current]:
        reason = "order is in a terminal state" if current.is_terminal else None
        return InvalidOrderTransitionError(order_ref, current.value, target.value, reason)

    if (
        current == OrderStatus.PENDING
        and target == OrderStatus.APPROVED
        and payment_method == PaymentMethod.PREPAID_TRANSFER
        and latest_payment_status != PaymentStatus.SUCCESS
    ):
        status = latest_payment_status.value if isinstance(latest_payment_status, PaymentStatus) else latest_payment_status
        return PaymentNotSettledError(order_ref, status)

    if target in ASSIGNMENT_GATED and not has_assignment:
        return AssignmentRequiredError(order_ref, target.value)

    return None


def guard_transition(
    order_id: UUID | str,
    current: OrderStatus | str,
    target: OrderStatus | str,
    *,
    payment_method: PaymentMethod | str,
    latest_payment_status: PaymentStatus | str | None,
    has_assignment: bool,
) -> None:
    """
    Raise the first violated guard for ``current -> target``.

    Raises:
        InvalidOrderTransitionError: target not reachable from current.
        PaymentNotSettledError: prepaid approval before payment SUCCESS.
        AssignmentRequiredError: dispatch/delivery without an assignment.
    """
    violation = transition_violation(
        order_id,
        current,
        target,
        payment_method=payment_method,
        latest_payment_status=latest_payment_status,
        has_assignment=has_assignment,
    )
    if violation is not None:
        raise violation


def guard_requester_cancel(order_id: UUID | str, current: OrderStatus | str) -> None:
    """Owners may cancel only PENDING or APPROVED orders."""
    current = _as_order_status(current)
    if current not in REQUESTER_CANCELLABLE:
        raise InvalidOrderTransitionError(
            str(order_id),
            current.value,
            OrderStatus.CANCELLED.value,
            "requesters may only cancel PENDING or APPROVED orders",
        )


def guard_assignment_transition(
    assignment_id: UUID | str,
    current: AssignmentStatus | str,
    target: AssignmentStatus | str,
) -> None:
    """Raise InvalidAssignmentTransitionError unless ``current -> target`` is allowed."""
    current = current if isinstance(current, AssignmentStatus) else AssignmentStatus(current)
    target = target if isinstance(target, AssignmentStatus) else AssignmentStatus(target)
    if target not in VALID_ASSIGNMENT_TRANSITIONS[current]:
        raise InvalidAssignmentTransitionError(str(assignment_id), current.value, target.value)
