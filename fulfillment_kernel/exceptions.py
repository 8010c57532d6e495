"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected mutation must be reported precisely: the outer gateway maps
errors onto response status codes, and callers decide whether to show a
message, re-prompt for input, or stop a bulk run. Parsing message strings
for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has an HTTP_STATUS attribute (400/401/403/404/409/500)
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        order_service.create_order(owner_id, command)
    except InsufficientAllowanceError as e:
        return {"error": e.code, "remaining": e.remaining, "requested": e.requested}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FulfillmentKernelError:

    FulfillmentKernelError (base, 500)
    |
    +-- ValidationError (400)
    |
    +-- AuthenticationError (401)
    +-- AuthorizationError (403)
    |
    +-- NotFoundError (404)
    |   +-- OwnerNotFoundError
    |   +-- OrderNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- CourierNotFoundError
    |   +-- AssignmentNotFoundError
    |   +-- BatchNotFoundError
    |
    +-- ConflictError (409)
    |   +-- InsufficientAllowanceError
    |   +-- AllowanceCorrectionError
    |   +-- DuplicateOwnerError
    |   +-- OrderClosedError
    |   +-- InvalidOrderTransitionError
    |   +-- PaymentNotSettledError
    |   +-- AssignmentRequiredError
    |   +-- AssignmentNotAllowedError
    |   +-- DuplicateAssignmentError
    |   +-- CourierInactiveError
    |   +-- InvalidAssignmentTransitionError
    |   +-- PaymentStateConflictError
    |   +-- PaymentMethodMismatchError
    |   +-- DuplicatePaymentReferenceError
    |   +-- BulkActionBlockedError
    |   +-- InsufficientStockError
    |   +-- ImmutabilityViolationError
    |
    +-- InternalError (500)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | VALIDATION_ERROR              | Malformed / out-of-range input
Identity        | AUTHENTICATION_REQUIRED       | No principal for the call
                | NOT_AUTHORIZED                | Principal lacks the role / ownership
----------------|-------------------------------|---------------------------------------
Not found       | OWNER_NOT_FOUND               | Owner id doesn't exist
                | ORDER_NOT_FOUND               | Order id doesn't exist
                | PAYMENT_NOT_FOUND             | Payment id (or latest payment) missing
                | COURIER_NOT_FOUND             | Courier id doesn't exist
                | ASSIGNMENT_NOT_FOUND          | Assignment id doesn't exist
                | BATCH_NOT_FOUND               | Receipt batch id doesn't exist
----------------|-------------------------------|---------------------------------------
Conflict        | INSUFFICIENT_ALLOWANCE        | remaining_quota < requested
                | ALLOWANCE_CORRECTION_REJECTED | Correction would go negative
                | DUPLICATE_OWNER               | Email already registered
                | ORDER_CLOSED                  | Payment action on a terminal order
                | INVALID_ORDER_TRANSITION      | Status change not in the DAG
                | PAYMENT_NOT_SETTLED           | Prepaid approval with unpaid record
                | ASSIGNMENT_REQUIRED           | Dispatch/deliver without assignment
                | ASSIGNMENT_NOT_ALLOWED        | Assign while order not APPROVED
                | DUPLICATE_ASSIGNMENT          | Order already has an assignment
                | COURIER_INACTIVE              | Assign to an inactive courier
                | INVALID_ASSIGNMENT_TRANSITION | Assignment sub-status not allowed
                | PAYMENT_STATE_CONFLICT        | Wrong payment status
                | PAYMENT_METHOD_MISMATCH       | Action needs the other payment method
                | DUPLICATE_PAYMENT_REFERENCE   | Reference live on another record
                | BULK_ACTION_BLOCKED           | Bulk call touches a DELIVERED order
                | INSUFFICIENT_STOCK            | Negative delta exceeds on-hand total
                | IMMUTABILITY_VIOLATION        | Update/delete of an append-only row
----------------|-------------------------------|---------------------------------------
Internal        | INTERNAL_ERROR                | Store failure / unexpected exception

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATCH SPECIFIC EXCEPTIONS where the caller can do something useful:

    try:
        delivery_service.assign(order_id, command, actor_id)
    except DuplicateAssignmentError as e:
        show_existing(e.assignment_id)

2. CATCH CATEGORIES at the boundary (the gateway does this):

    except FulfillmentKernelError as e:
        return OperationResult.failure(e.http_status, e.code, str(e))

3. NEVER RETRY validation or conflict errors automatically. A store-level
   transient failure surfaces as InternalError and may be retried once by
   the caller.
"""


class FulfillmentKernelError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification and an `http_status` for the response envelope.
    """

    code: str = "FULFILLMENT_KERNEL_ERROR"
    http_status: int = 500


# Validation


class ValidationError(FulfillmentKernelError):
    """Malformed or out-of-range input. Raised before any state mutation."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Identity


class AuthenticationError(FulfillmentKernelError):
    """No authenticated principal is available for the call."""

    code: str = "AUTHENTICATION_REQUIRED"
    http_status: int = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(FulfillmentKernelError):
    """The principal is not allowed to perform the action."""

    code: str = "NOT_AUTHORIZED"
    http_status: int = 403

    def __init__(self, message: str, actor_id: str | None = None):
        self.actor_id = actor_id
        super().__init__(message)


# Missing entities


class NotFoundError(FulfillmentKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    http_status: int = 404


class OwnerNotFoundError(NotFoundError):
    """Owner with given ID was not found."""

    code: str = "OWNER_NOT_FOUND"

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Owner not found: {owner_id}")


class OrderNotFoundError(NotFoundError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment record was not found (by id, or no payment exists for an order)."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str | None = None, order_id: str | None = None):
        self.payment_id = payment_id
        self.order_id = order_id
        if payment_id is not None:
            message = f"Payment not found: {payment_id}"
        else:
            message = f"No payment record found for order {order_id}"
        super().__init__(message)


class CourierNotFoundError(NotFoundError):
    """Courier with given ID was not found."""

    code: str = "COURIER_NOT_FOUND"

    def __init__(self, courier_id: str):
        self.courier_id = courier_id
        super().__init__(f"Courier not found: {courier_id}")


class AssignmentNotFoundError(NotFoundError):
    """Delivery assignment with given ID was not found."""

    code: str = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Delivery assignment not found: {assignment_id}")


class BatchNotFoundError(NotFoundError):
    """Receipt batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Receipt batch not found: {batch_id}")


# Guard violations


class ConflictError(FulfillmentKernelError):
    """Base exception for guard / invariant violations."""

    code: str = "CONFLICT"
    http_status: int = 409


class InsufficientAllowanceError(ConflictError):
    """Owner's remaining quota does not cover the requested quantity."""

    code: str = "INSUFFICIENT_ALLOWANCE"

    def __init__(self, owner_id: str, requested: int, remaining: int | None):
        self.owner_id = owner_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Insufficient quota: requested {requested}, "
            f"remaining {remaining if remaining is not None else 'unknown'}"
        )


class AllowanceCorrectionError(ConflictError):
    """An administrative correction would drive a quota negative."""

    code: str = "ALLOWANCE_CORRECTION_REJECTED"

    def __init__(self, owner_id: str, delta: int):
        self.owner_id = owner_id
        self.delta = delta
        super().__init__(
            f"Allowance correction of {delta} would make owner {owner_id} quota negative"
        )


class DuplicateOwnerError(ConflictError):
    """An owner with this email is already registered."""

    code: str = "DUPLICATE_OWNER"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Owner already registered: {email}")


class OrderClosedError(ConflictError):
    """Payment actions and detail edits are not accepted on a cancelled or delivered order."""

    code: str = "ORDER_CLOSED"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}")


class InvalidOrderTransitionError(ConflictError):
    """Order status change is not permitted by the state machine."""

    code: str = "INVALID_ORDER_TRANSITION"

    def __init__(self, order_id: str, from_status: str, to_status: str, reason: str | None = None):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = f"Order {order_id} cannot move from {from_status} to {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PaymentNotSettledError(ConflictError):
    """Prepaid-transfer order cannot be approved before its payment succeeds."""

    code: str = "PAYMENT_NOT_SETTLED"

    def __init__(self, order_id: str, payment_status: str | None):
        self.order_id = order_id
        self.payment_status = payment_status
        super().__init__(
            f"Order {order_id} cannot be approved: prepaid transfer payment is "
            f"{payment_status or 'missing'}, not SUCCESS"
        )


class AssignmentRequiredError(ConflictError):
    """Dispatch / delivery requires a delivery assignment."""

    code: str = "ASSIGNMENT_REQUIRED"

    def __init__(self, order_id: str, target_status: str):
        self.order_id = order_id
        self.target_status = target_status
        super().__init__(
            f"Order {order_id} must be assigned to a courier before moving to {target_status}"
        )


class AssignmentNotAllowedError(ConflictError):
    """Assignments may only be created while the order is APPROVED."""

    code: str = "ASSIGNMENT_NOT_ALLOWED"

    def __init__(self, order_id: str, order_status: str):
        self.order_id = order_id
        self.order_status = order_status
        super().__init__(
            f"Order {order_id} is {order_status}; only APPROVED orders can be assigned"
        )


class DuplicateAssignmentError(ConflictError):
    """Order already has a delivery assignment."""

    code: str = "DUPLICATE_ASSIGNMENT"

    def __init__(self, order_id: str, assignment_id: str):
        self.order_id = order_id
        self.assignment_id = assignment_id
        super().__init__(f"Order {order_id} is already assigned ({assignment_id})")


class CourierInactiveError(ConflictError):
    """Courier is deactivated and cannot receive assignments."""

    code: str = "COURIER_INACTIVE"

    def __init__(self, courier_id: str):
        self.courier_id = courier_id
        super().__init__(f"Courier {courier_id} is not active")


class InvalidAssignmentTransitionError(ConflictError):
    """Assignment sub-status change is not permitted."""

    code: str = "INVALID_ASSIGNMENT_TRANSITION"

    def __init__(self, assignment_id: str, from_status: str, to_status: str):
        self.assignment_id = assignment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Assignment {assignment_id} cannot move from {from_status} to {to_status}"
        )


class PaymentStateConflictError(ConflictError):
    """Payment record is in the wrong status for the requested action."""

    code: str = "PAYMENT_STATE_CONFLICT"

    def __init__(self, payment_id: str, status: str, reason: str):
        self.payment_id = payment_id
        self.status = status
        self.reason = reason
        super().__init__(f"Payment {payment_id} ({status}): {reason}")


class PaymentMethodMismatchError(ConflictError):
    """The action only applies to orders paid with the other method."""

    code: str = "PAYMENT_METHOD_MISMATCH"

    def __init__(self, order_id: str, expected: str, actual: str):
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order {order_id} is paid by {actual}; this action requires {expected}"
        )


class DuplicatePaymentReferenceError(ConflictError):
    """External reference is already live on another PENDING/SUCCESS record."""

    code: str = "DUPLICATE_PAYMENT_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transaction reference {reference} is already in use")


class BulkActionBlockedError(ConflictError):
    """Bulk call selected orders that are already DELIVERED."""

    code: str = "BULK_ACTION_BLOCKED"

    def __init__(self, action: str, delivered_ids: list[str]):
        self.action = action
        self.delivered_ids = delivered_ids
        super().__init__(
            f"Service fulfilled, no bulk mutation allowed: "
            f"{', '.join(delivered_ids)} already DELIVERED"
        )


class InsufficientStockError(ConflictError):
    """Negative adjustment would drive the on-hand total below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, delta: int, available: int | None):
        self.delta = delta
        self.available = available
        super().__init__(
            f"Stock adjustment of {delta} exceeds available stock ({available})"
        )


class ImmutabilityViolationError(ConflictError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Unexpected


class InternalError(FulfillmentKernelError):
    """Store failure or unexpected exception, wrapped at the boundary."""

    code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(self, message: str = "Internal server error", cause: str | None = None):
        self.cause = cause
        super().__init__(message)
