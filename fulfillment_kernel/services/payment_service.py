"""
PaymentService -- payment attempts and operator reconciliation.

Responsibility:
    Manages the attempt chain of an order's payments: on-delivery edits by
    the operator, reference submission, confirmation and rejection of
    prepaid transfers, and requester retries after a rejection.

Architecture position:
    Kernel > Services -- imperative shell.  Writes order events through
    OrderEventRecorder; never changes Order.status (approval is a separate
    OrderService call that reads the latest payment).

Invariants enforced:
    - The latest attempt (highest attempt_no) is authoritative.
    - SUCCESS is terminal: confirmed and settled records are never edited.
    - No two PENDING/SUCCESS records share an external reference (checked
      up front, and by the partial unique index at flush).
    - A retry never mutates the failed record's reference; it annotates
      the record and opens attempt_no + 1.

Failure modes:
    - PaymentNotFoundError / OrderNotFoundError (404).
    - AuthorizationError when a requester acts on someone else's order.
    - OrderClosedError, PaymentMethodMismatchError,
      PaymentStateConflictError, DuplicatePaymentReferenceError (409).
    - ValidationError for malformed references or short rejection reasons.

Audit relevance:
    payment_confirmed / payment_rejected / payment_retried are logged with
    payment_id, order_id and attempt number.
"""

from contextlib import contextmanager
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from fulfillment_kernel.db.types import order_amount
from fulfillment_kernel.domain.commands import (
    ConfirmPayment,
    EditOnDeliveryPayment,
    RejectPayment,
    RetryPayment,
    SubmitPaymentReference,
)
from fulfillment_kernel.domain.dtos import PaymentInfo
from fulfillment_kernel.domain.order_state import OrderStatus, PaymentMethod, PaymentStatus
from fulfillment_kernel.domain.values import TransactionReference
from fulfillment_kernel.exceptions import (
    AuthorizationError,
    DuplicatePaymentReferenceError,
    OrderClosedError,
    PaymentMethodMismatchError,
    PaymentNotFoundError,
    PaymentStateConflictError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import Order, PaymentRecord
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.lookups import (
    latest_payment,
    load_order,
    load_payment,
    reference_in_use,
)
from fulfillment_kernel.services.order_event_recorder import OrderEventRecorder

logger = get_logger("services.payment")


class PaymentService(BaseService[PaymentRecord]):
    """
    Payment reconciliation.

    Contract:
        Every method validates its command, loads and checks the records,
        mutates, flushes and writes one order event.  Returns PaymentInfo.

    Non-goals:
        - Does NOT talk to a payment provider.  References are reported by
          the requester and checked by an operator.
    """

    def __init__(self, session, clock=None, policy=None):
        super().__init__(session, clock, policy)
        self._events = OrderEventRecorder(session, self.clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_owner(order: Order, owner_id: UUID) -> None:
        if order.owner_id != owner_id:
            raise AuthorizationError(
                f"Order {order.id} does not belong to the requester",
                actor_id=str(owner_id),
            )

    @staticmethod
    def _require_open(order: Order) -> None:
        if order.status == OrderStatus.CANCELLED:
            raise OrderClosedError(str(order.id), order.status)

    @staticmethod
    def _require_method(order: Order, method: PaymentMethod) -> None:
        if order.payment_method != method:
            raise PaymentMethodMismatchError(str(order.id), method.value, order.payment_method)

    def _require_pending_prepaid(self, payment: PaymentRecord) -> None:
        if not payment.is_prepaid:
            raise PaymentStateConflictError(
                str(payment.id), payment.status, "only prepaid transfers are reviewed"
            )
        if payment.status != PaymentStatus.PENDING:
            raise PaymentStateConflictError(
                str(payment.id), payment.status, "only PENDING payments can be reviewed"
            )

    def _require_reference_free(self, reference: str, payment_id: UUID | None = None) -> None:
        if reference_in_use(self.session, reference, exclude_payment_id=payment_id):
            logger.warning("payment_reference_collision", extra={"reference": reference})
            raise DuplicatePaymentReferenceError(reference)

    @contextmanager
    def _reference_savepoint(self, reference: str):
        """Apply and flush reference changes in a savepoint; a racing duplicate becomes a 409."""
        try:
            with self.session.begin_nested():
                yield
                self.session.flush()
        except IntegrityError:
            raise DuplicatePaymentReferenceError(reference) from None

    def _latest(self, order: Order) -> PaymentRecord:
        payment = latest_payment(self.session, order.id)
        if payment is None:
            raise PaymentNotFoundError(order_id=str(order.id))
        return payment

    # ------------------------------------------------------------------
    # On-delivery payments (operator)
    # ------------------------------------------------------------------

    def edit_on_delivery(
        self,
        order_id: UUID,
        command: EditOnDeliveryPayment,
        actor_id: UUID,
    ) -> PaymentInfo:
        """
        Set amount and/or status of the latest on-delivery payment.

        Creates attempt #1 when the order has no payment yet.
        """
        command = command.validated(self.policy)
        order = load_order(self.session, order_id, lock=True)
        self._require_method(order, PaymentMethod.ON_DELIVERY)
        self._require_open(order)

        payment = latest_payment(self.session, order.id)
        if payment is None:
            payment = PaymentRecord(
                order_id=order.id,
                attempt_no=1,
                amount=order_amount(order.quantity, self.policy.unit_price),
                method=order.payment_method,
                status=PaymentStatus.PENDING.value,
                created_by_id=actor_id,
            )
            self.session.add(payment)
        elif payment.status == PaymentStatus.SUCCESS:
            raise PaymentStateConflictError(
                str(payment.id), payment.status, "settled payments cannot be edited"
            )

        changes = []
        if command.amount is not None:
            payment.amount = command.amount
            changes.append(f"amount set to {command.amount}")
        if command.status is not None:
            payment.status = command.status.value
            changes.append(f"status set to {command.status.value}")
            if command.status == PaymentStatus.SUCCESS:
                payment.paid_at = self.clock.now()
        if command.note:
            payment.append_note(command.note)
        payment.updated_by_id = actor_id
        self.session.flush()

        self._events.record(
            order,
            "Payment updated",
            f"Payment {'; '.join(changes)}.",
            actor_id,
        )
        logger.info(
            "payment_updated",
            extra={
                "payment_id": str(payment.id),
                "order_id": str(order.id),
                "amount": payment.amount,
                "status": payment.status,
            },
        )
        return payment.to_dto()

    # ------------------------------------------------------------------
    # Prepaid transfers
    # ------------------------------------------------------------------

    def submit_reference(
        self,
        order_id: UUID,
        owner_id: UUID,
        command: SubmitPaymentReference,
        actor_id: UUID | None = None,
    ) -> PaymentInfo:
        """Requester reports the transfer reference for review."""
        command = command.validated(self.policy)
        order = load_order(self.session, order_id, lock=True)
        self._require_owner(order, owner_id)
        self._require_open(order)
        self._require_method(order, PaymentMethod.PREPAID_TRANSFER)

        payment = self._latest(order)
        self._require_pending_prepaid(payment)
        if payment.external_reference:
            raise PaymentStateConflictError(
                str(payment.id), payment.status, "a reference was already submitted"
            )
        self._require_reference_free(command.reference, payment.id)

        with self._reference_savepoint(command.reference):
            payment.external_reference = command.reference
            payment.updated_by_id = actor_id or owner_id

        self._events.record(
            order,
            "Payment Submitted",
            "Transaction reference submitted for verification.",
            actor_id or owner_id,
        )
        logger.info(
            "payment_reference_submitted",
            extra={"payment_id": str(payment.id), "order_id": str(order.id)},
        )
        return payment.to_dto()

    def confirm(self, payment_id: UUID, command: ConfirmPayment, actor_id: UUID) -> PaymentInfo:
        """
        Operator confirms a PENDING prepaid payment.

        The reference given here (or the one already submitted) is
        normalized, validated and checked for collisions before the record
        becomes SUCCESS.  The order status is not changed.
        """
        command = command.validated(self.policy)
        payment = load_payment(self.session, payment_id, lock=True)
        self._require_pending_prepaid(payment)
        order = load_order(self.session, payment.order_id)
        self._require_open(order)

        reference = command.reference
        if reference is None:
            if not payment.external_reference:
                raise ValidationError(
                    "A transaction reference is required to confirm a prepaid payment",
                    field="reference",
                )
            reference = TransactionReference.parse(
                payment.external_reference,
                min_length=self.policy.min_reference_length,
                max_length=self.policy.max_reference_length,
                pattern=self.policy.reference_pattern,
            ).value
        self._require_reference_free(reference, payment.id)

        with self._reference_savepoint(reference):
            payment.external_reference = reference
            payment.status = PaymentStatus.SUCCESS.value
            payment.paid_at = self.clock.now()
            payment.failure_reason = None
            payment.updated_by_id = actor_id

        self._events.record(
            order,
            "Payment Confirmed",
            f"Payment verified with transaction reference {reference}.",
            actor_id,
        )
        logger.info(
            "payment_confirmed",
            extra={
                "payment_id": str(payment.id),
                "order_id": str(order.id),
                "attempt_no": payment.attempt_no,
            },
        )
        return payment.to_dto()

    def reject(self, payment_id: UUID, command: RejectPayment, actor_id: UUID) -> PaymentInfo:
        """Operator rejects a PENDING prepaid payment with a reason."""
        command = command.validated(self.policy)
        payment = load_payment(self.session, payment_id, lock=True)
        self._require_pending_prepaid(payment)
        order = load_order(self.session, payment.order_id)

        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = command.reason
        payment.updated_by_id = actor_id
        self.session.flush()

        self._events.record(
            order,
            "Payment Rejected",
            f"Payment rejected: {command.reason}",
            actor_id,
        )
        logger.info(
            "payment_rejected",
            extra={
                "payment_id": str(payment.id),
                "order_id": str(order.id),
                "attempt_no": payment.attempt_no,
            },
        )
        return payment.to_dto()

    def retry(
        self,
        order_id: UUID,
        owner_id: UUID,
        command: RetryPayment,
        actor_id: UUID | None = None,
    ) -> PaymentInfo:
        """
        Requester retries after a rejection with a fresh reference.

        Opens attempt_no + 1 (PENDING, same amount) and annotates the failed
        attempt with ``RETRIED - <timestamp>``.
        """
        command = command.validated(self.policy)
        actor_id = actor_id or owner_id
        order = load_order(self.session, order_id, lock=True)
        self._require_owner(order, owner_id)
        self._require_open(order)
        self._require_method(order, PaymentMethod.PREPAID_TRANSFER)

        failed = self._latest(order)
        if failed.status != PaymentStatus.FAILED:
            raise PaymentStateConflictError(
                str(failed.id), failed.status, "only a FAILED payment can be retried"
            )
        self._require_reference_free(command.reference)

        attempt = PaymentRecord(
            order_id=order.id,
            attempt_no=failed.attempt_no + 1,
            amount=failed.amount,
            method=failed.method,
            status=PaymentStatus.PENDING.value,
            external_reference=command.reference,
            created_by_id=actor_id,
        )
        with self._reference_savepoint(command.reference):
            failed.append_note(f"RETRIED - {self.clock.now().isoformat()}")
            failed.updated_by_id = actor_id
            self.session.add(attempt)

        self._events.record(
            order,
            "Payment Retry",
            "A new transaction reference was submitted after the previous payment was rejected.",
            actor_id,
        )
        logger.info(
            "payment_retried",
            extra={
                "payment_id": str(attempt.id),
                "order_id": str(order.id),
                "attempt_no": attempt.attempt_no,
            },
        )
        return attempt.to_dto()
