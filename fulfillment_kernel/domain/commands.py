"""
Commands -- typed update variants for every mutating operation.

Responsibility:
    Each operation accepts exactly one frozen command dataclass carrying the
    fields that operation may change, never a free-form patch mapping.
    Identifiers and ownership are passed separately by the caller and are
    never part of a command, so a command cannot re-point an order at a
    different owner.

    ``validated(policy)`` checks every field against the KernelPolicy and
    returns a normalized copy (trimmed strings, normalized phone numbers,
    parsed references).  Services call it before touching the session, so a
    ValidationError always leaves the store untouched.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Self
from uuid import UUID

from fulfillment_kernel.domain.collaborators import Role
from fulfillment_kernel.domain.order_state import (
    AssignmentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from fulfillment_kernel.domain.policy import KernelPolicy
from fulfillment_kernel.domain.values import (
    NEGATIVE_ONLY_ADJUSTMENTS,
    BatchStatus,
    BulkActionType,
    DeliveryPriority,
    StockAdjustmentType,
    TransactionReference,
    normalize_person_name,
    normalize_phone,
)
from fulfillment_kernel.exceptions import ValidationError

MAX_NOTES_LENGTH = 500
EXPECTED_DATE_WINDOW_DAYS = 7


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _require_int(name: str, value: object, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", field=name)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}", field=name)
    if maximum is not None and value > maximum:
        raise ValidationError(f"{name} must be at most {maximum}", field=name)
    return value


def _coerce_enum(name: str, enum_cls, value):
    try:
        return value if isinstance(value, enum_cls) else enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{name} must be one of: {allowed}", field=name) from None


def _optional_text(name: str, value: str | None, max_length: int = MAX_NOTES_LENGTH) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters", field=name)
    return text


def _required_text(name: str, value: str | None, min_length: int = 1, max_length: int = MAX_NOTES_LENGTH) -> str:
    text = (value or "").strip()
    if len(text) < min_length:
        if min_length <= 1:
            raise ValidationError(f"{name} is required", field=name)
        raise ValidationError(f"{name} must be at least {min_length} characters", field=name)
    if len(text) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters", field=name)
    return text


def _parse_reference(value: str | None, policy: KernelPolicy) -> str:
    return TransactionReference.parse(
        value,
        min_length=policy.min_reference_length,
        max_length=policy.max_reference_length,
        pattern=policy.reference_pattern,
    ).value


def _check_expected_date(value: date | None, today: date | None) -> None:
    if value is None or today is None:
        return
    if not today <= value <= today + timedelta(days=EXPECTED_DATE_WINDOW_DAYS):
        raise ValidationError(
            f"Expected delivery date must be within the next {EXPECTED_DATE_WINDOW_DAYS} days",
            field="expected_date",
        )


def _delivery_address(value: str | None, required: bool = False) -> str | None:
    address = _optional_text("delivery_address", value)
    if address is None and not required:
        return None
    if address is None or len(address) < 5:
        raise ValidationError("delivery_address must be at least 5 characters", field="delivery_address")
    return address


# ---------------------------------------------------------------------------
# Owners
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegisterOwner:
    """Register an account holder with its initially granted quota."""

    name: str
    email: str
    phone: str | None = None
    address: str | None = None
    initial_quota: int | None = None
    role: Role = Role.REQUESTER

    def validated(self, policy: KernelPolicy) -> Self:
        email = (self.email or "").strip().lower()
        if "@" not in email or len(email) > 254 or email.startswith("@") or email.endswith("@"):
            raise ValidationError(f"Invalid email address: {self.email!r}", field="email")
        quota = policy.default_quota if self.initial_quota is None else self.initial_quota
        return replace(
            self,
            name=_required_text("name", self.name, min_length=2, max_length=100),
            email=email,
            phone=normalize_phone(self.phone) if self.phone else None,
            address=_optional_text("address", self.address),
            initial_quota=_require_int("initial_quota", quota, minimum=0),
            role=_coerce_enum("role", Role, self.role),
        )


@dataclass(frozen=True)
class CorrectAllowance:
    """Administrative correction of an owner's granted (and remaining) quota."""

    delta: int
    reason: str

    def validated(self, policy: KernelPolicy) -> Self:
        delta = _require_int("delta", self.delta)
        if delta == 0:
            raise ValidationError("delta must be non-zero", field="delta")
        return replace(self, reason=_required_text("reason", self.reason, max_length=200))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateOrder:
    """
    Requester submits an order.

    Contact fields default to the owner's registered details; the receiver
    fields name someone else at the delivery address.  ``external_reference``
    is accepted only for PREPAID_TRANSFER (pay-then-order flow).
    """

    quantity: int
    payment_method: PaymentMethod
    receiver_name: str | None = None
    receiver_phone: str | None = None
    delivery_address: str | None = None
    expected_date: date | None = None
    notes: str | None = None
    external_reference: str | None = None

    def validated(self, policy: KernelPolicy, today: date | None = None) -> Self:
        quantity = _require_int("quantity", self.quantity, 1, policy.max_quantity_per_order)
        method = _coerce_enum("payment_method", PaymentMethod, self.payment_method)

        reference = None
        if self.external_reference is not None:
            if method != PaymentMethod.PREPAID_TRANSFER:
                raise ValidationError(
                    "external_reference is only accepted for PREPAID_TRANSFER orders",
                    field="external_reference",
                )
            reference = _parse_reference(self.external_reference, policy)

        _check_expected_date(self.expected_date, today)
        return replace(
            self,
            quantity=quantity,
            payment_method=method,
            receiver_name=(
                normalize_person_name(self.receiver_name, "receiver_name")
                if self.receiver_name else None
            ),
            receiver_phone=(
                normalize_phone(self.receiver_phone, "receiver_phone")
                if self.receiver_phone else None
            ),
            delivery_address=_delivery_address(self.delivery_address),
            notes=_optional_text("notes", self.notes),
            external_reference=reference,
        )


@dataclass(frozen=True)
class UpdateOrderDetails:
    """
    Operator edits the delivery details of an open order.

    Only non-None fields change; quantity, payment method and status have
    their own commands.
    """

    receiver_name: str | None = None
    receiver_phone: str | None = None
    delivery_address: str | None = None
    expected_date: date | None = None
    notes: str | None = None

    def changes(self) -> dict[str, object]:
        return {key: value for key, value in self.__dict__.items() if value is not None}

    def validated(self, policy: KernelPolicy, today: date | None = None) -> Self:
        if not self.changes():
            raise ValidationError("No order details to update")
        _check_expected_date(self.expected_date, today)
        return replace(
            self,
            receiver_name=(
                None if self.receiver_name is None
                else normalize_person_name(self.receiver_name, "receiver_name")
            ),
            receiver_phone=(
                None if self.receiver_phone is None
                else normalize_phone(self.receiver_phone, "receiver_phone")
            ),
            delivery_address=(
                None if self.delivery_address is None
                else _delivery_address(self.delivery_address, required=True)
            ),
            notes=None if self.notes is None else _required_text("notes", self.notes),
        )


@dataclass(frozen=True)
class ResizeOrder:
    """Administrative change of an order's quantity."""

    quantity: int

    def validated(self, policy: KernelPolicy) -> Self:
        _require_int("quantity", self.quantity, minimum=1)
        return self


@dataclass(frozen=True)
class CancelOrder:
    """Cancel an order. Operators must give a reason; requesters may."""

    reason: str | None = None

    def validated(self, policy: KernelPolicy, *, reason_required: bool = False) -> Self:
        if reason_required:
            return replace(self, reason=_required_text("reason", self.reason))
        return replace(self, reason=_optional_text("reason", self.reason))


@dataclass(frozen=True)
class ChangeOrderStatus:
    """Operator moves an order to a new status (CANCELLED requires a reason)."""

    status: OrderStatus
    reason: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        status = _coerce_enum("status", OrderStatus, self.status)
        if status == OrderStatus.PENDING:
            raise ValidationError("Orders cannot be moved back to PENDING", field="status")
        if status == OrderStatus.CANCELLED:
            reason = _required_text("reason", self.reason)
        else:
            reason = _optional_text("reason", self.reason)
        return replace(self, status=status, reason=reason)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubmitPaymentReference:
    """Requester reports the external reference of a prepaid transfer."""

    reference: str

    def validated(self, policy: KernelPolicy) -> Self:
        return replace(self, reference=_parse_reference(self.reference, policy))


@dataclass(frozen=True)
class ConfirmPayment:
    """Operator confirms a prepaid payment, optionally correcting its reference."""

    reference: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        if self.reference is None or not str(self.reference).strip():
            return replace(self, reference=None)
        return replace(self, reference=_parse_reference(self.reference, policy))


@dataclass(frozen=True)
class RejectPayment:
    """Operator rejects a prepaid payment with a mandatory reason."""

    reason: str

    def validated(self, policy: KernelPolicy) -> Self:
        return replace(
            self,
            reason=_required_text(
                "reason",
                self.reason,
                min_length=policy.min_rejection_reason_length,
            ),
        )


@dataclass(frozen=True)
class RetryPayment:
    """Requester retries a FAILED prepaid payment with a fresh reference."""

    reference: str

    def validated(self, policy: KernelPolicy) -> Self:
        return replace(self, reference=_parse_reference(self.reference, policy))


@dataclass(frozen=True)
class EditOnDeliveryPayment:
    """Operator edits amount and/or status of an on-delivery payment."""

    amount: Decimal | None = None
    status: PaymentStatus | None = None
    note: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        if self.amount is None and self.status is None:
            raise ValidationError("Provide an amount or a status to update")
        amount = None
        if self.amount is not None:
            try:
                amount = Decimal(str(self.amount))
            except InvalidOperation:
                raise ValidationError("amount must be a number", field="amount") from None
            if not amount.is_finite() or amount <= 0:
                raise ValidationError("amount must be positive", field="amount")
        status = None if self.status is None else _coerce_enum("status", PaymentStatus, self.status)
        return replace(self, amount=amount, status=status, note=_optional_text("note", self.note))


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssignDelivery:
    """Bind an APPROVED order to a courier."""

    courier_id: UUID
    scheduled_date: date
    scheduled_time: str | None = None
    priority: DeliveryPriority = DeliveryPriority.NORMAL
    notes: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        if not isinstance(self.courier_id, UUID):
            raise ValidationError("courier_id is required", field="courier_id")
        if isinstance(self.scheduled_date, datetime) or not isinstance(self.scheduled_date, date):
            raise ValidationError("scheduled_date must be a date", field="scheduled_date")
        return replace(
            self,
            scheduled_time=_optional_text("scheduled_time", self.scheduled_time, max_length=20),
            priority=_coerce_enum("priority", DeliveryPriority, self.priority),
            notes=_optional_text("notes", self.notes),
        )


@dataclass(frozen=True)
class AdvanceDelivery:
    """Move an assignment to its next sub-status."""

    status: AssignmentStatus
    notes: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        status = _coerce_enum("status", AssignmentStatus, self.status)
        if status == AssignmentStatus.ASSIGNED:
            raise ValidationError("Assignments cannot be moved back to ASSIGNED", field="status")
        return replace(self, status=status, notes=_optional_text("notes", self.notes))


# ---------------------------------------------------------------------------
# Couriers
# ---------------------------------------------------------------------------


def _validate_capacity(value: int, policy: KernelPolicy) -> int:
    return _require_int("capacity_per_day", value, 1, policy.courier_max_capacity)


@dataclass(frozen=True)
class RegisterCourier:
    """Add a delivery partner to the registry."""

    name: str
    phone: str
    email: str | None = None
    vehicle_number: str | None = None
    service_area: str | None = None
    capacity_per_day: int | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        capacity = policy.courier_default_capacity if self.capacity_per_day is None else self.capacity_per_day
        return replace(
            self,
            name=_required_text("name", self.name, min_length=2, max_length=100),
            phone=normalize_phone(self.phone),
            email=_optional_text("email", self.email, max_length=254),
            vehicle_number=_optional_text("vehicle_number", self.vehicle_number, max_length=20),
            service_area=_optional_text("service_area", self.service_area, max_length=200),
            capacity_per_day=_validate_capacity(capacity, policy),
        )


@dataclass(frozen=True)
class UpdateCourier:
    """Edit courier details; only non-None fields change."""

    name: str | None = None
    phone: str | None = None
    email: str | None = None
    vehicle_number: str | None = None
    service_area: str | None = None
    capacity_per_day: int | None = None
    is_active: bool | None = None

    def changes(self) -> dict[str, object]:
        return {key: value for key, value in self.__dict__.items() if value is not None}

    def validated(self, policy: KernelPolicy) -> Self:
        if not self.changes():
            raise ValidationError("No courier fields to update")
        return replace(
            self,
            name=None if self.name is None else _required_text("name", self.name, min_length=2, max_length=100),
            phone=None if self.phone is None else normalize_phone(self.phone),
            email=_optional_text("email", self.email, max_length=254),
            vehicle_number=_optional_text("vehicle_number", self.vehicle_number, max_length=20),
            service_area=_optional_text("service_area", self.service_area, max_length=200),
            capacity_per_day=(
                None if self.capacity_per_day is None
                else _validate_capacity(self.capacity_per_day, policy)
            ),
        )


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiveStock:
    """Goods received from a supplier: one batch + one RECEIVE adjustment."""

    quantity: int
    supplier: str
    invoice_ref: str | None = None
    received_at: datetime | None = None
    notes: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        return replace(
            self,
            quantity=_require_int("quantity", self.quantity, 1, policy.max_adjustment_delta),
            supplier=_required_text("supplier", self.supplier, max_length=200),
            invoice_ref=_optional_text("invoice_ref", self.invoice_ref, max_length=100),
            notes=_optional_text("notes", self.notes),
        )


@dataclass(frozen=True)
class AdjustStock:
    """Signed stock movement other than a supplier receipt."""

    delta: int
    adjustment_type: StockAdjustmentType
    reason: str
    notes: str | None = None
    order_id: UUID | None = None
    batch_id: UUID | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        limit = policy.max_adjustment_delta
        delta = _require_int("delta", self.delta, -limit, limit)
        if delta == 0:
            raise ValidationError("delta must be non-zero", field="delta")
        kind = _coerce_enum("adjustment_type", StockAdjustmentType, self.adjustment_type)
        if kind == StockAdjustmentType.RECEIVE:
            raise ValidationError(
                "RECEIVE adjustments are created by receiving a batch",
                field="adjustment_type",
            )
        if kind in NEGATIVE_ONLY_ADJUSTMENTS and delta > 0:
            raise ValidationError(f"{kind.value} adjustments must be negative", field="delta")
        return replace(
            self,
            delta=delta,
            adjustment_type=kind,
            reason=_required_text("reason", self.reason, max_length=policy.max_adjustment_reason_length),
            notes=_optional_text("notes", self.notes),
        )


@dataclass(frozen=True)
class UpdateBatch:
    """Edit receipt batch metadata. Quantity is immutable."""

    supplier: str | None = None
    invoice_ref: str | None = None
    notes: str | None = None
    status: BatchStatus | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        if all(value is None for value in (self.supplier, self.invoice_ref, self.notes, self.status)):
            raise ValidationError("No batch fields to update")
        return replace(
            self,
            supplier=None if self.supplier is None else _required_text("supplier", self.supplier, max_length=200),
            invoice_ref=_optional_text("invoice_ref", self.invoice_ref, max_length=100),
            notes=_optional_text("notes", self.notes),
            status=None if self.status is None else _coerce_enum("status", BatchStatus, self.status),
        )


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BulkAction:
    """One action over many orders. Parameters depend on the action."""

    action: BulkActionType
    order_ids: tuple[UUID, ...] = field(default_factory=tuple)
    courier_id: UUID | None = None
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    priority: DeliveryPriority = DeliveryPriority.NORMAL
    reason: str | None = None
    notes: str | None = None

    def validated(self, policy: KernelPolicy) -> Self:
        action = _coerce_enum("action", BulkActionType, self.action)
        order_ids = tuple(dict.fromkeys(self.order_ids))
        if not order_ids:
            raise ValidationError("Select at least one order", field="order_ids")
        if not all(isinstance(order_id, UUID) for order_id in order_ids):
            raise ValidationError("order_ids must be UUIDs", field="order_ids")

        reason = _optional_text("reason", self.reason)
        if action == BulkActionType.ASSIGN_DELIVERY:
            if self.courier_id is None:
                raise ValidationError("courier_id is required to assign delivery", field="courier_id")
            if self.scheduled_date is None:
                raise ValidationError("scheduled_date is required to assign delivery", field="scheduled_date")
        if action == BulkActionType.CANCEL and reason is None:
            raise ValidationError("reason is required to cancel orders", field="reason")

        return replace(
            self,
            action=action,
            order_ids=order_ids,
            priority=_coerce_enum("priority", DeliveryPriority, self.priority),
            reason=reason,
            notes=_optional_text("notes", self.notes),
        )

    def assignment(self) -> AssignDelivery:
        """The per-order assignment command for ASSIGN_DELIVERY."""
        return AssignDelivery(
            courier_id=self.courier_id,
            scheduled_date=self.scheduled_date,
            scheduled_time=self.scheduled_time,
            priority=self.priority,
            notes=self.notes,
        )
