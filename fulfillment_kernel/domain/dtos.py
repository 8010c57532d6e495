"""
DTOs -- frozen read models returned by services and selectors.

ORM instances never leave the kernel.  Every service method and selector
returns one of these immutable snapshots (built by the model's ``to_dto``),
so callers cannot mutate persisted state by accident and results stay valid
after the session closes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from fulfillment_kernel.domain.order_state import (
    AssignmentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from fulfillment_kernel.domain.values import (
    BatchStatus,
    BulkActionType,
    DeliveryPriority,
    StockAdjustmentType,
)


def to_primitive(value: Any) -> Any:
    """Convert a DTO (or nested structure) into JSON-friendly primitives."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_primitive(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(to_primitive(k)): to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, frozenset, set)):
        return [to_primitive(v) for v in value]
    return value


@dataclass(frozen=True)
class OwnerInfo:
    id: UUID
    name: str
    email: str
    phone: str | None
    address: str | None
    role: str
    granted_quota: int
    remaining_quota: int


@dataclass(frozen=True)
class OrderInfo:
    id: UUID
    owner_id: UUID
    quantity: int
    payment_method: PaymentMethod
    status: OrderStatus
    requested_at: datetime
    expected_date: date | None
    delivery_date: date | None
    delivered_at: datetime | None
    notes: str | None
    contact_name: str
    contact_email: str
    contact_phone: str | None
    delivery_address: str | None
    receiver_name: str | None
    receiver_phone: str | None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class PaymentInfo:
    id: UUID
    order_id: UUID
    attempt_no: int
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    external_reference: str | None
    failure_reason: str | None
    notes: str | None
    paid_at: datetime | None


@dataclass(frozen=True)
class CourierInfo:
    id: UUID
    name: str
    phone: str
    email: str | None
    vehicle_number: str | None
    service_area: str | None
    capacity_per_day: int
    is_active: bool


@dataclass(frozen=True)
class AssignmentInfo:
    id: UUID
    order_id: UUID
    courier_id: UUID
    status: AssignmentStatus
    scheduled_date: date
    scheduled_time: str | None
    priority: DeliveryPriority
    notes: str | None
    picked_up_at: datetime | None
    delivered_at: datetime | None


@dataclass(frozen=True)
class OrderEventInfo:
    id: UUID
    order_id: UUID
    seq: int
    status: OrderStatus
    title: str
    description: str
    occurred_at: datetime
    actor_id: UUID


@dataclass(frozen=True)
class StockAdjustmentInfo:
    id: UUID
    seq: int
    delta: int
    adjustment_type: StockAdjustmentType
    reason: str
    notes: str | None
    batch_id: UUID | None
    order_id: UUID | None
    recorded_at: datetime
    actor_id: UUID


@dataclass(frozen=True)
class ReceiptBatchInfo:
    id: UUID
    supplier: str
    invoice_ref: str | None
    quantity: int
    received_at: datetime
    notes: str | None
    status: BatchStatus


@dataclass(frozen=True)
class StockReceipt:
    """Result of receiving stock: the batch, its adjustment and the new total."""

    batch: ReceiptBatchInfo
    adjustment: StockAdjustmentInfo
    total_available: int


@dataclass(frozen=True)
class StockMovement:
    """Result of an adjustment: the ledger row and the new total."""

    adjustment: StockAdjustmentInfo
    total_available: int


@dataclass(frozen=True)
class OrderDetail:
    """Order with its payments (attempt order), assignment and timeline."""

    order: OrderInfo
    payments: tuple[PaymentInfo, ...]
    assignment: AssignmentInfo | None
    events: tuple[OrderEventInfo, ...]

    @property
    def latest_payment(self) -> PaymentInfo | None:
        return self.payments[-1] if self.payments else None

    @property
    def amount(self) -> Decimal | None:
        latest = self.latest_payment
        return latest.amount if latest else None


@dataclass(frozen=True)
class Page:
    """One page of a listing."""

    items: tuple[Any, ...]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class BulkItemError:
    order_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class BulkActionResult:
    """
    Outcome of a bulk call.

    ``affected_count`` counts orders actually mutated; ineligible orders are
    listed in ``skipped_ids`` and are not errors.
    """

    action: BulkActionType
    requested: int
    affected_count: int
    affected_ids: tuple[UUID, ...]
    skipped_ids: tuple[UUID, ...]
    errors: tuple[BulkItemError, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CourierLoad:
    """Per-day workload of one courier."""

    courier_id: UUID
    day: date
    active_assignments: int
    capacity_per_day: int
    total_assignments: int
    completed_assignments: int

    @property
    def remaining_capacity(self) -> int:
        return max(self.capacity_per_day - self.active_assignments, 0)


@dataclass(frozen=True)
class AllowanceAuditResult:
    owner_id: UUID
    granted_quota: int
    remaining_quota: int
    reserved_quantity: int

    @property
    def is_consistent(self) -> bool:
        return self.remaining_quota + self.reserved_quantity == self.granted_quota


@dataclass(frozen=True)
class StockAuditResult:
    total_available: int
    ledger_sum: int
    adjustment_count: int

    @property
    def is_consistent(self) -> bool:
        return self.total_available == self.ledger_sum


@dataclass(frozen=True)
class OrderStats:
    """
    Order counts and revenue over a requested_at window.

    Revenue ignores cancelled orders.  ``average_delivery_hours`` is None
    when no order in the window has been delivered.
    """

    total_orders: int
    by_status: dict[OrderStatus, int]
    by_payment_method: dict[PaymentMethod, int]
    total_revenue: Decimal
    pending_revenue: Decimal
    average_delivery_hours: Decimal | None
    pending_prepaid_reviews: int


@dataclass(frozen=True)
class DeliveryStats:
    """Assignment outcomes and courier headcount as of one day."""

    day: date
    total_assignments: int
    active_assignments: int
    completed_on_day: int
    awaiting_assignment: int
    total_couriers: int
    active_couriers: int
    success_rate: Decimal | None


@dataclass(frozen=True)
class AdjustmentTypeTotal:
    adjustment_type: StockAdjustmentType
    count: int
    total_delta: int


@dataclass(frozen=True)
class BatchStatusTotal:
    status: BatchStatus
    count: int
    total_quantity: int


@dataclass(frozen=True)
class StockAnalytics:
    """Ledger movement since ``since`` (all history when None) plus batch totals."""

    since: datetime | None
    total_available: int
    total_received: int
    total_issued: int
    by_type: tuple[AdjustmentTypeTotal, ...]
    batches: tuple[BatchStatusTotal, ...]
