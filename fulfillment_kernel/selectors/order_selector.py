"""
Module: fulfillment_kernel.selectors.order_selector
Responsibility: Read-only order queries: the order detail view, the
    operator listing with filters and pagination, the requester tracking
    timeline, the prepaid payment review queue and dashboard stats.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Timelines are ordered by (occurred_at, seq); seq breaks ties between
      events written in the same instant.
    - Payments are listed in attempt order; the latest attempt is last.
    - A requester only sees the timeline of their own orders.

Failure modes:
    - OrderNotFoundError for unknown ids.
    - AuthorizationError when ``owner_id`` is given and does not own the order.
    - ValidationError for page < 1, a limit outside 1..MAX_PAGE_SIZE, an
      unknown filter value or a stats window whose start is after its end.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import String, cast, func, or_, select

from fulfillment_kernel.domain.dtos import OrderDetail, OrderEventInfo, OrderStats, Page, PaymentInfo
from fulfillment_kernel.domain.order_state import OrderStatus, PaymentMethod, PaymentStatus
from fulfillment_kernel.exceptions import AuthorizationError, OrderNotFoundError, ValidationError
from fulfillment_kernel.models import DeliveryAssignment, Order, OrderEvent, PaymentRecord
from fulfillment_kernel.selectors.base import BaseSelector

MAX_PAGE_SIZE = 100

_TENTH = Decimal("0.1")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class OrderFilter:
    """Operator listing filters; None means "any"."""

    status: OrderStatus | None = None
    owner_id: UUID | None = None
    payment_method: PaymentMethod | None = None
    search: str | None = None
    requested_from: datetime | None = None
    requested_to: datetime | None = None


class OrderSelector(BaseSelector[Order]):
    """
    Order read models.

    Guarantees:
        - Every method returns DTOs built from the rows as stored.
    """

    def _order(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def payments_for_order(self, order_id: UUID) -> tuple[PaymentInfo, ...]:
        rows = self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.order_id == order_id)
            .order_by(PaymentRecord.attempt_no)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def _events(self, order_id: UUID) -> tuple[OrderEventInfo, ...]:
        rows = self.session.execute(
            select(OrderEvent)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.occurred_at, OrderEvent.seq)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def get_detail(self, order_id: UUID) -> OrderDetail:
        """Order plus payments, assignment and timeline."""
        order = self._order(order_id)
        assignment = self.session.execute(
            select(DeliveryAssignment).where(DeliveryAssignment.order_id == order_id)
        ).scalar_one_or_none()
        return OrderDetail(
            order=order.to_dto(),
            payments=self.payments_for_order(order_id),
            assignment=assignment.to_dto() if assignment else None,
            events=self._events(order_id),
        )

    def tracking_timeline(
        self,
        order_id: UUID,
        owner_id: UUID | None = None,
    ) -> tuple[OrderEventInfo, ...]:
        """
        Chronological events of one order.

        When ``owner_id`` is given the order must belong to that owner.
        """
        order = self._order(order_id)
        if owner_id is not None and order.owner_id != owner_id:
            raise AuthorizationError(
                f"Order {order_id} does not belong to the requester",
                actor_id=str(owner_id),
            )
        return self._events(order_id)

    def list_orders(
        self,
        filters: OrderFilter | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """Newest-first page of orders matching ``filters``."""
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
        filters = filters or OrderFilter()

        conditions = []
        if filters.status is not None:
            status = self._filter_value("status", OrderStatus, filters.status)
            conditions.append(Order.status == status.value)
        if filters.owner_id is not None:
            conditions.append(Order.owner_id == filters.owner_id)
        if filters.payment_method is not None:
            method = self._filter_value("payment_method", PaymentMethod, filters.payment_method)
            conditions.append(Order.payment_method == method.value)
        if filters.requested_from is not None:
            conditions.append(Order.requested_at >= filters.requested_from)
        if filters.requested_to is not None:
            conditions.append(Order.requested_at <= filters.requested_to)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(cast(Order.id, String)).like(pattern),
                    func.lower(Order.contact_name).like(pattern),
                    func.lower(Order.contact_email).like(pattern),
                    func.lower(Order.contact_phone).like(pattern),
                )
            )

        total = self.session.execute(
            select(func.count(Order.id)).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.requested_at.desc(), Order.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return Page(
            items=tuple(row.to_dto() for row in rows),
            page=page,
            limit=limit,
            total=total,
        )

    def pending_payment_reviews(
        self,
        status: PaymentStatus | None = PaymentStatus.PENDING,
    ) -> tuple[PaymentInfo, ...]:
        """
        Prepaid transfer payments awaiting (or past) operator review.

        By default only PENDING payments that carry a reference, newest
        first.  Pass ``status=None`` to list every prepaid payment.
        """
        stmt = select(PaymentRecord).where(
            PaymentRecord.method == PaymentMethod.PREPAID_TRANSFER.value,
        )
        if status is not None:
            stmt = stmt.where(PaymentRecord.status == self._filter_value("status", PaymentStatus, status).value)
        if status == PaymentStatus.PENDING:
            stmt = stmt.where(PaymentRecord.external_reference.is_not(None))
        rows = self.session.execute(
            stmt.order_by(PaymentRecord.created_at.desc(), PaymentRecord.attempt_no.desc())
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def stats(
        self,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> OrderStats:
        """
        Dashboard figures for orders requested within [date_from, date_to].

        Revenue sums SUCCESS (settled) and PENDING (expected) payments of
        orders that are not cancelled.  Delivery time runs from requested_at
        to delivered_at.
        """
        if date_from is not None and date_to is not None and date_from > date_to:
            raise ValidationError("date_from must not be after date_to", field="date_from")
        window = []
        if date_from is not None:
            window.append(Order.requested_at >= date_from)
        if date_to is not None:
            window.append(Order.requested_at <= date_to)

        by_status = dict.fromkeys(OrderStatus, 0)
        for status, count in self.session.execute(
            select(Order.status, func.count(Order.id)).where(*window).group_by(Order.status)
        ):
            by_status[OrderStatus(status)] = count

        by_method = dict.fromkeys(PaymentMethod, 0)
        for method, count in self.session.execute(
            select(Order.payment_method, func.count(Order.id))
            .where(*window)
            .group_by(Order.payment_method)
        ):
            by_method[PaymentMethod(method)] = count

        revenue = dict(
            self.session.execute(
                select(PaymentRecord.status, func.sum(PaymentRecord.amount))
                .join(Order, Order.id == PaymentRecord.order_id)
                .where(
                    *window,
                    Order.status != OrderStatus.CANCELLED.value,
                    PaymentRecord.status.in_(
                        (PaymentStatus.SUCCESS.value, PaymentStatus.PENDING.value)
                    ),
                )
                .group_by(PaymentRecord.status)
            ).all()
        )

        reviews = self.session.execute(
            select(func.count(PaymentRecord.id))
            .join(Order, Order.id == PaymentRecord.order_id)
            .where(
                *window,
                PaymentRecord.method == PaymentMethod.PREPAID_TRANSFER.value,
                PaymentRecord.status == PaymentStatus.PENDING.value,
                PaymentRecord.external_reference.is_not(None),
            )
        ).scalar_one()

        durations = [
            (delivered_at - requested_at).total_seconds()
            for requested_at, delivered_at in self.session.execute(
                select(Order.requested_at, Order.delivered_at).where(
                    *window,
                    Order.status == OrderStatus.DELIVERED.value,
                    Order.delivered_at.is_not(None),
                )
            )
        ]
        average_hours = None
        if durations:
            average_hours = (
                Decimal(str(sum(durations) / len(durations))) / 3600
            ).quantize(_TENTH)

        return OrderStats(
            total_orders=sum(by_status.values()),
            by_status=by_status,
            by_payment_method=by_method,
            total_revenue=_money(revenue.get(PaymentStatus.SUCCESS.value)),
            pending_revenue=_money(revenue.get(PaymentStatus.PENDING.value)),
            average_delivery_hours=average_hours,
            pending_prepaid_reviews=reviews,
        )
