"""
Row lookups shared by the order, payment, delivery and bulk services.

Each helper either returns the ORM row or raises the typed NotFoundError,
so callers never repeat the load-or-404 dance.  ``lock=True`` issues
``SELECT ... FOR UPDATE`` on PostgreSQL (SQLite already serializes
writers) and refreshes the instance from the database.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.order_state import PaymentStatus
from fulfillment_kernel.exceptions import (
    AssignmentNotFoundError,
    CourierNotFoundError,
    OrderNotFoundError,
    OwnerNotFoundError,
    PaymentNotFoundError,
)
from fulfillment_kernel.models import Courier, DeliveryAssignment, Order, Owner, PaymentRecord

LIVE_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.SUCCESS.value)


def _load(session: Session, model, entity_id: UUID, lock: bool):
    stmt = select(model).where(model.id == entity_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.execute(stmt).scalar_one_or_none()


def load_owner(session: Session, owner_id: UUID, lock: bool = False) -> Owner:
    owner = _load(session, Owner, owner_id, lock)
    if owner is None:
        raise OwnerNotFoundError(str(owner_id))
    return owner


def load_order(session: Session, order_id: UUID, lock: bool = False) -> Order:
    order = _load(session, Order, order_id, lock)
    if order is None:
        raise OrderNotFoundError(str(order_id))
    return order


def load_payment(session: Session, payment_id: UUID, lock: bool = False) -> PaymentRecord:
    payment = _load(session, PaymentRecord, payment_id, lock)
    if payment is None:
        raise PaymentNotFoundError(payment_id=str(payment_id))
    return payment


def load_courier(session: Session, courier_id: UUID, lock: bool = False) -> Courier:
    courier = _load(session, Courier, courier_id, lock)
    if courier is None:
        raise CourierNotFoundError(str(courier_id))
    return courier


def load_assignment(session: Session, assignment_id: UUID, lock: bool = False) -> DeliveryAssignment:
    assignment = _load(session, DeliveryAssignment, assignment_id, lock)
    if assignment is None:
        raise AssignmentNotFoundError(str(assignment_id))
    return assignment


def latest_payment(session: Session, order_id: UUID) -> PaymentRecord | None:
    """The authoritative payment record: highest attempt_no for the order."""
    return session.execute(
        select(PaymentRecord)
        .where(PaymentRecord.order_id == order_id)
        .order_by(PaymentRecord.attempt_no.desc())
        .limit(1)
    ).scalar_one_or_none()


def assignment_for_order(session: Session, order_id: UUID) -> DeliveryAssignment | None:
    return session.execute(
        select(DeliveryAssignment).where(DeliveryAssignment.order_id == order_id)
    ).scalar_one_or_none()


def reference_in_use(
    session: Session,
    reference: str,
    exclude_payment_id: UUID | None = None,
) -> bool:
    """True when another PENDING/SUCCESS payment already carries ``reference``."""
    stmt = select(func.count()).select_from(PaymentRecord).where(
        PaymentRecord.external_reference == reference,
        PaymentRecord.status.in_(LIVE_PAYMENT_STATUSES),
    )
    if exclude_payment_id is not None:
        stmt = stmt.where(PaymentRecord.id != exclude_payment_id)
    return session.execute(stmt).scalar_one() > 0
