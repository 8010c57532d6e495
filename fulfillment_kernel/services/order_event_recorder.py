"""
OrderEventRecorder -- writes the append-only order timeline.

Responsibility:
    Creates OrderEvent rows with a sequence number from SequenceService and
    a timestamp from the injected clock, and owns the wording of the
    standard event titles and descriptions so every service phrases the
    same change the same way.

Architecture position:
    Kernel > Services -- called by every service that touches an order.

Invariants enforced:
    - Events are only ever inserted (the immutability listener blocks
      updates and deletes).
    - ``status`` is the order status after the recorded change.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.order_state import AssignmentStatus, OrderStatus
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import Order, OrderEvent
from fulfillment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.order_events")


def status_change_title(status: OrderStatus) -> str:
    return f"Status Updated to {status.value}"


def status_change_description(
    previous: OrderStatus | str,
    status: OrderStatus,
    reason: str | None = None,
) -> str:
    previous = OrderStatus(previous)
    if status == OrderStatus.CANCELLED and reason:
        return f"Booking cancelled: {reason} (was {previous.value})"
    return f"Booking status changed from {previous.value} to {status.value}"


def delivery_title(status: AssignmentStatus) -> str:
    return f"Delivery {status.value.lower().replace('_', ' ')}"


def delivery_description(
    status: AssignmentStatus,
    order_status: OrderStatus | None = None,
    previous_order_status: OrderStatus | str | None = None,
) -> str:
    text = f"Delivery status updated to {status.value}."
    if order_status is not None:
        text = f"{text} {status_change_description(previous_order_status, order_status)}."
    return text


class OrderEventRecorder:
    """Appends OrderEvent rows within the caller's transaction."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock
        self._sequences = SequenceService(session)

    def record(
        self,
        order: Order,
        title: str,
        description: str,
        actor_id: UUID,
        status: OrderStatus | str | None = None,
    ) -> OrderEvent:
        snapshot = status if status is not None else order.status
        event = OrderEvent(
            order_id=order.id,
            seq=self._sequences.next_value(SequenceService.ORDER_EVENT),
            status=OrderStatus(snapshot).value,
            title=title,
            description=description,
            occurred_at=self._clock.now(),
            actor_id=actor_id,
        )
        self._session.add(event)
        self._session.flush()
        logger.debug(
            "order_event_recorded",
            extra={"order_id": str(order.id), "seq": event.seq, "title": title},
        )
        return event
