"""
Module: fulfillment_kernel.models.order_event
Responsibility: ORM persistence for the per-order audit trail consumed by
    tracking views.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Append-only: never updated, never deleted through the ORM
      (db/immutability.py).  Rows disappear only when the owner account is
      deleted, which removes them with a bulk statement.
    - seq is unique and allocated by SequenceService, so events written in
      one transaction at the same clock instant still have a total order.

Audit relevance:
    status is a snapshot of the order status after the change the event
    records; the timeline is ordered by (occurred_at, seq).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UUIDString
from fulfillment_kernel.domain.dtos import OrderEventInfo
from fulfillment_kernel.domain.order_state import OrderStatus


class OrderEvent(Base):
    """Immutable timeline entry for one order."""

    __tablename__ = "order_events"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_order_event_seq"),
        Index("idx_order_event_order", "order_id", "seq"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    title: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def to_dto(self) -> OrderEventInfo:
        return OrderEventInfo(
            id=self.id,
            order_id=self.order_id,
            seq=self.seq,
            status=OrderStatus(self.status),
            title=self.title,
            description=self.description,
            occurred_at=self.occurred_at,
            actor_id=self.actor_id,
        )

    def __repr__(self) -> str:
        return f"<OrderEvent #{self.seq} {self.order_id}: {self.title}>"
