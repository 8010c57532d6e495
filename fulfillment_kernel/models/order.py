"""
Module: fulfillment_kernel.models.order
Responsibility: ORM persistence for orders.  Status legality lives in
    domain/order_state.py; this model only stores the result.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - quantity >= 1 (CHECK constraint).
    - owner_id references an existing owner (FK).
    - A terminal status is never rewritten (db/immutability.py listener).

Failure modes:
    - IntegrityError on quantity < 1 or a dangling owner reference.
    - ImmutabilityViolationError when a DELIVERED/CANCELLED order's status
      is changed.

Audit relevance:
    Contact fields are denormalized at creation so the order keeps showing
    who it was for even if the owner later edits their profile.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase, UUIDString
from fulfillment_kernel.domain.dtos import OrderInfo
from fulfillment_kernel.domain.order_state import OrderStatus, PaymentMethod


class Order(TrackedBase):
    """
    A request for N units, tracked from PENDING to DELIVERED or CANCELLED.

    Non-goals:
        - Holds no relationship() back-references to payments, assignments
          or events.  Those are looked up by order_id through the session.
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_quantity_positive"),
        Index("idx_order_owner", "owner_id"),
        Index("idx_order_status", "status"),
        Index("idx_order_requested_at", "requested_at"),
    )

    owner_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("owners.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING.value,
    )

    requested_at: Mapped[datetime] = mapped_column(nullable=False)

    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Set from the delivery assignment schedule
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # Denormalized owner contact snapshot
    contact_name: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(254), nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Someone other than the owner receiving the delivery
    receiver_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receiver_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    @property
    def status_enum(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def method_enum(self) -> PaymentMethod:
        return PaymentMethod(self.payment_method)

    def append_note(self, line: str) -> None:
        self.notes = f"{self.notes}\n{line}" if self.notes else line

    def to_dto(self) -> OrderInfo:
        return OrderInfo(
            id=self.id,
            owner_id=self.owner_id,
            quantity=self.quantity,
            payment_method=self.method_enum,
            status=self.status_enum,
            requested_at=self.requested_at,
            expected_date=self.expected_date,
            delivery_date=self.delivery_date,
            delivered_at=self.delivered_at,
            notes=self.notes,
            contact_name=self.contact_name,
            contact_email=self.contact_email,
            contact_phone=self.contact_phone,
            delivery_address=self.delivery_address,
            receiver_name=self.receiver_name,
            receiver_phone=self.receiver_phone,
        )

    def __repr__(self) -> str:
        return f"<Order {self.id}: {self.quantity} x {self.status}>"
