"""
Module: fulfillment_kernel.models.payment
Responsibility: ORM persistence for payment attempts.  An order owns an
    attempt chain (attempt_no 1, 2, ...); the highest attempt is the
    authoritative latest record.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - (order_id, attempt_no) is unique.
    - amount > 0 (CHECK constraint).
    - No two PENDING/SUCCESS records share an external_reference (partial
      unique index uq_payment_live_reference).
    - SUCCESS is terminal (db/immutability.py listener).

Failure modes:
    - IntegrityError on a duplicate attempt number or a live reference
      collision that slipped past PaymentService's check (concurrent submit).

Audit relevance:
    FAILED attempts are never deleted; a retry adds a new attempt and
    annotates the failed one, so the reconciliation history is complete.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase, UUIDString
from fulfillment_kernel.domain.dtos import PaymentInfo
from fulfillment_kernel.domain.order_state import PaymentMethod, PaymentStatus

_LIVE_REFERENCE = text(
    "status IN ('PENDING', 'SUCCESS') AND external_reference IS NOT NULL"
)


class PaymentRecord(TrackedBase):
    """
    One payment attempt for an order.

    Guarantees:
        - method mirrors the order's payment method.
        - A SUCCESS record is never rewritten.
    """

    __tablename__ = "payment_records"

    __table_args__ = (
        UniqueConstraint("order_id", "attempt_no", name="uq_payment_attempt"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_order", "order_id"),
        Index("idx_payment_status", "status"),
        Index(
            "uq_payment_live_reference",
            "external_reference",
            unique=True,
            postgresql_where=_LIVE_REFERENCE,
            sqlite_where=_LIVE_REFERENCE,
        ),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    attempt_no: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    method: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
    )

    external_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Operator / system annotations (retry marker, edit notes)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_prepaid(self) -> bool:
        return self.method == PaymentMethod.PREPAID_TRANSFER

    def append_note(self, line: str) -> None:
        self.notes = f"{self.notes}\n{line}" if self.notes else line

    def to_dto(self) -> PaymentInfo:
        return PaymentInfo(
            id=self.id,
            order_id=self.order_id,
            attempt_no=self.attempt_no,
            amount=self.amount,
            method=PaymentMethod(self.method),
            status=self.status_enum,
            external_reference=self.external_reference,
            failure_reason=self.failure_reason,
            notes=self.notes,
            paid_at=self.paid_at,
        )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.order_id}#{self.attempt_no}: {self.amount} {self.status}>"
