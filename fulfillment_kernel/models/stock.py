"""
Module: fulfillment_kernel.models.stock
Responsibility: ORM persistence for the stock ledger: a singleton running
    total, the append-only adjustments behind it, and supplier receipt
    batches.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - StockLedger.total_available == sum(StockAdjustment.delta) at all times
      (StockService writes both in one transaction; LedgerAuditor checks).
    - StockAdjustment rows are immutable (db/immutability.py).
    - delta != 0; batch quantity > 0 (CHECK constraints).

Audit relevance:
    batch_id / order_id on an adjustment are plain ids without foreign keys
    so the cross-reference survives deletion of the batch or order.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, TrackedBase, UUIDString
from fulfillment_kernel.domain.dtos import ReceiptBatchInfo, StockAdjustmentInfo
from fulfillment_kernel.domain.values import BatchStatus, StockAdjustmentType

DEFAULT_LEDGER_CODE = "default"


class StockLedger(TrackedBase):
    """Cached on-hand total. One row per ledger_code (normally just "default")."""

    __tablename__ = "stock_ledgers"

    __table_args__ = (
        UniqueConstraint("ledger_code", name="uq_stock_ledger_code"),
    )

    ledger_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DEFAULT_LEDGER_CODE,
    )

    total_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<StockLedger {self.ledger_code}: {self.total_available}>"


class StockAdjustment(Base):
    """One signed movement of stock. Immutable once written."""

    __tablename__ = "stock_adjustments"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_stock_adjustment_seq"),
        CheckConstraint("delta <> 0", name="ck_stock_adjustment_delta_non_zero"),
        Index("idx_stock_adjustment_type", "adjustment_type"),
        Index("idx_stock_adjustment_batch", "batch_id"),
        Index("idx_stock_adjustment_order", "order_id"),
    )

    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    delta: Mapped[int] = mapped_column(Integer, nullable=False)

    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)

    reason: Mapped[str] = mapped_column(String(200), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def to_dto(self) -> StockAdjustmentInfo:
        return StockAdjustmentInfo(
            id=self.id,
            seq=self.seq,
            delta=self.delta,
            adjustment_type=StockAdjustmentType(self.adjustment_type),
            reason=self.reason,
            notes=self.notes,
            batch_id=self.batch_id,
            order_id=self.order_id,
            recorded_at=self.recorded_at,
            actor_id=self.actor_id,
        )

    def __repr__(self) -> str:
        return f"<StockAdjustment #{self.seq} {self.adjustment_type} {self.delta:+d}>"


class ReceiptBatch(TrackedBase):
    """A supplier delivery. Quantity is fixed at receipt."""

    __tablename__ = "receipt_batches"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_receipt_batch_quantity_positive"),
        Index("idx_receipt_batch_status", "status"),
        Index("idx_receipt_batch_received_at", "received_at"),
    )

    supplier: Mapped[str] = mapped_column(String(200), nullable=False)

    invoice_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    received_at: Mapped[datetime] = mapped_column(nullable=False)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BatchStatus.ACTIVE.value,
    )

    def to_dto(self) -> ReceiptBatchInfo:
        return ReceiptBatchInfo(
            id=self.id,
            supplier=self.supplier,
            invoice_ref=self.invoice_ref,
            quantity=self.quantity,
            received_at=self.received_at,
            notes=self.notes,
            status=BatchStatus(self.status),
        )

    def __repr__(self) -> str:
        return f"<ReceiptBatch {self.supplier}: {self.quantity} ({self.status})>"
