"""
StockService -- the inventory ledger.

Responsibility:
    Records every movement of stock as an immutable StockAdjustment and
    keeps the cached StockLedger.total_available in step with it: supplier
    receipts (batch + RECEIVE adjustment), manual adjustments, batch
    metadata edits and batch deletion with a compensating CORRECTION.

Architecture position:
    Kernel > Services -- imperative shell.  Independent of orders apart
    from validating an optional order cross-reference.

Invariants enforced:
    - Conservation: total_available == sum(delta) over all adjustments.
      Every change writes one adjustment row and applies the same delta to
      the total with a single ``total = total + delta`` UPDATE.
    - Non-negative total (unless policy.allow_negative_stock): a negative
      delta is conditional on the total staying >= 0.
    - Batch quantity never changes after receipt.

Failure modes:
    - InsufficientStockError (409) when a negative delta exceeds the total.
    - OrderNotFoundError / BatchNotFoundError for dangling cross-references.
    - ValidationError from the command.

Audit relevance:
    stock_adjusted is logged with seq, type, delta and the new total.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from fulfillment_kernel.domain.commands import AdjustStock, ReceiveStock, UpdateBatch
from fulfillment_kernel.domain.dtos import ReceiptBatchInfo, StockMovement, StockReceipt
from fulfillment_kernel.domain.values import BatchStatus, StockAdjustmentType
from fulfillment_kernel.exceptions import BatchNotFoundError, InsufficientStockError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import (
    DEFAULT_LEDGER_CODE,
    ReceiptBatch,
    StockAdjustment,
    StockLedger,
)
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.lookups import load_order
from fulfillment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.stock")


class StockService(BaseService[StockAdjustment]):
    """
    Append-only stock ledger with a cached running total.

    Non-goals:
        - Does NOT decrement stock automatically on delivery; issues are
          recorded explicitly by the operator.
    """

    def __init__(self, session, clock=None, policy=None, ledger_code: str = DEFAULT_LEDGER_CODE):
        super().__init__(session, clock, policy)
        self._ledger_code = ledger_code
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Ledger plumbing
    # ------------------------------------------------------------------

    def _ensure_ledger(self, actor_id: UUID) -> None:
        exists = self.session.execute(
            select(StockLedger.id).where(StockLedger.ledger_code == self._ledger_code)
        ).scalar_one_or_none()
        if exists is not None:
            return
        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                StockLedger(ledger_code=self._ledger_code, total_available=0, created_by_id=actor_id)
            )
            self.session.flush()
            savepoint.commit()
            logger.info("stock_ledger_created", extra={"ledger_code": self._ledger_code})
        except IntegrityError:
            # Created concurrently; the row exists now.
            savepoint.rollback()

    def _total(self) -> int:
        return self.session.execute(
            select(StockLedger.total_available).where(StockLedger.ledger_code == self._ledger_code)
        ).scalar_one_or_none() or 0

    def _apply(
        self,
        delta: int,
        adjustment_type: StockAdjustmentType,
        reason: str,
        actor_id: UUID,
        notes: str | None = None,
        batch_id: UUID | None = None,
        order_id: UUID | None = None,
    ) -> tuple[StockAdjustment, int]:
        self._ensure_ledger(actor_id)

        stmt = (
            update(StockLedger)
            .where(StockLedger.ledger_code == self._ledger_code)
            .values(
                total_available=StockLedger.total_available + delta,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if delta < 0 and not self.policy.allow_negative_stock:
            stmt = stmt.where(StockLedger.total_available + delta >= 0)

        if self.session.execute(stmt).rowcount == 0:
            available = self._total()
            logger.warning(
                "stock_insufficient",
                extra={"delta": delta, "available": available},
            )
            raise InsufficientStockError(delta, available)

        adjustment = StockAdjustment(
            seq=self._sequences.next_value(SequenceService.STOCK_ADJUSTMENT),
            delta=delta,
            adjustment_type=adjustment_type.value,
            reason=reason,
            notes=notes,
            batch_id=batch_id,
            order_id=order_id,
            recorded_at=self.clock.now(),
            actor_id=actor_id,
        )
        self.session.add(adjustment)
        self.session.flush()

        total = self._total()
        logger.info(
            "stock_adjusted",
            extra={
                "seq": adjustment.seq,
                "adjustment_type": adjustment_type.value,
                "delta": delta,
                "total_available": total,
            },
        )
        return adjustment, total

    def _load_batch(self, batch_id: UUID) -> ReceiptBatch:
        batch = self.session.execute(
            select(ReceiptBatch).where(ReceiptBatch.id == batch_id).with_for_update()
        ).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def receive(self, command: ReceiveStock, actor_id: UUID) -> StockReceipt:
        """Record a supplier delivery: one batch plus one RECEIVE adjustment."""
        command = command.validated(self.policy)
        batch = ReceiptBatch(
            supplier=command.supplier,
            invoice_ref=command.invoice_ref,
            quantity=command.quantity,
            received_at=command.received_at or self.clock.now(),
            notes=command.notes,
            status=BatchStatus.ACTIVE.value,
            created_by_id=actor_id,
        )
        self.session.add(batch)
        self.session.flush()

        adjustment, total = self._apply(
            command.quantity,
            StockAdjustmentType.RECEIVE,
            f"Received from {command.supplier}",
            actor_id,
            notes=command.invoice_ref,
            batch_id=batch.id,
        )
        return StockReceipt(batch=batch.to_dto(), adjustment=adjustment.to_dto(), total_available=total)

    def adjust(self, command: AdjustStock, actor_id: UUID) -> StockMovement:
        """Signed adjustment (ISSUE / DAMAGE negative, AUDIT / CORRECTION either sign)."""
        command = command.validated(self.policy)
        if command.order_id is not None:
            load_order(self.session, command.order_id)
        if command.batch_id is not None:
            self._load_batch(command.batch_id)

        adjustment, total = self._apply(
            command.delta,
            command.adjustment_type,
            command.reason,
            actor_id,
            notes=command.notes,
            batch_id=command.batch_id,
            order_id=command.order_id,
        )
        return StockMovement(adjustment=adjustment.to_dto(), total_available=total)

    def update_batch(self, batch_id: UUID, command: UpdateBatch, actor_id: UUID) -> ReceiptBatchInfo:
        """Edit batch metadata; the received quantity is immutable."""
        command = command.validated(self.policy)
        batch = self._load_batch(batch_id)
        if command.supplier is not None:
            batch.supplier = command.supplier
        if command.invoice_ref is not None:
            batch.invoice_ref = command.invoice_ref
        if command.notes is not None:
            batch.notes = command.notes
        if command.status is not None:
            batch.status = command.status.value
        batch.updated_by_id = actor_id
        self.session.flush()
        logger.info("receipt_batch_updated", extra={"batch_id": str(batch.id), "status": batch.status})
        return batch.to_dto()

    def delete_batch(self, batch_id: UUID, actor_id: UUID) -> StockMovement:
        """
        Remove a batch, first writing a CORRECTION of -quantity.

        The compensating adjustment keeps the batch id as a plain
        cross-reference, so the ledger still explains the movement.
        """
        batch = self._load_batch(batch_id)
        adjustment, total = self._apply(
            -batch.quantity,
            StockAdjustmentType.CORRECTION,
            f"Batch deleted: {batch.supplier}"[: self.policy.max_adjustment_reason_length],
            actor_id,
            notes=batch.invoice_ref,
            batch_id=batch.id,
        )
        self.session.delete(batch)
        self.session.flush()
        logger.info("receipt_batch_deleted", extra={"batch_id": str(batch_id), "quantity": batch.quantity})
        return StockMovement(adjustment=adjustment.to_dto(), total_available=total)
