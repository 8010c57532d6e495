"""
Module: fulfillment_kernel.selectors.stock_selector
Responsibility: Read-only stock queries: the cached running total, the
    recomputed ledger sum, the adjustment history, receipt batches and
    movement analytics.
Architecture position: Kernel > Selectors.
"""

from datetime import datetime

from sqlalchemy import case, func, select

from fulfillment_kernel.domain.dtos import (
    AdjustmentTypeTotal,
    BatchStatusTotal,
    ReceiptBatchInfo,
    StockAdjustmentInfo,
    StockAnalytics,
)
from fulfillment_kernel.domain.values import BatchStatus, StockAdjustmentType
from fulfillment_kernel.models import DEFAULT_LEDGER_CODE, ReceiptBatch, StockAdjustment, StockLedger
from fulfillment_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector[StockAdjustment]):
    """Stock ledger read models."""

    def __init__(self, session, ledger_code: str = DEFAULT_LEDGER_CODE):
        super().__init__(session)
        self._ledger_code = ledger_code

    def current_total(self) -> int:
        """Cached total; 0 before the first receipt."""
        total = self.session.execute(
            select(StockLedger.total_available).where(StockLedger.ledger_code == self._ledger_code)
        ).scalar_one_or_none()
        return total or 0

    def ledger_sum(self) -> int:
        """Sum of every adjustment delta (should equal current_total)."""
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(StockAdjustment.delta), 0))
            ).scalar_one()
        )

    def adjustments(
        self,
        adjustment_type: StockAdjustmentType | None = None,
        limit: int | None = None,
    ) -> tuple[StockAdjustmentInfo, ...]:
        """Newest-first adjustment history."""
        stmt = select(StockAdjustment).order_by(StockAdjustment.seq.desc())
        if adjustment_type is not None:
            kind = self._filter_value("adjustment_type", StockAdjustmentType, adjustment_type)
            stmt = stmt.where(StockAdjustment.adjustment_type == kind.value)
        if limit is not None:
            stmt = stmt.limit(limit)
        return tuple(row.to_dto() for row in self.session.execute(stmt).scalars())

    def batches(self, status: BatchStatus | None = None) -> tuple[ReceiptBatchInfo, ...]:
        stmt = select(ReceiptBatch).order_by(ReceiptBatch.received_at.desc())
        if status is not None:
            status = self._filter_value("status", BatchStatus, status)
            stmt = stmt.where(ReceiptBatch.status == status.value)
        return tuple(row.to_dto() for row in self.session.execute(stmt).scalars())

    def analytics(self, since: datetime | None = None) -> StockAnalytics:
        """
        Stock movement recorded at or after ``since`` (all history when None).

        Received counts positive deltas and issued the magnitude of negative
        ones, whatever their type.  Batch totals are not windowed.
        """
        window = [] if since is None else [StockAdjustment.recorded_at >= since]
        received, issued = self.session.execute(
            select(
                func.coalesce(
                    func.sum(case((StockAdjustment.delta > 0, StockAdjustment.delta), else_=0)), 0
                ),
                func.coalesce(
                    func.sum(case((StockAdjustment.delta < 0, -StockAdjustment.delta), else_=0)), 0
                ),
            ).where(*window)
        ).one()
        by_type = tuple(
            AdjustmentTypeTotal(StockAdjustmentType(kind), count, int(total))
            for kind, count, total in self.session.execute(
                select(
                    StockAdjustment.adjustment_type,
                    func.count(StockAdjustment.id),
                    func.sum(StockAdjustment.delta),
                )
                .where(*window)
                .group_by(StockAdjustment.adjustment_type)
                .order_by(StockAdjustment.adjustment_type)
            )
        )
        batches = tuple(
            BatchStatusTotal(BatchStatus(status), count, int(quantity))
            for status, count, quantity in self.session.execute(
                select(
                    ReceiptBatch.status,
                    func.count(ReceiptBatch.id),
                    func.sum(ReceiptBatch.quantity),
                )
                .group_by(ReceiptBatch.status)
                .order_by(ReceiptBatch.status)
            )
        )
        return StockAnalytics(
            since=since,
            total_available=self.current_total(),
            total_received=int(received),
            total_issued=int(issued),
            by_type=by_type,
            batches=batches,
        )
