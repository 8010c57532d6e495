"""
LedgerAuditor -- recomputes the conservation laws from stored rows.

Responsibility:
    Independently re-derives the two ledgers the kernel maintains
    incrementally and reports whether the cached figures agree:

    * allowance: remaining_quota + sum(quantity of non-cancelled orders)
      must equal granted_quota for every owner;
    * stock: StockLedger.total_available must equal the sum of every
      StockAdjustment.delta.

Architecture position:
    Kernel > Services -- read-only.  Used by scripts/audit_ledgers.py and
    by the conservation tests.

Failure modes:
    None raised for discrepancies; they are returned and logged as
    warnings so a scheduled audit can report every owner in one pass.
    OwnerNotFoundError for an unknown owner id.
"""

from uuid import UUID

from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import AllowanceAuditResult, StockAuditResult
from fulfillment_kernel.domain.order_state import OrderStatus
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import DEFAULT_LEDGER_CODE, Order, Owner, StockAdjustment, StockLedger
from fulfillment_kernel.services.lookups import load_owner

logger = get_logger("services.auditor")


class LedgerAuditor:
    """Read-only conservation checks."""

    def __init__(self, session, ledger_code: str = DEFAULT_LEDGER_CODE):
        self._session = session
        self._ledger_code = ledger_code

    def _reserved(self, owner_id: UUID) -> int:
        return self._session.execute(
            select(func.coalesce(func.sum(Order.quantity), 0)).where(
                Order.owner_id == owner_id,
                Order.status != OrderStatus.CANCELLED.value,
            )
        ).scalar_one()

    def _report(self, owner: Owner) -> AllowanceAuditResult:
        result = AllowanceAuditResult(
            owner_id=owner.id,
            granted_quota=owner.granted_quota,
            remaining_quota=owner.remaining_quota,
            reserved_quantity=int(self._reserved(owner.id)),
        )
        if not result.is_consistent:
            logger.warning(
                "allowance_discrepancy",
                extra={
                    "owner_id": str(owner.id),
                    "granted_quota": result.granted_quota,
                    "remaining_quota": result.remaining_quota,
                    "reserved_quantity": result.reserved_quantity,
                },
            )
        return result

    def audit_allowance(self, owner_id: UUID) -> AllowanceAuditResult:
        load_owner(self._session, owner_id)
        return self._report(self._session.get(Owner, owner_id, populate_existing=True))

    def audit_all_allowances(self) -> list[AllowanceAuditResult]:
        # Quota UPDATEs bypass the identity map; read fresh rows.
        owners = self._session.execute(
            select(Owner).order_by(Owner.email).execution_options(populate_existing=True)
        ).scalars().all()
        results = [self._report(owner) for owner in owners]
        logger.info(
            "allowance_audit_completed",
            extra={
                "owners": len(results),
                "discrepancies": sum(1 for r in results if not r.is_consistent),
            },
        )
        return results

    def audit_stock(self) -> StockAuditResult:
        total = self._session.execute(
            select(StockLedger.total_available).where(StockLedger.ledger_code == self._ledger_code)
        ).scalar_one_or_none() or 0
        ledger_sum, count = self._session.execute(
            select(func.coalesce(func.sum(StockAdjustment.delta), 0), func.count(StockAdjustment.id))
        ).one()
        result = StockAuditResult(
            total_available=int(total),
            ledger_sum=int(ledger_sum),
            adjustment_count=int(count),
        )
        if result.is_consistent:
            logger.info("stock_audit_completed", extra={"total_available": result.total_available})
        else:
            logger.warning(
                "stock_discrepancy",
                extra={
                    "total_available": result.total_available,
                    "ledger_sum": result.ledger_sum,
                    "adjustment_count": result.adjustment_count,
                },
            )
        return result
