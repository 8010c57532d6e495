"""
ORM-level enforcement of append-only and terminal records.

===============================================================================
WHY THIS EXISTS
===============================================================================

The order timeline and the stock ledger are audit trails: support staff
and the ledger auditor rely on them being exactly what was written.  A
settled payment and a finished order are likewise facts that later code
must not quietly rewrite.

Services already refuse these mutations through the state machine.  This
module is the backstop for anything that reaches the ORM directly (an
ad-hoc script, a future service that forgets a guard).

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                  | Blocked
------------------|---------------------------------|---------------------------
OrderEvent        | ALWAYS (from creation)          | UPDATE, DELETE
StockAdjustment   | ALWAYS (from creation)          | UPDATE, DELETE
PaymentRecord     | After status = SUCCESS          | any change but audit stamps
Order             | After DELIVERED / CANCELLED     | status change

===============================================================================
HOW IT WORKS
===============================================================================

Mapper events fire during session.flush(), before the SQL is emitted:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

"Was SUCCESS" / "was terminal" is read from attribute history, so the
transition into the protected state itself is allowed.

Bulk statements (session.execute(delete(...))) do not fire mapper events.
OwnerService.delete_owner relies on that to remove an account's history.

===============================================================================
USAGE
===============================================================================

    from fulfillment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to plant corrupt data call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit stamps may change on an otherwise frozen row.
_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, target, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(entity_type, str(target.id), reason)


def _previous_value(target, attribute: str):
    """Value of ``attribute`` as last loaded from (or flushed to) the database."""
    history = get_history(target, attribute)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _changed_fields(target) -> list[str]:
    state = inspect(target)
    return [
        attr.key
        for attr in state.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _check_order_event_update(mapper, connection, target):
    raise _blocked("OrderEvent", target, "UPDATE", "order events are append-only")


def _check_order_event_delete(mapper, connection, target):
    raise _blocked("OrderEvent", target, "DELETE", "order events are append-only")


def _check_stock_adjustment_update(mapper, connection, target):
    raise _blocked("StockAdjustment", target, "UPDATE", "stock adjustments are append-only")


def _check_stock_adjustment_delete(mapper, connection, target):
    raise _blocked("StockAdjustment", target, "DELETE", "stock adjustments are append-only")


def _check_payment_record_update(mapper, connection, target):
    """Block every content change to a payment that was already SUCCESS."""
    from fulfillment_kernel.domain.order_state import PaymentStatus

    if _previous_value(target, "status") != PaymentStatus.SUCCESS.value:
        return

    changed = _changed_fields(target)
    if changed:
        raise _blocked(
            "PaymentRecord",
            target,
            "UPDATE",
            f"payment is SUCCESS; cannot change {', '.join(sorted(changed))}",
        )


def _check_payment_record_delete(mapper, connection, target):
    from fulfillment_kernel.domain.order_state import PaymentStatus

    if _previous_value(target, "status") == PaymentStatus.SUCCESS.value:
        raise _blocked("PaymentRecord", target, "DELETE", "payment is SUCCESS")


def _check_order_update(mapper, connection, target):
    """Block status changes out of DELIVERED / CANCELLED."""
    from fulfillment_kernel.domain.order_state import TERMINAL_ORDER_STATUSES

    history = get_history(target, "status")
    if not history.deleted or not history.added:
        return

    previous, new = history.deleted[0], history.added[0]
    if previous != new and previous in {s.value for s in TERMINAL_ORDER_STATUSES}:
        raise _blocked(
            "Order",
            target,
            "UPDATE",
            f"order is {previous}; cannot move to {new}",
        )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already attached are not attached twice.
    """
    from fulfillment_kernel.models import Order, OrderEvent, PaymentRecord, StockAdjustment

    for target, event_name, listener in _listeners(Order, OrderEvent, PaymentRecord, StockAdjustment):
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)

    logger.debug("immutability_listeners_registered")


def _listeners(Order, OrderEvent, PaymentRecord, StockAdjustment):
    return (
        (OrderEvent, "before_update", _check_order_event_update),
        (OrderEvent, "before_delete", _check_order_event_delete),
        (StockAdjustment, "before_update", _check_stock_adjustment_update),
        (StockAdjustment, "before_delete", _check_stock_adjustment_delete),
        (PaymentRecord, "before_update", _check_payment_record_update),
        (PaymentRecord, "before_delete", _check_payment_record_delete),
        (Order, "before_update", _check_order_update),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately plant inconsistent
    rows to verify detection by LedgerAuditor.
    """
    from fulfillment_kernel.models import Order, OrderEvent, PaymentRecord, StockAdjustment

    for target, event_name, listener in _listeners(Order, OrderEvent, PaymentRecord, StockAdjustment):
        _safe_remove_listener(target, event_name, listener)

    logger.debug("immutability_listeners_unregistered")
