"""
Kernel Invariants Contract.

These invariants are structural law for the order lifecycle and the stock
ledger. Configuration (unit price, quantity bounds, reference lengths) may
change what a valid request looks like, but never whether these rules apply.

This module declares the invariants explicitly. Enforcement is distributed
across AllowanceService, OrderService, PaymentService, DeliveryService,
StockService, the order state machine, and the ORM immutability listeners.
LedgerAuditor recomputes the two conservation laws from stored rows.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    ALLOWANCE_CONSERVATION = "allowance_conservation"
    """For every owner, remaining_quota + sum(quantity of non-cancelled
    orders) == granted_quota. Enforced by the conditional reserve update in
    AllowanceService and by releasing on cancel / resize-down."""

    ALLOWANCE_NON_NEGATIVE = "allowance_non_negative"
    """remaining_quota is never observably negative. Enforced by the
    compare-and-decrement update and a CHECK constraint."""

    STOCK_CONSERVATION = "stock_conservation"
    """The stock ledger total equals the sum of all adjustment deltas.
    Enforced by StockService: every total change is an adjustment row plus
    an atomic increment in the same transaction."""

    TERMINAL_ORDER_STATES = "terminal_order_states"
    """DELIVERED and CANCELLED orders never change status. Enforced by the
    order state machine and the ORM order listener."""

    PAYMENT_SUCCESS_TERMINAL = "payment_success_terminal"
    """A SUCCESS payment record is never overwritten. Enforced by
    PaymentService guards and the ORM payment listener."""

    SINGLE_ASSIGNMENT = "single_assignment"
    """An order has at most one delivery assignment. Enforced by
    DeliveryService and a unique constraint on order_id."""

    UNIQUE_LIVE_REFERENCE = "unique_live_reference"
    """No two PENDING/SUCCESS payment records share an external reference.
    Enforced by PaymentService and a partial unique index."""

    APPEND_ONLY_HISTORY = "append_only_history"
    """Order events and stock adjustments are never updated or deleted
    through the ORM. Enforced by db.immutability listeners."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "fulfillment_services",
    "fulfillment_config",
)
