"""
Module: fulfillment_kernel.db.types
Responsibility: Money helpers shared by models and services, so every
    amount computation uses the same precision and rounding.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  Amounts are Decimal with two decimal places and
      round_money() is the only sanctioned rounding function.
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(amount: Decimal | int) -> Decimal:
    """
    Round an amount to currency precision.

    Args:
        amount: Decimal or integer amount.

    Returns:
        Decimal quantized to MONEY_DECIMAL_PLACES with ROUND_HALF_UP.
    """
    quantum = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
    return Decimal(amount).quantize(quantum, rounding=DEFAULT_ROUNDING)


def order_amount(quantity: int, unit_price: Decimal) -> Decimal:
    """Payment amount owed for `quantity` units at `unit_price`."""
    return round_money(Decimal(quantity) * unit_price)
