"""
Fulfillment Kernel - order lifecycle & inventory-consistency engine

A transactional core for cylinder delivery fulfillment with:
- Per-owner allowance ledger with compare-and-decrement reservation
- Centralized order status state machine
- Payment reconciliation (on-delivery and prepaid transfer)
- Delivery assignment sub-status with order propagation
- Append-only stock ledger backing a cached running total
"""

__version__ = "0.1.0"
