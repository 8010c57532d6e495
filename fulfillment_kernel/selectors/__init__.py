"""Selectors for the fulfillment kernel (read side)."""

from fulfillment_kernel.selectors.courier_selector import CourierSelector
from fulfillment_kernel.selectors.order_selector import OrderFilter, OrderSelector
from fulfillment_kernel.selectors.stock_selector import StockSelector

__all__ = [
    "CourierSelector",
    "OrderFilter",
    "OrderSelector",
    "StockSelector",
]
