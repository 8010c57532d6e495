"""Domain models for the fulfillment kernel."""

from fulfillment_kernel.models.courier import Courier
from fulfillment_kernel.models.delivery import DeliveryAssignment
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.models.order_event import OrderEvent
from fulfillment_kernel.models.owner import Owner
from fulfillment_kernel.models.payment import PaymentRecord
from fulfillment_kernel.models.stock import (
    DEFAULT_LEDGER_CODE,
    ReceiptBatch,
    StockAdjustment,
    StockLedger,
)

__all__ = [
    "Courier",
    "DEFAULT_LEDGER_CODE",
    "DeliveryAssignment",
    "Order",
    "OrderEvent",
    "Owner",
    "PaymentRecord",
    "ReceiptBatch",
    "StockAdjustment",
    "StockLedger",
]
