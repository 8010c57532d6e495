"""Services for the fulfillment kernel (write side)."""

from fulfillment_kernel.services.allowance_service import AllowanceService
from fulfillment_kernel.services.auditor_service import LedgerAuditor
from fulfillment_kernel.services.bulk_action_service import BulkActionService
from fulfillment_kernel.services.courier_service import CourierService
from fulfillment_kernel.services.delivery_service import DeliveryService
from fulfillment_kernel.services.order_event_recorder import OrderEventRecorder
from fulfillment_kernel.services.order_service import OrderService
from fulfillment_kernel.services.owner_service import OwnerService
from fulfillment_kernel.services.payment_service import PaymentService
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.services.stock_service import StockService

__all__ = [
    "AllowanceService",
    "BulkActionService",
    "CourierService",
    "DeliveryService",
    "LedgerAuditor",
    "OrderEventRecorder",
    "OrderService",
    "OwnerService",
    "PaymentService",
    "SequenceService",
    "StockService",
]
