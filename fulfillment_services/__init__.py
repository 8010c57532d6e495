"""
fulfillment_services -- the outer boundary around the fulfillment kernel.

Owns transactions, identity gating, the response envelope and post-commit
side effects.  Build a gateway with ``build_gateway`` or construct
``FulfillmentGateway`` directly.
"""

from fulfillment_services.gateway import CallContext, FulfillmentGateway
from fulfillment_services.results import OperationResult
from fulfillment_services.side_effects import Notification, SideEffectDispatcher
from fulfillment_services.wiring import build_gateway

__all__ = [
    "CallContext",
    "FulfillmentGateway",
    "Notification",
    "OperationResult",
    "SideEffectDispatcher",
    "build_gateway",
]
