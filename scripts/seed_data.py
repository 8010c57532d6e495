#!/usr/bin/env python3
"""
Seed the database with a small, realistic fulfillment history.

Drops all tables, recreates them, then drives the gateway through a few
owners, couriers, stock receipts and orders in different lifecycle stages.

Usage:
    python3 scripts/seed_data.py
    python3 scripts/seed_data.py --config path/to/config.yaml --keep
"""

import argparse
import sys
from datetime import timedelta
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


class _SwitchableIdentity:
    """Identity provider the seeding script re-points between callers."""

    def __init__(self):
        self.principal = None

    def current_principal(self):
        return self.principal


def _require(result, what: str):
    if not result.success:
        raise SystemExit(f"Seeding failed at {what}: [{result.error}] {result.message}")
    return result.data


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the fulfillment database.")
    parser.add_argument("--config", type=Path, default=None, help="Configuration YAML")
    parser.add_argument("--keep", action="store_true", help="Do not drop existing tables")
    args = parser.parse_args()

    from uuid import uuid4

    from fulfillment_config import get_active_config
    from fulfillment_kernel.db.engine import create_engine_from_url, create_tables, drop_tables
    from fulfillment_kernel.domain.collaborators import Principal, Role
    from fulfillment_kernel.domain.commands import (
        AdvanceDelivery,
        AssignDelivery,
        CreateOrder,
        ReceiveStock,
        RegisterCourier,
        RegisterOwner,
        SubmitPaymentReference,
    )
    from fulfillment_kernel.domain.order_state import AssignmentStatus, PaymentMethod
    from fulfillment_services import build_gateway

    config = get_active_config(args.config)
    engine = create_engine_from_url(config.database.url)
    if not args.keep:
        drop_tables(engine)
    create_tables(engine)
    engine.dispose()

    identity = _SwitchableIdentity()
    gateway = build_gateway(identity, config=config)
    operator = Principal(uuid4(), Role.OPERATOR)

    identity.principal = None
    asha = _require(
        gateway.register_owner(RegisterOwner("Asha Verma", "asha@example.com", "9876543210", "12 Lake Road, Pune")),
        "register asha",
    )
    ravi = _require(
        gateway.register_owner(RegisterOwner("Ravi Kumar", "ravi@example.com", "9812345678", "4 Hill Street, Pune")),
        "register ravi",
    )

    identity.principal = operator
    _require(gateway.receive_stock(ReceiveStock(200, "Bharat Gas Depot", invoice_ref="INV-1001")), "receive stock")
    courier = _require(
        gateway.register_courier(RegisterCourier("Suresh Patil", "9898989898", vehicle_number="MH12AB1234")),
        "register courier",
    )

    identity.principal = Principal(asha.id, Role.REQUESTER)
    first = _require(gateway.create_order(CreateOrder(2, PaymentMethod.ON_DELIVERY)), "asha order 1")
    second = _require(gateway.create_order(CreateOrder(1, PaymentMethod.PREPAID_TRANSFER)), "asha order 2")
    _require(
        gateway.submit_payment_reference(second.id, SubmitPaymentReference("UPI20250101A")),
        "asha reference",
    )

    identity.principal = Principal(ravi.id, Role.REQUESTER)
    _require(gateway.create_order(CreateOrder(3, PaymentMethod.ON_DELIVERY)), "ravi order")

    identity.principal = operator
    _require(gateway.approve_order(first.id), "approve asha order 1")
    tomorrow = first.requested_at.date() + timedelta(days=1)
    assignment = _require(
        gateway.assign_delivery(first.id, AssignDelivery(courier.id, tomorrow, scheduled_time="10:00")),
        "assign asha order 1",
    )
    _require(
        gateway.advance_delivery(assignment.id, AdvanceDelivery(AssignmentStatus.OUT_FOR_DELIVERY)),
        "dispatch asha order 1",
    )

    print(f"Seeded {config.database.url}: 2 owners, 1 courier, 3 orders, 200 units in stock.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
