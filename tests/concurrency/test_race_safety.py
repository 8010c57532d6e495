"""
Race-safety tests with real threads and real commits.

Every worker opens its own session from ``committing_session_factory`` and
waits on a barrier so the contested statements run together.  On SQLite
the writers serialize on BEGIN IMMEDIATE; on PostgreSQL the conditional
UPDATEs and row locks decide the winner.

Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
from uuid import uuid4

import pytest

from fulfillment_kernel.db.engine import session_scope
from fulfillment_kernel.domain.commands import (
    AdjustStock,
    CancelOrder,
    CreateOrder,
    ReceiveStock,
    RegisterOwner,
)
from fulfillment_kernel.domain.order_state import PaymentMethod
from fulfillment_kernel.domain.values import StockAdjustmentType
from fulfillment_kernel.exceptions import (
    FulfillmentKernelError,
    InsufficientAllowanceError,
    InsufficientStockError,
    InvalidOrderTransitionError,
)
from fulfillment_kernel.services import LedgerAuditor, OrderService, OwnerService, StockService

pytestmark = pytest.mark.slow_locks

NUM_THREADS = 6


def _race(factory, work, num_threads=NUM_THREADS):
    """Run ``work(session)`` in ``num_threads`` threads released together.

    Returns a list of ("ok", value) / ("error", exception) tuples.
    """
    barrier = Barrier(num_threads, timeout=30)

    def worker(_):
        barrier.wait()
        try:
            with session_scope(factory) as session:
                return ("ok", work(session))
        except FulfillmentKernelError as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=num_threads) as pool:
        return list(pool.map(worker, range(num_threads)))


def _register_owner(factory, clock, quota):
    with session_scope(factory) as session:
        return OwnerService(session, clock).register(
            RegisterOwner("Race Owner", f"{uuid4().hex[:12]}@example.com", initial_quota=quota)
        )


class TestAllowanceRace:
    """Concurrent reservations never overdraw an owner."""

    def test_only_quota_many_orders_succeed(self, committing_session_factory, deterministic_clock):
        owner = _register_owner(committing_session_factory, deterministic_clock, quota=3)

        results = _race(
            committing_session_factory,
            lambda s: OrderService(s, deterministic_clock).create_order(
                owner.id, CreateOrder(1, PaymentMethod.ON_DELIVERY)
            ),
        )

        successes = [r for kind, r in results if kind == "ok"]
        failures = [r for kind, r in results if kind == "error"]
        assert len(successes) == 3
        assert len(failures) == NUM_THREADS - 3
        assert all(isinstance(exc, InsufficientAllowanceError) for exc in failures)

        with session_scope(committing_session_factory) as session:
            audit = LedgerAuditor(session).audit_allowance(owner.id)
        assert audit.remaining_quota == 0
        assert audit.is_consistent

    def test_two_large_reservations_exactly_one_wins(self, committing_session_factory, deterministic_clock):
        owner = _register_owner(committing_session_factory, deterministic_clock, quota=3)

        results = _race(
            committing_session_factory,
            lambda s: OrderService(s, deterministic_clock).create_order(
                owner.id, CreateOrder(2, PaymentMethod.ON_DELIVERY)
            ),
            num_threads=2,
        )

        assert sorted(kind for kind, _ in results) == ["error", "ok"]


class TestCancelRace:
    """Concurrent cancellations release the allowance exactly once."""

    def test_double_cancel_releases_once(self, committing_session_factory, deterministic_clock, test_actor_id):
        owner = _register_owner(committing_session_factory, deterministic_clock, quota=12)
        with session_scope(committing_session_factory) as session:
            order = OrderService(session, deterministic_clock).create_order(
                owner.id, CreateOrder(3, PaymentMethod.ON_DELIVERY)
            )

        results = _race(
            committing_session_factory,
            lambda s: OrderService(s, deterministic_clock).cancel_by_operator(
                order.id, CancelOrder("Duplicate booking"), test_actor_id
            ),
            num_threads=4,
        )

        assert [kind for kind, _ in results].count("ok") == 1
        assert all(
            isinstance(exc, InvalidOrderTransitionError) for kind, exc in results if kind == "error"
        )
        with session_scope(committing_session_factory) as session:
            audit = LedgerAuditor(session).audit_allowance(owner.id)
        assert audit.remaining_quota == 12
        assert audit.is_consistent


class TestStockRace:
    """Concurrent issues never drive the stock total negative."""

    def test_issues_limited_by_stock(self, committing_session_factory, deterministic_clock, test_actor_id):
        with session_scope(committing_session_factory) as session:
            StockService(session, deterministic_clock).receive(
                ReceiveStock(4, "Bharat Gas Depot"), test_actor_id
            )

        results = _race(
            committing_session_factory,
            lambda s: StockService(s, deterministic_clock).adjust(
                AdjustStock(-1, StockAdjustmentType.ISSUE, "Issued at counter"), test_actor_id
            ),
        )

        assert [kind for kind, _ in results].count("ok") == 4
        assert all(isinstance(exc, InsufficientStockError) for kind, exc in results if kind == "error")
        with session_scope(committing_session_factory) as session:
            audit = LedgerAuditor(session).audit_stock()
        assert audit.total_available == 0
        assert audit.is_consistent
