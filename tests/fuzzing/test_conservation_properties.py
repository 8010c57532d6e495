"""
Property-based tests for the two conservation laws.

Random sequences of order operations must keep
granted_quota == remaining_quota + reserved quantity, and random stock
movements must keep the cached total equal to the ledger sum.
"""

from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from fulfillment_kernel.domain.commands import (
    AdjustStock,
    CancelOrder,
    CreateOrder,
    ReceiveStock,
    RegisterOwner,
    ResizeOrder,
)
from fulfillment_kernel.domain.order_state import PaymentMethod
from fulfillment_kernel.domain.values import StockAdjustmentType
from fulfillment_kernel.exceptions import FulfillmentKernelError
from fulfillment_kernel.selectors import StockSelector

FIXTURE_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

order_ops = st.lists(
    st.one_of(
        st.tuples(st.just("create"), st.integers(min_value=1, max_value=3)),
        st.tuples(st.just("cancel"), st.integers(min_value=0, max_value=10)),
        st.tuples(st.just("resize"), st.integers(min_value=0, max_value=10), st.integers(min_value=1, max_value=5)),
    ),
    min_size=1,
    max_size=15,
)

stock_ops = st.lists(
    st.one_of(
        st.tuples(st.just("receive"), st.integers(min_value=1, max_value=50)),
        st.tuples(st.sampled_from(["ISSUE", "DAMAGE"]), st.integers(min_value=-40, max_value=-1)),
        st.tuples(st.sampled_from(["AUDIT", "CORRECTION"]), st.integers(min_value=-20, max_value=20).filter(bool)),
    ),
    min_size=1,
    max_size=20,
)


class TestAllowanceConservation:
    @FIXTURE_SETTINGS
    @given(quota=st.integers(min_value=0, max_value=12), ops=order_ops)
    def test_any_operation_sequence_conserves(
        self, session, owner_service, order_service, auditor, test_actor_id, quota, ops
    ):
        """Rejected operations change nothing; accepted ones keep the books balanced."""
        owner = owner_service.register(
            RegisterOwner("Fuzz Owner", f"{uuid4().hex}@example.com", initial_quota=quota)
        )
        orders = []

        for op in ops:
            savepoint = session.begin_nested()
            try:
                if op[0] == "create":
                    orders.append(
                        order_service.create_order(owner.id, CreateOrder(op[1], PaymentMethod.ON_DELIVERY)).id
                    )
                elif op[0] == "cancel" and orders:
                    order_service.cancel_by_operator(
                        orders[op[1] % len(orders)], CancelOrder("Fuzzed cancel"), test_actor_id
                    )
                elif op[0] == "resize" and orders:
                    order_service.resize(orders[op[1] % len(orders)], ResizeOrder(op[2]), test_actor_id)
                savepoint.commit()
            except FulfillmentKernelError:
                savepoint.rollback()

            result = auditor.audit_allowance(owner.id)
            assert result.remaining_quota >= 0
            assert result.is_consistent, result


class TestStockConservation:
    @FIXTURE_SETTINGS
    @given(ops=stock_ops)
    def test_total_matches_ledger(self, session, stock_service, test_actor_id, ops):
        selector = StockSelector(session)
        start_total = selector.current_total()
        start_sum = selector.ledger_sum()

        for kind, amount in ops:
            savepoint = session.begin_nested()
            try:
                if kind == "receive":
                    stock_service.receive(ReceiveStock(amount, "Fuzz Supplier"), test_actor_id)
                else:
                    stock_service.adjust(
                        AdjustStock(amount, StockAdjustmentType(kind), "Fuzzed movement"), test_actor_id
                    )
                savepoint.commit()
            except FulfillmentKernelError:
                savepoint.rollback()

            assert selector.current_total() >= 0
            assert selector.current_total() - start_total == selector.ledger_sum() - start_sum
