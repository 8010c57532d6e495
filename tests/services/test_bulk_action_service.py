"""
BulkActionService tests.

Ineligible orders are skipped, unknown ids and per-item failures are
reported, and a selection containing a delivered order is refused whole.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.commands import AdvanceDelivery, BulkAction, CancelOrder
from fulfillment_kernel.domain.order_state import AssignmentStatus, OrderStatus, PaymentMethod
from fulfillment_kernel.domain.values import BulkActionType
from fulfillment_kernel.exceptions import (
    BulkActionBlockedError,
    CourierInactiveError,
    InsufficientAllowanceError,
)
from fulfillment_kernel.selectors import OrderSelector


@pytest.fixture
def selector(session):
    return OrderSelector(session)


def _status(selector, order_id):
    return selector.get_detail(order_id).order.status


class TestBulkApprove:
    def test_approves_eligible_and_skips_the_rest(
        self, bulk_service, create_order, order_service, selector, test_actor_id
    ):
        pending = create_order()
        unpaid = create_order(method=PaymentMethod.PREPAID_TRANSFER)
        cancelled = create_order()
        order_service.cancel_by_operator(cancelled.id, CancelOrder("Duplicate"), test_actor_id)

        result = bulk_service.execute(
            BulkAction(BulkActionType.APPROVE, (pending.id, unpaid.id, cancelled.id)), test_actor_id
        )

        assert result.requested == 3
        assert result.affected_ids == (pending.id,)
        assert result.affected_count == 1
        assert set(result.skipped_ids) == {unpaid.id, cancelled.id}
        assert result.errors == ()
        assert _status(selector, pending.id) == OrderStatus.APPROVED
        assert _status(selector, unpaid.id) == OrderStatus.PENDING

    def test_unknown_ids_reported(self, bulk_service, create_order, test_actor_id):
        order = create_order()
        ghost = uuid4()
        result = bulk_service.execute(BulkAction(BulkActionType.APPROVE, (order.id, ghost)), test_actor_id)
        assert result.affected_ids == (order.id,)
        assert [(e.order_id, e.code) for e in result.errors] == [(ghost, "ORDER_NOT_FOUND")]

    def test_item_failure_does_not_abort_the_batch(
        self, bulk_service, create_order, selector, test_actor_id, monkeypatch, captured_logs
    ):
        """A failing item is rolled back to its savepoint; the others commit."""
        first, broken, last = create_order(), create_order(), create_order()
        real_transition = bulk_service._orders.transition

        def flaky_transition(order, target, actor_id, **kwargs):
            if order.id == broken.id:
                raise InsufficientAllowanceError(str(order.owner_id), 1, 0)
            return real_transition(order, target, actor_id, **kwargs)

        monkeypatch.setattr(bulk_service._orders, "transition", flaky_transition)
        result = bulk_service.execute(
            BulkAction(BulkActionType.APPROVE, (first.id, broken.id, last.id)), test_actor_id
        )

        assert result.affected_ids == (first.id, last.id)
        assert [(e.order_id, e.code) for e in result.errors] == [(broken.id, "INSUFFICIENT_ALLOWANCE")]
        assert _status(selector, broken.id) == OrderStatus.PENDING
        assert any(r["message"] == "bulk_item_failed" for r in captured_logs())


class TestBulkAssign:
    def test_assigns_approved_orders(
        self, bulk_service, approved_order, create_order, create_courier, deterministic_clock, selector, test_actor_id
    ):
        courier = create_courier()
        ready = approved_order()
        pending = create_order()
        result = bulk_service.execute(
            BulkAction(
                BulkActionType.ASSIGN_DELIVERY,
                (ready.id, pending.id),
                courier_id=courier.id,
                scheduled_date=deterministic_clock.today() + timedelta(days=1),
            ),
            test_actor_id,
        )
        assert result.affected_ids == (ready.id,)
        assert result.skipped_ids == (pending.id,)
        assert selector.get_detail(ready.id).assignment.courier_id == courier.id

    def test_already_assigned_is_skipped(
        self, bulk_service, assigned_order, create_courier, deterministic_clock, test_actor_id
    ):
        order, _ = assigned_order()
        result = bulk_service.execute(
            BulkAction(
                "assign-delivery",
                (order.id,),
                courier_id=create_courier().id,
                scheduled_date=deterministic_clock.today(),
            ),
            test_actor_id,
        )
        assert result.affected_count == 0
        assert result.skipped_ids == (order.id,)

    def test_inactive_courier_refused(
        self, bulk_service, approved_order, create_courier, courier_service, deterministic_clock, test_actor_id
    ):
        courier = create_courier()
        courier_service.deactivate(courier.id, test_actor_id)
        with pytest.raises(CourierInactiveError):
            bulk_service.execute(
                BulkAction(
                    BulkActionType.ASSIGN_DELIVERY,
                    (approved_order().id,),
                    courier_id=courier.id,
                    scheduled_date=deterministic_clock.today(),
                ),
                test_actor_id,
            )


class TestBulkCancel:
    def test_cancels_open_orders(
        self, bulk_service, create_owner, create_order, assigned_order, allowance_service, selector, test_actor_id
    ):
        owner = create_owner(quota=12)
        pending = create_order(quantity=2, owner=owner)
        assigned, _ = assigned_order(quantity=3, owner=owner)
        assert allowance_service.remaining(owner.id) == 7

        result = bulk_service.execute(
            BulkAction(BulkActionType.CANCEL, (pending.id, assigned.id), reason="Depot closed"), test_actor_id
        )

        assert result.affected_count == 2
        assert allowance_service.remaining(owner.id) == 12
        last = selector.get_detail(assigned.id).events[-1]
        assert last.description == "Booking cancelled by admin: Depot closed"

    def test_delivered_order_blocks_everything(
        self, bulk_service, create_order, assigned_order, delivery_service, selector, test_actor_id
    ):
        delivered, assignment = assigned_order()
        for status in (AssignmentStatus.OUT_FOR_DELIVERY, AssignmentStatus.DELIVERED):
            delivery_service.advance(assignment.id, AdvanceDelivery(status), test_actor_id)
        pending = create_order()

        with pytest.raises(BulkActionBlockedError) as exc_info:
            bulk_service.execute(
                BulkAction(BulkActionType.CANCEL, (pending.id, delivered.id), reason="Depot closed"),
                test_actor_id,
            )
        assert exc_info.value.http_status == 409
        assert _status(selector, pending.id) == OrderStatus.PENDING
