"""OrderSelector tests: detail, timeline, listing, review queue and stats."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.commands import (
    ChangeOrderStatus,
    EditOnDeliveryPayment,
    RejectPayment,
    SubmitPaymentReference,
)
from fulfillment_kernel.domain.order_state import OrderStatus, PaymentMethod, PaymentStatus
from fulfillment_kernel.exceptions import AuthorizationError, OrderNotFoundError, ValidationError
from fulfillment_kernel.selectors import OrderFilter, OrderSelector
from fulfillment_kernel.selectors.order_selector import MAX_PAGE_SIZE


@pytest.fixture
def selector(session):
    return OrderSelector(session)


class TestDetailAndTimeline:
    def test_detail_of_assigned_order(self, assigned_order, selector):
        order, assignment = assigned_order()
        detail = selector.get_detail(order.id)
        assert detail.order.id == order.id
        assert detail.assignment.id == assignment.id
        assert detail.amount == detail.latest_payment.amount
        assert [e.title for e in detail.events][-1] == "Delivery Assigned"

    def test_timeline_in_sequence(self, assigned_order, selector, deterministic_clock):
        order, _ = assigned_order()
        timeline = selector.tracking_timeline(order.id)
        seqs = [e.seq for e in timeline]
        assert seqs == sorted(seqs)
        assert len(timeline) == 4

    def test_owner_sees_own_timeline(self, create_owner, create_order, selector):
        owner = create_owner()
        order = create_order(owner=owner)
        assert len(selector.tracking_timeline(order.id, owner_id=owner.id)) == 2

    def test_stranger_forbidden(self, create_owner, create_order, selector):
        order = create_order()
        with pytest.raises(AuthorizationError):
            selector.tracking_timeline(order.id, owner_id=create_owner().id)

    def test_unknown_order(self, selector):
        with pytest.raises(OrderNotFoundError):
            selector.get_detail(uuid4())


class TestListOrders:
    def test_filters_and_pagination(self, create_owner, create_order, approved_order, selector, deterministic_clock):
        owner = create_owner(name="Kavita Rao", email="kavita.rao@example.com")
        for _ in range(3):
            deterministic_clock.advance(60)
            create_order(owner=owner)
        deterministic_clock.advance(60)
        approved = approved_order(owner=owner)
        create_order()

        mine = selector.list_orders(OrderFilter(owner_id=owner.id), page=1, limit=3)
        assert mine.total == 4
        assert mine.total_pages == 2
        assert mine.items[0].id == approved.id

        second = selector.list_orders(OrderFilter(owner_id=owner.id), page=2, limit=3)
        assert len(second.items) == 1

        only_approved = selector.list_orders(OrderFilter(status=OrderStatus.APPROVED))
        assert [o.id for o in only_approved.items] == [approved.id]

    def test_search_by_contact(self, create_owner, create_order, selector):
        owner = create_owner(name="Kavita Rao", email="kavita.rao@example.com")
        order = create_order(owner=owner)
        create_order()
        found = selector.list_orders(OrderFilter(search="KAVITA"))
        assert [o.id for o in found.items] == [order.id]

    def test_filter_by_method(self, create_order, selector):
        prepaid = create_order(method=PaymentMethod.PREPAID_TRANSFER)
        create_order()
        found = selector.list_orders(OrderFilter(payment_method="PREPAID_TRANSFER"))
        assert [o.id for o in found.items] == [prepaid.id]

    @pytest.mark.parametrize("page, limit", [(0, 20), (1, 0), (1, MAX_PAGE_SIZE + 1)])
    def test_bad_paging(self, selector, page, limit):
        with pytest.raises(ValidationError):
            selector.list_orders(page=page, limit=limit)

    @pytest.mark.parametrize(
        "filters, field",
        [(OrderFilter(status="BOGUS"), "status"), (OrderFilter(payment_method="CHEQUE"), "payment_method")],
    )
    def test_unknown_filter_value(self, selector, filters, field):
        with pytest.raises(ValidationError) as exc_info:
            selector.list_orders(filters)
        assert exc_info.value.field == field


class TestPaymentReviews:
    def test_queue_contains_submitted_prepaid_only(
        self, create_owner, create_order, payment_service, selector, test_actor_id
    ):
        owner = create_owner()
        submitted = create_order(method=PaymentMethod.PREPAID_TRANSFER, owner=owner)
        payment_service.submit_reference(submitted.id, owner.id, SubmitPaymentReference("UTR-100200"))
        create_order(method=PaymentMethod.PREPAID_TRANSFER)
        create_order()

        queue = selector.pending_payment_reviews()
        assert [p.order_id for p in queue] == [submitted.id]

    def test_failed_filter(self, create_order, payment_service, selector, test_actor_id):
        order = create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR-100200")
        payment = selector.get_detail(order.id).latest_payment
        payment_service.reject(payment.id, RejectPayment("Reference not found at bank"), test_actor_id)

        failed = selector.pending_payment_reviews(PaymentStatus.FAILED)
        assert [p.id for p in failed] == [payment.id]
        assert selector.pending_payment_reviews() == ()


class TestStats:
    def test_empty(self, selector):
        stats = selector.stats()
        assert stats.total_orders == 0
        assert set(stats.by_status.values()) == {0}
        assert stats.total_revenue == Decimal("0")
        assert stats.average_delivery_hours is None

    def test_dashboard_figures(
        self,
        assigned_order,
        create_order,
        order_service,
        payment_service,
        selector,
        deterministic_clock,
        test_actor_id,
    ):
        delivered, _ = assigned_order(quantity=2)
        payment_service.edit_on_delivery(
            delivered.id, EditOnDeliveryPayment(status="SUCCESS"), test_actor_id
        )
        order_service.change_status(delivered.id, ChangeOrderStatus(OrderStatus.OUT_FOR_DELIVERY), test_actor_id)
        cancelled = create_order()
        order_service.change_status(
            cancelled.id, ChangeOrderStatus(OrderStatus.CANCELLED, "Out of area"), test_actor_id
        )
        create_order()
        create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR-300400")
        deterministic_clock.advance(2 * 3600)
        order_service.change_status(delivered.id, ChangeOrderStatus(OrderStatus.DELIVERED), test_actor_id)

        stats = selector.stats()

        assert stats.total_orders == 4
        assert stats.by_status[OrderStatus.PENDING] == 2
        assert stats.by_status[OrderStatus.DELIVERED] == 1
        assert stats.by_status[OrderStatus.CANCELLED] == 1
        assert stats.by_payment_method == {
            PaymentMethod.ON_DELIVERY: 3,
            PaymentMethod.PREPAID_TRANSFER: 1,
        }
        assert stats.total_revenue == Decimal("2200")
        assert stats.pending_revenue == Decimal("2200")
        assert stats.average_delivery_hours == Decimal("2.0")
        assert stats.pending_prepaid_reviews == 1

    def test_window_on_requested_at(self, create_order, selector, deterministic_clock):
        create_order()
        deterministic_clock.advance(86400)
        later = deterministic_clock.now()
        create_order(quantity=2)

        stats = selector.stats(date_from=later)
        assert stats.total_orders == 1
        assert stats.pending_revenue == Decimal("2200")
        assert selector.stats(date_to=later - timedelta(seconds=1)).total_orders == 1

    def test_inverted_window(self, selector, deterministic_clock):
        now = deterministic_clock.now()
        with pytest.raises(ValidationError) as exc_info:
            selector.stats(date_from=now, date_to=now - timedelta(days=1))
        assert exc_info.value.field == "date_from"
