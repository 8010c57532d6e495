"""
OrderService tests.

Creation, operator status changes, cancellation from every side and
resize, each checked against the allowance it reserves or releases;
detail edits on open orders.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.commands import (
    CancelOrder,
    ChangeOrderStatus,
    ConfirmPayment,
    CreateOrder,
    ResizeOrder,
    UpdateOrderDetails,
)
from fulfillment_kernel.domain.order_state import OrderStatus, PaymentMethod, PaymentStatus
from fulfillment_kernel.exceptions import (
    AssignmentRequiredError,
    AuthorizationError,
    ConflictError,
    DuplicatePaymentReferenceError,
    InsufficientAllowanceError,
    InvalidOrderTransitionError,
    OrderClosedError,
    OrderNotFoundError,
    OwnerNotFoundError,
    PaymentNotSettledError,
    PaymentStateConflictError,
    ValidationError,
)
from fulfillment_kernel.selectors import OrderSelector


@pytest.fixture
def selector(session):
    return OrderSelector(session)


class TestCreateOrder:
    """Submission is one unit of work."""

    def test_create_reserves_and_seeds(self, order_service, create_owner, allowance_service, selector):
        owner = create_owner(quota=12)
        order = order_service.create_order(owner.id, CreateOrder(2, PaymentMethod.ON_DELIVERY))

        assert order.status == OrderStatus.PENDING
        assert order.contact_email == owner.email
        assert order.delivery_address == "12 Lake Road, Pune"
        assert allowance_service.remaining(owner.id) == 10

        detail = selector.get_detail(order.id)
        assert [e.title for e in detail.events] == ["Started", "Booking Requested"]
        assert all(e.status == OrderStatus.PENDING for e in detail.events)
        assert len(detail.payments) == 1
        payment = detail.latest_payment
        assert payment.attempt_no == 1
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("2200")

    def test_event_seq_increases(self, create_order, selector):
        order = create_order()
        first, second = selector.get_detail(order.id).events
        assert second.seq > first.seq

    def test_prepaid_with_reference(self, create_order, selector):
        order = create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR12345678")
        assert selector.get_detail(order.id).latest_payment.external_reference == "UTR12345678"

    def test_duplicate_reference_rejected(self, create_order):
        create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR12345678")
        with pytest.raises(DuplicatePaymentReferenceError):
            create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR12345678")

    def test_insufficient_allowance(self, order_service, create_owner, allowance_service):
        owner = create_owner(quota=1)
        with pytest.raises(InsufficientAllowanceError):
            order_service.create_order(owner.id, CreateOrder(2, PaymentMethod.ON_DELIVERY))
        assert allowance_service.remaining(owner.id) == 1

    def test_validation_before_anything(self, order_service, create_owner, allowance_service):
        owner = create_owner(quota=12)
        with pytest.raises(ValidationError):
            order_service.create_order(owner.id, CreateOrder(4, PaymentMethod.ON_DELIVERY))
        assert allowance_service.remaining(owner.id) == 12

    def test_expected_date_checked_against_clock(self, order_service, create_owner, deterministic_clock):
        owner = create_owner()
        late = deterministic_clock.today() + timedelta(days=8)
        with pytest.raises(ValidationError):
            order_service.create_order(
                owner.id, CreateOrder(1, PaymentMethod.ON_DELIVERY, expected_date=late)
            )

    def test_unknown_owner(self, order_service):
        with pytest.raises(OwnerNotFoundError):
            order_service.create_order(uuid4(), CreateOrder(1, PaymentMethod.ON_DELIVERY))


class TestStatusChanges:
    """Operator-driven transitions."""

    def test_approve_on_delivery(self, create_order, order_service, test_actor_id, selector):
        order = create_order()
        approved = order_service.approve(order.id, test_actor_id)
        assert approved.status == OrderStatus.APPROVED
        last = selector.get_detail(order.id).events[-1]
        assert last.title == "Status Updated to APPROVED"
        assert last.actor_id == test_actor_id

    def test_event_records_previous_status(self, create_order, order_service, selector, test_actor_id):
        order = create_order()
        order_service.approve(order.id, test_actor_id)

        last = selector.get_detail(order.id).events[-1]
        assert last.status == OrderStatus.APPROVED
        assert last.description == "Booking status changed from PENDING to APPROVED"

    def test_cancel_without_reason_records_previous_status(self, create_owner, approved_order, order_service, selector):
        owner = create_owner()
        order = approved_order(owner=owner)
        order_service.cancel_by_requester(order.id, owner.id, CancelOrder())
        assert selector.get_detail(order.id).events[-1].description == (
            "Booking status changed from APPROVED to CANCELLED"
        )

    def test_prepaid_approval_waits_for_payment(
        self, create_order, order_service, payment_service, selector, test_actor_id
    ):
        order = create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR12345678")
        with pytest.raises(PaymentNotSettledError):
            order_service.approve(order.id, test_actor_id)

        payment = selector.get_detail(order.id).latest_payment
        payment_service.confirm(payment.id, ConfirmPayment(), test_actor_id)
        assert order_service.approve(order.id, test_actor_id).status == OrderStatus.APPROVED

    def test_dispatch_needs_assignment(self, approved_order, order_service, test_actor_id):
        order = approved_order()
        with pytest.raises(AssignmentRequiredError):
            order_service.change_status(
                order.id, ChangeOrderStatus(OrderStatus.OUT_FOR_DELIVERY), test_actor_id
            )

    def test_operator_dispatch_syncs_assignment(self, assigned_order, order_service, selector, test_actor_id):
        order, _ = assigned_order()
        order_service.change_status(order.id, ChangeOrderStatus(OrderStatus.OUT_FOR_DELIVERY), test_actor_id)
        delivered = order_service.change_status(order.id, ChangeOrderStatus(OrderStatus.DELIVERED), test_actor_id)

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.delivered_at is not None
        assignment = selector.get_detail(order.id).assignment
        assert assignment.status.value == "DELIVERED"
        assert assignment.picked_up_at is not None

    def test_terminal_is_final(self, create_order, order_service, test_actor_id):
        order = create_order()
        order_service.cancel_by_operator(order.id, CancelOrder("Duplicate booking"), test_actor_id)
        with pytest.raises(InvalidOrderTransitionError):
            order_service.approve(order.id, test_actor_id)

    def test_change_status_to_cancelled_releases(
        self, create_order, create_owner, order_service, allowance_service, test_actor_id
    ):
        owner = create_owner(quota=12)
        order = create_order(quantity=3, owner=owner)
        order_service.change_status(
            order.id, ChangeOrderStatus(OrderStatus.CANCELLED, "Customer called"), test_actor_id
        )
        assert allowance_service.remaining(owner.id) == 12

    def test_unknown_order(self, order_service, test_actor_id):
        with pytest.raises(OrderNotFoundError):
            order_service.approve(uuid4(), test_actor_id)


class TestCancellation:
    """Central cancellation routine."""

    def test_cancel_releases_and_cancels_payment(
        self, create_owner, create_order, order_service, allowance_service, selector, test_actor_id
    ):
        owner = create_owner(quota=12)
        order = create_order(quantity=3, owner=owner)
        cancelled = order_service.cancel_by_operator(order.id, CancelOrder("Out of area"), test_actor_id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert "Cancellation reason: Out of area" in cancelled.notes
        assert allowance_service.remaining(owner.id) == 12
        detail = selector.get_detail(order.id)
        assert detail.latest_payment.status == PaymentStatus.CANCELLED
        assert detail.events[-1].description == "Booking cancelled: Out of area (was PENDING)"

    def test_second_cancel_rejected_without_double_release(
        self, create_owner, create_order, order_service, allowance_service, test_actor_id
    ):
        owner = create_owner(quota=12)
        order = create_order(quantity=2, owner=owner)
        order_service.cancel_by_operator(order.id, CancelOrder("Out of area"), test_actor_id)
        with pytest.raises(InvalidOrderTransitionError):
            order_service.cancel_by_operator(order.id, CancelOrder("Out of area"), test_actor_id)
        assert allowance_service.remaining(owner.id) == 12

    def test_operator_reason_required(self, create_order, order_service, test_actor_id):
        order = create_order()
        with pytest.raises(ValidationError):
            order_service.cancel_by_operator(order.id, CancelOrder(), test_actor_id)

    def test_cancel_fails_active_assignment(self, assigned_order, order_service, selector, test_actor_id):
        order, _ = assigned_order()
        order_service.cancel_by_operator(order.id, CancelOrder("Address unreachable"), test_actor_id)
        assert selector.get_detail(order.id).assignment.status.value == "FAILED"

    def test_success_payment_survives_cancel(
        self, create_order, order_service, payment_service, selector, test_actor_id
    ):
        order = create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR12345678")
        payment = selector.get_detail(order.id).latest_payment
        payment_service.confirm(payment.id, ConfirmPayment(), test_actor_id)

        order_service.cancel_by_operator(order.id, CancelOrder("Refund requested"), test_actor_id)
        assert selector.get_detail(order.id).latest_payment.status == PaymentStatus.SUCCESS


class TestRequesterCancel:
    def test_owner_cancels_pending_without_reason(self, create_owner, create_order, order_service):
        owner = create_owner()
        order = create_order(owner=owner)
        assert order_service.cancel_by_requester(order.id, owner.id, CancelOrder()).status == OrderStatus.CANCELLED

    def test_owner_cancels_approved(self, create_owner, approved_order, order_service):
        owner = create_owner()
        order = approved_order(owner=owner)
        order_service.cancel_by_requester(order.id, owner.id, CancelOrder("Plans changed"))

    def test_other_owner_forbidden(self, create_owner, create_order, order_service):
        order = create_order()
        stranger = create_owner()
        with pytest.raises(AuthorizationError) as exc_info:
            order_service.cancel_by_requester(order.id, stranger.id, CancelOrder())
        assert exc_info.value.http_status == 403

    def test_dispatched_order_cannot_be_withdrawn(
        self, create_owner, assigned_order, order_service, test_actor_id
    ):
        owner = create_owner()
        order, _ = assigned_order(owner=owner)
        order_service.change_status(order.id, ChangeOrderStatus(OrderStatus.OUT_FOR_DELIVERY), test_actor_id)
        with pytest.raises(InvalidOrderTransitionError):
            order_service.cancel_by_requester(order.id, owner.id, CancelOrder())


class TestResize:
    """Quantity changes reserve or release the difference."""

    def test_round_trip_restores_allowance(
        self, create_owner, create_order, order_service, allowance_service, selector, test_actor_id
    ):
        owner = create_owner(quota=8)
        order = create_order(quantity=3, owner=owner)
        assert allowance_service.remaining(owner.id) == 5

        order_service.resize(order.id, ResizeOrder(1), test_actor_id)
        assert allowance_service.remaining(owner.id) == 7
        resized = order_service.resize(order.id, ResizeOrder(3), test_actor_id)
        assert resized.quantity == 3
        assert allowance_service.remaining(owner.id) == 5
        assert selector.get_detail(order.id).latest_payment.amount == Decimal("3300")

    def test_resize_beyond_allowance(self, create_owner, create_order, order_service, allowance_service, test_actor_id):
        owner = create_owner(quota=3)
        order = create_order(quantity=2, owner=owner)
        with pytest.raises(InsufficientAllowanceError):
            order_service.resize(order.id, ResizeOrder(5), test_actor_id)
        assert allowance_service.remaining(owner.id) == 1

    def test_resize_records_event(self, create_order, order_service, selector, test_actor_id):
        order = create_order(quantity=1)
        order_service.resize(order.id, ResizeOrder(2), test_actor_id)
        last = selector.get_detail(order.id).events[-1]
        assert last.title == "Quantity Updated"
        assert last.description == "Quantity changed from 1 to 2."

    def test_same_quantity_is_noop(self, create_order, order_service, selector, test_actor_id):
        order = create_order(quantity=2)
        order_service.resize(order.id, ResizeOrder(2), test_actor_id)
        assert len(selector.get_detail(order.id).events) == 2

    def test_terminal_order_cannot_be_resized(self, create_order, order_service, test_actor_id):
        order = create_order()
        order_service.cancel_by_operator(order.id, CancelOrder("Duplicate"), test_actor_id)
        with pytest.raises(ConflictError):
            order_service.resize(order.id, ResizeOrder(2), test_actor_id)

    def test_settled_order_cannot_be_resized(
        self, create_order, order_service, payment_service, selector, test_actor_id
    ):
        order = create_order(method=PaymentMethod.PREPAID_TRANSFER, reference="UTR12345678")
        payment = selector.get_detail(order.id).latest_payment
        payment_service.confirm(payment.id, ConfirmPayment(), test_actor_id)
        with pytest.raises(PaymentStateConflictError):
            order_service.resize(order.id, ResizeOrder(2), test_actor_id)


class TestUpdateDetails:
    """Operator edits of delivery details on open orders."""

    def test_fields_stored_and_event_written(self, create_order, order_service, selector, test_actor_id, captured_logs):
        order = create_order()
        updated = order_service.update_details(
            order.id,
            UpdateOrderDetails(receiver_name="Meera Shah", delivery_address="12 Lake Road, Pune"),
            test_actor_id,
        )

        assert updated.receiver_name == "Meera Shah"
        assert updated.delivery_address == "12 Lake Road, Pune"
        last = selector.get_detail(order.id).events[-1]
        assert last.title == "Booking Details Updated"
        assert last.description == "Updated receiver name, delivery address."
        assert any(r["message"] == "order_details_updated" for r in captured_logs())

    def test_expected_date_checked_against_clock(self, create_order, order_service, deterministic_clock, test_actor_id):
        order = create_order()
        soon = deterministic_clock.today() + timedelta(days=3)
        assert order_service.update_details(
            order.id, UpdateOrderDetails(expected_date=soon), test_actor_id
        ).expected_date == soon
        with pytest.raises(ValidationError):
            order_service.update_details(
                order.id,
                UpdateOrderDetails(expected_date=deterministic_clock.today() - timedelta(days=1)),
                test_actor_id,
            )

    def test_unchanged_values_write_no_event(self, create_order, order_service, selector, test_actor_id):
        order = create_order()
        order_service.update_details(order.id, UpdateOrderDetails(notes="Gate code 4411"), test_actor_id)
        order_service.update_details(order.id, UpdateOrderDetails(notes="Gate code 4411"), test_actor_id)
        assert len(selector.get_detail(order.id).events) == 3

    def test_closed_order_rejected(self, create_order, order_service, selector, test_actor_id):
        order = create_order()
        order_service.cancel_by_operator(order.id, CancelOrder("Duplicate"), test_actor_id)
        with pytest.raises(OrderClosedError) as exc_info:
            order_service.update_details(order.id, UpdateOrderDetails(notes="Leave at door"), test_actor_id)
        assert exc_info.value.code == "ORDER_CLOSED"
        assert selector.get_detail(order.id).order.notes == "Cancellation reason: Duplicate"

    def test_unknown_order(self, order_service, test_actor_id):
        with pytest.raises(OrderNotFoundError):
            order_service.update_details(uuid4(), UpdateOrderDetails(notes="Leave at door"), test_actor_id)
