"""CourierSelector tests: registry, daily load and delivery stats."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.commands import AdvanceDelivery
from fulfillment_kernel.domain.order_state import AssignmentStatus
from fulfillment_kernel.exceptions import CourierNotFoundError
from fulfillment_kernel.selectors import CourierSelector


@pytest.fixture
def selector(session):
    return CourierSelector(session)


class TestCourierSelector:
    def test_list_active_only(self, selector, create_courier, courier_service, test_actor_id):
        active = create_courier(name="Anil Jadhav")
        retired = create_courier(name="Bhavesh Shah")
        courier_service.deactivate(retired.id, test_actor_id)

        assert [c.id for c in selector.list_couriers(active_only=True)] == [active.id]
        assert [c.name for c in selector.list_couriers()] == ["Anil Jadhav", "Bhavesh Shah"]

    def test_daily_load(self, selector, create_courier, assigned_order, delivery_service, deterministic_clock, test_actor_id):
        courier = create_courier(capacity=5)
        _, first = assigned_order(courier=courier)
        assigned_order(courier=courier)
        delivery_service.advance(first.id, AdvanceDelivery(AssignmentStatus.OUT_FOR_DELIVERY), test_actor_id)
        delivery_service.advance(first.id, AdvanceDelivery(AssignmentStatus.DELIVERED), test_actor_id)

        load = selector.daily_load(courier.id, deterministic_clock.today() + timedelta(days=1))
        assert load.total_assignments == 2
        assert load.active_assignments == 1
        assert load.completed_assignments == 1
        assert load.remaining_capacity == 4

    def test_other_day_is_empty(self, selector, create_courier, deterministic_clock):
        courier = create_courier()
        load = selector.daily_load(courier.id, deterministic_clock.today())
        assert load.total_assignments == 0
        assert load.remaining_capacity == courier.capacity_per_day

    def test_unknown(self, selector):
        with pytest.raises(CourierNotFoundError):
            selector.get(uuid4())


class TestDeliveryStats:
    def test_empty(self, selector, deterministic_clock):
        stats = selector.delivery_stats(deterministic_clock.today())
        assert stats.total_assignments == 0
        assert stats.success_rate is None

    def test_outcomes(
        self,
        selector,
        create_courier,
        assigned_order,
        approved_order,
        courier_service,
        delivery_service,
        deterministic_clock,
        test_actor_id,
    ):
        courier = create_courier()
        retired = create_courier(name="Bhavesh Shah")
        courier_service.deactivate(retired.id, test_actor_id)
        _, delivered = assigned_order(courier=courier)
        _, failed = assigned_order(courier=courier)
        assigned_order(courier=courier)
        approved_order()
        delivery_service.advance(delivered.id, AdvanceDelivery(AssignmentStatus.OUT_FOR_DELIVERY), test_actor_id)
        delivery_service.advance(delivered.id, AdvanceDelivery(AssignmentStatus.DELIVERED), test_actor_id)
        delivery_service.advance(failed.id, AdvanceDelivery(AssignmentStatus.FAILED, "Nobody home"), test_actor_id)

        stats = selector.delivery_stats(deterministic_clock.today())
        assert stats.total_assignments == 3
        assert stats.active_assignments == 1
        assert stats.completed_on_day == 1
        assert stats.awaiting_assignment == 1
        assert stats.total_couriers == 2
        assert stats.active_couriers == 1
        assert stats.success_rate == Decimal("50.0")

        tomorrow = selector.delivery_stats(deterministic_clock.today() + timedelta(days=1))
        assert tomorrow.completed_on_day == 0
