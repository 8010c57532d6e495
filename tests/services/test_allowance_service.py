"""
AllowanceService tests.

Reservation is a compare-and-decrement; corrections move granted and
remaining quota together and never drive either negative.
"""

from uuid import uuid4

import pytest

from fulfillment_kernel.domain.commands import CorrectAllowance
from fulfillment_kernel.exceptions import (
    AllowanceCorrectionError,
    InsufficientAllowanceError,
    OwnerNotFoundError,
    ValidationError,
)


class TestReserve:
    """Reservations against remaining quota."""

    def test_reserve_decrements(self, allowance_service, create_owner):
        owner = create_owner(quota=12)
        assert allowance_service.reserve(owner.id, 3) == 9
        assert allowance_service.remaining(owner.id) == 9

    def test_reserve_exact_remaining(self, allowance_service, create_owner):
        """Taking the last unit leaves zero, never negative."""
        owner = create_owner(quota=2)
        assert allowance_service.reserve(owner.id, 2) == 0

    def test_insufficient_changes_nothing(self, allowance_service, create_owner, captured_logs):
        owner = create_owner(quota=2)
        with pytest.raises(InsufficientAllowanceError) as exc_info:
            allowance_service.reserve(owner.id, 3)
        assert exc_info.value.http_status == 409
        assert allowance_service.remaining(owner.id) == 2
        assert any(r["message"] == "allowance_insufficient" for r in captured_logs())

    def test_unknown_owner(self, allowance_service):
        with pytest.raises(OwnerNotFoundError):
            allowance_service.reserve(uuid4(), 1)

    @pytest.mark.parametrize("amount", [0, -2])
    def test_non_positive_amount(self, allowance_service, create_owner, amount):
        owner = create_owner()
        with pytest.raises(ValidationError):
            allowance_service.reserve(owner.id, amount)


class TestRelease:
    def test_release_increments(self, allowance_service, create_owner):
        owner = create_owner(quota=12)
        allowance_service.reserve(owner.id, 3)
        assert allowance_service.release(owner.id, 2) == 11

    def test_release_unknown_owner(self, allowance_service):
        with pytest.raises(OwnerNotFoundError):
            allowance_service.release(uuid4(), 1)


class TestCorrect:
    """Administrative corrections."""

    def test_positive_correction(self, allowance_service, create_owner, test_actor_id):
        owner = create_owner(quota=12)
        allowance_service.reserve(owner.id, 3)
        corrected = allowance_service.correct(owner.id, CorrectAllowance(4, "Annual top-up"), test_actor_id)
        assert corrected.granted_quota == 16
        assert corrected.remaining_quota == 13

    def test_negative_correction_within_remaining(self, allowance_service, create_owner, test_actor_id):
        owner = create_owner(quota=12)
        corrected = allowance_service.correct(owner.id, CorrectAllowance(-5, "Entry error"), test_actor_id)
        assert (corrected.granted_quota, corrected.remaining_quota) == (7, 7)

    def test_correction_cannot_go_negative(self, allowance_service, create_owner, test_actor_id):
        """A reduction larger than what remains is rejected as a whole."""
        owner = create_owner(quota=4)
        allowance_service.reserve(owner.id, 3)
        with pytest.raises(AllowanceCorrectionError):
            allowance_service.correct(owner.id, CorrectAllowance(-2, "Entry error"), test_actor_id)
        assert allowance_service.remaining(owner.id) == 1

    def test_correction_requires_reason(self, allowance_service, create_owner, test_actor_id):
        owner = create_owner()
        with pytest.raises(ValidationError):
            allowance_service.correct(owner.id, CorrectAllowance(1, " "), test_actor_id)

    def test_correction_unknown_owner(self, allowance_service, test_actor_id):
        with pytest.raises(OwnerNotFoundError):
            allowance_service.correct(uuid4(), CorrectAllowance(1, "Top-up"), test_actor_id)
