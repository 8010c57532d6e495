"""KernelPolicy defaults and validation."""

from decimal import Decimal

import pytest

from fulfillment_kernel.domain.policy import KernelPolicy


class TestKernelPolicy:
    def test_defaults(self):
        policy = KernelPolicy()
        assert policy.unit_price == Decimal("1100")
        assert policy.max_quantity_per_order == 3
        assert policy.allow_negative_stock is False

    @pytest.mark.parametrize(
        "overrides",
        [
            {"unit_price": Decimal("0")},
            {"default_quota": -1},
            {"max_quantity_per_order": 0},
            {"min_reference_length": 10, "max_reference_length": 5},
            {"reference_pattern": "(["},
            {"courier_default_capacity": 600},
        ],
    )
    def test_rejects_inconsistent_values(self, overrides):
        with pytest.raises(ValueError):
            KernelPolicy(**overrides)

    def test_from_dict_parses_price(self):
        policy = KernelPolicy.from_dict({"unit_price": "1250.50", "max_quantity_per_order": 2})
        assert policy.unit_price == Decimal("1250.50")
        assert policy.max_quantity_per_order == 2

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown policy keys"):
            KernelPolicy.from_dict({"unit_cost": 5})

    def test_policy_is_frozen(self):
        policy = KernelPolicy()
        with pytest.raises(AttributeError):
            policy.unit_price = Decimal("1")
