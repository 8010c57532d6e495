"""
Kernel policy -- the business constants every service is parameterized by.

The kernel never reads configuration files.  ``fulfillment_config`` builds a
KernelPolicy from YAML and hands it to services; tests construct one
directly (``KernelPolicy()`` carries the production defaults).
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Self

from fulfillment_kernel.logging_config import get_logger

logger = get_logger("domain.policy")


@dataclass(frozen=True)
class KernelPolicy:
    """
    Business limits for orders, payments, couriers and stock.

    Override at instantiation:

        policy = KernelPolicy(unit_price=Decimal("1250"), max_quantity_per_order=2)
    """

    # Orders
    unit_price: Decimal = Decimal("1100")
    default_quota: int = 12
    max_quantity_per_order: int = 3

    # Prepaid transfer references
    min_reference_length: int = 6
    max_reference_length: int = 50
    reference_pattern: str = r"^[A-Za-z0-9_-]+$"
    min_rejection_reason_length: int = 10

    # Stock
    max_adjustment_delta: int = 100_000
    max_adjustment_reason_length: int = 200
    allow_negative_stock: bool = False

    # Couriers
    courier_default_capacity: int = 20
    courier_max_capacity: int = 500

    def __post_init__(self):
        if self.unit_price <= 0:
            raise ValueError("unit_price must be positive")
        if self.default_quota < 0:
            raise ValueError("default_quota cannot be negative")
        if self.max_quantity_per_order < 1:
            raise ValueError("max_quantity_per_order must be at least 1")
        if not 1 <= self.min_reference_length <= self.max_reference_length:
            raise ValueError(
                "reference lengths must satisfy 1 <= min_reference_length <= max_reference_length, "
                f"got {self.min_reference_length}..{self.max_reference_length}"
            )
        try:
            re.compile(self.reference_pattern)
        except re.error as exc:
            raise ValueError(f"reference_pattern is not a valid regex: {exc}") from exc
        if self.min_rejection_reason_length < 1:
            raise ValueError("min_rejection_reason_length must be at least 1")
        if self.max_adjustment_delta < 1:
            raise ValueError("max_adjustment_delta must be positive")
        if not 1 <= self.courier_default_capacity <= self.courier_max_capacity:
            raise ValueError(
                "courier_default_capacity must be between 1 and courier_max_capacity"
            )

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create a policy from a plain mapping (e.g. a parsed YAML section)."""
        values = dict(data)
        if "unit_price" in values:
            values["unit_price"] = Decimal(str(values["unit_price"]))
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown policy keys: {sorted(unknown)}")
        policy = cls(**values)
        logger.info(
            "kernel_policy_loaded",
            extra={
                "unit_price": policy.unit_price,
                "max_quantity_per_order": policy.max_quantity_per_order,
                "allow_negative_stock": policy.allow_negative_stock,
            },
        )
        return policy
