"""
Values -- immutable, self-validating domain value objects and enumerations.

Responsibility:
    Enumerations that are not order lifecycle states (delivery priority,
    stock adjustment type, batch status, bulk action tag) and the value
    objects that normalize raw input: external payment references and
    phone numbers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValidationError on construction with malformed input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from fulfillment_kernel.exceptions import ValidationError


class DeliveryPriority(str, Enum):
    """Dispatch priority of a delivery assignment."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class StockAdjustmentType(str, Enum):
    """
    Reason class of a stock ledger adjustment.

    Sign rules:
        RECEIVE: positive, created only together with a receipt batch
        ISSUE, DAMAGE: negative
        AUDIT, CORRECTION: either sign
    """

    RECEIVE = "RECEIVE"
    ISSUE = "ISSUE"
    DAMAGE = "DAMAGE"
    AUDIT = "AUDIT"
    CORRECTION = "CORRECTION"


NEGATIVE_ONLY_ADJUSTMENTS: frozenset[StockAdjustmentType] = frozenset({
    StockAdjustmentType.ISSUE,
    StockAdjustmentType.DAMAGE,
})


class BatchStatus(str, Enum):
    """Receipt batch status (metadata only, never affects the total)."""

    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"
    EXPIRED = "EXPIRED"


class BulkActionType(str, Enum):
    """Actions the bulk coordinator can apply."""

    APPROVE = "approve"
    ASSIGN_DELIVERY = "assign-delivery"
    CANCEL = "cancel"


@dataclass(frozen=True, slots=True)
class TransactionReference:
    """
    External payment reference (bank / UPI transaction id).

    Guarantees:
        - value is stripped of surrounding whitespace
        - min_length <= len(value) <= max_length
        - value matches ``pattern``
    """

    value: str

    @classmethod
    def parse(
        cls,
        raw: str | None,
        *,
        min_length: int,
        max_length: int,
        pattern: str,
    ) -> TransactionReference:
        if raw is None or not str(raw).strip():
            raise ValidationError("Transaction reference is required", field="reference")
        value = str(raw).strip()
        if len(value) < min_length:
            raise ValidationError(
                f"Transaction reference must be at least {min_length} characters",
                field="reference",
            )
        if len(value) > max_length:
            raise ValidationError(
                f"Transaction reference must be at most {max_length} characters",
                field="reference",
            )
        if not re.fullmatch(pattern, value):
            raise ValidationError(
                "Transaction reference may only contain letters, digits, '-' and '_'",
                field="reference",
            )
        return cls(value)

    def __str__(self) -> str:
        return self.value


_PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
_NAME_PATTERN = re.compile(r"^[A-Za-z\s'-]+$")


def normalize_phone(raw: str, field: str = "phone") -> str:
    """
    Normalize a mobile number to its 10 national digits.

    Strips every non-digit (so "+91 98765-43210" works) and keeps the last
    ten digits, which must form a valid mobile number.
    """
    digits = re.sub(r"\D", "", raw or "")[-10:]
    if not _PHONE_PATTERN.match(digits):
        raise ValidationError(f"Invalid phone number: {raw!r}", field=field)
    return digits


def normalize_person_name(raw: str, field: str = "name") -> str:
    """Trim a person name and require 2-100 letters, spaces, hyphens or apostrophes."""
    name = (raw or "").strip()
    if not 2 <= len(name) <= 100:
        raise ValidationError(f"{field} must be between 2 and 100 characters", field=field)
    if not _NAME_PATTERN.match(name):
        raise ValidationError(
            f"{field} can only contain letters, spaces, hyphens, and apostrophes",
            field=field,
        )
    return name
