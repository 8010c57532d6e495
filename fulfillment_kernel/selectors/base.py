"""
Module: fulfillment_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors are the query side of the kernel: order detail and listings,
    tracking timelines, the payment review queue, stock figures and courier
    workload.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors never call session.add(), delete(),
      flush() or commit().
    - DTO return convention: selectors return frozen DTOs, never ORM rows.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from enum import Enum
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.exceptions import ValidationError

ModelType = TypeVar("ModelType", bound=Base)
E = TypeVar("E", bound=Enum)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _filter_value(field: str, enum_cls: type[E], value: E | str) -> E:
        """Coerce a filter argument to ``enum_cls``; unknown values are a 400."""
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ValidationError(f"{field} must be one of: {allowed}", field=field) from None
