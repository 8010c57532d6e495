"""
Module: fulfillment_kernel.db.base
Responsibility: Declarative bases shared by every ORM model: UUID keys
    stored as text, the column type map, and the audit columns carried by
    mutable entities.
Architecture position: Kernel > DB.  Imported by models/ and by the
    sequence counter; imports nothing from the kernel.

Invariants enforced:
    - Keys are uuid4 values, generated client side so a row's id is known
      before flush.
    - Money columns are Numeric(14, 2); amounts never pass through float.
    - Owners, orders, payments, assignments, couriers and batches record the
      principal that created them (created_by_id is NOT NULL).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID column stored as String(36); SQLite and PostgreSQL read it back alike."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """Root of the model hierarchy; every table gets a uuid4 ``id``."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(14, 2),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base for entities that change after creation.

    created_at / updated_at come from the database clock; the service clock
    drives the business timestamps (requested_at, settled_at, ...).
    updated_by_id stays NULL until the first update.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
