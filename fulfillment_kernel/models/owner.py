"""
Module: fulfillment_kernel.models.owner
Responsibility: ORM persistence for account holders and their allowance.
    The allowance is not a separate table: remaining_quota lives on the
    owner row so the compare-and-decrement reservation is one UPDATE.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - remaining_quota >= 0 and granted_quota >= 0 (CHECK constraints).
    - email is unique.

Failure modes:
    - IntegrityError on duplicate email or a negative quota write that
      bypassed AllowanceService.

Audit relevance:
    granted_quota is the baseline of the allowance conservation law:
    remaining_quota + reserved quantity of non-cancelled orders must equal
    it at all times.
"""

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase
from fulfillment_kernel.domain.collaborators import Role
from fulfillment_kernel.domain.dtos import OwnerInfo


class Owner(TrackedBase):
    """
    Account holder who places orders against a personal allowance.

    Guarantees:
        - remaining_quota never observably negative.
        - granted_quota changes only through administrative correction.

    Non-goals:
        - Does not hold credentials; identity is external.
    """

    __tablename__ = "owners"

    __table_args__ = (
        UniqueConstraint("email", name="uq_owner_email"),
        CheckConstraint("remaining_quota >= 0", name="ck_owner_remaining_quota_non_negative"),
        CheckConstraint("granted_quota >= 0", name="ck_owner_granted_quota_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str] = mapped_column(String(254), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Role.REQUESTER.value,
    )

    # Allowance baseline (initial grant +/- administrative corrections)
    granted_quota: Mapped[int] = mapped_column(Integer, nullable=False, default=12)

    # Units still available to order
    remaining_quota: Mapped[int] = mapped_column(Integer, nullable=False, default=12)

    def to_dto(self) -> OwnerInfo:
        return OwnerInfo(
            id=self.id,
            name=self.name,
            email=self.email,
            phone=self.phone,
            address=self.address,
            role=self.role,
            granted_quota=self.granted_quota,
            remaining_quota=self.remaining_quota,
        )

    def __repr__(self) -> str:
        return f"<Owner {self.email}: {self.remaining_quota}/{self.granted_quota}>"
