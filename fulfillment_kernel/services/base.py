"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor shared by every write service: the
    caller's SQLAlchemy ``Session``, a ``Clock`` for every timestamp the
    service writes, and the ``KernelPolicy`` carrying business limits.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back.  The gateway (or test
      harness) owns commit/rollback, so every multi-entity mutation
      (order + allowance + payment + events) is atomic.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the atomicity of
      multi-step operations such as create-order and cancellation.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.policy import KernelPolicy

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a Session from the caller and uses ``session.flush()`` to
        persist changes within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models for screens; those belong in
          ``fulfillment_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: KernelPolicy | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._policy = policy or KernelPolicy()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def policy(self) -> KernelPolicy:
        return self._policy
