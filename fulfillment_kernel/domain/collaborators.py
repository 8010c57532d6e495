"""
External collaborator interfaces consumed by the core.

Notification delivery, identity and document rendering live outside the
kernel.  The core talks to them through the narrow protocols below and
never lets them affect state: notifications and receipts are produced after
commit and their failures are only logged.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID


class Role(str, Enum):
    """Principal roles known to the gateway."""

    REQUESTER = "REQUESTER"
    OPERATOR = "OPERATOR"
    COURIER = "COURIER"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of an operation."""

    id: UUID
    role: Role

    @property
    def is_operator(self) -> bool:
        return self.role == Role.OPERATOR


@runtime_checkable
class Notifier(Protocol):
    """Outbound notification channel (mail, SMS, push)."""

    def send(self, recipient: str, template: str, context: dict[str, Any]) -> bool:
        """Send one message. Returns False (or raises) on failure."""
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    """Resolves the principal of the current call."""

    def current_principal(self) -> Principal | None:
        ...


@runtime_checkable
class DocumentRenderer(Protocol):
    """Renders an order snapshot into a receipt document."""

    def render(self, order_snapshot: dict[str, Any]) -> bytes:
        ...


class NullNotifier:
    """Notifier that drops every message."""

    def send(self, recipient: str, template: str, context: dict[str, Any]) -> bool:
        return True


class StaticIdentityProvider:
    """Identity provider pinned to one principal (scripts, tests)."""

    def __init__(self, principal: Principal | None):
        self._principal = principal

    def current_principal(self) -> Principal | None:
        return self._principal


class PlainTextReceiptRenderer:
    """Minimal receipt renderer producing a UTF-8 text document."""

    def render(self, order_snapshot: dict[str, Any]) -> bytes:
        lines = [
            "DELIVERY RECEIPT",
            f"Order: {order_snapshot.get('id')}",
            f"Customer: {order_snapshot.get('contact_name')}",
            f"Address: {order_snapshot.get('delivery_address') or '-'}",
            f"Quantity: {order_snapshot.get('quantity')}",
            f"Payment method: {order_snapshot.get('payment_method')}",
            f"Amount: {order_snapshot.get('amount')}",
            f"Delivered at: {order_snapshot.get('delivered_at')}",
        ]
        return ("\n".join(lines) + "\n").encode("utf-8")
