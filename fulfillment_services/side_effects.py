"""
Post-commit side effects: notifications and delivery receipts.

Effects are collected while an operation runs and dispatched only after
its transaction commits.  A failing notifier or renderer is logged as
``side_effect_failed`` and never changes the operation's result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fulfillment_kernel.domain.collaborators import DocumentRenderer, Notifier
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("services.side_effects")


@dataclass(frozen=True)
class Notification:
    """One outbound message; ``receipt_snapshot`` attaches a rendered receipt."""

    recipient: str
    template: str
    context: dict[str, Any] = field(default_factory=dict)
    receipt_snapshot: dict[str, Any] | None = None


class SideEffectDispatcher:
    """Runs collected notifications through the notifier and renderer."""

    def __init__(self, notifier: Notifier, renderer: DocumentRenderer):
        self._notifier = notifier
        self._renderer = renderer

    def dispatch(self, operation: str, effects: list[Notification]) -> int:
        """Send every effect; returns how many were delivered."""
        delivered = 0
        for effect in effects:
            try:
                context = dict(effect.context)
                if effect.receipt_snapshot is not None:
                    context["receipt"] = self._renderer.render(effect.receipt_snapshot)
                sent = self._notifier.send(effect.recipient, effect.template, context)
            except Exception as exc:  # side effects never surface to the caller
                logger.warning(
                    "side_effect_failed",
                    extra={
                        "operation": operation,
                        "template": effect.template,
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                continue
            if sent is False:
                logger.warning(
                    "side_effect_failed",
                    extra={"operation": operation, "template": effect.template, "error_type": None},
                )
                continue
            delivered += 1
        return delivered
