"""Production wiring: configuration -> engine -> session factory -> gateway."""

from __future__ import annotations

from pathlib import Path

from fulfillment_config import FulfillmentConfig, get_active_config
from fulfillment_kernel.db.engine import create_engine_from_url, create_session_factory
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.collaborators import DocumentRenderer, IdentityProvider, Notifier
from fulfillment_kernel.logging_config import configure_logging
from fulfillment_services.gateway import FulfillmentGateway


def build_gateway(
    identity: IdentityProvider,
    *,
    config: FulfillmentConfig | None = None,
    config_path: Path | str | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
    renderer: DocumentRenderer | None = None,
) -> FulfillmentGateway:
    """Build a FulfillmentGateway from configuration (single entrypoint for production).

    Args:
        identity: Resolves the caller of each operation.
        config: Already-loaded configuration; loaded via
            ``get_active_config(config_path)`` when omitted.
        clock: Optional clock; default SystemClock.
        notifier: Optional notifier; default drops every message.
        renderer: Optional receipt renderer; default plain text.
    """
    config = config or get_active_config(config_path)
    configure_logging(level=config.log_level)
    engine = create_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
    )
    return FulfillmentGateway(
        create_session_factory(engine),
        identity,
        clock=clock,
        policy=config.to_policy(),
        notifier=notifier,
        renderer=renderer,
    )
