"""
fulfillment_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``FulfillmentConfig`` whose
    ``to_policy()`` produces the kernel's ``KernelPolicy``.

Architecture position:
    Configuration -- sits above ``fulfillment_kernel`` and below
    ``fulfillment_services`` / ``scripts``.  The kernel MUST NEVER import
    from ``fulfillment_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation at load: ``FulfillmentConfig.__post_init__`` and
      ``KernelPolicy.__post_init__`` reject inconsistent values before any
      service sees them.
    - Deterministic checksum: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``ValueError`` -- unknown keys, missing sections or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``FULFILLMENT_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every operation back to the configuration in force.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fulfillment_config.loader import compute_checksum, load_yaml_file
from fulfillment_kernel.domain.policy import KernelPolicy

_logger = logging.getLogger("fulfillment_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

# Environment override for the database URL (deployment secret).
DATABASE_URL_ENV = "FULFILLMENT_DATABASE_URL"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30

    def __post_init__(self):
        if not self.url:
            raise ValueError("database.url is required")
        if self.pool_size < 1:
            raise ValueError("database.pool_size must be at least 1")
        if self.max_overflow < 0:
            raise ValueError("database.max_overflow cannot be negative")


@dataclass(frozen=True)
class FulfillmentConfig:
    """
    The validated runtime configuration.

    Guarantees:
        - ``policy`` is a valid KernelPolicy.
        - ``log_level`` is a standard logging level name.
    """

    config_id: str
    version: int
    database: DatabaseSettings
    policy: KernelPolicy
    log_level: str = "INFO"
    checksum: str = field(default="", compare=False)

    def __post_init__(self):
        if not self.config_id:
            raise ValueError("config_id is required")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {_LOG_LEVELS}, got {self.log_level!r}")

    def to_policy(self) -> KernelPolicy:
        return self.policy

    @classmethod
    def from_dict(cls, data: dict[str, Any], checksum: str = "") -> FulfillmentConfig:
        unknown = set(data) - {"config_id", "version", "database", "policy", "logging"}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
        if "database" not in data:
            raise ValueError("Configuration is missing the 'database' section")
        return cls(
            config_id=data.get("config_id", ""),
            version=int(data.get("version", 1)),
            database=DatabaseSettings(**data["database"]),
            policy=KernelPolicy.from_dict(data.get("policy") or {}),
            log_level=str((data.get("logging") or {}).get("level", "INFO")).upper(),
            checksum=checksum,
        )


def get_active_config(path: Path | str | None = None) -> FulfillmentConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load. Defaults to fulfillment_config/defaults.yaml.

    Returns:
        FulfillmentConfig. When ``FULFILLMENT_DATABASE_URL`` is set it
        replaces ``database.url``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(config_path)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        data = {**data, "database": {**(data.get("database") or {}), "url": database_url}}

    checksum = compute_checksum(data)
    config = FulfillmentConfig.from_dict(data, checksum=checksum)

    _logger.info(
        "FULFILLMENT_CONFIG_TRACE",
        extra={
            "trace_type": "FULFILLMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": checksum,
            "source": str(config_path),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "DATABASE_URL_ENV",
    "DatabaseSettings",
    "FulfillmentConfig",
    "get_active_config",
]
