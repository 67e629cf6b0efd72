"""
warehouse_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits beside ``warehouse_kernel`` and below
    ``warehouse_services``.  The kernel MUST NEVER import from
    ``warehouse_config``; the InventoryEngine passes plain values down.

Failure modes:
    - ``FileNotFoundError`` -- configuration file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``WAREHOUSE_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying engine behaviour to the exact configuration in force.
"""

from __future__ import annotations

import os
from pathlib import Path

from warehouse_config.loader import load_yaml_file, parse_engine_config
from warehouse_config.schema import (
    DatabaseConfig,
    EngineConfig,
    LedgerConfig,
    LoggingConfig,
    TransportConfig,
)
from warehouse_kernel.logging_config import get_logger

_logger = get_logger("config")

DATABASE_URL_ENV = "WAREHOUSE_DATABASE_URL"

# Default configuration file
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to warehouse_config/sets/default.yaml.

    Returns:
        Validated, frozen EngineConfig.  ``WAREHOUSE_DATABASE_URL``, when set,
        replaces ``database.url``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(config_path)
    config = parse_engine_config(data, database_url_override=os.environ.get(DATABASE_URL_ENV))

    _logger.info(
        "WAREHOUSE_CONFIG_TRACE",
        extra={
            "trace_type": "WAREHOUSE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(config_path),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "EngineConfig",
    "DatabaseConfig",
    "LedgerConfig",
    "TransportConfig",
    "LoggingConfig",
    "DATABASE_URL_ENV",
]
