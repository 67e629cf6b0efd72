"""
EngineConfig schema.

Frozen dataclasses the YAML configuration is parsed into.  The loader
validates every value before construction; these types only carry data.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_BOX_CODE_PATTERN = r"^B\d{3}$"


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for init_engine_from_url()."""

    url: str
    echo: bool = False
    pool_size: int = 20


@dataclass(frozen=True)
class LedgerConfig:
    """Stock ledger rules."""

    allow_negative_stock: bool = False
    # Decimal places accepted on incoming quantities (storage keeps 9)
    quantity_places: int = 9


@dataclass(frozen=True)
class TransportConfig:
    """Transport box behaviour."""

    picking_timeout_seconds: float = 30.0
    box_code_pattern: str = DEFAULT_BOX_CODE_PATTERN


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class EngineConfig:
    """Complete runtime configuration of the inventory engine."""

    config_id: str
    version: int
    database: DatabaseConfig
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
