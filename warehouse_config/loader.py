"""
Configuration Loader (``warehouse_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``warehouse_config.schema`` dataclasses.  The single public entry point for
runtime config is ``warehouse_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml

from warehouse_config.schema import (
    DEFAULT_BOX_CODE_PATTERN,
    DatabaseConfig,
    EngineConfig,
    LedgerConfig,
    LoggingConfig,
    TransportConfig,
)

_SECTIONS = ("database", "ledger", "transport", "logging")
_TOP_LEVEL_KEYS = frozenset(("config_id", "version", *_SECTIONS))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_engine_config(
    data: dict[str, Any],
    database_url_override: str | None = None,
) -> EngineConfig:
    """
    Parse and validate a configuration mapping.

    Args:
        data: Mapping as loaded from YAML.
        database_url_override: Replaces ``database.url`` when given.
    """
    _reject_unknown("", data, _TOP_LEVEL_KEYS)
    for section in _SECTIONS:
        if section in data and not isinstance(data[section], dict):
            raise ValueError(f"{section}: must be a mapping")

    database = parse_database(data.get("database") or {}, database_url_override)
    return EngineConfig(
        config_id=str(data.get("config_id", "default")),
        version=_int("version", data.get("version", 1), minimum=1),
        database=database,
        ledger=parse_ledger(data.get("ledger") or {}),
        transport=parse_transport(data.get("transport") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def parse_database(data: dict[str, Any], url_override: str | None = None) -> DatabaseConfig:
    _reject_unknown("database", data, {"url", "echo", "pool_size"})
    url = url_override or data.get("url")
    if not url or not isinstance(url, str):
        raise ValueError("database.url: required")
    return DatabaseConfig(
        url=url,
        echo=_bool("database.echo", data.get("echo", False)),
        pool_size=_int("database.pool_size", data.get("pool_size", 20), minimum=1),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    _reject_unknown("ledger", data, {"allow_negative_stock", "quantity_places"})
    places = _int("ledger.quantity_places", data.get("quantity_places", 9), minimum=0)
    if places > 9:
        raise ValueError("ledger.quantity_places: at most 9")
    return LedgerConfig(
        allow_negative_stock=_bool(
            "ledger.allow_negative_stock", data.get("allow_negative_stock", False)
        ),
        quantity_places=places,
    )


def parse_transport(data: dict[str, Any]) -> TransportConfig:
    _reject_unknown("transport", data, {"picking_timeout_seconds", "box_code_pattern"})
    timeout = data.get("picking_timeout_seconds", 30.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError("transport.picking_timeout_seconds: must be a positive number")
    pattern = data.get("box_code_pattern", DEFAULT_BOX_CODE_PATTERN)
    try:
        re.compile(pattern)
    except (re.error, TypeError) as exc:
        raise ValueError(f"transport.box_code_pattern: {exc}") from exc
    return TransportConfig(picking_timeout_seconds=float(timeout), box_code_pattern=pattern)


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    _reject_unknown("logging", data, {"level"})
    level = str(data.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"logging.level: unknown level {level!r}")
    return LoggingConfig(level=level)


def _reject_unknown(section: str, data: dict[str, Any], allowed) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        where = f"{section}: " if section else ""
        raise ValueError(f"{where}unknown keys {', '.join(map(str, unknown))}")


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{key}: must be true or false")
    return value


def _int(key: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{key}: must be an integer >= {minimum}")
    return value
