"""
Configuration loader -- YAML file to LedgerSettings.

Responsibility:
    Reads a YAML file with ``yaml.safe_load``, validates each section and
    builds the frozen LedgerSettings.  Environment overrides are applied
    here and nowhere else.

Failure modes:
    * Missing file      -> ``FileNotFoundError`` propagates.
    * Malformed YAML    -> ``yaml.YAMLError`` propagates.
    * Invalid values    -> ``ValueError`` naming the offending key.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DatabaseSettings,
    InvoiceSettings,
    LedgerSettings,
    LoggingSettings,
    SettlementSettings,
    SimulationSettings,
)

DATABASE_URL_ENV = "STATION_LEDGER_DATABASE_URL"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' must be a mapping")
    return section


def _int(section: dict, key: str, default: int, name: str, minimum: int = 0) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{name}.{key}' must be an integer")
    if value < minimum:
        raise ValueError(f"'{name}.{key}' must be >= {minimum}")
    return value


def _bool(section: dict, key: str, default: bool, name: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{name}.{key}' must be true or false")
    return value


def _str(section: dict, key: str, default: str, name: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{name}.{key}' must be a non-empty string")
    return value.strip()


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    section = _section(data, "database")
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=_str(section, "url", defaults.url, "database"),
        echo=_bool(section, "echo", defaults.echo, "database"),
    )


def parse_invoices(data: dict[str, Any]) -> InvoiceSettings:
    section = _section(data, "invoices")
    defaults = InvoiceSettings()
    kinds = section.get("kinds", list(defaults.kinds))
    if not isinstance(kinds, list) or not kinds:
        raise ValueError("'invoices.kinds' must be a non-empty list")
    cleaned = tuple(str(k).strip() for k in kinds)
    if any(not k for k in cleaned):
        raise ValueError("'invoices.kinds' entries must be non-empty")
    if len({k.casefold() for k in cleaned}) != len(cleaned):
        raise ValueError("'invoices.kinds' entries must be unique")
    return InvoiceSettings(
        due_date_offset_days=_int(
            section, "due_date_offset_days", defaults.due_date_offset_days, "invoices"
        ),
        kinds=cleaned,
    )


def parse_simulations(data: dict[str, Any]) -> SimulationSettings:
    section = _section(data, "simulations")
    defaults = SimulationSettings()
    return SimulationSettings(
        ttl_hours=_int(section, "ttl_hours", defaults.ttl_hours, "simulations", minimum=1),
        list_limit=_int(section, "list_limit", defaults.list_limit, "simulations", minimum=1),
    )


def parse_settlement(data: dict[str, Any]) -> SettlementSettings:
    section = _section(data, "settlement")
    defaults = SettlementSettings()
    return SettlementSettings(
        fuel_defers_check_clearing=_bool(
            section,
            "fuel_defers_check_clearing",
            defaults.fuel_defers_check_clearing,
            "settlement",
        ),
        default_changed_by=_str(
            section, "default_changed_by", defaults.default_changed_by, "settlement"
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    section = _section(data, "logging")
    level = _str(section, "level", LoggingSettings().level, "logging").upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"'logging.level' must be one of {', '.join(_LOG_LEVELS)}")
    return LoggingSettings(level=level)


def parse_settings(data: dict[str, Any], source: str | None = None) -> LedgerSettings:
    return LedgerSettings(
        database=parse_database(data),
        invoices=parse_invoices(data),
        simulations=parse_simulations(data),
        settlement=parse_settlement(data),
        logging=parse_logging(data),
        source=source,
    )


def apply_env_overrides(settings: LedgerSettings, environ=None) -> LedgerSettings:
    """Apply STATION_LEDGER_DATABASE_URL, the only supported override."""
    environ = os.environ if environ is None else environ
    url = (environ.get(DATABASE_URL_ENV) or "").strip()
    if not url:
        return settings
    logging.getLogger("station_ledger.config").debug(
        "database_url_overridden", extra={"env_var": DATABASE_URL_ENV}
    )
    return replace(settings, database=replace(settings.database, url=url))


def load_settings(path: Path, environ=None) -> LedgerSettings:
    settings = parse_settings(load_yaml_file(path), source=str(path))
    return apply_env_overrides(settings, environ)
