"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way components obtain settings.
    The kernel (station_ledger) never imports this package; bridges.py
    converts settings into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` for a missing config file.
    - ``yaml.YAMLError`` for malformed YAML.
    - ``ValueError`` for invalid values.

Audit relevance:
    Every successful call logs a ``ledger_config_loaded`` trace with the
    source file and the settlement settings in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import load_settings
from ledger_config.schema import LedgerSettings

_logger = logging.getLogger("station_ledger.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None, environ=None) -> LedgerSettings:
    """
    Load settings from ``config_path`` (default: the packaged defaults.yaml).

    Args:
        config_path: YAML file to load.
        environ: Mapping consulted for overrides; defaults to os.environ.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    settings = load_settings(path, environ)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "source": settings.source,
            "due_date_offset_days": settings.invoices.due_date_offset_days,
            "simulation_ttl_hours": settings.simulations.ttl_hours,
            "fuel_defers_check_clearing": settings.settlement.fuel_defers_check_clearing,
        },
    )
    return settings


__all__ = ["DEFAULT_CONFIG_PATH", "LedgerSettings", "get_active_config"]
