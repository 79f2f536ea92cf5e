"""
Configuration schema -- frozen settings produced by the loader.

Every section has defaults matching defaults.yaml, so a partial file only
needs the keys it changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_KINDS = ("Fuel", "LPG", "Lubricants", "Rent")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///station_ledger.db"
    echo: bool = False


@dataclass(frozen=True)
class InvoiceSettings:
    due_date_offset_days: int = 5
    kinds: tuple[str, ...] = DEFAULT_KINDS


@dataclass(frozen=True)
class SimulationSettings:
    ttl_hours: int = 24
    list_limit: int = 50


@dataclass(frozen=True)
class SettlementSettings:
    fuel_defers_check_clearing: bool = False
    default_changed_by: str = "admin"


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class LedgerSettings:
    """The whole configuration, as returned by get_active_config()."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    invoices: InvoiceSettings = field(default_factory=InvoiceSettings)
    simulations: SimulationSettings = field(default_factory=SimulationSettings)
    settlement: SettlementSettings = field(default_factory=SettlementSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source: str | None = None
