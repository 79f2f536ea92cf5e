"""
Config -> Kernel bridges.

Functions that turn LedgerSettings into kernel inputs.  They live here
because the kernel must never import ledger_config.

Usage:
    from ledger_config import get_active_config
    from ledger_config.bridges import build_policy, init_from_settings

    settings = get_active_config()
    init_from_settings(settings)
    ledger = LedgerOrchestrator(session, build_policy(settings))
"""

from __future__ import annotations

import logging

from ledger_config.schema import LedgerSettings
from station_ledger.db.engine import init_engine_from_url
from station_ledger.db.immutability import register_immutability_listeners
from station_ledger.domain.dtos import LedgerPolicy
from station_ledger.logging_config import configure_logging


def build_policy(settings: LedgerSettings) -> LedgerPolicy:
    return LedgerPolicy(
        due_date_offset_days=settings.invoices.due_date_offset_days,
        invoice_kinds=settings.invoices.kinds,
        simulation_ttl_hours=settings.simulations.ttl_hours,
        simulation_list_limit=settings.simulations.list_limit,
        fuel_defers_check_clearing=settings.settlement.fuel_defers_check_clearing,
        default_changed_by=settings.settlement.default_changed_by,
    )


def init_from_settings(settings: LedgerSettings, create_schema: bool = False):
    """
    Configure logging, the engine and the ORM guards from settings.

    Returns:
        The initialized SQLAlchemy Engine.
    """
    configure_logging(level=getattr(logging, settings.logging.level))
    engine = init_engine_from_url(settings.database.url, echo=settings.database.echo)
    register_immutability_listeners()
    if create_schema:
        from station_ledger.db.engine import create_tables

        create_tables()
    return engine
