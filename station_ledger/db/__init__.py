"""Database layer - engine, base classes, money types and immutability guards."""

from station_ledger.db.base import UUID, Base, TimestampedBase, UUIDString
from station_ledger.db.engine import create_tables, get_engine, get_session
from station_ledger.db.types import (
    Money,
    format_money,
    round_money,
    sum_money,
    to_money,
)

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "Money",
    "round_money",
    "to_money",
    "sum_money",
    "format_money",
]
