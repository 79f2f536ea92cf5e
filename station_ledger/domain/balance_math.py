"""
Balance math -- pure functions over balance values.

Responsibility:
    Compute the derived balance fields so that every read path applies the
    same rule.  Persisting the result is the caller's cache fill.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - balance_after = available_funds - planned, rounded once.
    - planned counts only invoices that are still pending.
"""

from collections.abc import Iterable
from decimal import Decimal

from station_ledger.db.types import round_money, sum_money
from station_ledger.domain.dtos import BalanceSnapshot


def compute_balance(row, planned: Decimal | None = None) -> BalanceSnapshot:
    """
    Derive a BalanceSnapshot from a balance row (or any object with
    current_balance / available_funds / planned attributes).

    Args:
        row: Balance row or equivalent.
        planned: Freshly computed planned total.  None keeps row.planned.
    """
    planned_value = round_money(row.planned if planned is None else planned)
    available = round_money(row.available_funds)
    return BalanceSnapshot(
        current_balance=round_money(row.current_balance),
        available_funds=available,
        planned=planned_value,
        balance_after=round_money(available - planned_value),
    )


def planned_total(invoices: Iterable) -> Decimal:
    """Sum of the still-pending invoices of a simulation."""
    return sum_money(inv.amount for inv in invoices if inv.is_pending)


def balance_after_payment(balance_before: Decimal, total: Decimal) -> Decimal:
    return round_money(balance_before - total)


def uncashed_net(available_funds: Decimal, uncashed_totals: Iterable[Decimal]) -> tuple[Decimal, Decimal]:
    """Return (uncashed_total, net_balance)."""
    uncashed = sum_money(uncashed_totals)
    return uncashed, round_money(available_funds - uncashed)
