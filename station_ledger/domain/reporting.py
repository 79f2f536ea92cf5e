"""
Reporting -- pure grouping and classification for settlement reports.

Responsibility:
    - group_batches_for_month(): lay out a month's payment batches as
      payment date -> reference blocks -> invoices, with block subtotals,
      a grand total and warnings for batches without a bank reference.
    - due_date_status(): classify how close a pending invoice is to its
      due date.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Operates on
    BatchView / LineItemView values, never on ORM rows.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from station_ledger.db.types import ZERO, round_money, sum_money
from station_ledger.domain.dtos import BatchView, LineItemView

MISSING_REFERENCE_LABEL = "(No Ref)"


@dataclass(frozen=True)
class ReportBlock:
    reference: str
    lines: tuple[LineItemView, ...]
    subtotal: Decimal


@dataclass(frozen=True)
class ReportDay:
    payment_date: date
    blocks: tuple[ReportBlock, ...]

    @property
    def total(self) -> Decimal:
        return sum_money(block.subtotal for block in self.blocks)


@dataclass(frozen=True)
class MonthlyReport:
    month: str
    month_name: str
    days: tuple[ReportDay, ...]
    grand_total: Decimal
    warnings: tuple[str, ...]


def _numeric_aware_key(value: str):
    """Numbers sort numerically and before text; text sorts case-insensitively."""
    stripped = value.strip()
    try:
        number = Decimal(stripped)
    except ArithmeticError:
        number = None
    if number is not None and number.is_finite():
        return (0, number, "")
    return (1, ZERO, stripped.casefold())


def group_batches_for_month(batches: list[BatchView], month: str) -> MonthlyReport:
    """
    Group a month's batches for the settlement report.

    Batches whose payment_date falls outside ``month`` (``YYYY-MM``) are
    ignored.  Days are ascending; blocks within a day are ordered by
    reference (numerically when the reference is a number); lines within a
    block are ordered by invoice number the same way.
    """
    from station_ledger.domain.dates import month_bounds

    start, end = month_bounds(month)
    in_month = [b for b in batches if start <= b.payment_date < end]

    by_day: dict[date, list[BatchView]] = {}
    for batch in in_month:
        by_day.setdefault(batch.payment_date, []).append(batch)

    warnings: list[str] = []
    days: list[ReportDay] = []
    grand_total = ZERO

    for payment_date in sorted(by_day):
        blocks: list[ReportBlock] = []
        for batch in sorted(by_day[payment_date], key=lambda b: _numeric_aware_key(b.reference)):
            reference = batch.reference.strip()
            if not reference:
                warnings.append(
                    f"Batch {batch.id} has missing bank reference on "
                    f"{payment_date.strftime('%d/%m/%Y')}"
                )
            lines = tuple(sorted(batch.lines, key=lambda line: _numeric_aware_key(line.number)))
            subtotal = sum_money(line.amount for line in lines)
            grand_total = round_money(grand_total + subtotal)
            blocks.append(
                ReportBlock(
                    reference=reference or MISSING_REFERENCE_LABEL,
                    lines=lines,
                    subtotal=subtotal,
                )
            )
        days.append(ReportDay(payment_date=payment_date, blocks=tuple(blocks)))

    return MonthlyReport(
        month=month,
        month_name=start.strftime("%B %Y"),
        days=tuple(days),
        grand_total=grand_total,
        warnings=tuple(warnings),
    )


class DueStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"  # due tomorrow
    DUE = "due"  # due today
    OVERDUE = "overdue"


@dataclass(frozen=True)
class DueDateStatus:
    status: DueStatus
    days_until: int


def due_date_status(due_date: date, today: date) -> DueDateStatus:
    """
    Classify a due date relative to ``today``.

    days_until is the absolute number of days (days overdue for OVERDUE).
    """
    diff = (due_date - today).days
    if diff < 0:
        return DueDateStatus(DueStatus.OVERDUE, -diff)
    if diff == 0:
        return DueDateStatus(DueStatus.DUE, 0)
    if diff == 1:
        return DueDateStatus(DueStatus.WARNING, 1)
    return DueDateStatus(DueStatus.OK, diff)
