"""
Module: station_ledger.selectors.report_selector
Responsibility: Read-only report queries: the monthly settlement report and
    the due-date report of pending invoices.
Architecture position: Kernel > Selectors.  Grouping and classification
    are pure functions in domain/reporting.py; this module only loads.
"""

from datetime import date

from sqlalchemy import select

from station_ledger.domain.dates import month_bounds
from station_ledger.domain.dtos import InvoiceView
from station_ledger.domain.reporting import (
    DueDateStatus,
    MonthlyReport,
    due_date_status,
    group_batches_for_month,
)
from station_ledger.models.invoice import Invoice, InvoiceStatus
from station_ledger.models.vendor import VendorInvoice
from station_ledger.selectors.base import BaseSelector
from station_ledger.selectors.batch_selector import BatchSelector


class ReportSelector(BaseSelector):
    def monthly_report(self, month: str, vendor: bool = False) -> MonthlyReport:
        """Batches paid in ``month`` (``YYYY-MM``), grouped for the settlement report."""
        start, end = month_bounds(month)
        batches = BatchSelector(self.session).in_range(start, end, vendor=vendor)
        return group_batches_for_month(batches, month)

    def due_report(self, today: date, vendor: bool = False) -> list[tuple[InvoiceView, DueDateStatus]]:
        """Pending invoices by due date (earliest first) with their due status."""
        model = VendorInvoice if vendor else Invoice
        rows = self.session.execute(
            select(model)
            .where(model.status == InvoiceStatus.PENDING)
            .order_by(model.due_date.asc(), model.number.asc())
        ).scalars().all()
        return [
            (InvoiceView.from_model(row), due_date_status(row.due_date, today))
            for row in rows
        ]
