"""Read-only query selectors."""

from station_ledger.selectors.batch_selector import BatchSelector
from station_ledger.selectors.report_selector import ReportSelector

__all__ = ["BatchSelector", "ReportSelector"]
