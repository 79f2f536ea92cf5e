"""
LedgerOrchestrator -- wires every ledger service to one session.

Responsibility:
    Builds the services and selectors around a single Session, Clock,
    LedgerPolicy and UnitOfWork so that callers (an HTTP layer, scripts,
    tests) use one object for the whole ledger.

Architecture position:
    Kernel > Services -- the entry point of the kernel.

Invariants enforced:
    - All services share one UnitOfWork: with auto_commit=True every public
      mutating call is committed on success and rolled back on failure as a
      whole, including the nested balance, correction and simulation work.

Usage:
    with session_scope() as session:
        ledger = LedgerOrchestrator(session, policy)
        batch = ledger.settlement.commit("2026-01-05", "REF100", ids)
"""

from sqlalchemy.orm import Session

from station_ledger.domain.clock import Clock, SystemClock
from station_ledger.domain.dtos import LedgerPolicy, RecentPayment
from station_ledger.domain.reporting import MonthlyReport
from station_ledger.logging_config import get_logger
from station_ledger.selectors.batch_selector import BatchSelector
from station_ledger.selectors.report_selector import ReportSelector
from station_ledger.services.balance_service import BalanceService
from station_ledger.services.base import UnitOfWork
from station_ledger.services.correction_service import CorrectionService
from station_ledger.services.invoice_service import InvoiceService, VendorInvoiceService
from station_ledger.services.sequence_service import SequenceService
from station_ledger.services.settlement_service import SettlementService
from station_ledger.services.simulation_service import SimulationService
from station_ledger.services.vendor_service import VendorService, VendorSettlementService

logger = get_logger("services.orchestrator")


class LedgerOrchestrator:
    """
    The ledger's public surface.

    Attributes:
        invoices, vendor_invoices: invoice stores.
        vendors: vendor registry.
        balance: balance ledger.
        simulations: payment simulations.
        settlement, vendor_settlement: settlement engines.
        corrections: correction log.
        batches, reports: read-only selectors.
    """

    def __init__(
        self,
        session: Session,
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._policy = policy or LedgerPolicy()
        self._clock = clock or SystemClock()
        self._uow = UnitOfWork(session, auto_commit=auto_commit)

        self.sequences = SequenceService(session)
        self.corrections = CorrectionService(
            session, self._clock, self._uow, self._policy.default_changed_by
        )
        self.balance = BalanceService(session, self._clock, self._uow)
        self.invoices = InvoiceService(
            session, self._policy, self._clock, self.corrections, self._uow
        )
        self.vendor_invoices = VendorInvoiceService(
            session, self._policy, self._clock, self.corrections, self._uow
        )
        self.vendors = VendorService(session, self._clock, self._uow)
        self.simulations = SimulationService(
            session, self._policy, self._clock, self.sequences, self._uow
        )
        self.settlement = SettlementService(
            session,
            self._policy,
            self._clock,
            balance=self.balance,
            corrections=self.corrections,
            sequences=self.sequences,
            simulations=self.simulations,
            uow=self._uow,
        )
        self.vendor_settlement = VendorSettlementService(
            session,
            self._policy,
            self._clock,
            balance=self.balance,
            corrections=self.corrections,
            sequences=self.sequences,
            uow=self._uow,
        )
        self.batches = BatchSelector(session)
        self.reports = ReportSelector(session)

        logger.debug(
            "ledger_orchestrator_initialized",
            extra={"auto_commit": auto_commit},
        )

    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    @property
    def auto_commit(self) -> bool:
        return self._uow.auto_commit

    def purge_stale_simulations(self) -> int:
        """Delete simulations older than the configured TTL."""
        return self.simulations.purge_stale()

    def monthly_report(self, month: str, vendor: bool = False) -> MonthlyReport:
        return self.reports.monthly_report(month, vendor=vendor)

    def recent_payment(self) -> RecentPayment | None:
        return self.batches.recent_payment()

    def due_report(self, vendor: bool = False):
        """Pending invoices with their due status as of the clock's today."""
        return self.reports.due_report(self._clock.today(), vendor=vendor)
