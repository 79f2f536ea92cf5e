"""Ledger services.  LedgerOrchestrator is the entry point."""

from station_ledger.services.balance_service import BalanceService
from station_ledger.services.base import BaseService, UnitOfWork
from station_ledger.services.correction_service import CorrectionService
from station_ledger.services.invoice_service import InvoiceService, VendorInvoiceService
from station_ledger.services.ledger_orchestrator import LedgerOrchestrator
from station_ledger.services.sequence_service import SequenceService
from station_ledger.services.settlement_service import SettlementEngine, SettlementService
from station_ledger.services.simulation_service import SimulationService
from station_ledger.services.vendor_service import VendorInfo, VendorService, VendorSettlementService

__all__ = [
    "BalanceService",
    "BaseService",
    "CorrectionService",
    "InvoiceService",
    "LedgerOrchestrator",
    "SequenceService",
    "SettlementEngine",
    "SettlementService",
    "SimulationService",
    "UnitOfWork",
    "VendorInfo",
    "VendorInvoiceService",
    "VendorService",
    "VendorSettlementService",
]
