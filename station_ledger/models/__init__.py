"""ORM models for the station ledger."""

from station_ledger.models.balance import BALANCE_KEY, Balance
from station_ledger.models.batch import (
    PaymentBatch,
    PaymentMethod,
    SettledLineItem,
    VendorPaymentBatch,
    VendorSettledLineItem,
)
from station_ledger.models.correction import Correction, CorrectionEntity
from station_ledger.models.invoice import (
    INVOICE_FINANCIAL_FIELDS,
    Invoice,
    InvoiceStatus,
)
from station_ledger.models.sequence import SequenceCounter
from station_ledger.models.simulation import PaymentSimulation
from station_ledger.models.vendor import VENDOR_INVOICE_KIND, Vendor, VendorInvoice

__all__ = [
    "BALANCE_KEY",
    "Balance",
    "Correction",
    "CorrectionEntity",
    "INVOICE_FINANCIAL_FIELDS",
    "Invoice",
    "InvoiceStatus",
    "PaymentBatch",
    "PaymentMethod",
    "PaymentSimulation",
    "SequenceCounter",
    "SettledLineItem",
    "VENDOR_INVOICE_KIND",
    "Vendor",
    "VendorInvoice",
    "VendorPaymentBatch",
    "VendorSettledLineItem",
]
