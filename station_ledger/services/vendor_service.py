"""
VendorService / VendorSettlementService -- vendors and their payments.

Responsibility:
    - VendorService: the vendor registry (create, get, list, update).
    - VendorSettlementService: the settlement engine bound to vendor
      invoices.  Vendor checks are "uncashed" until mark_cleared() runs.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Shares the batch
    state machine with SettlementService (SettlementEngine).

Invariants enforced:
    - A vendor batch only contains invoices of its own vendor.
    - EFT deducts at commit; a check never touches the balance until
      mark_cleared(), which applies -total (recomputed from lines) and
      stamps cleared_at.
    - net balance = available_funds - total of uncashed checks, computed on
      demand.

Failure modes:
    - VendorNotFoundError, ValidationError (blank name, foreign invoices),
      plus everything SettlementEngine raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from station_ledger.domain.dtos import BatchAmendment, BatchView, NetBalance
from station_ledger.exceptions import ValidationError, VendorNotFoundError
from station_ledger.logging_config import get_logger
from station_ledger.models.batch import (
    PaymentMethod,
    VendorPaymentBatch,
    VendorSettledLineItem,
)
from station_ledger.models.correction import CorrectionEntity
from station_ledger.models.vendor import Vendor, VendorInvoice
from station_ledger.services.base import BaseService, unit_of_work
from station_ledger.services.invoice_service import parse_uuid
from station_ledger.services.sequence_service import SequenceService
from station_ledger.services.settlement_service import SettlementEngine

logger = get_logger("services.vendor")


@dataclass(frozen=True)
class VendorInfo:
    id: UUID
    name: str
    notification_email: str | None
    notes: str

    @classmethod
    def from_model(cls, vendor: Vendor) -> VendorInfo:
        return cls(
            id=vendor.id,
            name=vendor.name,
            notification_email=vendor.notification_email,
            notes=vendor.notes,
        )


def _clean_name(name) -> str:
    cleaned = str(name or "").strip()
    if not cleaned:
        raise ValidationError("Vendor name is required", field="name")
    return cleaned


def _clean_email(email) -> str | None:
    cleaned = str(email or "").strip()
    if cleaned and "@" not in cleaned:
        raise ValidationError(f"Not an email address: {cleaned!r}", field="notification_email")
    return cleaned or None


class VendorService(BaseService[Vendor]):
    """The vendor registry."""

    def _load(self, vendor_id) -> Vendor:
        vendor_id = parse_uuid(vendor_id, "vendor_id")
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None:
            raise VendorNotFoundError(str(vendor_id))
        return vendor

    @unit_of_work("vendor_create")
    def create(self, name, notification_email=None, notes: str = "") -> VendorInfo:
        vendor = Vendor(
            name=_clean_name(name),
            notification_email=_clean_email(notification_email),
            notes=(notes or "").strip(),
            created_at=self._clock.now(),
        )
        self.session.add(vendor)
        self.session.flush()
        logger.info("vendor_created", extra={"vendor_id": str(vendor.id), "vendor_name": vendor.name})
        return VendorInfo.from_model(vendor)

    def get(self, vendor_id) -> VendorInfo:
        return VendorInfo.from_model(self._load(vendor_id))

    @unit_of_work("vendor_update")
    def update(self, vendor_id, name=None, notification_email=None, notes=None) -> VendorInfo:
        """Update the given fields; None leaves a field unchanged."""
        vendor = self._load(vendor_id)
        if name is not None:
            vendor.name = _clean_name(name)
        if notification_email is not None:
            vendor.notification_email = _clean_email(notification_email)
        if notes is not None:
            vendor.notes = notes.strip()
        self.session.flush()
        logger.info("vendor_updated", extra={"vendor_id": str(vendor.id)})
        return VendorInfo.from_model(vendor)

    def list(self) -> list[VendorInfo]:
        rows = self.session.execute(select(Vendor).order_by(Vendor.name)).scalars().all()
        return [VendorInfo.from_model(row) for row in rows]


class VendorSettlementService(SettlementEngine):
    """Settlement of vendor invoices with deferred check clearing."""

    batch_model = VendorPaymentBatch
    line_model = VendorSettledLineItem
    invoice_model = VendorInvoice
    entity_type = CorrectionEntity.VENDOR_PAYMENT_BATCH
    sequence_name = SequenceService.VENDOR_PAYMENT_BATCH
    event_prefix = "vendor_batch"

    def _clears_on_commit(self, method: PaymentMethod) -> bool:
        return method == PaymentMethod.EFT

    def _proposed_metadata(self, batch, amendment: BatchAmendment) -> dict:
        base = BatchAmendment(
            payment_date=amendment.payment_date,
            reference=amendment.reference,
        )
        proposed = super()._proposed_metadata(batch, base)
        if amendment.transfer_description is not None:
            proposed["transfer_description"] = amendment.transfer_description.strip() or None
        return proposed

    @unit_of_work("vendor_batch_commit")
    def commit(
        self,
        vendor_id,
        payment_date,
        reference,
        invoice_ids,
        method=PaymentMethod.EFT,
        transfer_description: str | None = None,
    ) -> BatchView:
        """
        Pay some of one vendor's invoices.

        Raises:
            VendorNotFoundError, ValidationError, InvoiceNotSettleableError
            (including invoices of another vendor), DuplicateBatchError.
        """
        vendor_id = parse_uuid(vendor_id, "vendor_id")
        if self.session.get(Vendor, vendor_id) is None:
            raise VendorNotFoundError(str(vendor_id))
        description = (transfer_description or "").strip() or None
        return self._commit(
            payment_date,
            reference,
            invoice_ids,
            method,
            (VendorInvoice.vendor_id == vendor_id,),
            vendor_id=vendor_id,
            transfer_description=description,
        )

    @unit_of_work("vendor_uncashed_checks")
    def uncashed_checks(self) -> list[BatchView]:
        """Check batches not yet cleared, oldest first."""
        rows = self.session.execute(
            select(VendorPaymentBatch)
            .where(
                VendorPaymentBatch.method == PaymentMethod.CHECK,
                VendorPaymentBatch.cleared_at.is_(None),
            )
            .options(selectinload(VendorPaymentBatch.lines))
            .order_by(VendorPaymentBatch.payment_date.asc(), VendorPaymentBatch.seq.asc())
        ).scalars().all()
        return [self._view(row) for row in rows]

    def net_balance(self) -> NetBalance:
        return self._balance.net_balance()

    def list_for_vendor(self, vendor_id) -> list[BatchView]:
        return self.list(VendorPaymentBatch.vendor_id == parse_uuid(vendor_id, "vendor_id"))

