"""
Tests for VendorService and VendorSettlementService.

Covers:
- Vendor registry create / update / list
- The $500.00 check against $2000.00 example
- Uncashed checks and net balance
- Vendor scoping of commits, clearing errors, reverts and amendments
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from station_ledger.domain.dtos import BatchAmendment
from station_ledger.exceptions import (
    CheckAlreadyClearedError,
    InvoiceNotSettleableError,
    NotACheckError,
    ValidationError,
    VendorNotFoundError,
)


class TestVendorRegistry:
    def test_create_and_get(self, ledger):
        vendor = ledger.vendors.create("  Harbour Signs ", "billing@harbour.example", "net 30")
        assert vendor.name == "Harbour Signs"
        assert ledger.vendors.get(vendor.id) == vendor

    def test_blank_name(self, ledger):
        with pytest.raises(ValidationError):
            ledger.vendors.create("   ")

    def test_bad_email(self, ledger):
        with pytest.raises(ValidationError):
            ledger.vendors.create("Harbour Signs", "not-an-email")

    def test_update(self, ledger, vendor):
        updated = ledger.vendors.update(vendor.id, notes="prefers EFT")
        assert updated.notes == "prefers EFT"
        assert updated.name == vendor.name

    def test_unknown_vendor(self, ledger):
        with pytest.raises(VendorNotFoundError):
            ledger.vendors.get(uuid4())

    def test_list_by_name(self, ledger, vendor):
        ledger.vendors.create("Atlas Cleaning")
        assert [v.name for v in ledger.vendors.list()] == ["Atlas Cleaning", "Coastal Lubricants"]


class TestCheckClearing:
    def test_check_example(self, ledger, vendor, make_vendor_invoice, fund, clock):
        fund("2000.00")
        invoice = make_vendor_invoice(amount="500.00")

        batch = ledger.vendor_settlement.commit(
            vendor.id, "2026-01-05", "CHK-881", [invoice.id], method="check"
        )
        assert not batch.is_cleared
        assert batch.balance_before == Decimal("2000.00")
        assert batch.balance_after == Decimal("1500.00")
        assert ledger.balance.get().available_funds == Decimal("2000.00")
        assert ledger.vendor_invoices.get(invoice.id).status == "paid"

        clock.advance_hours(72)
        cleared = ledger.vendor_settlement.mark_cleared(batch.id)

        assert cleared.cleared_at == clock.now()
        assert ledger.balance.get().available_funds == Decimal("1500.00")

    def test_clearing_twice(self, ledger, vendor, make_vendor_invoice, fund):
        fund("2000.00")
        invoice = make_vendor_invoice(amount="500.00")
        batch = ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "CHK-1", [invoice.id], method="check")
        ledger.vendor_settlement.mark_cleared(batch.id)

        with pytest.raises(CheckAlreadyClearedError):
            ledger.vendor_settlement.mark_cleared(batch.id)
        assert ledger.balance.get().available_funds == Decimal("1500.00")

    def test_eft_clears_at_commit(self, ledger, vendor, make_vendor_invoice, fund):
        fund("2000.00")
        invoice = make_vendor_invoice(amount="500.00")
        batch = ledger.vendor_settlement.commit(
            vendor.id, "2026-01-05", "EFT-1", [invoice.id], transfer_description="January signage"
        )
        assert batch.is_cleared
        assert batch.transfer_description == "January signage"
        assert batch.vendor_id == vendor.id
        assert ledger.balance.get().available_funds == Decimal("1500.00")
        with pytest.raises(NotACheckError):
            ledger.vendor_settlement.mark_cleared(batch.id)

    def test_uncashed_checks_and_net_balance(self, ledger, vendor, make_vendor_invoice, fund):
        fund("2000.00")
        a = make_vendor_invoice(amount="500.00")
        b = make_vendor_invoice(amount="300.00")
        first = ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "CHK-1", [a.id], method="check")
        second = ledger.vendor_settlement.commit(vendor.id, "2026-01-06", "CHK-2", [b.id], method="check")

        assert [c.id for c in ledger.vendor_settlement.uncashed_checks()] == [first.id, second.id]
        assert ledger.vendor_settlement.net_balance().net_balance == Decimal("1200.00")

        ledger.vendor_settlement.mark_cleared(first.id)

        assert [c.id for c in ledger.vendor_settlement.uncashed_checks()] == [second.id]
        net = ledger.vendor_settlement.net_balance()
        assert net.available_funds == Decimal("1500.00")
        assert net.net_balance == Decimal("1200.00")


class TestVendorScope:
    def test_unknown_vendor(self, ledger, make_vendor_invoice):
        invoice = make_vendor_invoice()
        with pytest.raises(VendorNotFoundError):
            ledger.vendor_settlement.commit(uuid4(), "2026-01-05", "EFT-1", [invoice.id])

    def test_other_vendors_invoice_rejected(self, ledger, vendor, make_vendor_invoice):
        other = ledger.vendors.create("Harbour Signs")
        foreign = make_vendor_invoice(vendor_id=other.id)
        own = make_vendor_invoice()

        with pytest.raises(InvoiceNotSettleableError) as exc_info:
            ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "EFT-1", [own.id, foreign.id])
        assert exc_info.value.invoice_ids == [str(foreign.id)]
        assert ledger.vendor_invoices.get(own.id).status == "pending"

    def test_list_for_vendor(self, ledger, vendor, make_vendor_invoice, fund):
        fund("1000.00")
        other = ledger.vendors.create("Harbour Signs")
        mine = make_vendor_invoice()
        theirs = make_vendor_invoice(vendor_id=other.id)
        ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "EFT-1", [mine.id])
        ledger.vendor_settlement.commit(other.id, "2026-01-05", "EFT-2", [theirs.id])

        assert [b.reference for b in ledger.vendor_settlement.list_for_vendor(other.id)] == ["EFT-2"]


class TestVendorRevertAndAmend:
    def test_revert_uncleared_check(self, ledger, vendor, make_vendor_invoice, fund):
        fund("2000.00")
        invoice = make_vendor_invoice(amount="500.00")
        ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "CHK-1", [invoice.id], method="check")

        result = ledger.vendor_settlement.revert("CHK-1")

        assert result.restored_amount == Decimal("0.00")
        assert ledger.balance.get().available_funds == Decimal("2000.00")
        assert ledger.vendor_invoices.get(invoice.id).status == "pending"
        assert ledger.vendor_settlement.uncashed_checks() == []

    def test_revert_cleared_check(self, ledger, vendor, make_vendor_invoice, fund):
        fund("2000.00")
        invoice = make_vendor_invoice(amount="500.00")
        batch = ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "CHK-1", [invoice.id], method="check")
        ledger.vendor_settlement.mark_cleared(batch.id)

        result = ledger.vendor_settlement.revert_batch(batch.id)

        assert result.restored_amount == Decimal("500.00")
        assert ledger.balance.get().available_funds == Decimal("2000.00")

    def test_fuel_and_vendor_references_are_separate(self, ledger, vendor, make_vendor_invoice, make_invoice, fund):
        fund("2000.00")
        ledger.settlement.commit("2026-01-05", "SHARED", [make_invoice().id])
        ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "SHARED", [make_vendor_invoice().id])

        ledger.vendor_settlement.revert("SHARED")
        assert len(ledger.batches.for_reference("SHARED")) == 1
        assert ledger.batches.for_reference("SHARED", vendor=True) == []

    def test_amend_transfer_description(self, ledger, vendor, make_vendor_invoice):
        invoice = make_vendor_invoice()
        batch = ledger.vendor_settlement.commit(vendor.id, "2026-01-05", "EFT-1", [invoice.id])

        amended = ledger.vendor_settlement.amend(
            batch.id, BatchAmendment(transfer_description="Signage Jan"), reason="bank narrative"
        )

        assert amended.transfer_description == "Signage Jan"
        (correction,) = ledger.corrections.history("vendor_payment_batch", batch.id)
        assert correction.field == "transfer_description"
        assert correction.old_value is None
        assert correction.changed_by == "admin"
