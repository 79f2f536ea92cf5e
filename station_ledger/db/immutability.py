"""
ORM-level immutability enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When immutable                  | What is blocked
------------------------|---------------------------------|---------------------------
Invoice / VendorInvoice | While status stays PAID         | Financial fields, DELETE
SettledLineItem (both)  | ALWAYS (from creation)          | UPDATE (DELETE allowed)
Correction              | ALWAYS (from creation)          | UPDATE, DELETE

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The status transitions themselves (PENDING -> PAID on settlement, PAID ->
PENDING on revert) are allowed: a flush that changes status is the
transition, not a modification of a paid record.  Reverting a batch deletes
its line items, which is why line deletion stays open.

===============================================================================
USAGE
===============================================================================

    from station_ledger.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that must write forbidden rows call unregister_immutability_listeners()
and re-register afterwards.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from station_ledger.exceptions import ImmutabilityViolationError
from station_ledger.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _stays_paid(target) -> bool:
    """True when the row was paid before this flush and is not changing status."""
    from station_ledger.models.invoice import InvoiceStatus

    status_history = get_history(target, "status")
    if status_history.added or status_history.deleted:
        return False
    return target.status == InvoiceStatus.PAID


def _check_paid_invoice_immutability(mapper, connection, target):
    """
    Prevent changes to the financial fields of a paid invoice.

    Notes stay editable at this layer; the invoice services reject edits of
    paid invoices before they get here.
    """
    from station_ledger.models.invoice import INVOICE_FINANCIAL_FIELDS

    if not _stays_paid(target):
        return

    insp = inspect(target)
    for key in INVOICE_FINANCIAL_FIELDS + ("vat",):
        if key not in insp.attrs:
            continue
        if insp.attrs[key].history.has_changes():
            _blocked(
                type(target).__name__,
                target.id,
                "UPDATE",
                f"Cannot modify field '{key}' on a paid invoice",
                field=key,
            )


def _check_paid_invoice_delete(mapper, connection, target):
    from station_ledger.models.invoice import InvoiceStatus

    if target.status == InvoiceStatus.PAID:
        _blocked(
            type(target).__name__,
            target.id,
            "DELETE",
            "Paid invoices cannot be deleted; revert the payment batch instead",
        )


def _check_line_item_immutability(mapper, connection, target):
    """Settled line items are snapshots and never change after insert."""
    insp = inspect(target)
    for column_attr in insp.mapper.column_attrs:
        if insp.attrs[column_attr.key].history.has_changes():
            _blocked(
                type(target).__name__,
                target.id,
                "UPDATE",
                f"Cannot modify field '{column_attr.key}' on a settled line item",
                field=column_attr.key,
            )


def _check_correction_immutability(mapper, connection, target):
    _blocked(
        "Correction",
        target.id,
        "UPDATE",
        "Corrections are append-only and cannot be modified",
    )


def _check_correction_delete(mapper, connection, target):
    _blocked(
        "Correction",
        target.id,
        "DELETE",
        "Corrections are append-only and cannot be deleted",
    )


def _listeners():
    from station_ledger.models import (
        Correction,
        Invoice,
        SettledLineItem,
        VendorInvoice,
        VendorSettledLineItem,
    )

    return [
        (Invoice, "before_update", _check_paid_invoice_immutability),
        (Invoice, "before_delete", _check_paid_invoice_delete),
        (VendorInvoice, "before_update", _check_paid_invoice_immutability),
        (VendorInvoice, "before_delete", _check_paid_invoice_delete),
        (SettledLineItem, "before_update", _check_line_item_immutability),
        (VendorSettledLineItem, "before_update", _check_line_item_immutability),
        (Correction, "before_update", _check_correction_immutability),
        (Correction, "before_delete", _check_correction_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already registered is skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately write forbidden rows.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
