# Overview: Service-layer operations for receiving records; batches, purchase invoices and landed cost entries.

"""
Receiving Service

WHY: Rolls never arrive alone. A supplier delivery is grouped into a Batch,
and the commercial side of the delivery is a PurchaseInvoice that carries
the incidental (landed) costs to be spread over its rolls.

RULES:
1. A batch belongs to exactly one active supplier
2. batch_code is unique; when not supplied it is generated as BATCH-YYMM-NNN
   from the codes already stored for that month
3. A batch is immutable once created, except for notes
4. Landed cost entries are append-only; allocation stamps allocated_at
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Batch, CostBasis, CostType, LandedCostEntry, PurchaseInvoice, Supplier
from ..time_utils import normalize_datetime, utcnow, year_month
from ..validation import coerce_money, optional_text, require_reference
from .concurrency import run_with_retry


BATCH_CODE_PREFIX = "BATCH"
BATCH_CODE_TARGETS = ("batches.batch_code",)


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if supplier is None:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


def get_batch(batch_id: int) -> Batch:
    batch = db.session.query(Batch).filter_by(id=batch_id).first()
    if batch is None:
        raise NotFoundError("Batch", batch_id)
    return batch


def get_purchase_invoice(purchase_invoice_id: int) -> PurchaseInvoice:
    invoice = db.session.query(PurchaseInvoice).filter_by(id=purchase_invoice_id).first()
    if invoice is None:
        raise NotFoundError("PurchaseInvoice", purchase_invoice_id)
    return invoice


def get_active_supplier(supplier_id: int) -> Supplier:
    supplier = get_supplier(supplier_id)
    if not supplier.is_active:
        raise ValidationError(f"Supplier {supplier_id} is inactive", field="supplier_id")
    return supplier


def next_batch_code(at: datetime | None = None) -> str:
    """
    BATCH-YYMM-NNN, one past the highest NNN stored for the month.

    Read from existing rows at call time; a concurrent insert of the same
    code fails the unique constraint and the caller's unit is retried.
    """
    prefix = f"{BATCH_CODE_PREFIX}-{year_month(at)}-"
    codes = db.session.query(Batch.batch_code).filter(Batch.batch_code.like(f"{prefix}%")).all()
    highest = 0
    for (code,) in codes:
        tail = code[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{prefix}{highest + 1:03d}"


def create_batch(
    supplier_id: int,
    *,
    batch_code: str | None = None,
    purchase_invoice_id: int | None = None,
    received_at: datetime | str | None = None,
    notes: str | None = None,
) -> Batch:
    """
    Create a supplier delivery batch.

    Args:
        supplier_id: Supplier that delivered the batch (must be active)
        batch_code: Explicit code; generated when omitted
        purchase_invoice_id: Receiving event the batch arrived under
        received_at: Business time of the delivery (default now)
        notes: Free text

    Returns:
        Created Batch

    Raises:
        NotFoundError: supplier or purchase invoice missing
        ValidationError: inactive supplier, duplicate explicit code, bad date
    """
    try:
        received_dt = normalize_datetime(received_at) or utcnow()
    except ValueError:
        raise ValidationError("Invalid received_at format", field="received_at")
    explicit_code = optional_text(batch_code, "batch_code", max_length=64)
    notes = optional_text(notes, "notes", max_length=4000)

    def _op():
        get_active_supplier(supplier_id)
        if purchase_invoice_id is not None:
            get_purchase_invoice(purchase_invoice_id)

        if explicit_code is not None:
            if db.session.query(Batch).filter_by(batch_code=explicit_code).first():
                raise ValidationError(f"Batch code {explicit_code} already exists", field="batch_code")
            code = explicit_code
        else:
            code = next_batch_code(received_dt)

        batch = Batch(
            batch_code=code,
            supplier_id=supplier_id,
            purchase_invoice_id=purchase_invoice_id,
            received_at=received_dt,
            notes=notes,
        )
        db.session.add(batch)
        db.session.commit()
        return batch

    batch = run_with_retry(_op, retry_on_unique=BATCH_CODE_TARGETS if explicit_code is None else ())
    current_app.logger.info("Created batch %s for supplier %s", batch.batch_code, supplier_id)
    return batch


def update_batch_notes(batch_id: int, notes: str | None) -> Batch:
    """Notes are the only mutable batch field."""
    notes = optional_text(notes, "notes", max_length=4000)

    def _op():
        batch = get_batch(batch_id)
        batch.notes = notes
        db.session.commit()
        return batch

    return run_with_retry(_op)


def create_purchase_invoice(
    supplier_id: int,
    invoice_number: str,
    *,
    supplier_invoice_number: str | None = None,
    purchase_order_ref: str | None = None,
) -> PurchaseInvoice:
    invoice_number = require_reference(invoice_number, "invoice_number")
    supplier_invoice_number = optional_text(supplier_invoice_number, "supplier_invoice_number", max_length=64)
    purchase_order_ref = optional_text(purchase_order_ref, "purchase_order_ref", max_length=64)

    def _op():
        get_active_supplier(supplier_id)
        if db.session.query(PurchaseInvoice).filter_by(invoice_number=invoice_number).first():
            raise ValidationError(f"Invoice {invoice_number} already exists", field="invoice_number")
        invoice = PurchaseInvoice(
            invoice_number=invoice_number,
            supplier_id=supplier_id,
            supplier_invoice_number=supplier_invoice_number,
            purchase_order_ref=purchase_order_ref,
        )
        db.session.add(invoice)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Created purchase invoice %s", invoice.invoice_number)
    return invoice


def parse_cost_type(value) -> CostType:
    if isinstance(value, CostType):
        return value
    for member in CostType:
        if str(value).strip().lower() == member.value.lower():
            return member
    options = ", ".join(m.value for m in CostType)
    raise ValidationError(f"Invalid cost_type. Must be one of: {options}", field="cost_type")


def parse_cost_basis(value) -> CostBasis:
    if isinstance(value, CostBasis):
        return value
    try:
        return CostBasis(str(value).strip().upper())
    except ValueError:
        options = ", ".join(m.value for m in CostBasis)
        raise ValidationError(f"Invalid basis. Must be one of: {options}", field="basis")


def add_landed_cost_entry(
    purchase_invoice_id: int,
    *,
    cost_type,
    basis,
    amount,
    description: str | None = None,
) -> LandedCostEntry:
    """Record an unallocated landed cost against a purchase invoice."""
    cost_type = parse_cost_type(cost_type)
    basis = parse_cost_basis(basis)
    amount = coerce_money(amount, "amount")
    description = optional_text(description, "description")

    def _op():
        get_purchase_invoice(purchase_invoice_id)
        entry = LandedCostEntry(
            purchase_invoice_id=purchase_invoice_id,
            cost_type=cost_type,
            basis=basis,
            amount=amount,
            description=description,
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    return run_with_retry(_op)
