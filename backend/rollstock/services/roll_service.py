# Overview: Service-layer operations for rolls; receipt, lookups, listings and scrap.

"""
Roll Service

WHY: The roll is the unit of inventory. Every physical roll gets a row at
receipt and keeps it for its whole life, through allocation, dispatch,
return and scrap.

RECEIPT (create_rolls):
- All items in one call share a supplier and a batch; when no batch is
  given, one is created in the same unit with a generated code
- An item with a sku_id is received Mapped and copies the SKU's
  descriptors; without one it is received Unmapped with whatever
  descriptors the caller supplied
- Roll numbers, barcodes and QR payloads are assigned before commit, so a
  roll never exists without its identity
- The whole call is one atomic unit: one invalid item rejects every item

RULES:
1. width_inches must be one of WIDTH_OPTIONS
2. 0 < current_length <= original_length
3. Costs and declared value are non-negative
4. received_at cannot be in the future
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Batch, Roll, RollStatus, Sku
from ..time_utils import normalize_datetime, utcnow
from ..validation import (
    LENGTH_QUANT,
    RATE_QUANT,
    coerce_length,
    coerce_money,
    coerce_width,
    optional_text,
    quantize,
)
from .concurrency import lock_for_update, run_with_retry
from .identity_service import ROLL_NUMBER_TARGETS, assign_identity, next_roll_numbers
from .ledger_service import append_roll_event
from .lifecycle_service import LifecycleEvent, apply_transition
from .receiving_service import (
    BATCH_CODE_TARGETS,
    get_active_supplier,
    get_batch,
    get_purchase_invoice,
    next_batch_code,
)


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200

# Tolerance for clocks slightly ahead of the server
FUTURE_SKEW = timedelta(minutes=5)


def _prepare_item(index: int, item: dict, now) -> dict:
    """Validate one receipt line. Raises ValidationError naming the item."""
    if not isinstance(item, dict):
        raise ValidationError(f"Item {index}: must be an object", field="items")
    try:
        width = coerce_width(item.get("width_inches"))
        original = coerce_length(item.get("original_length", item.get("length")), "original_length")
        current_raw = item.get("current_length")
        current = original if current_raw is None else coerce_length(current_raw, "current_length")
        if current > original:
            raise ValidationError(
                "current_length cannot exceed original_length", field="current_length"
            )

        base_cost = coerce_money(item.get("base_cost_per_meter"), "base_cost_per_meter",
                                 quant=RATE_QUANT, default=0)
        landed_rate = coerce_money(item.get("landed_cost_per_meter"), "landed_cost_per_meter",
                                   quant=RATE_QUANT, default=0)
        declared = item.get("declared_value")
        declared_value = (
            quantize(base_cost * original, Decimal("0.01"))
            if declared is None
            else coerce_money(declared, "declared_value")
        )

        try:
            received_at = normalize_datetime(item.get("received_at")) or now
        except ValueError:
            raise ValidationError("Invalid received_at format", field="received_at")
        if received_at > now + FUTURE_SKEW:
            raise ValidationError("received_at cannot be in the future", field="received_at")
    except ValidationError as exc:
        raise ValidationError(f"Item {index}: {exc.message}", field=exc.field)

    return {
        "sku_id": item.get("sku_id"),
        "width_inches": width,
        "original_length": original,
        "current_length": current,
        "category_name": optional_text(item.get("category_name"), "category_name", 64),
        "gsm": optional_text(item.get("gsm"), "gsm", 32),
        "quality_name": optional_text(item.get("quality_name"), "quality_name", 64),
        "base_cost_per_meter": base_cost,
        "landed_cost_per_meter": landed_rate,
        "total_landed_cost": quantize(landed_rate * current, Decimal("0.01")),
        "declared_value": declared_value,
        "purchase_order_ref": optional_text(item.get("purchase_order_ref"), "purchase_order_ref", 64),
        "grn_ref": optional_text(item.get("grn_ref"), "grn_ref", 64),
        "received_at": received_at,
        "notes": optional_text(item.get("notes"), "notes", 4000),
    }


def create_rolls(supplier_id: int, batch_id: int | None = None, items=None, *,
                 purchase_invoice_id: int | None = None, actor_id=None) -> list[Roll]:
    """
    Receive rolls from one supplier delivery.

    Args:
        supplier_id: Supplier the rolls came from (must be active)
        batch_id: Existing batch; a new one is created when omitted
        items: Receipt lines (width_inches, original_length, optional
               current_length, sku_id, descriptors, costs, received_at, refs)
        purchase_invoice_id: Receiving event; defaults to the batch's invoice
        actor_id: Who received the rolls, for the audit trail

    Returns:
        Created rolls, in item order

    Raises:
        ValidationError: empty items, bad width/length/cost, SKU width mismatch,
                         batch belonging to another supplier
        NotFoundError: supplier, batch, SKU or purchase invoice missing
    """
    if not items:
        raise ValidationError("No rolls provided", field="items")

    now = utcnow()
    prepared = [_prepare_item(i, item, now) for i, item in enumerate(items)]

    def _op():
        supplier = get_active_supplier(supplier_id)

        if batch_id is not None:
            batch = get_batch(batch_id)
            if batch.supplier_id != supplier.id:
                raise ValidationError(
                    f"Batch {batch_id} belongs to supplier {batch.supplier_id}, not {supplier.id}",
                    field="batch_id",
                )
        else:
            batch = Batch(
                batch_code=next_batch_code(now),
                supplier_id=supplier.id,
                purchase_invoice_id=purchase_invoice_id,
                received_at=now,
            )
            db.session.add(batch)
            db.session.flush()

        invoice_id = purchase_invoice_id or batch.purchase_invoice_id
        if invoice_id is not None:
            get_purchase_invoice(invoice_id)

        skus = {}
        for line in prepared:
            sku_id = line["sku_id"]
            if sku_id is None or sku_id in skus:
                continue
            sku = db.session.query(Sku).filter_by(id=sku_id).first()
            if sku is None:
                raise NotFoundError("Sku", sku_id)
            skus[sku_id] = sku

        # Roll numbers are scoped by receipt month, so reserve per month
        numbers = {}
        for month_key in sorted({line["received_at"].strftime("%y%m") for line in prepared}):
            month_lines = [l for l in prepared if l["received_at"].strftime("%y%m") == month_key]
            numbers[month_key] = iter(next_roll_numbers(
                supplier.code, batch.batch_code, len(month_lines), at=month_lines[0]["received_at"]
            ))

        created = []
        for line in prepared:
            fields = dict(line)
            sku = skus.get(fields.pop("sku_id"))
            if sku is not None:
                if sku.width_inches != fields["width_inches"]:
                    raise ValidationError(
                        f"SKU {sku.id} is {sku.width_inches} inches wide, roll is {fields['width_inches']}",
                        field="sku_id",
                    )
                fields["category_name"] = sku.category_name
                fields["gsm"] = sku.gsm
                fields["quality_name"] = sku.quality_name

            roll = Roll(
                roll_number=next(numbers[fields["received_at"].strftime("%y%m")]),
                sku_id=sku.id if sku is not None else None,
                batch_id=batch.id,
                supplier_id=supplier.id,
                purchase_invoice_id=invoice_id,
                status=RollStatus.MAPPED if sku is not None else RollStatus.UNMAPPED,
                mapped_at=fields["received_at"] if sku is not None else None,
                **fields,
            )
            db.session.add(roll)
            db.session.flush()
            assign_identity(roll, supplier_code=supplier.code, batch_code=batch.batch_code)
            append_roll_event(
                event_type="roll.received",
                roll=roll,
                to_status=roll.status,
                reference=batch.batch_code,
                actor_id=actor_id,
                occurred_at=roll.received_at,
                payload={"original_length": str(roll.original_length)},
            )
            created.append(roll)

        db.session.commit()
        return created

    rolls = run_with_retry(_op, retry_on_unique=ROLL_NUMBER_TARGETS + BATCH_CODE_TARGETS)
    current_app.logger.info(
        "Received %d roll(s) from supplier %s into batch %s",
        len(rolls), supplier_id, rolls[0].batch_id,
    )
    return rolls


def get_roll(roll_id: int) -> Roll:
    roll = db.session.query(Roll).filter_by(id=roll_id).first()
    if roll is None:
        raise NotFoundError("Roll", roll_id)
    return roll


def get_roll_by_barcode(barcode: str) -> Roll:
    value = (barcode or "").strip().upper()
    roll = db.session.query(Roll).filter_by(barcode=value).first()
    if roll is None:
        raise NotFoundError("Roll", barcode)
    return roll


def _parse_status(value) -> RollStatus:
    if isinstance(value, RollStatus):
        return value
    for member in RollStatus:
        if str(value).strip().lower() == member.value.lower():
            return member
    options = ", ".join(m.value for m in RollStatus)
    raise ValidationError(f"Invalid status. Must be one of: {options}", field="status")


def list_rolls(filters: dict | None = None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    """
    Filtered, paginated roll listing, newest receipt first.

    Filters: status, sku_id, supplier_id, batch_id, barcode (case-insensitive
    substring) and unmapped_days (Unmapped rolls received at least that many
    days ago; overrides status).
    """
    filters = filters or {}
    query = db.session.query(Roll)

    if filters.get("status"):
        query = query.filter(Roll.status == _parse_status(filters["status"]))
    if filters.get("sku_id") is not None:
        query = query.filter(Roll.sku_id == filters["sku_id"])
    if filters.get("supplier_id") is not None:
        query = query.filter(Roll.supplier_id == filters["supplier_id"])
    if filters.get("batch_id") is not None:
        query = query.filter(Roll.batch_id == filters["batch_id"])
    if filters.get("barcode"):
        query = query.filter(Roll.barcode.ilike(f"%{filters['barcode'].strip()}%"))
    if filters.get("unmapped_days") is not None:
        days = int(filters["unmapped_days"])
        if days < 0:
            raise ValidationError("unmapped_days cannot be negative", field="unmapped_days")
        cutoff = utcnow() - timedelta(days=days)
        query = query.filter(Roll.status == RollStatus.UNMAPPED, Roll.received_at <= cutoff)

    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    total = query.count()
    rolls = (
        query.order_by(Roll.received_at.desc(), Roll.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "rolls": rolls,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


def list_unmapped_groups() -> list[dict]:
    """
    Unmapped rolls grouped by (gsm, quality, width), oldest group first.

    The resolver works through these groups: one classification decision
    usually applies to a whole group.
    """
    rows = (
        db.session.query(
            Roll.gsm,
            Roll.quality_name,
            Roll.width_inches,
            func.count(Roll.id),
            func.sum(Roll.current_length),
            func.min(Roll.received_at),
        )
        .filter(Roll.status == RollStatus.UNMAPPED)
        .group_by(Roll.gsm, Roll.quality_name, Roll.width_inches)
        .order_by(func.min(Roll.received_at).asc())
        .all()
    )
    groups = []
    for gsm, quality_name, width, count, total_meters, oldest in rows:
        roll_ids = [
            rid for (rid,) in db.session.query(Roll.id)
            .filter(
                Roll.status == RollStatus.UNMAPPED,
                Roll.gsm.is_(None) if gsm is None else Roll.gsm == gsm,
                Roll.quality_name.is_(None) if quality_name is None else Roll.quality_name == quality_name,
                Roll.width_inches == width,
            )
            .order_by(Roll.received_at.asc(), Roll.id.asc())
            .all()
        ]
        groups.append({
            "gsm": gsm,
            "quality_name": quality_name,
            "width_inches": width,
            "roll_ids": roll_ids,
            "total_rolls": count,
            "total_meters": quantize(Decimal(str(total_meters or 0)), LENGTH_QUANT),
            "oldest_received_at": oldest,
        })
    return groups


def scrap_roll(roll_id: int, reason: str, actor_id=None) -> Roll:
    """
    Write a roll off (damage, defect, loss).

    Legal from Unmapped, Mapped and Allocated. An Allocated roll keeps its
    allocation_ref as a record of the order line it was taken from.

    Raises:
        ValidationError: reason missing
        NotFoundError: roll missing
        StateConflictError: roll already Dispatched, Returned or Scrap
    """
    reason = optional_text(reason, "reason")
    if reason is None:
        raise ValidationError("Scrap reason is required", field="reason")

    def _op():
        roll = lock_for_update(db.session.query(Roll).filter_by(id=roll_id)).first()
        if roll is None:
            raise NotFoundError("Roll", roll_id)
        apply_transition(roll, LifecycleEvent.SCRAP, actor_id=actor_id, reason=reason)
        db.session.commit()
        return roll

    roll = run_with_retry(_op)
    current_app.logger.info("Scrapped roll %s: %s", roll.roll_number, reason)
    return roll
