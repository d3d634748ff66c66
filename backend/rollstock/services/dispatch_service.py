# Overview: Dispatch and return workflow; ships allocated rolls and splits partial returns.

"""
Dispatch & Return Service

DISPATCH:
- A shipment (delivery challan) carries a list of rolls
- Every roll must exist and be Allocated; one bad roll rejects the whole
  shipment, nothing moves (no partial dispatch)

RETURN:
- Only a Dispatched roll can come back
- The returned roll is retired: status Returned, current_length 0.
  Its row is never reused, so the history of what was shipped stays intact
- If the customer sends back more than MIN_USABLE_RETURN_LENGTH meters, the
  salvage becomes a NEW Mapped roll (same SKU, batch, supplier, invoice,
  width, descriptors and cost per meter) pointing at the retired parent
- One physical cut, two logical units: parent and remainder
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Roll, RollStatus
from ..time_utils import utcnow
from ..validation import MONEY_QUANT, coerce_length, optional_text, quantize, require_reference
from .concurrency import lock_for_update, run_with_retry
from .identity_service import ROLL_NUMBER_TARGETS, assign_identity, next_roll_numbers
from .ledger_service import append_roll_event
from .lifecycle_service import LifecycleEvent, apply_transition, next_status


def _unique_ids(roll_ids) -> list[int]:
    if roll_ids is None or isinstance(roll_ids, (str, bytes)):
        raise ValidationError("roll_ids must be a list of roll ids", field="roll_ids")
    seen = []
    for rid in roll_ids:
        if isinstance(rid, bool):
            raise ValidationError("roll_ids must be integers", field="roll_ids")
        try:
            rid = int(rid)
        except (TypeError, ValueError):
            raise ValidationError("roll_ids must be integers", field="roll_ids")
        if rid not in seen:
            seen.append(rid)
    if not seen:
        raise ValidationError("No rolls to dispatch", field="roll_ids")
    return seen


def dispatch(shipment_ref: str, roll_ids, actor_id=None) -> list[Roll]:
    """
    Ship a set of allocated rolls under one shipment reference.

    All-or-nothing: a missing roll raises NotFoundError and a roll in any
    status other than Allocated raises StateConflictError; in both cases no
    roll in the list changes.

    Returns:
        Dispatched rolls in the order requested (duplicates collapsed)
    """
    shipment_ref = require_reference(shipment_ref, "shipment_ref")
    ids = _unique_ids(roll_ids)

    def _op():
        rolls = lock_for_update(db.session.query(Roll).filter(Roll.id.in_(ids))).all()
        by_id = {roll.id: roll for roll in rolls}
        missing = [rid for rid in ids if rid not in by_id]
        if missing:
            raise NotFoundError("Roll", missing[0])

        at = utcnow()
        ordered = [by_id[rid] for rid in ids]
        for roll in ordered:
            apply_transition(roll, LifecycleEvent.DISPATCH, actor_id=actor_id, at=at, reference=shipment_ref)
        db.session.commit()
        return ordered

    rolls = run_with_retry(_op)
    current_app.logger.info("Dispatched %d roll(s) on %s", len(rolls), shipment_ref)
    return rolls


def _min_usable_length() -> Decimal:
    return Decimal(str(current_app.config.get("MIN_USABLE_RETURN_LENGTH", 100)))


def _spawn_remainder(parent: Roll, length: Decimal, at, actor_id) -> Roll:
    supplier_code = parent.supplier.code if parent.supplier is not None else None
    batch_code = parent.batch.batch_code if parent.batch is not None else None
    [roll_number] = next_roll_numbers(supplier_code, batch_code, 1, at=at)

    child = Roll(
        roll_number=roll_number,
        sku_id=parent.sku_id,
        batch_id=parent.batch_id,
        supplier_id=parent.supplier_id,
        purchase_invoice_id=parent.purchase_invoice_id,
        purchase_order_ref=parent.purchase_order_ref,
        grn_ref=parent.grn_ref,
        width_inches=parent.width_inches,
        original_length=length,
        current_length=length,
        category_name=parent.category_name,
        gsm=parent.gsm,
        quality_name=parent.quality_name,
        base_cost_per_meter=parent.base_cost_per_meter,
        landed_cost_per_meter=parent.landed_cost_per_meter,
        total_landed_cost=quantize(Decimal(parent.landed_cost_per_meter) * length, MONEY_QUANT),
        declared_value=quantize(Decimal(parent.base_cost_per_meter) * length, MONEY_QUANT),
        status=RollStatus.MAPPED,
        received_at=at,
        mapped_at=at,
        parent_roll_id=parent.id,
    )
    db.session.add(child)
    db.session.flush()
    assign_identity(child, supplier_code=supplier_code, batch_code=batch_code)
    append_roll_event(
        event_type="roll.spawned",
        roll=child,
        to_status=child.status,
        reference=parent.roll_number,
        actor_id=actor_id,
        occurred_at=at,
        payload={"parent_roll_id": parent.id, "length": str(length)},
    )
    return child


def return_roll(roll_id: int, remaining_length, reason: str, actor_id=None) -> dict:
    """
    Retire a dispatched roll and salvage the usable remainder.

    Args:
        roll_id: Dispatched roll coming back
        remaining_length: Meters still usable, 0 <= remaining <= current_length
        reason: Why it came back (required)
        actor_id: Who processed the return

    Returns:
        {"retired_roll": Roll, "spawned_roll": Roll | None}

    Raises:
        ValidationError: bad length or missing reason
        NotFoundError: roll missing
        StateConflictError: roll not Dispatched
    """
    remaining = coerce_length(remaining_length, "remaining_length", allow_zero=True)
    reason = optional_text(reason, "reason")
    if reason is None:
        raise ValidationError("Return reason is required", field="reason")
    threshold = _min_usable_length()

    def _op():
        roll = lock_for_update(db.session.query(Roll).filter_by(id=roll_id)).first()
        if roll is None:
            raise NotFoundError("Roll", roll_id)
        next_status(roll, LifecycleEvent.RETURN)

        shipped_length = Decimal(roll.current_length)
        if remaining > shipped_length:
            raise ValidationError(
                f"remaining_length {remaining} exceeds roll length {shipped_length}",
                field="remaining_length",
            )

        at = utcnow()
        apply_transition(
            roll,
            LifecycleEvent.RETURN,
            actor_id=actor_id,
            at=at,
            reason=reason,
            payload={"shipped_length": str(shipped_length), "remaining_length": str(remaining)},
        )

        spawned = _spawn_remainder(roll, remaining, at, actor_id) if remaining > threshold else None
        db.session.commit()
        return {"retired_roll": roll, "spawned_roll": spawned}

    result = run_with_retry(_op, retry_on_unique=ROLL_NUMBER_TARGETS)
    spawned = result["spawned_roll"]
    if spawned is not None:
        current_app.logger.info(
            "Returned roll %s; spawned %s with %s m",
            result["retired_roll"].roll_number, spawned.roll_number, spawned.current_length,
        )
    else:
        current_app.logger.info(
            "Returned roll %s; remainder %s m below usable threshold",
            result["retired_roll"].roll_number, remaining,
        )
    return result
