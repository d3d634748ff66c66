# Overview: FIFO allocation engine; reserves Mapped rolls against sales-order lines.

"""
Allocation Service

================================================================================
PURPOSE: Match sales demand to rolls, oldest received first, exactly once
================================================================================

CONTRACT:
    allocate(sku_id, required_count, min_length, order_line_ref)
    -> candidates: status=Mapped, same SKU, current_length >= min_length
    -> ordered by received_at, then id (receipt order within a timestamp)
    -> fewer candidates than required: InsufficientStockError, nothing reserved
    -> otherwise every selected roll goes Mapped -> Allocated in one unit

RACE SAFETY:
Two callers can read the same FIFO head. Each claimed roll is written with
an UPDATE guarded by its version_id, so only the first commit wins; the
loser's unit raises StaleDataError (or hits the store's write lock), rolls
back everything it claimed and re-reads the pool from scratch. A roll is
never claimed twice and a failed call never leaves a partial reservation.

DEALLOCATION:
    deallocate(order_line_ref) releases every Allocated roll holding that
    reference back to Mapped and returns how many were released.
================================================================================
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError
from ..extensions import db
from ..models import Roll, RollStatus, Sku
from ..validation import coerce_length, coerce_positive_int, require_reference
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import LifecycleEvent, apply_transition


def _candidate_query(sku_id: int, min_length: Decimal):
    return (
        db.session.query(Roll)
        .filter(
            Roll.sku_id == sku_id,
            Roll.status == RollStatus.MAPPED,
            Roll.current_length >= min_length,
        )
        .order_by(Roll.received_at.asc(), Roll.id.asc())
    )


def find_candidates(sku_id: int, min_length=0, limit: int | None = None) -> list[Roll]:
    """Eligible rolls in FIFO order, without reserving anything."""
    min_length = coerce_length(min_length, "min_length", allow_zero=True)
    query = _candidate_query(sku_id, min_length)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def available_count(sku_id: int, min_length=0) -> int:
    min_length = coerce_length(min_length, "min_length", allow_zero=True)
    return _candidate_query(sku_id, min_length).order_by(None).count()


def allocate(sku_id: int, required_count, min_length, order_line_ref: str, actor_id=None) -> list[Roll]:
    """
    Reserve `required_count` rolls of a SKU for one order line.

    Args:
        sku_id: SKU being sold
        required_count: Number of whole rolls needed (positive)
        min_length: Minimum usable current_length per roll, in meters
        order_line_ref: Sales-order line key; stored as allocation_ref
        actor_id: Who allocated, for the audit trail

    Returns:
        Allocated rolls in FIFO order

    Raises:
        ValidationError: bad count, length or reference
        NotFoundError: SKU missing
        InsufficientStockError: fewer eligible rolls than required
        TransientStoreError: lost the race more times than the retry budget
    """
    required_count = coerce_positive_int(required_count, "required_count")
    min_length = coerce_length(min_length, "min_length", allow_zero=True)
    order_line_ref = require_reference(order_line_ref, "order_line_ref")

    def _op():
        if db.session.query(Sku.id).filter_by(id=sku_id).first() is None:
            raise NotFoundError("Sku", sku_id)

        candidates = lock_for_update(_candidate_query(sku_id, min_length)).limit(required_count).all()
        if len(candidates) < required_count:
            raise InsufficientStockError(sku_id, required=required_count, available=len(candidates))

        for roll in candidates:
            apply_transition(
                roll,
                LifecycleEvent.ALLOCATE,
                actor_id=actor_id,
                reference=order_line_ref,
                payload={"sku_id": sku_id, "min_length": str(min_length)},
            )
        db.session.commit()
        return candidates

    try:
        rolls = run_with_retry(_op)
    except InsufficientStockError as exc:
        current_app.logger.warning(
            "Allocation rejected for %s: SKU %s has %d eligible roll(s), %d required",
            order_line_ref, sku_id, exc.available, exc.required,
        )
        raise

    current_app.logger.info(
        "Allocated %d roll(s) of SKU %s to %s", len(rolls), sku_id, order_line_ref
    )
    return rolls


def deallocate(order_line_ref: str, actor_id=None) -> int:
    """
    Release every roll allocated to an order line (e.g. line cancelled).

    Returns the number of rolls released; 0 when nothing was allocated.
    """
    order_line_ref = require_reference(order_line_ref, "order_line_ref")

    def _op():
        rolls = lock_for_update(
            db.session.query(Roll)
            .filter(Roll.status == RollStatus.ALLOCATED, Roll.allocation_ref == order_line_ref)
            .order_by(Roll.id.asc())
        ).all()
        for roll in rolls:
            apply_transition(roll, LifecycleEvent.DEALLOCATE, actor_id=actor_id, reference=order_line_ref)
        db.session.commit()
        return len(rolls)

    released = run_with_retry(_op)
    current_app.logger.info("Released %d roll(s) from %s", released, order_line_ref)
    return released


def get_allocated_rolls(order_line_ref: str) -> list[Roll]:
    """Rolls currently reserved for an order line, FIFO order."""
    return (
        db.session.query(Roll)
        .filter(Roll.status == RollStatus.ALLOCATED, Roll.allocation_ref == order_line_ref)
        .order_by(Roll.received_at.asc(), Roll.id.asc())
        .all()
    )
