# Overview: Landed cost allocator; spreads invoice-level costs over the invoice's rolls by basis.

"""
Landed Cost Service

WHY: Freight, duty and clearing charges arrive after the rolls do, as whole
amounts on the purchase invoice. Margin reporting needs them per roll.

ALGORITHM (per cost entry):
1. basis value per roll: ROLL -> 1, METER -> current_length,
   VALUE -> declared_value
2. share = amount * basis / sum(basis), rounded half-up to cents
3. rounding remainder goes to the roll with the largest basis, so the
   shares always add up to the amount exactly
4. sum(basis) == 0 -> the entry contributes nothing (no division by zero)

POPULATION: rolls of the purchase invoice, excluding retired (Returned)
rolls. A spawned remainder carries the invoice id, so it takes part.

POST-DISPATCH: Shares are computed over the whole population, but only
applied to rolls still in house (Unmapped, Mapped, Allocated). Rolls that
were already dispatched or scrapped get their share reported with
applied=False; their realized margin is left alone.

IDEMPOTENCY: The arithmetic is a pure redistribution of a fixed amount.
Not double counting an entry is the caller's job; allocate_invoice_landed_costs()
only picks up entries whose allocated_at is still null and stamps them in
the same unit.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import CostBasis, LandedCostEntry, Roll, RollStatus
from ..time_utils import utcnow
from ..validation import MONEY_QUANT, RATE_QUANT, coerce_money, optional_text, quantize
from .concurrency import lock_for_update, run_with_retry
from .identity_service import make_qr_payload
from .ledger_service import append_roll_event
from .receiving_service import get_purchase_invoice, parse_cost_basis, parse_cost_type


# Rolls whose cost basis can still change
APPLY_STATUSES = frozenset({RollStatus.UNMAPPED, RollStatus.MAPPED, RollStatus.ALLOCATED})

ZERO = Decimal("0.00")


def basis_value(roll: Roll, basis: CostBasis) -> Decimal:
    basis = CostBasis(basis)
    if basis is CostBasis.ROLL:
        return Decimal(1)
    if basis is CostBasis.METER:
        return Decimal(roll.current_length or 0)
    return Decimal(roll.declared_value or 0)


def distribute_amount(amount, basis_values) -> list[Decimal]:
    """
    Split `amount` proportionally to `basis_values`.

    Returns one cent-rounded share per value, summing exactly to the
    (cent-rounded) amount; all zeros when the values sum to zero.

    >>> distribute_amount(Decimal("900"), [100, 200, 300])
    [Decimal('150.00'), Decimal('300.00'), Decimal('450.00')]
    """
    amount = quantize(Decimal(amount), MONEY_QUANT)
    values = [Decimal(v) for v in basis_values]
    total = sum(values, Decimal(0))
    if not values or total <= 0:
        return [ZERO for _ in values]

    shares = [quantize(amount * v / total, MONEY_QUANT) for v in values]
    remainder = amount - sum(shares, Decimal(0))
    if remainder:
        largest = max(range(len(values)), key=lambda i: values[i])
        shares[largest] += remainder
    return shares


def _normalize_entry(entry) -> dict:
    if isinstance(entry, LandedCostEntry):
        return {
            "id": entry.id,
            "cost_type": entry.cost_type,
            "basis": entry.basis,
            "amount": quantize(Decimal(entry.amount), MONEY_QUANT),
            "description": entry.description,
        }
    return {
        "id": entry.get("id"),
        "cost_type": parse_cost_type(entry.get("cost_type")),
        "basis": parse_cost_basis(entry.get("basis")),
        "amount": coerce_money(entry.get("amount"), "amount"),
        "description": optional_text(entry.get("description"), "description"),
    }


def compute_allocations(rolls: list[Roll], entries: list[dict]):
    """
    Pure step: per-entry shares and per-roll accumulated deltas.

    Returns (entry_results, deltas) where deltas maps roll id to Decimal.
    """
    deltas = OrderedDict((roll.id, ZERO) for roll in rolls)
    entry_results = []
    for entry in entries:
        values = [basis_value(roll, entry["basis"]) for roll in rolls]
        shares = distribute_amount(entry["amount"], values)
        for roll, share in zip(rolls, shares):
            deltas[roll.id] += share
        entry_results.append({
            "id": entry["id"],
            "cost_type": entry["cost_type"].value,
            "basis": entry["basis"].value,
            "amount": entry["amount"],
            "basis_total": sum(values, Decimal(0)),
            "allocated": sum(shares, ZERO),
        })
    return entry_results, deltas


def _allocate(receiving_event_id: int, entries: list[dict], actor_id) -> dict:
    """Allocation inside the caller's unit; flushes, never commits."""
    get_purchase_invoice(receiving_event_id)
    rolls = lock_for_update(
        db.session.query(Roll)
        .filter(Roll.purchase_invoice_id == receiving_event_id, Roll.status != RollStatus.RETURNED)
        .order_by(Roll.id.asc())
    ).all()

    entry_results, deltas = compute_allocations(rolls, entries)
    at = utcnow()
    roll_results = []
    for roll in rolls:
        delta = deltas[roll.id]
        applied = roll.status in APPLY_STATUSES
        if applied and delta:
            roll.total_landed_cost = quantize(Decimal(roll.total_landed_cost or 0) + delta, MONEY_QUANT)
            length = Decimal(roll.current_length or 0)
            if length > 0:
                roll.landed_cost_per_meter = quantize(
                    Decimal(roll.landed_cost_per_meter or 0) + delta / length, RATE_QUANT
                )
            roll.qr_payload = make_qr_payload(roll)
            append_roll_event(
                event_type="roll.landed_cost",
                roll=roll,
                reference=str(receiving_event_id),
                actor_id=actor_id,
                occurred_at=at,
                payload={"delta": str(delta), "entry_ids": [e["id"] for e in entry_results]},
            )
        roll_results.append({
            "roll_id": roll.id,
            "roll_number": roll.roll_number,
            "status": roll.status.value,
            "delta": delta,
            "applied": applied,
        })

    db.session.flush()
    return {
        "receiving_event_id": receiving_event_id,
        "entries": entry_results,
        "deltas": roll_results,
    }


def allocate_landed_costs(receiving_event_id: int, cost_entries, actor_id=None) -> dict:
    """
    Spread cost entries over the rolls of one purchase invoice.

    Args:
        receiving_event_id: PurchaseInvoice id the rolls were received under
        cost_entries: dicts (cost_type, basis, amount, description) or
                      LandedCostEntry rows
        actor_id: Who ran the allocation

    Returns:
        {"receiving_event_id", "entries": [...], "deltas": [...]}; each delta
        names the roll, its share and whether it was applied

    Raises:
        NotFoundError: purchase invoice missing
        ValidationError: malformed entry
    """
    entries = [_normalize_entry(e) for e in (cost_entries or [])]

    def _op():
        result = _allocate(receiving_event_id, entries, actor_id)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    current_app.logger.info(
        "Allocated %d landed cost entr(ies) over %d roll(s) of invoice %s",
        len(entries), len(result["deltas"]), receiving_event_id,
    )
    return result


def allocate_invoice_landed_costs(purchase_invoice_id: int, actor_id=None) -> dict:
    """
    Allocate the invoice's pending landed cost entries exactly once.

    Only entries with allocated_at NULL are picked up; they are stamped in
    the same unit as the roll updates, so a second call is a no-op.
    """

    def _op():
        get_purchase_invoice(purchase_invoice_id)
        pending = lock_for_update(
            db.session.query(LandedCostEntry)
            .filter(
                LandedCostEntry.purchase_invoice_id == purchase_invoice_id,
                LandedCostEntry.allocated_at.is_(None),
            )
            .order_by(LandedCostEntry.id.asc())
        ).all()
        if not pending:
            return {"receiving_event_id": purchase_invoice_id, "entries": [], "deltas": []}

        result = _allocate(purchase_invoice_id, [_normalize_entry(e) for e in pending], actor_id)
        stamped_at = utcnow()
        for entry in pending:
            entry.allocated_at = stamped_at
            entry.allocated_by = str(actor_id) if actor_id is not None else None
        db.session.commit()
        return result

    result = run_with_retry(_op)
    if not result["entries"]:
        current_app.logger.info("No pending landed costs on invoice %s", purchase_invoice_id)
    else:
        current_app.logger.info(
            "Allocated %d pending landed cost entr(ies) on invoice %s",
            len(result["entries"]), purchase_invoice_id,
        )
    return result
