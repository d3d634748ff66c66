# Overview: Roll state machine; legal status transitions and their side effects.

"""
Roll Lifecycle Service

================================================================================
PURPOSE: Enforce the roll status state machine from receipt to disposal
================================================================================

STATE MACHINE:

    (receipt) -> UNMAPPED --classify--> MAPPED
    (receipt) -> MAPPED
    MAPPED     --allocate-->   ALLOCATED
    ALLOCATED  --deallocate--> MAPPED
    ALLOCATED  --dispatch-->   DISPATCHED
    DISPATCHED --return-->     RETURNED
    UNMAPPED / MAPPED / ALLOCATED --scrap--> SCRAP

RULES (NON-NEGOTIABLE):
1. Transitions are monotonic except ALLOCATED -> MAPPED (deallocation)
2. RETURNED and SCRAP are terminal
3. Illegal transitions raise StateConflictError; no silent coercion
4. apply_transition() is the only code that assigns Roll.status
5. Each transition appends a roll ledger event in the caller's unit
6. Each transition refreshes the roll's QR payload (sku id, length)

Callers own the atomic unit (run_with_retry + commit). This module only
validates and mutates the in-session roll.
================================================================================
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from ..errors import StateConflictError, ValidationError
from ..models import Roll, RollStatus
from ..time_utils import utcnow
from .identity_service import make_qr_payload
from .ledger_service import append_roll_event


class LifecycleEvent(str, enum.Enum):
    CLASSIFY = "classify"
    ALLOCATE = "allocate"
    DEALLOCATE = "deallocate"
    DISPATCH = "dispatch"
    RETURN = "return"
    SCRAP = "scrap"


# (from, event) -> to
TRANSITIONS: dict[tuple[RollStatus, LifecycleEvent], RollStatus] = {
    (RollStatus.UNMAPPED, LifecycleEvent.CLASSIFY): RollStatus.MAPPED,
    (RollStatus.MAPPED, LifecycleEvent.ALLOCATE): RollStatus.ALLOCATED,
    (RollStatus.ALLOCATED, LifecycleEvent.DEALLOCATE): RollStatus.MAPPED,
    (RollStatus.ALLOCATED, LifecycleEvent.DISPATCH): RollStatus.DISPATCHED,
    (RollStatus.DISPATCHED, LifecycleEvent.RETURN): RollStatus.RETURNED,
    (RollStatus.UNMAPPED, LifecycleEvent.SCRAP): RollStatus.SCRAP,
    (RollStatus.MAPPED, LifecycleEvent.SCRAP): RollStatus.SCRAP,
    (RollStatus.ALLOCATED, LifecycleEvent.SCRAP): RollStatus.SCRAP,
}


TERMINAL_STATUSES = frozenset({RollStatus.RETURNED, RollStatus.SCRAP})


def allowed_from(event: LifecycleEvent) -> frozenset[RollStatus]:
    """Statuses from which `event` is legal."""
    return frozenset(src for (src, ev) in TRANSITIONS if ev == event)


def can_transition(status: RollStatus, event: LifecycleEvent) -> bool:
    return (RollStatus(status), LifecycleEvent(event)) in TRANSITIONS


def next_status(roll: Roll, event: LifecycleEvent) -> RollStatus:
    """
    Target status for `event`, or StateConflictError naming expected vs actual.
    """
    event = LifecycleEvent(event)
    target = TRANSITIONS.get((roll.status, event))
    if target is None:
        raise StateConflictError(
            roll.id,
            event=event.value,
            expected=allowed_from(event),
            actual=roll.status,
        )
    return target


def apply_transition(
    roll: Roll,
    event: LifecycleEvent,
    *,
    actor_id: str | None = None,
    at: datetime | None = None,
    reference: str | None = None,
    sku_id: int | None = None,
    reason: str | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> Roll:
    """
    Validate and apply one transition plus its side effects to `roll`.

    Side effects by event:
    - classify:   sku_id attached, mapped_at stamped
    - allocate:   allocation_ref/allocated_at/allocated_by set (reference required)
    - deallocate: allocation details cleared
    - dispatch:   dispatch_ref/dispatched_at/dispatched_by set (reference required)
    - return:     current_length zeroed, return details set
    - scrap:      scrap_reason/scrapped_at/scrapped_by set

    Raises:
        StateConflictError: event illegal for the roll's current status
        ValidationError: a required side-effect field is missing
    """
    event = LifecycleEvent(event)
    source = roll.status
    target = next_status(roll, event)
    at = at or utcnow()
    actor = str(actor_id) if actor_id is not None else None

    if event is LifecycleEvent.CLASSIFY:
        if sku_id is None:
            raise ValidationError("classify requires sku_id", field="sku_id")
        roll.sku_id = sku_id
        roll.mapped_at = at
    elif event is LifecycleEvent.ALLOCATE:
        if not reference:
            raise ValidationError("allocate requires an allocation reference", field="reference")
        roll.allocation_ref = reference
        roll.allocated_at = at
        roll.allocated_by = actor
    elif event is LifecycleEvent.DEALLOCATE:
        reference = reference or roll.allocation_ref
        roll.allocation_ref = None
        roll.allocated_at = None
        roll.allocated_by = None
    elif event is LifecycleEvent.DISPATCH:
        if not reference:
            raise ValidationError("dispatch requires a shipment reference", field="reference")
        roll.dispatch_ref = reference
        roll.dispatched_at = at
        roll.dispatched_by = actor
    elif event is LifecycleEvent.RETURN:
        roll.current_length = Decimal("0")
        roll.return_reason = reason
        roll.returned_at = at
        roll.returned_by = actor
    elif event is LifecycleEvent.SCRAP:
        roll.scrap_reason = reason
        roll.scrapped_at = at
        roll.scrapped_by = actor

    roll.status = target
    roll.qr_payload = make_qr_payload(roll)

    append_roll_event(
        event_type=f"roll.{event.value}",
        roll=roll,
        from_status=source,
        to_status=target,
        reference=reference,
        actor_id=actor,
        occurred_at=at,
        note=note or reason,
        payload=payload,
    )
    return roll
