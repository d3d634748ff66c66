# Overview: Service-layer operations for the roll audit ledger.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import RollLedgerEvent, Roll
from ..time_utils import utcnow
"""
Roll Ledger Invariants (authoritative)

- Append-only audit log for roll lifecycle events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the change they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_roll_event(
    *,
    event_type: str,
    roll: Roll | None = None,
    from_status=None,
    to_status=None,
    reference: str | None = None,
    actor_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> RollLedgerEvent:
    """
    Append-only roll ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushes but never commits; the caller's unit owns the transaction.
    """
    ev = RollLedgerEvent(
        event_type=event_type,
        roll_id=roll.id if roll is not None else None,
        reference=reference,
        actor_id=str(actor_id) if actor_id is not None else None,
        from_status=getattr(from_status, "value", from_status),
        to_status=getattr(to_status, "value", to_status),
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_roll_events(roll_id: int) -> list[RollLedgerEvent]:
    """Events for one roll, oldest first."""
    return (
        db.session.query(RollLedgerEvent)
        .filter_by(roll_id=roll_id)
        .order_by(RollLedgerEvent.occurred_at.asc(), RollLedgerEvent.id.asc())
        .all()
    )
