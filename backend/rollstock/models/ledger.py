from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class RollLedgerEvent(db.Model):
    """
    Append-only audit trail for roll lifecycle changes.

    Written inside the same DB transaction as the change it records, so a
    rolled-back unit leaves no event behind. Never updated or deleted.
    """
    __tablename__ = "roll_ledger_events"
    __table_args__ = (
        db.Index("ix_roll_ledger_roll_occurred", "roll_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. roll.received, roll.allocated
    roll_id = db.Column(db.Integer, db.ForeignKey("rolls.id"), nullable=True, index=True)

    # Cross references (allocation key, shipment, invoice ...)
    reference = db.Column(db.String(64), nullable=True, index=True)
    actor_id = db.Column(db.String(64), nullable=True, index=True)

    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "roll_id": self.roll_id,
            "reference": self.reference,
            "actor_id": self.actor_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
