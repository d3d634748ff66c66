from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class CostType(str, enum.Enum):
    FREIGHT = "Freight"
    DUTY = "Duty"
    CLEARING = "Clearing"
    MISC = "Misc"


class CostBasis(str, enum.Enum):
    ROLL = "ROLL"
    METER = "METER"
    VALUE = "VALUE"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Batch(db.Model):
    """
    Supplier delivery grouping. Owns zero or more rolls.

    IMMUTABLE once created except for notes.
    """
    __tablename__ = "batches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    batch_code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    purchase_invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=True, index=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")

    def __repr__(self) -> str:
        return f"<Batch id={self.id} batch_code={self.batch_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_code": self.batch_code,
            "supplier_id": self.supplier_id,
            "purchase_invoice_id": self.purchase_invoice_id,
            "received_at": to_utc_z(self.received_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseInvoice(db.Model):
    """Receiving event: the purchase invoice that brought a set of rolls in."""
    __tablename__ = "purchase_invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    supplier_invoice_number = db.Column(db.String(64), nullable=True)
    purchase_order_ref = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")
    landed_costs = db.relationship(
        "LandedCostEntry",
        backref="purchase_invoice",
        lazy=True,
        order_by="LandedCostEntry.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "supplier_id": self.supplier_id,
            "supplier_invoice_number": self.supplier_invoice_number,
            "purchase_order_ref": self.purchase_order_ref,
            "created_at": to_utc_z(self.created_at),
            "landed_costs": [entry.to_dict() for entry in self.landed_costs],
        }


class LandedCostEntry(db.Model):
    """
    Incidental acquisition cost on a purchase invoice.

    allocated_at is the idempotency marker: once stamped, the entry has been
    spread over the invoice's rolls and must not be allocated again.
    """
    __tablename__ = "landed_cost_entries"
    __table_args__ = (
        db.CheckConstraint("amount >= 0", name="ck_landed_cost_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    cost_type = db.Column(
        db.Enum(CostType, name="landed_cost_type", native_enum=False, length=16,
                values_callable=_enum_values, validate_strings=True),
        nullable=False,
    )
    basis = db.Column(
        db.Enum(CostBasis, name="landed_cost_basis", native_enum=False, length=8,
                values_callable=_enum_values, validate_strings=True),
        nullable=False,
    )
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    allocated_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    allocated_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_invoice_id": self.purchase_invoice_id,
            "cost_type": self.cost_type.value,
            "basis": self.basis.value,
            "amount": str(self.amount),
            "description": self.description,
            "allocated_at": to_utc_z(self.allocated_at),
            "allocated_by": self.allocated_by,
        }
