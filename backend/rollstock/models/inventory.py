from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class RollStatus(str, enum.Enum):
    """
    Closed set of roll lifecycle states.

    Exactly one holds at a time. Legal moves between them live in
    services/lifecycle_service.py (TRANSITIONS); nothing else may assign status.
    """
    UNMAPPED = "Unmapped"
    MAPPED = "Mapped"
    ALLOCATED = "Allocated"
    DISPATCHED = "Dispatched"
    RETURNED = "Returned"
    SCRAP = "Scrap"


def _status_values(enum_cls):
    return [member.value for member in enum_cls]


def _decimal_str(value):
    return str(value) if value is not None else None


class Roll(db.Model):
    """
    One physical roll of material: the unit of inventory.

    IDENTITY:
    - roll_number: YYMM-SUPPLIERSUFFIX-BATCHSUFFIX-SEQ, unique
    - barcode:     YYMM-SUP6-BATCH10-SEQ6-CHECKSUM4, unique; checksum is
                   recomputable from the other segments (integrity, not secrecy)

    DESCRIPTORS:
    category_name / gsm / quality_name are copied at creation so reports keep
    working after catalog edits. They are never re-derived from the SKU.

    LENGTHS (meters):
    current_length <= original_length always. A return zeroes current_length
    on the retired roll; salvage becomes a new roll with parent_roll_id set.

    CONCURRENCY:
    version_id is an optimistic lock. Concurrent writers of the same roll get
    StaleDataError and retry from a fresh read.
    """
    __tablename__ = "rolls"
    __table_args__ = (
        db.CheckConstraint("current_length >= 0", name="ck_rolls_current_length_non_negative"),
        db.CheckConstraint("current_length <= original_length", name="ck_rolls_current_le_original"),
        db.CheckConstraint(
            "status NOT IN ('Allocated', 'Dispatched') OR allocation_ref IS NOT NULL",
            name="ck_rolls_allocation_ref_required",
        ),
        # FIFO candidate scan: sku + status, oldest first
        db.Index("ix_rolls_sku_status_received", "sku_id", "status", "received_at"),
        db.Index("ix_rolls_status_received", "status", "received_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    roll_number = db.Column(db.String(64), nullable=False, unique=True)
    # Set in the same unit as the insert, right after the id is known
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    qr_payload = db.Column(db.JSON, nullable=True)

    # Classification
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    purchase_invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=True, index=True)
    purchase_order_ref = db.Column(db.String(64), nullable=True)
    grn_ref = db.Column(db.String(64), nullable=True)

    # Physical
    width_inches = db.Column(db.Integer, nullable=False)
    original_length = db.Column(db.Numeric(12, 2), nullable=False)
    current_length = db.Column(db.Numeric(12, 2), nullable=False)
    category_name = db.Column(db.String(64), nullable=True)
    gsm = db.Column(db.String(32), nullable=True)
    quality_name = db.Column(db.String(64), nullable=True)

    # Commercial
    base_cost_per_meter = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    landed_cost_per_meter = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    total_landed_cost = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    declared_value = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(
        db.Enum(RollStatus, name="roll_status", native_enum=False, length=16,
                values_callable=_status_values, validate_strings=True),
        nullable=False,
        default=RollStatus.UNMAPPED,
        index=True,
    )

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    mapped_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Allocation (sales-order line)
    allocation_ref = db.Column(db.String(64), nullable=True, index=True)
    allocated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    allocated_by = db.Column(db.String(64), nullable=True)

    # Dispatch (delivery challan / shipment)
    dispatch_ref = db.Column(db.String(64), nullable=True, index=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_by = db.Column(db.String(64), nullable=True)

    # Return
    return_reason = db.Column(db.String(255), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_by = db.Column(db.String(64), nullable=True)
    parent_roll_id = db.Column(db.Integer, db.ForeignKey("rolls.id"), nullable=True, index=True)

    # Scrap
    scrap_reason = db.Column(db.String(255), nullable=True)
    scrapped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scrapped_by = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sku = db.relationship("Sku")
    batch = db.relationship("Batch", backref=db.backref("rolls", lazy=True))
    supplier = db.relationship("Supplier")
    parent_roll = db.relationship("Roll", remote_side=[id], backref=db.backref("child_rolls", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Roll id={self.id} roll_number={self.roll_number!r} status={self.status.value}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "roll_number": self.roll_number,
            "barcode": self.barcode,
            "qr_payload": self.qr_payload,
            "sku_id": self.sku_id,
            "batch_id": self.batch_id,
            "supplier_id": self.supplier_id,
            "purchase_invoice_id": self.purchase_invoice_id,
            "purchase_order_ref": self.purchase_order_ref,
            "grn_ref": self.grn_ref,
            "width_inches": self.width_inches,
            "original_length": _decimal_str(self.original_length),
            "current_length": _decimal_str(self.current_length),
            "category_name": self.category_name,
            "gsm": self.gsm,
            "quality_name": self.quality_name,
            "base_cost_per_meter": _decimal_str(self.base_cost_per_meter),
            "landed_cost_per_meter": _decimal_str(self.landed_cost_per_meter),
            "total_landed_cost": _decimal_str(self.total_landed_cost),
            "declared_value": _decimal_str(self.declared_value),
            "status": self.status.value,
            "received_at": to_utc_z(self.received_at),
            "mapped_at": to_utc_z(self.mapped_at),
            "allocation_ref": self.allocation_ref,
            "allocated_at": to_utc_z(self.allocated_at),
            "allocated_by": self.allocated_by,
            "dispatch_ref": self.dispatch_ref,
            "dispatched_at": to_utc_z(self.dispatched_at),
            "dispatched_by": self.dispatched_by,
            "return_reason": self.return_reason,
            "returned_at": to_utc_z(self.returned_at),
            "returned_by": self.returned_by,
            "parent_roll_id": self.parent_roll_id,
            "scrap_reason": self.scrap_reason,
            "scrapped_at": to_utc_z(self.scrapped_at),
            "scrapped_by": self.scrapped_by,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
