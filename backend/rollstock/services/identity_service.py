# Overview: Service-layer operations for roll identity; roll numbers, barcodes and QR payloads.

"""
Roll Identity Service

WHY: Every physical roll needs a durable, human-readable identity that a
scanner can sanity-check without a database round trip.

FORMATS:
- Roll number: YYMM-SUPPLIERSUFFIX-BATCHSUFFIX-SEQ
    SUPPLIERSUFFIX = last dash segment of the supplier code ("SUP-0007" -> "0007")
    BATCHSUFFIX    = last dash segment of the batch code ("BATCH-2410-003" -> "003")
    SEQ            = 4-digit sequence within (YYMM, supplier, batch)
- Barcode: YYMM-SUP6-BATCH10-SEQ6-CHECKSUM4
    SUP6      = first 6 chars of the supplier code, dashes removed
    BATCH10   = first 10 chars of the batch code, dashes removed
    SEQ6      = last 6 chars of the zero-padded roll id
    CHECKSUM4 = first 4 hex chars (upper) of MD5(YYMM + SUP6 + BATCH10 + SEQ6)

The checksum catches transcription errors; it is not a secret.

MISSING METADATA: Receipt must never block on incomplete supplier/batch data.
Missing codes fall back to placeholder tokens instead of raising.

SEQUENCES: Derived from existing roll numbers at call time. There is no
in-memory counter; the unique constraint on roll_number plus the retry in
run_with_retry resolves concurrent inserts that picked the same number.
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime

from ..extensions import db
from ..models import Roll
from ..time_utils import year_month


SUPPLIER_PLACEHOLDER = "SUP"
BATCH_PLACEHOLDER = "BATCH"

# Unique columns derived from existing rows; a collision means a concurrent insert won
ROLL_NUMBER_TARGETS = ("rolls.roll_number",)

_TOKEN_CLEAN = re.compile(r"[^A-Z0-9-]")
_BARCODE_RE = re.compile(r"^(\d{4})-([A-Z0-9]{1,6})-([A-Z0-9]{1,10})-(\d{6})-([0-9A-F]{4})$")


def _normalize_code(value, placeholder: str) -> str:
    """Upper-case, strip spaces and odd characters; placeholder when empty."""
    if value is None:
        return placeholder
    cleaned = _TOKEN_CLEAN.sub("", str(value).strip().upper().replace(" ", ""))
    cleaned = cleaned.strip("-")
    return cleaned or placeholder


def _suffix(code: str) -> str:
    return code.split("-")[-1] or code


def roll_number_prefix(supplier_code: str | None, batch_code: str | None, at: datetime | None = None) -> str:
    """YYMM-SUPPLIERSUFFIX-BATCHSUFFIX, the scope a roll sequence counts within."""
    sup = _suffix(_normalize_code(supplier_code, SUPPLIER_PLACEHOLDER))
    batch = _suffix(_normalize_code(batch_code, BATCH_PLACEHOLDER))
    return f"{year_month(at)}-{sup}-{batch}"


def make_roll_number(supplier_code: str | None, batch_code: str | None, sequence: int,
                     at: datetime | None = None) -> str:
    if sequence is None or int(sequence) < 1:
        raise ValueError("sequence must be a positive integer")
    return f"{roll_number_prefix(supplier_code, batch_code, at)}-{int(sequence):04d}"


def next_roll_sequence(prefix: str) -> int:
    """
    Next free sequence for a roll number prefix, read from the store.

    Uses the highest existing SEQ rather than a count, so gaps left by
    deleted test data never cause reuse.
    """
    pattern = f"{prefix}-%"
    numbers = db.session.query(Roll.roll_number).filter(Roll.roll_number.like(pattern)).all()
    highest = 0
    for (number,) in numbers:
        tail = number[len(prefix) + 1:]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return highest + 1


def next_roll_numbers(supplier_code: str | None, batch_code: str | None, count: int,
                      at: datetime | None = None) -> list[str]:
    """Reserve `count` consecutive roll numbers for one (supplier, batch) in this month."""
    prefix = roll_number_prefix(supplier_code, batch_code, at)
    start = next_roll_sequence(prefix)
    return [make_roll_number(supplier_code, batch_code, start + i, at) for i in range(count)]


def _barcode_fields(supplier_code, batch_code, roll_id, at: datetime | None):
    yymm = year_month(at)
    sup = _normalize_code(supplier_code, SUPPLIER_PLACEHOLDER).replace("-", "")[:6]
    batch = _normalize_code(batch_code, BATCH_PLACEHOLDER).replace("-", "")[:10]
    seq = f"{int(roll_id):06d}"[-6:]
    return yymm, sup, batch, seq


def compute_checksum(yymm: str, sup: str, batch: str, seq: str) -> str:
    digest = hashlib.md5(f"{yymm}{sup}{batch}{seq}".encode("utf-8"), usedforsecurity=False)
    return digest.hexdigest()[:4].upper()


def make_barcode(supplier_code: str | None, batch_code: str | None, roll_id: int,
                 at: datetime | None = None) -> str:
    yymm, sup, batch, seq = _barcode_fields(supplier_code, batch_code, roll_id, at)
    return f"{yymm}-{sup}-{batch}-{seq}-{compute_checksum(yymm, sup, batch, seq)}"


def parse_barcode(barcode: str) -> dict | None:
    """
    Split a barcode into its five segments; None when the shape is wrong.
    """
    if not barcode:
        return None
    value = barcode.strip().upper()
    match = _BARCODE_RE.match(value)
    if not match:
        return None
    yymm, sup, batch, seq, checksum = match.groups()
    return {"yymm": yymm, "supplier": sup, "batch": batch, "seq": seq, "checksum": checksum}


def verify_barcode(barcode: str) -> bool:
    """True when the embedded checksum matches the other segments."""
    parts = parse_barcode(barcode)
    if parts is None:
        return False
    expected = compute_checksum(parts["yymm"], parts["supplier"], parts["batch"], parts["seq"])
    return expected == parts["checksum"]


def barcode_for_roll(roll: Roll) -> str:
    """Recompute a roll's barcode from its stored identity fields."""
    supplier_code = roll.supplier.code if roll.supplier is not None else None
    batch_code = roll.batch.batch_code if roll.batch is not None else None
    return make_barcode(supplier_code, batch_code, roll.id, at=roll.received_at)


def make_qr_payload(roll: Roll) -> dict:
    """Minimal scan payload; JSON-safe (ids and floats only)."""
    return {
        "roll_id": roll.id,
        "sku_id": roll.sku_id,
        "batch_id": roll.batch_id,
        "supplier_id": roll.supplier_id,
        "width_in": roll.width_inches,
        "length_m": float(roll.current_length or 0),
        "landed_cost": float(roll.total_landed_cost or 0),
    }


def assign_identity(roll: Roll, *, supplier_code: str | None, batch_code: str | None) -> Roll:
    """
    Stamp barcode and QR payload on a flushed roll (id must be known).

    Called inside the creating unit, so the row never commits without them.
    """
    if roll.id is None:
        db.session.flush()
    roll.barcode = make_barcode(supplier_code, batch_code, roll.id, at=roll.received_at)
    roll.qr_payload = make_qr_payload(roll)
    return roll

