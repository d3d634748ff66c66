"""
Roll identity tests: roll numbers, barcodes and checksums.
"""

import hashlib
from datetime import datetime

import pytest

from rollstock.services import identity_service
from rollstock.services.identity_service import (
    barcode_for_roll,
    compute_checksum,
    make_barcode,
    make_roll_number,
    parse_barcode,
    verify_barcode,
)


OCT_2024 = datetime(2024, 10, 15, 12, 0, 0)


def test_roll_number_uses_code_suffixes():
    assert make_roll_number("SUP-0007", "BATCH-2410-003", 12, at=OCT_2024) == "2410-0007-003-0012"


def test_roll_number_placeholders_for_missing_codes():
    assert make_roll_number(None, "", 1, at=OCT_2024) == "2410-SUP-BATCH-0001"


def test_roll_number_rejects_non_positive_sequence():
    with pytest.raises(ValueError):
        make_roll_number("SUP-0007", "BATCH-2410-003", 0, at=OCT_2024)


def test_distinct_sequences_never_collide():
    numbers = {make_roll_number("SUP-0007", "BATCH-2410-003", seq, at=OCT_2024) for seq in range(1, 200)}
    assert len(numbers) == 199


def test_barcode_layout_and_checksum():
    barcode = make_barcode("SUP-0007", "BATCH-2410-003", 42, at=OCT_2024)
    yymm, sup, batch, seq, checksum = barcode.split("-")

    assert yymm == "2410"
    assert sup == "SUP000"
    assert batch == "BATCH24100"
    assert seq == "000042"
    expected = hashlib.md5(f"{yymm}{sup}{batch}{seq}".encode()).hexdigest()[:4].upper()
    assert checksum == expected


def test_barcode_seq_keeps_last_six_digits():
    barcode = make_barcode("SUP-0007", "B1", 1234567, at=OCT_2024)
    assert parse_barcode(barcode)["seq"] == "234567"


def test_barcode_never_fails_on_missing_metadata():
    barcode = make_barcode(None, None, 5, at=OCT_2024)
    assert barcode.startswith("2410-SUP-BATCH-000005-")
    assert verify_barcode(barcode)


def test_verify_detects_transcription_error():
    barcode = make_barcode("SUP-0007", "BATCH-2410-003", 42, at=OCT_2024)
    assert verify_barcode(barcode)
    assert verify_barcode(barcode.lower())

    typo = barcode.replace("000042", "000043")
    assert not verify_barcode(typo)


def test_parse_rejects_malformed_barcodes():
    assert parse_barcode("") is None
    assert parse_barcode("2410-SUP000-000042-ABCD") is None
    assert parse_barcode("2410-SUP000-BATCH-000042-XYZ1") is None
    assert not verify_barcode("not-a-barcode")


def test_checksum_is_deterministic():
    assert compute_checksum("2410", "SUP000", "BATCH", "000001") == compute_checksum(
        "2410", "SUP000", "BATCH", "000001"
    )


def test_next_roll_sequence_reads_existing_numbers(receive):
    rolls = receive([1000, 1000])
    prefix = rolls[0].roll_number.rsplit("-", 1)[0]

    assert [r.roll_number for r in rolls] == [f"{prefix}-0001", f"{prefix}-0002"]
    assert identity_service.next_roll_sequence(prefix) == 3


def test_stored_barcode_recomputes_from_roll_fields(receive):
    for roll in receive([500, 750, 1200]):
        assert roll.barcode == barcode_for_roll(roll)
        assert verify_barcode(roll.barcode)
        assert parse_barcode(roll.barcode)["checksum"] == roll.barcode[-4:]


def test_qr_payload_describes_roll(receive, sku):
    [roll] = receive([1000], sku=sku, landed_cost_per_meter="2.5")

    assert roll.qr_payload == {
        "roll_id": roll.id,
        "sku_id": sku.id,
        "batch_id": roll.batch_id,
        "supplier_id": roll.supplier_id,
        "width_in": 44,
        "length_m": 1000.0,
        "landed_cost": 2500.0,
    }
