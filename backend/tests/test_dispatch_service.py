"""
Dispatch and return workflow tests.
"""

from decimal import Decimal

import pytest

from rollstock.errors import NotFoundError, StateConflictError, ValidationError
from rollstock.models import Roll, RollStatus
from rollstock.services import allocation_service, dispatch_service
from rollstock.services.identity_service import verify_barcode
from rollstock.services.ledger_service import list_roll_events


@pytest.fixture
def allocated(receive, sku):
    """Three allocated 1000 m rolls on SO-1/1."""
    receive([1000, 1000, 1000], sku=sku, base_cost_per_meter="4", landed_cost_per_meter="0.5")
    return allocation_service.allocate(sku.id, 3, 0, "SO-1/1")


def _dispatched(allocated):
    roll = allocated[0]
    dispatch_service.dispatch("DC-100", [roll.id], actor_id="dispatcher")
    return roll


def test_dispatch_moves_all_rolls(allocated):
    ids = [r.id for r in allocated]
    rolls = dispatch_service.dispatch("DC-100", ids + [ids[0]], actor_id="dispatcher")

    assert [r.id for r in rolls] == ids
    for roll in rolls:
        assert roll.status == RollStatus.DISPATCHED
        assert roll.dispatch_ref == "DC-100"
        assert roll.dispatched_by == "dispatcher"
        assert roll.allocation_ref == "SO-1/1"


def test_dispatch_is_all_or_nothing_on_state_conflict(db_session, allocated, receive, sku):
    [mapped] = receive([1000], sku=sku)
    ids = [r.id for r in allocated] + [mapped.id]

    with pytest.raises(StateConflictError) as exc_info:
        dispatch_service.dispatch("DC-101", ids)
    assert exc_info.value.roll_id == mapped.id
    assert exc_info.value.actual == "Mapped"

    assert db_session.query(Roll).filter_by(status=RollStatus.DISPATCHED).count() == 0
    assert db_session.query(Roll).filter(Roll.dispatch_ref.isnot(None)).count() == 0


def test_dispatch_is_all_or_nothing_on_missing_roll(db_session, allocated):
    with pytest.raises(NotFoundError):
        dispatch_service.dispatch("DC-102", [allocated[0].id, 999999])
    assert db_session.query(Roll).filter_by(status=RollStatus.DISPATCHED).count() == 0


def test_dispatch_validates_input(allocated):
    with pytest.raises(ValidationError):
        dispatch_service.dispatch("DC-103", [])
    with pytest.raises(ValidationError):
        dispatch_service.dispatch("", [allocated[0].id])


def test_return_with_usable_remainder_spawns_roll(allocated):
    parent = _dispatched(allocated)

    result = dispatch_service.return_roll(parent.id, "350", "Customer over-ordered", actor_id="stores")
    retired = result["retired_roll"]
    spawned = result["spawned_roll"]

    assert retired.status == RollStatus.RETURNED
    assert retired.current_length == 0
    assert retired.original_length == Decimal("1000")
    assert retired.return_reason == "Customer over-ordered"
    assert retired.qr_payload["length_m"] == 0.0

    assert spawned.status == RollStatus.MAPPED
    assert spawned.parent_roll_id == retired.id
    assert spawned.current_length == Decimal("350")
    assert spawned.original_length == Decimal("350")
    assert spawned.sku_id == retired.sku_id
    assert spawned.batch_id == retired.batch_id
    assert spawned.supplier_id == retired.supplier_id
    assert spawned.purchase_invoice_id == retired.purchase_invoice_id
    assert spawned.width_inches == retired.width_inches
    assert spawned.base_cost_per_meter == retired.base_cost_per_meter
    assert spawned.landed_cost_per_meter == retired.landed_cost_per_meter
    assert spawned.total_landed_cost == Decimal("175.00")
    assert spawned.roll_number != retired.roll_number
    assert spawned.barcode != retired.barcode
    assert verify_barcode(spawned.barcode)
    assert spawned.qr_payload["length_m"] == 350.0
    assert spawned.qr_payload["sku_id"] == retired.sku_id

    # Length conservation
    assert retired.current_length + spawned.current_length <= retired.original_length

    assert [e.event_type for e in list_roll_events(spawned.id)] == ["roll.spawned"]
    assert list_roll_events(retired.id)[-1].event_type == "roll.return"


def test_spawned_roll_is_allocatable(allocated, sku):
    parent = _dispatched(allocated)
    spawned = dispatch_service.return_roll(parent.id, 600, "Partial return")["spawned_roll"]

    [roll] = allocation_service.allocate(sku.id, 1, 500, "SO-2/1")
    assert roll.id == spawned.id


@pytest.mark.parametrize("remaining", [0, 50, 100])
def test_return_at_or_below_threshold_spawns_nothing(allocated, remaining):
    parent = _dispatched(allocated)
    result = dispatch_service.return_roll(parent.id, remaining, "Offcut")
    assert result["spawned_roll"] is None
    assert result["retired_roll"].status == RollStatus.RETURNED


def test_return_threshold_is_configurable(app, allocated):
    parent = _dispatched(allocated)
    app.config["MIN_USABLE_RETURN_LENGTH"] = 20
    try:
        result = dispatch_service.return_roll(parent.id, 50, "Offcut")
    finally:
        app.config["MIN_USABLE_RETURN_LENGTH"] = 100
    assert result["spawned_roll"] is not None


def test_return_rejects_remainder_longer_than_roll(db_session, allocated):
    parent = _dispatched(allocated)
    with pytest.raises(ValidationError):
        dispatch_service.return_roll(parent.id, 1000.01, "Too long")
    assert db_session.query(Roll).filter_by(id=parent.id).one().status == RollStatus.DISPATCHED


def test_return_requires_dispatched_roll(allocated):
    with pytest.raises(StateConflictError):
        dispatch_service.return_roll(allocated[0].id, 100, "Never shipped")


def test_returned_roll_is_terminal(allocated):
    parent = _dispatched(allocated)
    dispatch_service.return_roll(parent.id, 0, "Rejected")
    with pytest.raises(StateConflictError):
        dispatch_service.return_roll(parent.id, 0, "Again")
