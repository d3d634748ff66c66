"""
FIFO allocation tests.
"""

from datetime import datetime

import pytest

from rollstock.errors import InsufficientStockError, NotFoundError, ValidationError
from rollstock.models import Roll, RollStatus
from rollstock.services import allocation_service


def test_first_in_first_out_scenario(receive, sku):
    """Two 1000 m rolls A then B: A, then B, then insufficient stock."""
    roll_a, roll_b = receive([1000, 1000], sku=sku)

    first = allocation_service.allocate(sku.id, 1, 500, "SO-1/1", actor_id="sales")
    assert [r.id for r in first] == [roll_a.id]

    second = allocation_service.allocate(sku.id, 1, 500, "SO-1/2", actor_id="sales")
    assert [r.id for r in second] == [roll_b.id]

    with pytest.raises(InsufficientStockError) as exc_info:
        allocation_service.allocate(sku.id, 1, 500, "SO-1/3")
    assert exc_info.value.available == 0
    assert exc_info.value.required == 1


def test_fifo_prefers_oldest_received(receive, sku):
    newest = receive([1000], sku=sku, start=datetime(2024, 10, 20, 8, 0, 0))
    oldest = receive([1000], sku=sku, start=datetime(2024, 10, 3, 8, 0, 0))
    middle = receive([1000], sku=sku, start=datetime(2024, 10, 10, 8, 0, 0))

    preview = allocation_service.find_candidates(sku.id, limit=2)
    assert [r.id for r in preview] == [oldest[0].id, middle[0].id]

    rolls = allocation_service.allocate(sku.id, 2, 0, "SO-2/1")
    assert [r.id for r in rolls] == [oldest[0].id, middle[0].id]
    assert newest[0].status == RollStatus.MAPPED


def test_min_length_excludes_short_rolls(receive, sku):
    short, long_ = receive([300, 900], sku=sku)

    [roll] = allocation_service.allocate(sku.id, 1, 500, "SO-3/1")
    assert roll.id == long_.id
    assert allocation_service.available_count(sku.id, 0) == 1


def test_allocation_sets_reference_and_status(receive, sku):
    receive([1000, 1000], sku=sku)
    rolls = allocation_service.allocate(sku.id, 2, 0, "SO-4/1", actor_id=11)

    for roll in rolls:
        assert roll.status == RollStatus.ALLOCATED
        assert roll.allocation_ref == "SO-4/1"
        assert roll.allocated_by == "11"
    assert {r.id for r in allocation_service.get_allocated_rolls("SO-4/1")} == {r.id for r in rolls}


def test_insufficient_stock_leaves_pool_unchanged(db_session, receive, sku):
    receive([1000, 1000], sku=sku)

    with pytest.raises(InsufficientStockError) as exc_info:
        allocation_service.allocate(sku.id, 3, 0, "SO-5/1")
    assert exc_info.value.available == 2

    statuses = {r.status for r in db_session.query(Roll).all()}
    assert statuses == {RollStatus.MAPPED}
    assert db_session.query(Roll).filter(Roll.allocation_ref.isnot(None)).count() == 0


def test_unmapped_and_other_sku_rolls_are_not_candidates(receive, sku):
    receive([1000])
    with pytest.raises(InsufficientStockError):
        allocation_service.allocate(sku.id, 1, 0, "SO-6/1")


def test_deallocate_restores_mapped(receive, sku):
    receive([1000, 1000, 1000], sku=sku)
    allocation_service.allocate(sku.id, 2, 0, "SO-7/1")
    allocation_service.allocate(sku.id, 1, 0, "SO-7/2")

    released = allocation_service.deallocate("SO-7/1", actor_id="sales")
    assert released == 2
    assert allocation_service.get_allocated_rolls("SO-7/1") == []
    assert len(allocation_service.get_allocated_rolls("SO-7/2")) == 1
    assert allocation_service.deallocate("SO-7/1") == 0

    # Released rolls go back into the FIFO pool
    assert len(allocation_service.allocate(sku.id, 2, 0, "SO-7/3")) == 2


@pytest.mark.parametrize("count,min_length,ref", [
    (0, 0, "SO-8/1"),
    (-1, 0, "SO-8/1"),
    (1.5, 0, "SO-8/1"),
    (True, 0, "SO-8/1"),
    (1, -10, "SO-8/1"),
    (1, 0, "   "),
])
def test_allocate_validates_input(receive, sku, count, min_length, ref):
    receive([1000], sku=sku)
    with pytest.raises(ValidationError):
        allocation_service.allocate(sku.id, count, min_length, ref)


def test_allocate_unknown_sku(db_session):
    with pytest.raises(NotFoundError):
        allocation_service.allocate(9999, 1, 0, "SO-9/1")
