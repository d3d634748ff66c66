"""
Unmapped-roll resolver tests.
"""

import pytest

from rollstock.errors import ValidationError
from rollstock.models import Category, Product, Quality, Roll, RollStatus, Sku
from rollstock.services import roll_service
from rollstock.services.resolver_service import make_sku_code, resolve_unmapped


def test_resolve_creates_missing_sku(db_session, receive, catalog):
    [roll] = receive([1000], width=63, gsm="55", quality_name="Premium")

    result = resolve_unmapped([{"roll_id": roll.id, "category_id": catalog["category"].id}], actor_id="qa")

    assert result["failed"] == []
    [success] = result["success"]
    assert success["sku_code"] == "SUB-55-PREM-63"

    sku = db_session.query(Sku).filter_by(id=success["sku_id"]).one()
    assert sku.product_id == catalog["product"].id
    assert sku.width_inches == 63

    roll = roll_service.get_roll(roll.id)
    assert roll.status == RollStatus.MAPPED
    assert roll.sku_id == sku.id
    assert roll.qr_payload["sku_id"] == sku.id
    assert roll.mapped_at is not None
    assert roll.category_name == "Sublimation"


def test_resolve_reuses_existing_sku(db_session, receive, catalog, sku):
    [roll] = receive([1000], gsm="55", quality_name="Premium")

    result = resolve_unmapped([{"roll_id": roll.id, "category_name": "Sublimation"}])

    assert result["success"][0]["sku_id"] == sku.id
    assert db_session.query(Sku).count() == 1


def test_mapping_hints_override_roll_descriptors(receive, catalog):
    [roll] = receive([1000], gsm="unknown", quality_name="n/a")

    result = resolve_unmapped([{
        "roll_id": roll.id,
        "gsm": "55",
        "quality_name": "Premium",
        "category_id": catalog["category"].id,
    }])

    assert len(result["success"]) == 1
    roll = roll_service.get_roll(roll.id)
    assert (roll.gsm, roll.quality_name) == ("55", "Premium")


def test_resolve_is_best_effort_per_item(db_session, receive, catalog, sku):
    good, no_quality, no_product = receive([1000, 1000, 1000], gsm="55", quality_name="Premium")
    mapped = receive([1000], sku=sku)[0]
    db_session.add(Category(name="Butter", code="BTR"))
    db_session.commit()

    result = resolve_unmapped([
        {"roll_id": good.id, "category_id": catalog["category"].id},
        {"roll_id": no_quality.id, "quality_name": "Economy", "category_id": catalog["category"].id},
        {"roll_id": no_product.id, "category_name": "Butter"},
        {"roll_id": mapped.id, "category_id": catalog["category"].id},
        {"roll_id": 999999, "category_id": catalog["category"].id},
        {"roll_id": good.id},
        "not a mapping",
    ])

    assert [s["roll_id"] for s in result["success"]] == [good.id]
    failed = {(f["roll_id"], f["code"]) for f in result["failed"]}
    assert (no_quality.id, "NOT_FOUND") in failed
    assert (no_product.id, "NOT_FOUND") in failed
    assert (mapped.id, "STATE_CONFLICT") in failed
    assert (999999, "NOT_FOUND") in failed
    assert (None, "VALIDATION_ERROR") in failed
    assert len(result["failed"]) == 6

    statuses = {r.id: r.status for r in db_session.query(Roll).all()}
    assert statuses[good.id] == RollStatus.MAPPED
    assert statuses[no_quality.id] == RollStatus.UNMAPPED
    assert statuses[no_product.id] == RollStatus.UNMAPPED


def test_resolve_requires_list():
    with pytest.raises(ValidationError):
        resolve_unmapped({"roll_id": 1})


def test_sku_code_format(catalog):
    code = make_sku_code(catalog["category"], catalog["gsm"], catalog["quality"], 44)
    assert code == "SUB-55-PREM-44"


def test_qualities_sharing_a_prefix_get_distinct_sku_codes(db_session, receive, catalog, sku):
    gold = Quality(name="Premium Gold")
    db_session.add(gold)
    db_session.flush()
    db_session.add(Product(category_id=catalog["category"].id, gsm_id=catalog["gsm"].id,
                           quality_id=gold.id, name="Sublimation 55gsm Premium Gold"))
    db_session.commit()
    [roll] = receive([1000], gsm="55", quality_name="Premium Gold")

    result = resolve_unmapped([{"roll_id": roll.id, "category_id": catalog["category"].id}])

    assert result["failed"] == []
    [success] = result["success"]
    assert success["sku_code"] == "SUB-55-PREM-44-2"
    assert success["sku_id"] != sku.id
    assert roll_service.get_roll(roll.id).quality_name == "Premium Gold"
    assert db_session.query(Sku).filter_by(sku_code="SUB-55-PREM-44").one().id == sku.id
