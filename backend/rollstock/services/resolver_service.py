# Overview: Unmapped-roll resolver; classifies rolls received without a catalog identity.

"""
Resolver Service

WHY: Goods often arrive before anyone has decided which catalog SKU they
are. Those rolls are received Unmapped and wait here.

RESOLUTION (per roll):
1. GSM and Quality looked up by name; the mapping's hints win, the roll's
   own descriptors are the fallback
2. Product by (category, GSM, quality) must already exist
3. SKU for (product, roll width) is created when missing
4. Roll goes Unmapped -> Mapped with the SKU attached

Best effort: every mapping is its own atomic unit. A bad mapping is
reported in "failed" and never blocks the others.
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFoundError, RollstockError, ValidationError
from ..extensions import db
from ..models import Category, Gsm, Product, Quality, Roll, Sku
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import LifecycleEvent, apply_transition, next_status


_CODE_CLEAN = re.compile(r"[^A-Z0-9]")

# A concurrent resolver created the same SKU, or took the same generated code
SKU_TARGETS = ("skus.product_id", "uq_skus_product_width", "skus.sku_code")


def _code_part(value, length: int | None = None) -> str:
    cleaned = _CODE_CLEAN.sub("", str(value or "").upper())
    return cleaned[:length] if length else cleaned


def make_sku_code(category: Category, gsm: Gsm, quality: Quality, width_inches: int) -> str:
    """CAT-GSM-QUAL4-WIDTH, e.g. SUB-55-PREM-44."""
    category_code = _code_part(category.code) or _code_part(category.name, 3)
    return f"{category_code}-{_code_part(gsm.name)}-{_code_part(quality.name, 4)}-{width_inches}"


def next_sku_code(base_code: str) -> str:
    """
    base_code if free, else the first free base_code-N (N >= 2).

    Qualities sharing a 4-letter prefix ("Premium", "Premium Gold") produce
    the same base code for the same category, GSM and width.
    """
    taken = {
        code for (code,) in db.session.query(Sku.sku_code)
        .filter(or_(Sku.sku_code == base_code, Sku.sku_code.like(f"{base_code}-%")))
        .all()
    }
    if base_code not in taken:
        return base_code
    suffix = 2
    while f"{base_code}-{suffix}" in taken:
        suffix += 1
    return f"{base_code}-{suffix}"


def _find_category(mapping: dict) -> Category:
    category_id = mapping.get("category_id")
    if category_id is not None:
        category = db.session.query(Category).filter_by(id=category_id).first()
        if category is None:
            raise NotFoundError("Category", category_id)
        return category
    name = (mapping.get("category_name") or "").strip()
    if not name:
        raise ValidationError("category_id or category_name is required", field="category_id")
    category = db.session.query(Category).filter_by(name=name).first()
    if category is None:
        raise NotFoundError("Category", name)
    return category


def get_or_create_sku(product: Product, width_inches: int) -> Sku:
    sku = db.session.query(Sku).filter_by(product_id=product.id, width_inches=width_inches).first()
    if sku is not None:
        return sku
    base_code = make_sku_code(product.category, product.gsm, product.quality, width_inches)
    sku = Sku(
        product_id=product.id,
        sku_code=next_sku_code(base_code),
        width_inches=width_inches,
        category_name=product.category.name,
        gsm=product.gsm.name,
        quality_name=product.quality.name,
    )
    db.session.add(sku)
    db.session.flush()
    current_app.logger.info("Created SKU %s for product %s", sku.sku_code, product.id)
    return sku


def resolve_one(mapping: dict, actor_id=None) -> dict:
    """Classify a single Unmapped roll in its own unit."""
    roll_id = mapping.get("roll_id")
    if roll_id is None:
        raise ValidationError("roll_id is required", field="roll_id")

    def _op():
        roll = lock_for_update(db.session.query(Roll).filter_by(id=roll_id)).first()
        if roll is None:
            raise NotFoundError("Roll", roll_id)
        next_status(roll, LifecycleEvent.CLASSIFY)

        gsm_name = (str(mapping.get("gsm") or "").strip()) or roll.gsm
        quality_name = (mapping.get("quality_name") or "").strip() or roll.quality_name
        gsm = db.session.query(Gsm).filter_by(name=gsm_name).first() if gsm_name else None
        quality = db.session.query(Quality).filter_by(name=quality_name).first() if quality_name else None
        if gsm is None or quality is None:
            raise NotFoundError("Gsm/Quality", f"{gsm_name}/{quality_name}")

        category = _find_category(mapping)
        product = (
            db.session.query(Product)
            .filter_by(category_id=category.id, gsm_id=gsm.id, quality_id=quality.id)
            .first()
        )
        if product is None:
            raise NotFoundError("Product", f"{category.name}/{gsm.name}/{quality.name}")

        sku = get_or_create_sku(product, roll.width_inches)
        apply_transition(roll, LifecycleEvent.CLASSIFY, actor_id=actor_id, sku_id=sku.id,
                         reference=sku.sku_code)
        roll.category_name = sku.category_name
        roll.gsm = sku.gsm
        roll.quality_name = sku.quality_name
        db.session.commit()
        return {"roll_id": roll.id, "barcode": roll.barcode, "sku_id": sku.id, "sku_code": sku.sku_code}

    return run_with_retry(_op, retry_on_unique=SKU_TARGETS)


def resolve_unmapped(mappings, actor_id=None) -> dict:
    """
    Classify many Unmapped rolls, best effort per item.

    Args:
        mappings: [{roll_id, gsm?, quality_name?, category_id | category_name}]
        actor_id: Who classified the rolls

    Returns:
        {"success": [{roll_id, barcode, sku_id, sku_code}],
         "failed":  [{roll_id, code, error}]}
    """
    if mappings is None or isinstance(mappings, (str, dict)):
        raise ValidationError("mappings must be a list", field="mappings")

    results = {"success": [], "failed": []}
    for mapping in mappings:
        if not isinstance(mapping, dict):
            results["failed"].append({"roll_id": None, "code": ValidationError.code,
                                      "error": "mapping must be an object"})
            continue
        try:
            results["success"].append(resolve_one(mapping, actor_id=actor_id))
        except RollstockError as exc:
            current_app.logger.warning("Could not resolve roll %s: %s", mapping.get("roll_id"), exc.message)
            results["failed"].append({"roll_id": mapping.get("roll_id"), "code": exc.code, "error": exc.message})

    current_app.logger.info(
        "Resolved %d unmapped roll(s), %d failed", len(results["success"]), len(results["failed"])
    )
    return results
