# Overview: Catalog reference data bootstrap; categories, GSMs, qualities, products and suppliers.

from __future__ import annotations

from ..errors import ValidationError
from ..extensions import db
from ..models import Category, Gsm, Product, Quality, Supplier
from ..validation import optional_text


DEFAULT_CATEGORIES = (("Sublimation", "SUB"), ("Butter", "BTR"))
DEFAULT_GSMS = (30, 35, 45, 55, 65, 80)
DEFAULT_QUALITIES = ("Premium", "Standard", "Economy", "Custom")


def _get_or_create(model, defaults=None, **lookup):
    instance = db.session.query(model).filter_by(**lookup).first()
    if instance is not None:
        return instance, False
    instance = model(**lookup, **(defaults or {}))
    db.session.add(instance)
    db.session.flush()
    return instance, True


def seed_catalog() -> dict:
    """
    Idempotently create the default reference data and one product per
    (category, GSM, quality) combination.

    Returns counts of rows created per table. Commits.
    """
    created = {"categories": 0, "gsms": 0, "qualities": 0, "products": 0}

    categories = []
    for name, code in DEFAULT_CATEGORIES:
        category, new = _get_or_create(Category, defaults={"code": code}, name=name)
        categories.append(category)
        created["categories"] += int(new)

    gsms = []
    for value in DEFAULT_GSMS:
        gsm, new = _get_or_create(Gsm, defaults={"value": value}, name=str(value))
        gsms.append(gsm)
        created["gsms"] += int(new)

    qualities = []
    for name in DEFAULT_QUALITIES:
        quality, new = _get_or_create(Quality, name=name)
        qualities.append(quality)
        created["qualities"] += int(new)

    for category in categories:
        for gsm in gsms:
            for quality in qualities:
                _, new = _get_or_create(
                    Product,
                    defaults={"name": f"{category.name} {gsm.name}gsm {quality.name}"},
                    category_id=category.id,
                    gsm_id=gsm.id,
                    quality_id=quality.id,
                )
                created["products"] += int(new)

    db.session.commit()
    return created


def create_supplier(name: str, code: str | None = None) -> Supplier:
    name = optional_text(name, "name")
    if name is None:
        raise ValidationError("Supplier name is required", field="name")
    code = optional_text(code, "code", max_length=32)
    if code is not None:
        code = code.upper()
        if db.session.query(Supplier).filter_by(code=code).first():
            raise ValidationError(f"Supplier code {code} already exists", field="code")
    supplier = Supplier(name=name, code=code, is_active=True)
    db.session.add(supplier)
    db.session.commit()
    return supplier
