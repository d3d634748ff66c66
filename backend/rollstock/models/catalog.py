from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

# Widths a roll (and therefore a SKU) can be cut to, in inches
WIDTH_OPTIONS = (24, 36, 44, 63)


class Supplier(db.Model):
    """Supplier reference record (read-only to the roll engine)."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    # e.g. "SUP-0007"; the suffix after the last dash goes into roll numbers
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    code = db.Column(db.String(8), nullable=True)  # SKU code prefix, e.g. "SUB"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "code": self.code}


class Gsm(db.Model):
    """Grams per square meter grade, looked up by name (e.g. "55")."""
    __tablename__ = "gsms"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, unique=True)
    value = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "value": self.value}


class Quality(db.Model):
    __tablename__ = "qualities"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Product(db.Model):
    """
    Catalog product: one (category, GSM, quality) combination.

    SKUs hang off a product, one per width.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("category_id", "gsm_id", "quality_id", name="uq_products_category_gsm_quality"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    gsm_id = db.Column(db.Integer, db.ForeignKey("gsms.id"), nullable=False, index=True)
    quality_id = db.Column(db.Integer, db.ForeignKey("qualities.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)

    category = db.relationship("Category")
    gsm = db.relationship("Gsm")
    quality = db.relationship("Quality")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "gsm_id": self.gsm_id,
            "quality_id": self.quality_id,
            "name": self.name,
        }


class Sku(db.Model):
    """Sellable catalog unit: a product at one width."""
    __tablename__ = "skus"
    __table_args__ = (
        db.UniqueConstraint("product_id", "width_inches", name="uq_skus_product_width"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku_code = db.Column(db.String(64), nullable=False, unique=True)
    width_inches = db.Column(db.Integer, nullable=False)

    # Denormalized so rolls can copy descriptors without walking the catalog
    category_name = db.Column(db.String(64), nullable=False)
    gsm = db.Column(db.String(32), nullable=False)
    quality_name = db.Column(db.String(64), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("skus", lazy=True))

    def __repr__(self) -> str:
        return f"<Sku id={self.id} sku_code={self.sku_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku_code": self.sku_code,
            "width_inches": self.width_inches,
            "category_name": self.category_name,
            "gsm": self.gsm,
            "quality_name": self.quality_name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
