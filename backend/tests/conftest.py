"""
Pytest fixtures for roll inventory tests.

Provides test database setup, catalog/supplier fixtures and a receipt helper.
"""

from datetime import datetime, timedelta

import pytest
from rollstock import create_app
from rollstock.extensions import db
from rollstock.models import Batch, Category, Gsm, Product, PurchaseInvoice, Quality, Sku, Supplier
from rollstock.services import roll_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Acme Mills", code="SUP-0007", is_active=True)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def other_supplier(db_session):
    supplier = Supplier(name="Beta Papers", code="SUP-0012", is_active=True)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def invoice(db_session, supplier):
    invoice = PurchaseInvoice(invoice_number="PI-2410-001", supplier_id=supplier.id)
    db_session.add(invoice)
    db_session.commit()
    return invoice


@pytest.fixture(scope='function')
def batch(db_session, supplier, invoice):
    batch = Batch(
        batch_code="BATCH-2410-003",
        supplier_id=supplier.id,
        purchase_invoice_id=invoice.id,
        received_at=datetime(2024, 10, 1, 9, 0, 0),
    )
    db_session.add(batch)
    db_session.commit()
    return batch


@pytest.fixture(scope='function')
def catalog(db_session):
    """Sublimation / 55 GSM / Premium product, no SKUs yet."""
    category = Category(name="Sublimation", code="SUB")
    gsm = Gsm(name="55", value=55)
    quality = Quality(name="Premium")
    db_session.add_all([category, gsm, quality])
    db_session.flush()
    product = Product(category_id=category.id, gsm_id=gsm.id, quality_id=quality.id,
                      name="Sublimation 55gsm Premium")
    db_session.add(product)
    db_session.commit()
    return {"category": category, "gsm": gsm, "quality": quality, "product": product}


@pytest.fixture(scope='function')
def sku(db_session, catalog):
    sku = Sku(
        product_id=catalog["product"].id,
        sku_code="SUB-55-PREM-44",
        width_inches=44,
        category_name="Sublimation",
        gsm="55",
        quality_name="Premium",
    )
    db_session.add(sku)
    db_session.commit()
    return sku


@pytest.fixture(scope='function')
def receive(db_session, supplier, batch):
    """
    Receive rolls into the default batch.

    receive(lengths, sku=None, start=..., **item_fields) -> list[Roll]
    Rolls are received one hour apart, in the order given.
    """
    def _receive(lengths, sku=None, start=datetime(2024, 10, 2, 8, 0, 0), width=44, **fields):
        items = []
        for i, length in enumerate(lengths):
            item = {
                "width_inches": width,
                "original_length": length,
                "received_at": start + timedelta(hours=i),
                **fields,
            }
            if sku is not None:
                item["sku_id"] = sku.id
            items.append(item)
        return roll_service.create_rolls(supplier.id, batch.id, items, actor_id="receiver")

    return _receive
