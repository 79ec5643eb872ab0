"""
Pytest fixtures for lotkeeper backend tests.

Provides an in-memory database, the Flask test client, and small factories
for the commerce mirror (variants, orders, stock) and for lots.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from lotkeeper import create_app
from lotkeeper.extensions import db
from lotkeeper.models import (
    InventoryItem,
    InventoryLevel,
    Order,
    OrderLineItem,
    Payment,
    Price,
    ProductVariant,
    StockLocation,
    VariantBatch,
    VariantBatchAllocation,
    VariantInventoryItem,
)


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOG_LEVEL': 'DEBUG',
    'AT_PRICE_CUSTOMER_GROUP_ID': 'cusgroup_at_price',
    'AT_PRICE_LIST_HANDLE': 'at-price',
    'DEFAULT_CURRENCY_CODE': 'usd',
    'COA_STORAGE_ENDPOINT': 'https://minio.example.com/',
    'COA_STORAGE_BUCKET': 'coa-docs',
    'BACKEND_PUBLIC_URL': 'https://api.example.com/',
    'ALLOCATION_RETRY_ATTEMPTS': 2,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


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
def make_variant(db_session):
    """
    Create a product variant, optionally linked to an inventory item.

    The inventory item is created on first use; several variants may share one.
    """
    def _make(
        variant_id,
        *,
        inventory_item_id=None,
        required_quantity=1,
        manage_inventory=True,
        price_set_id=None,
        title=None,
    ):
        variant = ProductVariant(
            id=variant_id,
            title=title or variant_id,
            sku=f"SKU-{variant_id}",
            manage_inventory=manage_inventory,
            price_set_id=price_set_id,
        )
        db_session.add(variant)
        if inventory_item_id:
            if db_session.get(InventoryItem, inventory_item_id) is None:
                db_session.add(InventoryItem(id=inventory_item_id, sku=f"INV-{inventory_item_id}"))
            db_session.flush()
            db_session.add(
                VariantInventoryItem(
                    variant_id=variant_id,
                    inventory_item_id=inventory_item_id,
                    required_quantity=required_quantity,
                )
            )
        db_session.commit()
        return variant

    return _make


@pytest.fixture(scope='function')
def make_batch(db_session):
    def _make(
        variant_id,
        lot_number,
        quantity,
        *,
        created_at=None,
        supplier_cost_per_vial=None,
        testing_cost=None,
        coa_file_key=None,
    ):
        batch = VariantBatch(
            variant_id=variant_id,
            lot_number=lot_number,
            quantity=quantity,
            supplier_cost_per_vial=Decimal(str(supplier_cost_per_vial)) if supplier_cost_per_vial is not None else None,
            testing_cost=Decimal(str(testing_cost)) if testing_cost is not None else None,
            coa_file_key=coa_file_key,
        )
        if created_at is not None:
            batch.created_at = created_at
        db_session.add(batch)
        db_session.commit()
        return batch

    return _make


@pytest.fixture(scope='function')
def make_allocation(db_session):
    def _make(batch, line_item_id, quantity, *, order_id=None):
        allocation = VariantBatchAllocation(
            variant_batch_id=batch.id,
            order_line_item_id=line_item_id,
            quantity=quantity,
            metadata_json={"auto": True, "order_id": order_id} if order_id else None,
        )
        db_session.add(allocation)
        db_session.commit()
        return allocation

    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Create an order; items are (line_item_id, variant_id, quantity) tuples."""
    def _make(order_id, items=(), *, customer_id=None, email=None):
        order = Order(id=order_id, display_id=1, status="pending", email=email, customer_id=customer_id)
        db_session.add(order)
        db_session.flush()
        for position, (line_item_id, variant_id, quantity) in enumerate(items):
            db_session.add(
                OrderLineItem(
                    id=line_item_id,
                    order_id=order_id,
                    position=position,
                    variant_id=variant_id,
                    quantity=quantity,
                    title=f"Item {line_item_id}",
                    product_title="Test Product",
                    variant_title=f"Variant {variant_id}",
                )
            )
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def make_payment(db_session):
    def _make(payment_id, *, order_id=None, metadata=None):
        payment = Payment(id=payment_id, order_id=order_id, metadata_json=metadata)
        db_session.add(payment)
        db_session.commit()
        return payment

    return _make


@pytest.fixture(scope='function')
def make_location(db_session):
    def _make(location_id, *, name=None, created_at=None):
        location = StockLocation(id=location_id, name=name or location_id)
        if created_at is not None:
            location.created_at = created_at
        db_session.add(location)
        db_session.commit()
        return location

    return _make


@pytest.fixture(scope='function')
def make_level(db_session):
    def _make(inventory_item_id, location_id, stocked_quantity):
        level = InventoryLevel(
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            stocked_quantity=stocked_quantity,
        )
        db_session.add(level)
        db_session.commit()
        return level

    return _make


@pytest.fixture(scope='function')
def make_base_price(db_session):
    def _make(price_set_id, amount, *, currency_code='usd'):
        price = Price(price_set_id=price_set_id, price_list_id=None, currency_code=currency_code, amount=amount)
        db_session.add(price)
        db_session.commit()
        return price

    return _make


def day(n: int) -> datetime:
    """Deterministic creation times for FIFO ordering."""
    return datetime(2026, 1, n, 12, 0, 0)


def level_quantities(inventory_item_id: str) -> dict:
    rows = db.session.query(InventoryLevel).filter_by(inventory_item_id=inventory_item_id).all()
    return {row.location_id: row.stocked_quantity for row in rows}
