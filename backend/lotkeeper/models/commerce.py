from __future__ import annotations

from ..extensions import db
from lotkeeper.time_utils import to_utc_z

"""
Commerce platform mirror.

These tables stand in for the collaborator modules this service talks to
(orders, product variants, inventory levels, pricing). Ids are the platform's
string ids. The core only reaches them through the ports in
services/commerce_gateway.py, never by importing these models directly.
"""


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.String(64), primary_key=True)
    display_id = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(32), nullable=False, default="pending")
    email = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "OrderLineItem",
        back_populates="order",
        order_by="OrderLineItem.position",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_id": self.display_id,
            "status": self.status,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }


class OrderLineItem(db.Model):
    __tablename__ = "order_line_items"

    id = db.Column(db.String(64), primary_key=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    variant_id = db.Column(db.String(64), nullable=True, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    title = db.Column(db.String(255), nullable=True)
    product_title = db.Column(db.String(255), nullable=True)
    variant_title = db.Column(db.String(255), nullable=True)
    variant_sku = db.Column(db.String(128), nullable=True)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "title": self.title,
            "product_title": self.product_title,
            "variant_title": self.variant_title,
            "variant_sku": self.variant_sku,
        }


class Payment(db.Model):
    """Captured payment. Order linkage is either direct or carried in metadata."""
    __tablename__ = "payments"

    id = db.Column(db.String(64), primary_key=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=True, index=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class ProductVariant(db.Model):
    __tablename__ = "product_variants"

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(255), nullable=True)
    sku = db.Column(db.String(128), nullable=True)
    manage_inventory = db.Column(db.Boolean, nullable=False, default=True)
    price_set_id = db.Column(db.String(64), nullable=True, index=True)

    inventory_links = db.relationship("VariantInventoryItem", back_populates="variant", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "sku": self.sku,
            "manage_inventory": self.manage_inventory,
        }


class InventoryItem(db.Model):
    __tablename__ = "inventory_items"

    id = db.Column(db.String(64), primary_key=True)
    sku = db.Column(db.String(128), nullable=True)
    title = db.Column(db.String(255), nullable=True)


class VariantInventoryItem(db.Model):
    """Variant -> inventory item link. Several variants may share one stock-keeping record."""
    __tablename__ = "variant_inventory_items"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "inventory_item_id", name="uq_variant_inventory_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.String(64), db.ForeignKey("product_variants.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.String(64), db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    required_quantity = db.Column(db.Integer, nullable=True, default=1)

    variant = db.relationship("ProductVariant", back_populates="inventory_links")


class StockLocation(db.Model):
    __tablename__ = "stock_locations"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class InventoryLevel(db.Model):
    __tablename__ = "inventory_levels"
    __table_args__ = (
        db.UniqueConstraint("inventory_item_id", "location_id", name="uq_inventory_levels_item_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.String(64), db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    location_id = db.Column(db.String(64), db.ForeignKey("stock_locations.id"), nullable=False)
    stocked_quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )


class PriceList(db.Model):
    __tablename__ = "price_lists"

    id = db.Column(db.String(64), primary_key=True)
    handle = db.Column(db.String(64), nullable=False, unique=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")
    type = db.Column(db.String(16), nullable=False, default="override")

    rules = db.relationship("PriceListRule", back_populates="price_list", cascade="all, delete-orphan", lazy=True)


class PriceListRule(db.Model):
    __tablename__ = "price_list_rules"
    __table_args__ = (
        db.UniqueConstraint("price_list_id", "attribute", "value", name="uq_price_list_rules"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_list_id = db.Column(db.String(64), db.ForeignKey("price_lists.id"), nullable=False, index=True)
    attribute = db.Column(db.String(64), nullable=False)
    value = db.Column(db.String(255), nullable=False)

    price_list = db.relationship("PriceList", back_populates="rules")


class Price(db.Model):
    """Amounts are in minor currency units. price_list_id NULL marks the base price."""
    __tablename__ = "prices"
    __table_args__ = (
        db.Index("ix_prices_set_list_currency", "price_set_id", "price_list_id", "currency_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_set_id = db.Column(db.String(64), nullable=False)
    price_list_id = db.Column(db.String(64), db.ForeignKey("price_lists.id"), nullable=True)
    currency_code = db.Column(db.String(3), nullable=False)
    amount = db.Column(db.Integer, nullable=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )


class StoreSetting(db.Model):
    """Store-level key/value settings (default currency, default stock location)."""
    __tablename__ = "store_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True)
    value = db.Column(db.Text, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
