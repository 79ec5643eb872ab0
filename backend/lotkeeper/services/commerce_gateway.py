# Overview: Ports to the commerce platform (orders, catalog, inventory levels, pricing)
# and their SQLAlchemy implementations over the mirror tables.

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from flask import current_app

from ..extensions import db
from ..models import (
    Order, OrderLineItem, Payment,
    ProductVariant, InventoryItem, VariantInventoryItem,
    StockLocation, InventoryLevel,
    PriceList, PriceListRule, Price,
    StoreSetting,
)

CUSTOMER_GROUP_RULE = "customer.groups.id"

SETTING_DEFAULT_LOCATION = "default_location_id"
SETTING_DEFAULT_CURRENCY = "default_currency_code"


class OrderNotFoundError(LookupError):
    """Raised when the order system has no record of an order id."""


@dataclass(frozen=True)
class LineItemSnapshot:
    id: str
    variant_id: Optional[str]
    quantity: int


@dataclass(frozen=True)
class OrderSnapshot:
    id: str
    items: tuple[LineItemSnapshot, ...] = ()


@dataclass(frozen=True)
class InventoryLink:
    inventory_item_id: str
    required_quantity: Optional[int] = 1


@dataclass(frozen=True)
class VariantSnapshot:
    id: str
    manage_inventory: Optional[bool] = True
    inventory_links: tuple[InventoryLink, ...] = ()
    price_set_id: Optional[str] = None


@dataclass(frozen=True)
class InventoryLevelSnapshot:
    inventory_item_id: str
    location_id: str
    stocked_quantity: int


@dataclass(frozen=True)
class PriceSnapshot:
    id: int
    price_set_id: str
    currency_code: str
    amount: int


class OrderSource(Protocol):
    def retrieve_order(self, order_id: str) -> OrderSnapshot: ...

    def resolve_order_id_for_payment(self, payment_id: str) -> Optional[str]: ...

    def list_line_items(self, line_item_ids: Iterable[str]) -> list[dict]: ...


class CatalogSource(Protocol):
    def list_variants(self, variant_ids: Iterable[str]) -> list[VariantSnapshot]: ...

    def list_variant_ids_for_inventory_items(self, inventory_item_ids: Iterable[str]) -> list[str]: ...

    def get_inventory_item(self, inventory_item_id: str) -> Optional[dict]: ...


class InventoryLevelStore(Protocol):
    def list_levels(self, inventory_item_id: str) -> list[InventoryLevelSnapshot]: ...

    def create_level(self, level: InventoryLevelSnapshot) -> None: ...

    def update_levels(self, levels: list[InventoryLevelSnapshot]) -> None: ...

    def default_location_id(self) -> Optional[str]: ...


class PricingStore(Protocol):
    def default_currency_code(self) -> str: ...

    def find_price_list(self, handle: str) -> Optional[str]: ...

    def upsert_price_list(
        self, *, handle: str, title: str, description: str, customer_group_id: str
    ) -> str: ...

    def calculate_base_prices(self, price_set_ids: Iterable[str], currency_code: str) -> dict[str, int]: ...

    def list_prices(self, price_list_id: str, price_set_ids: Iterable[str]) -> list[PriceSnapshot]: ...

    def add_prices(self, price_list_id: str, prices: list[dict]) -> None: ...

    def update_prices(self, price_list_id: str, prices: list[dict]) -> None: ...


def _ids(values: Iterable[str | None]) -> list[str]:
    return [v for v in dict.fromkeys(values) if v]


def _setting(key: str) -> Optional[str]:
    row = db.session.query(StoreSetting).filter_by(key=key).first()
    if row is None or not row.value:
        return None
    return row.value


def set_store_setting(key: str, value: Optional[str]) -> None:
    row = db.session.query(StoreSetting).filter_by(key=key).first()
    if row is None:
        row = StoreSetting(key=key, value=value)
        db.session.add(row)
    else:
        row.value = value
    db.session.flush()


class SqlOrderSource:
    def retrieve_order(self, order_id: str) -> OrderSnapshot:
        order = db.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        items = tuple(
            LineItemSnapshot(id=item.id, variant_id=item.variant_id, quantity=item.quantity)
            for item in order.items
        )
        return OrderSnapshot(id=order.id, items=items)

    def resolve_order_id_for_payment(self, payment_id: str) -> Optional[str]:
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            return None
        meta = payment.metadata_json or {}
        from_meta = meta.get("order_id") or meta.get("venmo_order_id")
        if from_meta:
            return str(from_meta)
        return payment.order_id

    def list_line_items(self, line_item_ids: Iterable[str]) -> list[dict]:
        ids = _ids(line_item_ids)
        if not ids:
            return []
        rows = db.session.query(OrderLineItem).filter(OrderLineItem.id.in_(ids)).all()
        result = []
        for item in rows:
            data = item.to_dict()
            data["order"] = item.order.to_dict() if item.order else None
            result.append(data)
        return result


class SqlCatalogSource:
    def list_variants(self, variant_ids: Iterable[str]) -> list[VariantSnapshot]:
        ids = _ids(variant_ids)
        if not ids:
            return []
        variants = db.session.query(ProductVariant).filter(ProductVariant.id.in_(ids)).all()
        return [
            VariantSnapshot(
                id=v.id,
                manage_inventory=v.manage_inventory,
                inventory_links=tuple(
                    InventoryLink(inventory_item_id=link.inventory_item_id, required_quantity=link.required_quantity)
                    for link in v.inventory_links
                ),
                price_set_id=v.price_set_id,
            )
            for v in variants
        ]

    def list_variant_ids_for_inventory_items(self, inventory_item_ids: Iterable[str]) -> list[str]:
        ids = _ids(inventory_item_ids)
        if not ids:
            return []
        rows = (
            db.session.query(VariantInventoryItem.variant_id)
            .filter(VariantInventoryItem.inventory_item_id.in_(ids))
            .order_by(VariantInventoryItem.id.asc())
            .all()
        )
        return _ids(r.variant_id for r in rows)

    def get_inventory_item(self, inventory_item_id: str) -> Optional[dict]:
        item = db.session.get(InventoryItem, inventory_item_id)
        if item is None:
            return None
        variants = (
            db.session.query(ProductVariant)
            .join(VariantInventoryItem, VariantInventoryItem.variant_id == ProductVariant.id)
            .filter(VariantInventoryItem.inventory_item_id == inventory_item_id)
            .order_by(ProductVariant.id.asc())
            .all()
        )
        return {
            "id": item.id,
            "sku": item.sku,
            "title": item.title,
            "variants": [v.to_dict() for v in variants],
        }


class SqlInventoryLevelStore:
    def list_levels(self, inventory_item_id: str) -> list[InventoryLevelSnapshot]:
        rows = (
            db.session.query(InventoryLevel)
            .filter_by(inventory_item_id=inventory_item_id)
            .order_by(InventoryLevel.id.asc())
            .all()
        )
        return [
            InventoryLevelSnapshot(
                inventory_item_id=r.inventory_item_id,
                location_id=r.location_id,
                stocked_quantity=r.stocked_quantity,
            )
            for r in rows
        ]

    def create_level(self, level: InventoryLevelSnapshot) -> None:
        db.session.add(
            InventoryLevel(
                inventory_item_id=level.inventory_item_id,
                location_id=level.location_id,
                stocked_quantity=level.stocked_quantity,
            )
        )
        db.session.flush()

    def update_levels(self, levels: list[InventoryLevelSnapshot]) -> None:
        for level in levels:
            row = (
                db.session.query(InventoryLevel)
                .filter_by(inventory_item_id=level.inventory_item_id, location_id=level.location_id)
                .first()
            )
            if row is None:
                raise LookupError(
                    f"inventory level {level.inventory_item_id}@{level.location_id} not found"
                )
            row.stocked_quantity = level.stocked_quantity
        db.session.flush()

    def default_location_id(self) -> Optional[str]:
        configured = _setting(SETTING_DEFAULT_LOCATION)
        if configured:
            return configured
        first = db.session.query(StockLocation).order_by(StockLocation.created_at.asc(), StockLocation.id.asc()).first()
        return first.id if first else None


class SqlPricingStore:
    def default_currency_code(self) -> str:
        return _setting(SETTING_DEFAULT_CURRENCY) or current_app.config.get("DEFAULT_CURRENCY_CODE") or "usd"

    def find_price_list(self, handle: str) -> Optional[str]:
        row = db.session.query(PriceList).filter_by(handle=handle).first()
        return row.id if row else None

    def upsert_price_list(self, *, handle: str, title: str, description: str, customer_group_id: str) -> str:
        """
        Idempotent: creates the list once, afterwards only re-asserts the rule set.
        The customer-group rule is replaced, never appended.
        """
        price_list = db.session.query(PriceList).filter_by(handle=handle).first()
        if price_list is None:
            price_list = PriceList(
                id=f"plist_{uuid.uuid4().hex}",
                handle=handle,
                title=title,
                description=description,
                status="active",
                type="override",
            )
            db.session.add(price_list)
            db.session.flush()

        keep = []
        has_group_rule = False
        for rule in price_list.rules:
            if rule.attribute != CUSTOMER_GROUP_RULE:
                keep.append(rule)
            elif rule.value == customer_group_id and not has_group_rule:
                keep.append(rule)
                has_group_rule = True
        price_list.rules = keep
        db.session.flush()

        if not has_group_rule:
            price_list.rules.append(PriceListRule(attribute=CUSTOMER_GROUP_RULE, value=customer_group_id))
            db.session.flush()
        return price_list.id

    def calculate_base_prices(self, price_set_ids: Iterable[str], currency_code: str) -> dict[str, int]:
        ids = _ids(price_set_ids)
        if not ids:
            return {}
        rows = (
            db.session.query(Price)
            .filter(
                Price.price_set_id.in_(ids),
                Price.price_list_id.is_(None),
                Price.currency_code == currency_code,
            )
            .order_by(Price.id.asc())
            .all()
        )
        result: dict[str, int] = {}
        for row in rows:
            result.setdefault(row.price_set_id, row.amount)
        return result

    def list_prices(self, price_list_id: str, price_set_ids: Iterable[str]) -> list[PriceSnapshot]:
        ids = _ids(price_set_ids)
        if not ids:
            return []
        rows = (
            db.session.query(Price)
            .filter(Price.price_list_id == price_list_id, Price.price_set_id.in_(ids))
            .order_by(Price.id.asc())
            .all()
        )
        return [
            PriceSnapshot(id=r.id, price_set_id=r.price_set_id, currency_code=r.currency_code, amount=r.amount)
            for r in rows
        ]

    def add_prices(self, price_list_id: str, prices: list[dict]) -> None:
        for price in prices:
            db.session.add(
                Price(
                    price_list_id=price_list_id,
                    price_set_id=price["price_set_id"],
                    currency_code=price["currency_code"],
                    amount=price["amount"],
                )
            )
        db.session.flush()

    def update_prices(self, price_list_id: str, prices: list[dict]) -> None:
        for price in prices:
            row = db.session.get(Price, price["id"])
            if row is None or row.price_list_id != price_list_id:
                raise LookupError(f"price {price['id']} not in price list {price_list_id}")
            row.amount = price["amount"]
            row.currency_code = price["currency_code"]
        db.session.flush()


@dataclass
class CommerceGateway:
    orders: OrderSource = field(default_factory=SqlOrderSource)
    catalog: CatalogSource = field(default_factory=SqlCatalogSource)
    inventory: InventoryLevelStore = field(default_factory=SqlInventoryLevelStore)
    pricing: PricingStore = field(default_factory=SqlPricingStore)


def get_gateway(gateway: CommerceGateway | None = None) -> CommerceGateway:
    """The gateway bound on the app (see create_app), unless one is passed explicitly."""
    if gateway is not None:
        return gateway
    bound = current_app.extensions.get("lotkeeper.gateway")
    return bound if bound is not None else CommerceGateway()
