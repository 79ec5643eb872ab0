# Overview: Keeps the at-price (cost-plus) price list in step with lot valuation.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from .commerce_gateway import CommerceGateway, get_gateway
from .valuation_service import get_unit_costs, to_minor_units


AT_PRICE_LIST_TITLE = "At Price"
AT_PRICE_LIST_DESCRIPTION = "At price for authorized customers"


@dataclass
class PricingSyncResult:
    price_list_id: Optional[str] = None
    created: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "price_list_id": self.price_list_id,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
        }


def provision_at_price_list(*, gateway: CommerceGateway | None = None) -> Optional[str]:
    """
    Create the at-price list, or re-assert its customer-group rule if it exists.

    Returns None while no customer group is configured.
    """
    group_id = current_app.config.get("AT_PRICE_CUSTOMER_GROUP_ID")
    if not group_id:
        current_app.logger.warning("AT_PRICE_CUSTOMER_GROUP_ID is not set; at-price list not provisioned")
        return None

    gw = get_gateway(gateway)
    price_list_id = gw.pricing.upsert_price_list(
        handle=current_app.config["AT_PRICE_LIST_HANDLE"],
        title=AT_PRICE_LIST_TITLE,
        description=AT_PRICE_LIST_DESCRIPTION,
        customer_group_id=group_id,
    )
    db.session.commit()
    current_app.logger.info("At-price list %s provisioned for customer group %s", price_list_id, group_id)
    return price_list_id


def resolve_at_price_amount(unit_cost, base_amount) -> Optional[int]:
    """Minor-unit amount for the override price, or None when there is nothing sensible to set."""
    if unit_cost is not None and unit_cost > 0:
        amount = to_minor_units(unit_cost)
    else:
        amount = base_amount
    if amount is None or amount <= 0:
        return None
    return int(amount)


def sync_at_price_for_variants(
    variant_ids: Iterable[str],
    *,
    gateway: CommerceGateway | None = None,
) -> PricingSyncResult:
    result = PricingSyncResult()

    requested = [v for v in dict.fromkeys(variant_ids) if v]
    if not requested or not current_app.config.get("AT_PRICE_CUSTOMER_GROUP_ID"):
        return result

    gw = get_gateway(gateway)
    handle = current_app.config["AT_PRICE_LIST_HANDLE"]
    price_list_id = gw.pricing.find_price_list(handle)
    if not price_list_id:
        current_app.logger.warning("At-price list %r is not provisioned; pricing sync skipped", handle)
        return result
    result.price_list_id = price_list_id

    price_set_by_variant = {
        v.id: v.price_set_id
        for v in gw.catalog.list_variants(requested)
        if v.price_set_id
    }
    price_set_ids = list(dict.fromkeys(price_set_by_variant.values()))
    if not price_set_ids:
        return result

    currency_code = gw.pricing.default_currency_code()
    unit_costs = get_unit_costs(requested)
    base_amounts = gw.pricing.calculate_base_prices(price_set_ids, currency_code)
    existing = {
        price.price_set_id: price
        for price in gw.pricing.list_prices(price_list_id, price_set_ids)
        if price.currency_code == currency_code
    }

    to_create: list[dict] = []
    to_update: list[dict] = []
    handled_price_sets: set[str] = set()

    for variant_id in requested:
        price_set_id = price_set_by_variant.get(variant_id)
        if not price_set_id:
            continue
        # One override per price set; the first variant that maps to it decides
        if price_set_id in handled_price_sets:
            current_app.logger.warning(
                "Price set %s is shared by several variants; at-price for %s not written",
                price_set_id,
                variant_id,
            )
            result.skipped.append(variant_id)
            continue
        handled_price_sets.add(price_set_id)

        amount = resolve_at_price_amount(unit_costs.get(variant_id), base_amounts.get(price_set_id))
        if amount is None:
            result.skipped.append(variant_id)
            continue

        current = existing.get(price_set_id)
        if current is None:
            to_create.append({"price_set_id": price_set_id, "currency_code": currency_code, "amount": amount})
            result.created[variant_id] = amount
        elif current.amount != amount:
            to_update.append({
                "id": current.id,
                "price_set_id": price_set_id,
                "currency_code": currency_code,
                "amount": amount,
            })
            result.updated[variant_id] = amount
        else:
            result.unchanged.append(variant_id)

    if to_create:
        gw.pricing.add_prices(price_list_id, to_create)
    if to_update:
        gw.pricing.update_prices(price_list_id, to_update)
    db.session.commit()

    current_app.logger.info(
        "At-price sync: %s created, %s updated, %s unchanged",
        len(result.created),
        len(result.updated),
        len(result.unchanged),
    )
    return result
