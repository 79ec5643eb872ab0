# Overview: Pushes lot-derived availability into the commerce platform's inventory levels.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from flask import current_app

from ..extensions import db
from .availability_service import get_variant_availability
from .commerce_gateway import CommerceGateway, InventoryLevelSnapshot, VariantSnapshot, get_gateway


@dataclass
class InventorySyncResult:
    updated: dict[str, int] = field(default_factory=dict)
    created: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"updated": self.updated, "created": self.created, "skipped": self.skipped}


def _round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _multiplier(required_quantity) -> int:
    try:
        required = int(required_quantity) if required_quantity is not None else 1
    except (TypeError, ValueError):
        return 1
    return required if required > 0 else 1


def distribute_quantity(target: int, current: list[int]) -> list[int]:
    """
    Split target across existing levels in proportion to their current stock.

    A single level gets everything. The last level absorbs rounding so the
    parts always sum to target. When every current share is zero the first
    level takes the whole target.
    """
    if not current:
        return []
    if len(current) == 1:
        return [target]

    existing_total = sum(current)
    if existing_total <= 0:
        return [target] + [0] * (len(current) - 1)

    parts: list[int] = []
    assigned = 0
    for q in current[:-1]:
        share = _round_half_up(Decimal(target) * Decimal(q) / Decimal(existing_total))
        # Rounding up several shares can overshoot; never hand out more than is left
        part = min(share, target - assigned)
        parts.append(part)
        assigned += part
    parts.append(target - assigned)
    return parts


def compute_inventory_item_targets(
    variants: Iterable[VariantSnapshot],
    availability: dict[str, int],
) -> dict[str, int]:
    """Units to stock per inventory item, summed over managed variants."""
    totals: dict[str, int] = {}
    for variant in variants:
        if variant.manage_inventory is False:
            continue
        available = max(availability.get(variant.id, 0), 0)
        for link in variant.inventory_links:
            if not link.inventory_item_id:
                continue
            totals[link.inventory_item_id] = (
                totals.get(link.inventory_item_id, 0) + available * _multiplier(link.required_quantity)
            )
    return {item_id: max(total, 0) for item_id, total in totals.items()}


def sync_inventory_levels_for_variants(
    variant_ids: Iterable[str],
    *,
    gateway: CommerceGateway | None = None,
) -> InventorySyncResult:
    gw = get_gateway(gateway)
    result = InventorySyncResult()

    requested = [v for v in dict.fromkeys(variant_ids) if v]
    if not requested:
        return result

    initial = gw.catalog.list_variants(requested)
    item_ids = [
        link.inventory_item_id
        for variant in initial
        for link in variant.inventory_links
        if link.inventory_item_id
    ]
    linked = gw.catalog.list_variant_ids_for_inventory_items(item_ids) if item_ids else []

    all_ids = [v for v in dict.fromkeys([v.id for v in initial] + linked) if v]
    if not all_ids:
        return result

    variants = gw.catalog.list_variants(all_ids)
    targets = compute_inventory_item_targets(variants, get_variant_availability(all_ids))
    if not targets:
        return result

    default_location_id = gw.inventory.default_location_id()

    for inventory_item_id, target in targets.items():
        levels = gw.inventory.list_levels(inventory_item_id)

        if not levels:
            if not default_location_id:
                current_app.logger.warning(
                    "No stock location for inventory item %s; inventory level not created",
                    inventory_item_id,
                )
                result.skipped.append(inventory_item_id)
                continue
            gw.inventory.create_level(
                InventoryLevelSnapshot(
                    inventory_item_id=inventory_item_id,
                    location_id=default_location_id,
                    stocked_quantity=target,
                )
            )
            result.created[inventory_item_id] = target
            continue

        quantities = distribute_quantity(target, [max(level.stocked_quantity or 0, 0) for level in levels])
        gw.inventory.update_levels([
            InventoryLevelSnapshot(
                inventory_item_id=inventory_item_id,
                location_id=level.location_id,
                stocked_quantity=quantity,
            )
            for level, quantity in zip(levels, quantities)
        ])
        result.updated[inventory_item_id] = target

    db.session.commit()
    current_app.logger.info(
        "Inventory levels synced for %s inventory item(s) from %s variant(s)",
        len(result.updated) + len(result.created),
        len(all_ids),
    )
    return result
