# Overview: Service-layer operations behind the admin lot screens; mutations plus best-effort syncs.

"""
Batch Admin Service

Mutations of lots and manual allocations commit first, then push the new
availability (and, for lot changes, the new at-price) to the commerce
platform. Those pushes are best-effort: a failing sync is logged with its
traceback and never undoes or fails the mutation that triggered it.

Lot numbers are unique per variant. A duplicate is reported as a
ConflictError before the insert, and the unique constraint backs that up
for concurrent writers.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..validation import ConflictError
from . import batch_store
from .availability_service import attach_inventory_quantities, compute_batch_availability
from .commerce_gateway import CommerceGateway, get_gateway
from .inventory_sync_service import sync_inventory_levels_for_variants
from .pricing_sync_service import sync_at_price_for_variants


ADMIN_BATCH_LIMIT_DEFAULT = 200
ADMIN_BATCH_LIMIT_MAX = 500
ADMIN_ALLOCATION_LIMIT_DEFAULT = 100
ADMIN_ALLOCATION_LIMIT_MAX = 200


def _run_syncs(variant_ids: Iterable[str], *, pricing: bool, reason: str, gateway=None) -> None:
    ids = [v for v in dict.fromkeys(variant_ids) if v]
    if not ids:
        return

    try:
        sync_inventory_levels_for_variants(ids, gateway=gateway)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sync inventory levels after %s", reason)

    if not pricing:
        return

    try:
        sync_at_price_for_variants(ids, gateway=gateway)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sync at-price list after %s", reason)


def _ensure_lot_is_free(variant_id: str, lot_number: str, *, exclude_id: int | None = None) -> None:
    existing = batch_store.find_batch_for_variant_lot(variant_id, lot_number)
    if existing is not None and existing.id != exclude_id:
        raise ConflictError(f"Lot {lot_number} already exists for variant {variant_id}")


def _commit_lot_change(variant_id: str, lot_number: str) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Lot {lot_number} already exists for variant {variant_id}")


def list_batches_for_admin(
    *,
    variant_id: str | None = None,
    lot_number: str | None = None,
    has_coa: bool | None = None,
    min_quantity: int | None = None,
    max_quantity: int | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> dict:
    limit = min(limit or ADMIN_BATCH_LIMIT_DEFAULT, ADMIN_BATCH_LIMIT_MAX)
    batches = batch_store.list_batches(
        variant_ids=[variant_id] if variant_id else None,
        lot_number=lot_number or None,
        has_coa=has_coa,
        min_quantity=min_quantity,
        max_quantity=max_quantity,
        limit=limit,
        offset=max(offset or 0, 0),
    )
    allocations = batch_store.list_allocations(batch_ids=[b.id for b in batches]) if batches else []
    availability = {entry.batch_id: entry for entry in compute_batch_availability(batches, allocations)}

    rows = []
    for batch in batches:
        data = batch.to_dict()
        entry = availability[batch.id]
        data["allocated_quantity"] = entry.allocated
        data["available_quantity"] = entry.available
        rows.append(data)
    return {"batches": rows, "count": len(rows)}


def get_batch_detail(batch_id: int) -> dict:
    batch = batch_store.get_batch(batch_id)
    entry = compute_batch_availability([batch], batch.allocations)[0]
    data = batch.to_dict()
    data["allocated_quantity"] = entry.allocated
    data["available_quantity"] = entry.available
    data["allocations"] = [a.to_dict() for a in batch.allocations]
    return data


def create_batch(patch: dict, *, gateway: CommerceGateway | None = None) -> dict:
    """Create a lot from a validated patch; returns the stored lot."""
    variant_id = patch["variant_id"]
    lot_number = patch["lot_number"]
    _ensure_lot_is_free(variant_id, lot_number)

    batch = batch_store.add_batch(**patch)
    _commit_lot_change(variant_id, lot_number)
    created = batch.to_dict()

    current_app.logger.info("Created lot %s for variant %s (%s units)", lot_number, variant_id, created["quantity"])
    _run_syncs([variant_id], pricing=True, reason="batch create", gateway=gateway)
    return created


def update_batch(batch_id: int, patch: dict, *, gateway: CommerceGateway | None = None) -> dict:
    if not patch:
        raise ValueError("No valid updates provided.")

    batch = batch_store.get_batch(batch_id)
    previous_variant_id = batch.variant_id

    variant_id = patch.get("variant_id", batch.variant_id)
    lot_number = patch.get("lot_number", batch.lot_number)
    if variant_id != batch.variant_id or lot_number != batch.lot_number:
        _ensure_lot_is_free(variant_id, lot_number, exclude_id=batch.id)

    batch_store.apply_batch_patch(batch, patch)
    _commit_lot_change(variant_id, lot_number)
    updated = batch.to_dict()

    _run_syncs([previous_variant_id, variant_id], pricing=True, reason="batch update", gateway=gateway)
    return updated


def delete_batch(batch_id: int, *, gateway: CommerceGateway | None = None) -> None:
    """Delete a lot; its allocations go with it."""
    batch = batch_store.get_batch(batch_id)
    variant_id = batch.variant_id
    lot_number = batch.lot_number

    batch_store.remove_batch(batch)
    db.session.commit()

    current_app.logger.info("Deleted lot %s for variant %s", lot_number, variant_id)
    _run_syncs([variant_id], pricing=True, reason="batch delete", gateway=gateway)


def list_allocations_with_details(
    *,
    variant_batch_id: int | None = None,
    order_line_item_id: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    gateway: CommerceGateway | None = None,
) -> dict:
    """Allocations with the line item and order they belong to, when those are known."""
    limit = min(limit or ADMIN_ALLOCATION_LIMIT_DEFAULT, ADMIN_ALLOCATION_LIMIT_MAX)
    filters = {
        "batch_ids": [variant_batch_id] if variant_batch_id is not None else None,
        "line_item_ids": [order_line_item_id] if order_line_item_id else None,
    }
    allocations = batch_store.list_allocations(**filters, limit=limit, offset=max(offset or 0, 0))
    count = batch_store.count_allocations(**filters)

    gw = get_gateway(gateway)
    line_items = {
        item["id"]: item
        for item in gw.orders.list_line_items(a.order_line_item_id for a in allocations)
    }

    rows = []
    for allocation in allocations:
        data = allocation.to_dict()
        item = line_items.get(allocation.order_line_item_id)
        if item is None:
            data["line_item"] = None
            data["order"] = None
        else:
            data["line_item"] = {
                "id": item["id"],
                "title": item.get("title"),
                "product_title": item.get("product_title"),
                "variant_title": item.get("variant_title"),
                "variant_sku": item.get("variant_sku"),
                "quantity": item.get("quantity"),
            }
            order = item.get("order")
            data["order"] = (
                {
                    "id": order["id"],
                    "display_id": order.get("display_id"),
                    "status": order.get("status"),
                    "email": order.get("email"),
                }
                if order
                else None
            )
        rows.append(data)
    return {"allocations": rows, "count": count}


def create_allocation(patch: dict, *, gateway: CommerceGateway | None = None) -> dict:
    """Manual allocation. Allowed to exceed availability; availability clamps at zero."""
    batch = batch_store.get_batch(patch["variant_batch_id"])
    allocation = batch_store.add_allocation(
        variant_batch_id=batch.id,
        order_line_item_id=patch["order_line_item_id"],
        quantity=patch.get("quantity") or 1,
        metadata=patch.get("metadata_json"),
    )
    db.session.commit()
    created = allocation.to_dict()

    current_app.logger.info(
        "Manually allocated %s unit(s) of lot %s to line item %s",
        created["quantity"],
        batch.lot_number,
        created["order_line_item_id"],
    )
    _run_syncs([batch.variant_id], pricing=False, reason="allocation create", gateway=gateway)
    return created


def delete_allocation(allocation_id: int, *, gateway: CommerceGateway | None = None) -> None:
    allocation = batch_store.get_allocation(allocation_id)
    variant_id = allocation.batch.variant_id if allocation.batch else None

    batch_store.remove_allocations([allocation.id])
    db.session.commit()

    _run_syncs([variant_id], pricing=False, reason="allocation delete", gateway=gateway)


def list_inventory_item_batches(inventory_item_id: str, *, gateway: CommerceGateway | None = None) -> dict | None:
    """
    In-stock lots for every variant backed by an inventory item. Each variant
    carries its lot-derived inventory_quantity.

    Returns None when the inventory item is unknown.
    """
    gw = get_gateway(gateway)
    item = gw.catalog.get_inventory_item(inventory_item_id)
    if item is None:
        return None

    variants = attach_inventory_quantities(item.get("variants") or [])
    variant_by_id = {v["id"]: v for v in variants if v.get("id")}
    batches = batch_store.list_batches(variant_ids=list(variant_by_id)) if variant_by_id else []
    allocations = batch_store.list_allocations(batch_ids=[b.id for b in batches]) if batches else []
    availability = {entry.batch_id: entry for entry in compute_batch_availability(batches, allocations)}

    rows = []
    for batch in batches:
        entry = availability[batch.id]
        if entry.quantity <= 0:
            continue
        data = batch.to_dict()
        data["allocated_quantity"] = entry.allocated
        data["available_quantity"] = entry.available
        data["variant"] = variant_by_id.get(batch.variant_id)
        rows.append(data)

    return {
        "inventory_item_id": inventory_item_id,
        "variants": variants,
        "batches": rows,
        "count": len(rows),
        "total_quantity": sum(r["quantity"] for r in rows),
        "total_available": sum(r["available_quantity"] for r in rows),
    }
