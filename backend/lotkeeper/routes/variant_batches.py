# Overview: Flask API routes for lot (variant batch) administration; parses input and returns JSON responses.

# backend/lotkeeper/routes/variant_batches.py
"""
Admin lot management routes.

Lots and manual allocations. Every mutation commits before the inventory
and at-price syncs run, so a failing sync never turns a saved change into
an error response.
"""
from flask import Blueprint, request

from ..models import VariantBatch, VariantBatchAllocation
from ..services import batch_admin_service
from ..services.batch_store import AllocationNotFoundError, BatchNotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_batch,
    enforce_rules_allocation,
    ValidationError,
    ConflictError,
)

BATCH_POLICY = ModelValidationPolicy(
    writable_fields={
        "variant_id",
        "lot_number",
        "quantity",
        "coa_file_key",
        "received_at",
        "invoice_url",
        "lab_invoice_url",
        "supplier_cost_per_vial",
        "testing_cost",
        "metadata",
    },
    required_on_create={"variant_id", "lot_number"},
)

ALLOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"variant_batch_id", "order_line_item_id", "quantity", "metadata"},
    required_on_create={"variant_batch_id", "order_line_item_id"},
)

METADATA_ALIASES = {"metadata": "metadata_json"}

variant_batches_bp = Blueprint("variant_batches", __name__, url_prefix="/admin")


def _bool_arg(name: str):
    raw = request.args.get(name)
    if raw == "true":
        return True
    if raw == "false":
        return False
    return None


def _int_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


@variant_batches_bp.get("/variant-batches")
def list_batches():
    """
    List lots, oldest first.

    Query params:
    - variant_id, lot_number: exact match
    - has_coa: "true" | "false"
    - min_quantity, max_quantity: bounds on received quantity
    - limit (default 200, max 500), offset
    """
    return batch_admin_service.list_batches_for_admin(
        variant_id=request.args.get("variant_id") or None,
        lot_number=request.args.get("lot_number") or None,
        has_coa=_bool_arg("has_coa"),
        min_quantity=_int_arg("min_quantity"),
        max_quantity=_int_arg("max_quantity"),
        limit=_int_arg("limit"),
        offset=_int_arg("offset") or 0,
    )


@variant_batches_bp.post("/variant-batches")
def create_batch():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=VariantBatch, payload=payload, policy=BATCH_POLICY, partial=False, aliases=METADATA_ALIASES
        )
        enforce_rules_batch(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        batch = batch_admin_service.create_batch(patch)
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"batch": batch}, 201


@variant_batches_bp.get("/variant-batches/<int:batch_id>")
def get_batch(batch_id: int):
    try:
        return {"batch": batch_admin_service.get_batch_detail(batch_id)}
    except BatchNotFoundError:
        return {"error": "Variant batch not found"}, 404


@variant_batches_bp.patch("/variant-batches/<int:batch_id>")
def update_batch(batch_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=VariantBatch, payload=payload, policy=BATCH_POLICY, partial=True, aliases=METADATA_ALIASES
        )
        enforce_rules_batch(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        batch = batch_admin_service.update_batch(batch_id, patch)
    except BatchNotFoundError:
        return {"error": "Variant batch not found"}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400

    return {"batch": batch}, 200


@variant_batches_bp.delete("/variant-batches/<int:batch_id>")
def delete_batch(batch_id: int):
    try:
        batch_admin_service.delete_batch(batch_id)
    except BatchNotFoundError:
        return {"error": "Variant batch not found"}, 404
    return "", 204


@variant_batches_bp.get("/variant-batches/allocations")
def list_allocations():
    """
    Query params: variant_batch_id, order_line_item_id, limit (default 100, max 200), offset.
    """
    return batch_admin_service.list_allocations_with_details(
        variant_batch_id=_int_arg("variant_batch_id"),
        order_line_item_id=request.args.get("order_line_item_id") or None,
        limit=_int_arg("limit"),
        offset=_int_arg("offset") or 0,
    )


@variant_batches_bp.post("/variant-batches/allocations")
def create_allocation():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=VariantBatchAllocation,
            payload=payload,
            policy=ALLOCATION_POLICY,
            partial=False,
            aliases=METADATA_ALIASES,
        )
        enforce_rules_allocation(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        allocation = batch_admin_service.create_allocation(patch)
    except BatchNotFoundError:
        return {"error": "Variant batch not found"}, 404

    return {"allocation": allocation}, 201


@variant_batches_bp.delete("/variant-batches/allocations/<int:allocation_id>")
def delete_allocation(allocation_id: int):
    try:
        batch_admin_service.delete_allocation(allocation_id)
    except AllocationNotFoundError:
        return {"error": "Allocation not found"}, 404
    return "", 204


@variant_batches_bp.get("/inventory-items/<inventory_item_id>/variant-batches")
def inventory_item_batches(inventory_item_id: str):
    result = batch_admin_service.list_inventory_item_batches(inventory_item_id)
    if result is None:
        return {"error": "Inventory item not found"}, 404
    return result
