# Overview: Storefront routes for lot availability, order traceability and COA documents.

# backend/lotkeeper/routes/store.py
from flask import Blueprint, redirect, request

from ..services.availability_service import list_variant_batch_summaries
from ..services.coa_service import (
    CoaNotFoundError,
    CoaStorageNotConfiguredError,
    list_order_lots,
    resolve_coa_url,
)
from ..services.commerce_gateway import OrderNotFoundError

store_bp = Blueprint("store", __name__, url_prefix="/store")


@store_bp.get("/variant-batches")
def variant_batches():
    """
    Lots per variant with available quantity and COA flag.

    Query params:
    - variant_ids: comma-separated (required)
    """
    raw = request.args.get("variant_ids", "")
    variant_ids = [v.strip() for v in raw.split(",") if v.strip()]
    if not variant_ids:
        return {"error": "variant_ids is required."}, 400

    return {"variants": list_variant_batch_summaries(variant_ids)}


@store_bp.get("/orders/<order_id>/variant-batches")
def order_variant_batches(order_id: str):
    try:
        return list_order_lots(order_id)
    except OrderNotFoundError:
        return {"error": "Order not found."}, 404


@store_bp.get("/coa/<path:lot>")
def coa(lot: str):
    try:
        url = resolve_coa_url(lot)
    except ValueError as e:
        return {"error": str(e)}, 400
    except CoaNotFoundError:
        return {"error": "COA not found for this lot."}, 404
    except CoaStorageNotConfiguredError as e:
        return {"error": str(e)}, 500

    return redirect(url)
