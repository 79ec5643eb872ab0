# Overview: Certificate-of-analysis links and per-order lot traceability for the storefront.

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from flask import current_app

from . import batch_store
from .commerce_gateway import CommerceGateway, get_gateway


DEFAULT_COA_BUCKET = "medusa-media"


class CoaStorageNotConfiguredError(RuntimeError):
    """Raised when a COA exists but no storage endpoint is configured to serve it."""


class CoaNotFoundError(LookupError):
    """Raised when no lot with that number carries a COA."""


def normalize_lot(raw: str | None) -> str:
    """Lot number from a URL segment; a trailing .pdf is tolerated."""
    lot = (raw or "").strip()
    if lot.lower().endswith(".pdf"):
        lot = lot[:-4]
    return lot.strip()


def build_public_coa_url(file_key: str) -> Optional[str]:
    """
    Public object URL for a COA file in the S3-compatible bucket.

    The endpoint may carry an http:// or https:// scheme (https when absent)
    and a trailing slash. Returns None while no endpoint is configured.
    """
    endpoint = (current_app.config.get("COA_STORAGE_ENDPOINT") or "").strip()
    if not endpoint:
        return None

    protocol = "https"
    if endpoint.startswith("http://"):
        protocol = "http"
        endpoint = endpoint[len("http://"):]
    elif endpoint.startswith("https://"):
        endpoint = endpoint[len("https://"):]
    endpoint = endpoint.rstrip("/")

    bucket = current_app.config.get("COA_STORAGE_BUCKET") or DEFAULT_COA_BUCKET
    return f"{protocol}://{endpoint}/{bucket}/{file_key}"


def storefront_coa_url(lot_number: str) -> str:
    """The backend's own redirecting COA link for a lot."""
    base = (current_app.config.get("BACKEND_PUBLIC_URL") or "").rstrip("/")
    return f"{base}/store/coa/{quote(lot_number, safe='')}"


def resolve_coa_url(raw_lot: str) -> str:
    """
    Where the COA for a lot lives.

    Lot numbers are unique per variant only; across variants the oldest lot wins.
    """
    lot = normalize_lot(raw_lot)
    if not lot:
        raise ValueError("Lot number is required.")

    matches = batch_store.list_batches(lot_number=lot, limit=1)
    batch = matches[0] if matches else None
    if batch is None or not batch.coa_file_key:
        raise CoaNotFoundError(f"COA not found for lot {lot}")

    url = build_public_coa_url(batch.coa_file_key)
    if url is None:
        raise CoaStorageNotConfiguredError("COA storage is not configured.")
    return url


def list_order_lots(order_id: str, *, gateway: CommerceGateway | None = None) -> dict:
    """
    Lots allocated to each line item of an order, with COA links.

    Raises OrderNotFoundError for unknown orders.
    """
    gw = get_gateway(gateway)
    order = gw.orders.retrieve_order(order_id)
    if not order.items:
        return {"order_id": order.id, "items": []}

    line_item_ids = [item.id for item in order.items]
    details = {item["id"]: item for item in gw.orders.list_line_items(line_item_ids)}
    allocations = batch_store.list_allocations(line_item_ids=line_item_ids)
    batches = {
        b.id: b
        for b in batch_store.list_batches(batch_ids=[a.variant_batch_id for a in allocations])
    } if allocations else {}

    by_line_item: dict[str, list[dict]] = {}
    for allocation in allocations:
        batch = batches.get(allocation.variant_batch_id)
        if batch is None:
            continue
        by_line_item.setdefault(allocation.order_line_item_id, []).append({
            "id": batch.id,
            "lot_number": batch.lot_number,
            "quantity": allocation.quantity or 0,
            "coa_available": bool(batch.coa_file_key),
            "coa_url": storefront_coa_url(batch.lot_number) if batch.coa_file_key else None,
        })

    items = []
    for item in order.items:
        detail = details.get(item.id, {})
        items.append({
            "line_item_id": item.id,
            "product_title": detail.get("product_title"),
            "variant_title": detail.get("variant_title") or detail.get("title"),
            "quantity": item.quantity or 0,
            "batches": by_line_item.get(item.id, []),
        })
    return {"order_id": order.id, "items": items}

