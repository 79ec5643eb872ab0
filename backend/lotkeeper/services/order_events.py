# Overview: Entry points for commerce events (payment captured, order canceled).

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..extensions import db
from .allocation_service import AllocationResult, allocate_order
from .commerce_gateway import CommerceGateway, get_gateway
from .inventory_sync_service import sync_inventory_levels_for_variants
from .release_service import ReleaseResult, release_order


def _sync_after(variant_ids: list[str], reason: str, gateway: CommerceGateway | None) -> None:
    if not variant_ids:
        return
    try:
        sync_inventory_levels_for_variants(variant_ids, gateway=gateway)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sync inventory levels after %s", reason)


def handle_payment_captured(
    payment_id: Optional[str] = None,
    *,
    order_id: Optional[str] = None,
    gateway: CommerceGateway | None = None,
) -> Optional[AllocationResult]:
    """
    Allocate lots for the order a captured payment belongs to.

    The order id is taken as given, or resolved from the payment. Returns None
    when no order can be determined; an order id that resolves to no order
    raises OrderNotFoundError.
    """
    gw = get_gateway(gateway)
    if not order_id and payment_id:
        order_id = gw.orders.resolve_order_id_for_payment(payment_id)
    if not order_id:
        current_app.logger.info("payment.captured for %s has no order; nothing to allocate", payment_id)
        return None

    result = allocate_order(order_id, gateway=gw)
    _sync_after(result.variant_ids, "allocation", gw)
    return result


def handle_order_canceled(order_id: Optional[str], *, gateway: CommerceGateway | None = None) -> Optional[ReleaseResult]:
    if not order_id:
        return None
    gw = get_gateway(gateway)
    result = release_order(order_id, gateway=gw)
    _sync_after(result.variant_ids, "release", gw)
    return result

