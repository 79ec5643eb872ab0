# Overview: Inbound commerce events (payment captured, order canceled).

# backend/lotkeeper/routes/events.py
"""
Event intake.

The commerce platform posts its events here. payment.captured carries the
payment id (or, from internal callers, the order id directly);
order.canceled carries the order id. Both are safe to redeliver: allocation
tops up only what is missing and release deletes whatever is left.
"""
from flask import Blueprint, request

from ..services.commerce_gateway import OrderNotFoundError
from ..services.order_events import handle_order_canceled, handle_payment_captured

events_bp = Blueprint("events", __name__, url_prefix="/events")


@events_bp.post("/payment-captured")
def payment_captured():
    payload = request.get_json(silent=True) or {}
    payment_id = payload.get("id")
    order_id = payload.get("order_id")
    if not payment_id and not order_id:
        return {"error": "id or order_id is required."}, 400

    try:
        result = handle_payment_captured(payment_id, order_id=order_id)
    except OrderNotFoundError as e:
        return {"error": str(e)}, 404

    if result is None:
        return {"ok": True, "allocated": False}, 202
    return {"ok": True, "allocated": True, "result": result.to_dict()}, 200


@events_bp.post("/order-canceled")
def order_canceled():
    payload = request.get_json(silent=True) or {}
    order_id = payload.get("id")
    if not order_id:
        return {"error": "id is required."}, 400

    result = handle_order_canceled(order_id)
    return {"ok": True, "result": result.to_dict()}, 200
