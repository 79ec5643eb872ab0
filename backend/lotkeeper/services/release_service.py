# Overview: Releases an order's lot allocations when the order is canceled.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from . import batch_store
from .commerce_gateway import CommerceGateway, OrderNotFoundError, get_gateway
from .concurrency import run_with_retry


@dataclass
class ReleaseResult:
    order_id: str
    released: int = 0
    used_metadata_fallback: bool = False
    variant_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "released": self.released,
            "used_metadata_fallback": self.used_metadata_fallback,
            "variant_ids": self.variant_ids,
        }


def _variant_ids_of(allocations) -> list[str]:
    ids: list[str] = []
    for allocation in allocations:
        batch = allocation.batch
        if batch is not None and batch.variant_id and batch.variant_id not in ids:
            ids.append(batch.variant_id)
    return ids


def release_order(order_id: str, *, gateway: CommerceGateway | None = None) -> ReleaseResult:
    """
    Delete every allocation made for an order, returning its units to availability.

    Line items are found through the order record, and allocations tagged with
    metadata.order_id are removed as well, so units allocated to line items the
    order no longer lists are returned too. When the order cannot be retrieved,
    or carries no line items, the tag is the only route (used_metadata_fallback).
    Safe to call repeatedly.
    """
    gw = get_gateway(gateway)

    line_item_ids: list[str] = []
    try:
        order = gw.orders.retrieve_order(order_id)
        line_item_ids = [item.id for item in order.items]
    except OrderNotFoundError:
        current_app.logger.info("Order %s not retrievable; releasing allocations by metadata", order_id)

    def _op():
        result = ReleaseResult(order_id=order_id, used_metadata_fallback=not line_item_ids)

        def _remove(allocations):
            if not allocations:
                return
            for variant_id in _variant_ids_of(allocations):
                if variant_id not in result.variant_ids:
                    result.variant_ids.append(variant_id)
            result.released += batch_store.remove_allocations(a.id for a in allocations)

        for line_item_id in line_item_ids:
            _remove(batch_store.list_allocations(line_item_ids=[line_item_id]))
        _remove(batch_store.list_allocations_tagged_with_order(order_id))

        db.session.commit()
        return result

    result = run_with_retry(_op)
    current_app.logger.info(
        "Released %s allocation(s) for order %s%s",
        result.released,
        order_id,
        " (metadata fallback)" if result.used_metadata_fallback else "",
    )
    return result
