# Overview: FIFO allocation of lots to order line items at payment capture.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from . import batch_store
from .availability_service import compute_batch_availability, safe_quantity
from .commerce_gateway import CommerceGateway, LineItemSnapshot, get_gateway
from .concurrency import run_with_retry, variant_allocation_lock
from lotkeeper.time_utils import sort_key_created_at
"""
Allocation Invariants (authoritative)

- Oldest lot first: lots are consumed in created_at order (id breaks ties).
- A lot never receives more than its derived available quantity.
- A line item never receives more than quantity - already allocated.
  Re-running allocate_order for the same order allocates nothing new.
- Shortfalls are bookkeeping, not failures: the payment is already captured.
  They are logged as warnings and reported in the result.
- Each line item is one transaction, taken under the variant's allocation lock
  with the variant's lot rows locked FOR UPDATE, so two passes for the same
  variant cannot read the same availability snapshot. The line item's
  outstanding quantity is read only after those rows are locked.
- Database errors propagate (after retries). Any other error on a line item is
  logged with its traceback, that line item is rolled back and reported as
  failed, and the remaining line items are still attempted.
"""


@dataclass(frozen=True)
class Shortfall:
    order_id: str
    line_item_id: str
    variant_id: str
    missing: int

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "line_item_id": self.line_item_id,
            "variant_id": self.variant_id,
            "missing": self.missing,
        }


@dataclass
class AllocationResult:
    order_id: str
    allocations: list[dict] = field(default_factory=list)
    shortfalls: list[Shortfall] = field(default_factory=list)
    satisfied_line_item_ids: list[str] = field(default_factory=list)
    failed_line_item_ids: list[str] = field(default_factory=list)
    variant_ids: list[str] = field(default_factory=list)

    @property
    def allocated_quantity(self) -> int:
        return sum(a["quantity"] for a in self.allocations)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "allocations": self.allocations,
            "allocated_quantity": self.allocated_quantity,
            "shortfalls": [s.to_dict() for s in self.shortfalls],
            "satisfied_line_item_ids": self.satisfied_line_item_ids,
            "failed_line_item_ids": self.failed_line_item_ids,
            "variant_ids": self.variant_ids,
        }


@dataclass
class _LineOutcome:
    created: list[dict]
    remaining: int
    already_satisfied: bool = False


def _allocated_to_line_item(line_item_id: str) -> int:
    existing = batch_store.list_allocations(line_item_ids=[line_item_id])
    return sum(max(safe_quantity(a.quantity), 0) for a in existing)


def _fifo_candidates(batches: list) -> list:
    in_stock = [b for b in batches if safe_quantity(b.quantity) > 0]
    return sorted(in_stock, key=lambda b: (sort_key_created_at(b.created_at), b.id))


def _allocate_line_item(order_id: str, item: LineItemSnapshot, quantity: int) -> _LineOutcome:
    with variant_allocation_lock(item.variant_id):
        # Row locks first: a concurrent pass for the same line item must see our
        # allocations before it decides what is still outstanding
        batches = batch_store.list_batches(variant_ids=[item.variant_id], lock=True)

        remaining = max(quantity - _allocated_to_line_item(item.id), 0)
        if remaining == 0:
            db.session.commit()
            return _LineOutcome(created=[], remaining=0, already_satisfied=True)

        allocations = batch_store.list_allocations(batch_ids=[b.id for b in batches]) if batches else []
        available = {
            entry.batch_id: entry.available
            for entry in compute_batch_availability(batches, allocations)
        }

        created: list[dict] = []
        for batch in _fifo_candidates(batches):
            if remaining <= 0:
                break
            free = available.get(batch.id, 0)
            if free <= 0:
                continue

            take = min(free, remaining)
            allocation = batch_store.add_allocation(
                variant_batch_id=batch.id,
                order_line_item_id=item.id,
                quantity=take,
                metadata={"order_id": order_id, "auto": True},
            )
            created.append(allocation.to_dict())
            remaining -= take
            available[batch.id] = free - take

        db.session.commit()
        return _LineOutcome(created=created, remaining=remaining)


def allocate_order(order_id: str, *, gateway: CommerceGateway | None = None) -> AllocationResult:
    """
    Allocate lots FIFO to every line item of an order.

    Raises OrderNotFoundError if the order system does not know the order.
    """
    gw = get_gateway(gateway)
    order = gw.orders.retrieve_order(order_id)
    attempts = int(current_app.config.get("ALLOCATION_RETRY_ATTEMPTS", 3))

    result = AllocationResult(order_id=order.id)

    for item in order.items:
        quantity = safe_quantity(item.quantity)
        if not item.variant_id or quantity <= 0:
            continue

        def _op(item=item, quantity=quantity):
            return _allocate_line_item(order.id, item, quantity)

        try:
            outcome = run_with_retry(_op, attempts=attempts)
        except SQLAlchemyError:
            db.session.rollback()
            raise
        except Exception:
            db.session.rollback()
            current_app.logger.exception(
                "Variant batch allocation failed for order %s line item %s", order.id, item.id
            )
            result.failed_line_item_ids.append(item.id)
            continue

        if outcome.already_satisfied:
            result.satisfied_line_item_ids.append(item.id)
            continue

        result.allocations.extend(outcome.created)
        if outcome.created and item.variant_id not in result.variant_ids:
            result.variant_ids.append(item.variant_id)

        if outcome.remaining > 0:
            shortfall = Shortfall(
                order_id=order.id,
                line_item_id=item.id,
                variant_id=item.variant_id,
                missing=outcome.remaining,
            )
            result.shortfalls.append(shortfall)
            current_app.logger.warning(
                "Variant batch allocation shortfall for order %s line item %s: missing %s",
                order.id,
                item.id,
                outcome.remaining,
            )

    current_app.logger.info(
        "Allocated %s unit(s) across %s allocation(s) for order %s (%s shortfall(s))",
        result.allocated_quantity,
        len(result.allocations),
        order.id,
        len(result.shortfalls),
    )
    return result
