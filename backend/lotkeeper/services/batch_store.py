# Overview: Data access for lots and allocations. No policy lives here.

from __future__ import annotations

from typing import Iterable

from sqlalchemy import or_

from ..extensions import db
from ..models import VariantBatch, VariantBatchAllocation
from .concurrency import lock_for_update


BATCH_MUTABLE_FIELDS = {
    "variant_id",
    "lot_number",
    "quantity",
    "coa_file_key",
    "received_at",
    "invoice_url",
    "lab_invoice_url",
    "supplier_cost_per_vial",
    "testing_cost",
    "metadata_json",
}


class BatchNotFoundError(LookupError):
    """Raised when a lot id does not exist."""


class AllocationNotFoundError(LookupError):
    """Raised when an allocation id does not exist."""


def _unique(ids: Iterable[str | int | None]) -> list:
    seen = []
    for value in ids:
        if value is None or value == "":
            continue
        if value not in seen:
            seen.append(value)
    return seen


def get_batch(batch_id: int) -> VariantBatch:
    batch = db.session.get(VariantBatch, batch_id)
    if batch is None:
        raise BatchNotFoundError(f"variant batch {batch_id} not found")
    return batch


def list_batches(
    *,
    variant_ids: Iterable[str] | None = None,
    batch_ids: Iterable[int] | None = None,
    lot_number: str | None = None,
    has_coa: bool | None = None,
    min_quantity: int | None = None,
    max_quantity: int | None = None,
    limit: int | None = None,
    offset: int = 0,
    lock: bool = False,
) -> list[VariantBatch]:
    """
    List lots, oldest first.

    Passing an empty iterable for variant_ids / batch_ids matches nothing
    (as opposed to None, which does not filter).
    """
    q = db.session.query(VariantBatch)
    if variant_ids is not None:
        ids = _unique(variant_ids)
        if not ids:
            return []
        q = q.filter(VariantBatch.variant_id.in_(ids))
    if batch_ids is not None:
        ids = _unique(batch_ids)
        if not ids:
            return []
        q = q.filter(VariantBatch.id.in_(ids))
    if lot_number is not None:
        q = q.filter(VariantBatch.lot_number == lot_number)
    if has_coa is True:
        q = q.filter(VariantBatch.coa_file_key.isnot(None), VariantBatch.coa_file_key != "")
    elif has_coa is False:
        q = q.filter(or_(VariantBatch.coa_file_key.is_(None), VariantBatch.coa_file_key == ""))
    if min_quantity is not None:
        q = q.filter(VariantBatch.quantity >= min_quantity)
    if max_quantity is not None:
        q = q.filter(VariantBatch.quantity <= max_quantity)
    if lock:
        q = lock_for_update(q)

    q = q.order_by(VariantBatch.created_at.asc(), VariantBatch.id.asc())
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def find_batch_for_variant_lot(variant_id: str, lot_number: str) -> VariantBatch | None:
    return (
        db.session.query(VariantBatch)
        .filter(VariantBatch.variant_id == variant_id, VariantBatch.lot_number == lot_number)
        .first()
    )


def add_batch(**fields) -> VariantBatch:
    batch = VariantBatch()
    apply_batch_patch(batch, fields)
    if batch.quantity is None:
        batch.quantity = 0
    db.session.add(batch)
    db.session.flush()
    return batch


def apply_batch_patch(batch: VariantBatch, patch: dict) -> None:
    for k, v in patch.items():
        if k not in BATCH_MUTABLE_FIELDS:
            continue
        setattr(batch, k, v)


def remove_batch(batch: VariantBatch) -> None:
    db.session.delete(batch)
    db.session.flush()


def get_allocation(allocation_id: int) -> VariantBatchAllocation:
    allocation = db.session.get(VariantBatchAllocation, allocation_id)
    if allocation is None:
        raise AllocationNotFoundError(f"allocation {allocation_id} not found")
    return allocation


def _allocation_query(
    *,
    batch_ids: Iterable[int] | None = None,
    line_item_ids: Iterable[str] | None = None,
):
    q = db.session.query(VariantBatchAllocation)
    if batch_ids is not None:
        ids = _unique(batch_ids)
        if not ids:
            return None
        q = q.filter(VariantBatchAllocation.variant_batch_id.in_(ids))
    if line_item_ids is not None:
        ids = _unique(line_item_ids)
        if not ids:
            return None
        q = q.filter(VariantBatchAllocation.order_line_item_id.in_(ids))
    return q


def list_allocations(
    *,
    batch_ids: Iterable[int] | None = None,
    line_item_ids: Iterable[str] | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[VariantBatchAllocation]:
    q = _allocation_query(batch_ids=batch_ids, line_item_ids=line_item_ids)
    if q is None:
        return []
    q = q.order_by(VariantBatchAllocation.created_at.asc(), VariantBatchAllocation.id.asc())
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def count_allocations(
    *,
    batch_ids: Iterable[int] | None = None,
    line_item_ids: Iterable[str] | None = None,
) -> int:
    q = _allocation_query(batch_ids=batch_ids, line_item_ids=line_item_ids)
    if q is None:
        return 0
    return q.count()


def list_allocations_tagged_with_order(order_id: str) -> list[VariantBatchAllocation]:
    """Allocations whose metadata.order_id matches, independent of the order record."""
    return (
        db.session.query(VariantBatchAllocation)
        .filter(VariantBatchAllocation.metadata_json["order_id"].as_string() == str(order_id))
        .order_by(VariantBatchAllocation.id.asc())
        .all()
    )


def add_allocation(
    *,
    variant_batch_id: int,
    order_line_item_id: str,
    quantity: int = 1,
    metadata: dict | None = None,
) -> VariantBatchAllocation:
    allocation = VariantBatchAllocation(
        variant_batch_id=variant_batch_id,
        order_line_item_id=order_line_item_id,
        quantity=quantity,
        metadata_json=metadata,
    )
    db.session.add(allocation)
    db.session.flush()
    return allocation


def remove_allocations(allocation_ids: Iterable[int]) -> int:
    """Bulk delete by id; returns the number of rows removed."""
    ids = _unique(allocation_ids)
    if not ids:
        return 0
    deleted = (
        db.session.query(VariantBatchAllocation)
        .filter(VariantBatchAllocation.id.in_(ids))
        .delete()
    )
    db.session.flush()
    return int(deleted or 0)
