# Overview: Derives available-to-sell quantities from lots and their allocations.

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from . import batch_store
from lotkeeper.time_utils import to_utc_z
"""
Availability Invariants (authoritative)

- available(batch) = max(batch.quantity - SUM(allocations on batch), 0)
- Clamped at zero: an overallocated lot reports 0, never a negative number.
- Allocation rows with non-positive or non-numeric quantity are ignored.
- A variant's available-to-sell quantity is the sum over its lots.
- Every requested variant is present in the result, with 0 when it has no lots.
- Pure derivation: nothing here writes to the database.
"""


@dataclass(frozen=True)
class BatchAvailability:
    batch_id: int
    variant_id: str
    lot_number: str | None
    quantity: int
    allocated: int
    available: int
    has_coa: bool
    created_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "id": self.batch_id,
            "variant_id": self.variant_id,
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "allocated_quantity": self.allocated,
            "available_quantity": self.available,
            "has_coa": self.has_coa,
            "created_at": to_utc_z(self.created_at),
        }


def safe_quantity(value) -> int:
    """Coerce a stored quantity to int; anything non-finite or unparsable counts as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number)


def allocated_by_batch(allocations: Iterable) -> dict[int, int]:
    totals: dict[int, int] = {}
    for allocation in allocations:
        batch_id = allocation.variant_batch_id
        if batch_id is None:
            continue
        quantity = safe_quantity(allocation.quantity)
        if quantity <= 0:
            continue
        totals[batch_id] = totals.get(batch_id, 0) + quantity
    return totals


def available_quantity(batch, allocated: int) -> int:
    return max(safe_quantity(batch.quantity) - allocated, 0)


def compute_batch_availability(batches: Iterable, allocations: Iterable) -> list[BatchAvailability]:
    """Per-lot availability, in the order the lots were given."""
    allocated = allocated_by_batch(allocations)
    result = []
    for batch in batches:
        used = allocated.get(batch.id, 0)
        result.append(
            BatchAvailability(
                batch_id=batch.id,
                variant_id=batch.variant_id,
                lot_number=batch.lot_number,
                quantity=safe_quantity(batch.quantity),
                allocated=used,
                available=available_quantity(batch, used),
                has_coa=bool(batch.coa_file_key),
                created_at=batch.created_at,
            )
        )
    return result


def compute_variant_availability(
    variant_ids: Iterable[str],
    batches: Iterable,
    allocations: Iterable,
) -> dict[str, int]:
    totals: dict[str, int] = {variant_id: 0 for variant_id in variant_ids if variant_id}
    for entry in compute_batch_availability(batches, allocations):
        if not entry.variant_id:
            continue
        totals[entry.variant_id] = totals.get(entry.variant_id, 0) + entry.available
    return totals


def _load(variant_ids: list[str]):
    batches = batch_store.list_batches(variant_ids=variant_ids)
    allocations = batch_store.list_allocations(batch_ids=[b.id for b in batches]) if batches else []
    return batches, allocations


def get_variant_availability(variant_ids: Iterable[str]) -> dict[str, int]:
    """Available-to-sell per variant, read fresh from the batch store."""
    ids = [v for v in dict.fromkeys(variant_ids) if v]
    if not ids:
        return {}
    batches, allocations = _load(ids)
    return compute_variant_availability(ids, batches, allocations)


def list_variant_batch_summaries(variant_ids: Iterable[str]) -> list[dict]:
    """
    Storefront view: for each requested variant (in request order) its lots with
    available quantity and COA flag. Lots with nothing left are still listed.
    """
    ids = [v for v in dict.fromkeys(variant_ids) if v]
    if not ids:
        return []
    batches, allocations = _load(ids)

    by_variant: dict[str, list[dict]] = {}
    for entry in compute_batch_availability(batches, allocations):
        summary = entry.to_dict()
        by_variant.setdefault(entry.variant_id, []).append({
            "id": summary["id"],
            "lot_number": summary["lot_number"],
            "available_quantity": summary["available_quantity"],
            "has_coa": summary["has_coa"],
            "created_at": summary["created_at"],
        })

    return [
        {"variant_id": variant_id, "batches": by_variant.get(variant_id, [])}
        for variant_id in ids
    ]


def attach_inventory_quantities(variants: list[dict]) -> list[dict]:
    """
    Set inventory_quantity on each variant dict from lot availability.

    Variants flagged manage_inventory=False keep whatever quantity they had.
    """
    ids = [v.get("id") for v in variants if v.get("id")]
    if not ids:
        return variants
    totals = get_variant_availability(ids)
    for variant in variants:
        variant_id = variant.get("id")
        if not variant_id or variant.get("manage_inventory") is False:
            continue
        variant["inventory_quantity"] = totals.get(variant_id, 0)
    return variants
