# Overview: Weighted-average per-unit cost of a variant's in-stock lots.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from . import batch_store
"""
Valuation Invariants (authoritative)

- Only lots with quantity > 0 qualify.
- per_unit = supplier_cost_per_vial + testing_cost / quantity
- Missing or non-finite costs count as 0. Such a lot still contributes its
  quantity, which pulls the average down; it is not excluded.
- weighted = SUM(per_unit_i * quantity_i) / SUM(quantity_i)
- No qualifying lot -> None ("no data"). None is never coerced to 0.
"""

_ZERO = Decimal("0")
_CENT = Decimal("0.01")


def _to_decimal(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not dec.is_finite():
        return None
    return dec


def _qualifying_quantity(batch) -> Decimal | None:
    quantity = _to_decimal(batch.quantity)
    if quantity is None or quantity <= 0:
        return None
    return quantity


def per_unit_cost(batch) -> Decimal | None:
    """Supplier cost plus this lot's share of its lab-testing cost; None for empty lots."""
    quantity = _qualifying_quantity(batch)
    if quantity is None:
        return None
    supplier = _to_decimal(batch.supplier_cost_per_vial) or _ZERO
    testing = _to_decimal(batch.testing_cost) or _ZERO
    return supplier + testing / quantity


def compute_weighted_unit_cost(batches: Iterable) -> Decimal | None:
    total_cost = _ZERO
    total_units = _ZERO
    for batch in batches:
        quantity = _qualifying_quantity(batch)
        if quantity is None:
            continue
        total_cost += per_unit_cost(batch) * quantity
        total_units += quantity
    if total_units <= 0:
        return None
    return total_cost / total_units


def compute_unit_costs_by_variant(batches: Iterable) -> dict[str, Decimal]:
    """Weighted cost per variant; variants without a qualifying lot are absent."""
    grouped: dict[str, list] = {}
    for batch in batches:
        if not batch.variant_id:
            continue
        grouped.setdefault(batch.variant_id, []).append(batch)

    result: dict[str, Decimal] = {}
    for variant_id, rows in grouped.items():
        cost = compute_weighted_unit_cost(rows)
        if cost is not None:
            result[variant_id] = cost
    return result


def get_unit_costs(variant_ids: Iterable[str]) -> dict[str, Decimal]:
    ids = [v for v in dict.fromkeys(variant_ids) if v]
    if not ids:
        return {}
    return compute_unit_costs_by_variant(batch_store.list_batches(variant_ids=ids))


def to_minor_units(amount: Decimal) -> int:
    """Major -> minor currency units, nearest cent (half-up)."""
    return int((amount / _CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
