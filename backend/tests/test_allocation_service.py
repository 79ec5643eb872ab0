# Overview: Pytest coverage for FIFO allocation and release of lots.

"""
Allocation & Release Tests

Test Coverage:
- FIFO across lots by creation time
- Idempotent re-allocation
- Shortfalls reported, never raised
- Per-line-item failure isolation
- Release by line item and by metadata fallback
"""

import logging

import pytest

from conftest import day
from lotkeeper.extensions import db
from lotkeeper.models import OrderLineItem, VariantBatchAllocation
from lotkeeper.services import allocation_service, batch_store
from lotkeeper.services.allocation_service import allocate_order
from lotkeeper.services.availability_service import get_variant_availability
from lotkeeper.services.commerce_gateway import OrderNotFoundError
from lotkeeper.services.concurrency import _lock_for_variant, variant_allocation_lock
from lotkeeper.services.release_service import release_order


def _allocations_for(line_item_id):
    return (
        db.session.query(VariantBatchAllocation)
        .filter_by(order_line_item_id=line_item_id)
        .order_by(VariantBatchAllocation.id.asc())
        .all()
    )


class TestFifoAllocation:
    def test_oldest_lot_consumed_first(self, db_session, make_batch, make_order):
        b2 = make_batch("variant_a", "LOT-B", 5, created_at=day(2))
        b1 = make_batch("variant_a", "LOT-A", 5, created_at=day(1))
        make_order("order_1", [("li_1", "variant_a", 7)])

        result = allocate_order("order_1")

        rows = _allocations_for("li_1")
        assert [(r.variant_batch_id, r.quantity) for r in rows] == [(b1.id, 5), (b2.id, 2)]
        assert result.allocated_quantity == 7
        assert result.shortfalls == []
        assert result.variant_ids == ["variant_a"]

    def test_allocations_tagged_with_order(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 5)
        make_order("order_1", [("li_1", "variant_a", 1)])

        allocate_order("order_1")

        row = _allocations_for("li_1")[0]
        assert row.metadata_json == {"order_id": "order_1", "auto": True}

    def test_ties_broken_by_id(self, db_session, make_batch, make_order):
        first = make_batch("variant_a", "LOT-A", 2, created_at=day(1))
        make_batch("variant_a", "LOT-B", 2, created_at=day(1))
        make_order("order_1", [("li_1", "variant_a", 2)])

        allocate_order("order_1")

        assert [r.variant_batch_id for r in _allocations_for("li_1")] == [first.id]

    def test_respects_existing_allocations_from_other_orders(
        self, db_session, make_batch, make_allocation, make_order
    ):
        b1 = make_batch("variant_a", "LOT-A", 5, created_at=day(1))
        b2 = make_batch("variant_a", "LOT-B", 5, created_at=day(2))
        make_allocation(b1, "li_other", 4, order_id="order_other")
        make_order("order_1", [("li_1", "variant_a", 3)])

        allocate_order("order_1")

        assert [(r.variant_batch_id, r.quantity) for r in _allocations_for("li_1")] == [(b1.id, 1), (b2.id, 2)]

    def test_skips_items_without_variant_or_quantity(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 5)
        make_order("order_1", [("li_1", None, 2), ("li_2", "variant_a", 0)])

        result = allocate_order("order_1")

        assert result.allocations == []
        assert result.shortfalls == []


class TestIdempotence:
    def test_second_run_allocates_nothing(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 10)
        make_order("order_1", [("li_1", "variant_a", 3)])

        allocate_order("order_1")
        second = allocate_order("order_1")

        assert second.allocations == []
        assert second.satisfied_line_item_ids == ["li_1"]
        assert sum(r.quantity for r in _allocations_for("li_1")) == 3

    def test_partial_allocation_is_topped_up(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 2, created_at=day(1))
        make_order("order_1", [("li_1", "variant_a", 5)])
        allocate_order("order_1")

        make_batch("variant_a", "LOT-B", 10, created_at=day(2))
        result = allocate_order("order_1")

        assert result.allocated_quantity == 3
        assert sum(r.quantity for r in _allocations_for("li_1")) == 5


class TestShortfall:
    def test_shortfall_reported_not_raised(self, db_session, make_batch, make_order, caplog):
        make_batch("variant_a", "LOT-A", 3)
        make_order("order_1", [("li_1", "variant_a", 7)])

        with caplog.at_level(logging.WARNING):
            result = allocate_order("order_1")

        rows = _allocations_for("li_1")
        assert [r.quantity for r in rows] == [3]
        assert len(result.shortfalls) == 1
        assert result.shortfalls[0].missing == 4
        assert result.shortfalls[0].line_item_id == "li_1"
        assert "shortfall" in caplog.text

    def test_no_lots_at_all(self, db_session, make_order):
        make_order("order_1", [("li_1", "variant_a", 2)])

        result = allocate_order("order_1")

        assert result.allocations == []
        assert result.shortfalls[0].missing == 2
        assert result.variant_ids == []

    def test_never_overallocates(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 4)
        make_order("order_1", [("li_1", "variant_a", 3)])
        make_order("order_2", [("li_2", "variant_a", 3)])

        allocate_order("order_1")
        allocate_order("order_2")

        assert get_variant_availability(["variant_a"]) == {"variant_a": 0}
        assert sum(r.quantity for r in _allocations_for("li_2")) == 1


class TestFailureIsolation:
    def test_unknown_order_raises(self, db_session):
        with pytest.raises(OrderNotFoundError):
            allocate_order("order_missing")

    def test_failing_line_item_does_not_block_others(
        self, db_session, make_batch, make_order, monkeypatch, caplog
    ):
        make_batch("variant_a", "LOT-A", 5)
        make_batch("variant_b", "LOT-B", 5)
        make_order("order_1", [("li_1", "variant_a", 1), ("li_2", "variant_b", 1)])

        real = allocation_service._allocate_line_item

        def flaky(order_id, item, quantity):
            if item.id == "li_1":
                raise RuntimeError("boom")
            return real(order_id, item, quantity)

        monkeypatch.setattr(allocation_service, "_allocate_line_item", flaky)

        with caplog.at_level(logging.ERROR):
            result = allocate_order("order_1")

        assert result.failed_line_item_ids == ["li_1"]
        assert _allocations_for("li_1") == []
        assert sum(r.quantity for r in _allocations_for("li_2")) == 1
        assert "allocation failed" in caplog.text


class TestVariantLocks:
    def test_outstanding_quantity_read_under_row_lock(self, db_session, make_batch, make_order, monkeypatch):
        make_batch("variant_a", "LOT-A", 5)
        make_order("order_1", [("li_1", "variant_a", 2)])
        calls = []

        real_list_batches = batch_store.list_batches
        real_allocated = allocation_service._allocated_to_line_item

        def recording_list_batches(**kwargs):
            calls.append(("list_batches", kwargs.get("lock", False)))
            return real_list_batches(**kwargs)

        def recording_allocated(line_item_id):
            calls.append(("already_allocated", line_item_id))
            return real_allocated(line_item_id)

        monkeypatch.setattr(batch_store, "list_batches", recording_list_batches)
        monkeypatch.setattr(allocation_service, "_allocated_to_line_item", recording_allocated)

        allocate_order("order_1")
        allocate_order("order_1")

        # Both passes, including the one that finds li_1 satisfied, lock first
        assert calls == [
            ("list_batches", True),
            ("already_allocated", "li_1"),
            ("list_batches", True),
            ("already_allocated", "li_1"),
        ]

    def test_same_variant_shares_a_lock(self):
        assert _lock_for_variant("variant_a") is _lock_for_variant("variant_a")
        assert _lock_for_variant("variant_a") is not _lock_for_variant("variant_b")

    def test_lock_is_held_inside_context(self):
        with variant_allocation_lock("variant_locked"):
            assert _lock_for_variant("variant_locked").locked()
        assert not _lock_for_variant("variant_locked").locked()


class TestRelease:
    def test_release_returns_units(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 5)
        make_order("order_1", [("li_1", "variant_a", 4)])
        allocate_order("order_1")

        result = release_order("order_1")

        assert result.released == 1
        assert result.used_metadata_fallback is False
        assert result.variant_ids == ["variant_a"]
        assert get_variant_availability(["variant_a"]) == {"variant_a": 5}

    def test_release_spanning_two_lots(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 5, created_at=day(1))
        make_batch("variant_a", "LOT-B", 5, created_at=day(2))
        make_order("order_1", [("li_1", "variant_a", 7)])
        allocate_order("order_1")
        assert len(_allocations_for("li_1")) == 2

        result = release_order("order_1")

        assert result.released == 2
        assert _allocations_for("li_1") == []
        assert get_variant_availability(["variant_a"]) == {"variant_a": 10}

    def test_release_covers_line_items_no_longer_on_order(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 10)
        make_order("order_1", [("li_1", "variant_a", 2), ("li_2", "variant_a", 3)])
        allocate_order("order_1")

        db_session.delete(db_session.get(OrderLineItem, "li_2"))
        db_session.commit()

        result = release_order("order_1")

        assert result.released == 2
        assert result.used_metadata_fallback is False
        assert _allocations_for("li_2") == []
        assert get_variant_availability(["variant_a"]) == {"variant_a": 10}

    def test_release_is_idempotent(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 5)
        make_order("order_1", [("li_1", "variant_a", 2)])
        allocate_order("order_1")

        release_order("order_1")
        second = release_order("order_1")

        assert second.released == 0

    def test_missing_order_falls_back_to_metadata(self, db_session, make_batch, make_allocation):
        batch = make_batch("variant_a", "LOT-A", 5)
        make_allocation(batch, "li_gone", 2, order_id="order_gone")
        make_allocation(batch, "li_keep", 1, order_id="order_other")

        result = release_order("order_gone")

        assert result.used_metadata_fallback is True
        assert result.released == 1
        assert _allocations_for("li_gone") == []
        assert len(_allocations_for("li_keep")) == 1

    def test_order_without_items_falls_back_to_metadata(
        self, db_session, make_batch, make_allocation, make_order
    ):
        batch = make_batch("variant_a", "LOT-A", 5)
        make_order("order_empty", [])
        make_allocation(batch, "li_x", 2, order_id="order_empty")

        result = release_order("order_empty")

        assert result.used_metadata_fallback is True
        assert result.released == 1

    def test_release_only_touches_own_line_items(self, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-A", 10)
        make_order("order_1", [("li_1", "variant_a", 2)])
        make_order("order_2", [("li_2", "variant_a", 3)])
        allocate_order("order_1")
        allocate_order("order_2")

        release_order("order_1")

        assert _allocations_for("li_1") == []
        assert sum(r.quantity for r in _allocations_for("li_2")) == 3
