# Overview: HTTP-level tests for the admin, store, event and health routes.

"""
Route Tests

Status codes and payload shapes as seen by API clients:
- /health
- /admin/variant-batches (+ allocations, inventory item view)
- /store/variant-batches, /store/orders/<id>/variant-batches, /store/coa/<lot>
- /events/payment-captured, /events/order-canceled
"""

from conftest import day, level_quantities
from lotkeeper.models import VariantBatch, VariantBatchAllocation


class TestHealth:
    def test_health_reports_counts(self, client, db_session, make_batch):
        make_batch("variant_a", "LOT-1", 5)

        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["details"]["variant_batches"] == 1
        assert data["at_price_sync_enabled"] is True
        assert data["coa_storage_configured"] is True


class TestAdminBatches:
    def test_create(self, client, db_session):
        response = client.post("/admin/variant-batches", json={
            "variant_id": "variant_a",
            "lot_number": " LOT-1 ",
            "quantity": "10",
            "supplier_cost_per_vial": "2.50",
            "received_at": "2026-03-01T09:30:00Z",
            "metadata": {"supplier": "Acme"},
        })

        assert response.status_code == 201
        batch = response.get_json()["batch"]
        assert batch["lot_number"] == "LOT-1"
        assert batch["quantity"] == 10
        assert batch["received_at"] == "2026-03-01T09:30:00Z"
        assert batch["metadata"] == {"supplier": "Acme"}

    def test_create_missing_required(self, client, db_session):
        response = client.post("/admin/variant-batches", json={"variant_id": "variant_a"})

        assert response.status_code == 400
        assert "lot_number" in response.get_json()["error"]

    def test_create_rejects_unknown_and_readonly_fields(self, client, db_session):
        response = client.post("/admin/variant-batches", json={
            "variant_id": "variant_a",
            "lot_number": "LOT-1",
            "version_id": 7,
        })
        assert response.status_code == 400
        assert "not allowed" in response.get_json()["error"]

    def test_create_rejects_bad_numbers(self, client, db_session):
        negative = client.post("/admin/variant-batches", json={
            "variant_id": "variant_a", "lot_number": "LOT-1", "quantity": -1,
        })
        fractional = client.post("/admin/variant-batches", json={
            "variant_id": "variant_a", "lot_number": "LOT-1", "quantity": 1.5,
        })
        bad_cost = client.post("/admin/variant-batches", json={
            "variant_id": "variant_a", "lot_number": "LOT-1", "testing_cost": "lots",
        })

        assert negative.status_code == 400
        assert fractional.status_code == 400
        assert bad_cost.status_code == 400

    def test_duplicate_lot_is_conflict(self, client, db_session, make_batch):
        make_batch("variant_a", "LOT-1", 5)

        response = client.post("/admin/variant-batches", json={"variant_id": "variant_a", "lot_number": "LOT-1"})

        assert response.status_code == 409

    def test_list_with_filters(self, client, db_session, make_batch, make_allocation):
        batch = make_batch("variant_a", "LOT-1", 5, coa_file_key="coa/lot-1.pdf", created_at=day(1))
        make_batch("variant_a", "LOT-2", 5, created_at=day(2))
        make_allocation(batch, "li_1", 2)

        everything = client.get("/admin/variant-batches").get_json()
        with_coa = client.get("/admin/variant-batches?has_coa=true").get_json()
        limited = client.get("/admin/variant-batches?limit=1&offset=1").get_json()

        assert everything["count"] == 2
        assert everything["batches"][0]["available_quantity"] == 3
        assert [b["lot_number"] for b in with_coa["batches"]] == ["LOT-1"]
        assert [b["lot_number"] for b in limited["batches"]] == ["LOT-2"]

    def test_get_one(self, client, db_session, make_batch):
        batch = make_batch("variant_a", "LOT-1", 5)

        assert client.get(f"/admin/variant-batches/{batch.id}").get_json()["batch"]["lot_number"] == "LOT-1"
        assert client.get("/admin/variant-batches/999").status_code == 404

    def test_patch(self, client, db_session, make_batch):
        batch = make_batch("variant_a", "LOT-1", 5)

        response = client.patch(f"/admin/variant-batches/{batch.id}", json={"quantity": 9, "coa_file_key": "coa/x.pdf"})

        assert response.status_code == 200
        data = response.get_json()["batch"]
        assert data["quantity"] == 9
        assert data["has_coa"] is True

    def test_patch_errors(self, client, db_session, make_batch):
        make_batch("variant_a", "LOT-1", 5)
        second = make_batch("variant_a", "LOT-2", 5)

        assert client.patch(f"/admin/variant-batches/{second.id}", json={}).status_code == 400
        assert client.patch("/admin/variant-batches/999", json={"quantity": 1}).status_code == 404
        assert client.patch(f"/admin/variant-batches/{second.id}", json={"lot_number": "LOT-1"}).status_code == 409
        assert client.patch(f"/admin/variant-batches/{second.id}", json={"lot_number": None}).status_code == 400

    def test_delete(self, client, db_session, make_batch, make_allocation):
        batch = make_batch("variant_a", "LOT-1", 5)
        make_allocation(batch, "li_1", 1)
        batch_id = batch.id

        assert client.delete(f"/admin/variant-batches/{batch_id}").status_code == 204
        assert client.delete(f"/admin/variant-batches/{batch_id}").status_code == 404

        db_session.expire_all()
        assert db_session.query(VariantBatch).count() == 0
        assert db_session.query(VariantBatchAllocation).count() == 0


class TestAdminAllocations:
    def test_create_and_list(self, client, db_session, make_batch, make_order):
        batch = make_batch("variant_a", "LOT-1", 5)
        make_order("order_1", [("li_1", "variant_a", 1)])

        created = client.post("/admin/variant-batches/allocations", json={
            "variant_batch_id": batch.id,
            "order_line_item_id": "li_1",
            "metadata": {"note": "hand-picked"},
        })
        listed = client.get(f"/admin/variant-batches/allocations?variant_batch_id={batch.id}")

        assert created.status_code == 201
        assert created.get_json()["allocation"]["quantity"] == 1
        rows = listed.get_json()["allocations"]
        assert rows[0]["line_item"]["id"] == "li_1"
        assert rows[0]["order"]["id"] == "order_1"
        assert rows[0]["metadata"] == {"note": "hand-picked"}

    def test_create_validation(self, client, db_session, make_batch):
        batch = make_batch("variant_a", "LOT-1", 5)

        missing = client.post("/admin/variant-batches/allocations", json={"variant_batch_id": batch.id})
        zero = client.post("/admin/variant-batches/allocations", json={
            "variant_batch_id": batch.id, "order_line_item_id": "li_1", "quantity": 0,
        })
        no_batch = client.post("/admin/variant-batches/allocations", json={
            "variant_batch_id": 999, "order_line_item_id": "li_1",
        })

        assert missing.status_code == 400
        assert zero.status_code == 400
        assert no_batch.status_code == 404

    def test_delete(self, client, db_session, make_batch, make_allocation):
        batch = make_batch("variant_a", "LOT-1", 5)
        allocation_id = make_allocation(batch, "li_1", 1).id

        assert client.delete(f"/admin/variant-batches/allocations/{allocation_id}").status_code == 204
        assert client.delete(f"/admin/variant-batches/allocations/{allocation_id}").status_code == 404

    def test_inventory_item_view(self, client, db_session, make_variant, make_batch):
        make_variant("variant_a", inventory_item_id="iitem_a")
        make_batch("variant_a", "LOT-1", 5)

        found = client.get("/admin/inventory-items/iitem_a/variant-batches")
        missing = client.get("/admin/inventory-items/iitem_none/variant-batches")

        assert found.status_code == 200
        assert found.get_json()["count"] == 1
        assert missing.status_code == 404


class TestStoreRoutes:
    def test_variant_batches_requires_ids(self, client, db_session):
        assert client.get("/store/variant-batches").status_code == 400
        assert client.get("/store/variant-batches?variant_ids=, ,").status_code == 400

    def test_variant_batches(self, client, db_session, make_batch, make_allocation):
        batch = make_batch("variant_a", "LOT-1", 5)
        make_allocation(batch, "li_1", 2)

        data = client.get("/store/variant-batches?variant_ids=variant_a,variant_b").get_json()

        assert [v["variant_id"] for v in data["variants"]] == ["variant_a", "variant_b"]
        assert data["variants"][0]["batches"][0]["available_quantity"] == 3
        assert data["variants"][1]["batches"] == []

    def test_order_lots(self, client, db_session, make_batch, make_allocation, make_order):
        batch = make_batch("variant_a", "LOT 7/A", 5, coa_file_key="coa/lot-7a.pdf")
        make_order("order_1", [("li_1", "variant_a", 2), ("li_2", "variant_b", 1)])
        make_allocation(batch, "li_1", 2, order_id="order_1")

        data = client.get("/store/orders/order_1/variant-batches").get_json()

        first, second = data["items"]
        assert first["batches"][0]["lot_number"] == "LOT 7/A"
        assert first["batches"][0]["coa_url"] == "https://api.example.com/store/coa/LOT%207%2FA"
        assert second["batches"] == []

    def test_order_lots_unknown_order(self, client, db_session):
        assert client.get("/store/orders/order_missing/variant-batches").status_code == 404


class TestCoaRedirect:
    def test_redirects_to_storage(self, client, db_session, make_batch):
        make_batch("variant_a", "LOT-1", 5, coa_file_key="coa/lot-1.pdf")

        response = client.get("/store/coa/LOT-1")

        assert response.status_code == 302
        assert response.headers["Location"] == "https://minio.example.com/coa-docs/coa/lot-1.pdf"

    def test_pdf_suffix_tolerated(self, client, db_session, make_batch):
        make_batch("variant_a", "LOT-1", 5, coa_file_key="coa/lot-1.pdf")

        assert client.get("/store/coa/LOT-1.pdf").status_code == 302

    def test_oldest_lot_wins_across_variants(self, client, db_session, make_batch):
        make_batch("variant_b", "LOT-1", 5, coa_file_key="coa/newer.pdf", created_at=day(5))
        make_batch("variant_a", "LOT-1", 5, coa_file_key="coa/older.pdf", created_at=day(1))

        response = client.get("/store/coa/LOT-1")

        assert response.headers["Location"].endswith("/coa/older.pdf")

    def test_plain_http_endpoint(self, client, db_session, app, monkeypatch, make_batch):
        monkeypatch.setitem(app.config, "COA_STORAGE_ENDPOINT", "http://localhost:9000")
        monkeypatch.setitem(app.config, "COA_STORAGE_BUCKET", None)
        make_batch("variant_a", "LOT-1", 5, coa_file_key="coa/lot-1.pdf")

        response = client.get("/store/coa/LOT-1")

        assert response.headers["Location"] == "http://localhost:9000/medusa-media/coa/lot-1.pdf"

    def test_missing_coa(self, client, db_session, make_batch):
        make_batch("variant_a", "LOT-1", 5)

        assert client.get("/store/coa/LOT-1").status_code == 404
        assert client.get("/store/coa/LOT-404").status_code == 404

    def test_empty_lot(self, client, db_session):
        assert client.get("/store/coa/.pdf").status_code == 400

    def test_storage_not_configured(self, client, db_session, app, monkeypatch, make_batch):
        monkeypatch.setitem(app.config, "COA_STORAGE_ENDPOINT", "")
        make_batch("variant_a", "LOT-1", 5, coa_file_key="coa/lot-1.pdf")

        assert client.get("/store/coa/LOT-1").status_code == 500


class TestEvents:
    def test_payment_captured_requires_id(self, client, db_session):
        assert client.post("/events/payment-captured", json={}).status_code == 400

    def test_payment_without_order_is_accepted(self, client, db_session, make_payment):
        make_payment("pay_orphan")

        response = client.post("/events/payment-captured", json={"id": "pay_orphan"})

        assert response.status_code == 202
        assert response.get_json()["allocated"] is False

    def test_order_id_resolved_from_payment_metadata(
        self, client, db_session, make_batch, make_order, make_payment, make_variant, make_location, make_level
    ):
        make_location("sloc_main")
        make_variant("variant_a", inventory_item_id="iitem_a")
        make_level("iitem_a", "sloc_main", 10)
        make_batch("variant_a", "LOT-1", 10)
        make_order("order_1", [("li_1", "variant_a", 3)])
        make_payment("pay_1", metadata={"venmo_order_id": "order_1"})

        response = client.post("/events/payment-captured", json={"id": "pay_1"})

        assert response.status_code == 200
        data = response.get_json()
        assert data["allocated"] is True
        assert data["result"]["allocations"][0]["quantity"] == 3
        db_session.expire_all()
        assert level_quantities("iitem_a") == {"sloc_main": 7}

    def test_order_id_resolved_from_payment_link(self, client, db_session, make_batch, make_order, make_payment):
        make_batch("variant_a", "LOT-1", 10)
        make_order("order_1", [("li_1", "variant_a", 1)])
        make_payment("pay_1", order_id="order_1")

        response = client.post("/events/payment-captured", json={"id": "pay_1"})

        assert response.get_json()["result"]["order_id"] == "order_1"

    def test_explicit_unknown_order(self, client, db_session):
        response = client.post("/events/payment-captured", json={"order_id": "order_missing"})
        assert response.status_code == 404

    def test_redelivery_is_idempotent(self, client, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-1", 10)
        make_order("order_1", [("li_1", "variant_a", 3)])

        client.post("/events/payment-captured", json={"order_id": "order_1"})
        second = client.post("/events/payment-captured", json={"order_id": "order_1"})

        assert second.get_json()["result"]["allocations"] == []
        db_session.expire_all()
        assert sum(a.quantity for a in db_session.query(VariantBatchAllocation).all()) == 3

    def test_order_canceled(self, client, db_session, make_batch, make_order):
        make_batch("variant_a", "LOT-1", 10)
        make_order("order_1", [("li_1", "variant_a", 3)])
        client.post("/events/payment-captured", json={"order_id": "order_1"})

        response = client.post("/events/order-canceled", json={"id": "order_1"})

        assert response.status_code == 200
        assert response.get_json()["result"]["released"] == 1
        assert client.post("/events/order-canceled", json={}).status_code == 400
