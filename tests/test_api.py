"""Tests for the Flask API endpoints."""

from __future__ import annotations

import responses

import database.models as models
from config import settings
from services import shop_inventory


def _sale(client, **overrides):
    body = {
        "date": "2024-05-01",
        "customer_name": "Mai",
        "product_name": "Silk Scarf",
        "retail_price": 120000,
        "quantity": 1,
    }
    body.update(overrides)
    return client.post("/api/revenue", json=body)


# ===========================================================================
# Health check
# ===========================================================================


class TestHealthCheck:
    def test_health(self, client) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"

    def test_unknown_route(self, client) -> None:
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Not found"

    def test_wrong_method(self, client) -> None:
        assert client.patch("/api/inventory").status_code == 405


# ===========================================================================
# Revenue endpoints
# ===========================================================================


class TestRevenue:
    def test_create_takes_stock(self, client, db, shop_item) -> None:
        resp = _sale(client, quantity=2, shop_item_id=shop_item["id"])

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["revenue"]["shop_item_id"] == shop_item["id"]
        assert data["invoice_item"]["revenue_entry_id"] == data["revenue"]["id"]
        assert shop_inventory.get_item(db, shop_item["id"])["quantity"] == 8
        [row] = client.get("/api/inventory").get_json()
        assert (row["sold"], row["initial_quantity"]) == (2, 10)

    def test_create_rejects_bad_body(self, client) -> None:
        resp = client.post("/api/revenue", data="not json", content_type="text/plain")
        assert resp.status_code == 400
        assert "JSON object" in resp.get_json()["error"]

    def test_create_rejects_both_sources(self, client, shop_item) -> None:
        resp = _sale(client, shop_item_id=shop_item["id"], consignor_name="An")
        assert resp.status_code == 400

    def test_list_and_filter(self, client) -> None:
        _sale(client)
        _sale(client, customer_name="Lan", date="2024-05-09")

        assert len(client.get("/api/revenue").get_json()) == 2
        resp = client.get("/api/revenue?customer=lan")
        assert [e["customer_name"] for e in resp.get_json()] == ["Lan"]

    def test_get_missing(self, client) -> None:
        resp = client.get("/api/revenue/nope")
        assert resp.status_code == 404

    def test_update_and_delete(self, client, db, shop_item) -> None:
        entry = _sale(client, quantity=2, shop_item_id=shop_item["id"]).get_json()["revenue"]

        resp = client.put(f"/api/revenue/{entry['id']}", json={"quantity": 3})
        assert resp.status_code == 200
        assert shop_inventory.get_item(db, shop_item["id"])["quantity"] == 7

        resp = client.delete(f"/api/revenue/{entry['id']}")
        assert resp.status_code == 200
        assert shop_inventory.get_item(db, shop_item["id"])["quantity"] == 10
        assert models.get_collection(db, models.INVOICES) == []

    def test_status_change(self, client, db, shop_item) -> None:
        entry = _sale(client, quantity=2, shop_item_id=shop_item["id"]).get_json()["revenue"]

        resp = client.patch(f"/api/revenue/{entry['id']}/status", json={"status": "RETURNED"})

        assert resp.status_code == 200
        assert shop_inventory.get_item(db, shop_item["id"])["quantity"] == 10

    def test_status_required(self, client) -> None:
        entry = _sale(client).get_json()["revenue"]
        resp = client.patch(f"/api/revenue/{entry['id']}/status", json={})
        assert resp.status_code == 400


# ===========================================================================
# Invoice endpoints
# ===========================================================================


class TestInvoices:
    def test_status_flows_back_to_revenue(self, client, db) -> None:
        """Returning a whole invoice puts S2 back from 4 to 6."""
        s2 = shop_inventory.create_item(db, {"product_name": "Bag", "quantity": 6})
        entry = _sale(client, product_name="Bag", quantity=2, shop_item_id=s2["id"]).get_json()["revenue"]
        [invoice] = client.get("/api/invoices").get_json()

        resp = client.post(f"/api/invoices/{invoice['id']}/status", json={"status": "RETURNED"})

        assert resp.status_code == 200
        assert shop_inventory.get_item(db, s2["id"])["quantity"] == 6
        assert client.get(f"/api/revenue/{entry['id']}").get_json()["status"] == "RETURNED"

    def test_status_validation(self, client) -> None:
        _sale(client)
        [invoice] = client.get("/api/invoices").get_json()
        url = f"/api/invoices/{invoice['id']}/status"

        assert client.post(url, json={}).status_code == 400
        assert client.post(url, json={"status": "LOST"}).status_code == 400
        assert client.post(url, json={"status": "DELIVERED", "item_ids": "x"}).status_code == 400
        assert client.post("/api/invoices/nope/status", json={"status": "DELIVERED"}).status_code == 404

    def test_create_get_with_totals(self, client) -> None:
        resp = client.post(
            "/api/invoices",
            json={"customer_name": "Lan", "deposit": 50,
                  "items": [{"product_name": "Gift card", "selling_price": 100, "quantity": 2}]},
        )
        assert resp.status_code == 201
        invoice_id = resp.get_json()["invoice"]["id"]

        data = client.get(f"/api/invoices/{invoice_id}").get_json()
        assert data["totals"] == {"subtotal": 200, "deposit": 50, "balance": 150}

    def test_duplicate_customer_conflicts(self, client) -> None:
        client.post("/api/invoices", json={"customer_name": "Lan"})
        resp = client.post("/api/invoices", json={"customer_name": "lan"})
        assert resp.status_code == 409

    def test_linked_invoice_cannot_be_deleted(self, client) -> None:
        _sale(client)
        [invoice] = client.get("/api/invoices").get_json()
        assert client.delete(f"/api/invoices/{invoice['id']}").status_code == 400

    def test_rebuild(self, client, db) -> None:
        _sale(client)
        models.write_collection(db, models.INVOICES, [])

        resp = client.post("/api/invoices/rebuild")

        assert resp.status_code == 200
        assert resp.get_json()["mirrored"] == 1
        assert len(models.get_collection(db, models.INVOICES)) == 1


# ===========================================================================
# Consignment endpoints
# ===========================================================================


class TestConsignment:
    def test_crud(self, client) -> None:
        resp = client.post(
            "/api/consignment",
            json={"consignor_name": "An", "product_name": "Dress", "consignment_price": 200000},
        )
        assert resp.status_code == 201
        item_id = resp.get_json()["id"]

        resp = client.put(f"/api/consignment/{item_id}", json={"status": "SOLD"})
        assert resp.get_json()["status"] == "SOLD"
        assert len(client.get("/api/consignment?status=SOLD").get_json()) == 1

        assert client.delete(f"/api/consignment/{item_id}").status_code == 200
        assert client.delete(f"/api/consignment/{item_id}").status_code == 404

    def test_settle(self, client, db, consignment_item) -> None:
        client.put(f"/api/consignment/{consignment_item['id']}", json={"status": "SOLD"})

        resp = client.post("/api/consignors/An/settle")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["total_commission"] == 120000
        assert data["total_payout"] == 480000
        assert models.get_collection(db, models.CONSIGNMENT) == []

    def test_settle_nothing_sold(self, client, consignment_item) -> None:
        resp = client.post("/api/consignors/An/settle")
        assert resp.status_code == 400

    def test_summary_and_delete_consignor(self, client, consignment_item) -> None:
        [row] = client.get("/api/consignors").get_json()
        assert row["consignor"] == "An"
        assert row["by_status"]["IN_STOCK"] == 3

        resp = client.delete("/api/consignors/An")
        assert resp.get_json() == {"removed": 1}
        assert client.delete("/api/consignors/An").status_code == 404


# ===========================================================================
# Shop inventory and customers
# ===========================================================================


class TestInventory:
    def test_crud_and_value(self, client) -> None:
        resp = client.post(
            "/api/inventory",
            json={"product_name": "Belt", "import_price": 10, "retail_price": 30, "quantity": 4},
        )
        assert resp.status_code == 201
        item_id = resp.get_json()["id"]

        client.put(f"/api/inventory/{item_id}", json={"quantity": 5})
        assert client.get("/api/inventory/value").get_json() == {
            "units": 5, "import_value": 50, "retail_value": 150,
        }
        assert len(client.get("/api/inventory?search=belt").get_json()) == 1
        assert client.delete(f"/api/inventory/{item_id}").status_code == 200

    def test_invalid_item(self, client) -> None:
        resp = client.post("/api/inventory", json={"product_name": "", "quantity": 1})
        assert resp.status_code == 400


class TestCustomers:
    def test_list_get_and_save(self, client) -> None:
        _sale(client)
        resp = client.put("/api/customers/Mai", json={"phone": "0901"})
        assert resp.status_code == 200

        [row] = client.get("/api/customers").get_json()
        assert row["name"] == "Mai"
        assert row["phone"] == "0901"
        detail = client.get("/api/customers/Mai").get_json()
        assert len(detail["purchase_history"]) == 1
        assert client.get("/api/customers/Nobody").status_code == 404


# ===========================================================================
# Reports, sync and adjustments
# ===========================================================================


class TestReports:
    def test_revenue_report(self, client) -> None:
        _sale(client, quantity=2)
        _sale(client, date="2024-06-01")

        resp = client.get("/api/reports/revenue?date_from=2024-05-01&date_to=2024-05-31&top=1")

        data = resp.get_json()
        assert data["totals"]["revenue"] == 240000
        assert len(data["top_products"]) == 1

    def test_dashboard(self, client) -> None:
        data = client.get("/api/dashboard").get_json()
        assert data["totals"]["transactions"] == 0
        assert len(data["daily_revenue"]) == 30


class TestSync:
    def test_push_not_configured(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "cloud_url", "")
        resp = client.post("/api/sync/push")
        assert resp.status_code == 502
        assert client.get("/api/sync/status").get_json()["configured"] is False

    @responses.activate
    def test_push(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "cloud_url", "https://proj.supabase.co")
        monkeypatch.setattr(settings, "cloud_key", "k")
        responses.add(responses.POST, "https://proj.supabase.co/rest/v1/shop_data", status=201)

        resp = client.post("/api/sync/push")

        assert resp.status_code == 200
        assert resp.get_json()["record_id"] == "current_store_data"

    @responses.activate
    def test_pull(self, client, db, monkeypatch) -> None:
        monkeypatch.setattr(settings, "cloud_url", "https://proj.supabase.co")
        monkeypatch.setattr(settings, "cloud_key", "k")
        responses.add(
            responses.GET,
            "https://proj.supabase.co/rest/v1/shop_data",
            json=[{"content": {"customers": [{"name": "Mai"}]}}],
        )

        resp = client.post("/api/sync/pull")

        assert resp.get_json() == {"restored": ["customers"]}
        assert models.get_collection(db, models.CUSTOMERS) == [{"name": "Mai"}]


class TestAdjustments:
    def test_nothing_to_retry(self, client) -> None:
        assert client.get("/api/adjustments/failed").get_json() == []
        resp = client.post("/api/adjustments/retry")
        assert resp.get_json() == {"retried": 0, "still_failed": 0, "outcomes": []}
