"""Tests for revenue <-> invoice mirroring."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

import pytest

import database.models as models
from api.exceptions import NotFoundError, ValidationError
from services import invoices, ledger, mirror


def _invoices(db: sqlite3.Connection) -> list[dict[str, Any]]:
    return models.get_collection(db, models.INVOICES)


def _mirrors_of(db: sqlite3.Connection, entry_id: str) -> list[dict[str, Any]]:
    return [
        item
        for inv in _invoices(db)
        for item in inv["items"]
        if item.get("revenue_entry_id") == entry_id
    ]


def _entry(**overrides: Any) -> dict[str, Any]:
    data = {
        "date": "2024-05-01",
        "customer_name": "Mai",
        "product_name": "Hat",
        "retail_price": 90000,
        "quantity": 1,
    }
    data.update(overrides)
    return data


# ===========================================================================
# Revenue -> invoice
# ===========================================================================


class TestMirrorCreate:
    def test_creates_invoice_for_new_customer(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]

        [invoice] = _invoices(db)
        assert invoice["customer_name"] == "Mai"
        assert invoice["deposit"] == 0
        [item] = invoice["items"]
        assert item["revenue_entry_id"] == entry["id"]
        assert item["selling_price"] == 90000
        assert item["status"] == "HOLDING"

    def test_groups_by_normalised_customer(self, db) -> None:
        first = ledger.create_revenue(db, _entry())["revenue"]
        second = ledger.create_revenue(db, _entry(customer_name="  mai "))["revenue"]

        [invoice] = _invoices(db)
        assert [i["revenue_entry_id"] for i in invoice["items"]] == [first["id"], second["id"]]

    def test_no_customer_no_mirror(self, db) -> None:
        result = ledger.create_revenue(db, _entry(customer_name="  "))
        assert result["invoice_item"] is None
        assert _invoices(db) == []

    def test_exactly_one_mirror_per_entry(self, db) -> None:
        ids = [ledger.create_revenue(db, _entry(product_name=f"P{i}"))["revenue"]["id"] for i in range(4)]
        for entry_id in ids:
            assert len(_mirrors_of(db, entry_id)) == 1


class TestMirrorUpdate:
    def test_fields_follow_entry(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]
        ledger.update_revenue(
            db, entry["id"], {"product_name": "Cap", "retail_price": 80000, "quantity": 2,
                              "status": "SHIPPING"},
        )

        [item] = _mirrors_of(db, entry["id"])
        assert item["product_name"] == "Cap"
        assert item["selling_price"] == 80000
        assert item["quantity"] == 2
        assert item["status"] == "SHIPPING"

    def test_customer_change_moves_item(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]
        item_id = _mirrors_of(db, entry["id"])[0]["id"]

        ledger.update_revenue(db, entry["id"], {"customer_name": "Lan"})

        [invoice] = _invoices(db)
        assert invoice["customer_name"] == "Lan"
        assert invoice["items"][0]["id"] == item_id

    def test_moving_keeps_non_empty_old_invoice(self, db) -> None:
        moved = ledger.create_revenue(db, _entry())["revenue"]
        ledger.create_revenue(db, _entry(product_name="Scarf"))
        ledger.update_revenue(db, moved["id"], {"customer_name": "Lan"})

        customers = sorted(inv["customer_name"] for inv in _invoices(db))
        assert customers == ["Lan", "Mai"]

    def test_clearing_customer_removes_mirror(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]
        ledger.update_revenue(db, entry["id"], {"customer_name": ""})
        assert _invoices(db) == []

    def test_adding_customer_creates_mirror(self, db) -> None:
        entry = ledger.create_revenue(db, _entry(customer_name=""))["revenue"]
        ledger.update_revenue(db, entry["id"], {"customer_name": "Mai"})
        assert len(_mirrors_of(db, entry["id"])) == 1

    def test_legacy_item_adopted_by_attributes(self, db, caplog: pytest.LogCaptureFixture) -> None:
        entry = ledger.create_revenue(db, _entry(customer_name=""))["revenue"]
        legacy = {"id": "legacy", "product_name": "hat", "selling_price": 90000, "quantity": 1,
                  "status": "HOLDING", "shop_item_id": None, "revenue_entry_id": None}
        models.write_collection(
            db, models.INVOICES, [{"id": "inv", "customer_name": "Mai", "deposit": 0, "items": [legacy]}]
        )
        old = {**entry, "customer_name": "Mai"}
        new = {**old, "quantity": 2}

        with caplog.at_level(logging.WARNING):
            item = mirror.mirror_update(db, old, new)

        assert item["id"] == "legacy"
        assert item["revenue_entry_id"] == entry["id"]
        assert item["quantity"] == 2
        assert "matched by product name" in caplog.text

    def test_stock_holding_line_never_adopted(
        self, db, shop_item, caplog: pytest.LogCaptureFixture
    ) -> None:
        entry = ledger.create_revenue(
            db, _entry(product_name="Silk Scarf", shop_item_id=shop_item["id"])
        )["revenue"]
        # The mirror went missing; the invoice only has a line selling its own stock.
        standalone = {"id": "own", "product_name": "Silk Scarf", "selling_price": 120000,
                      "quantity": 1, "status": "HOLDING", "shop_item_id": shop_item["id"],
                      "revenue_entry_id": None}
        [invoice] = _invoices(db)
        models.write_collection(db, models.INVOICES, [dict(invoice, items=[standalone])])

        with caplog.at_level(logging.WARNING):
            ledger.delete_revenue(db, entry["id"])

        [kept] = _invoices(db)
        assert kept["items"] == [standalone]
        assert "holds shop stock" in caplog.text


class TestMirrorDelete:
    def test_removes_item_and_empty_invoice(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]
        ledger.delete_revenue(db, entry["id"])
        assert _invoices(db) == []

    def test_keeps_invoice_with_other_items(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]
        other = ledger.create_revenue(db, _entry(product_name="Scarf"))["revenue"]
        ledger.delete_revenue(db, entry["id"])

        [invoice] = _invoices(db)
        assert [i["revenue_entry_id"] for i in invoice["items"]] == [other["id"]]


# ===========================================================================
# Invoice -> revenue
# ===========================================================================


class TestApplyInvoiceStatus:
    def test_bulk_return_restores_shop_stock(self, db) -> None:
        """Invoice line returned: S2 4 -> 6 and the revenue entry is RETURNED."""
        from services import shop_inventory

        s2 = shop_inventory.create_item(db, {"product_name": "Bag", "quantity": 6})
        entry = ledger.create_revenue(
            db, _entry(product_name="Bag", quantity=2, shop_item_id=s2["id"])
        )["revenue"]
        assert shop_inventory.get_item(db, s2["id"])["quantity"] == 4
        [invoice] = _invoices(db)

        result = invoices.set_items_status(db, invoice["id"], "RETURNED")

        assert shop_inventory.get_item(db, s2["id"])["quantity"] == 6
        assert ledger.get_revenue(db, entry["id"])["status"] == "RETURNED"
        assert _mirrors_of(db, entry["id"])[0]["status"] == "RETURNED"
        assert [e["id"] for e in result["revenue"]] == [entry["id"]]

    def test_only_selected_items(self, db) -> None:
        first = ledger.create_revenue(db, _entry())["revenue"]
        second = ledger.create_revenue(db, _entry(product_name="Scarf"))["revenue"]
        [invoice] = _invoices(db)
        first_item = _mirrors_of(db, first["id"])[0]

        mirror.apply_invoice_status(db, invoice["id"], "DELIVERED", [first_item["id"]])

        assert ledger.get_revenue(db, first["id"])["status"] == "DELIVERED"
        assert ledger.get_revenue(db, second["id"])["status"] == "HOLDING"

    def test_standalone_item_adjusts_its_own_stock(self, db, shop_item) -> None:
        created = invoices.create_invoice(
            db,
            {"customer_name": "Lan", "items": [
                {"product_name": "Silk Scarf", "selling_price": 120000, "quantity": 2,
                 "shop_item_id": shop_item["id"]},
            ]},
        )
        invoice = created["invoice"]
        assert models.get_document(db, models.SHOP_INVENTORY, shop_item["id"])["quantity"] == 8

        mirror.apply_invoice_status(db, invoice["id"], "RETURNED")

        assert models.get_document(db, models.SHOP_INVENTORY, shop_item["id"])["quantity"] == 10

    def test_invalid_status(self, db) -> None:
        ledger.create_revenue(db, _entry())
        [invoice] = _invoices(db)
        with pytest.raises(ValidationError, match="Invalid status"):
            mirror.apply_invoice_status(db, invoice["id"], "LOST")

    def test_unknown_invoice(self, db) -> None:
        with pytest.raises(NotFoundError):
            mirror.apply_invoice_status(db, "missing", "DELIVERED")


# ===========================================================================
# Rebuild
# ===========================================================================


class TestRebuildInvoices:
    def test_regenerates_from_ledger(self, db) -> None:
        late = ledger.create_revenue(db, _entry(date="2024-05-03", product_name="Late"))["revenue"]
        early = ledger.create_revenue(db, _entry(date="2024-05-01", product_name="Early"))["revenue"]
        late_item_id = _mirrors_of(db, late["id"])[0]["id"]
        [invoice] = _invoices(db)
        invoices.update_invoice(db, invoice["id"], {"deposit": 50000})

        # Corrupt the mirror: drift one field and drop the other item.
        docs = _invoices(db)
        docs[0]["items"] = [dict(docs[0]["items"][0], quantity=99)]
        models.write_collection(db, models.INVOICES, docs)

        stats = mirror.rebuild_invoices(db)

        [rebuilt] = _invoices(db)
        assert rebuilt["id"] == invoice["id"]
        assert rebuilt["deposit"] == 50000
        assert [i["revenue_entry_id"] for i in rebuilt["items"]] == [early["id"], late["id"]]
        assert rebuilt["items"][1]["id"] == late_item_id
        assert rebuilt["items"][1]["quantity"] == 1
        assert stats["mirrored"] == 2

    def test_keeps_standalone_items_and_drops_empty_invoices(self, db) -> None:
        entry = ledger.create_revenue(db, _entry())["revenue"]
        invoices.create_invoice(
            db, {"customer_name": "Lan", "items": [{"product_name": "Gift card", "selling_price": 1}]}
        )
        # Revenue entry vanished behind the mirror's back.
        models.write_collection(db, models.REVENUE, [])

        stats = mirror.rebuild_invoices(db)

        [remaining] = _invoices(db)
        assert remaining["customer_name"] == "Lan"
        assert stats["dropped_invoices"] == 1
        assert _mirrors_of(db, entry["id"]) == []
