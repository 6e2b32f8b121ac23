"""Tests for the click commands in main."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

import database.models as models
from main import cli
from services import ledger


@pytest.fixture
def runner(no_close_db, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    monkeypatch.setattr("database.connection.get_db", lambda _path: no_close_db)
    return CliRunner()


class TestSettleCommand:
    def test_settles_with_yes(self, runner, db, consignment_item) -> None:
        models.replace_document(db, models.CONSIGNMENT, {**consignment_item, "status": "SOLD"})

        result = runner.invoke(cli, ["settle", "An", "--yes"])

        assert result.exit_code == 0
        assert "Commission:    120,000" in result.output
        assert "Payout:        480,000" in result.output
        assert models.get_collection(db, models.CONSIGNMENT) == []

    def test_nothing_sold(self, runner, consignment_item) -> None:
        result = runner.invoke(cli, ["settle", "An", "--yes"])
        assert "Error:" in result.output

    def test_cancelled(self, runner, db, consignment_item) -> None:
        models.replace_document(db, models.CONSIGNMENT, {**consignment_item, "status": "SOLD"})
        result = runner.invoke(cli, ["settle", "An"], input="n\n")
        assert "cancelled" in result.output
        assert len(models.get_collection(db, models.CONSIGNMENT)) == 1


class TestViewCommands:
    def test_shop_inventory(self, runner, shop_item) -> None:
        result = runner.invoke(cli, ["inventory"])
        assert "Silk Scarf" in result.output
        assert "10 unit(s)" in result.output

    def test_consignment_inventory(self, runner, consignment_item) -> None:
        result = runner.invoke(cli, ["inventory", "--consignor", "An"])
        assert "Dress" in result.output
        assert "20%" in result.output

    def test_report(self, runner, db) -> None:
        ledger.create_revenue(
            db, {"date": "2024-05-02", "customer_name": "Mai", "product_name": "Hat",
                 "retail_price": 150000, "quantity": 2},
        )
        result = runner.invoke(cli, ["report", "--start", "2024-05-01", "--end", "2024-05-31"])
        assert "Revenue:       300,000" in result.output
        assert "Mai" in result.output


class TestMaintenanceCommands:
    def test_rebuild_invoices(self, runner, db) -> None:
        ledger.create_revenue(db, {"customer_name": "Mai", "product_name": "Hat", "retail_price": 1})
        result = runner.invoke(cli, ["rebuild-invoices"])
        assert "1 line(s) mirrored" in result.output

    def test_retry_adjustments_empty(self, runner) -> None:
        result = runner.invoke(cli, ["retry-adjustments"])
        assert "No failed stock adjustments." in result.output

    def test_push_not_configured(self, runner, monkeypatch) -> None:
        from config import settings

        monkeypatch.setattr(settings, "cloud_url", "")
        result = runner.invoke(cli, ["push"])
        assert "Error:" in result.output
