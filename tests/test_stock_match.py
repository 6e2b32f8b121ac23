"""Tests for services.stock_match."""

from __future__ import annotations

import logging

import pytest

from api.exceptions import ValidationError
from services.stock_match import (
    StockSource,
    customer_key,
    line_price,
    resolve_consignment_item,
    resolve_shop_item,
    stock_source,
)

LISTINGS = [
    {"id": "c1", "consignor_name": "An", "product_name": "Dress", "consignment_price": 200000},
    {"id": "c2", "consignor_name": "An", "product_name": "Dress", "consignment_price": 150000},
    {"id": "c3", "consignor_name": "Binh", "product_name": "Dress", "consignment_price": 200000},
]


class TestStockSource:
    def test_shop(self) -> None:
        assert stock_source({"shop_item_id": "s1"}) == StockSource.SHOP

    def test_consignment(self) -> None:
        assert stock_source({"consignor_name": " An "}) == StockSource.CONSIGNMENT

    def test_none(self) -> None:
        assert stock_source({"consignor_name": "  ", "shop_item_id": None}) == StockSource.NONE

    def test_both_rejected(self) -> None:
        with pytest.raises(ValidationError, match="both"):
            stock_source({"shop_item_id": "s1", "consignor_name": "An"})


def test_customer_key_normalises() -> None:
    assert customer_key("  Mai Anh ") == customer_key("mai anh")
    assert customer_key(None) == ""


def test_line_price_prefers_retail_price() -> None:
    assert line_price({"retail_price": 10, "selling_price": 20}) == 10.0
    assert line_price({"selling_price": 20}) == 20.0


class TestResolveShopItem:
    def test_by_id(self) -> None:
        match = resolve_shop_item([{"id": "s1"}, {"id": "s2"}], {"shop_item_id": "s2"})
        assert match.index == 1
        assert match.item_id == "s2"

    def test_missing(self) -> None:
        assert resolve_shop_item([{"id": "s1"}], {"shop_item_id": "gone"}) is None


class TestResolveConsignmentItem:
    def test_stored_id_wins(self) -> None:
        line = {
            "consignor_name": "An",
            "product_name": "Dress",
            "retail_price": 200000,
            "consignment_item_id": "c2",
        }
        match = resolve_consignment_item(LISTINGS, line)
        assert match.item_id == "c2"
        assert not match.by_attributes

    def test_stored_id_gone_means_no_match(self) -> None:
        line = {"consignor_name": "An", "product_name": "Dress", "retail_price": 200000,
                "consignment_item_id": "deleted"}
        assert resolve_consignment_item(LISTINGS, line) is None

    def test_attribute_match_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        line = {"consignor_name": "An", "product_name": "Dress", "retail_price": 150000}
        with caplog.at_level(logging.WARNING):
            match = resolve_consignment_item(LISTINGS, line)
        assert match.item_id == "c2"
        assert match.by_attributes
        assert "resolved by attributes" in caplog.text

    def test_price_must_match_exactly(self) -> None:
        line = {"consignor_name": "An", "product_name": "Dress", "retail_price": 199999}
        assert resolve_consignment_item(LISTINGS, line) is None

    def test_ambiguous_takes_first(self, caplog: pytest.LogCaptureFixture) -> None:
        listings = LISTINGS + [
            {"id": "c4", "consignor_name": "An", "product_name": "Dress", "consignment_price": 200000},
        ]
        line = {"consignor_name": "An", "product_name": "Dress", "retail_price": 200000}
        with caplog.at_level(logging.WARNING):
            match = resolve_consignment_item(listings, line)
        assert match.item_id == "c1"
        assert match.candidates == 2
        assert "Ambiguous" in caplog.text
