"""Resolve which stock record a revenue or invoice line refers to.

Shop stock is always referenced by its stored id. Consignment stock is
referenced by ``consignment_item_id`` once known; older rows that only carry
a consignor name are matched on (consignor, product, price), which is
ambiguous when a consignor lists the same product twice at the same price.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from api.exceptions import ValidationError
from database.models import find_index
from database.schemas import RevenueStatus

logger = logging.getLogger(__name__)


class StockSource(StrEnum):
    SHOP = "shop"
    CONSIGNMENT = "consignment"
    NONE = "none"


@dataclass(frozen=True)
class StockMatch:
    """A resolved stock record."""

    index: int
    item_id: str
    by_attributes: bool = False
    candidates: int = 1


def customer_key(name: str | None) -> str:
    """Normalise a customer name for grouping (trimmed, case-insensitive)."""
    return (name or "").strip().lower()


def product_key(name: str | None) -> str:
    return (name or "").strip().lower()


def stock_source(line: dict[str, Any]) -> StockSource:
    """Classify the stock a line draws from.

    Raises ValidationError when the line names both a shop item and a consignor.
    """
    shop_item_id = line.get("shop_item_id")
    consignor = (line.get("consignor_name") or "").strip()
    if shop_item_id and consignor:
        msg = "A line cannot reference both a shop item and a consignor"
        raise ValidationError(msg)
    if shop_item_id:
        return StockSource.SHOP
    if consignor:
        return StockSource.CONSIGNMENT
    return StockSource.NONE


def validate_stock_source(line: dict[str, Any]) -> None:
    """Reject a line that draws on both shop and consignment stock."""
    stock_source(line)


def is_returned(line: dict[str, Any]) -> bool:
    return line.get("status") == RevenueStatus.RETURNED


def line_price(line: dict[str, Any]) -> float:
    """Unit price of a revenue entry or invoice item."""
    if "retail_price" in line:
        return float(line["retail_price"])
    return float(line.get("selling_price", 0))


def resolve_shop_item(items: list[dict[str, Any]], line: dict[str, Any]) -> StockMatch | None:
    """Return the shop item referenced by ``shop_item_id``, or None if it vanished."""
    shop_item_id = line.get("shop_item_id")
    idx = find_index(items, shop_item_id)
    if idx is None:
        return None
    return StockMatch(index=idx, item_id=shop_item_id)


def resolve_consignment_item(
    items: list[dict[str, Any]],
    line: dict[str, Any],
) -> StockMatch | None:
    """Return the consignment item a line sold from.

    A stored ``consignment_item_id`` wins; if that record is gone the line has
    no stock to adjust. Otherwise the first exact attribute match is used.
    """
    stored_id = line.get("consignment_item_id")
    if stored_id:
        idx = find_index(items, stored_id)
        if idx is None:
            return None
        return StockMatch(index=idx, item_id=stored_id)

    consignor = (line.get("consignor_name") or "").strip()
    product = (line.get("product_name") or "").strip()
    price = line_price(line)
    candidates = [
        i
        for i, item in enumerate(items)
        if item.get("consignor_name", "").strip() == consignor
        and item.get("product_name", "").strip() == product
        and float(item.get("consignment_price", 0)) == price
    ]
    if not candidates:
        return None

    first = candidates[0]
    if len(candidates) > 1:
        logger.warning(
            "Ambiguous consignment match for %s / %s @ %s: %d listings, using %s",
            consignor, product, price, len(candidates), items[first]["id"],
        )
    else:
        logger.warning(
            "Consignment item for %s / %s resolved by attributes (no stored id)",
            consignor, product,
        )
    return StockMatch(
        index=first,
        item_id=items[first]["id"],
        by_attributes=True,
        candidates=len(candidates),
    )
