"""Shop-owned stock records."""

from __future__ import annotations

import sqlite3
from typing import Any

import database.models as models
from api.exceptions import NotFoundError
from config import settings
from database.schemas import ShopItem, validate_document
from services.stock_match import is_returned


def list_items(conn: sqlite3.Connection, *, search: str | None = None) -> list[dict[str, Any]]:
    items = models.get_collection(conn, models.SHOP_INVENTORY)
    if search:
        term = search.strip().lower()
        items = [i for i in items if term in i["product_name"].lower()]
    return items


def get_item(conn: sqlite3.Connection, item_id: str) -> dict[str, Any]:
    item = models.get_document(conn, models.SHOP_INVENTORY, item_id)
    if item is None:
        raise NotFoundError("Shop item not found")
    return item


def create_item(conn: sqlite3.Connection, data: dict[str, Any]) -> dict[str, Any]:
    item = validate_document(ShopItem, data)
    models.insert_document(conn, models.SHOP_INVENTORY, item, settings.version_retry_limit)
    return item


def update_item(conn: sqlite3.Connection, item_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Edit a shop item; a quantity given here is a restock/stock-take figure."""
    old = get_item(conn, item_id)
    item = validate_document(ShopItem, {**old, **data, "id": item_id})
    if models.replace_document(conn, models.SHOP_INVENTORY, item, settings.version_retry_limit) is None:
        raise NotFoundError("Shop item not found")
    return item


def delete_item(conn: sqlite3.Connection, item_id: str) -> dict[str, Any]:
    """Delete a shop item. Lines still pointing at it skip their stock steps."""
    item = models.remove_document(conn, models.SHOP_INVENTORY, item_id, settings.version_retry_limit)
    if item is None:
        raise NotFoundError("Shop item not found")
    return item


def stock_value(conn: sqlite3.Connection) -> dict[str, float]:
    """Units on hand and their value at import and retail price."""
    items = models.get_collection(conn, models.SHOP_INVENTORY)
    return {
        "units": sum(i["quantity"] for i in items),
        "import_value": sum(i["import_price"] * i["quantity"] for i in items),
        "retail_value": sum(i["retail_price"] * i["quantity"] for i in items),
    }


def sold_quantities(conn: sqlite3.Connection) -> dict[str, int]:
    """Units held by sales lines, per shop item id.

    Counts revenue entries and standalone invoice lines that are not
    RETURNED; mirrored invoice lines and settlement entries hold no stock.
    """
    lines = [
        e for e in models.get_collection(conn, models.REVENUE) if not e.get("settlement")
    ]
    lines += [
        item
        for invoice in models.get_collection(conn, models.INVOICES)
        for item in invoice.get("items", [])
        if not item.get("revenue_entry_id")
    ]
    sold: dict[str, int] = {}
    for line in lines:
        item_id = line.get("shop_item_id")
        if item_id and not is_returned(line):
            sold[item_id] = sold.get(item_id, 0) + int(line["quantity"])
    return sold


def stock_report(conn: sqlite3.Connection, *, search: str | None = None) -> list[dict[str, Any]]:
    """Shop items with ``sold`` and ``initial_quantity`` (on hand + sold)."""
    sold = sold_quantities(conn)
    return [
        {
            **item,
            "sold": sold.get(item["id"], 0),
            "initial_quantity": item["quantity"] + sold.get(item["id"], 0),
        }
        for item in list_items(conn, search=search)
    ]
