"""Consignment stock records (goods held on behalf of consignors)."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

import database.models as models
from api.exceptions import NotFoundError
from config import settings
from database.schemas import ConsignmentItem, validate_document

logger = logging.getLogger(__name__)


def list_items(
    conn: sqlite3.Connection,
    *,
    consignor: str | None = None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    items = models.get_collection(conn, models.CONSIGNMENT)
    if consignor:
        items = [i for i in items if i["consignor_name"] == consignor.strip()]
    if status:
        items = [i for i in items if i.get("status") == status]
    return items


def list_consignors(conn: sqlite3.Connection) -> list[str]:
    """Distinct consignor names in first-seen order."""
    names: dict[str, None] = {}
    for item in models.get_collection(conn, models.CONSIGNMENT):
        names.setdefault(item["consignor_name"], None)
    return list(names)


def get_item(conn: sqlite3.Connection, item_id: str) -> dict[str, Any]:
    item = models.get_document(conn, models.CONSIGNMENT, item_id)
    if item is None:
        raise NotFoundError("Consignment item not found")
    return item


def create_item(conn: sqlite3.Connection, data: dict[str, Any]) -> dict[str, Any]:
    """Add a consignment listing. ``fee_percent`` defaults to the configured fee."""
    payload = dict(data)
    if payload.get("fee_percent") is None:
        payload["fee_percent"] = settings.default_consignment_fee
    item = validate_document(ConsignmentItem, payload)
    models.insert_document(conn, models.CONSIGNMENT, item, settings.version_retry_limit)
    logger.info(
        "Consignment item %s: %s from %s x%d",
        item["id"], item["product_name"], item["consignor_name"], item["quantity"],
    )
    return item


def update_item(conn: sqlite3.Connection, item_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Edit a listing. Quantity is set directly; sales adjust it on their own."""
    old = get_item(conn, item_id)
    item = validate_document(ConsignmentItem, {**old, **data, "id": item_id})
    if models.replace_document(conn, models.CONSIGNMENT, item, settings.version_retry_limit) is None:
        raise NotFoundError("Consignment item not found")
    return item


def delete_item(conn: sqlite3.Connection, item_id: str) -> dict[str, Any]:
    item = models.remove_document(conn, models.CONSIGNMENT, item_id, settings.version_retry_limit)
    if item is None:
        raise NotFoundError("Consignment item not found")
    return item


def delete_consignor(conn: sqlite3.Connection, consignor_name: str) -> list[dict[str, Any]]:
    """Remove every listing of a consignor. Returns the removed items."""
    name = consignor_name.strip()
    removed = models.remove_documents(
        conn,
        models.CONSIGNMENT,
        lambda item: item["consignor_name"] == name,
        settings.version_retry_limit,
    )
    if not removed:
        msg = f"No consignment items for {name!r}"
        raise NotFoundError(msg)
    logger.info("Removed %d consignment item(s) for %s", len(removed), name)
    return removed
