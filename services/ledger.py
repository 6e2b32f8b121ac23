"""Revenue ledger operations.

Shared by the API routes, the CLI and the settlement engine. Every mutation
runs in the same order: adjust stock for the old/new line, persist the
entry, then bring its invoice line into step. Stock problems never block
the entry itself; they come back as ``stock_warnings``.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

import database.models as models
from api.exceptions import NotFoundError
from config import settings
from database.schemas import RevenueEntry, validate_document
from services import inventory, mirror
from services.stock_match import customer_key, validate_stock_source

logger = logging.getLogger(__name__)

# Fields that identify the consignment listing a sale was drawn from.
_CONSIGNMENT_IDENTITY = ("consignor_name", "product_name", "retail_price")


def list_revenue(
    conn: sqlite3.Connection,
    *,
    date_from: str | None = None,
    date_to: str | None = None,
    customer: str | None = None,
    consignor: str | None = None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    """Return revenue entries, newest first, with optional filters.

    Dates are inclusive ISO strings; customer matching ignores case.
    """
    entries = models.get_collection(conn, models.REVENUE)
    if date_from:
        entries = [e for e in entries if e.get("date", "") >= date_from]
    if date_to:
        entries = [e for e in entries if e.get("date", "") <= date_to]
    if customer:
        key = customer_key(customer)
        entries = [e for e in entries if customer_key(e.get("customer_name")) == key]
    if consignor:
        entries = [e for e in entries if (e.get("consignor_name") or "") == consignor.strip()]
    if status:
        entries = [e for e in entries if e.get("status") == status]
    return sorted(entries, key=lambda e: (e.get("date", ""), e["id"]), reverse=True)


def get_revenue(conn: sqlite3.Connection, entry_id: str) -> dict[str, Any]:
    entry = models.get_document(conn, models.REVENUE, entry_id)
    if entry is None:
        raise NotFoundError("Revenue entry not found")
    return entry


def create_revenue(conn: sqlite3.Connection, data: dict[str, Any]) -> dict[str, Any]:
    """Record a sale.

    Takes the stock it sold from, remembers which consignment listing it was
    matched to, and adds the line to the customer's invoice.

    Returns dict with keys: revenue, invoice_item, stock_warnings.
    """
    entry = validate_document(RevenueEntry, data)
    validate_stock_source(entry)

    outcome = inventory.on_create(conn, entry)
    if entry.get("consignor_name") and not entry.get("consignment_item_id"):
        entry["consignment_item_id"] = outcome.consignment_item_id()

    models.insert_document(conn, models.REVENUE, entry, settings.version_retry_limit)
    invoice_item = mirror.mirror_create(conn, entry)

    logger.info(
        "Revenue entry %s: %s x%d for %r",
        entry["id"], entry["product_name"], entry["quantity"], entry["customer_name"],
    )
    return {"revenue": entry, "invoice_item": invoice_item, "stock_warnings": outcome.warnings()}


def update_revenue(
    conn: sqlite3.Connection,
    entry_id: str,
    data: dict[str, Any],
) -> dict[str, Any]:
    """Edit a revenue entry.

    *data* holds the fields to change. Stock is moved from the old line to
    the new one and the invoice line follows, moving between invoices when
    the customer changed.

    Returns dict with keys: revenue, invoice_item, stock_warnings.
    """
    old = get_revenue(conn, entry_id)
    merged = {**old, **data, "id": entry_id}

    if not merged.get("consignor_name"):
        merged["consignment_item_id"] = None
    elif "consignment_item_id" not in data and any(
        merged.get(key) != old.get(key) for key in _CONSIGNMENT_IDENTITY
    ):
        # Sold from a different listing now; resolve it again.
        merged["consignment_item_id"] = None

    new = validate_document(RevenueEntry, merged)
    validate_stock_source(new)

    outcome = inventory.on_edit(conn, old, new)
    if new.get("consignor_name") and not new.get("consignment_item_id"):
        new["consignment_item_id"] = outcome.consignment_item_id()

    if models.replace_document(conn, models.REVENUE, new, settings.version_retry_limit) is None:
        raise NotFoundError("Revenue entry not found")
    invoice_item = mirror.mirror_update(conn, old, new)

    return {"revenue": new, "invoice_item": invoice_item, "stock_warnings": outcome.warnings()}


def change_status(conn: sqlite3.Connection, entry_id: str, status: str) -> dict[str, Any]:
    """Move a revenue entry to another status (HOLDING, SHIPPING, ...)."""
    return update_revenue(conn, entry_id, {"status": status})


def delete_revenue(conn: sqlite3.Connection, entry_id: str) -> dict[str, Any]:
    """Delete a revenue entry, giving back its stock and removing its invoice line.

    Returns dict with keys: revenue, stock_warnings.
    """
    old = get_revenue(conn, entry_id)
    outcome = inventory.on_delete(conn, old)
    models.remove_document(conn, models.REVENUE, entry_id, settings.version_retry_limit)
    mirror.mirror_delete(conn, old)
    logger.info("Deleted revenue entry %s", entry_id)
    return {"revenue": old, "stock_warnings": outcome.warnings()}
