"""Customer invoice operations.

An invoice groups every line sold to one customer. Lines that mirror a
revenue entry (``revenue_entry_id`` set) are owned by the revenue ledger:
they are created, changed and deleted through it, and only their status can
be changed from here. Standalone lines are owned by the invoice and take
their own shop stock.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

import database.models as models
from api.exceptions import ConflictError, NotFoundError, ValidationError
from config import settings
from database.schemas import Invoice, validate_document
from services import inventory, mirror
from services.stock_match import customer_key

logger = logging.getLogger(__name__)


def _is_mirrored(item: dict[str, Any]) -> bool:
    return bool(item.get("revenue_entry_id"))


def list_invoices(
    conn: sqlite3.Connection,
    *,
    status: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    """Return invoices, optionally narrowed to lines with *status*.

    With *status*, each invoice only lists its lines in that status and
    invoices with none are left out. *search* matches the customer or any
    product name.
    """
    invoices = models.get_collection(conn, models.INVOICES)
    if status:
        invoices = [
            {**inv, "items": [i for i in inv["items"] if i.get("status") == status]}
            for inv in invoices
        ]
        invoices = [inv for inv in invoices if inv["items"]]
    if search:
        term = search.strip().lower()
        invoices = [
            inv
            for inv in invoices
            if term in inv["customer_name"].lower()
            or any(term in i["product_name"].lower() for i in inv["items"])
        ]
    return invoices


def get_invoice(conn: sqlite3.Connection, invoice_id: str) -> dict[str, Any]:
    invoice = models.get_document(conn, models.INVOICES, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def invoice_totals(invoice: dict[str, Any]) -> dict[str, float]:
    """Subtotal, deposit and balance due of an invoice."""
    subtotal = sum(i["selling_price"] * i["quantity"] for i in invoice["items"])
    deposit = float(invoice.get("deposit", 0))
    return {"subtotal": subtotal, "deposit": deposit, "balance": subtotal - deposit}


def _check_customer_free(
    invoices: list[dict[str, Any]],
    customer: str,
    invoice_id: str | None = None,
) -> None:
    key = customer_key(customer)
    for inv in invoices:
        if inv["id"] != invoice_id and customer_key(inv["customer_name"]) == key:
            msg = f"Customer {customer!r} already has an invoice"
            raise ConflictError(msg)


def create_invoice(conn: sqlite3.Connection, data: dict[str, Any]) -> dict[str, Any]:
    """Create an invoice with standalone lines, taking their shop stock.

    Returns dict with keys: invoice, stock_warnings.
    """
    invoice = validate_document(Invoice, data)
    if any(_is_mirrored(item) for item in invoice["items"]):
        msg = "Lines linked to revenue entries are created from the revenue ledger"
        raise ValidationError(msg)
    _check_customer_free(models.get_collection(conn, models.INVOICES), invoice["customer_name"])

    warnings: list[str] = []
    for item in invoice["items"]:
        warnings.extend(inventory.on_create(conn, item, mutation="invoice-create").warnings())

    def mutate(invoices: list[dict[str, Any]]) -> dict[str, Any]:
        _check_customer_free(invoices, invoice["customer_name"])
        invoices.append(invoice)
        return invoice

    models.modify_collection(conn, models.INVOICES, mutate, settings.version_retry_limit)
    logger.info("Created invoice %s for %r", invoice["id"], invoice["customer_name"])
    return {"invoice": invoice, "stock_warnings": warnings}


def update_invoice(
    conn: sqlite3.Connection,
    invoice_id: str,
    data: dict[str, Any],
) -> dict[str, Any]:
    """Edit an invoice's customer, deposit and standalone lines.

    Standalone lines are matched to the stored ones by id: new lines take
    stock, edited lines move it, dropped lines give it back. Mirrored lines
    must all still be present; only their status may differ, and a changed
    status is carried over to the revenue entry.

    Returns dict with keys: invoice, stock_warnings.
    """
    old = get_invoice(conn, invoice_id)
    merged = {**old, **data, "id": invoice_id}
    new = validate_document(Invoice, merged)

    old_items = {i["id"]: i for i in old["items"]}
    new_items = {i["id"]: i for i in new["items"]}
    old_mirrored = {i_id for i_id, i in old_items.items() if _is_mirrored(i)}

    if not old_mirrored.issubset(new_items):
        msg = "Lines linked to revenue entries can only be removed by deleting the entry"
        raise ValidationError(msg)
    if old_mirrored and customer_key(new["customer_name"]) != customer_key(old["customer_name"]):
        msg = "Cannot rename the customer of an invoice with revenue-linked lines"
        raise ValidationError(msg)
    for item_id, item in new_items.items():
        if _is_mirrored(item) and item_id not in old_mirrored:
            msg = "Lines linked to revenue entries are created from the revenue ledger"
            raise ValidationError(msg)
    _check_customer_free(
        models.get_collection(conn, models.INVOICES), new["customer_name"], invoice_id
    )

    # Mirrored lines keep their stored values; status is applied afterwards.
    status_changes: dict[str, list[str]] = {}
    for idx, item in enumerate(new["items"]):
        if item["id"] in old_mirrored:
            stored = old_items[item["id"]]
            if item["status"] != stored["status"]:
                status_changes.setdefault(item["status"], []).append(item["id"])
            new["items"][idx] = stored

    warnings: list[str] = []
    for item_id, item in old_items.items():
        if item_id in old_mirrored:
            continue
        if item_id not in new_items:
            warnings.extend(inventory.on_delete(conn, item, mutation="invoice-edit").warnings())
        else:
            warnings.extend(
                inventory.on_edit(conn, item, new_items[item_id], mutation="invoice-edit").warnings()
            )
    for item_id, item in new_items.items():
        if item_id not in old_items:
            warnings.extend(inventory.on_create(conn, item, mutation="invoice-edit").warnings())

    def mutate(invoices: list[dict[str, Any]]) -> dict[str, Any] | None:
        idx = models.find_index(invoices, invoice_id)
        if idx is None:
            return None
        _check_customer_free(invoices, new["customer_name"], invoice_id)
        invoices[idx] = new
        return new

    if models.modify_collection(conn, models.INVOICES, mutate, settings.version_retry_limit) is None:
        raise NotFoundError("Invoice not found")

    for status, item_ids in status_changes.items():
        result = mirror.apply_invoice_status(conn, invoice_id, status, item_ids)
        warnings.extend(result["stock_warnings"])

    return {"invoice": get_invoice(conn, invoice_id), "stock_warnings": warnings}


def delete_invoice(conn: sqlite3.Connection, invoice_id: str) -> dict[str, Any]:
    """Delete an invoice holding only standalone lines, giving back their stock."""
    invoice = get_invoice(conn, invoice_id)
    if any(_is_mirrored(item) for item in invoice["items"]):
        msg = "Invoice has lines linked to revenue entries; delete those entries first"
        raise ValidationError(msg)

    warnings: list[str] = []
    for item in invoice["items"]:
        warnings.extend(inventory.on_delete(conn, item, mutation="invoice-delete").warnings())
    models.remove_document(conn, models.INVOICES, invoice_id, settings.version_retry_limit)
    logger.info("Deleted invoice %s", invoice_id)
    return {"invoice": invoice, "stock_warnings": warnings}


def delete_invoice_item(
    conn: sqlite3.Connection,
    invoice_id: str,
    item_id: str,
) -> dict[str, Any]:
    """Delete one standalone line; the invoice goes too when it empties."""
    invoice = get_invoice(conn, invoice_id)
    item = next((i for i in invoice["items"] if i["id"] == item_id), None)
    if item is None:
        raise NotFoundError("Invoice item not found")
    if _is_mirrored(item):
        msg = "Line is linked to a revenue entry; delete the entry instead"
        raise ValidationError(msg)

    outcome = inventory.on_delete(conn, item, mutation="invoice-item-delete")

    def mutate(invoices: list[dict[str, Any]]) -> dict[str, Any] | None:
        idx = models.find_index(invoices, invoice_id)
        if idx is None:
            return None
        invoices[idx]["items"] = [i for i in invoices[idx]["items"] if i["id"] != item_id]
        if not invoices[idx]["items"]:
            return invoices.pop(idx)
        return invoices[idx]

    remaining = models.modify_collection(
        conn, models.INVOICES, mutate, settings.version_retry_limit
    )
    return {
        "invoice": remaining if remaining and remaining["items"] else None,
        "item": item,
        "stock_warnings": outcome.warnings(),
    }


def set_items_status(
    conn: sqlite3.Connection,
    invoice_id: str,
    status: str,
    item_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Bulk status change from the invoice side (e.g. mark a parcel RETURNED)."""
    return mirror.apply_invoice_status(conn, invoice_id, status, item_ids)
