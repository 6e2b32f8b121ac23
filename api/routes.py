"""API endpoints for the shop back-office."""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import database.models as models
from api.errors import error_response, handle_errors, json_body
from config import settings
from database.connection import get_db
from services import (
    cloud_sync,
    consignment,
    customers,
    inventory,
    invoices,
    ledger,
    mirror,
    reports,
    settlement,
    shop_inventory,
)

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


# ---------------------------------------------------------------------------
# DB lifecycle
# ---------------------------------------------------------------------------


@api_bp.before_request
def _open_db() -> None:
    """Open a database connection and store it on flask.g."""
    g.db = get_db(settings.database_path)


@api_bp.teardown_request
def _close_db(exc: BaseException | None = None) -> None:
    """Close the per-request database connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


# ===========================================================================
# Revenue endpoints
# ===========================================================================


@api_bp.route("/revenue", methods=["GET"])
@handle_errors
def list_revenue() -> tuple:
    """List revenue entries with optional date/customer/consignor/status filters."""
    entries = ledger.list_revenue(
        g.db,
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
        customer=request.args.get("customer"),
        consignor=request.args.get("consignor"),
        status=request.args.get("status"),
    )
    return jsonify(entries), 200


@api_bp.route("/revenue", methods=["POST"])
@handle_errors
def create_revenue() -> tuple:
    """Record a sale; stock and the customer's invoice follow."""
    result = ledger.create_revenue(g.db, json_body())
    return jsonify(result), 201


@api_bp.route("/revenue/<entry_id>", methods=["GET"])
@handle_errors
def get_revenue(entry_id: str) -> tuple:
    return jsonify(ledger.get_revenue(g.db, entry_id)), 200


@api_bp.route("/revenue/<entry_id>", methods=["PUT"])
@handle_errors
def update_revenue(entry_id: str) -> tuple:
    result = ledger.update_revenue(g.db, entry_id, json_body())
    return jsonify(result), 200


@api_bp.route("/revenue/<entry_id>/status", methods=["PATCH"])
@handle_errors
def change_revenue_status(entry_id: str) -> tuple:
    """Move an entry to HOLDING, SHIPPING, DELIVERED or RETURNED."""
    data = json_body()
    if "status" not in data:
        return error_response("status is required", 400)
    result = ledger.change_status(g.db, entry_id, data["status"])
    return jsonify(result), 200


@api_bp.route("/revenue/<entry_id>", methods=["DELETE"])
@handle_errors
def delete_revenue(entry_id: str) -> tuple:
    result = ledger.delete_revenue(g.db, entry_id)
    return jsonify(result), 200


# ===========================================================================
# Invoice endpoints
# ===========================================================================


@api_bp.route("/invoices", methods=["GET"])
@handle_errors
def list_invoices() -> tuple:
    """List invoices, optionally only the lines in one status."""
    result = invoices.list_invoices(
        g.db,
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    return jsonify(result), 200


@api_bp.route("/invoices", methods=["POST"])
@handle_errors
def create_invoice() -> tuple:
    result = invoices.create_invoice(g.db, json_body())
    return jsonify(result), 201


@api_bp.route("/invoices/rebuild", methods=["POST"])
@handle_errors
def rebuild_invoices() -> tuple:
    """Regenerate revenue-linked invoice lines from the revenue ledger."""
    return jsonify(mirror.rebuild_invoices(g.db)), 200


@api_bp.route("/invoices/<invoice_id>", methods=["GET"])
@handle_errors
def get_invoice(invoice_id: str) -> tuple:
    """Get an invoice with its subtotal, deposit and balance."""
    invoice = invoices.get_invoice(g.db, invoice_id)
    return jsonify({**invoice, "totals": invoices.invoice_totals(invoice)}), 200


@api_bp.route("/invoices/<invoice_id>", methods=["PUT"])
@handle_errors
def update_invoice(invoice_id: str) -> tuple:
    result = invoices.update_invoice(g.db, invoice_id, json_body())
    return jsonify(result), 200


@api_bp.route("/invoices/<invoice_id>", methods=["DELETE"])
@handle_errors
def delete_invoice(invoice_id: str) -> tuple:
    result = invoices.delete_invoice(g.db, invoice_id)
    return jsonify(result), 200


@api_bp.route("/invoices/<invoice_id>/items/<item_id>", methods=["DELETE"])
@handle_errors
def delete_invoice_item(invoice_id: str, item_id: str) -> tuple:
    result = invoices.delete_invoice_item(g.db, invoice_id, item_id)
    return jsonify(result), 200


@api_bp.route("/invoices/<invoice_id>/status", methods=["POST"])
@handle_errors
def set_invoice_status(invoice_id: str) -> tuple:
    """Bulk-change line statuses; linked revenue entries follow.

    Body: ``{"status": "RETURNED", "item_ids": [...]}``. Without
    ``item_ids`` every line on the invoice changes.
    """
    data = json_body()
    if "status" not in data:
        return error_response("status is required", 400)
    item_ids = data.get("item_ids")
    if item_ids is not None and not isinstance(item_ids, list):
        return error_response("item_ids must be a list", 400)
    result = invoices.set_items_status(g.db, invoice_id, data["status"], item_ids)
    return jsonify(result), 200


# ===========================================================================
# Consignment endpoints
# ===========================================================================


@api_bp.route("/consignment", methods=["GET"])
@handle_errors
def list_consignment() -> tuple:
    items = consignment.list_items(
        g.db,
        consignor=request.args.get("consignor"),
        status=request.args.get("status"),
    )
    return jsonify(items), 200


@api_bp.route("/consignment", methods=["POST"])
@handle_errors
def create_consignment() -> tuple:
    return jsonify(consignment.create_item(g.db, json_body())), 201


@api_bp.route("/consignment/<item_id>", methods=["PUT"])
@handle_errors
def update_consignment(item_id: str) -> tuple:
    return jsonify(consignment.update_item(g.db, item_id, json_body())), 200


@api_bp.route("/consignment/<item_id>", methods=["DELETE"])
@handle_errors
def delete_consignment(item_id: str) -> tuple:
    return jsonify(consignment.delete_item(g.db, item_id)), 200


@api_bp.route("/consignors", methods=["GET"])
@handle_errors
def list_consignors() -> tuple:
    """Per-consignor quantities by status and amount owed."""
    return jsonify(settlement.consignor_summary(g.db)), 200


@api_bp.route("/consignors/<path:name>", methods=["DELETE"])
@handle_errors
def delete_consignor(name: str) -> tuple:
    removed = consignment.delete_consignor(g.db, name)
    return jsonify({"removed": len(removed)}), 200


@api_bp.route("/consignors/<path:name>/settle", methods=["POST"])
@handle_errors
def settle_consignor(name: str) -> tuple:
    """Pay a consignor for SOLD stock and book the shop's commission."""
    return jsonify(settlement.settle_consignor(g.db, name)), 200


# ===========================================================================
# Shop inventory endpoints
# ===========================================================================


@api_bp.route("/inventory", methods=["GET"])
@handle_errors
def list_shop_items() -> tuple:
    """Shop items with units sold and the implied initial quantity."""
    return jsonify(shop_inventory.stock_report(g.db, search=request.args.get("search"))), 200


@api_bp.route("/inventory/value", methods=["GET"])
@handle_errors
def inventory_value() -> tuple:
    return jsonify(shop_inventory.stock_value(g.db)), 200


@api_bp.route("/inventory", methods=["POST"])
@handle_errors
def create_shop_item() -> tuple:
    return jsonify(shop_inventory.create_item(g.db, json_body())), 201


@api_bp.route("/inventory/<item_id>", methods=["PUT"])
@handle_errors
def update_shop_item(item_id: str) -> tuple:
    return jsonify(shop_inventory.update_item(g.db, item_id, json_body())), 200


@api_bp.route("/inventory/<item_id>", methods=["DELETE"])
@handle_errors
def delete_shop_item(item_id: str) -> tuple:
    return jsonify(shop_inventory.delete_item(g.db, item_id)), 200


# ===========================================================================
# Customer endpoints
# ===========================================================================


@api_bp.route("/customers", methods=["GET"])
@handle_errors
def list_customers() -> tuple:
    return jsonify(customers.list_customers(g.db, search=request.args.get("search"))), 200


@api_bp.route("/customers/<path:name>", methods=["GET"])
@handle_errors
def get_customer(name: str) -> tuple:
    return jsonify(customers.get_customer(g.db, name)), 200


@api_bp.route("/customers/<path:name>", methods=["PUT"])
@handle_errors
def save_customer(name: str) -> tuple:
    """Store phone/address for a customer."""
    data = {**json_body(), "name": name}
    return jsonify(customers.save_customer_info(g.db, data)), 200


# ===========================================================================
# Reports
# ===========================================================================


@api_bp.route("/reports/revenue", methods=["GET"])
@handle_errors
def revenue_report() -> tuple:
    top_n = request.args.get("top", type=int)
    report = reports.revenue_report(
        g.db,
        request.args.get("date_from"),
        request.args.get("date_to"),
        consignor=request.args.get("consignor"),
        customer=request.args.get("customer"),
        top_n=top_n,
    )
    return jsonify(report), 200


@api_bp.route("/dashboard", methods=["GET"])
@handle_errors
def dashboard() -> tuple:
    return jsonify(reports.dashboard_summary(g.db)), 200


# ===========================================================================
# Cloud sync
# ===========================================================================


@api_bp.route("/sync/status", methods=["GET"])
@handle_errors
def sync_status() -> tuple:
    return jsonify(cloud_sync.sync_status(g.db)), 200


@api_bp.route("/sync/push", methods=["POST"])
@handle_errors
def sync_push() -> tuple:
    return jsonify(cloud_sync.push_snapshot(g.db)), 200


@api_bp.route("/sync/pull", methods=["POST"])
@handle_errors
def sync_pull() -> tuple:
    """Overwrite local data with the cloud snapshot."""
    restored = cloud_sync.pull_and_restore(g.db)
    return jsonify({"restored": restored}), 200


# ===========================================================================
# Stock adjustment log
# ===========================================================================


@api_bp.route("/adjustments/failed", methods=["GET"])
@handle_errors
def list_failed_adjustments() -> tuple:
    return jsonify(models.list_failed_adjustments(g.db)), 200


@api_bp.route("/adjustments/retry", methods=["POST"])
@handle_errors
def retry_adjustments() -> tuple:
    """Replay stock adjustments that stopped part-way."""
    outcomes = inventory.retry_failed_adjustments(g.db)
    return jsonify(
        {
            "retried": len(outcomes),
            "still_failed": sum(1 for o in outcomes if o.failed),
            "outcomes": [o.to_dict() for o in outcomes],
        }
    ), 200
