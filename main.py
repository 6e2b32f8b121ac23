"""CLI entry point for the shop back-office."""

from __future__ import annotations

import logging

import click

from config import settings
from database import init_database


def _money(amount: float) -> str:
    return f"{amount:,.0f}"


@click.group()
def cli() -> None:
    """Shop back-office: revenue, invoices, consignment and shop stock."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    from services.cloud_sync import enable_auto_push

    enable_auto_push()


@cli.result_callback()
def _push_changes(*_args, **_kwargs) -> None:
    """Push once to the cloud mirror if the command changed anything."""
    from services.cloud_sync import flush_auto_push

    flush_auto_push()


@cli.command()
def init_db() -> None:
    """Initialise the SQLite database (creates tables if missing)."""
    init_database(settings.database_path)
    print(f"Database initialised at {settings.database_path}")


@cli.command()
def web() -> None:
    """Start the Flask API server."""
    from api.app import create_app

    app = create_app()
    app.run(
        host=settings.flask_host,
        port=settings.flask_port,
        debug=settings.flask_debug,
    )


@cli.command()
@click.argument("consignor")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def settle(consignor: str, yes: bool) -> None:
    """Pay CONSIGNOR for SOLD stock and book the shop's commission."""
    from api.exceptions import NothingToSettleError
    from database.connection import get_db
    from services.settlement import consignor_summary, settle_consignor

    conn = get_db(settings.database_path)
    try:
        summary = consignor_summary(conn, consignor)
        if summary:
            row = summary[0]
            print(f"Consignor:     {consignor}")
            print(f"Sold items:    {row['by_status']['SOLD']}")
            print(f"Payout:        {_money(row['total_transfer'])}")
        if not yes and not click.confirm("\nSettle and remove the SOLD items?"):
            print("Settlement cancelled.")
            return

        try:
            result = settle_consignor(conn, consignor)
        except NothingToSettleError as exc:
            print(f"Error: {exc}")
            return

        print(f"\nSettled {len(result['removed_ids'])} item(s) for {consignor}:")
        for entry in result["entries"]:
            print(f"  {entry['product_name']:<30} x{entry['quantity']:<4} {_money(entry['retail_price'])}")
        print(f"Commission:    {_money(result['total_commission'])}")
        print(f"Payout:        {_money(result['total_payout'])}")
    finally:
        conn.close()


@cli.command()
@click.option("--consignment", is_flag=True, help="Show consignment stock instead of shop stock.")
@click.option("--consignor", default=None, help="Only this consignor's items.")
def inventory(consignment: bool, consignor: str | None) -> None:
    """View current stock."""
    from database.connection import get_db
    from services import consignment as consignment_service
    from services import shop_inventory

    conn = get_db(settings.database_path)
    try:
        if consignment or consignor:
            items = consignment_service.list_items(conn, consignor=consignor)
            if not items:
                print("No consignment items found.")
                return
            print(f"{'Consignor':<20} {'Product':<30} {'Status':<10} {'Qty':>5} {'Price':>12} {'Fee':>5}")
            print("-" * 87)
            for item in items:
                print(
                    f"{item['consignor_name']:<20} "
                    f"{item['product_name']:<30} "
                    f"{item['status']:<10} "
                    f"{item['quantity']:>5} "
                    f"{_money(item['consignment_price']):>12} "
                    f"{item['fee_percent']:>4g}%"
                )
            print(f"\nTotal: {len(items)} item(s)")
            return

        items = shop_inventory.stock_report(conn)
        if not items:
            print("No shop items found.")
            return
        print(f"{'Product':<30} {'Qty':>5} {'Sold':>5} {'Initial':>7} {'Import':>12} {'Retail':>12}")
        print("-" * 76)
        for item in items:
            print(
                f"{item['product_name']:<30} "
                f"{item['quantity']:>5} "
                f"{item['sold']:>5} "
                f"{item['initial_quantity']:>7} "
                f"{_money(item['import_price']):>12} "
                f"{_money(item['retail_price']):>12}"
            )
        value = shop_inventory.stock_value(conn)
        print(f"\nTotal: {value['units']} unit(s), retail value {_money(value['retail_value'])}")
    finally:
        conn.close()


@cli.command()
@click.option("--start", default=None, help="Start date (YYYY-MM-DD); defaults to this month.")
@click.option("--end", default=None, help="End date (YYYY-MM-DD); defaults to this month.")
@click.option("--consignor", default=None, help="Only sales of this consignor's goods.")
@click.option("--customer", default=None, help="Only sales to this customer.")
def report(start: str | None, end: str | None, consignor: str | None, customer: str | None) -> None:
    """Revenue report for a date range."""
    from database.connection import get_db
    from services.reports import revenue_report

    conn = get_db(settings.database_path)
    try:
        data = revenue_report(conn, start, end, consignor=consignor, customer=customer)
        totals = data["totals"]

        print(f"Revenue Report: {data['date_from']} to {data['date_to']}")
        print("=" * 60)
        print(f"  Transactions:  {totals['transactions']}")
        print(f"  Units Sold:    {totals['units']}")
        print(f"  Revenue:       {_money(totals['revenue'])}")
        print(f"  Profit:        {_money(totals['profit'])}")

        if data["top_products"]:
            print(f"\n{'Top products':<40} {'Qty':>6}")
            print("-" * 47)
            for row in data["top_products"]:
                print(f"{row['name']:<40} {row['quantity']:>6}")
        if data["top_customers"]:
            print(f"\n{'Top customers':<40} {'Spent':>14}")
            print("-" * 55)
            for row in data["top_customers"]:
                print(f"{row['name']:<40} {_money(row['total']):>14}")
        if not data["entries"]:
            print("\nNo sales in this date range.")
    finally:
        conn.close()


@cli.command()
def push() -> None:
    """Upload all local data to the cloud mirror."""
    from api.exceptions import CloudSyncError
    from database.connection import get_db
    from services.cloud_sync import push_snapshot

    conn = get_db(settings.database_path)
    try:
        result = push_snapshot(conn)
    except CloudSyncError as exc:
        print(f"Error: {exc}")
        return
    finally:
        conn.close()
    counts = ", ".join(f"{key} {n}" for key, n in result["counts"].items())
    print(f"Pushed to cloud at {result['updated_at']}: {counts}")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def pull(yes: bool) -> None:
    """Overwrite local data with the cloud snapshot."""
    from api.exceptions import CloudSyncError
    from database.connection import get_db
    from services.cloud_sync import pull_and_restore

    if not yes and not click.confirm("Replace local data with the cloud copy?"):
        print("Pull cancelled.")
        return

    conn = get_db(settings.database_path)
    try:
        restored = pull_and_restore(conn)
    except CloudSyncError as exc:
        print(f"Error: {exc}")
        return
    finally:
        conn.close()
    print(f"Restored from cloud: {', '.join(restored) or 'nothing'}")


@cli.command()
def rebuild_invoices() -> None:
    """Regenerate revenue-linked invoice lines from the revenue ledger."""
    from database.connection import get_db
    from services.mirror import rebuild_invoices as _rebuild

    conn = get_db(settings.database_path)
    try:
        stats = _rebuild(conn)
    finally:
        conn.close()
    print(
        f"Rebuilt invoices: {stats['mirrored']} line(s) mirrored, "
        f"{stats['dropped_invoices']} empty invoice(s) dropped"
    )


@cli.command()
def retry_adjustments() -> None:
    """Replay stock adjustments that stopped part-way."""
    from database.connection import get_db
    from services.inventory import retry_failed_adjustments

    conn = get_db(settings.database_path)
    try:
        outcomes = retry_failed_adjustments(conn)
    finally:
        conn.close()

    if not outcomes:
        print("No failed stock adjustments.")
        return
    failed = [o for o in outcomes if o.failed]
    print(f"Retried {len(outcomes)} adjustment(s); {len(failed)} still failing.")
    for outcome in failed:
        for warning in outcome.warnings():
            print(f"  {outcome.mutation} {outcome.record_id}: {warning}")


if __name__ == "__main__":
    cli()
