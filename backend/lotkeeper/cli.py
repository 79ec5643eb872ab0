# Overview: Flask CLI command groups for lot inspection, order allocation and platform syncs.

# backend/lotkeeper/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system set-setting default_location_id sloc_main
#   Set a store setting (default stock location, default currency).
#
# Lots:
# - python -m flask batches list [--variant-id variant_123]
#   List lots with allocated and available quantities.
# - python -m flask batches availability variant_123 variant_456
#   Available-to-sell per variant.
# - python -m flask batches valuation variant_123
#   Weighted per-unit cost per variant.
#
# Orders:
# - python -m flask orders allocate order_123
#   Allocate lots FIFO to an order (safe to repeat), then sync inventory levels.
# - python -m flask orders release order_123
#   Release an order's allocations, then sync inventory levels.
#
# Syncs:
# - python -m flask sync inventory variant_123 [variant_456 ...]
# - python -m flask sync pricing variant_123 [variant_456 ...]
# - python -m flask pricing provision
#   Create the at-price list (or re-assert its customer-group rule).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import batch_store
from .services.availability_service import compute_batch_availability, get_variant_availability
from .services.commerce_gateway import OrderNotFoundError, set_store_setting
from .services.order_events import handle_order_canceled, handle_payment_captured
from .services.inventory_sync_service import sync_inventory_levels_for_variants
from .services.pricing_sync_service import provision_at_price_list, sync_at_price_for_variants
from .services.valuation_service import get_unit_costs


@click.group('system')
def system_group():
    """Database and store setting commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@system_group.command('set-setting')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_cli(key, value):
    """Set a store-level setting (e.g. default_location_id, default_currency_code)."""
    set_store_setting(key, value)
    db.session.commit()
    click.echo(f"PASS {key} = {value}")


@click.group('batches')
def batches_group():
    """Lot inspection commands."""


@batches_group.command('list')
@click.option('--variant-id', help='Filter by variant ID')
@click.option('--lot', 'lot_number', help='Filter by lot number')
@click.option('--limit', type=int, default=100, help='Max rows')
@with_appcontext
def list_batches_cli(variant_id, lot_number, limit):
    """
    List lots, oldest first.

    Example:
        flask batches list
        flask batches list --variant-id variant_123
    """
    batches = batch_store.list_batches(
        variant_ids=[variant_id] if variant_id else None,
        lot_number=lot_number,
        limit=limit,
    )

    if not batches:
        click.echo("No lots found.")
        return

    allocations = batch_store.list_allocations(batch_ids=[b.id for b in batches])

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Variant':<28} {'Lot':<20} {'Qty':>8} {'Alloc':>8} {'Avail':>8} {'COA':<5}")
    click.echo("="*100)

    for entry in compute_batch_availability(batches, allocations):
        coa = "yes" if entry.has_coa else "no"
        click.echo(
            f"{entry.batch_id:<6} {entry.variant_id:<28} {entry.lot_number or '':<20} "
            f"{entry.quantity:>8} {entry.allocated:>8} {entry.available:>8} {coa:<5}"
        )

    click.echo("="*100)
    click.echo(f"Total: {len(batches)} lot(s)\n")


@batches_group.command('availability')
@click.argument('variant_ids', nargs=-1, required=True)
@with_appcontext
def availability_cli(variant_ids):
    """Available-to-sell quantity per variant."""
    totals = get_variant_availability(variant_ids)
    for variant_id, available in totals.items():
        click.echo(f"{variant_id:<28} {available:>8}")


@batches_group.command('valuation')
@click.argument('variant_ids', nargs=-1, required=True)
@with_appcontext
def valuation_cli(variant_ids):
    """Weighted per-unit cost per variant ("n/a" when no lot is in stock)."""
    costs = get_unit_costs(variant_ids)
    for variant_id in dict.fromkeys(variant_ids):
        cost = costs.get(variant_id)
        shown = f"{cost:.4f}" if cost is not None else "n/a"
        click.echo(f"{variant_id:<28} {shown:>12}")


@click.group('orders')
def orders_group():
    """Order allocation commands."""


@orders_group.command('allocate')
@click.argument('order_id')
@with_appcontext
def allocate_cli(order_id):
    """Allocate lots FIFO to an order's line items."""
    try:
        result = handle_payment_captured(order_id=order_id)
    except OrderNotFoundError as e:
        raise click.ClickException(str(e))

    for allocation in result.allocations:
        click.echo(
            f"PASS line item {allocation['order_line_item_id']} <- lot #{allocation['variant_batch_id']} "
            f"x{allocation['quantity']}"
        )
    for line_item_id in result.satisfied_line_item_ids:
        click.echo(f"SKIP line item {line_item_id} already allocated")
    for shortfall in result.shortfalls:
        click.echo(f"WARN line item {shortfall.line_item_id} short by {shortfall.missing}")
    for line_item_id in result.failed_line_item_ids:
        click.echo(f"FAIL line item {line_item_id} (see log)")


@orders_group.command('release')
@click.argument('order_id')
@with_appcontext
def release_cli(order_id):
    """Release every allocation of an order."""
    result = handle_order_canceled(order_id)
    via = " via metadata" if result.used_metadata_fallback else ""
    click.echo(f"PASS Released {result.released} allocation(s){via}")


@click.group('sync')
def sync_group():
    """Push lot-derived state to the commerce platform."""


@sync_group.command('inventory')
@click.argument('variant_ids', nargs=-1, required=True)
@with_appcontext
def sync_inventory_cli(variant_ids):
    result = sync_inventory_levels_for_variants(variant_ids)
    for item_id, quantity in result.updated.items():
        click.echo(f"PASS updated {item_id} -> {quantity}")
    for item_id, quantity in result.created.items():
        click.echo(f"PASS created {item_id} -> {quantity}")
    for item_id in result.skipped:
        click.echo(f"WARN skipped {item_id} (no stock location)")


@sync_group.command('pricing')
@click.argument('variant_ids', nargs=-1, required=True)
@with_appcontext
def sync_pricing_cli(variant_ids):
    result = sync_at_price_for_variants(variant_ids)
    if result.price_list_id is None:
        click.echo("WARN At-price list unavailable; nothing synced (see log)")
        return
    for variant_id, amount in result.created.items():
        click.echo(f"PASS created {variant_id} -> {amount}")
    for variant_id, amount in result.updated.items():
        click.echo(f"PASS updated {variant_id} -> {amount}")
    click.echo(f"Unchanged: {len(result.unchanged)}, skipped: {len(result.skipped)}")


@click.group('pricing')
def pricing_group():
    """At-price list commands."""


@pricing_group.command('provision')
@with_appcontext
def provision_cli():
    price_list_id = provision_at_price_list()
    if price_list_id is None:
        raise click.ClickException("AT_PRICE_CUSTOMER_GROUP_ID is not set")
    click.echo(f"PASS At-price list: {price_list_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(batches_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(pricing_group)
