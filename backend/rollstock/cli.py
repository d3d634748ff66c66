# Overview: Flask CLI command groups for bootstrap, roll inspection and landed cost runs.

# backend/rollstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-catalog
#   Create default categories, GSMs, qualities and products (idempotent).
# - python -m flask system add-supplier --name "Acme Mills" --code "SUP-0007"
#   Create a supplier.
#
# Roll inspection:
# - python -m flask rolls list --status Mapped --sku-id 3 --limit 20
#   List rolls (newest first) with optional filters.
# - python -m flask rolls unmapped [--days 7]
#   Unmapped rolls grouped by GSM / quality / width (or aged past N days).
# - python -m flask rolls verify-barcode 2410-SUP000-BATCH24100-000042-1A2B
#   Check a scanned barcode's checksum and look the roll up.
# - python -m flask rolls history 42
#   Audit trail of one roll.
#
# Landed costs:
# - python -m flask costs allocate --invoice-id 5
#   Allocate the invoice's pending landed cost entries to its rolls.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import RollstockError
from .extensions import db
from .services import catalog_service
from .services.identity_service import verify_barcode
from .services.landed_cost_service import allocate_invoice_landed_costs
from .services.ledger_service import list_roll_events
from .services.roll_service import get_roll, get_roll_by_barcode, list_rolls, list_unmapped_groups
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-catalog' to load reference data.")


@system_group.command('seed-catalog')
@with_appcontext
def seed_catalog():
    """Create default categories, GSMs, qualities and products."""
    created = catalog_service.seed_catalog()
    click.echo(
        f"PASS Catalog seeded: {created['categories']} categories, {created['gsms']} GSMs, "
        f"{created['qualities']} qualities, {created['products']} products created"
    )


@system_group.command('add-supplier')
@click.option('--name', required=True, help='Supplier name')
@click.option('--code', default=None, help='Supplier code, e.g. SUP-0007')
@with_appcontext
def add_supplier(name, code):
    """Create a supplier."""
    try:
        supplier = catalog_service.create_supplier(name, code)
    except RollstockError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created supplier {supplier.name} (ID: {supplier.id}, Code: {supplier.code})")


@click.group('rolls')
def rolls_group():
    """Roll inspection commands."""


@rolls_group.command('list')
@click.option('--status', default=None, help='Filter by status (Unmapped, Mapped, ...)')
@click.option('--sku-id', type=int, default=None)
@click.option('--supplier-id', type=int, default=None)
@click.option('--batch-id', type=int, default=None)
@click.option('--page', type=int, default=1)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_rolls_cmd(status, sku_id, supplier_id, batch_id, page, limit):
    """List rolls, newest receipt first."""
    filters = {"status": status, "sku_id": sku_id, "supplier_id": supplier_id, "batch_id": batch_id}
    try:
        result = list_rolls(filters, page=page, limit=limit)
    except RollstockError as e:
        raise click.ClickException(e.message)

    if not result["rolls"]:
        click.echo("No rolls found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Roll Number':<24} {'Status':<11} {'SKU':<6} {'Width':<6} {'Length':<10} {'Received'}")
    click.echo("="*100)
    for roll in result["rolls"]:
        click.echo(
            f"{roll.id:<6} {roll.roll_number:<24} {roll.status.value:<11} {str(roll.sku_id or '-'):<6} "
            f"{roll.width_inches:<6} {str(roll.current_length):<10} {to_utc_z(roll.received_at)}"
        )
    pagination = result["pagination"]
    click.echo("="*100)
    click.echo(f"Page {pagination['page']} of {pagination['pages']} ({pagination['total']} rolls)\n")


@rolls_group.command('unmapped')
@click.option('--days', type=int, default=None, help='Only rolls unmapped for at least N days')
@with_appcontext
def unmapped_cmd(days):
    """Show Unmapped rolls waiting for classification."""
    if days is not None:
        result = list_rolls({"unmapped_days": days}, limit=200)
        click.echo(f"{result['pagination']['total']} roll(s) unmapped for {days}+ days")
        for roll in result["rolls"]:
            click.echo(f"  {roll.roll_number:<24} {roll.barcode or '-':<40} {to_utc_z(roll.received_at)}")
        return

    groups = list_unmapped_groups()
    if not groups:
        click.echo("No unmapped rolls.")
        return
    for group in groups:
        click.echo(
            f"GSM {group['gsm'] or 'Unknown'} / {group['quality_name'] or 'Unknown'} / "
            f"{group['width_inches']}in: {group['total_rolls']} roll(s), {group['total_meters']} m "
            f"(oldest {to_utc_z(group['oldest_received_at'])})"
        )


@rolls_group.command('verify-barcode')
@click.argument('barcode')
@with_appcontext
def verify_barcode_cmd(barcode):
    """Validate a barcode checksum and look up its roll."""
    if not verify_barcode(barcode):
        raise click.ClickException(f"Checksum mismatch or malformed barcode: {barcode}")
    click.echo("PASS Checksum valid")
    try:
        roll = get_roll_by_barcode(barcode)
    except RollstockError:
        click.echo("WARN No roll carries this barcode")
        return
    click.echo(f"Roll {roll.roll_number} (ID: {roll.id}) status {roll.status.value}, {roll.current_length} m")


@rolls_group.command('history')
@click.argument('roll_id', type=int)
@with_appcontext
def history_cmd(roll_id):
    """Print a roll's audit trail."""
    try:
        roll = get_roll(roll_id)
    except RollstockError as e:
        raise click.ClickException(e.message)
    click.echo(f"Roll {roll.roll_number} ({roll.status.value})")
    for event in list_roll_events(roll.id):
        transition = f"{event.from_status or '-'} -> {event.to_status or '-'}"
        click.echo(
            f"  {to_utc_z(event.occurred_at)} {event.event_type:<18} {transition:<24} "
            f"{event.reference or ''} {event.actor_id or ''}"
        )


@click.group('costs')
def costs_group():
    """Landed cost commands."""


@costs_group.command('allocate')
@click.option('--invoice-id', type=int, required=True, help='Purchase invoice id')
@click.option('--actor', default='cli', help='Actor recorded on the audit trail')
@with_appcontext
def allocate_costs_cmd(invoice_id, actor):
    """Allocate pending landed cost entries of a purchase invoice."""
    try:
        result = allocate_invoice_landed_costs(invoice_id, actor_id=actor)
    except RollstockError as e:
        current_app.logger.exception("Landed cost allocation failed for invoice %s", invoice_id)
        raise click.ClickException(e.message)

    if not result["entries"]:
        click.echo("No pending landed cost entries.")
        return
    for entry in result["entries"]:
        click.echo(f"PASS {entry['cost_type']} ({entry['basis']}): {entry['allocated']} of {entry['amount']}")
    for delta in result["deltas"]:
        flag = "" if delta["applied"] else " (informational)"
        click.echo(f"  {delta['roll_number']:<24} {delta['status']:<11} +{delta['delta']}{flag}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(rolls_group)
    app.cli.add_command(costs_group)
