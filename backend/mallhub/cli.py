# Overview: Flask CLI command groups for bootstrap, box occupancy and lease alerts.

# backend/mallhub/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the factory (PowerShell: $env:FLASK_APP="mallhub:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create demo shops, boxes and products.
#
# Box occupancy:
# - python -m flask boxes list [--free | --occupied]
#   List boxes with their current occupant.
# - python -m flask boxes assign 3 7
#   Assign box 3 to shop 7.
# - python -m flask boxes release 3
#   Free box 3 and close its open history row.
# - python -m flask boxes transfer 3 9
#   Move box 3 from its current shop to shop 9.
#
# Leases:
# - python -m flask leases alerts
#   Print the lease dashboard (EXPIRED first, then EXPIRING_SOON).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import MallError
from .models import Box, Shop
from .services import box_service, catalog_service, lease_service


def _fail(err: MallError) -> None:
    click.echo(f"FAIL {err.code}: {err.message}")
    if err.details:
        click.echo(f"   {err.details}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create demo shops, boxes and products (idempotent on box numbers).

    Example:
        flask system seed-demo
    """
    db.create_all()

    demo_boxes = [("A-01", 12.5, 45000), ("A-02", 20.0, 70000), ("B-01", 35.0, 110000)]
    for numero, surface, rent_cents in demo_boxes:
        if db.session.query(Box).filter_by(numero=numero).first():
            click.echo(f"SKIP Box {numero} already exists")
            continue
        box = box_service.create_box(numero, surface, rent_cents)
        click.echo(f"PASS Created box {box.numero} (ID: {box.id})")

    if db.session.query(Shop).count() == 0:
        bakery = catalog_service.create_shop("Bakery Corner", "Bread and pastries")
        catalog_service.create_product(bakery.id, "Baguette", 120, 40)
        catalog_service.create_product(bakery.id, "Croissant", 95, 3)

        books = catalog_service.create_shop("Page Turner", "Books and comics")
        catalog_service.create_product(books.id, "Paperback novel", 899, 12)

        click.echo(f"PASS Created shops: {bakery.name} (ID: {bakery.id}), {books.name} (ID: {books.id})")
    else:
        click.echo("SKIP Shops already exist")

    click.echo("DONE Demo data ready.")


@click.group('boxes')
def boxes_group():
    """Box registry and occupancy commands."""


@boxes_group.command('list')
@click.option('--free/--occupied', 'free', default=None, help='Filter by occupancy')
@with_appcontext
def list_boxes_cli(free):
    """
    List boxes.

    Example:
        flask boxes list
        flask boxes list --free
    """
    result = box_service.list_boxes(free=free, per_page=100)

    if not result["items"]:
        click.echo("No boxes found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Numero':<10} {'Surface':<10} {'Rent':<12} {'Status':<10} {'Shop'}")
    click.echo("="*80)

    for item in result["items"]:
        occupant = item.get("occupied_by")
        status = "FREE" if item["is_free"] else "OCCUPIED"
        shop = f"{occupant['name']} (ID: {occupant['id']})" if occupant else "-"
        rent = f"{item['rent_cents'] / 100:.2f}"
        click.echo(f"{item['id']:<5} {item['numero']:<10} {item['surface']:<10} {rent:<12} {status:<10} {shop}")

    stats = result["stats"]
    click.echo("="*80)
    click.echo(f"Total: {stats['total']}  Free: {stats['free']}  Occupied: {stats['occupied']}\n")


@boxes_group.command('assign')
@click.argument('box_id', type=int)
@click.argument('shop_id', type=int)
@with_appcontext
def assign_box_cli(box_id, shop_id):
    """Assign a free box to a shop."""
    try:
        history = box_service.assign_box(box_id, shop_id)
    except MallError as e:
        _fail(e)
        return
    click.echo(f"PASS Box {box_id} assigned to shop {shop_id} (history ID: {history.id})")


@boxes_group.command('release')
@click.argument('box_id', type=int)
@with_appcontext
def release_box_cli(box_id):
    """Free an occupied box."""
    try:
        result = box_service.release_box(box_id)
    except MallError as e:
        _fail(e)
        return
    click.echo(
        f"PASS Box {box_id} released by {result['shop']['name']} "
        f"after {result['duration_days']} day(s)"
    )


@boxes_group.command('transfer')
@click.argument('box_id', type=int)
@click.argument('shop_id', type=int)
@with_appcontext
def transfer_box_cli(box_id, shop_id):
    """Move an occupied box to another shop."""
    try:
        history = box_service.transfer_box(box_id, shop_id)
    except MallError as e:
        _fail(e)
        return
    click.echo(f"PASS Box {box_id} transferred to shop {shop_id} (history ID: {history.id})")


@click.group('leases')
def leases_group():
    """Lease payment commands."""


@leases_group.command('alerts')
@with_appcontext
def lease_alerts_cli():
    """Print the lease dashboard."""
    try:
        dashboard = lease_service.lease_dashboard()
    except Exception:
        current_app.logger.exception("Lease dashboard failed")
        raise

    counts = dashboard["counts"]
    click.echo(
        f"CURRENT: {counts['CURRENT']}  EXPIRING_SOON: {counts['EXPIRING_SOON']}  "
        f"EXPIRED: {counts['EXPIRED']}  Collected: {dashboard['total_amount_cents'] / 100:.2f}"
    )

    if not dashboard["critical"]:
        click.echo("No lease alerts.")
        return

    click.echo("\n" + "="*80)
    for entry in dashboard["critical"]:
        alert = entry["alert"]
        click.echo(f"{alert['status']:<15} {entry['shop_name'] or entry['shop_id']:<25} {alert['message']}")
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(boxes_group)
    app.cli.add_command(leases_group)
