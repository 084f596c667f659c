# Overview: Flask CLI command groups for bootstrap and operator maintenance.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--code BR1] [--name "Main Kitchen"]
#   Idempotent: creates tables and the default branch.
#
# Orders:
# - python -m flask orders cancel-unpaid [--hours 24]
#   Cancel PENDING orders still unpaid after the given age.
# - python -m flask orders pending-review
#   List orders waiting for a manual payment decision.
#
# Stock:
# - python -m flask stock alerts [--branch-id 1]
#   List ingredients at or below their minimum level.
# - python -m flask stock verify-ledger [--ingredient-id 3]
#   Compare current stock with the sum of its stock transactions.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch
from .money import format_cents
from .services.registry import get_core


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--code', 'branch_code', default=None, help='Branch code (defaults to DEFAULT_BRANCH_CODE)')
@click.option('--name', 'branch_name', default=None, help='Branch name (defaults to DEFAULT_BRANCH_NAME)')
@with_appcontext
def init_system(branch_code, branch_name):
    """Create tables and the default branch."""
    click.echo("START Initializing fulfillment core...")

    db.create_all()

    code = branch_code or current_app.config["DEFAULT_BRANCH_CODE"]
    branch = db.session.query(Branch).filter_by(code=code).first()
    if branch is None:
        branch = Branch(
            code=code,
            name=branch_name or current_app.config["DEFAULT_BRANCH_NAME"],
            timezone=current_app.config["DEFAULT_TIMEZONE"],
            tax_rate_bps=current_app.config["DEFAULT_TAX_RATE_BPS"],
        )
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    if not current_app.config.get("SLIPOK_API_KEY"):
        click.echo("WARN  SLIPOK_API_KEY not set; every slip will go to manual review")
    if not current_app.config.get("MERCHANT_ACCOUNTS"):
        click.echo("WARN  MERCHANT_ACCOUNTS not set; no slip can be auto-approved")

    click.echo("DONE Fulfillment core initialized")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('cancel-unpaid')
@click.option('--hours', type=int, default=None, help='Age in hours (defaults to UNPAID_ORDER_TTL_HOURS)')
@with_appcontext
def cancel_unpaid(hours):
    """Cancel stale unpaid PENDING orders."""
    cancelled = get_core().status.cancel_unpaid_orders(hours)
    if not cancelled:
        click.echo("No unpaid orders to cancel.")
        return
    for order_number in cancelled:
        click.echo(f"CANCELLED {order_number}")
    click.echo(f"\nTotal: {len(cancelled)} order(s)")


@orders_group.command('pending-review')
@with_appcontext
def pending_review():
    """List orders waiting for a payment decision."""
    orders = get_core().ledger.orders_pending_review()
    if not orders:
        click.echo("No orders waiting for payment review.")
        return

    click.echo(f"{'Order':<16} {'Status':<10} {'Total':>12}  Customer")
    click.echo("-" * 60)
    for order in orders:
        click.echo(
            f"{order['order_number']:<16} {order['status']:<10} "
            f"{format_cents(order['total_cents']):>12}  {order['customer_name']}"
        )
    click.echo(f"\nTotal: {len(orders)} order(s)")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('alerts')
@click.option('--branch-id', type=int, default=None, help='Filter by branch ID')
@with_appcontext
def stock_alerts(branch_id):
    """List ingredients at or below their minimum stock level."""
    alerts = get_core().stock.low_stock_alerts(branch_id)
    if not alerts:
        click.echo("All ingredients above minimum level.")
        return

    click.echo(f"{'ID':<6} {'Ingredient':<30} {'Stock':>12} {'Min':>12}  Level")
    click.echo("-" * 72)
    for alert in alerts:
        click.echo(
            f"{alert['ingredient_id']:<6} {alert['name'][:30]:<30} "
            f"{str(alert['current_stock']):>12} {str(alert['min_stock_level']):>12}  {alert['level'].upper()}"
        )


@stock_group.command('verify-ledger')
@click.option('--ingredient-id', type=int, default=None, help='Check one ingredient only')
@with_appcontext
def verify_ledger(ingredient_id):
    """Check that every ingredient's stock equals the sum of its ledger."""
    mismatches = get_core().stock.verify_ledger(ingredient_id)
    if not mismatches:
        click.echo("PASS Stock ledger consistent")
        return

    for row in mismatches:
        click.echo(
            f"FAIL {row['name']} (ID: {row['ingredient_id']}): "
            f"stock {row['current_stock']} != ledger {row['ledger_balance']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(stock_group)
