# Overview: Flask CLI command groups for bootstrap, ledger inspection and report exports.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Ledger:
# - python -m flask ledger init-db
#   Create all tables (idempotent).
# - python -m flask ledger verify
#   Audit the ledger; exits non-zero when any problem is found.
# - python -m flask ledger balances [--low-only]
#   Print ledger-derived stock per product.
#
# Reports:
# - python -m flask reports export inventory
# - python -m flask reports export sales --start 2024-01-01 --end 2024-01-31
#   Write one CSV report to REPORTS_DIR and print its path.
# - python -m flask reports export-all
#   Write every report kind; exits non-zero if any kind failed.

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Product
from .services import export_service, ledger_service
from .services.analytics_service import AnalyticsWindow
from .services.balance_service import balances_for_all, is_low_stock


@click.group('ledger')
def ledger_group():
    """Stock ledger bootstrap and inspection commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


@ledger_group.command('verify')
@with_appcontext
def verify_ledger_command():
    """Check sale/movement pairing and non-negative history for every product."""
    report = ledger_service.verify_ledger()
    if report["ok"]:
        click.echo("PASS Ledger is consistent")
        return

    if report["orphaned_sales"]:
        click.echo(f"FAIL Sales without egress movement: {report['orphaned_sales']}")
    if report["mismatched_movements"]:
        click.echo(f"FAIL Sale movements not matching their sale: {report['mismatched_movements']}")
    if report["negative_balances"]:
        click.echo(f"FAIL Products whose ledger goes negative: {report['negative_balances']}")
    raise SystemExit(1)


@ledger_group.command('balances')
@click.option('--low-only', is_flag=True, help='Only show products at or below min_stock')
@with_appcontext
def balances_command(low_only):
    """Print current stock per product."""
    balances = balances_for_all()
    products = db.session.query(Product).order_by(Product.id.asc()).all()
    if not products:
        click.echo("No products found.")
        return

    for p in products:
        current = balances.get(p.id, 0)
        low = is_low_stock(current, p.min_stock)
        if low_only and not low:
            continue
        flag = "  LOW" if low else ""
        click.echo(f"{p.id:>5}  {p.sku or '-':<16} {p.name:<40} {current:>8}{flag}")


@click.group('reports')
def reports_group():
    """CSV report exports."""


@reports_group.command('export')
@click.argument('kind', type=click.Choice(export_service.REPORT_KINDS))
@click.option('--start', 'start_date', default=None, help='Start date (YYYY-MM-DD, inclusive)')
@click.option('--end', 'end_date', default=None, help='End date (YYYY-MM-DD, inclusive)')
@click.option('--category', default=None, help='Restrict sales-based reports to one category')
@with_appcontext
def export_command(kind, start_date, end_date, category):
    """Export one report kind."""
    try:
        window = AnalyticsWindow.from_args(
            {"start_date": start_date, "end_date": end_date, "category": category}
        )
        artifact = export_service.export_report(kind, window)
    except ServiceError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"PASS {artifact.kind}: {artifact.path} ({artifact.row_count} rows)")


@reports_group.command('export-all')
@with_appcontext
def export_all_command():
    """Export every report kind over the full history."""
    batch = export_service.export_all()
    for artifact in batch.artifacts:
        click.echo(f"PASS {artifact.kind}: {artifact.path}")
    for kind, reason in sorted(batch.failures.items()):
        click.echo(f"FAIL {kind}: {reason}")
    if not batch.ok:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(reports_group)
