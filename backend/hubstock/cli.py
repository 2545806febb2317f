# Overview: Flask CLI command groups for stock inspection and ledger maintenance.

# backend/hubstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to hubstock (PowerShell: $env:FLASK_APP="hubstock").
# - Use: python -m flask <group> <command> [options]
#
# Stock inspection:
# - python -m flask stock show [--location KITCHEN] [--status low-stock]
#   List stock records with their classification.
#
# Ledger maintenance:
# - python -m flask stock verify
#   Compare every stock record with the transaction log (read-only, exits 1 on drift).
# - python -m flask stock rebuild --yes
#   Repair stock records from the transaction log (the log is authoritative).
#
# Transfer recovery:
# - python -m flask transfers recover --older-than-minutes 5
#   Reverse the out leg of transfers stranded in pending by a crash between legs.
# - python -m flask transfers list --status reconciliation-required
#   List transfers (optionally by status) for manual reconciliation.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .services import stock_service, transfer_service


@click.group('stock')
def stock_group():
    """Stock ledger inspection and repair commands."""


@stock_group.command('show')
@click.option('--location', 'location_id', default=None, help='Only this location')
@click.option('--status', default=None, help='in-stock, low-stock or out-of-stock')
@with_appcontext
def show_stock(location_id, status):
    """List stock records."""
    records = stock_service.list_stock(location_id=location_id, status=status)
    if not records:
        click.echo("No stock records found.")
        return
    for record in records:
        click.echo(
            f"{record.location_id:<16} {record.product_id:<24} "
            f"qty={record.quantity:<8} threshold={record.low_stock_threshold:<6} {record.status.value}"
        )


@stock_group.command('verify')
@with_appcontext
def verify_stock():
    """Report stock records that disagree with the transaction log."""
    problems = stock_service.find_inconsistencies()
    if not problems:
        click.echo("PASS Stock records match the transaction log.")
        return
    for p in problems:
        click.echo(
            f"FAIL {p['location_id']}/{p['product_id']}: "
            f"recorded={p['recorded_quantity']} replayed={p['replayed_quantity']}"
        )
    raise SystemExit(1)


@stock_group.command('rebuild')
@click.option('--yes', is_flag=True, help='Confirm overwriting drifted stock records')
@with_appcontext
def rebuild_stock(yes):
    """Repair stock records by replaying the transaction log."""
    if not yes:
        click.echo("Refusing to rebuild without --yes.")
        raise SystemExit(1)
    repaired = stock_service.rebuild_stock_records()
    for r in repaired:
        click.echo(
            f"FIXED {r['location_id']}/{r['product_id']}: {r['previous_quantity']} -> {r['quantity']}"
        )
    click.echo(f"PASS Rebuild complete ({len(repaired)} record(s) repaired).")


@click.group('transfers')
def transfers_group():
    """Transfer inspection and recovery commands."""


@transfers_group.command('list')
@click.option('--location', 'location_id', default=None, help='Source or destination location')
@click.option('--status', default=None, help='pending, completed, rolled-back, reconciliation-required')
@click.option('--limit', default=50, show_default=True, type=int)
@with_appcontext
def list_transfers(location_id, status, limit):
    """List recent transfers."""
    transfers = transfer_service.list_transfers(location_id=location_id, status=status, limit=limit)
    if not transfers:
        click.echo("No transfers found.")
        return
    for t in transfers:
        line = (
            f"#{t.id:<6} {t.product_id:<24} {t.source_location_id} -> {t.destination_location_id} "
            f"qty={t.quantity} {t.status.value}"
        )
        if t.incident_ref:
            line += f" incident={t.incident_ref}"
        click.echo(line)


@transfers_group.command('recover')
@click.option('--older-than-minutes', default=5, show_default=True, type=int,
              help='Only transfers pending at least this long')
@with_appcontext
def recover_transfers(older_than_minutes):
    """Compensate transfers stranded in pending."""
    recovered = transfer_service.recover_pending_transfers(older_than=timedelta(minutes=older_than_minutes))
    for t in recovered:
        click.echo(f"ROLLED BACK transfer #{t.id} ({t.product_id} x{t.quantity} returned to {t.source_location_id})")
    click.echo(f"PASS Recovery complete ({len(recovered)} transfer(s) rolled back).")


def register_commands(app):
    app.cli.add_command(stock_group)
    app.cli.add_command(transfers_group)
