# Overview: Flask CLI command groups for the reference Sales Ledger and shift reports.

# backend/tillcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app tillcore <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app tillcore system init-db
#   Create any missing ledger tables (idempotent).
# - flask --app tillcore system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shifts:
# - flask --app tillcore shifts open --starting-cash 100.00 [--user-id alice]
#   Open a shift with the starting drawer float.
# - flask --app tillcore shifts close --shift-id 1 --ending-cash 150.00 [--notes "..."]
#   Close a shift with the counted drawer amount.
# - flask --app tillcore shifts list [--status open|closed]
#   List shifts.
# - flask --app tillcore shifts cash --shift-id 1 --type drop --amount 50.00 --reason "Safe drop"
#   Record a pay-in, pay-out or drop.
# - flask --app tillcore shifts report --shift-id 1
#   Print the X (open) or Z (closed) report and drawer reconciliation as JSON (cents).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import EngineError, ValidationError
from .extensions import db
from .services import ledger_service
from .validation import coerce_money


def _fail(message: str):
    click.echo(f"FAIL {message}", err=True)
    click.get_current_context().exit(1)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create ledger tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Ledger tables ready.")


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


@click.group('shifts')
def shifts_group():
    """Shift, cash drawer and report commands."""


@shifts_group.command('open')
@click.option('--starting-cash', required=True, help='Starting float, e.g. 100.00')
@click.option('--user-id', default=None, help='Cashier identifier')
@with_appcontext
def open_shift_cli(starting_cash, user_id):
    """
    Open a shift.

    Example:
        flask shifts open --starting-cash 100.00 --user-id alice
    """
    try:
        shift = ledger_service.open_shift(coerce_money(starting_cash, "starting_cash"), user_id=user_id)
    except (EngineError, ValidationError) as e:
        _fail(str(e))
        return

    click.echo(f"PASS Opened shift {shift.id} with {shift.starting_cash_cents} cents")


@shifts_group.command('close')
@click.option('--shift-id', type=int, required=True, help='Shift ID')
@click.option('--ending-cash', required=True, help='Counted drawer amount, e.g. 150.00')
@click.option('--notes', default=None, help='Closing notes')
@with_appcontext
def close_shift_cli(shift_id, ending_cash, notes):
    """
    Close a shift.

    Example:
        flask shifts close --shift-id 1 --ending-cash 150.00 --notes "All good"
    """
    try:
        shift = ledger_service.close_shift(shift_id, coerce_money(ending_cash, "ending_cash"), notes)
    except (EngineError, ValidationError) as e:
        _fail(str(e))
        return

    click.echo(f"PASS Closed shift {shift.id} with {shift.ending_cash_cents} cents counted")


@shifts_group.command('list')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@with_appcontext
def list_shifts_cli(status):
    """List shifts."""
    shifts = ledger_service.list_shifts(status)

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'User':<15} {'Status':<8} {'Opened':<20} {'Closed':<20} {'Start':>10}")
    click.echo("="*90)

    for shift in shifts:
        closed = str(shift.closed_at)[:19] if shift.closed_at else "-"
        click.echo(f"{shift.id:<5} {(shift.user_id or '-'):<15} {shift.status:<8} "
                   f"{str(shift.opened_at)[:19]:<20} {closed:<20} {shift.starting_cash_cents:>10}")

    click.echo("="*90 + "\n")


@shifts_group.command('cash')
@click.option('--shift-id', type=int, required=True, help='Shift ID')
@click.option('--type', 'movement_type', type=click.Choice(['pay_in', 'pay_out', 'drop']), required=True)
@click.option('--amount', required=True, help='Amount, e.g. 5.00')
@click.option('--reason', required=True, help='Why the cash moved')
@with_appcontext
def cash_movement_cli(shift_id, movement_type, amount, reason):
    """
    Record a cash movement on an open shift.

    Example:
        flask shifts cash --shift-id 1 --type pay_out --amount 5.00 --reason "Milk"
    """
    try:
        entry = ledger_service.record_cash_movement(
            shift_id, movement_type, coerce_money(amount, "amount"), reason
        )
    except (EngineError, ValidationError) as e:
        _fail(str(e))
        return

    click.echo(f"PASS Recorded {entry.movement_type} of {entry.amount_cents} cents on shift {shift_id}")


@shifts_group.command('report')
@click.option('--shift-id', type=int, required=True, help='Shift ID')
@with_appcontext
def report_cli(shift_id):
    """Print the X/Z report and drawer reconciliation as JSON."""
    try:
        report, drawer = ledger_service.shift_report(shift_id)
    except EngineError as e:
        _fail(str(e))
        return
    except Exception:
        current_app.logger.exception("Failed to build report for shift %s", shift_id)
        _fail("Failed to build report")
        return

    click.echo(json.dumps({"report": report.to_dict(), "drawer": drawer.to_dict()}, indent=2))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shifts_group)
