# Overview: Flask CLI command groups for schema bootstrap, register operation and credit reports.

# backend/kasa/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Registers:
# - python -m flask registers open --balance 50000 [--register-id MAIN]
#   Open a session with an opening float in cents.
# - python -m flask registers status [--register-id MAIN]
#   Show the open session's running totals.
# - python -m flask registers close [--register-id MAIN] [--counted 61250]
#   Optionally save a count, then close and print the end-of-day report.
# - python -m flask registers sessions --status OPEN --limit 20
#   List recent register sessions.
#
# Credit:
# - python -m flask credit customers
#   List active customers with debt and limit.
# - python -m flask credit overdue
#   List overdue credit transactions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CashRegisterSession
from .services import credit_service, register_service
from .services.register_service import RegisterError


def _money(cents: int | None) -> str:
    return f"{(cents or 0) / 100:,.2f}"


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables for a fresh local install."""
    db.create_all()
    click.echo("PASS Tables created")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('registers')
def registers_group():
    """Register session commands."""


@registers_group.command('open')
@click.option('--balance', 'balance_cents', type=int, default=0, show_default=True, help='Opening float in cents')
@click.option('--register-id', help='Register code (defaults to DEFAULT_REGISTER_ID)')
@with_appcontext
def open_register_cli(balance_cents, register_id):
    """Open a register session."""
    try:
        session = register_service.open_register(balance_cents, register_id=register_id)
    except RegisterError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Opened session {session.id} on {session.register_id} with {_money(session.opening_balance_cents)}")


@registers_group.command('status')
@click.option('--register-id', help='Register code (defaults to DEFAULT_REGISTER_ID)')
@with_appcontext
def register_status_cli(register_id):
    """Show the open session's running totals."""
    session = register_service.get_active_session(register_id)
    if session is None:
        click.echo("No open register session.")
        return

    click.echo(f"Session {session.id} ({session.register_id}) opened {str(session.opening_date)[:19]}")
    click.echo(f"  Opening balance:     {_money(session.opening_balance_cents):>12}")
    click.echo(f"  Cash sales:          {_money(session.cash_sales_total_cents):>12}")
    click.echo(f"  Card sales:          {_money(session.card_sales_total_cents):>12}")
    click.echo(f"  Deposits:            {_money(session.cash_deposit_total_cents):>12}")
    click.echo(f"  Withdrawals:         {_money(session.cash_withdrawal_total_cents):>12}")
    click.echo(f"  Theoretical balance: {_money(session.theoretical_balance_cents):>12}")


@registers_group.command('close')
@click.option('--register-id', help='Register code (defaults to DEFAULT_REGISTER_ID)')
@click.option('--counted', 'counted_cents', type=int, help='Physical count in cents, saved before closing')
@with_appcontext
def close_register_cli(register_id, counted_cents):
    """
    Close the open session and print the end-of-day report.

    Example:
        flask registers close --counted 61250
    """
    session = register_service.get_active_session(register_id)
    if session is None:
        raise click.ClickException("No open register session")

    try:
        if counted_cents is not None:
            register_service.save_counting(session, counted_cents)
        elif session.counting_amount_cents is None:
            click.confirm("WARN No count was saved. Close anyway?", abort=True)
        report = register_service.close_register(session)
    except RegisterError as e:
        raise click.ClickException(str(e))

    click.echo("\n" + "="*50)
    click.echo(f"END OF DAY  session {report['sessionId']}")
    click.echo("="*50)
    click.echo(f"  Total sales:         {_money(report['totalSales']):>12}")
    click.echo(f"  Cash sales:          {_money(report['cashSales']):>12}")
    click.echo(f"  Card sales:          {_money(report['cardSales']):>12}")
    click.echo(f"  Theoretical balance: {_money(report['theoreticalBalance']):>12}")
    click.echo(f"  Counting difference: {_money(report['countingDifference']):>12}")
    if report['isHighSales']:
        click.echo("  HIGH SALES DAY")
    if report['isLossMaking']:
        click.echo("  WARN Loss-making day")
    click.echo("="*50 + "\n")


@registers_group.command('sessions')
@click.option('--register-id', help='Filter by register code')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(register_id, status, limit):
    """
    List register sessions.

    Example:
        flask registers sessions
        flask registers sessions --status OPEN
    """
    query = db.session.query(CashRegisterSession)
    if register_id:
        query = query.filter_by(register_id=register_id)
    if status:
        query = query.filter_by(status=status)
    sessions = query.order_by(CashRegisterSession.opening_date.desc()).limit(limit).all()

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*96)
    click.echo(f"{'ID':<5} {'Register':<10} {'Status':<8} {'Opened':<20} {'Theoretical':>14} {'Difference':>14}")
    click.echo("="*96)
    for session in sessions:
        difference = "-" if session.counting_difference_cents is None else _money(session.counting_difference_cents)
        click.echo(f"{session.id:<5} {session.register_id:<10} {session.status:<8} "
                   f"{str(session.opening_date)[:19]:<20} {_money(session.theoretical_balance_cents):>14} {difference:>14}")
    click.echo("="*96 + "\n")


@click.group('credit')
def credit_group():
    """Customer credit reports."""


@credit_group.command('customers')
@with_appcontext
def list_customers_cli():
    """List active customers with their debt and limit."""
    customers = credit_service.get_all_customers()
    if not customers:
        click.echo("No customers found.")
        return

    for customer in customers:
        click.echo(f"{customer.id:<5} {customer.name:<30} debt {_money(customer.current_debt_cents):>12} "
                   f"/ limit {_money(customer.credit_limit_cents):>12}")


@credit_group.command('overdue')
@with_appcontext
def overdue_cli():
    """List overdue credit transactions, oldest due date first."""
    rows = credit_service.list_overdue_transactions()
    if not rows:
        click.echo("No overdue credit.")
        return

    for row in rows:
        click.echo(f"{row['customer_name']:<30} due {row['due_date'][:10]} "
                   f"outstanding {_money(row['outstanding_cents']):>12}  {row['description']}")
    click.echo(f"\nTOTAL {_money(sum(r['outstanding_cents'] for r in rows))} across {len(rows)} transaction(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(credit_group)
