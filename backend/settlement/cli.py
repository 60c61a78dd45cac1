# Overview: Flask CLI command groups for branch setup, cash-up, laybye maintenance and accounts.

# backend/settlement/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
# Amounts are entered in currency units ("500", "500.00") and stored as cents.
#
# Database:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Branches:
# - python -m flask branches create --code JHB01 --name "Johannesburg CBD"
# - python -m flask branches list [--all]
#
# Cash-up:
# - python -m flask cashup open --branch-id 1 --opening 500.00 --cashier "Sipho"
# - python -m flask cashup status --branch-id 1
# - python -m flask cashup close --session-id 3 --actual 1004.00
#
# Laybye maintenance (schedule daily):
# - python -m flask laybye expire-overdue [--as-of 2026-10-19]
#
# Customer accounts:
# - python -m flask accounts open --first-name Thandi --last-name Mokoena --credit-limit 300.00
# - python -m flask accounts show 7

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch
from .money import Money, format_cents, parse_amount
from .services import account_service, cashup_service, laybye_service
from .services.account_service import AccountError
from .services.cashup_service import CashupError
from .time_utils import parse_iso_date
from .validation import ConflictError, ValidationError


def _money(cents: int) -> str:
    return str(Money(cents, current_app.config.get("CURRENCY_CODE", "ZAR")))


def _amount(text: str, field: str) -> int:
    try:
        return parse_amount(text)
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint=field)


@click.group('system')
def system_group():
    """Database bootstrap commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask branches create' next.")


# =============================================================================
# BRANCHES
# =============================================================================

@click.group('branches')
def branches_group():
    """Branch management commands."""


@branches_group.command('create')
@click.option('--code', required=True, help='Short branch code (unique)')
@click.option('--name', required=True, help='Branch name')
@with_appcontext
def create_branch_cli(code, name):
    """
    Create a branch.

    Example:
        flask branches create --code JHB01 --name "Johannesburg CBD"
    """
    code = code.strip().upper()
    if db.session.query(Branch).filter_by(code=code).first():
        click.echo(f"FAIL Branch code {code} already exists")
        raise SystemExit(1)

    branch = Branch(code=code, name=name.strip(), is_active=True)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch {branch.code}: {branch.name} (ID: {branch.id})")


@branches_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive branches too')
@with_appcontext
def list_branches_cli(show_all):
    """List branches with their cash-up status."""
    query = db.session.query(Branch)
    if not show_all:
        query = query.filter_by(is_active=True)
    branches = query.order_by(Branch.code).all()

    if not branches:
        click.echo("No branches found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<10} {'Name':<30} {'Active':<8} {'Cash-up'}")
    click.echo("="*80)

    for branch in branches:
        session = cashup_service.get_current_session(branch.id)
        status = session.session_number if session else "-"
        active = "Yes" if branch.is_active else "No"
        click.echo(f"{branch.id:<5} {branch.code:<10} {branch.name:<30} {active:<8} {status}")

    click.echo("="*80 + "\n")


# =============================================================================
# CASH-UP
# =============================================================================

@click.group('cashup')
def cashup_group():
    """Cash-up session commands."""


@cashup_group.command('open')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--opening', required=True, help='Opening float, e.g. 500.00')
@click.option('--cashier', required=True, help='Cashier name')
@with_appcontext
def open_session_cli(branch_id, opening, cashier):
    """Open a cash-up session on a branch."""
    try:
        session = cashup_service.open_session(branch_id, _amount(opening, '--opening'), cashier)
    except (CashupError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Opened {session.session_number} with float {_money(session.opening_cents)}")


@cashup_group.command('status')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@with_appcontext
def session_status_cli(branch_id):
    """Show the branch's active session with running totals."""
    session = cashup_service.get_current_session(branch_id)
    if not session:
        click.echo("No active cash-up session.")
        return

    summary = cashup_service.get_session_summary(session.id)
    totals = summary["totals"]

    click.echo(f"\nSession {session.session_number} (cashier: {session.cashier_name})")
    click.echo(f"  Opening float: {_money(session.opening_cents)}")
    for method, cents in sorted(totals["sales_by_method"].items()):
        click.echo(f"  Sales ({method}): {_money(cents)}")
    for method, cents in sorted(totals["refunds_by_method"].items()):
        click.echo(f"  Refunds ({method}): {_money(cents)}")
    click.echo(f"  Expenses: {_money(totals['expenses_total_cents'])}")
    click.echo(f"  Expected: {_money(summary['expected_cents'])}\n")


@cashup_group.command('close')
@click.option('--session-id', type=int, required=True, help='Session ID')
@click.option('--actual', required=True, help='Counted amount, e.g. 1004.00')
@click.option('--notes', help='Closing notes')
@with_appcontext
def close_session_cli(session_id, actual, notes):
    """Close a session with the counted amount and show the variance."""
    try:
        session = cashup_service.close_session(session_id, _amount(actual, '--actual'), notes=notes)
    except (CashupError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    result = cashup_service.classify_variance(session.variance_cents)
    click.echo(f"PASS Closed {session.session_number}")
    click.echo(f"  Expected: {_money(session.expected_cents)}")
    click.echo(f"  Counted:  {_money(session.actual_cents)}")
    label = f" {result.variance_type}" if result.variance_type else ""
    click.echo(f"  Variance: {format_cents(session.variance_cents)} ({result.classification}{label})")


# =============================================================================
# LAYBYE
# =============================================================================

@click.group('laybye')
def laybye_group():
    """Laybye maintenance commands."""


@laybye_group.command('expire-overdue')
@click.option('--as-of', help='Date to evaluate due dates against (YYYY-MM-DD, default today UTC)')
@with_appcontext
def expire_overdue_cli(as_of):
    """
    Expire laybyes past their due date with a balance outstanding.

    Example:
        flask laybye expire-overdue
        flask laybye expire-overdue --as-of 2026-10-19
    """
    try:
        as_of_date = parse_iso_date(as_of) if as_of else None
    except ValueError:
        raise click.BadParameter("Use YYYY-MM-DD", param_hint='--as-of')

    expired = laybye_service.expire_overdue(as_of_date)
    if not expired:
        click.echo("No overdue laybyes.")
        return

    for order in expired:
        click.echo(
            f"EXPIRED {order.order_number} due {order.due_date.isoformat()} "
            f"outstanding {_money(order.remaining_balance_cents)}"
        )
    click.echo(f"PASS Expired {len(expired)} laybye(s)")


# =============================================================================
# ACCOUNTS
# =============================================================================

@click.group('accounts')
def accounts_group():
    """Customer account commands."""


@accounts_group.command('open')
@click.option('--first-name', required=True, help='First name')
@click.option('--last-name', required=True, help='Last name')
@click.option('--account-number', help='Account number (generated when omitted)')
@click.option('--credit-limit', default='0', show_default=True, help='Credit limit, e.g. 300.00')
@click.option('--opening-balance', default='0', show_default=True, help='Prepaid opening balance')
@click.option('--email', help='Email address')
@click.option('--phone', help='Phone number')
@with_appcontext
def open_account_cli(first_name, last_name, account_number, credit_limit, opening_balance, email, phone):
    """Open a customer account."""
    try:
        account = account_service.open_account(
            first_name,
            last_name,
            account_number=account_number,
            credit_limit_cents=_amount(credit_limit, '--credit-limit'),
            opening_balance_cents=_amount(opening_balance, '--opening-balance'),
            email=email,
            phone=phone,
        )
    except (AccountError, ConflictError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Opened {account.account_number} for {account.display_name} (ID: {account.id})")


@accounts_group.command('show')
@click.argument('customer_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True, help='Statement rows to show')
@with_appcontext
def show_account_cli(customer_id, limit):
    """Show an account's balance, available spend and recent statement."""
    try:
        account = account_service.get_account(customer_id)
    except AccountError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"\n{account.account_number} {account.display_name} [{account.status}]")
    click.echo(f"  Balance:      {_money(account.balance_cents)}")
    click.echo(f"  Credit limit: {_money(account.credit_limit_cents)}")
    click.echo(f"  Available:    {_money(account.available_cents)}")

    rows = account_service.get_account_statement(customer_id)[-limit:]
    if rows:
        click.echo("\n" + "-"*70)
        for row in rows:
            sign = "-" if row.transaction_type == account_service.TXN_DEBIT else "+"
            click.echo(
                f"  {row.occurred_at:%Y-%m-%d %H:%M}  {row.transaction_type:<7} "
                f"{sign}{format_cents(row.amount_cents):>12}  bal {format_cents(row.balance_after_cents):>12}  "
                f"{row.reference or ''}"
            )
        click.echo("-"*70)
    click.echo()


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(cashup_group)
    app.cli.add_command(laybye_group)
    app.cli.add_command(accounts_group)
