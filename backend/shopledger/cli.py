# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores / users (identity stand-in):
# - python -m flask stores create --name "Main Shop" --code MAIN
# - python -m flask stores list
# - python -m flask users create --store-id 1 --username owner --role owner
#   Prints the bearer token once; only its hash is stored.
# - python -m flask users rotate-token --user-id 1
# - python -m flask users list --store-id 1
#
# Ledger inspection:
# - python -m flask ledger verify --store-id 1
#   Re-derive balances, stock, return and session invariants; exit 1 on drift.
# - python -m flask ledger debts --store-id 1 --kind customer
# - python -m flask cash sessions --store-id 1 --status open

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import Store, User
from .states import Role, SessionStatus, values
from .services import auth_service, integrity_service, payment_service, register_service


def _fail(e: LedgerError):
    raise click.ClickException(f"{e.kind}: {e.message}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('stores')
def stores_group():
    """Store (tenant) management."""


@stores_group.command('create')
@click.option('--name', prompt=True)
@click.option('--code', prompt=True)
@with_appcontext
def create_store(name, code):
    try:
        store = auth_service.create_store(name, code)
    except LedgerError as e:
        _fail(e)
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code})")


@stores_group.command('list')
@with_appcontext
def list_stores():
    stores = db.session.query(Store).order_by(Store.id).all()
    if not stores:
        click.echo("No stores")
        return
    for store in stores:
        click.echo(f"{store.id:>4}  {store.code:<12} {store.name}")


@click.group('users')
def users_group():
    """Acting-user management."""


@users_group.command('create')
@click.option('--store-id', type=int, required=True)
@click.option('--username', prompt=True)
@click.option('--role', type=click.Choice(values(Role)), default=Role.SELLER.value, show_default=True)
@click.option('--full-name', default=None)
@with_appcontext
def create_user(store_id, username, role, full_name):
    try:
        user, token = auth_service.create_user(store_id, username, role=role, full_name=full_name)
    except LedgerError as e:
        _fail(e)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, role '{user.role}')")
    click.echo(f"TOKEN {token}")
    click.echo("Store this token now; it cannot be shown again.")


@users_group.command('rotate-token')
@click.option('--user-id', type=int, required=True)
@with_appcontext
def rotate_token(user_id):
    try:
        token = auth_service.rotate_token(user_id)
    except LedgerError as e:
        _fail(e)
    click.echo(f"TOKEN {token}")


@users_group.command('list')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def list_users(store_id):
    q = db.session.query(User)
    if store_id is not None:
        q = q.filter_by(store_id=store_id)
    for user in q.order_by(User.id).all():
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  store={user.store_id:<4} {user.username:<20} {user.role:<11} {status}")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--store-id', type=int, required=True)
@with_appcontext
def verify(store_id):
    """Check stored balances, stock, returns and sessions against their invariants."""
    results = integrity_service.verify_store(store_id)
    failed = False
    for name, problems in results.items():
        if problems:
            failed = True
            click.echo(f"FAIL {name}: {len(problems)} problem(s)")
            for problem in problems:
                click.echo(f"     {problem}")
        else:
            click.echo(f"PASS {name}")
    if failed:
        raise SystemExit(1)


@ledger_group.command('debts')
@click.option('--store-id', type=int, required=True)
@click.option('--kind', type=click.Choice(["customer", "supplier"]), default="customer", show_default=True)
@with_appcontext
def debts(store_id, kind):
    """Outstanding balances per counterparty, highest first."""
    rows = payment_service.list_balances(store_id, kind, outstanding_only=True)
    rows.sort(key=lambda r: r["outstanding_cents"], reverse=True)
    for row in rows:
        cp = row["counterparty"]
        click.echo(f"{cp['id']:>4}  {cp['name']:<30} outstanding={row['outstanding_cents']:>10}  spent={row['total_spent_cents']:>10}")
    click.echo(f"TOTAL {payment_service.get_total_debt(store_id, kind)}")


@click.group('cash')
def cash_group():
    """Cash register session inspection."""


@cash_group.command('sessions')
@click.option('--store-id', type=int, required=True)
@click.option('--status', type=click.Choice(values(SessionStatus)), default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sessions(store_id, status, limit):
    sessions = register_service.list_sessions(store_id, status=status, limit=limit)
    if not sessions:
        click.echo("No sessions")
        return
    for s in sessions:
        click.echo(
            f"{s.id:>4}  {s.status:<6} opened={s.opened_at} opening={s.opening_balance_cents} "
            f"expected={s.expected_balance_cents} counted={s.closing_balance_cents} diff={s.difference_cents}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(cash_group)
