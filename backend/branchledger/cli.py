# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/branchledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--company "Company Name"]
#   Idempotent bootstrap: company, branch, manager + cashier users, payment methods.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Cash registers:
# - python -m flask registers list [--branch-id 1]
# - python -m flask registers create --branch-id 1 --name "Caja 1"
#
# Tokens (development stand-in for the identity provider):
# - python -m flask tokens issue --user-id 2 --role manager --branch-id 1
#
# Sequences:
# - python -m flask sequences show [--kind order]
#
# Audit trail:
# - python -m flask audit show [--entity-type payment] [--entity-id 5] [--branch-id 1] [--limit 50]

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import Company, Branch, User, PaymentMethod, CashRegister


DEFAULT_PAYMENT_METHODS = [
    ("Efectivo", "EF", True),
    ("Tarjeta", "TC", False),
    ("Transferencia", "TR", False),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='Default Company', help='Company name')
@click.option('--branch', 'branch_name', default='Main Branch', help='Branch name')
@with_appcontext
def init_system(company_name, branch_name):
    """
    Initialize a working ledger: company, branch, users and payment methods.

    Creates (when missing):
    - Company and one branch with code MAIN
    - Users: manager (assigned as branch manager), cashier
    - Payment methods: Efectivo (cash), Tarjeta, Transferencia
    """
    click.echo("START Initializing branchledger...")

    company = db.session.query(Company).filter_by(name=company_name).first()
    if not company:
        company = Company(name=company_name, is_active=True)
        db.session.add(company)
        db.session.commit()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    users = {}
    for username, role in (("manager", "manager"), ("cashier", "cashier")):
        user = db.session.query(User).filter_by(username=username).first()
        if not user:
            user = User(company_id=company.id, username=username, full_name=username.capitalize(), role=role)
            db.session.add(user)
            db.session.commit()
            click.echo(f"PASS Created user: {username} with role '{role}' (ID: {user.id})")
        else:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
        users[username] = user

    branch = db.session.query(Branch).filter_by(company_id=company.id, code="MAIN").first()
    if not branch:
        branch = Branch(company_id=company.id, name=branch_name, code="MAIN", manager_id=users["manager"].id)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    for name, abbreviation, is_cash in DEFAULT_PAYMENT_METHODS:
        if db.session.query(PaymentMethod).filter_by(name=name).first():
            continue
        db.session.add(PaymentMethod(name=name, abbreviation=abbreviation, is_cash=is_cash, is_active=True))
        db.session.commit()
        click.echo(f"PASS Created payment method: {name}{' (cash)' if is_cash else ''}")

    click.echo("\n" + "="*60)
    click.echo("DONE branchledger initialized")
    click.echo("="*60)
    click.echo(f"\nCompany: {company.name} (ID: {company.id})")
    click.echo(f"Branch: {branch.name} (ID: {branch.id}, manager ID: {branch.manager_id})")
    click.echo("")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('registers')
def registers_group():
    """Cash register inspection and bootstrap commands."""


@registers_group.command('create')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--name', required=True, help='Register name')
@with_appcontext
def create_register_cli(branch_id, name):
    """
    Create a closed cash register with a zero balance.

    Example:
        flask registers create --branch-id 1 --name "Caja 1"
    """
    from .services import register_service

    try:
        register = register_service.create_register(branch_id=branch_id, name=name)
        click.echo(f"PASS Created cash register: {register.name} (ID: {register.id}, Branch: {register.branch_id})")
    except LedgerError as e:
        click.echo(f"FAIL Error: {e.message}")


@registers_group.command('list')
@click.option('--branch-id', type=int, help='Filter by branch ID')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(branch_id, show_all):
    """
    List cash registers with state and balance.

    Example:
        flask registers list
        flask registers list --branch-id 1 --all
    """
    query = db.session.query(CashRegister)
    if branch_id:
        query = query.filter_by(branch_id=branch_id)
    if not show_all:
        query = query.filter_by(is_active=True)

    registers = query.order_by(CashRegister.branch_id, CashRegister.name).all()

    if not registers:
        click.echo("No cash registers found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Branch':<8} {'Name':<25} {'Active':<8} {'State':<8} {'Balance':>14}")
    click.echo("="*90)

    for register in registers:
        state = "OPEN" if register.is_open else "CLOSED"
        active_str = "Yes" if register.is_active else "No"
        balance = f"{register.current_balance_cents / 100:,.2f}"
        click.echo(f"{register.id:<5} {register.branch_id:<8} {register.name:<25} {active_str:<8} {state:<8} {balance:>14}")

    click.echo("="*90 + "\n")


@click.group('tokens')
def tokens_group():
    """Signed identity tokens (development stand-in for the identity provider)."""


@tokens_group.command('issue')
@click.option('--user-id', type=int, required=True, help='Actor user ID')
@click.option('--role', type=click.Choice(['admin', 'manager', 'cashier']), required=True)
@click.option('--branch-id', 'branch_ids', type=int, multiple=True, help='Authorized branch (repeatable)')
@with_appcontext
def issue_token_cli(user_id, role, branch_ids):
    """
    Print a bearer token for the API and the realtime stream.

    Example:
        flask tokens issue --user-id 2 --role cashier --branch-id 1
    """
    from .services import session_service

    if not db.session.get(User, user_id):
        click.echo(f"FAIL User {user_id} not found")
        return
    click.echo(session_service.issue_token(user_id, role, list(branch_ids)))


@click.group('sequences')
def sequences_group():
    """Folio sequence inspection."""


@sequences_group.command('show')
@click.option('--kind', help='Filter by kind (order, event, expense, buy, discount_auth)')
@with_appcontext
def show_sequences_cli(kind):
    from .services import sequence_service

    counters = sequence_service.list_counters(kind)
    if not counters:
        click.echo("No sequences issued yet.")
        return

    click.echo(f"{'Kind':<16} {'Scope':<20} {'Last':>8}")
    for counter in counters:
        click.echo(f"{counter.kind:<16} {counter.scope:<20} {counter.last_value:>8}")


@click.group('audit')
def audit_group():
    """Ledger audit trail inspection."""


@audit_group.command('show')
@click.option('--entity-type', help='Filter by entity (payment, order, cash_register, ...)')
@click.option('--entity-id', type=int, help='Filter by entity ID')
@click.option('--branch-id', type=int, help='Filter by branch ID')
@click.option('--limit', type=int, default=200, show_default=True)
@with_appcontext
def show_audit_cli(entity_type, entity_id, branch_id, limit):
    """
    Print audit events oldest first.

    Example:
        flask audit show --entity-type payment --branch-id 1
    """
    from .services import audit_service

    events = audit_service.list_events(
        entity_type=entity_type, entity_id=entity_id, branch_id=branch_id, limit=limit,
    )
    if not events:
        click.echo("No audit events found.")
        return

    click.echo(f"{'ID':<6} {'Type':<36} {'Entity':<20} {'Amount':>10}")
    for ev in events:
        amount = "" if ev.amount_cents is None else str(ev.amount_cents)
        entity = f"{ev.entity_type}:{ev.entity_id}"
        click.echo(f"{ev.id:<6} {ev.event_type:<36} {entity:<20} {amount:>10}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(tokens_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(audit_group)
