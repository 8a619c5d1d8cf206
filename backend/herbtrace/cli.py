# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/herbtrace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and one default user per role.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role farmer]
#   List users with role, organization and active status.
# - python -m flask users create --user-id farmer002 --username ravi --email ravi@farm.local --role farmer --organization "Ravi Farms"
#   Create a user (prompts if options are omitted).
# - python -m flask users deactivate farmer002
#   Disable a user and revoke their open sessions.
#
# Compliance:
# - python -m flask compliance recheck BATCH001
#   Re-evaluate one batch against the configured rule tables.
# - python -m flask compliance recheck --all
#   Re-evaluate every batch.
#
# Ledger:
# - python -m flask ledger status
#   Show the configured ledger mode and gateway settings.
# - python -m flask ledger query BATCH001
#   Print the ledger's view of a batch (GetHerbBatch).

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import HerbBatch, User
from .permissions import ROLES
from .services.auth_service import create_user, deactivate_user, PasswordValidationError
from .services import batch_service, ledger_service
from .services.ledger_service import LedgerUnavailableError


DEFAULT_PASSWORD = "Password123!"

# (user_id, username, role, organization)
DEFAULT_USERS = [
    ("admin001", "admin", "admin", "HerbTrace"),
    ("farmer001", "farmer", "farmer", "Green Valley Farms"),
    ("processor001", "processor", "processor", "Ayur Processing Co"),
    ("lab001", "laboratory", "laboratory", "Certified Herb Labs"),
    ("regulator001", "regulator", "regulator", "AYUSH Regulatory Authority"),
    ("retailer001", "retailer", "retailer", "Herbal Retail Store"),
    ("consumer001", "consumer", "consumer", "Public"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize HerbTrace: create tables and one default user per role.

    All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing HerbTrace...")

    db.create_all()
    click.echo("PASS Tables ready")

    click.echo("\nUSERS Creating default users...")
    for user_id, username, role, organization in DEFAULT_USERS:
        try:
            existing = db.session.query(User).filter_by(user_id=user_id).first()
            if existing:
                click.echo(f"WARN  User '{user_id}' already exists, skipping...")
                continue

            create_user(
                user_id=user_id,
                username=username,
                email=f"{username}@herbtrace.local",
                password=DEFAULT_PASSWORD,
                role=role,
                organization=organization,
            )
            click.echo(f"PASS Created user: {username} ({user_id}) with role '{role}'")

        except (PasswordValidationError, ValueError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{user_id}': {str(e)}")

    click.echo("\n" + "="*60)
    click.echo("DONE HerbTrace Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for _, username, _, _ in DEFAULT_USERS:
        click.echo(f"   {username:<11}-> {username}@herbtrace.local / {DEFAULT_PASSWORD}")
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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--user-id', prompt=True, help='Stable actor id (e.g. farmer002)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--organization', prompt=True, help='Organization name')
@click.option('--grant', 'grants', multiple=True, help='Extra permission code (repeatable)')
@with_appcontext
def create_user_cli(user_id, username, email, password, role, organization, grants):
    """
    Create a new supply-chain actor.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        create_user(
            user_id=user_id,
            username=username,
            email=email,
            password=password,
            role=role,
            organization=organization,
            extra_permissions=list(grants),
        )
        click.echo(f"PASS Created user: {username} ({user_id}) with role '{role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)

    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.user_id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'User ID':<15} {'Username':<15} {'Role':<12} {'Organization':<30} {'Active':<8}")
    click.echo("="*100)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.user_id:<15} {user.username:<15} {user.role:<12} {user.organization:<30} {active_str:<8}")

    click.echo("="*100 + "\n")


@users_group.command('deactivate')
@click.argument('user_id')
@with_appcontext
def deactivate_user_cli(user_id):
    """Disable a user; their recorded events are kept."""
    try:
        revoked = deactivate_user(user_id, reason="Account deactivated by admin")
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Deactivated {user_id} ({revoked} session(s) revoked)")


@click.group('compliance')
def compliance_group():
    """Compliance maintenance commands."""


@compliance_group.command('recheck')
@click.argument('batch_id', required=False)
@click.option('--all', 'recheck_all', is_flag=True, help='Re-evaluate every batch')
@with_appcontext
def recheck_cli(batch_id, recheck_all):
    """Re-evaluate stored batches against the configured rule tables."""
    if not batch_id and not recheck_all:
        raise click.UsageError("Pass a BATCH_ID or --all")

    if recheck_all:
        batch_ids = [row[0] for row in db.session.query(HerbBatch.batch_id).order_by(HerbBatch.id).all()]
    else:
        batch_ids = [batch_id]

    changed = 0
    for bid in batch_ids:
        before = db.session.query(HerbBatch.compliance_overall).filter_by(batch_id=bid).scalar()
        if before is None:
            click.echo(f"FAIL Batch '{bid}' not found")
            continue
        batch = batch_service.recheck_compliance(bid, checked_by="cli")
        marker = "PASS" if batch.compliance_overall else "FAIL"
        click.echo(f"{marker} {bid}: overall={batch.compliance_overall} violations={batch.violation_messages}")
        if batch.compliance_overall != before:
            changed += 1

    click.echo(f"\nRechecked {len(batch_ids)} batch(es), {changed} verdict(s) changed.")


@click.group('ledger')
def ledger_group():
    """Ledger anchor inspection commands."""


@ledger_group.command('status')
@with_appcontext
def ledger_status_cli():
    """Show the configured ledger client."""
    anchor = ledger_service.get_ledger()
    for key, value in anchor.client.describe().items():
        click.echo(f"{key:<16} {value}")
    if anchor.mode == "offline":
        click.echo("WARN  Ledger offline: receipts are synthetic")


@ledger_group.command('query')
@click.argument('batch_id')
@with_appcontext
def ledger_query_cli(batch_id):
    """Print the ledger's view of a batch."""
    try:
        result = ledger_service.query_batch(batch_id)
    except LedgerUnavailableError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(result, indent=2, sort_keys=True))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(compliance_group)
    app.cli.add_command(ledger_group)
