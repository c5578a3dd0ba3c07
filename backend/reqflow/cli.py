# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/reqflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username sec1 --email sec1@example.org --role SECURITY
#   Create a user with one workflow role.
# - python -m flask users list [--role LOGISTICS]
#   List users with role and active status.
#
# Requisitions:
# - python -m flask requisitions create --requester alice --purpose "Site kit" --item "Helmet:10"
#   Create a draft requisition with items (repeat --item).
# - python -m flask requisitions timeline 1
#   Print the audit trail of a requisition.

import click
from flask.cli import with_appcontext
from sqlalchemy import func

from .extensions import db
from .models import Requisition, RequisitionItem, StatusHistoryEntry, User
from .services.audit_service import list_status_history
from .services.state_graph import Role, get_permission_matrix, status_label
from .time_utils import utcnow


ROLE_CHOICES = [role.value for role in Role]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Database tables created")


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

    click.echo("PASS Database reset complete. Run 'python -m flask users create' to add users.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(ROLE_CHOICES, case_sensitive=False), prompt=True, help='Workflow role')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, email, role, full_name):
    """Create a user holding one workflow role."""
    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        click.echo(f"FAIL User '{username}' already exists")
        return

    try:
        user = User(username=username, email=email, full_name=full_name, role=role.upper())
        db.session.add(user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {username} ({email}) with role '{user.role}'")
    click.echo(f"     User ID: {user.id}")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLE_CHOICES, case_sensitive=False), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their role."""
    query = db.session.query(User)

    if role:
        query = query.filter_by(role=role.upper())

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {user.role}")

    click.echo("="*90 + "\n")


@click.group('requisitions')
def requisitions_group():
    """Requisition bootstrap and inspection commands."""


def next_requisition_number(year: int) -> str:
    """REQ-<year>-<nnnn>, sequential within the year."""
    prefix = f"REQ-{year}-"
    count = (
        db.session.query(func.count(Requisition.id))
        .filter(Requisition.number.like(f"{prefix}%"))
        .scalar()
    ) or 0
    return f"{prefix}{count + 1:04d}"


def _parse_item(raw: str) -> tuple[str, int]:
    description, sep, quantity = raw.rpartition(":")
    if not sep or not description.strip():
        raise click.BadParameter(f"expected DESCRIPTION:QUANTITY, got {raw!r}")
    try:
        qty = int(quantity)
    except ValueError:
        raise click.BadParameter(f"quantity must be an integer in {raw!r}")
    if qty <= 0:
        raise click.BadParameter(f"quantity must be positive in {raw!r}")
    return description.strip(), qty


@requisitions_group.command('create')
@click.option('--requester', required=True, help='Username of the requester')
@click.option('--purpose', default=None, help='Purpose text')
@click.option('--item', 'items', multiple=True, help='DESCRIPTION:QUANTITY (repeatable)')
@with_appcontext
def create_requisition_cli(requester, purpose, items):
    """Create a DRAFT requisition."""
    user = db.session.query(User).filter_by(username=requester).first()
    if not user:
        click.echo(f"FAIL User '{requester}' not found")
        return

    parsed = [_parse_item(raw) for raw in items]

    requisition = Requisition(
        number=next_requisition_number(utcnow().year),
        requester_id=user.id,
        purpose=purpose,
        status="DRAFT",
    )
    for description, qty in parsed:
        requisition.items.append(RequisitionItem(description=description, requested_quantity=qty))
    db.session.add(requisition)
    db.session.commit()

    click.echo(f"PASS Created {requisition.number} (ID: {requisition.id}) with {len(parsed)} item(s)")


@requisitions_group.command('timeline')
@click.argument('requisition_id', type=int)
@with_appcontext
def timeline_cli(requisition_id):
    """Print the audit trail of a requisition."""
    requisition = db.session.get(Requisition, requisition_id)
    if not requisition:
        click.echo(f"FAIL Requisition {requisition_id} not found")
        return

    entries: list[StatusHistoryEntry] = list_status_history(db.session, requisition_id)
    click.echo(f"\n{requisition.number}: {status_label(requisition.status)}")
    click.echo("-"*90)

    if not entries:
        click.echo("No history yet.")
        return

    for entry in entries:
        actor = entry.actor.username if entry.actor else f"user {entry.actor_id}"
        if entry.is_comment_only:
            change = "comment"
        else:
            change = f"{entry.previous_status} -> {entry.new_status}"
        click.echo(f"{entry.created_at:%Y-%m-%d %H:%M}  {actor:<16} {change:<45} {entry.comment or ''}")

    click.echo("-"*90 + "\n")


@requisitions_group.command('permissions')
@click.option('--role', type=click.Choice(ROLE_CHOICES, case_sensitive=False), help='Show one role only')
def permissions_cli(role):
    """Print which statuses each role may approve, reject or move on from."""
    matrix = get_permission_matrix()
    roles = [role.upper()] if role else sorted(matrix)

    click.echo("\n" + "="*90)
    for code in roles:
        actions = matrix[code]
        if not actions:
            click.echo(f"{code:<16} (no workflow edges)")
            continue
        for action, sources in sorted(actions.items()):
            click.echo(f"{code:<16} {action:<10} {', '.join(sources)}")
    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(requisitions_group)
