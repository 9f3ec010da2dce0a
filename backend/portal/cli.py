# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/portal/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--username admin --email admin@portal.local --password "Password123!"]
#   Idempotent bootstrap: creates all tables and the first super admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system purge-sessions
#   Revoke sessions past their absolute or idle limit.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles, partner links and active status.
# - python -m flask users create --username alice --email alice@example.com --password "Password123!" --role partner_admin --partner-id 1
#   Create a user, optionally linked to a partner.
#
# Partner management:
# - python -m flask partners list
# - python -m flask partners create --name "Acme Resellers" --code ACME [--discount-rate 12.5]
#
# Permission inspection:
# - python -m flask perms list [--role partner_user]
# - python -m flask perms check alice quote:create
# - python -m flask perms events [--type PARTNER_ACCESS_DENIED] [--limit 20]
#   Show recent security events.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Partner, PartnerUser
from .permissions import (
    Role,
    PERMISSION_DEFINITIONS,
    permissions_for_role,
    get_permission_definition,
    is_partner_member_role,
)
from .services import partner_service, permission_service, session_service
from .services.auth_service import create_user, PasswordValidationError
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--username', default='admin', help='Super admin username')
@click.option('--email', default='admin@portal.local', help='Super admin email')
@click.option('--password', default='Password123!', help='Super admin password')
@with_appcontext
def init_system(username, email, password):
    """
    Initialize the portal: schema plus the first super admin.

    Safe to run repeatedly; an existing super admin is left untouched.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing portal...")

    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(User).filter_by(role=Role.SUPER_ADMIN.value, is_active=True).first()
    if existing:
        click.echo(f"WARN  Super admin '{existing.username}' already exists, skipping...")
        return

    try:
        user = create_user(username=username, email=email, password=password, role=Role.SUPER_ADMIN)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        return
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create super admin: {str(e)}")
        return

    click.echo(f"PASS Created super admin: {user.username} ({user.email})")
    click.echo("\nSECURITY Change this password immediately in production!")


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


@system_group.command('purge-sessions')
@with_appcontext
def purge_sessions():
    """Revoke sessions past their absolute or idle limit."""
    count = session_service.purge_expired_sessions()
    click.echo(f"PASS Revoked {count} expired session(s)")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@click.option('--partner-id', type=int, help='Partner to link partner roles to')
@with_appcontext
def create_user_cli(username, email, password, role, partner_id):
    """
    Create a new user.

    Partner roles (partner_admin, partner_user, partner_customer) need
    --partner-id and are linked to that partner in the same transaction.
    """
    member = is_partner_member_role(role)
    if member and partner_id is None:
        click.echo(f"FAIL Role '{role}' requires --partner-id")
        return
    if not member and partner_id is not None:
        click.echo(f"FAIL Role '{role}' cannot be linked to a partner")
        return
    if partner_id is not None and partner_service.get_active_partner(partner_id) is None:
        click.echo(f"FAIL Partner ID {partner_id} not found")
        return

    try:
        user = create_user(username=username, email=email, password=password, role=role, commit=False)
        if partner_id is not None:
            partner_service.create_membership(partner_id, user, role)
        db.session.commit()
    except PasswordValidationError as e:
        db.session.rollback()
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{role}'")
    if partner_id is not None:
        click.echo(f"     Partner ID: {partner_id}")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with roles and partner links."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<18} {'Partner':<10} {'Active'}")
    click.echo("="*80)

    for user in users:
        partner_id = partner_service.get_user_partner_id(user.id)
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<18} {partner_id or '-':<10} {active_str}")

    click.echo("="*80 + "\n")


# =============================================================================
# PARTNER MANAGEMENT COMMANDS
# =============================================================================

@click.group('partners')
def partners_group():
    """Partner management commands."""


@partners_group.command('list')
@with_appcontext
def list_partners_cli():
    """List all partners."""
    partners = db.session.query(Partner).order_by(Partner.id.asc()).all()

    if not partners:
        click.echo("No partners found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Discount':<10} {'Active':<8} {'Members'}")
    click.echo("="*80)

    for partner in partners:
        members = db.session.query(PartnerUser).filter_by(partner_id=partner.id, is_active=True).count()
        discount = f"{partner.discount_rate}%" if partner.discount_rate is not None else "-"
        active_str = "Yes" if partner.is_active else "No"
        click.echo(f"{partner.id:<5} {partner.name:<30} {partner.code:<12} {discount:<10} {active_str:<8} {members}")

    click.echo("="*80 + "\n")


@partners_group.command('create')
@click.option('--name', required=True, help='Partner name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--discount-rate', help='Discount off base price, percent (0-100)')
@with_appcontext
def create_partner_cli(name, code, discount_rate):
    """Create a new partner."""
    data = {"name": name, "code": code}
    if discount_rate is not None:
        data["discount_rate"] = discount_rate

    try:
        partner = partner_service.create_partner(data)
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        click.echo(f"FAIL {str(e)}")
        return

    click.echo(f"PASS Created partner: {partner.name} (ID: {partner.id}, Code: {partner.code})")


# =============================================================================
# PERMISSION INSPECTION COMMANDS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@with_appcontext
def list_permissions_cli(role):
    """List all permissions, optionally only those granted to a role."""
    if role:
        parsed = Role.parse(role)
        if parsed is None:
            click.echo(f"FAIL Role '{role}' not found")
            return
        codes = sorted(permissions_for_role(parsed))
        title = f"Permissions for role: {parsed.value.upper()}"
    else:
        codes = [code for code, _, _, _ in PERMISSION_DEFINITIONS]
        title = "All permissions"

    click.echo(f"\n{'='*80}")
    click.echo(title)
    click.echo(f"{'='*80}\n")

    click.echo(f"{'Code':<24} {'Name':<35} {'Category'}")
    click.echo("-"*80)

    for code in codes:
        perm = get_permission_definition(code)
        click.echo(f"{perm['code']:<24} {perm['name']:<35} {perm['category']}")

    click.echo(f"\n Total: {len(codes)} permissions\n")


@perms_group.command('check')
@click.argument('username')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(username, permission_code):
    """Check if a user has a specific permission."""
    user = db.session.query(User).filter_by(username=username).first()

    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    if permission_service.user_has_permission(user, permission_code):
        click.echo(f"PASS User '{username}' HAS permission '{permission_code}'")
    else:
        click.echo(f"FAIL User '{username}' DOES NOT HAVE permission '{permission_code}'")

    all_perms = permission_service.get_user_permissions(user)
    click.echo(f"\nUser role: {user.role}")
    click.echo(f"Total permissions: {len(all_perms)}")


@perms_group.command('events')
@click.option('--type', 'event_type', help='Filter by event type (e.g. PERMISSION_DENIED)')
@click.option('--limit', type=int, default=20, show_default=True, help='Rows to show')
@with_appcontext
def security_events_cli(event_type, limit):
    """Show recent security events, newest first."""
    events = permission_service.get_recent_security_events(limit=limit, event_type=event_type)

    if not events:
        click.echo("No security events found.")
        return

    click.echo(f"{'ID':<6} {'When':<20} {'Type':<24} {'User':<6} {'Partner':<8} {'Resource'}")
    click.echo("-"*80)
    for event in events:
        when = event.occurred_at.strftime("%Y-%m-%d %H:%M:%S") if event.occurred_at else "-"
        click.echo(
            f"{event.id:<6} {when:<20} {event.event_type:<24} "
            f"{event.user_id or '-':<6} {event.partner_id or '-':<8} {event.resource or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(partners_group)
    app.cli.add_command(perms_group)
