# Overview: Flask CLI command groups for bootstrap, provisioning, statistics and maintenance.

# backend/bazaar/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenants:
# - python -m flask tenants create --org-code UNI --org-name "Uni Club" --event-code FAIR26 --event-name "Spring Fair"
#   Create an organization (if missing) and an event under it.
#
# Users:
# - python -m flask users create --event-id 1 --auth-uid u-1 --phone 0123 --name "Aina" --role seller --department CS
#   Register a user with one or more roles (repeat --role / --manages).
# - python -m flask users issue-token --event-id 1 --auth-uid u-1 --ttl-hours 24
#   Issue a bearer credential (stand-in for the login service).
#
# Statistics:
# - python -m flask stats recompute --event-id 1
#   Rebuild every department, manager and event roll-up.
#
# Maintenance:
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Event, SecurityEvent
from .errors import ServiceError
from .permissions import ALL_ROLES
from .services import identity_service, stats_service, user_service
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@click.group('tenants')
def tenants_group():
    """Organization and event provisioning."""


@tenants_group.command('create')
@click.option('--org-code', required=True, help='Organization short code (unique)')
@click.option('--org-name', help='Organization name (required when the org is new)')
@click.option('--event-code', required=True, help='Event code (unique within the org)')
@click.option('--event-name', required=True, help='Event display name')
@click.option('--card-validity-days', type=int, default=30, show_default=True)
@with_appcontext
def create_tenant_cli(org_code, org_name, event_code, event_name, card_validity_days):
    """Create an event, creating its organization first if needed."""
    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        if not org_name:
            click.echo(f"FAIL Organization '{org_code}' does not exist; pass --org-name to create it")
            return
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.flush()

    if db.session.query(Event).filter_by(org_id=org.id, code=event_code).first():
        click.echo(f"FAIL Event '{event_code}' already exists in organization {org.code}")
        return

    event = Event(
        org_id=org.id,
        code=event_code,
        name=event_name,
        is_active=True,
        point_card_validity_days=card_validity_days or None,
    )
    db.session.add(event)
    db.session.commit()
    click.echo(f"PASS Created event: {event.name} (ID: {event.id}, Org: {org.code})")


@click.group('users')
def users_group():
    """User provisioning commands."""


@users_group.command('create')
@click.option('--event-id', type=int, required=True)
@click.option('--auth-uid', required=True, help='External identity id')
@click.option('--phone', required=True)
@click.option('--name', 'display_name', required=True)
@click.option('--role', 'roles', multiple=True, required=True, type=click.Choice(sorted(ALL_ROLES)))
@click.option('--department', 'department_code', help='Department code')
@click.option('--tag', 'identity_tag', help='Identity tag (e.g. student, staff)')
@click.option('--manages', multiple=True, help='Department managed (seller managers; repeatable)')
@with_appcontext
def create_user_cli(event_id, auth_uid, phone, display_name, roles, department_code, identity_tag, manages):
    """Register a user in an event."""
    try:
        user = user_service.create_user(
            db.session,
            event_id=event_id,
            auth_uid=auth_uid,
            phone=phone,
            display_name=display_name,
            roles=roles,
            department_code=department_code,
            identity_tag=identity_tag,
            managed_departments=manages,
        )
    except ServiceError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created user {user.display_name} (ID: {user.id}, roles: {', '.join(sorted(user.roles))})")


@users_group.command('issue-token')
@click.option('--event-id', type=int, required=True)
@click.option('--auth-uid', required=True)
@click.option('--ttl-hours', type=int, default=None, help='Defaults to CREDENTIAL_TTL_HOURS')
@with_appcontext
def issue_token_cli(event_id, auth_uid, ttl_hours):
    """Issue a bearer credential for an identity."""
    event = db.session.get(Event, event_id)
    if not event:
        click.echo(f"FAIL Event ID {event_id} not found")
        return
    token = identity_service.issue_credential(
        db.session,
        org_id=event.org_id,
        event_id=event.id,
        auth_uid=auth_uid,
        ttl=timedelta(hours=ttl_hours) if ttl_hours else None,
    )
    click.echo(token)


@click.group('stats')
def stats_group():
    """Statistics maintenance."""


@stats_group.command('recompute')
@click.option('--event-id', type=int, required=True)
@with_appcontext
def recompute_stats_cli(event_id):
    """Rebuild every roll-up for an event."""
    try:
        result = stats_service.recompute_all(db.session, event_id)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(
        f"PASS Recomputed {result['departments']} departments and {result['seller_managers']} seller managers."
    )


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(SecurityEvent.occurred_at < cutoff).delete()
    db.session.commit()
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stats_group)
    app.cli.add_command(maintenance_group)
