# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/oms/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--dev-username dev --dev-password "Password123!"]
#   Create central tables, open the default tenant store, optionally add a platform operator.
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
# - python -m flask tenants create --id acme --name "Acme" --domain acme.example.com [--store-url URL]
# - python -m flask tenants deactivate --id acme
#
# Users:
# - python -m flask users list [--tenant-id acme]
# - python -m flask users create --tenant-id acme --username owner --role SUPER_ADMIN
#   Prompts for the password when --password is omitted.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import OmsError
from .extensions import db
from .models import User, ROLE_ADMIN, ROLE_DEV_ADMIN, VALID_ROLES
from .services import auth_service, tenant_service
from .services.store_router import get_router


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--dev-username', default=None, help='Create a DEV_ADMIN with this username')
@click.option('--dev-password', default=None, help='Password for the DEV_ADMIN')
@with_appcontext
def init_system(dev_username, dev_password):
    """
    Idempotent bootstrap: central tables, default tenant store, optional operator.
    """
    click.echo("START Initializing OMS...")

    db.create_all()
    click.echo("PASS Central tables ready")

    default_endpoint = current_app.config["TENANT_STORE_DEFAULT_URL"]
    try:
        get_router().get_handle(default_endpoint)
    except OmsError as e:
        raise click.ClickException(f"Default tenant store unavailable: {e.message}")
    click.echo("PASS Default tenant store ready")

    if dev_username:
        existing = db.session.query(User).filter_by(username=dev_username).first()
        if existing:
            click.echo(f"PASS Using existing user: {dev_username}")
        else:
            if not dev_password:
                dev_password = click.prompt("DEV_ADMIN password", hide_input=True, confirmation_prompt=True)
            try:
                auth_service.create_user(None, dev_username, dev_password, role=ROLE_DEV_ADMIN)
            except OmsError as e:
                raise click.ClickException(e.message)
            click.echo(f"PASS Created DEV_ADMIN: {dev_username}")

    click.echo("DONE")


@click.group('tenants')
def tenants_group():
    """Tenant registry commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants_cli():
    """List all tenants."""
    tenants = tenant_service.list_tenants()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<16} {'Name':<24} {'Domain':<26} {'Active':<8} {'Store'}")
    click.echo("="*80)

    for t in tenants:
        active_str = "Yes" if t.is_active else "No"
        store = "dedicated" if t.store_url else "shared"
        click.echo(f"{t.id:<16} {t.name:<24} {t.primary_domain or '-':<26} {active_str:<8} {store}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--id', 'tenant_id', required=True, help='Tenant id (unique)')
@click.option('--name', required=True, help='Display name')
@click.option('--domain', default=None, help='Primary domain')
@click.option('--store-url', default=None, help='Dedicated store URL (default: shared store)')
@with_appcontext
def create_tenant_cli(tenant_id, name, domain, store_url):
    """Create or update a tenant."""
    payload = {"id": tenant_id, "name": name}
    if domain is not None:
        payload["primary_domain"] = domain
    if store_url is not None:
        payload["store_url"] = store_url

    try:
        tenant = tenant_service.upsert_tenant(payload)
    except OmsError as e:
        db.session.rollback()
        raise click.ClickException(e.message)

    click.echo(f"PASS Saved tenant: {tenant.name} (ID: {tenant.id})")


@tenants_group.command('deactivate')
@click.option('--id', 'tenant_id', required=True, help='Tenant id')
@with_appcontext
def deactivate_tenant_cli(tenant_id):
    """Soft-deactivate a tenant (its data stays)."""
    try:
        tenant_service.deactivate_tenant(tenant_id)
    except OmsError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Deactivated tenant {tenant_id}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--tenant-id', default=None, help='Only users of this tenant')
@with_appcontext
def list_users_cli(tenant_id):
    query = db.session.query(User)
    if tenant_id:
        query = query.filter_by(tenant_id=tenant_id)
    users = query.order_by(User.username).all()

    if not users:
        click.echo("No users found.")
        return

    for u in users:
        active_str = "active" if u.is_active else "inactive"
        click.echo(f"{u.id:<5} {u.username:<24} {u.role:<12} {u.tenant_id or '-':<16} {active_str}")


@users_group.command('create')
@click.option('--tenant-id', default=None, help='Tenant id (omit for DEV_ADMIN)')
@click.option('--username', required=True)
@click.option('--email', default=None)
@click.option('--password', default=None, help='Prompted when omitted')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), default=ROLE_ADMIN)
@with_appcontext
def create_user_cli(tenant_id, username, email, password, role):
    """Create a user."""
    if not password:
        password = click.prompt("Password", hide_input=True, confirmation_prompt=True)

    try:
        user = auth_service.create_user(tenant_id, username, password, email=email, role=role)
    except OmsError as e:
        db.session.rollback()
        raise click.ClickException(e.message)

    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
