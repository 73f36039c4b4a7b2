# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/charla/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to charla (PowerShell: $env:FLASK_APP="charla").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--tenant "Mi Negocio"] [--timezone America/Argentina/Buenos_Aires]
#   Idempotent bootstrap: creates tables, seeds global payment methods and a default tenant.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
#   List all tenants.
# - python -m flask tenants create --name "Kiosco Centro" --timezone America/Argentina/Cordoba
#   Create a new tenant.
#
# Payment methods:
# - python -m flask payment-methods list [--tenant-id 1]
#   List active payment methods (global, plus the tenant's own when given).
# - python -m flask payment-methods seed
#   Create the default global payment methods (idempotent).
# - python -m flask payment-methods add --name "Cuenta DNI" [--tenant-id 1]
#   Add a payment method, global or tenant-specific.
#
# Sales inspection:
# - python -m flask sales today --tenant-id 1 [--include-voided]
#   Print today's sales with their daily numbers.

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import PaymentMethod, Tenant
from .services import catalog_service, tenant_service
from .services.prompts import format_money
from .services.sales_service import list_sales_for_day, tenant_today
from .time_utils import get_zone


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Mi Negocio', help='Default tenant name')
@click.option('--timezone', 'tz_name', default='UTC', help='Default tenant timezone (IANA name)')
@with_appcontext
def init_system(tenant_name, tz_name):
    """
    Initialize Charla: schema, global payment methods and a default tenant.

    Safe to run repeatedly; existing rows are kept.
    """
    click.echo("START Initializing Charla...")

    db.create_all()
    click.echo("PASS Tables created")

    methods = catalog_service.ensure_default_payment_methods()
    db.session.commit()
    click.echo(f"PASS Payment methods: {', '.join(m.name for m in methods)}")

    tenant = db.session.query(Tenant).order_by(Tenant.id).first()
    if not tenant:
        tenant = tenant_service.create_tenant(tenant_name, timezone=tz_name)
        db.session.commit()
        click.echo(f"PASS Created default tenant: {tenant.name} (ID: {tenant.id}, TZ: {tenant.timezone})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    click.echo("DONE Charla initialized")


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
    catalog_service.ensure_default_payment_methods()
    db.session.commit()
    click.echo("PASS Database reset (payment methods re-seeded)")


@click.group('tenants')
def tenants_group():
    """Tenant management (MULTI-TENANT)."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = tenant_service.list_tenants()
    if not tenants:
        click.echo("No tenants found")
        return

    click.echo(f"{'ID':<6} {'Name':<30} {'Timezone':<32} Active")
    click.echo("-" * 76)
    for tenant in tenants:
        click.echo(f"{tenant.id:<6} {tenant.name:<30} {tenant.timezone:<32} {'yes' if tenant.is_active else 'no'}")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--business-name', default=None, help='Business name shown in replies')
@click.option('--email', default=None)
@click.option('--timezone', 'tz_name', default='UTC', help='IANA timezone for daily sale numbers')
@with_appcontext
def create_tenant(name, business_name, email, tz_name):
    """Create a new tenant."""
    if get_zone(tz_name).key != tz_name:
        click.echo(f"FAIL Unknown timezone: {tz_name}")
        raise SystemExit(1)

    try:
        tenant = tenant_service.create_tenant(name, business_name=business_name, email=email, timezone=tz_name)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")


@click.group('payment-methods')
def payment_methods_group():
    """Payment method catalog."""


@payment_methods_group.command('list')
@click.option('--tenant-id', type=int, default=None, help='Include this tenant\'s own methods')
@with_appcontext
def list_payment_methods(tenant_id):
    methods = catalog_service.list_payment_methods(tenant_id)
    if not methods:
        click.echo("No payment methods found (run: flask payment-methods seed)")
        return

    for method in methods:
        scope = "global" if method.tenant_id is None else f"tenant {method.tenant_id}"
        click.echo(f"{method.id:<6} {method.name:<30} {scope}")


@payment_methods_group.command('seed')
@with_appcontext
def seed_payment_methods():
    methods = catalog_service.ensure_default_payment_methods()
    db.session.commit()
    click.echo(f"PASS {len(methods)} global payment methods present")


@payment_methods_group.command('add')
@click.option('--name', required=True)
@click.option('--tenant-id', type=int, default=None, help='Omit for a global method')
@with_appcontext
def add_payment_method(name, tenant_id):
    name = " ".join(name.split())
    if not name:
        click.echo("FAIL Name is required")
        raise SystemExit(1)

    if tenant_id is not None and db.session.get(Tenant, tenant_id) is None:
        click.echo(f"FAIL Tenant {tenant_id} not found")
        raise SystemExit(1)

    method = PaymentMethod(tenant_id=tenant_id, name=name, is_active=True)
    db.session.add(method)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL Payment method '{name}' already exists")
        raise SystemExit(1)

    click.echo(f"PASS Added payment method: {method.name} (ID: {method.id})")


@click.group('sales')
def sales_group():
    """Sales inspection."""


@sales_group.command('today')
@click.option('--tenant-id', type=int, required=True)
@click.option('--include-voided', is_flag=True)
@with_appcontext
def sales_today(tenant_id, include_voided):
    """Print today's sales (tenant-local day) by daily number."""
    day = tenant_today(tenant_id)
    sales = list_sales_for_day(tenant_id, day, include_voided=include_voided)
    click.echo(f"Sales for {day.isoformat()} (tenant {tenant_id}): {len(sales)}")
    for sale in sales:
        flags = []
        if sale.is_voided:
            flags.append("VOIDED")
        if sale.is_incomplete:
            flags.append("INCOMPLETE")
        items = ", ".join(f"{line.quantity.normalize():f} {line.product_label}" for line in sale.lines)
        click.echo(
            f"#{sale.daily_number:<4} id={sale.id:<6} {format_money(sale.total_cents):>12}  {items}"
            + (f"  [{' '.join(flags)}]" if flags else "")
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(payment_methods_group)
    app.cli.add_command(sales_group)
