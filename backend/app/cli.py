# Overview: Flask CLI command groups for bootstrap and stock inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--department "Perfume Bar"] [--code PERFUME]
#   Idempotent bootstrap: creates tables, a default department and its pricing table.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection:
# - python -m flask stock alerts --department-id 1
#   List ingredients, products and variants below the low-stock thresholds.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Department, PricingConfig
from .services import pricing_service
from .services.inventory_service import low_stock_alerts
from .validation import ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--department', 'department_name', default='Main Department', help='Default department name')
@click.option('--code', 'department_code', default='MAIN', help='Default department code')
@with_appcontext
def init_system(department_name, department_code):
    """
    Initialize the sale engine with a default department (idempotent).

    Creates:
    - All tables (when missing)
    - Default department
    - Default mixture pricing table for that department
    """
    click.echo("START Initializing system...")

    db.create_all()

    department = db.session.query(Department).filter_by(code=department_code).first()
    if not department:
        department = Department(name=department_name, code=department_code, is_active=True)
        db.session.add(department)
        db.session.commit()
        click.echo(f"PASS Created department: {department.name} (ID: {department.id}, Code: {department.code})")
    else:
        click.echo(f"PASS Using existing department: {department.name} (ID: {department.id})")

    existing = db.session.query(PricingConfig).filter_by(department_id=department.id).first()
    if not existing:
        db.session.add(pricing_service.default_pricing_config(department.id))
        db.session.commit()
        click.echo("PASS Created default pricing table")
    else:
        click.echo("WARN  Pricing table already exists, skipping...")

    click.echo("\nDONE System initialized")


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

    click.echo("PASS Database reset complete")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('alerts')
@click.option('--department-id', type=int, required=True, help='Department to inspect')
@with_appcontext
def stock_alerts(department_id):
    """List stock rows below the configured low-stock thresholds."""
    try:
        alerts = low_stock_alerts(department_id)
    except ValidationError as e:
        raise click.ClickException(str(e))

    total = len(alerts["ingredients"]) + len(alerts["products"]) + len(alerts["variants"])
    if not total:
        click.echo("PASS No low-stock items")
        return

    click.echo(f"WARN  {total} low-stock item(s) in department {department_id}")
    for ingredient in alerts["ingredients"]:
        click.echo(f"  ingredient {ingredient['id']:>5}  {ingredient['name']:<30} {ingredient['stock_volume']} ml")
    for product in alerts["products"]:
        if product["tracking_mode"] == "volume":
            level = f"{product['stock_volume']} ml"
        else:
            level = f"{product['stock']} units"
        click.echo(f"  product    {product['id']:>5}  {product['name']:<30} {level}")
    for variant in alerts["variants"]:
        click.echo(f"  variant    {variant['id']:>5}  {variant['name']:<30} {variant['stock']} units")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
