# Overview: Flask CLI command groups for bootstrap, catalog upkeep and payment maintenance.

# backend/fitsuite/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create any missing tables (safe to re-run).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Plan catalog:
# - python -m flask catalog seed [--file plans.json] [--legacy]
#   Upsert plans from a JSON object {planId: descriptor}; without --file seeds the default plans.
# - python -m flask catalog list
#   List plans from both namespaces with their normalized price/duration/limits.
#
# Payments:
# - python -m flask payments reprocess 1234567890
#   Re-run a provider payment through the processor (idempotent).
#
# Revenue rollups:
# - python -m flask rollup show gym-001 2025-03-14
# - python -m flask rollup show gym-001 2025-03
#   Show the day (YYYY-MM-DD) or month (YYYY-MM) revenue counters for a gym.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import plan_catalog, accounting_service
from .services.accounting_service import PERIOD_DAY, PERIOD_MONTH


DEFAULT_PLANS = {
    "basic": {
        "name": "Basic",
        "price": 15000,
        "durationDays": 30,
        "tier": "basic",
        "modules": ["members", "payments", "attendance"],
        "limits": {"maxMembers": 150, "maxDevices": 1, "maxBranches": 1, "maxOfflineHours": 72},
    },
    "pro": {
        "name": "Pro",
        "price": 25000,
        "durationDays": 30,
        "tier": "pro",
        "modules": ["members", "payments", "attendance", "store", "reports"],
        "limits": {"maxMembers": 500, "maxDevices": 3, "maxBranches": 2, "maxOfflineHours": 168},
    },
    "premium": {
        "name": "Premium",
        "price": 40000,
        "durationDays": 30,
        "tier": "premium",
        "modules": ["members", "payments", "attendance", "store", "reports", "routines"],
        "limits": {"maxMembers": 0, "maxDevices": 10, "maxBranches": 5, "maxOfflineHours": 336},
    },
}


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed' to load plans.")


# =============================================================================
# CATALOG
# =============================================================================

@click.group('catalog')
def catalog_group():
    """License plan catalog commands."""


@catalog_group.command('seed')
@click.option('--file', 'file_path', type=click.Path(exists=True, dir_okay=False), help='JSON object {planId: descriptor}')
@click.option('--legacy', is_flag=True, help='Write into the legacy namespace')
@with_appcontext
def seed_catalog(file_path, legacy):
    """Upsert plans into the catalog."""
    if file_path:
        with open(file_path, encoding="utf-8") as fh:
            plans = json.load(fh)
        if not isinstance(plans, dict):
            raise click.ClickException("Plan file must contain a JSON object keyed by plan id")
    else:
        plans = DEFAULT_PLANS

    try:
        for plan_id, data in plans.items():
            plan_catalog.upsert_plan(plan_id, data, legacy=legacy)
            click.echo(f"PASS {'legacy' if legacy else 'primary'} plan {plan_id}")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    click.echo(f"DONE {len(plans)} plan(s) seeded.")


@catalog_group.command('list')
@with_appcontext
def list_catalog():
    """List plans with their normalized values."""
    plans = plan_catalog.list_plans()
    if not plans:
        click.echo("No plans found.")
        return

    click.echo("\n" + "="*96)
    click.echo(f"{'Plan':<16} {'Namespace':<10} {'Name':<20} {'Price':>10} {'Days':>5} {'Members':>8} {'Devices':>8} {'Branches':>9}")
    click.echo("="*96)

    for entry in plans:
        plan = plan_catalog.normalize_plan(entry["plan_id"], entry["data"])
        click.echo(
            f"{plan.plan_id:<16} {entry['namespace']:<10} {plan.name[:20]:<20} "
            f"{plan_catalog.from_cents(plan.price_cents):>10.2f} {plan.duration_days:>5} "
            f"{plan.limits['maxMembers']:>8} {plan.limits['maxDevices']:>8} {plan.limits['maxBranches']:>9}"
        )

    click.echo("="*96 + "\n")


# =============================================================================
# PAYMENTS
# =============================================================================

@click.group('payments')
def payments_group():
    """Payment maintenance commands."""


@payments_group.command('reprocess')
@click.argument('payment_id')
@with_appcontext
def reprocess_payment(payment_id):
    """Re-run a provider payment through the processor."""
    from .routes.payments import get_payment_processor

    result = get_payment_processor().process_payment(payment_id)
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.ok:
        raise click.ClickException(f"Payment {payment_id}: {result.outcome}")


# =============================================================================
# ROLLUPS
# =============================================================================

@click.group('rollup')
def rollup_group():
    """Revenue rollup inspection."""


@rollup_group.command('show')
@click.argument('gym_id')
@click.argument('period')
@with_appcontext
def show_rollup(gym_id, period):
    """Show counters for a day (YYYY-MM-DD) or month (YYYY-MM)."""
    period_type = PERIOD_DAY if len(period) == 10 else PERIOD_MONTH
    rollup = accounting_service.get_rollup(gym_id, period_type, period)

    click.echo(f"\n{gym_id} {period_type} {period}")
    click.echo("="*64)
    click.echo(f"{'Category':<12} {'Count':>6} {'Total':>14} {'Cash':>14} {'Online':>14}")
    click.echo("="*64)
    for category, counters in rollup["income"].items():
        click.echo(
            f"{category:<12} {counters['count']:>6} "
            f"{plan_catalog.from_cents(counters['total']):>14.2f} "
            f"{plan_catalog.from_cents(counters['cashTotal']):>14.2f} "
            f"{plan_catalog.from_cents(counters['onlineTotal']):>14.2f}"
        )
    click.echo("="*64 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(rollup_group)
