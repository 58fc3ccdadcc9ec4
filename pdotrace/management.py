"""
Management commands for setup and inspection
"""
from datetime import datetime

import click
from flask.cli import with_appcontext

from .extensions import db, get_engine
from .models import (
    HistoryAction,
    ManufacturerSettings,
    Organization,
    OrganizationRole,
    OrganizationStatus,
    Product,
)
from .rules import PRODUCT_CODE_PATTERN
from .utils.error_messages import ErrorMessages as EM


def _parse_date(value):
    return datetime.strptime(value, '%Y-%m-%d').date() if value else None


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables (local/dev; production uses `flask db upgrade`)"""
    db.create_all()
    print("✅ Database tables created/verified")


@click.command('register-org')
@click.argument('name')
@click.option('--role', type=click.Choice([r.value for r in OrganizationRole]), required=True)
@click.option('--lot-prefix', default=None, help='Two-letter lot prefix (manufacturers only)')
@click.option('--expiry-months', type=int, default=None, help='Default shelf life in months (manufacturers only)')
@with_appcontext
def register_org_command(name, role, lot_prefix, expiry_months):
    """Register an ACTIVE organization"""
    org = Organization(name=name, role=OrganizationRole(role), status=OrganizationStatus.ACTIVE)
    db.session.add(org)
    db.session.flush()

    if org.role == OrganizationRole.MANUFACTURER:
        rules = get_engine().rules
        settings = ManufacturerSettings(
            organization_id=org.id,
            lot_prefix=(lot_prefix or rules.default_lot_prefix).upper(),
            default_expiry_months=expiry_months or rules.default_expiry_months,
        )
        db.session.add(settings)

    db.session.commit()
    print(f"✅ Registered {org.role.value} '{org.name}' (id={org.id})")


@click.command('register-product')
@click.argument('manufacturer_id', type=int)
@click.argument('code')
@click.argument('name')
@with_appcontext
def register_product_command(manufacturer_id, code, name):
    """Register a product for a manufacturer"""
    code = code.upper()
    if not PRODUCT_CODE_PATTERN.match(code):
        raise click.BadParameter(EM.PRODUCT_CODE_INVALID, param_hint='code')
    manufacturer = db.session.get(Organization, manufacturer_id)
    if manufacturer is None or manufacturer.role != OrganizationRole.MANUFACTURER:
        raise click.ClickException(f'Organization {manufacturer_id} is not a manufacturer')

    product = Product(organization_id=manufacturer_id, code=code, name=name)
    db.session.add(product)
    db.session.commit()
    print(f"✅ Registered product {product.code} (id={product.id})")


@click.command('produce-lot')
@click.argument('manufacturer_id', type=int)
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--manufactured', default=None, help='Manufacture date YYYY-MM-DD (default: today)')
@click.option('--expires', default=None, help='Expiry date YYYY-MM-DD (default: manufacturer shelf life)')
@with_appcontext
def produce_lot_command(manufacturer_id, product_id, quantity, manufactured, expires):
    """Produce a lot and its virtual codes"""
    engine = get_engine()
    result = engine.retry(
        lambda: engine.coordinator.produce_lot(
            manufacturer_id, product_id, quantity, _parse_date(manufactured), _parse_date(expires)
        )
    )
    if not result:
        raise click.ClickException(f"{result.error_code}: {result.message}")
    lot = result.data
    print(f"✅ Lot {lot.lot_number}: {lot.quantity} units, expires {lot.expiry_date.isoformat()}")


@click.command('stock-summary')
@click.argument('organization_id', type=int)
@with_appcontext
def stock_summary_command(organization_id):
    """Show unit counts by product and status for an organization"""
    summary = get_engine().ledger.summary(organization_id)
    if not summary:
        print("ℹ️  No units held.")
        return
    for product_id in sorted(summary):
        counts = ', '.join(f"{status}={count}" for status, count in sorted(summary[product_id].items()))
        print(f"product {product_id}: {counts}")


@click.command('history')
@click.argument('organization_id', type=int)
@click.option('--action', type=click.Choice([a.value for a in HistoryAction]), default=None)
@click.option('--since', default=None, help='Start date YYYY-MM-DD (UTC)')
@click.option('--limit', type=int, default=50)
@with_appcontext
def history_command(organization_id, action, since, limit):
    """Print the audit trail for an organization"""
    start = None
    if since:
        start = datetime.combine(_parse_date(since), datetime.min.time())
    entries = get_engine().history.query(organization_id, start=start, action=action, limit=limit)
    for entry in entries:
        print(
            f"{entry.timestamp.isoformat()} {entry.action.value:<15} {entry.direction.value:<8} "
            f"product={entry.product_id} qty={entry.quantity} counterparty={entry.counterparty_id or '-'}"
        )
    print(f"ℹ️  {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")


def register_commands(app):
    """Register CLI commands"""
    app.cli.add_command(init_db_command)
    app.cli.add_command(register_org_command)
    app.cli.add_command(register_product_command)
    app.cli.add_command(produce_lot_command)
    app.cli.add_command(stock_summary_command)
    app.cli.add_command(history_command)
