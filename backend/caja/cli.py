# Overview: Flask CLI command groups for bootstrap, currency admin and till inspection.

# backend/caja/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="caja:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables and seed PEN (home), USD and EUR. Idempotent.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Currency registry:
# - python -m flask currencies list
# - python -m flask currencies create --code GBP --name "Libra esterlina" --buy 4.40 --sell 4.55
# - python -m flask currencies set-rates USD --buy 3.45 --sell 3.52 [--base-cost 3.40]
# - python -m flask currencies delete GBP
#
# Tills:
# - python -m flask tills list --operator 1
# - python -m flask tills open --operator 1 --balance PEN=1000 --balance USD=200
# - python -m flask tills adjust --operator 1 --currency PEN --direction OUT --amount 50 --description "Bank deposit"
# - python -m flask tills status --operator 1
# - python -m flask tills close --operator 1

import click
from flask.cli import with_appcontext

from .errors import CajaError
from .extensions import db
from .models import Currency
from .services import currency_service, reporting_service, till_service


DEFAULT_CURRENCIES = [
    # code, name, buy, sell, base_cost, is_home
    ("PEN", "Sol peruano", "1.0000", "1.0000", None, True),
    ("USD", "Dolar estadounidense", "3.4800", "3.5200", None, False),
    ("EUR", "Euro", "4.0500", "4.1200", None, False),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_cli():
    """Create tables and seed the default currencies (idempotent)."""
    db.create_all()

    created = 0
    for code, name, buy, sell, base_cost, is_home in DEFAULT_CURRENCIES:
        if db.session.query(Currency).filter_by(code=code).first():
            continue
        currency_service.create_currency(code, name, buy, sell, base_cost, is_home=is_home)
        created += 1

    click.echo(f"PASS Schema ready, {created} currencies seeded")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db_cli(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes and not click.confirm("This deletes ALL data. Continue?"):
        click.echo("Aborted.")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('currencies')
def currencies_group():
    """Currency registry commands."""


@currencies_group.command('list')
@with_appcontext
def list_currencies_cli():
    """List registered currencies and reference rates."""
    currencies = currency_service.list_currencies()
    if not currencies:
        click.echo("No currencies found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'Code':<6} {'Name':<26} {'Buy':>10} {'Sell':>10} {'Base':>10} {'Home'}")
    click.echo("="*72)
    for c in currencies:
        base = str(c.base_cost) if c.base_cost is not None else "-"
        click.echo(f"{c.code:<6} {c.name:<26} {str(c.buy_rate):>10} {str(c.sell_rate):>10} {base:>10} {'Yes' if c.is_home else ''}")
    click.echo("="*72 + "\n")


@currencies_group.command('create')
@click.option('--code', required=True, help='3-letter code')
@click.option('--name', required=True, help='Display name')
@click.option('--buy', 'buy_rate', required=True, help='Reference buy rate')
@click.option('--sell', 'sell_rate', required=True, help='Reference sell rate')
@click.option('--base-cost', default=None, help='Reference acquisition cost')
@click.option('--home', 'is_home', is_flag=True, help='Mark as home currency')
@with_appcontext
def create_currency_cli(code, name, buy_rate, sell_rate, base_cost, is_home):
    """Register a new currency."""
    try:
        currency = currency_service.create_currency(code, name, buy_rate, sell_rate, base_cost, is_home=is_home)
        click.echo(f"PASS Created currency {currency.code} (id {currency.id})")
    except CajaError as e:
        click.echo(f"FAIL Error: {e.message}")


@currencies_group.command('set-rates')
@click.argument('code')
@click.option('--buy', 'buy_rate', required=True)
@click.option('--sell', 'sell_rate', required=True)
@click.option('--base-cost', default=None)
@with_appcontext
def set_rates_cli(code, buy_rate, sell_rate, base_cost):
    """Update reference rates of a currency."""
    try:
        currency = currency_service.update_rates(code, buy_rate, sell_rate, base_cost)
        click.echo(f"PASS {currency.code}: buy={currency.buy_rate} sell={currency.sell_rate}")
    except CajaError as e:
        click.echo(f"FAIL Error: {e.message}")


@currencies_group.command('delete')
@click.argument('code')
@with_appcontext
def delete_currency_cli(code):
    """Delete a currency no ledger record references."""
    try:
        currency_service.delete_currency(code)
        click.echo(f"PASS Deleted currency {code.upper()}")
    except CajaError as e:
        click.echo(f"FAIL Error: {e.message}")


@click.group('tills')
def tills_group():
    """Till lifecycle and inspection commands."""


def _parse_balances(values) -> dict:
    balances = {}
    for item in values:
        if "=" not in item:
            raise click.BadParameter(f"expected CODE=AMOUNT, got {item!r}", param_hint="--balance")
        code, amount = item.split("=", 1)
        balances[code.strip()] = amount.strip()
    return balances


@tills_group.command('list')
@click.option('--operator', 'operator_id', type=int, required=True, help='Operator ID')
@with_appcontext
def list_tills_cli(operator_id):
    """List an operator's tills, newest first."""
    tills = till_service.list_tills(operator_id)
    if not tills:
        click.echo("No tills found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'State':<8} {'Opened':<20} {'Closed':<20} {'Profit':>12}")
    click.echo("="*80)
    for till in tills:
        data = till.to_dict()
        click.echo(f"{till.id:<6} {till.state:<8} {str(data['opened_at']):<20} "
                   f"{str(data['closed_at'] or '-'):<20} {data['accumulated_profit']:>12}")
    click.echo("="*80 + "\n")


@tills_group.command('open')
@click.option('--operator', 'operator_id', type=int, required=True, help='Operator ID')
@click.option('--balance', 'balances', multiple=True, help='Opening balance as CODE=AMOUNT')
@click.option('--note', default=None, help='Opening note')
@with_appcontext
def open_till_cli(operator_id, balances, note):
    """Open a till for an operator."""
    try:
        till = till_service.open_till(operator_id, _parse_balances(balances), note)
        click.echo(f"PASS Opened till {till.id} for operator {operator_id}")
    except CajaError as e:
        click.echo(f"FAIL Error: {e.message}")


@tills_group.command('adjust')
@click.option('--operator', 'operator_id', type=int, required=True)
@click.option('--currency', 'currency_code', required=True)
@click.option('--direction', type=click.Choice(['IN', 'OUT']), required=True)
@click.option('--amount', required=True)
@click.option('--description', required=True)
@with_appcontext
def adjust_till_cli(operator_id, currency_code, direction, amount, description):
    """Record a manual balance adjustment."""
    try:
        movement = till_service.adjust_till(operator_id, currency_code, direction, amount, description)
        click.echo(f"PASS Adjustment recorded (movement {movement.id})")
    except CajaError as e:
        click.echo(f"FAIL Error: {e.message}")


@tills_group.command('status')
@click.option('--operator', 'operator_id', type=int, required=True)
@with_appcontext
def till_status_cli(operator_id):
    """Show balances and profit of the operator's open till."""
    till = till_service.get_open_till(operator_id)
    if till is None:
        click.echo("No open till.")
        return

    snapshot = reporting_service.get_till_snapshot(till.id)
    click.echo(f"Till {till.id} ({till.state}) profit {snapshot['till']['accumulated_profit']}")
    for code, values in snapshot["balances"].items():
        click.echo(f"  {code}: opening {values['opening']} current {values['current']}")


@tills_group.command('close')
@click.option('--operator', 'operator_id', type=int, required=True)
@click.option('--closed-by', type=int, default=None, help='Supervisor closing on behalf of the operator')
@with_appcontext
def close_till_cli(operator_id, closed_by):
    """Close the operator's open till."""
    try:
        till = till_service.close_till(operator_id, closed_by=closed_by)
        click.echo(f"PASS Closed till {till.id}, profit {till.to_dict()['accumulated_profit']}")
    except CajaError as e:
        click.echo(f"FAIL Error: {e.message}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(currencies_group)
    app.cli.add_command(tills_group)
