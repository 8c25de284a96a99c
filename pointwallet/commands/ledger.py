"""
CLI Commands for the points ledger.

The sweep can be run from cron instead of the in-process scheduler:

# Points expiry (run daily shortly after midnight)
15 0 * * * cd /app && flask ledger sweep-expired
"""
import sys

import click
from flask.cli import with_appcontext

from ..services import build_ledger_service, build_expiry_sweep
from ..utils.exceptions import PointWalletError


@click.group('ledger')
def ledger_cli():
    """Points ledger commands."""
    pass


@ledger_cli.command('sweep-expired')
@click.option('--dry-run', is_flag=True, help='Preview without expiring points')
@with_appcontext
def sweep_expired(dry_run):
    """
    Expire point batches past their expiry date.

    Run this daily.
    """
    result = build_expiry_sweep().sweep_expired(dry_run=dry_run)

    prefix = '[DRY RUN] ' if dry_run else ''
    click.echo(f"{prefix}Wallets processed: {result.wallets_processed}")
    click.echo(f"{prefix}Batches expired: {result.expired_batches}")
    click.echo(f"{prefix}Points expired: {result.points_expired}")
    if not dry_run:
        click.echo(f"Transactions written: {result.transactions_written}")

    if result.errors:
        click.echo(f"Errors: {len(result.errors)}")
        for error in result.errors[:5]:
            click.echo(f"  - User {error['user_id']}: {error['error']}")
        sys.exit(1)


@ledger_cli.command('expiring')
@click.option('--user-id', required=True, help='Wallet owner')
@click.option('--days', type=int, default=30, show_default=True, help='Look-ahead window')
@with_appcontext
def expiring(user_id, days):
    """Show batches expiring within the next DAYS days."""
    ledger = build_ledger_service()
    try:
        batches = ledger.get_expiring_within(user_id, days)
    except PointWalletError as e:
        raise click.ClickException(e.message)

    if not batches:
        click.echo(f"No points expiring in the next {days} days")
        return

    now = ledger.clock()
    click.echo(f"Points expiring in the next {days} days for {user_id}:")
    for batch in batches:
        click.echo(
            f"  {batch.points} pts on {batch.expires_at.strftime('%Y-%m-%d')} "
            f"({batch.days_until_expiry(now)} days)"
        )
    click.echo(f"Total: {sum(b.points for b in batches)} pts")


@ledger_cli.command('reconcile')
@click.option('--user-id', required=True, help='Wallet owner')
@with_appcontext
def reconcile(user_id):
    """Check a wallet's balance against its batches and lifetime totals."""
    try:
        report = build_ledger_service().reconcile_wallet(user_id)
    except PointWalletError as e:
        raise click.ClickException(e.message)

    click.echo(f"Wallet {report['wallet_id']} (user {user_id})")
    click.echo(f"  Balance:      {report['balance']}")
    click.echo(f"  Batch total:  {report['batch_total']}")
    click.echo(f"  Lifetime net: {report['lifetime_net']}")

    if report['balanced']:
        click.echo("  OK")
        return

    for item in report['discrepancies']:
        click.echo(f"  MISMATCH {item['check']}: expected {item['expected']}, got {item['actual']}")
    sys.exit(1)


@ledger_cli.command('open-wallet')
@click.option('--user-id', required=True, help='User to open the wallet for')
@with_appcontext
def open_wallet(user_id):
    """Create a wallet for a user."""
    try:
        wallet = build_ledger_service().open_wallet(user_id)
    except PointWalletError as e:
        raise click.ClickException(e.message)
    click.echo(f"Wallet {wallet.id} opened for user {user_id}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(ledger_cli)
