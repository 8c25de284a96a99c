"""
CLI Commands for the points wallet.

Usage:
    flask ledger sweep-expired [--dry-run]          # Expire overdue batches
    flask ledger expiring --user-id U --days 30     # Points expiring soon
    flask ledger reconcile --user-id U              # Check a wallet's books
    flask ledger open-wallet --user-id U            # Create a wallet
"""
from .ledger import init_app as init_ledger_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_ledger_commands(app)
