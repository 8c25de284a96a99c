"""
Wallet API endpoints: balance, batches, expiring points and statistics.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import build_ledger_service
from ..utils.errors import bad_request

wallet_bp = Blueprint('wallet', __name__)


@wallet_bp.route('/<user_id>', methods=['GET'])
def get_wallet(user_id):
    wallet = build_ledger_service().get_wallet(user_id)
    return jsonify({'wallet': wallet.to_dict()})


@wallet_bp.route('/<user_id>/balance', methods=['GET'])
def get_balance(user_id):
    ledger = build_ledger_service()
    balance = ledger.get_balance(user_id)
    return jsonify({
        'user_id': user_id,
        'balance': str(balance),
        'as_of': ledger.clock().isoformat()
    })


@wallet_bp.route('/<user_id>/point-balances', methods=['GET'])
def get_point_balances(user_id):
    """Spendable batches in the order burns consume them."""
    ledger = build_ledger_service()
    batches = ledger.get_active_batches(user_id)
    now = ledger.clock()
    return jsonify({
        'user_id': user_id,
        'point_balances': [b.to_dict(now=now) for b in batches],
        'count': len(batches)
    })


@wallet_bp.route('/<user_id>/expiring', methods=['GET'])
def get_expiring(user_id):
    """
    Batches expiring soon.

    Query params:
        days: Look-ahead window in days (default EXPIRING_SOON_DAYS)
    """
    days = request.args.get('days', current_app.config.get('EXPIRING_SOON_DAYS', 30), type=int)
    if days is None or days < 0:
        return bad_request('days must be a non-negative integer')

    ledger = build_ledger_service()
    batches = ledger.get_expiring_within(user_id, days)
    now = ledger.clock()
    total = sum(b.points for b in batches)
    return jsonify({
        'user_id': user_id,
        'days': days,
        'total_points': str(total) if batches else '0.00',
        'point_balances': [b.to_dict(now=now) for b in batches]
    })


@wallet_bp.route('/<user_id>/statistics', methods=['GET'])
def get_statistics(user_id):
    return jsonify(build_ledger_service().get_wallet_statistics(user_id))
