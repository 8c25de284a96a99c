"""
Transaction API endpoints.

Handles:
- Earning points for money spent at a service
- Burning points at a service
- Transaction history and single transaction lookup
"""
from flask import Blueprint, request, jsonify

from ..services import build_ledger_service
from ..utils.errors import bad_request
from . import decimal_field, parse_datetime

transactions_bp = Blueprint('transactions', __name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _metadata(data: dict):
    metadata = data.get('metadata')
    if metadata is not None and not isinstance(metadata, dict):
        return None, bad_request('metadata must be an object')
    return metadata, None


@transactions_bp.route('/earn', methods=['POST'])
def earn():
    """
    Earn points for a purchase.

    Request body:
        user_id: Wallet owner (required)
        service_id: Service the money was spent at (required)
        amount: Money spent (required)
        description: Optional description
        metadata: Optional object stored with the transaction

    Returns:
        201 with the EARN transaction
    """
    data = _json_body()
    if data is None:
        return bad_request('Request body must be a JSON object')

    user_id = data.get('user_id')
    service_id = data.get('service_id')
    if not user_id or not service_id:
        return bad_request('user_id and service_id are required')

    metadata, error = _metadata(data)
    if error:
        return error

    transaction = build_ledger_service().earn_points(
        user_id=user_id,
        service_id=service_id,
        amount=decimal_field(data, 'amount'),
        description=data.get('description'),
        metadata=metadata,
    )
    return jsonify({'success': True, 'transaction': transaction.to_dict()}), 201


@transactions_bp.route('/burn', methods=['POST'])
def burn():
    """
    Redeem points at a service.

    Request body:
        user_id: Wallet owner (required)
        service_id: Service the points are redeemed at (required)
        points: Points to redeem (required)
        description: Optional description
        metadata: Optional object stored with the transaction

    Returns:
        201 with the BURN transaction; amount is the redeemed value
    """
    data = _json_body()
    if data is None:
        return bad_request('Request body must be a JSON object')

    user_id = data.get('user_id')
    service_id = data.get('service_id')
    if not user_id or not service_id:
        return bad_request('user_id and service_id are required')

    metadata, error = _metadata(data)
    if error:
        return error

    transaction = build_ledger_service().burn_points(
        user_id=user_id,
        service_id=service_id,
        points=decimal_field(data, 'points'),
        description=data.get('description'),
        metadata=metadata,
    )
    return jsonify({'success': True, 'transaction': transaction.to_dict()}), 201


@transactions_bp.route('/<user_id>', methods=['GET'])
def history(user_id):
    """
    Transaction history for a wallet (paginated, newest first).

    Query params:
        page: Page number (default 1)
        limit: Items per page (default 20, max 100)
        type: EARN, BURN, EXPIRED or ADJUSTMENT
        service_id: Only this service
        start_date, end_date: ISO 8601 bounds on created_at
    """
    page = request.args.get('page', 1, type=int)
    limit = min(request.args.get('limit', 20, type=int), 100)

    pagination = build_ledger_service().get_transactions(
        user_id,
        page=page,
        limit=limit,
        transaction_type=request.args.get('type'),
        service_id=request.args.get('service_id'),
        start_date=parse_datetime(request.args.get('start_date'), 'start_date'),
        end_date=parse_datetime(request.args.get('end_date'), 'end_date'),
    )

    return jsonify({
        'transactions': [t.to_dict() for t in pagination.items],
        'pagination': {
            'page': pagination.page,
            'limit': pagination.per_page,
            'total': pagination.total,
            'pages': pagination.pages,
            'has_next': pagination.has_next,
            'has_prev': pagination.has_prev
        }
    })


@transactions_bp.route('/<user_id>/<transaction_id>', methods=['GET'])
def get_transaction(user_id, transaction_id):
    transaction = build_ledger_service().get_transaction(user_id, transaction_id)
    return jsonify({'transaction': transaction.to_dict()})
