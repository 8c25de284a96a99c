"""
Service rule API endpoints (administration).

Handles:
- Currently active EARN/BURN rules of a service
- Creating, correcting and deactivating rule versions
"""
from flask import Blueprint, request, jsonify

from ..services import build_rule_store
from ..services.rule_store import RULE_FIELDS
from ..utils.errors import bad_request
from . import decimal_field, parse_datetime

services_bp = Blueprint('services', __name__)

DECIMAL_FIELDS = ('points_per_unit', 'unit_amount', 'min_amount', 'max_points')


def _rule_values(data: dict, fields) -> dict:
    """Pick and convert rule fields present in a JSON body."""
    values = {}
    for field in fields:
        if field not in data:
            continue
        if field in DECIMAL_FIELDS:
            values[field] = decimal_field(data, field, required=False)
        elif field in ('valid_from', 'valid_until'):
            values[field] = parse_datetime(data.get(field), field)
        else:
            values[field] = data.get(field)
    return values


@services_bp.route('/<service_id>/rules', methods=['GET'])
def get_active_rules(service_id):
    """The EARN and BURN rule in effect right now."""
    rules = build_rule_store().get_active_rules(service_id)
    return jsonify({
        'service_id': service_id,
        'earn_rule': rules['EARN'].to_dict() if rules['EARN'] else None,
        'burn_rule': rules['BURN'].to_dict() if rules['BURN'] else None,
    })


@services_bp.route('/<service_id>/configs', methods=['POST'])
def create_config(service_id):
    """
    Create a new rule version.

    Request body:
        rule_type: EARN or BURN (required)
        points_per_unit, unit_amount: Exchange ratio (required)
        min_amount, max_points, expiry_days: Optional limits
        valid_from, valid_until: Optional ISO 8601 window
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return bad_request('Request body must be a JSON object')
    if not data.get('rule_type'):
        return bad_request('rule_type is required')

    values = _rule_values(data, RULE_FIELDS)
    values.setdefault('points_per_unit', None)
    values.setdefault('unit_amount', None)

    config = build_rule_store().create_rule(
        service_id=service_id,
        rule_type=data['rule_type'],
        **values
    )
    return jsonify({'success': True, 'config': config.to_dict()}), 201


@services_bp.route('/configs/<config_id>', methods=['PATCH'])
def update_config(config_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return bad_request('Request body must be a non-empty JSON object')

    unknown = set(data) - set(RULE_FIELDS)
    if unknown:
        return bad_request(f"Cannot update fields: {', '.join(sorted(unknown))}")

    config = build_rule_store().update_rule(config_id, **_rule_values(data, RULE_FIELDS))
    return jsonify({'success': True, 'config': config.to_dict()})


@services_bp.route('/configs/<config_id>/deactivate', methods=['POST'])
def deactivate_config(config_id):
    config = build_rule_store().deactivate_rule(config_id)
    return jsonify({'success': True, 'config': config.to_dict()})
