"""
Rule Store: administration of services and their earn/burn rules.

Rules are versioned rather than edited in place once transactions depend
on them: deactivate or soft delete the old version and create a new one.
update_rule exists for corrections to rules that are not yet in effect or
for closing a validity window.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models.service import Service, ServiceConfig, ServiceCategory, RuleType
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import (
    ServiceNotFoundError,
    NotFoundError,
    ValidationError,
    DuplicateError,
)
from .points_calculator import to_decimal, quantize, ZERO
from .rule_resolver import RuleResolver

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    'points_per_unit',
    'unit_amount',
    'min_amount',
    'max_points',
    'expiry_days',
    'valid_from',
    'valid_until',
)


def _decimal_or_none(value, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        value = to_decimal(value)
    except (TypeError, InvalidOperation):
        raise ValidationError(f'{field} must be a decimal number', field)
    if not value.is_finite():
        raise ValidationError(f'{field} must be a decimal number', field)
    return quantize(value)


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


class RuleStore:
    """Create, change and retire services and rules."""

    def __init__(self, clock: Clock = None, resolver: RuleResolver = None):
        self.clock = clock or utcnow
        self.resolver = resolver or RuleResolver(clock=self.clock)

    # ==================== Services ====================

    def get_service(self, service_id: str) -> Service:
        service = Service.query.filter(
            Service.id == service_id,
            Service.deleted_at.is_(None),
        ).first()
        if not service:
            raise ServiceNotFoundError(service_id)
        return service

    def create_service(
        self,
        name: str,
        category: str = ServiceCategory.OTHER.value,
        description: str = None
    ) -> Service:
        """
        Register a partner service.

        Raises:
            ValidationError: Missing name or unknown category
            DuplicateError: A live service already has this name
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError('name is required', 'name')
        try:
            category = ServiceCategory(category.upper()).value
        except (ValueError, AttributeError):
            raise ValidationError(f'Unknown category: {category}', 'category')

        if Service.query.filter(Service.name == name).first():
            raise DuplicateError('Service', f'name {name}')

        service = Service(name=name, category=category, description=description, is_active=True)
        db.session.add(service)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateError('Service', f'name {name}')

        logger.info(f"Service created: {name} ({category})")
        return service

    def set_service_active(self, service_id: str, is_active: bool) -> Service:
        """Enable or disable a service. Disabled services reject earn and burn."""
        service = self.get_service(service_id)
        service.is_active = bool(is_active)
        _commit()
        logger.info(f"Service {service.name} {'activated' if is_active else 'deactivated'}")
        return service

    # ==================== Rules ====================

    def get_rule(self, config_id: str) -> ServiceConfig:
        config = ServiceConfig.query.filter(
            ServiceConfig.id == config_id,
            ServiceConfig.deleted_at.is_(None),
        ).first()
        if not config:
            raise NotFoundError('Service config', config_id)
        return config

    def _validate_rule(self, rule_type: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize and check one complete set of rule values."""
        cleaned = dict(values)
        for field in ('points_per_unit', 'unit_amount', 'min_amount', 'max_points'):
            cleaned[field] = _decimal_or_none(values.get(field), field)

        for field in ('points_per_unit', 'unit_amount'):
            if cleaned[field] is None:
                raise ValidationError(f'{field} is required', field)
            if cleaned[field] <= ZERO:
                raise ValidationError(f'{field} must be positive', field)

        if cleaned['min_amount'] is not None and cleaned['min_amount'] < ZERO:
            raise ValidationError('min_amount cannot be negative', 'min_amount')
        if cleaned['max_points'] is not None and cleaned['max_points'] <= ZERO:
            raise ValidationError('max_points must be positive', 'max_points')

        expiry_days = values.get('expiry_days')
        if expiry_days is not None:
            if rule_type != RuleType.EARN.value:
                raise ValidationError('expiry_days only applies to EARN rules', 'expiry_days')
            if isinstance(expiry_days, bool) or not isinstance(expiry_days, int) or expiry_days <= 0:
                raise ValidationError('expiry_days must be a positive integer', 'expiry_days')

        valid_from = values.get('valid_from')
        valid_until = values.get('valid_until')
        if valid_from is None:
            raise ValidationError('valid_from is required', 'valid_from')
        for field, value in (('valid_from', valid_from), ('valid_until', valid_until)):
            if value is not None and not isinstance(value, datetime):
                raise ValidationError(f'{field} must be a datetime', field)
        if valid_from and valid_until and valid_until <= valid_from:
            raise ValidationError('valid_until must be after valid_from', 'valid_until')

        return cleaned

    def create_rule(
        self,
        service_id: str,
        rule_type: str,
        points_per_unit,
        unit_amount,
        min_amount=None,
        max_points=None,
        expiry_days: int = None,
        valid_from: datetime = None,
        valid_until: datetime = None
    ) -> ServiceConfig:
        """
        Add a new rule version for a service.

        Args:
            service_id: Owning service
            rule_type: EARN or BURN
            points_per_unit: Points per unit_amount of money
            unit_amount: Money per points_per_unit points
            min_amount: EARN only gate, amounts below it earn nothing
            max_points: Cap on one calculation
            expiry_days: Lifetime of earned batches (EARN only, None = never)
            valid_from: Start of the window (default now)
            valid_until: End of the window (None = open-ended)

        Raises:
            ServiceNotFoundError, ValidationError
        """
        self.get_service(service_id)
        try:
            rule_type = RuleType(rule_type.upper()).value
        except (ValueError, AttributeError):
            raise ValidationError(f'Unknown rule type: {rule_type}', 'rule_type')

        values = self._validate_rule(rule_type, {
            'points_per_unit': points_per_unit,
            'unit_amount': unit_amount,
            'min_amount': min_amount,
            'max_points': max_points,
            'expiry_days': expiry_days,
            'valid_from': valid_from or self.clock(),
            'valid_until': valid_until,
        })

        config = ServiceConfig(service_id=service_id, rule_type=rule_type, is_active=True, **values)
        db.session.add(config)
        _commit()

        logger.info(
            f"{rule_type} rule created for service {service_id}: "
            f"{config.points_per_unit} pts per {config.unit_amount}"
        )
        return config

    def update_rule(self, config_id: str, **changes) -> ServiceConfig:
        """Change fields of an existing rule. The result is validated as a whole."""
        unknown = set(changes) - set(RULE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        config = self.get_rule(config_id)
        values = {field: getattr(config, field) for field in RULE_FIELDS}
        values.update(changes)
        values = self._validate_rule(config.rule_type, values)

        for field in changes:
            setattr(config, field, values[field])
        _commit()

        logger.info(f"Rule {config_id} updated: {sorted(changes)}")
        return config

    def deactivate_rule(self, config_id: str) -> ServiceConfig:
        config = self.get_rule(config_id)
        config.is_active = False
        _commit()
        logger.info(f"Rule {config_id} deactivated")
        return config

    def soft_delete_rule(self, config_id: str) -> ServiceConfig:
        config = self.get_rule(config_id)
        config.is_active = False
        config.deleted_at = self.clock()
        _commit()
        logger.info(f"Rule {config_id} deleted")
        return config

    def list_rules(
        self,
        service_id: str,
        rule_type: str = None,
        include_inactive: bool = True
    ) -> List[ServiceConfig]:
        """All live rule versions of a service, newest window first."""
        self.get_service(service_id)
        query = ServiceConfig.query.filter(
            ServiceConfig.service_id == service_id,
            ServiceConfig.deleted_at.is_(None),
        )
        if rule_type:
            try:
                rule_type = RuleType(rule_type.upper()).value
            except (ValueError, AttributeError):
                raise ValidationError(f'Unknown rule type: {rule_type}', 'rule_type')
            query = query.filter(ServiceConfig.rule_type == rule_type)
        if not include_inactive:
            query = query.filter(ServiceConfig.is_active.is_(True))
        return query.order_by(ServiceConfig.valid_from.desc(), ServiceConfig.id.desc()).all()

    def get_active_rules(self, service_id: str, as_of: datetime = None) -> Dict[str, Optional[ServiceConfig]]:
        """The EARN and BURN rule in effect at as_of (None where there is none)."""
        self.get_service(service_id)
        as_of = as_of or self.clock()
        return {
            rule_type.value: self.resolver.find_active_rule(service_id, rule_type.value, as_of)
            for rule_type in RuleType
        }
