"""
Partner services and their earn/burn rules.

A Service is something a customer spends money on (a car wash, a tow, an
insurance policy). Each service carries a history of ServiceConfig rows, one
per rule version, for both earning (EARN) and redeeming (BURN) points.

Design notes:
- Rules are never physically deleted while transactions reference them;
  deleted_at is a tombstone every query must filter on.
- Several rules of one type may exist per service. Which one applies at a
  given instant is decided by RuleResolver, not by the model.
"""
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any

from ..extensions import db
from ..utils.clock import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class ServiceCategory(str, Enum):
    INSURANCE = 'INSURANCE'
    CAR_WASH = 'CAR_WASH'
    TOWING = 'TOWING'
    RENTAL = 'RENTAL'
    MAINTENANCE = 'MAINTENANCE'
    OTHER = 'OTHER'


class RuleType(str, Enum):
    """Kinds of service rule."""
    EARN = 'EARN'   # money spent -> points
    BURN = 'BURN'   # points -> money off


class Service(db.Model):
    """A partner service points can be earned from and burned at."""
    __tablename__ = 'services'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text)
    category = db.Column(db.String(30), nullable=False, default=ServiceCategory.OTHER.value)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime)

    configs = db.relationship('ServiceConfig', back_populates='service', lazy='dynamic')

    __table_args__ = (
        db.Index('ix_services_category', 'category'),
        db.Index('ix_services_is_active', 'is_active'),
    )

    def __repr__(self):
        return f'<Service {self.name}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ServiceConfig(db.Model):
    """
    One version of a service's earning or redemption rule.

    The exchange ratio is points_per_unit points per unit_amount of currency.
    min_amount gates eligibility, max_points caps a single calculation and
    expiry_days (EARN only) sets how long earned points live.
    """
    __tablename__ = 'service_configs'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    service_id = db.Column(db.String(36), db.ForeignKey('services.id'), nullable=False)
    rule_type = db.Column(db.String(10), nullable=False)  # RuleType

    # Exchange ratio
    points_per_unit = db.Column(db.Numeric(12, 2), nullable=False)
    unit_amount = db.Column(db.Numeric(12, 2), nullable=False)

    # Limits
    min_amount = db.Column(db.Numeric(12, 2))  # null = no floor
    max_points = db.Column(db.Numeric(12, 2))  # null = no cap
    expiry_days = db.Column(db.Integer)  # null = never expires

    # Validity window
    valid_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    valid_until = db.Column(db.DateTime)  # null = open-ended
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime)

    service = db.relationship('Service', back_populates='configs')

    __table_args__ = (
        db.Index('ix_service_configs_lookup', 'service_id', 'rule_type', 'is_active'),
        db.Index('ix_service_configs_window', 'valid_from', 'valid_until'),
    )

    def __repr__(self):
        return (
            f'<ServiceConfig {self.rule_type} {self.points_per_unit}pts/'
            f'{self.unit_amount} service={self.service_id}>'
        )

    def to_dict(self) -> Dict[str, Any]:
        def _dec(value: Optional[Decimal]):
            return str(value) if value is not None else None

        return {
            'id': self.id,
            'service_id': self.service_id,
            'rule_type': self.rule_type,
            'points_per_unit': _dec(self.points_per_unit),
            'unit_amount': _dec(self.unit_amount),
            'min_amount': _dec(self.min_amount),
            'max_points': _dec(self.max_points),
            'expiry_days': self.expiry_days,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'is_active': self.is_active,
        }
