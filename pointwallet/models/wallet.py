"""
Wallet aggregate and point batches.

Design notes:
- One Wallet per user. balance is the authoritative redeemable total and
  equals the sum of its active PointBalance batches.
- Lifetime counters only grow: total_earned - total_burned - total_expired
  always equals balance.
- Wallet and batch rows are mutated only by BatchLedger and ExpirySweep,
  always under the wallet lock.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional

from ..extensions import db
from ..utils.clock import utcnow

ZERO = Decimal('0.00')


def _new_id() -> str:
    return str(uuid.uuid4())


def _dec(value) -> Optional[str]:
    return str(value) if value is not None else None


class Wallet(db.Model):
    """Current points balance and lifetime totals for one user."""
    __tablename__ = 'wallets'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), nullable=False, unique=True)

    balance = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_earned = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_burned = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_expired = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    last_activity_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime)  # soft-retired with the owning user

    batches = db.relationship('PointBalance', back_populates='wallet', lazy='dynamic')

    def __repr__(self):
        return f'<Wallet user={self.user_id} balance={self.balance}>'

    @property
    def net_lifetime(self) -> Decimal:
        """total_earned - total_burned - total_expired."""
        return (
            Decimal(self.total_earned or ZERO)
            - Decimal(self.total_burned or ZERO)
            - Decimal(self.total_expired or ZERO)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'balance': _dec(self.balance),
            'total_earned': _dec(self.total_earned),
            'total_burned': _dec(self.total_burned),
            'total_expired': _dec(self.total_expired),
            'last_activity_at': self.last_activity_at.isoformat() if self.last_activity_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PointBalance(db.Model):
    """
    The still-redeemable remainder of one earn event.

    Created once per successful earn with the full earned quantity. Burns
    decrement points; the expiry sweep zeroes it and sets is_expired.
    """
    __tablename__ = 'point_balances'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    wallet_id = db.Column(db.String(36), db.ForeignKey('wallets.id'), nullable=False)
    transaction_id = db.Column(db.String(36), db.ForeignKey('transactions.id'), unique=True)

    points = db.Column(db.Numeric(12, 2), nullable=False)
    earned_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime)  # null = never expires
    is_expired = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime)

    wallet = db.relationship('Wallet', back_populates='batches')
    transaction = db.relationship('Transaction')

    __table_args__ = (
        db.Index('ix_point_balances_wallet', 'wallet_id'),
        db.Index('ix_point_balances_expiry', 'expires_at', 'is_expired'),
    )

    def __repr__(self):
        return f'<PointBalance {self.id}: {self.points} pts expires={self.expires_at}>'

    def days_until_expiry(self, now: datetime) -> Optional[int]:
        """Whole days left before expiry, rounded up. None if it never expires."""
        if not self.expires_at:
            return None
        seconds = (self.expires_at - now).total_seconds()
        days, remainder = divmod(seconds, 86400)
        return int(days) + (1 if remainder > 0 else 0)

    def to_dict(self, now: datetime = None) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'wallet_id': self.wallet_id,
            'transaction_id': self.transaction_id,
            'points': _dec(self.points),
            'earned_at': self.earned_at.isoformat() if self.earned_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_expired': self.is_expired,
        }
        if now is not None:
            data['days_until_expiry'] = self.days_until_expiry(now)
        return data
