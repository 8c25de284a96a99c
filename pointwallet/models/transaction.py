"""
Transaction audit trail for the points ledger.

Every balance-changing operation appends exactly one Transaction with the
wallet balance before and after it. Rows are immutable once written apart
from status, description and metadata, which an administrator may correct.
"""
import uuid
from enum import Enum
from typing import Dict, Any

from ..extensions import db
from ..utils.clock import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class TransactionType(str, Enum):
    """Types of ledger transactions."""
    EARN = 'EARN'              # Points earned from spend (positive)
    BURN = 'BURN'              # Points redeemed at a service
    EXPIRED = 'EXPIRED'        # Batch remainder forfeited by the sweep
    ADJUSTMENT = 'ADJUSTMENT'  # Administrative correction


class TransactionStatus(str, Enum):
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    REVERSED = 'REVERSED'


# Status corrections an administrator may make
ALLOWED_STATUS_TRANSITIONS = {
    TransactionStatus.PENDING.value: {
        TransactionStatus.COMPLETED.value,
        TransactionStatus.FAILED.value,
    },
    TransactionStatus.COMPLETED.value: {TransactionStatus.REVERSED.value},
    TransactionStatus.FAILED.value: set(),
    TransactionStatus.REVERSED.value: set(),
}


class Transaction(db.Model):
    """
    Immutable record of one earn, burn or expiry.

    points is stored as a positive quantity; type gives its direction.
    amount is the money spent (EARN) or redeemed value (BURN) and is null
    for EXPIRED rows.
    """
    __tablename__ = 'transactions'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), nullable=False)
    service_id = db.Column(db.String(36), db.ForeignKey('services.id'))

    type = db.Column(db.String(20), nullable=False)  # TransactionType
    amount = db.Column(db.Numeric(12, 2))
    points = db.Column(db.Numeric(12, 2), nullable=False)
    balance_before = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.COMPLETED.value)
    description = db.Column(db.String(500))
    meta = db.Column('metadata', db.JSON)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime)

    service = db.relationship('Service')

    __table_args__ = (
        db.Index('ix_transactions_user_created', 'user_id', 'created_at'),
        db.Index('ix_transactions_service', 'service_id'),
        db.Index('ix_transactions_type', 'type'),
        db.Index('ix_transactions_status', 'status'),
    )

    def __repr__(self):
        return f'<Transaction {self.id}: {self.type} {self.points} pts user={self.user_id}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'service_id': self.service_id,
            'service_name': self.service.name if self.service else None,
            'type': self.type,
            'amount': str(self.amount) if self.amount is not None else None,
            'points': str(self.points),
            'balance_before': str(self.balance_before),
            'balance_after': str(self.balance_after),
            'status': self.status,
            'description': self.description,
            'metadata': self.meta,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
