"""
Batch Ledger.

Owns a wallet's point batches (PointBalance rows) and keeps the Wallet
aggregate in step with them. Every method here mutates state and must be
called with the wallet locked (see wallet_locks.wallet_unit_of_work); none
of them commit, the unit of work does.

FIFO order:
    Batches are consumed soonest-expiring first. Batches that never expire
    come last. Ties are broken by earned_at, then id.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from ..extensions import db
from ..models.wallet import Wallet, PointBalance
from ..utils.exceptions import (
    InsufficientBalanceError,
    LedgerInvariantError,
    ValidationError,
)
from .points_calculator import to_decimal, quantize, ZERO

logger = logging.getLogger(__name__)


@dataclass
class DeductionResult:
    """Outcome of a FIFO deduction."""
    deducted: Decimal
    remaining: Decimal
    updated_batches: List[PointBalance] = field(default_factory=list)


def fifo_order():
    """ORDER BY clause for consumption order."""
    return (
        PointBalance.expires_at.asc().nullslast(),
        PointBalance.earned_at.asc(),
        PointBalance.id.asc(),
    )


class BatchLedger:
    """Create, consume and expire point batches for a locked wallet."""

    # ==================== Queries ====================

    def active_batches_query(self, wallet_id: str, now: datetime):
        """Batches that can still be spent at now, in FIFO order."""
        return PointBalance.query.filter(
            PointBalance.wallet_id == wallet_id,
            PointBalance.deleted_at.is_(None),
            PointBalance.is_expired.is_(False),
            PointBalance.points > 0,
            db.or_(
                PointBalance.expires_at.is_(None),
                PointBalance.expires_at >= now,
            ),
        ).order_by(*fifo_order())

    def expiring_batches_query(self, wallet_id: str, now: datetime, days: int):
        """Active batches whose expiry falls within the next days days."""
        horizon = now + timedelta(days=days)
        return PointBalance.query.filter(
            PointBalance.wallet_id == wallet_id,
            PointBalance.deleted_at.is_(None),
            PointBalance.is_expired.is_(False),
            PointBalance.points > 0,
            PointBalance.expires_at.isnot(None),
            PointBalance.expires_at >= now,
            PointBalance.expires_at <= horizon,
        ).order_by(*fifo_order())

    def active_points_total(self, wallet_id: str) -> Decimal:
        """Sum of points over all unexpired, non-deleted batches."""
        total = db.session.query(
            db.func.coalesce(db.func.sum(PointBalance.points), 0)
        ).filter(
            PointBalance.wallet_id == wallet_id,
            PointBalance.deleted_at.is_(None),
            PointBalance.is_expired.is_(False),
        ).scalar()
        return quantize(Decimal(str(total)))

    # ==================== Mutations ====================

    def earn(
        self,
        wallet: Wallet,
        points: Decimal,
        expires_at: Optional[datetime],
        now: datetime
    ) -> PointBalance:
        """
        Append one batch holding points and credit the wallet.

        Args:
            wallet: Locked wallet
            points: Points earned, positive
            expires_at: When the batch expires (None = never)
            now: Earn time

        Returns:
            The new PointBalance (flushed, so it has an id)
        """
        points = quantize(to_decimal(points))
        if points <= ZERO:
            raise ValidationError('Points to earn must be positive', 'points')

        batch = PointBalance(
            wallet_id=wallet.id,
            points=points,
            earned_at=now,
            expires_at=expires_at,
            is_expired=False,
        )
        db.session.add(batch)

        wallet.balance = quantize(to_decimal(wallet.balance) + points)
        wallet.total_earned = quantize(to_decimal(wallet.total_earned) + points)
        wallet.last_activity_at = now

        db.session.flush()
        return batch

    def deduct(self, wallet: Wallet, points_to_deduct: Decimal, now: datetime) -> DeductionResult:
        """
        Consume points from the wallet's batches in FIFO order.

        All or nothing: on any failure nothing has been applied once the
        unit of work rolls back.

        Raises:
            InsufficientBalanceError: points_to_deduct exceeds the balance
            LedgerInvariantError: Eligible batches hold less than the balance says
        """
        points_to_deduct = quantize(to_decimal(points_to_deduct))
        if points_to_deduct <= ZERO:
            raise ValidationError('Points to burn must be positive', 'points')

        balance = to_decimal(wallet.balance)
        if points_to_deduct > balance:
            raise InsufficientBalanceError(balance, points_to_deduct)

        unexpired_total = self.active_points_total(wallet.id)
        batches = self.active_batches_query(wallet.id, now).populate_existing().all()

        remaining = points_to_deduct
        updated = []
        for batch in batches:
            if remaining <= ZERO:
                break

            available = to_decimal(batch.points)
            take = min(available, remaining)
            batch.points = quantize(available - take)
            remaining = quantize(remaining - take)
            updated.append(batch)

        if remaining > ZERO and unexpired_total == balance:
            # Batches past expiry that the sweep has not reached yet still count
            # in the balance but cannot be spent.
            spendable = quantize(points_to_deduct - remaining)
            logger.info(
                f"Burn of {points_to_deduct} on wallet {wallet.id} blocked by unswept "
                f"expired batches: spendable {spendable}, balance {balance}"
            )
            raise InsufficientBalanceError(spendable, points_to_deduct)

        if remaining > ZERO:
            details = {
                'wallet_id': wallet.id,
                'user_id': wallet.user_id,
                'requested': str(points_to_deduct),
                'balance': str(balance),
                'unsatisfied': str(remaining),
                'batches_seen': len(batches),
            }
            logger.error(
                f"Ledger invariant violated: wallet {wallet.id} balance {balance} "
                f"but eligible batches short by {remaining}",
                extra={'details': details}
            )
            raise LedgerInvariantError(
                f"Eligible batches could not cover {points_to_deduct} points for wallet {wallet.id}",
                details
            )

        wallet.balance = quantize(balance - points_to_deduct)
        wallet.total_burned = quantize(to_decimal(wallet.total_burned) + points_to_deduct)
        wallet.last_activity_at = now

        db.session.flush()
        return DeductionResult(
            deducted=points_to_deduct,
            remaining=remaining,
            updated_batches=updated,
        )

    def expire_batch(self, wallet: Wallet, batch: PointBalance, now: datetime) -> Decimal:
        """
        Forfeit a batch's remaining points.

        Returns:
            Points expired (zero if the batch was already handled)
        """
        if batch.is_expired or to_decimal(batch.points) <= ZERO:
            return ZERO

        expired = quantize(to_decimal(batch.points))
        balance = to_decimal(wallet.balance)
        if expired > balance:
            raise LedgerInvariantError(
                f"Batch {batch.id} holds {expired} points but wallet {wallet.id} balance is {balance}",
                {'wallet_id': wallet.id, 'batch_id': batch.id}
            )

        batch.points = ZERO
        batch.is_expired = True

        wallet.balance = quantize(balance - expired)
        wallet.total_expired = quantize(to_decimal(wallet.total_expired) + expired)
        wallet.last_activity_at = now

        db.session.flush()
        return expired
