"""
Expiry Sweep.

Background job that forfeits batches past their expiry date. Meant to run
on a schedule (see utils/scheduler.py and `flask ledger sweep-expired`).

Each batch is expired in its own locked, committed unit of work: zero the
batch, flag it, take its points off the wallet balance, add them to
total_expired, and append an EXPIRED transaction. A crash part way through
leaves the remaining batches untouched for the next run. A failure on one
wallet is logged and the sweep moves on to the next wallet.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Dict, Any

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.wallet import Wallet, PointBalance
from ..models.transaction import TransactionType
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import PointWalletError
from .batch_ledger import BatchLedger, fifo_order
from .points_calculator import to_decimal, quantize, ZERO
from .transaction_recorder import TransactionRecorder
from .wallet_locks import WalletLockRegistry, wallet_unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Totals for one sweep run."""
    expired_batches: int = 0
    transactions_written: int = 0
    points_expired: Decimal = ZERO
    wallets_processed: int = 0
    dry_run: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'dry_run': self.dry_run,
            'expired_batches': self.expired_batches,
            'transactions_written': self.transactions_written,
            'points_expired': str(self.points_expired),
            'wallets_processed': self.wallets_processed,
            'errors': self.errors,
        }


class ExpirySweep:
    """Find overdue batches and expire them one at a time."""

    def __init__(
        self,
        locks: WalletLockRegistry,
        ledger: BatchLedger = None,
        recorder: TransactionRecorder = None,
        clock: Clock = None
    ):
        self.locks = locks
        self.ledger = ledger or BatchLedger()
        self.recorder = recorder or TransactionRecorder()
        self.clock = clock or utcnow

    def find_overdue(self, now) -> "OrderedDict[str, List[str]]":
        """Overdue batch ids grouped by wallet owner, in FIFO order."""
        rows = db.session.query(
            PointBalance.id, Wallet.user_id
        ).join(
            Wallet, Wallet.id == PointBalance.wallet_id
        ).filter(
            Wallet.deleted_at.is_(None),
            PointBalance.deleted_at.is_(None),
            PointBalance.is_expired.is_(False),
            PointBalance.points > 0,
            PointBalance.expires_at.isnot(None),
            PointBalance.expires_at < now,
        ).order_by(Wallet.user_id, *fifo_order()).all()

        grouped: "OrderedDict[str, List[str]]" = OrderedDict()
        for batch_id, user_id in rows:
            grouped.setdefault(user_id, []).append(batch_id)
        return grouped

    def sweep_expired(self, dry_run: bool = False) -> SweepResult:
        """
        Expire every batch whose expires_at has passed.

        Args:
            dry_run: Count what would expire without changing anything

        Returns:
            SweepResult with counts and per-wallet errors
        """
        now = self.clock()
        result = SweepResult(dry_run=dry_run)

        overdue = self.find_overdue(now)
        # End the read so the per-wallet units start clean
        db.session.rollback()

        if dry_run:
            for user_id, batch_ids in overdue.items():
                batches = PointBalance.query.filter(PointBalance.id.in_(batch_ids)).all()
                result.wallets_processed += 1
                result.expired_batches += len(batches)
                result.points_expired = quantize(
                    result.points_expired + sum((to_decimal(b.points) for b in batches), ZERO)
                )
            return result

        for user_id, batch_ids in overdue.items():
            try:
                for batch_id in batch_ids:
                    expired = self._expire_one(user_id, batch_id, now)
                    if expired > ZERO:
                        result.expired_batches += 1
                        result.transactions_written += 1
                        result.points_expired = quantize(result.points_expired + expired)
                result.wallets_processed += 1
            except (PointWalletError, SQLAlchemyError) as e:
                logger.error(f"Expiry sweep failed for wallet of user {user_id}: {e}")
                result.errors.append({'user_id': user_id, 'error': str(e)})

        logger.info(
            f"Expiry sweep completed: {result.expired_batches} batches, "
            f"{result.points_expired} points expired across {result.wallets_processed} wallets"
            + (f", {len(result.errors)} wallet errors" if result.errors else "")
        )
        return result

    def _expire_one(self, user_id: str, batch_id: str, now) -> Decimal:
        """Expire a single batch in its own unit of work."""
        with wallet_unit_of_work(self.locks, user_id) as wallet:
            batch = PointBalance.query.filter(
                PointBalance.id == batch_id,
                PointBalance.wallet_id == wallet.id,
            ).populate_existing().first()

            # Re-check under the lock: a burn may have emptied it meanwhile
            if (
                batch is None
                or batch.is_expired
                or to_decimal(batch.points) <= ZERO
                or batch.expires_at is None
                or batch.expires_at >= now
            ):
                return ZERO

            balance_before = to_decimal(wallet.balance)
            expired = self.ledger.expire_batch(wallet, batch, now)

            earn_txn = batch.transaction
            self.recorder.record(
                user_id=user_id,
                service_id=earn_txn.service_id if earn_txn else None,
                transaction_type=TransactionType.EXPIRED.value,
                points=expired,
                balance_before=balance_before,
                balance_after=to_decimal(wallet.balance),
                amount=None,
                description=f'Points expired (earned {batch.earned_at.strftime("%Y-%m-%d")})',
                metadata={
                    'point_balance_id': batch.id,
                    'earn_transaction_id': batch.transaction_id,
                    'expires_at': batch.expires_at.isoformat(),
                },
                created_at=now,
            )

        logger.info(f"Expired {expired} pts from batch {batch_id} for user {user_id}")
        return expired
