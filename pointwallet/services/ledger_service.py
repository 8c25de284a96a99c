"""
Ledger Service for the points wallet.

Entry point for every wallet operation:
- earn_points / burn_points: resolve the service rule, calculate, then
  mutate batches + wallet and record the transaction in one locked unit
- balance, batch and expiry queries (read-only, no lock)
- statistics, transaction history and previews
- administrative corrections, reconciliation, wallet open/retire

Each earn or burn walks INITIATED -> RULE_RESOLVED -> CALCULATED ->
LEDGER_UPDATED -> RECORDED. Anything that fails before LEDGER_UPDATED has
touched nothing; anything that fails after it is rolled back by the unit of
work. Either way the state reached is logged with the error.

Usage:
    service = LedgerService(locks)

    txn = service.earn_points(user_id, service_id, Decimal('120.00'))
    txn = service.burn_points(user_id, service_id, Decimal('50'))
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models.service import Service, RuleType
from ..models.wallet import Wallet, PointBalance
from ..models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    ALLOWED_STATUS_TRANSITIONS,
)
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import (
    PointWalletError,
    WalletNotFoundError,
    ServiceNotFoundError,
    TransactionNotFoundError,
    InactiveResourceError,
    ValidationError,
    BelowMinimumAmountError,
    DuplicateError,
    InvalidStatusTransitionError,
    LedgerInvariantError,
)
from .batch_ledger import BatchLedger
from .points_calculator import (
    to_decimal,
    quantize,
    compute_earned_points,
    compute_redemption_value,
    compute_expiry,
    ZERO,
)
from .rule_resolver import RuleResolver
from .transaction_recorder import TransactionRecorder
from .wallet_locks import WalletLockRegistry, wallet_unit_of_work

logger = logging.getLogger(__name__)

# Largest amount or point quantity accepted in one operation
MAX_QUANTITY = Decimal('1000000')

# Window for the "last 30 days" statistics
RECENT_ACTIVITY_DAYS = 30

# Longest look-ahead accepted by get_expiring_within (100 years)
MAX_EXPIRING_DAYS = 36500

# Length of the transactions.description column
MAX_DESCRIPTION_LENGTH = 500


class OperationState(str, Enum):
    """Progress of one earn or burn."""
    INITIATED = 'INITIATED'
    RULE_RESOLVED = 'RULE_RESOLVED'
    CALCULATED = 'CALCULATED'
    LEDGER_UPDATED = 'LEDGER_UPDATED'
    RECORDED = 'RECORDED'


class LedgerService:
    """
    Central service for points wallet operations.

    Collaborators are injected; anything not passed gets a default
    instance. The lock registry must be shared by every service and sweep
    in the process, so it is always passed in.
    """

    def __init__(
        self,
        locks: WalletLockRegistry,
        resolver: RuleResolver = None,
        ledger: BatchLedger = None,
        recorder: TransactionRecorder = None,
        clock: Clock = None,
        expiring_soon_days: int = 30
    ):
        self.locks = locks
        self.clock = clock or utcnow
        self.resolver = resolver or RuleResolver(clock=self.clock)
        self.ledger = ledger or BatchLedger()
        self.recorder = recorder or TransactionRecorder()
        self.expiring_soon_days = expiring_soon_days

    # ==================== Validation helpers ====================

    def _validate_quantity(self, value, field: str) -> Decimal:
        """Positive, at most MAX_QUANTITY, at most 2 decimal places."""
        if value is None or isinstance(value, bool):
            raise ValidationError(f'{field} is required', field)
        try:
            value = to_decimal(value)
        except (TypeError, InvalidOperation):
            raise ValidationError(f'{field} must be a decimal number', field)

        if not value.is_finite():
            raise ValidationError(f'{field} must be a decimal number', field)
        if value <= ZERO:
            raise ValidationError(f'{field} must be positive', field)
        if value > MAX_QUANTITY:
            raise ValidationError(f'{field} cannot exceed {MAX_QUANTITY}', field)
        if value.as_tuple().exponent < -2:
            raise ValidationError(f'{field} cannot have more than 2 decimal places', field)
        return quantize(value)

    def _validate_description(self, description: Optional[str]) -> Optional[str]:
        if description is None:
            return None
        if not isinstance(description, str):
            raise ValidationError('description must be a string', 'description')
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f'description cannot exceed {MAX_DESCRIPTION_LENGTH} characters', 'description'
            )
        return description

    def _require_active_service(self, service_id: str) -> Service:
        service = Service.query.filter(
            Service.id == service_id,
            Service.deleted_at.is_(None),
        ).first()
        if not service:
            raise ServiceNotFoundError(service_id)
        if not service.is_active:
            raise InactiveResourceError('Service', service_id)
        return service

    def _require_wallet(self, user_id: str) -> Wallet:
        wallet = Wallet.query.filter(
            Wallet.user_id == user_id,
            Wallet.deleted_at.is_(None),
        ).populate_existing().first()
        if not wallet:
            raise WalletNotFoundError(user_id)
        return wallet

    def _log_failure(self, operation: str, user_id: str, service_id: str,
                     state: OperationState, error: Exception) -> None:
        message = (
            f"{operation} failed for user {user_id} at service {service_id} "
            f"after {state.value}: {error}"
        )
        if isinstance(error, (LedgerInvariantError, SQLAlchemyError)):
            logger.error(message)
        else:
            logger.warning(message)

    # ==================== Core Operations ====================

    def earn_points(
        self,
        user_id: str,
        service_id: str,
        amount,
        description: str = None,
        metadata: Dict[str, Any] = None
    ) -> Transaction:
        """
        Credit points for money spent at a service.

        Args:
            user_id: Wallet owner
            service_id: Service the money was spent at
            amount: Money spent (Decimal or str, 2 dp)
            description: Optional transaction description
            metadata: Optional caller data stored on the transaction

        Returns:
            The recorded EARN Transaction

        Raises:
            ValidationError: amount is not a positive 2 dp number
            ServiceNotFoundError, InactiveResourceError: Service unusable
            RuleNotFoundError: No earning rule in effect
            BelowMinimumAmountError: amount earns no points
            WalletNotFoundError, WalletBusyError
        """
        state = OperationState.INITIATED
        now = self.clock()
        try:
            amount = self._validate_quantity(amount, 'amount')
            description = self._validate_description(description)
            service = self._require_active_service(service_id)

            rule = self.resolver.resolve_active_rule(service_id, RuleType.EARN.value, now)
            state = OperationState.RULE_RESOLVED

            points = compute_earned_points(amount, rule)
            if points <= ZERO:
                raise BelowMinimumAmountError(amount, rule.min_amount)
            expires_at = compute_expiry(now, rule)
            state = OperationState.CALCULATED

            rule_id = rule.id
            description = description or f'Earned {points} points at {service.name}'
            meta = dict(metadata or {})
            meta['rule_id'] = rule_id

            with wallet_unit_of_work(self.locks, user_id) as wallet:
                balance_before = to_decimal(wallet.balance)
                batch = self.ledger.earn(wallet, points, expires_at, now)
                state = OperationState.LEDGER_UPDATED

                meta['point_balance_id'] = batch.id
                transaction = self.recorder.record(
                    user_id=user_id,
                    service_id=service_id,
                    transaction_type=TransactionType.EARN.value,
                    points=points,
                    balance_before=balance_before,
                    balance_after=to_decimal(wallet.balance),
                    amount=amount,
                    description=description,
                    metadata=meta,
                    created_at=now,
                )
                batch.transaction_id = transaction.id
                db.session.flush()
                state = OperationState.RECORDED

        except (PointWalletError, SQLAlchemyError) as e:
            self._log_failure('Earn', user_id, service_id, state, e)
            raise

        logger.info(
            f"Points earned: user {user_id} +{points} pts for {amount} at service {service_id} "
            f"(balance {transaction.balance_before} -> {transaction.balance_after}, "
            f"expires {expires_at.isoformat() if expires_at else 'never'})"
        )
        return transaction

    def burn_points(
        self,
        user_id: str,
        service_id: str,
        points,
        description: str = None,
        metadata: Dict[str, Any] = None
    ) -> Transaction:
        """
        Redeem points at a service, consuming batches soonest-expiring first.

        Returns:
            The recorded BURN Transaction; amount holds the redeemed money value

        Raises:
            Everything earn_points raises except BelowMinimumAmountError, plus
            InsufficientBalanceError when points exceed the spendable balance
        """
        state = OperationState.INITIATED
        now = self.clock()
        try:
            points = self._validate_quantity(points, 'points')
            description = self._validate_description(description)
            service = self._require_active_service(service_id)

            rule = self.resolver.resolve_active_rule(service_id, RuleType.BURN.value, now)
            state = OperationState.RULE_RESOLVED

            value = compute_redemption_value(points, rule)
            state = OperationState.CALCULATED

            description = description or f'Redeemed {points} points at {service.name}'
            meta = dict(metadata or {})
            meta['rule_id'] = rule.id

            with wallet_unit_of_work(self.locks, user_id) as wallet:
                balance_before = to_decimal(wallet.balance)
                result = self.ledger.deduct(wallet, points, now)
                state = OperationState.LEDGER_UPDATED

                meta['point_balance_ids'] = [b.id for b in result.updated_batches]
                transaction = self.recorder.record(
                    user_id=user_id,
                    service_id=service_id,
                    transaction_type=TransactionType.BURN.value,
                    points=result.deducted,
                    balance_before=balance_before,
                    balance_after=to_decimal(wallet.balance),
                    amount=value,
                    description=description,
                    metadata=meta,
                    created_at=now,
                )
                state = OperationState.RECORDED

        except (PointWalletError, SQLAlchemyError) as e:
            self._log_failure('Burn', user_id, service_id, state, e)
            raise

        logger.info(
            f"Points burned: user {user_id} -{points} pts worth {value} at service {service_id} "
            f"(balance {transaction.balance_before} -> {transaction.balance_after}, "
            f"{len(meta['point_balance_ids'])} batches)"
        )
        return transaction

    # ==================== Queries ====================

    def get_wallet(self, user_id: str) -> Wallet:
        return self._require_wallet(user_id)

    def get_balance(self, user_id: str) -> Decimal:
        """Current redeemable balance."""
        return to_decimal(self._require_wallet(user_id).balance)

    def get_active_batches(self, user_id: str) -> List[PointBalance]:
        """Spendable batches in consumption order."""
        wallet = self._require_wallet(user_id)
        return self.ledger.active_batches_query(wallet.id, self.clock()).all()

    def get_expiring_within(self, user_id: str, days: int) -> List[PointBalance]:
        """Active batches that expire within the next days days."""
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise ValidationError('days must be a non-negative integer', 'days')
        if days > MAX_EXPIRING_DAYS:
            raise ValidationError(f'days cannot exceed {MAX_EXPIRING_DAYS}', 'days')
        wallet = self._require_wallet(user_id)
        return self.ledger.expiring_batches_query(wallet.id, self.clock(), days).all()

    def get_wallet_statistics(self, user_id: str) -> Dict[str, Any]:
        """
        Summary of a wallet for dashboards and customer views.

        Returns:
            Dict with balance, lifetime totals, last 30 days activity and
            points expiring within expiring_soon_days
        """
        wallet = self._require_wallet(user_id)
        now = self.clock()
        since = now - timedelta(days=RECENT_ACTIVITY_DAYS)

        def recent_total(transaction_type: str) -> Decimal:
            total = db.session.query(
                db.func.coalesce(db.func.sum(Transaction.points), 0)
            ).filter(
                Transaction.user_id == user_id,
                Transaction.type == transaction_type,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.deleted_at.is_(None),
                Transaction.created_at >= since,
            ).scalar()
            return quantize(Decimal(str(total)))

        expiring = self.ledger.expiring_batches_query(
            wallet.id, now, self.expiring_soon_days
        ).all()
        active_count = self.ledger.active_batches_query(wallet.id, now).count()

        return {
            'user_id': user_id,
            'balance': str(wallet.balance),
            'total_earned': str(wallet.total_earned),
            'total_burned': str(wallet.total_burned),
            'total_expired': str(wallet.total_expired),
            'last_activity_at': wallet.last_activity_at.isoformat() if wallet.last_activity_at else None,
            'earned_last_30_days': str(recent_total(TransactionType.EARN.value)),
            'burned_last_30_days': str(recent_total(TransactionType.BURN.value)),
            'active_batches': active_count,
            'expiring_soon': {
                'days': self.expiring_soon_days,
                'points': str(quantize(sum((to_decimal(b.points) for b in expiring), ZERO))),
                'batches': len(expiring),
                'next_expiry': expiring[0].expires_at.isoformat() if expiring else None,
            },
        }

    def get_transactions(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        transaction_type: str = None,
        service_id: str = None,
        start_date: datetime = None,
        end_date: datetime = None
    ):
        """
        Transaction history for a wallet, newest first.

        Returns:
            Flask-SQLAlchemy Pagination of Transaction rows
        """
        self._require_wallet(user_id)

        query = Transaction.query.filter(
            Transaction.user_id == user_id,
            Transaction.deleted_at.is_(None),
        )
        if transaction_type:
            try:
                transaction_type = TransactionType(transaction_type.upper()).value
            except ValueError:
                raise ValidationError(f'Unknown transaction type: {transaction_type}', 'type')
            query = query.filter(Transaction.type == transaction_type)
        if service_id:
            query = query.filter(Transaction.service_id == service_id)
        if start_date:
            query = query.filter(Transaction.created_at >= start_date)
        if end_date:
            query = query.filter(Transaction.created_at <= end_date)

        page = max(1, page or 1)
        limit = min(max(1, limit or 20), 100)
        query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        return query.paginate(page=page, per_page=limit, error_out=False)

    def get_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        transaction = Transaction.query.filter(
            Transaction.id == transaction_id,
            Transaction.user_id == user_id,
            Transaction.deleted_at.is_(None),
        ).first()
        if not transaction:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    # ==================== Previews ====================

    def preview_earn(self, service_id: str, amount) -> Dict[str, Any]:
        """What an earn of amount would credit right now. Changes nothing."""
        amount = self._validate_quantity(amount, 'amount')
        self._require_active_service(service_id)
        now = self.clock()
        rule = self.resolver.resolve_active_rule(service_id, RuleType.EARN.value, now)

        points = compute_earned_points(amount, rule)
        expires_at = compute_expiry(now, rule) if points > ZERO else None
        return {
            'service_id': service_id,
            'rule_id': rule.id,
            'amount': str(amount),
            'points': str(points),
            'eligible': points > ZERO,
            'min_amount': str(rule.min_amount) if rule.min_amount is not None else None,
            'max_points': str(rule.max_points) if rule.max_points is not None else None,
            'expires_at': expires_at.isoformat() if expires_at else None,
        }

    def preview_burn(self, service_id: str, points) -> Dict[str, Any]:
        """Money value of redeeming points right now. Changes nothing."""
        points = self._validate_quantity(points, 'points')
        self._require_active_service(service_id)
        rule = self.resolver.resolve_active_rule(service_id, RuleType.BURN.value, self.clock())
        return {
            'service_id': service_id,
            'rule_id': rule.id,
            'points': str(points),
            'value': str(compute_redemption_value(points, rule)),
        }

    # ==================== Administration ====================

    def correct_transaction(
        self,
        transaction_id: str,
        status: str = None,
        description: str = None,
        metadata: Dict[str, Any] = None
    ) -> Transaction:
        """
        Correct the mutable fields of a recorded transaction.

        Only status, description and metadata can change. A status change
        must follow ALLOWED_STATUS_TRANSITIONS and never moves points.

        Raises:
            TransactionNotFoundError, ValidationError, InvalidStatusTransitionError
        """
        if status is None and description is None and metadata is None:
            raise ValidationError('Nothing to correct')
        description = self._validate_description(description)

        transaction = Transaction.query.filter(
            Transaction.id == transaction_id,
            Transaction.deleted_at.is_(None),
        ).first()
        if not transaction:
            raise TransactionNotFoundError(transaction_id)

        if status is not None:
            try:
                status = TransactionStatus(status.upper()).value
            except ValueError:
                raise ValidationError(f'Unknown status: {status}', 'status')
            if status != transaction.status:
                if status not in ALLOWED_STATUS_TRANSITIONS.get(transaction.status, set()):
                    raise InvalidStatusTransitionError('transaction', transaction.status, status)
                transaction.status = status

        if description is not None:
            transaction.description = description

        if metadata is not None:
            if not isinstance(metadata, dict):
                raise ValidationError('metadata must be an object', 'metadata')
            transaction.meta = metadata

        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        logger.info(f"Transaction {transaction_id} corrected (status {transaction.status})")
        return transaction

    def reconcile_wallet(self, user_id: str) -> Dict[str, Any]:
        """
        Check a wallet against its batches and lifetime counters.

        Read-only. Reports rather than repairs: a discrepancy means a bug
        and needs investigating.
        """
        wallet = self._require_wallet(user_id)
        balance = to_decimal(wallet.balance)
        batch_total = self.ledger.active_points_total(wallet.id)
        lifetime_net = quantize(wallet.net_lifetime)

        discrepancies = []
        if batch_total != balance:
            discrepancies.append({
                'check': 'batch_total',
                'expected': str(balance),
                'actual': str(batch_total),
            })
        if lifetime_net != balance:
            discrepancies.append({
                'check': 'lifetime_net',
                'expected': str(balance),
                'actual': str(lifetime_net),
            })

        if discrepancies:
            logger.warning(f"Wallet of user {user_id} failed reconciliation: {discrepancies}")

        return {
            'user_id': user_id,
            'wallet_id': wallet.id,
            'balance': str(balance),
            'batch_total': str(batch_total),
            'lifetime_net': str(lifetime_net),
            'balanced': not discrepancies,
            'discrepancies': discrepancies,
        }

    def open_wallet(self, user_id: str) -> Wallet:
        """
        Create the wallet for a newly registered user.

        A retired wallet is reopened with its history intact.

        Raises:
            DuplicateError: The user already has a live wallet
        """
        if not user_id or not str(user_id).strip():
            raise ValidationError('user_id is required', 'user_id')

        existing = Wallet.query.filter_by(user_id=user_id).first()
        if existing and existing.deleted_at is None:
            raise DuplicateError('Wallet', f'user_id {user_id}')

        now = self.clock()
        if existing:
            existing.deleted_at = None
            wallet = existing
        else:
            wallet = Wallet(
                user_id=user_id,
                balance=ZERO,
                total_earned=ZERO,
                total_burned=ZERO,
                total_expired=ZERO,
            )
            db.session.add(wallet)

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateError('Wallet', f'user_id {user_id}')

        logger.info(f"Wallet {'reopened' if existing else 'opened'} for user {user_id} at {now.isoformat()}")
        return wallet

    def retire_wallet(self, user_id: str) -> Wallet:
        """Soft-retire a user's wallet. Its rows are kept for audit."""
        with wallet_unit_of_work(self.locks, user_id) as wallet:
            wallet.deleted_at = self.clock()
        logger.info(f"Wallet retired for user {user_id} with balance {wallet.balance}")
        return wallet
