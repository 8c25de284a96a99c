"""
Tests for LedgerService.

This test module covers:
- Earning points (rule resolution, min gate, max clamp, expiry)
- Burning points (FIFO, insufficient balance, redemption value)
- Failure paths that must leave the wallet untouched
- Balance, batch, expiry and statistics queries
- Transaction history and corrections
- Wallet open/retire and reconciliation
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from pointwallet.extensions import db
from pointwallet.models import PointBalance, Transaction, Wallet
from pointwallet.services import LedgerService, TransactionRecorder, WalletLockRegistry
from pointwallet.services.ledger_service import MAX_EXPIRING_DAYS
from pointwallet.utils.exceptions import (
    BelowMinimumAmountError,
    DuplicateError,
    InactiveResourceError,
    InsufficientBalanceError,
    InvalidStatusTransitionError,
    RuleNotFoundError,
    ServiceNotFoundError,
    TransactionNotFoundError,
    ValidationError,
    WalletBusyError,
    WalletNotFoundError,
)


def reload_wallet(user_id='user-1'):
    return Wallet.query.filter_by(user_id=user_id).populate_existing().one()


class TestEarnPoints:
    """Tests for LedgerService.earn_points."""

    def test_earn_points_basic(self, ledger_service, sample_service, earn_rule, sample_wallet, clock):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('120.00'))

        assert txn.type == 'EARN'
        assert txn.status == 'COMPLETED'
        assert txn.points == Decimal('12.00')
        assert txn.amount == Decimal('120.00')
        assert txn.balance_before == Decimal('0.00')
        assert txn.balance_after == Decimal('12.00')
        assert txn.meta['rule_id'] == earn_rule.id

        wallet = reload_wallet()
        assert wallet.balance == Decimal('12.00')
        assert wallet.total_earned == Decimal('12.00')

        batch = PointBalance.query.filter_by(wallet_id=wallet.id).one()
        assert batch.points == Decimal('12.00')
        assert batch.transaction_id == txn.id
        assert batch.expires_at == clock() + timedelta(days=365)

    def test_earn_accepts_string_amount(self, ledger_service, sample_service, earn_rule, sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, '33.33')

        assert txn.points == Decimal('3.33')

    def test_earn_keeps_caller_metadata(self, ledger_service, sample_service, earn_rule, sample_wallet):
        txn = ledger_service.earn_points(
            'user-1', sample_service.id, Decimal('50'),
            description='Wash #991', metadata={'order_id': '991'}
        )

        assert txn.description == 'Wash #991'
        assert txn.meta['order_id'] == '991'

    def test_below_minimum_changes_nothing(self, ledger_service, sample_service, earn_rule, sample_wallet):
        with pytest.raises(BelowMinimumAmountError) as exc_info:
            ledger_service.earn_points('user-1', sample_service.id, Decimal('4.99'))

        assert exc_info.value.code == 'BELOW_MINIMUM_AMOUNT'
        assert PointBalance.query.count() == 0
        assert Transaction.query.count() == 0
        assert reload_wallet().balance == Decimal('0.00')

    def test_max_points_clamp(self, ledger_service, sample_service, earn_rule, sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100000'))

        assert txn.points == Decimal('500.00')
        assert txn.amount == Decimal('100000.00')

    def test_no_expiry_when_rule_has_none(self, ledger_service, sample_service, earn_rule, sample_wallet):
        earn_rule.expiry_days = None
        db.session.commit()

        ledger_service.earn_points('user-1', sample_service.id, Decimal('20'))

        assert PointBalance.query.one().expires_at is None

    @pytest.mark.parametrize('amount', [Decimal('0'), Decimal('-5'), Decimal('1.234'), Decimal('1000001'), 'abc', None])
    def test_invalid_amount_rejected(self, ledger_service, sample_service, earn_rule, sample_wallet, amount):
        with pytest.raises(ValidationError):
            ledger_service.earn_points('user-1', sample_service.id, amount)

        assert Transaction.query.count() == 0

    def test_overlong_description_rejected_before_lock(self, ledger_service, sample_service, earn_rule,
                                                       sample_wallet):
        with patch('pointwallet.services.ledger_service.wallet_unit_of_work') as unit_of_work:
            with pytest.raises(ValidationError) as exc_info:
                ledger_service.earn_points('user-1', sample_service.id, Decimal('100'), description='x' * 501)

        assert exc_info.value.code == 'INVALID_DESCRIPTION'
        unit_of_work.assert_not_called()
        assert Transaction.query.count() == 0
        assert reload_wallet().balance == Decimal('0.00')

    def test_created_at_follows_injected_clock(self, ledger_service, sample_service, earn_rule, sample_wallet,
                                               clock):
        clock.advance(days=10)

        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        assert txn.created_at == clock()
        assert ledger_service.get_transactions('user-1', start_date=clock(), end_date=clock()).total == 1

    def test_unknown_wallet(self, ledger_service, sample_service, earn_rule):
        with pytest.raises(WalletNotFoundError):
            ledger_service.earn_points('nobody', sample_service.id, Decimal('100'))

        assert PointBalance.query.count() == 0

    def test_unknown_service(self, ledger_service, sample_wallet):
        with pytest.raises(ServiceNotFoundError):
            ledger_service.earn_points('user-1', 'missing-service', Decimal('100'))

    def test_inactive_service_rejected_before_rule_lookup(self, ledger_service, sample_service, sample_wallet):
        sample_service.is_active = False
        db.session.commit()

        with patch.object(ledger_service.resolver, 'resolve_active_rule') as resolve:
            with pytest.raises(InactiveResourceError):
                ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        resolve.assert_not_called()

    def test_no_earn_rule(self, ledger_service, sample_service, burn_rule, sample_wallet):
        with pytest.raises(RuleNotFoundError):
            ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

    def test_recorder_failure_rolls_back_ledger(self, ledger_service, sample_service, earn_rule, sample_wallet):
        error = OperationalError('INSERT INTO transactions', {}, Exception('disk I/O error'))
        with patch.object(ledger_service.recorder, 'record', side_effect=error):
            with pytest.raises(OperationalError):
                ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        assert PointBalance.query.count() == 0
        assert Transaction.query.count() == 0
        assert reload_wallet().balance == Decimal('0.00')

    def test_wallet_busy(self, sample_service, earn_rule, sample_wallet, clock):
        locks = WalletLockRegistry(timeout=0.05)
        service = LedgerService(locks=locks, clock=clock)

        with locks.hold('user-1'):
            with pytest.raises(WalletBusyError) as exc_info:
                service.earn_points('user-1', sample_service.id, Decimal('100'))

        assert exc_info.value.retryable is True
        assert reload_wallet().balance == Decimal('0.00')


class TestBurnPoints:
    """Tests for LedgerService.burn_points."""

    def test_burn_points_basic(self, ledger_service, sample_service, earn_rule, burn_rule, sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('1000'))

        txn = ledger_service.burn_points('user-1', sample_service.id, Decimal('40'))

        assert txn.type == 'BURN'
        assert txn.points == Decimal('40.00')
        assert txn.amount == Decimal('400.00')
        assert txn.balance_before == Decimal('100.00')
        assert txn.balance_after == Decimal('60.00')

        wallet = reload_wallet()
        assert wallet.balance == Decimal('60.00')
        assert wallet.total_burned == Decimal('40.00')

    def test_rounding_round_trip(self, ledger_service, sample_service, earn_rule, burn_rule, sample_wallet):
        earned = ledger_service.earn_points('user-1', sample_service.id, Decimal('33.33'))
        burned = ledger_service.burn_points('user-1', sample_service.id, earned.points)

        assert earned.points == Decimal('3.33')
        assert burned.amount == Decimal('33.30')
        assert reload_wallet().balance == Decimal('0.00')

    def test_burn_uses_fifo_across_earns(self, ledger_service, sample_service, earn_rule, burn_rule,
                                         sample_wallet, clock):
        for amount in ('100', '200', '300'):
            ledger_service.earn_points('user-1', sample_service.id, Decimal(amount))
            clock.advance(days=1)

        ledger_service.burn_points('user-1', sample_service.id, Decimal('15'))

        batches = PointBalance.query.order_by(PointBalance.earned_at).populate_existing().all()
        assert [b.points for b in batches] == [Decimal('0.00'), Decimal('15.00'), Decimal('30.00')]

    def test_insufficient_balance_changes_nothing(self, ledger_service, sample_service, earn_rule, burn_rule,
                                                  sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger_service.burn_points('user-1', sample_service.id, Decimal('10.01'))

        assert exc_info.value.current == Decimal('10.00')
        assert reload_wallet().balance == Decimal('10.00')
        assert Transaction.query.filter_by(type='BURN').count() == 0

    def test_overlong_description_rejected(self, ledger_service, sample_service, earn_rule, burn_rule,
                                           sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        with pytest.raises(ValidationError) as exc_info:
            ledger_service.burn_points('user-1', sample_service.id, Decimal('1'), description='x' * 501)

        assert exc_info.value.field == 'description'
        assert reload_wallet().balance == Decimal('10.00')
        assert Transaction.query.filter_by(type='BURN').count() == 0

    def test_burn_created_at_follows_injected_clock(self, ledger_service, sample_service, earn_rule, burn_rule,
                                                    sample_wallet, clock):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))
        clock.advance(days=3)

        txn = ledger_service.burn_points('user-1', sample_service.id, Decimal('1'))

        assert txn.created_at == clock()

    def test_no_burn_rule(self, ledger_service, sample_service, earn_rule, sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        with pytest.raises(RuleNotFoundError) as exc_info:
            ledger_service.burn_points('user-1', sample_service.id, Decimal('1'))

        assert 'redemption' in exc_info.value.message

    def test_conservation_after_mixed_operations(self, ledger_service, expiry_sweep, sample_service, earn_rule,
                                                 burn_rule, sample_wallet, clock):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('250'))
        ledger_service.burn_points('user-1', sample_service.id, Decimal('7.5'))
        ledger_service.earn_points('user-1', sample_service.id, Decimal('99.99'))
        clock.advance(days=400)
        ledger_service.earn_points('user-1', sample_service.id, Decimal('60'))
        expiry_sweep.sweep_expired()

        wallet = reload_wallet()
        active = sum(b.points for b in ledger_service.get_active_batches('user-1'))
        assert wallet.balance == active
        assert wallet.total_earned - wallet.total_burned - wallet.total_expired == wallet.balance
        assert ledger_service.reconcile_wallet('user-1')['balanced'] is True


class TestQueries:
    """Tests for balance, batch and statistics queries."""

    def test_get_balance(self, ledger_service, sample_service, earn_rule, sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('55'))

        assert ledger_service.get_balance('user-1') == Decimal('5.50')

    def test_get_balance_unknown_wallet(self, ledger_service, app):
        with pytest.raises(WalletNotFoundError):
            ledger_service.get_balance('nobody')

    def test_active_batches_in_consumption_order(self, ledger_service, sample_service, earn_rule, sample_wallet,
                                                 clock):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))
        earn_rule.expiry_days = 30
        db.session.commit()
        clock.advance(days=1)
        ledger_service.earn_points('user-1', sample_service.id, Decimal('200'))

        batches = ledger_service.get_active_batches('user-1')

        # The later earn expires sooner, so it is consumed first
        assert [b.points for b in batches] == [Decimal('20.00'), Decimal('10.00')]

    def test_get_expiring_within(self, ledger_service, sample_service, earn_rule, sample_wallet, clock):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))
        clock.advance(days=340)

        assert ledger_service.get_expiring_within('user-1', 7) == []
        soon = ledger_service.get_expiring_within('user-1', 30)
        assert len(soon) == 1
        assert soon[0].days_until_expiry(clock()) == 25

    def test_get_expiring_within_rejects_negative_days(self, ledger_service, sample_wallet):
        with pytest.raises(ValidationError):
            ledger_service.get_expiring_within('user-1', -1)

    def test_get_expiring_within_rejects_huge_window(self, ledger_service, sample_wallet):
        with pytest.raises(ValidationError) as exc_info:
            ledger_service.get_expiring_within('user-1', 5000000)

        assert exc_info.value.code == 'INVALID_DAYS'

    def test_get_expiring_within_accepts_maximum_window(self, ledger_service, sample_service, earn_rule,
                                                        sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        assert len(ledger_service.get_expiring_within('user-1', MAX_EXPIRING_DAYS)) == 1

    def test_wallet_statistics(self, ledger_service, sample_service, earn_rule, burn_rule, sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('300'))
        ledger_service.burn_points('user-1', sample_service.id, Decimal('5'))

        stats = ledger_service.get_wallet_statistics('user-1')

        assert stats['balance'] == '25.00'
        assert stats['total_earned'] == '30.00'
        assert stats['total_burned'] == '5.00'
        assert stats['earned_last_30_days'] == '30.00'
        assert stats['burned_last_30_days'] == '5.00'
        assert stats['active_batches'] == 1
        assert stats['expiring_soon']['batches'] == 0

    def test_preview_earn_does_not_mutate(self, ledger_service, sample_service, earn_rule, sample_wallet):
        preview = ledger_service.preview_earn(sample_service.id, Decimal('4'))

        assert preview['eligible'] is False
        assert preview['points'] == '0.00'
        assert ledger_service.preview_earn(sample_service.id, '80')['points'] == '8.00'
        assert Transaction.query.count() == 0

    def test_preview_burn(self, ledger_service, sample_service, burn_rule):
        preview = ledger_service.preview_burn(sample_service.id, Decimal('3.33'))

        assert preview['value'] == '33.30'


class TestTransactionHistory:

    def test_history_newest_first_with_filters(self, ledger_service, sample_service, earn_rule, burn_rule,
                                               sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))
        ledger_service.earn_points('user-1', sample_service.id, Decimal('200'))
        ledger_service.burn_points('user-1', sample_service.id, Decimal('1'))

        page = ledger_service.get_transactions('user-1')
        assert page.total == 3

        earns = ledger_service.get_transactions('user-1', transaction_type='earn')
        assert earns.total == 2
        assert all(t.type == 'EARN' for t in earns.items)

        limited = ledger_service.get_transactions('user-1', page=2, limit=2)
        assert len(limited.items) == 1

    def test_history_unknown_type(self, ledger_service, sample_wallet):
        with pytest.raises(ValidationError):
            ledger_service.get_transactions('user-1', transaction_type='GIFT')

    def test_get_transaction_scoped_to_user(self, ledger_service, sample_service, earn_rule, sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        assert ledger_service.get_transaction('user-1', txn.id).id == txn.id
        with pytest.raises(TransactionNotFoundError):
            ledger_service.get_transaction('user-2', txn.id)


class TestCorrections:

    def test_correct_description_and_metadata(self, ledger_service, sample_service, earn_rule, sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        corrected = ledger_service.correct_transaction(
            txn.id, description='Corrected', metadata={'note': 'typo'}
        )

        assert corrected.description == 'Corrected'
        assert corrected.meta == {'note': 'typo'}
        assert corrected.points == Decimal('10.00')

    def test_completed_can_be_reversed_without_moving_points(self, ledger_service, sample_service, earn_rule,
                                                             sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        ledger_service.correct_transaction(txn.id, status='REVERSED')

        assert db.session.get(Transaction, txn.id).status == 'REVERSED'
        assert reload_wallet().balance == Decimal('10.00')

    def test_invalid_status_transition(self, ledger_service, sample_service, earn_rule, sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        with pytest.raises(InvalidStatusTransitionError):
            ledger_service.correct_transaction(txn.id, status='PENDING')

    def test_overlong_correction_description_changes_nothing(self, ledger_service, sample_service, earn_rule,
                                                             sample_wallet):
        txn = ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        with pytest.raises(ValidationError):
            ledger_service.correct_transaction(txn.id, status='REVERSED', description='x' * 501)

        assert db.session.get(Transaction, txn.id).status == 'COMPLETED'

    def test_nothing_to_correct(self, ledger_service, app):
        with pytest.raises(ValidationError):
            ledger_service.correct_transaction('any')


class TestWalletLifecycle:

    def test_open_wallet(self, ledger_service, app):
        wallet = ledger_service.open_wallet('user-9')

        assert wallet.balance == Decimal('0')
        assert ledger_service.get_balance('user-9') == Decimal('0.00')

    def test_open_wallet_twice(self, ledger_service, sample_wallet):
        with pytest.raises(DuplicateError):
            ledger_service.open_wallet('user-1')

    def test_retire_and_reopen(self, ledger_service, sample_service, earn_rule, sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        ledger_service.retire_wallet('user-1')
        with pytest.raises(WalletNotFoundError):
            ledger_service.get_balance('user-1')
        with pytest.raises(WalletNotFoundError):
            ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))

        ledger_service.open_wallet('user-1')
        assert ledger_service.get_balance('user-1') == Decimal('10.00')

    def test_reconcile_detects_drift(self, ledger_service, sample_service, earn_rule, sample_wallet):
        ledger_service.earn_points('user-1', sample_service.id, Decimal('100'))
        wallet = reload_wallet()
        wallet.balance = Decimal('11.00')
        db.session.commit()

        report = ledger_service.reconcile_wallet('user-1')

        assert report['balanced'] is False
        assert {d['check'] for d in report['discrepancies']} == {'batch_total', 'lifetime_net'}


class TestTransactionRecorder:

    def test_retries_failed_insert(self, app, sample_wallet):
        recorder = TransactionRecorder(max_attempts=3)
        real_flush = db.session.flush
        calls = {'n': 0}

        def flaky_flush(*args, **kwargs):
            calls['n'] += 1
            if calls['n'] == 1:
                raise OperationalError('INSERT INTO transactions', {}, Exception('database is locked'))
            return real_flush(*args, **kwargs)

        with patch.object(db.session, 'flush', side_effect=flaky_flush):
            txn = recorder.record(
                user_id='user-1',
                service_id=None,
                transaction_type='ADJUSTMENT',
                points=Decimal('1'),
                balance_before=Decimal('0'),
                balance_after=Decimal('1'),
            )
        db.session.commit()

        assert calls['n'] == 2
        assert Transaction.query.filter_by(id=txn.id).count() == 1

    def test_gives_up_after_max_attempts(self, app, sample_wallet):
        recorder = TransactionRecorder(max_attempts=2)
        error = OperationalError('INSERT INTO transactions', {}, Exception('database is locked'))

        with patch.object(db.session, 'flush', side_effect=error) as flush:
            with pytest.raises(OperationalError):
                recorder.record(
                    user_id='user-1',
                    service_id=None,
                    transaction_type='ADJUSTMENT',
                    points=Decimal('1'),
                    balance_before=Decimal('0'),
                    balance_after=Decimal('1'),
                )

        assert flush.call_count == 2
        db.session.rollback()
