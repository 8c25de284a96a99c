"""
Concurrency tests for per-wallet serialization.

These run against a file-backed SQLite database so that each thread gets
its own application context, session and connection.
"""
import threading
import pytest
from datetime import timedelta
from decimal import Decimal

from pointwallet import create_app
from pointwallet.extensions import db
from pointwallet.models import Service, ServiceConfig, Wallet, Transaction
from pointwallet.services import build_ledger_service, WalletLockRegistry
from pointwallet.utils.clock import utcnow
from pointwallet.utils.exceptions import InsufficientBalanceError


@pytest.fixture
def threaded_app(tmp_path):
    app = create_app('testing', {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.db'}",
        'WALLET_LOCK_TIMEOUT': 5.0,
    })
    with app.app_context():
        db.create_all()

        service = Service(name='Tow Co', category='TOWING', is_active=True)
        db.session.add(service)
        db.session.flush()
        for rule_type in ('EARN', 'BURN'):
            db.session.add(ServiceConfig(
                service_id=service.id,
                rule_type=rule_type,
                points_per_unit=Decimal('1'),
                unit_amount=Decimal('1'),
                valid_from=utcnow() - timedelta(days=1),
                is_active=True,
            ))
        for user_id in ('user-1', 'user-2'):
            db.session.add(Wallet(
                user_id=user_id,
                balance=Decimal('0'),
                total_earned=Decimal('0'),
                total_burned=Decimal('0'),
                total_expired=Decimal('0'),
            ))
        db.session.commit()
        app.config['TEST_SERVICE_ID'] = service.id

        build_ledger_service(app).earn_points('user-1', service.id, Decimal('100'))
        build_ledger_service(app).earn_points('user-2', service.id, Decimal('100'))
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_in_threads(app, jobs):
    """Run each job in its own thread and app context, started together."""
    barrier = threading.Barrier(len(jobs))
    results = [None] * len(jobs)

    def worker(index, job):
        with app.app_context():
            barrier.wait()
            try:
                results[index] = job()
            except Exception as e:
                results[index] = e
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i, job)) for i, job in enumerate(jobs)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


class TestConcurrentBurns:

    def test_no_double_spend(self, threaded_app):
        service_id = threaded_app.config['TEST_SERVICE_ID']

        def burn():
            return build_ledger_service().burn_points('user-1', service_id, Decimal('60'))

        results = run_in_threads(threaded_app, [burn, burn])

        successes = [r for r in results if isinstance(r, Transaction)]
        failures = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert len(successes) == 1
        assert len(failures) == 1

        with threaded_app.app_context():
            wallet = Wallet.query.filter_by(user_id='user-1').one()
            assert wallet.balance == Decimal('40.00')
            assert wallet.total_burned == Decimal('60.00')
            assert Transaction.query.filter_by(user_id='user-1', type='BURN').count() == 1

    def test_many_small_burns_all_applied(self, threaded_app):
        service_id = threaded_app.config['TEST_SERVICE_ID']

        def burn():
            return build_ledger_service().burn_points('user-1', service_id, Decimal('10'))

        results = run_in_threads(threaded_app, [burn] * 5)

        assert all(isinstance(r, Transaction) for r in results)
        balances = sorted(r.balance_after for r in results)
        assert balances == [Decimal('50.00'), Decimal('60.00'), Decimal('70.00'),
                            Decimal('80.00'), Decimal('90.00')]

        with threaded_app.app_context():
            assert Wallet.query.filter_by(user_id='user-1').one().balance == Decimal('50.00')

    def test_different_wallets_proceed_independently(self, threaded_app):
        service_id = threaded_app.config['TEST_SERVICE_ID']

        def burn(user_id):
            return lambda: build_ledger_service().burn_points(user_id, service_id, Decimal('60'))

        results = run_in_threads(threaded_app, [burn('user-1'), burn('user-2')])

        assert all(isinstance(r, Transaction) for r in results)
        with threaded_app.app_context():
            assert {w.user_id: w.balance for w in Wallet.query.all()} == {
                'user-1': Decimal('40.00'),
                'user-2': Decimal('40.00'),
            }


class TestWalletLockRegistry:

    def test_lock_entries_cleaned_up(self):
        locks = WalletLockRegistry(timeout=0.1)

        with locks.hold('user-1'):
            assert len(locks) == 1

        assert len(locks) == 0

    def test_distinct_keys_do_not_block(self):
        locks = WalletLockRegistry(timeout=0.1)

        with locks.hold('user-1'):
            with locks.hold('user-2'):
                assert len(locks) == 2
