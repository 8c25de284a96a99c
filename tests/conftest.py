"""
Shared fixtures for the points wallet tests.

The app fixture keeps one application context pushed for the whole test,
so fixtures and tests share a single session on the in-memory database.
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from pointwallet import create_app
from pointwallet.extensions import db
from pointwallet.models import Service, ServiceConfig, Wallet
from pointwallet.services import LedgerService, ExpirySweep, RuleStore, get_wallet_locks
from pointwallet.utils.clock import utcnow


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def app():
    """Create test application."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock():
    return FrozenClock(utcnow().replace(microsecond=0))


@pytest.fixture
def locks(app):
    return get_wallet_locks(app)


@pytest.fixture
def ledger_service(locks, clock):
    return LedgerService(locks=locks, clock=clock)


@pytest.fixture
def expiry_sweep(locks, clock):
    return ExpirySweep(locks=locks, clock=clock)


@pytest.fixture
def rule_store(app, clock):
    return RuleStore(clock=clock)


@pytest.fixture
def sample_service(app):
    """An active car wash service."""
    service = Service(name='Sparkle Car Wash', category='CAR_WASH', is_active=True)
    db.session.add(service)
    db.session.commit()
    return service


@pytest.fixture
def earn_rule(sample_service, clock):
    """1 point per 10 spent, minimum spend 5, capped at 500 points, 365 day expiry."""
    rule = ServiceConfig(
        service_id=sample_service.id,
        rule_type='EARN',
        points_per_unit=Decimal('1'),
        unit_amount=Decimal('10'),
        min_amount=Decimal('5'),
        max_points=Decimal('500'),
        expiry_days=365,
        valid_from=clock() - timedelta(days=1),
        is_active=True,
    )
    db.session.add(rule)
    db.session.commit()
    return rule


@pytest.fixture
def burn_rule(sample_service, clock):
    """1 point is worth 10."""
    rule = ServiceConfig(
        service_id=sample_service.id,
        rule_type='BURN',
        points_per_unit=Decimal('1'),
        unit_amount=Decimal('10'),
        valid_from=clock() - timedelta(days=1),
        is_active=True,
    )
    db.session.add(rule)
    db.session.commit()
    return rule


@pytest.fixture
def sample_wallet(app):
    """An empty wallet for user-1."""
    wallet = Wallet(
        user_id='user-1',
        balance=Decimal('0'),
        total_earned=Decimal('0'),
        total_burned=Decimal('0'),
        total_expired=Decimal('0'),
    )
    db.session.add(wallet)
    db.session.commit()
    return wallet
