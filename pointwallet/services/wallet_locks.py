"""
Per-wallet serialization for ledger mutations.

Two layers, both taken for every earn, burn and per-batch expiry:

1. WalletLockRegistry: an in-process lock per wallet, acquired with a
   timeout. Keeps threads of one worker from interleaving on a wallet.
2. A database row lock on the wallet (SELECT ... FOR UPDATE), held until
   the unit of work commits. Keeps separate worker processes apart. On
   PostgreSQL the wait is bounded with SET LOCAL lock_timeout.

A timeout on either layer raises WalletBusyError, which is safe to retry.
Different wallets never contend.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from ..extensions import db
from ..models.wallet import Wallet
from ..utils.exceptions import WalletBusyError, WalletNotFoundError

logger = logging.getLogger(__name__)


class WalletLockRegistry:
    """Keyed locks, created on first use and dropped when nobody holds or waits on them."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, users]

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: float = None):
        """
        Hold the lock for key for the duration of the block.

        Raises:
            WalletBusyError: Lock not acquired within timeout seconds
        """
        timeout = self.timeout if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(f"Wallet lock wait timed out after {timeout}s for {key}")
                raise WalletBusyError(key, timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self):
        with self._guard:
            return len(self._locks)


def lock_wallet_row(user_id: str, timeout: float) -> Optional[Wallet]:
    """
    Load the user's wallet with an exclusive row lock.

    The row is re-read even if the session already holds it, so the caller
    always sees the last committed balance.

    Raises:
        WalletBusyError: The database lock wait timed out
    """
    session = db.session
    if session.get_bind().dialect.name == 'postgresql':
        session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))

    try:
        return Wallet.query.filter(
            Wallet.user_id == user_id,
            Wallet.deleted_at.is_(None),
        ).with_for_update().populate_existing().first()
    except OperationalError as e:
        session.rollback()
        logger.warning(f"Row lock on wallet of user {user_id} failed: {e}")
        raise WalletBusyError(user_id, timeout) from e


@contextmanager
def wallet_unit_of_work(locks: WalletLockRegistry, user_id: str):
    """
    Serialized, atomic unit of work on one wallet.

    Yields the locked Wallet. Commits when the block finishes, rolls back
    and re-raises on any exception, so a mutation is either fully
    committed or not visible at all.

    Raises:
        WalletNotFoundError: The user has no (live) wallet
        WalletBusyError: A lock was not acquired in time
    """
    with locks.hold(user_id):
        # Drop any snapshot left over from reads made before the lock
        db.session.rollback()
        try:
            wallet = lock_wallet_row(user_id, locks.timeout)
            if wallet is None:
                raise WalletNotFoundError(user_id)
            yield wallet
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
