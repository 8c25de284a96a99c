"""
Transaction Recorder.

Appends the audit row for each balance-changing operation. The row is
written inside the caller's unit of work, after the ledger mutation, in a
savepoint: a failed insert is retried without disturbing the batch and
wallet changes already flushed. If every attempt fails the error
propagates and the unit of work rolls everything back.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.transaction import Transaction, TransactionStatus

logger = logging.getLogger(__name__)


class TransactionRecorder:
    """Write immutable Transaction rows."""

    def __init__(self, max_attempts: int = 3):
        self.max_attempts = max(1, max_attempts)

    def record(
        self,
        user_id: str,
        service_id: Optional[str],
        transaction_type: str,
        points: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        amount: Optional[Decimal] = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
        status: str = TransactionStatus.COMPLETED.value,
        created_at: Optional[datetime] = None,
    ) -> Transaction:
        """
        Append one transaction row.

        created_at should come from the caller's clock; the column default
        is only a fallback.

        Returns:
            The flushed Transaction

        Raises:
            SQLAlchemyError: The insert failed on every attempt
        """
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            transaction = Transaction(
                user_id=user_id,
                service_id=service_id,
                type=transaction_type,
                amount=amount,
                points=points,
                balance_before=balance_before,
                balance_after=balance_after,
                status=status,
                description=description,
                meta=metadata,
            )
            if created_at is not None:
                transaction.created_at = created_at
                transaction.updated_at = created_at
            savepoint = db.session.begin_nested()
            try:
                db.session.add(transaction)
                db.session.flush()
                savepoint.commit()
                return transaction
            except SQLAlchemyError as e:
                savepoint.rollback()
                last_error = e
                logger.warning(
                    f"Recording {transaction_type} transaction for user {user_id} failed "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )

        logger.error(
            f"Giving up recording {transaction_type} transaction for user {user_id} "
            f"after {self.max_attempts} attempts"
        )
        raise last_error
