"""
Manual transaction coordination over a single store connection.

    IDLE --begin()--> STARTED --commit()---> COMMITTED --close()--> CLOSED
                              --rollback()-> ROLLED_BACK --close()--> CLOSED

``close()`` runs on every exit path when the coordinator is used as a
context manager. Closing a coordinator that is still STARTED rolls the
transaction back first. Closing twice is a no-op.
"""

import time
import uuid
from enum import Enum
from typing import Optional

from sqlalchemy.engine import Connection, RootTransaction
from sqlalchemy.exc import SQLAlchemyError

from fulfillment.core.logging_config import get_logger, transaction_id_var
from fulfillment.domain.errors import FulfillmentError, TransactionError

from .db import Database

logger = get_logger(__name__)


class TransactionState(str, Enum):
    IDLE = "IDLE"
    STARTED = "STARTED"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    CLOSED = "CLOSED"


class TransactionCoordinator:
    def __init__(self, database: Database):
        self.database = database
        self.state = TransactionState.IDLE
        self.transaction_id = uuid.uuid4().hex[:12]
        self._connection: Optional[Connection] = None
        self._transaction: Optional[RootTransaction] = None
        self._context_token = None
        self._started_at: Optional[float] = None

    def __enter__(self) -> "TransactionCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def connection(self) -> Connection:
        """The transactional handle; only usable while STARTED"""
        if self.state is not TransactionState.STARTED or self._connection is None:
            raise TransactionError(f"Transaction {self.transaction_id} is {self.state.value}, not STARTED")
        return self._connection

    def begin(self) -> Connection:
        if self.state is not TransactionState.IDLE:
            raise TransactionError(
                f"begin() is only valid from IDLE; transaction {self.transaction_id} is {self.state.value}"
            )
        # StoreConnectionError propagates unchanged: nothing was started yet
        connection = self.database.connect()
        try:
            self._transaction = connection.begin()
        except SQLAlchemyError as exc:
            connection.close()
            raise TransactionError(f"Could not start transaction: {exc}", cause=exc) from exc
        self._connection = connection
        self.state = TransactionState.STARTED
        self._started_at = time.perf_counter()
        self._context_token = transaction_id_var.set(self.transaction_id)
        logger.info("Transaction started")
        return connection

    def commit(self) -> None:
        self._require_started("commit")
        try:
            self._transaction.commit()
        except SQLAlchemyError as exc:
            logger.error("Commit failed", exc_info=True)
            raise TransactionError(f"Commit failed: {exc}", cause=exc) from exc
        self.state = TransactionState.COMMITTED
        logger.info("Transaction committed", extra={'duration': self._elapsed()})
        self._release()

    def rollback(self) -> None:
        self._require_started("rollback")
        try:
            self._transaction.rollback()
        except SQLAlchemyError as exc:
            logger.error("Rollback failed", exc_info=True)
            self.state = TransactionState.ROLLED_BACK
            self._release()
            raise TransactionError(f"Rollback failed: {exc}", cause=exc) from exc
        self.state = TransactionState.ROLLED_BACK
        logger.warning("Transaction rolled back", extra={'duration': self._elapsed()})
        self._release()

    def close(self) -> None:
        if self.state is TransactionState.CLOSED:
            return
        try:
            if self.state is TransactionState.STARTED:
                logger.warning("Transaction closed while still open; rolling back")
                self.rollback()
        finally:
            self._release()
            self.state = TransactionState.CLOSED

    def _require_started(self, operation: str) -> None:
        if self.state is not TransactionState.STARTED:
            raise TransactionError(
                f"{operation}() is only valid from STARTED; transaction {self.transaction_id} is {self.state.value}"
            )

    def _elapsed(self) -> float:
        return time.perf_counter() - self._started_at if self._started_at is not None else 0.0

    def _release(self) -> None:
        connection, self._connection = self._connection, None
        self._transaction = None
        if connection is not None:
            connection.close()
        if self._context_token is not None:
            transaction_id_var.reset(self._context_token)
            self._context_token = None


def run_in_transaction(database: Database, work, description: str = "unit of work"):
    """Run ``work(conn)`` inside one coordinated transaction.

    Commits on success. Any failure of ``work`` or of the commit rolls back
    and is re-raised as a single TransactionError chained to its cause.
    """
    with TransactionCoordinator(database) as tx:
        conn = tx.begin()
        try:
            result = work(conn)
            tx.commit()
        except Exception as exc:
            if tx.state is TransactionState.STARTED:
                tx.rollback()
            if isinstance(exc, TransactionError) and exc.cause is not None:
                raise
            detail = exc.message if isinstance(exc, FulfillmentError) else str(exc)
            raise TransactionError(f"{description} failed and was rolled back: {detail}", cause=exc) from exc
        return result
