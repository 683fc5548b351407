"""
Transaction Helper Service

Wraps service operations in a single database transaction:
- Commit on success, rollback on any failure
- Domain errors propagate unchanged to the request boundary
- SQLAlchemy failures surface as InfrastructureError, never retried here
- Per-trip mutexes for check-then-act sequences on one trip
"""

from contextlib import contextmanager
from functools import wraps
from typing import Callable, Hashable
import logging
import threading
import weakref
from sqlalchemy.exc import SQLAlchemyError
from app import db
from errors import FleetServiceError, InfrastructureError

logger = logging.getLogger(__name__)

class TransactionHelper:
    """Helper class for managing database transactions safely"""

    @staticmethod
    def with_transaction(func: Callable) -> Callable:
        """
        Decorator that wraps a function in a database transaction.

        The transaction is committed when the function returns. Any exception
        rolls it back so the entity keeps its prior persisted state; the caller
        decides whether to retry.

        Usage:
            @TransactionHelper.with_transaction
            def start_trip(self, trip_id, caller):
                # Your database operations here
                pass
        """
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
                db.session.commit()
                return result
            except FleetServiceError:
                db.session.rollback()
                raise
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Transaction failed in {func.__name__}: {str(e)}")
                raise InfrastructureError() from e
        return wrapper

    @staticmethod
    def execute_with_rollback(operation: Callable, *args, **kwargs):
        """
        Execute a read-only or standalone operation, mapping persistence
        failures to InfrastructureError.
        """
        try:
            return operation(*args, **kwargs)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Database operation failed: {str(e)}")
            raise InfrastructureError() from e


class TripLockRegistry:
    """
    Process-wide registry of per-trip mutexes.

    Held across a read-modify-write sequence on one trip (drop + completion
    check) so two requests in this process cannot interleave on the same trip.
    Locks for different trips are independent. An entry lives only while some
    caller holds or waits on its mutex.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._trip_locks = weakref.WeakValueDictionary()

    def _lock_for(self, trip_id: Hashable) -> threading.Lock:
        with self._lock:
            trip_lock = self._trip_locks.get(trip_id)
            if trip_lock is None:
                trip_lock = threading.Lock()
                self._trip_locks[trip_id] = trip_lock
            return trip_lock

    @contextmanager
    def hold(self, trip_id: Hashable):
        trip_lock = self._lock_for(trip_id)
        with trip_lock:
            yield

    def __len__(self):
        with self._lock:
            return len(self._trip_locks)
