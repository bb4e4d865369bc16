"""
    Unit of work for lending operations.

    Every write operation runs inside one `UnitOfWork`: all reads, checks
    and writes happen on a single session and commit together. Conflicting
    concurrent writes are detected by the version columns on the models
    (compare-and-set at flush time); the whole unit is rolled back and run
    again from a fresh read.
"""

import logging
import random
import time
from sqlalchemy.exc import (
    SQLAlchemyError, DBAPIError, OperationalError, DisconnectionError,
    TimeoutError as PoolTimeoutError
)
from sqlalchemy.orm.exc import StaleDataError
from lending.configs import ACTOR, MAX_RETRIES, RETRY_BACKOFF
from lending.core.models import Item
from lending.core.utils import utcnow, as_utc
from lending.core.exceptions import (
    BusinessRuleError,
    StorageError,
    TransientStorageError
)
from lending.schemas.change import ChangeAction, ItemChange

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (StaleDataError, PoolTimeoutError, DisconnectionError)

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_PGCODES = frozenset({"40001", "40P01", "55P03"})
TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "could not serialize",
    "deadlock detected",
)


def is_transient(error):
    """True for conflicts, lock waits and lost connections, where running
    the same unit of work again can succeed."""
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    if isinstance(error, OperationalError):
        if getattr(error.orig, "pgcode", None) in TRANSIENT_PGCODES:
            return True
        message = str(error.orig).lower()
        return any(text in message for text in TRANSIENT_MESSAGES)
    return False


class UnitOfWork:

    def __init__(self, session, sink, actor, now):
        self.session = session
        self.sink = sink
        self.actor = actor
        self.now = now

    def _changed_items(self):
        candidates = list(self.session.new) + list(self.session.identity_map.values())
        return [obj for obj in candidates if isinstance(obj, Item) and obj.has_changes]

    def publish_changes(self):
        """Delivers queued item notifications to the sink, inside this
        unit of work."""
        pending = [(item, item.pop_changes()) for item in self._changed_items()]
        for item, changes in pending:
            item.updated_at = self.now
            if any(action is ChangeAction.INSERT for action, _, _ in changes):
                item.created_at = self.now
        # item ids exist only after the flush
        self.session.flush()
        for item, changes in pending:
            for action, before, after in changes:
                self.sink.record(self.session, ItemChange(
                    item_id=item.id,
                    action=action,
                    before=before,
                    after=after,
                    changed_at=self.now,
                    changed_by=self.actor
                ))
        self.session.flush()

    def commit(self):
        self.publish_changes()
        self.session.commit()

    def rollback(self):
        self.session.rollback()


class Transactor:
    """Runs operations as retried units of work.

    Business rule errors propagate untouched and are never retried.
    Version conflicts, lock timeouts and lost connections are retried up
    to `max_retries` times; any other storage failure surfaces as
    `StorageError` without driver detail.
    """

    def __init__(self, session_factory, sink, clock=utcnow, actor=ACTOR,
                 max_retries=MAX_RETRIES, backoff=RETRY_BACKOFF):
        self.session_factory = session_factory
        self.sink = sink
        self.clock = clock
        self.actor = actor
        self.max_retries = max(1, max_retries)
        self.backoff = backoff

    def run(self, operation, fn, *args, actor=None, **kwargs):
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            session = self.session_factory()
            uow = UnitOfWork(session, self.sink, actor or self.actor, as_utc(self.clock()))
            try:
                result = fn(uow, *args, **kwargs)
                uow.commit()
                return result
            except BusinessRuleError as e:
                uow.rollback()
                logger.info(f"{operation} rejected: {e}")
                raise
            except SQLAlchemyError as e:
                uow.rollback()
                if not is_transient(e):
                    logger.exception(f"{operation} failed in storage")
                    raise StorageError(operation=operation) from e
                last_error = e
                logger.warning(
                    f"{operation} conflicted on attempt {attempt}/{self.max_retries}: "
                    f"{type(e).__name__}")
                if self.backoff and attempt < self.max_retries:
                    time.sleep(self.backoff * attempt * random.uniform(0.5, 1.5))
            except Exception:
                uow.rollback()
                raise
            finally:
                session.close()
        raise TransientStorageError(
            operation=operation, attempts=self.max_retries) from last_error

    def read(self, fn, *args, **kwargs):
        """Runs a read-only query function on a fresh session."""
        session = self.session_factory()
        try:
            return fn(session, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception("read failed in storage")
            raise StorageError(operation='read') from e
        finally:
            session.close()
