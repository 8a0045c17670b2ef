"""Retry transient persistence failures with exponential backoff.

Only connection-level trouble is retried here (dropped connections, lock
timeouts, serialization failures surfaced as OperationalError). Business
errors and integrity violations propagate untouched.
"""
import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from approval_engine.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def with_db_retry(
    db: Session,
    fn: Callable[[], T],
    *,
    label: str,
    attempts: int | None = None,
    backoff: float | None = None,
) -> T:
    """Run ``fn`` (one full unit of work), retrying it on transient DB errors.

    The session is rolled back after any failure, so a retry always starts
    from a clean transaction and re-reads what it needs, and a final failure
    leaves nothing half-written in the session.
    """
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    backoff = settings.DB_RETRY_BACKOFF_SECONDS if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except DBAPIError as exc:
            db.rollback()
            if not is_transient(exc) or attempt == attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                "%s: transient database error (attempt %d/%d), retrying in %.2fs — %s",
                label, attempt, attempts, delay, exc.orig if exc.orig is not None else exc,
            )
            time.sleep(delay)
        except Exception:
            db.rollback()
            raise

    raise RuntimeError(f"{label}: retry loop exited without a result")
