# Overview: Service-layer operations for concurrency; retry policy and optimistic-locking errors.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ConcurrencyConflict(Exception):
    """
    Optimistic concurrency check failed (row version changed under us).

    Never retried automatically: the caller must re-read / re-quote and
    decide again with fresh inputs.
    """
    code = "CONCURRENCY_CONFLICT"


class PersistenceFailure(Exception):
    """Transient store failure that persisted through every retry attempt."""
    code = "PERSISTENCE_FAILURE"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on transient failures.

    Retries on OperationalError (deadlocks, locks, dropped connections)
    with exponential backoff, then raises PersistenceFailure.
    StaleDataError (optimistic locking conflict) is converted to
    ConcurrencyConflict immediately and is NOT retried.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            raise ConcurrencyConflict("Record was modified concurrently; reload and try again") from exc
        except ConcurrencyConflict:
            db.session.rollback()
            raise
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceFailure(f"Store unavailable after {attempts} attempts") from exc
            current_app.logger.warning(
                "Transient store failure (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
