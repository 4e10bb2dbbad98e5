# Overview: Retry and conditional-write helpers shared by every service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StateConflictError, UnavailableError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _retry_policy(attempts, backoff_base):
    config = current_app.config
    if attempts is None:
        attempts = config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("RETRY_BACKOFF_SECONDS", 0.1)
    return max(1, int(attempts)), float(backoff_base)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, timeouts) and
    StaleDataError (optimistic locking conflicts). An exhausted StaleDataError
    becomes StateConflictError. An OperationalError that
    survives every attempt becomes UnavailableError: the caller may retry,
    but must re-read first because the write outcome is unknown.

    Any other error raised by `func` rolls back whatever it had written
    and propagates unchanged.
    """
    attempts, backoff_base = _retry_policy(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, OperationalError):
                    current_app.logger.error("Store unavailable after %d attempts: %s", attempts, exc)
                    raise UnavailableError(
                        "The database did not respond in time; re-check the record before retrying"
                    ) from exc
                raise StateConflictError("The record was changed concurrently; refresh and retry") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def conditional_update(model, where, values: dict) -> int:
    """
    Compare-and-swap write: UPDATE model SET values WHERE <where>.

    Bumps version_id so that ORM copies loaded earlier fail their own
    optimistic check instead of overwriting this change. Returns the
    number of rows matched; 0 means the guard did not hold.
    """
    values = dict(values)
    if "version_id" in model.__table__.c:
        values["version_id"] = model.version_id + 1
    stmt = (
        update(model)
        .where(*where)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    # Loaded instances no longer reflect the row
    db.session.expire_all()
    return result.rowcount
