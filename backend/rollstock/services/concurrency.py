# Overview: Atomic-unit helpers: row locking, rollback-on-failure and retry on lost races.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientStoreError
from ..extensions import db



def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (it serializes writers at the
    database level instead), but other DBs will honor it.
    """
    return query.with_for_update()


def _retry_settings(attempts, backoff_base):
    config = current_app.config
    if attempts is None:
        attempts = config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("RETRY_BACKOFF_BASE", 0.1)
    return attempts, backoff_base, config.get("RETRY_BACKOFF_MAX", 1.0)


def is_unique_violation(exc: IntegrityError, targets) -> bool:
    """
    True when `exc` is a unique violation on one of `targets`.

    Targets are "table.column" names or constraint names. SQLite reports
    "UNIQUE constraint failed: table.column"; PostgreSQL names the
    constraint (default "table_column_key").
    """
    message = str(getattr(exc, "orig", exc))
    for target in targets:
        if target in message:
            return True
        if "." in target and f"{target.replace('.', '_')}_key" in message:
            return True
    return False


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None,
                   retry_on_unique=()):
    """
    Execute one atomic unit: func() does its reads and writes and commits.

    Any exception rolls the session back, so a unit never leaves partial
    writes behind. Lost races are retried from scratch with exponential
    backoff:
    - OperationalError (deadlocks, "database is locked")
    - StaleDataError (optimistic version conflicts)
    - IntegrityError on one of the retry_on_unique targets (codes and
      sequences derived from existing rows can collide with a concurrent
      insert; a re-read picks the next free value)

    Any other IntegrityError is deterministic and propagates unchanged.
    When attempts run out the failure surfaces as TransientStoreError.
    Business errors are re-raised unchanged after the rollback.
    """
    attempts, backoff_base, backoff_max = _retry_settings(attempts, backoff_base)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            if isinstance(exc, IntegrityError) and not is_unique_violation(exc, retry_on_unique):
                raise
            if attempt >= attempts - 1:
                current_app.logger.error(
                    "Atomic unit failed after %d attempts: %s", attempts, exc.__class__.__name__
                )
                raise TransientStoreError() from exc
            current_app.logger.debug(
                "Retrying atomic unit (attempt %d/%d) after %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(min(backoff_base * (2 ** attempt), backoff_max))
        except Exception:
            db.session.rollback()
            raise
    raise TransientStoreError()
