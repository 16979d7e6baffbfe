# Overview: Row locks for ledger reads and the retry loop around settlement commits.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Errors that mean "another till got there first", not "the input is wrong"
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Lock the customer or session row that is about to change.

    SQLite ignores FOR UPDATE; there the version_id columns catch the
    conflict instead and run_with_retry replays the work.
    """
    return query.with_for_update()


def run_with_retry(work, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Run a unit of ledger work, replaying it after a lock or version conflict.

    Domain errors (credit limit, closed register, ...) propagate at once.
    attempts defaults to the LEDGER_RETRY_ATTEMPTS setting.
    """
    attempts = attempts or current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    attempt = 1
    while True:
        try:
            return work()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts:
                current_app.logger.error("Ledger write gave up after %s attempts: %s", attempts, exc)
                raise
            current_app.logger.warning("Ledger write conflict (attempt %s/%s), retrying: %s", attempt, attempts, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
            attempt += 1
