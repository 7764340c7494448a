# Overview: Storage-level concurrency helpers: row locks, atomic clamped stock updates, retry.

from __future__ import annotations

import time
from decimal import Decimal

from sqlalchemy import case, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def clamped_increment(model, row_id: int, column: str, delta) -> tuple[Decimal, Decimal] | None:
    """
    Add `delta` to one stock column, flooring the result at zero, as a single
    UPDATE statement:

        UPDATE t SET col = CASE WHEN col + :delta < 0 THEN 0 ELSE col + :delta END
        WHERE id = :id

    The row is locked before `before` is read, so no concurrent writer can
    land between that read and the UPDATE and skew the recorded delta.

    Returns (before, after) inside the caller's transaction, or None when
    the row does not exist.
    """
    col = getattr(model, column)

    before = lock_for_update(db.session.query(col).filter(model.id == row_id)).scalar()
    if before is None:
        return None

    new_value = col + delta
    stmt = (
        update(model)
        .where(model.id == row_id)
        .values({column: case((new_value < 0, 0), else_=new_value)})
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None

    after = db.session.query(col).filter(model.id == row_id).scalar()
    return Decimal(str(before)), Decimal(str(after))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on versioned rows such as Sale).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
