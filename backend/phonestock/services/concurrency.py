# Overview: Service-layer helpers for concurrency; conditional updates and commit handling.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError


def compare_and_set(model, *, where: dict, values: dict, extra_criteria=()) -> int:
    """
    Single conditional UPDATE: set `values` on rows matching every `where`
    column equality (plus any extra SQL criteria).

    Returns the number of rows changed. Zero means the expected state no
    longer holds and the caller decides which error to raise. Objects already
    loaded in the session are synchronized with the new values.
    """
    stmt = update(model)
    for column, expected in where.items():
        stmt = stmt.where(getattr(model, column) == expected)
    for criterion in extra_criteria:
        stmt = stmt.where(criterion)
    stmt = stmt.values(**values).execution_options(synchronize_session="fetch")
    result = db.session.execute(stmt)
    return result.rowcount


def increment(model, row_id: int, **deltas) -> None:
    """In-SQL counter increments (col = col + n) on one row."""
    values = {name: getattr(model, name) + delta for name, delta in deltas.items() if delta}
    if not values:
        return
    db.session.execute(
        update(model)
        .where(model.id == row_id)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )


def commit_or_conflict(message: str, **context) -> None:
    """
    Commit the current session. A unique-index violation rolls back and
    surfaces as ConflictError with the given message and context.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(message, **context)


def flush_or_conflict(message: str, **context) -> None:
    """Flush variant of commit_or_conflict for multi-step transactions."""
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(message, **context)
