"""
Transaction scope helper.

Engines receive the session as an explicit parameter and wrap all of an
operation's writes in one ``atomic`` block. Preconditions are checked
before the block opens; the block commits on exit or rolls back and
re-raises on any failure. No retries happen here.

``violates_unique`` tells an engine whether a flush failed on one of its
own unique indexes, so it can report the matching conflict code.
"""

import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session):
    """Commit everything written inside the block, or nothing."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("Transaction rolled back", exc_info=True)
        raise


def violates_unique(exc, index_name: str, table: str, *columns: str) -> bool:
    """True when ``exc`` (an IntegrityError) was raised by the given unique index.

    PostgreSQL names the index; SQLite names the columns
    (``UNIQUE constraint failed: frameworks.tenant_id, frameworks.code``),
    or the index itself for expression indexes.
    """
    message = str(getattr(exc, "orig", exc))
    if index_name in message:
        return True
    if not columns:
        return False
    return ", ".join(f"{table}.{col}" for col in columns) in message
