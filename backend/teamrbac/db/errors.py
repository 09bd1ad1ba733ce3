# backend/teamrbac/db/errors.py

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from collections.abc import AsyncIterator, Iterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from teamrbac.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

# Connectivity / timeout failures only. Integrity errors are policy outcomes
# and are handled by the caller.
_UNAVAILABLE = (OperationalError, InterfaceError, asyncio.TimeoutError)


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except _UNAVAILABLE as exc:
        logger.warning("store unavailable during %s: %s", operation, exc)
        raise StoreUnavailable(operation=operation) from exc


@asynccontextmanager
async def store_transaction(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Run a mutation as one unit: commit on success, roll back on any error.
    Nothing is left half-applied when a check inside the block raises.
    """
    try:
        with translate_store_errors(operation):
            yield
            await db.commit()
    except Exception:
        await db.rollback()
        raise
