"""
Unit-of-work wrapper around the async session factory.

``atomic()`` yields a session inside ``session.begin()``: everything done in
the block commits together or not at all.  Lost races surface as
``Conflict``:

* ``StaleDataError``  -- versioned UPDATE matched no row
* ``IntegrityError``  -- unique natural key / open-ticket index violated
* serialization failure or deadlock (PostgreSQL), busy database (SQLite)

Any other database error (connection refused, timeouts, ...) propagates.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from haulage.domain.errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE: serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


class Store:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def session(self) -> AsyncSession:
        """Plain session for read-only work."""
        return self.session_factory()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except StaleDataError as exc:
                logger.debug("Stale write rejected: %s", exc)
                raise Conflict(
                    "The record was modified concurrently; reload and retry"
                ) from exc
            except IntegrityError as exc:
                logger.debug("Integrity violation: %s", exc.orig)
                raise Conflict(
                    "A conflicting record was written concurrently; reload and retry"
                ) from exc
            except DBAPIError as exc:
                if not _is_contention(exc):
                    raise
                raise Conflict("Concurrent update detected; retry") from exc

    async def run_atomic(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self.atomic() as session:
            return await work(session)

    async def get(self, model: type[T], entity_id: int) -> Optional[T]:
        async with self.session() as session:
            return await session.get(model, entity_id)

    async def save(self, entity: T) -> T:
        async with self.atomic() as session:
            return await session.merge(entity)


def _is_contention(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    if getattr(orig, "sqlite_errorname", None) == "SQLITE_BUSY":
        return True
    return "database is locked" in str(orig)
