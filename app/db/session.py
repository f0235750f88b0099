"""Lazily-connected, cached database handle.

One ``Database`` lives on ``app.state`` for the whole process. The engine is
created on first use and pinged before every reuse; a dead engine is disposed
and reconnected with a short bounded retry.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_incrementing

from app.core.exceptions import StorageConnectError

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class _Connection:
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]


class Database:
    def __init__(
        self,
        url: str,
        *,
        connect_attempts: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._connect_attempts = connect_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._connection: _Connection | None = None
        # Guards swapping the connection only; pings run outside it.
        self._lock = asyncio.Lock()

    async def _ping(self, engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def _connect(self) -> AsyncEngine:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_incrementing(start=self._backoff_seconds, increment=self._backoff_seconds),
            retry=retry_if_exception_type(_CONNECT_ERRORS),
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    engine = create_async_engine(self._url, pool_pre_ping=True)
                    try:
                        await self._ping(engine)
                    except _CONNECT_ERRORS:
                        await engine.dispose()
                        raise
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            logger.error("database_connect_failed", extra={"attempts": self._connect_attempts, "error": str(cause)})
            raise StorageConnectError(
                f"Failed to connect to the database after {self._connect_attempts} attempts: {cause}"
            ) from cause

        logger.info("database_connected")
        return engine

    async def _get_connection(self) -> _Connection:
        current = self._connection
        if current is not None:
            try:
                await self._ping(current.engine)
                return current
            except _CONNECT_ERRORS:
                logger.warning("database_ping_failed_reconnecting")

        async with self._lock:
            # Another task may have reconnected while this one waited
            if self._connection is not None and self._connection is not current:
                return self._connection
            if self._connection is not None:
                await self._connection.engine.dispose()
                self._connection = None

            engine = await self._connect()
            self._connection = _Connection(
                engine=engine,
                sessionmaker=async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession),
            )
            return self._connection

    async def get_engine(self) -> AsyncEngine:
        return (await self._get_connection()).engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        connection = await self._get_connection()
        async with connection.sessionmaker() as session:
            yield session

    async def dispose(self) -> None:
        async with self._lock:
            if self._connection is not None:
                await self._connection.engine.dispose()
            self._connection = None


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
