"""Database engine and request sessions."""
from __future__ import annotations

import functools
from contextvars import ContextVar
from typing import Optional

from attrs import frozen
from naks.checkout.entities.base import import_entities, metadata
from naks.checkout.models.config import DatabaseConfig
from naks.checkout.serialization.json import json_dumps
from rodi import GetServiceContext
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

session_context: ContextVar[Optional[AsyncSession]] = ContextVar(
    "session_context", default=None
)
"""The session of the current request."""


@frozen
class DBConfig:
    """The engine and session factory."""

    engine: AsyncEngine
    session_factory: async_sessionmaker

    @classmethod
    def create(cls, config: DatabaseConfig) -> DBConfig:
        """Create a :class:`DBConfig` from the database settings."""
        engine = create_async_engine(
            config.url,
            json_serializer=lambda v: json_dumps(v).decode(),
            pool_size=config.pool_size,
            pool_pre_ping=True,
            echo=config.echo,
        )
        return cls(engine, async_sessionmaker(bind=engine, expire_on_commit=False))

    async def close(self):
        await self.engine.dispose()

    async def create_tables(self):
        """Create any missing tables."""
        import_entities()
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def drop_tables(self):
        import_entities()
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)


def db_session_factory(services: GetServiceContext) -> AsyncSession:
    """Provide the request's :class:`AsyncSession`, opening it on first use."""
    session = session_context.get()
    if session is None:
        session = services.provider[DBConfig].session_factory()
        session_context.set(session)
    return session


async def db_session_middleware(request, handler):
    """Close the request's session after the response is made."""
    try:
        return await handler(request)
    finally:
        session = session_context.get()
        if session is not None:
            session_context.set(None)
            await session.close()


def transaction(fn):
    """Commit the request's session after ``fn`` returns.

    The session is rolled back if ``fn`` raises, including for HTTP errors.
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            result = await fn(*args, **kwargs)
        except BaseException:
            session = session_context.get()
            if session is not None:
                await session.rollback()
            raise

        session = session_context.get()
        if session is not None:
            await session.commit()
        return result

    return wrapper
