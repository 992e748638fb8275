"""
One-shot schema construction in the background.

Flow:
1) Borrow one connection from the pool
2) Build the schema with it
3) Release the connection (success or failure)
4) Publish the result once through a `PendingSchema`
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from postgraphql.core.errors import SchemaConstructionError
from postgraphql.options import PostGraphQLOptions

from . import builder

logger = logging.getLogger(__name__)

FailureObserver = Callable[[SchemaConstructionError], None]


class PendingSchema:
    """
    Future schema artifact, resolved exactly once.

    The build starts on `start()`. `initialize_schema()` calls it right away
    when an event loop is running; otherwise the first `start()` or `get()`
    from inside a loop (the handler's lifespan or first request) does.
    """

    def __init__(self, build: Callable[[], Awaitable[builder.PostGraphQLSchema]]) -> None:
        self._build = build
        self._task: asyncio.Task | None = None
        self._observers: list[FailureObserver] = []
        self._error: SchemaConstructionError | None = None

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def state(self) -> str:
        if self._task is None or not self._task.done():
            return "pending"
        return "failed" if self._error is not None else "ready"

    def start(self) -> None:
        if self._task is not None:
            return None
        self._task = asyncio.get_running_loop().create_task(self._build())
        self._task.add_done_callback(self._settle)

    def add_failure_observer(self, observer: FailureObserver) -> None:
        if self._error is not None:
            observer(self._error)
            return None
        self._observers.append(observer)

    async def get(self) -> builder.PostGraphQLSchema:
        self.start()
        # Shielded: a cancelled waiter must not cancel the build itself.
        return await asyncio.shield(self._task)

    def _settle(self, task: asyncio.Task) -> None:
        if task.cancelled():
            error = SchemaConstructionError("Schema construction was cancelled.")
        else:
            exc = task.exception()
            if exc is None:
                return None
            if isinstance(exc, SchemaConstructionError):
                error = exc
            else:
                error = SchemaConstructionError(f"Schema construction failed: {exc}", exc)

        self._error = error
        observers, self._observers = self._observers, []
        for observer in observers:
            observer(error)


async def _release(connection: Any) -> None:
    # Test doubles may hand out a connection without `release`; skip those.
    release = getattr(connection, "release", None)
    if release is None:
        return None
    result = release()
    if inspect.isawaitable(result):
        await result


async def build_schema(
    pg_pool: Any,
    schema: str | Sequence[str],
    options: PostGraphQLOptions,
) -> builder.PostGraphQLSchema:
    """
    Borrow, build, release. Never retries; any failure is raised as
    `SchemaConstructionError` after the connection has been released.
    """
    try:
        connection = await pg_pool.connect()
    except Exception as exc:
        raise SchemaConstructionError(f"Could not borrow a connection for schema construction: {exc}", exc) from exc

    try:
        result = await builder.create_postgraphql_schema(connection, schema, options)
    except Exception as exc:
        raise SchemaConstructionError(f"Schema construction failed: {exc}", exc) from exc
    finally:
        await _release(connection)

    return result


def initialize_schema(
    pg_pool: Any,
    schema: str | Sequence[str],
    options: PostGraphQLOptions,
) -> PendingSchema:
    pending = PendingSchema(lambda: build_schema(pg_pool, schema, options))
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("schema_build_deferred reason=no_running_loop")
        return pending

    pending.start()
    return pending
