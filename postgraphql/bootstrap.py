"""
Entry point: turn a connection source and schema names into a GraphQL app.

Flow:
1) Resolve the connection input into one pool
2) Start building the schema in the background (not awaited)
3) Attach the failure policy to the pending schema
4) Create the HTTP handler with the pool and the pending schema
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from fastapi import FastAPI

from postgraphql.core import db
from postgraphql.core.errors import SchemaConstructionError
from postgraphql.http import handler
from postgraphql.http.schemas import HandlerOptions
from postgraphql.options import PostGraphQLOptions
from postgraphql.schema import initializer

logger = logging.getLogger(__name__)

FAILURE_EXIT_CODE = 1


def exit_on_schema_failure(error: SchemaConstructionError) -> None:
    """
    Default failure policy: a handler that can never serve correct results
    should not keep running, so log the full error and exit non-zero.

    Runs as an event loop callback; `SystemExit` propagates out of the loop
    and ends the process.
    """
    logger.critical("schema_build_failed error=%s", error, exc_info=error)
    raise SystemExit(FAILURE_EXIT_CODE)


def postgraphql(
    pool_or_config: db.ConnectionInput = None,
    schema: str | Sequence[str] = "public",
    options: PostGraphQLOptions | Mapping[str, Any] | None = None,
    *,
    on_schema_failure: Callable[[SchemaConstructionError], None] = exit_on_schema_failure,
) -> FastAPI:
    """
    Create the GraphQL app for `schema` in the database behind `pool_or_config`.

    Returns immediately; the schema is built in the background from one
    borrowed connection. Connection input errors are raised here. Schema
    build errors are only reported through `on_schema_failure`.
    """
    if not isinstance(options, PostGraphQLOptions):
        options = PostGraphQLOptions.model_validate(dict(options or {}))

    pg_pool = db.resolve_pool(pool_or_config)

    pending_schema = initializer.initialize_schema(pg_pool, schema, options)
    pending_schema.add_failure_observer(on_schema_failure)

    return handler.create_http_request_handler(
        HandlerOptions(
            **options.model_dump(),
            pg_pool=pg_pool,
            graphql_schema=pending_schema,
        )
    )
