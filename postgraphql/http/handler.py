"""
FastAPI app factory for the GraphQL endpoint.

The schema may still be building when the app is created; requests wait for
it, and get a 503 if it failed.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from fastapi import FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from graphql import GraphQLError, graphql

from postgraphql.core.errors import ConnectionAcquisitionError, SchemaConstructionError
from postgraphql.schema.initializer import PendingSchema

from . import auth, graphiql, schemas

logger = logging.getLogger(__name__)

SET_CONFIG_SQL = """
SELECT set_config(s.name, s.value, true)
FROM unnest($1::text[], $2::text[]) AS s(name, value)
"""


def format_errors(errors: Sequence[GraphQLError], *, show_error_stack: bool) -> list[dict[str, Any]]:
    formatted: list[dict[str, Any]] = []
    for error in errors:
        entry = dict(error.formatted)
        original = error.original_error
        if show_error_stack and original is not None:
            entry["stack"] = "".join(
                traceback.format_exception(type(original), original, original.__traceback__)
            )
        formatted.append(entry)
    return formatted


async def apply_pg_settings(pg_client: Any, settings: list[tuple[str, str]]) -> None:
    """
    Set transaction-local settings (role, jwt.claims.*) in one round trip.
    """
    if not settings:
        return None
    await pg_client.execute(
        SET_CONFIG_SQL,
        [name for name, _ in settings],
        [value for _, value in settings],
    )


class StartSchemaMiddleware:
    """
    Starts the schema build on the first ASGI call of any kind.

    A mounted sub-app never sees its own lifespan, so the first request
    (or the lifespan, when the app is served directly) kicks it off. Hosts
    that mount the app can also call `app.state.graphql_schema.start()`
    from their own lifespan to build at startup.
    """

    def __init__(self, app: Any, pending_schema: PendingSchema) -> None:
        self.app = app
        self.pending_schema = pending_schema

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        self.pending_schema.start()
        await self.app(scope, receive, send)


def create_http_request_handler(options: schemas.HandlerOptions) -> FastAPI:
    pg_pool = options.pg_pool
    pending_schema = options.graphql_schema

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        # No-op when the build already started at bootstrap time.
        pending_schema.start()
        try:
            yield
        finally:
            # Adopted pools belong to the caller.
            if pg_pool.owned:
                await pg_pool.close()

    app = FastAPI(lifespan=lifespan)
    app.state.pg_pool = pg_pool
    app.state.graphql_schema = pending_schema
    app.add_middleware(StartSchemaMiddleware, pending_schema=pending_schema)

    if options.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["HEAD", "GET", "POST"],
            allow_headers=["*"],
        )

    @app.post(options.graphql_route)
    async def graphql_endpoint(
        request: schemas.GraphQLRequest,
        authorization: str | None = Header(default=None),
    ) -> JSONResponse:
        claims = auth.request_claims(authorization, options.jwt_secret)

        try:
            artifact = await pending_schema.get()
        except SchemaConstructionError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="GraphQL schema is not available.",
            ) from exc

        started = time.perf_counter()
        try:
            async with pg_pool.connection() as pg_client:
                async with pg_client.transaction():
                    try:
                        await apply_pg_settings(pg_client, auth.pg_settings(claims, options.pg_default_role))
                    except asyncpg.PostgresError as exc:
                        logger.warning("pg_settings_rejected error=%s", exc)
                        raise HTTPException(
                            status_code=status.HTTP_403_FORBIDDEN,
                            detail="The request's role or claims were rejected by the database.",
                        ) from exc
                    result = await graphql(
                        artifact.graphql_schema,
                        request.query,
                        context_value={"pg_client": pg_client, "jwt_claims": claims},
                        variable_values=request.variables,
                        operation_name=request.operation_name,
                    )
        except ConnectionAcquisitionError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Database is not available.",
            ) from exc

        duration_ms = (time.perf_counter() - started) * 1000.0
        errors = result.errors or []
        if not options.disable_query_log:
            logger.info(
                "graphql_query operation=%s duration_ms=%.1f errors=%s query=%s",
                request.operation_name or "-",
                duration_ms,
                len(errors),
                " ".join(request.query.split())[:500],
            )

        body: dict[str, Any] = {"data": result.data}
        if errors:
            body["errors"] = format_errors(errors, show_error_stack=options.show_error_stack)
        status_code = status.HTTP_400_BAD_REQUEST if result.data is None and errors else status.HTTP_200_OK
        return JSONResponse(status_code=status_code, content=body)

    if options.graphiql:

        @app.get(options.graphiql_route, response_class=HTMLResponse, include_in_schema=False)
        async def graphiql_page() -> HTMLResponse:
            return HTMLResponse(graphiql.render_graphiql(options.graphql_route))

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "schema": pending_schema.state}

    return app
