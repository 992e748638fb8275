"""
Options recognized by `postgraphql()`.

The orchestrator never reads these; they are forwarded to the schema builder
and the HTTP handler factory as given.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class PostGraphQLOptions(BaseModel):
    # Expose the global node identifier as `id` (and a row's own `id` as `rowId`).
    classic_ids: bool = False
    # Return json/jsonb columns as structured JSON instead of strings.
    dynamic_json: bool = False
    graphql_route: str = Field(default="/graphql", pattern=r"^/")
    graphiql_route: str = Field(default="/graphiql", pattern=r"^/")
    graphiql: bool = False
    pg_default_role: str | None = None
    jwt_secret: str | None = None
    # `schema.type` name of the composite type carried by JWTs.
    jwt_pg_type_identifier: str | None = None
    show_error_stack: bool = False
    disable_query_log: bool = False
    enable_cors: bool = False

    model_config = {
        "extra": "forbid",
    }
