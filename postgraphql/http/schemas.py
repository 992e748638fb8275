"""
HTTP handler schemas (request models and factory options).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from postgraphql.core.db import PgPool
from postgraphql.options import PostGraphQLOptions
from postgraphql.schema.initializer import PendingSchema


class GraphQLRequest(BaseModel):
    query: str = Field(..., min_length=1)
    variables: dict[str, Any] | None = None
    operation_name: str | None = Field(default=None, alias="operationName")

    model_config = {
        "populate_by_name": True,
    }


class HandlerOptions(PostGraphQLOptions):
    pg_pool: PgPool
    # Possibly still building when the handler is created.
    graphql_schema: PendingSchema

    model_config = {
        "arbitrary_types_allowed": True,
    }
