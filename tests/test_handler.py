"""Tests for the FastAPI GraphQL handler."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import AsyncMock

import asyncpg
import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeAsyncpgPool, FakePgClient
from postgraphql.core.db import PgPool
from postgraphql.core.errors import SchemaConstructionError
from postgraphql.http.handler import SET_CONFIG_SQL, create_http_request_handler
from postgraphql.http.schemas import HandlerOptions
from postgraphql.options import PostGraphQLOptions
from postgraphql.schema import introspection
from postgraphql.schema.builder import PostGraphQLSchema, build_graphql_schema
from postgraphql.schema.initializer import PendingSchema

SECRET = "test-secret-for-signing-graphql-tokens-0123456789"
PERSON_FRAGMENT = 'FROM "public"."person"'
ALL_NAMES = {"query": "{ allPersons { name } }"}


def person_catalog() -> introspection.Catalog:
    table = introspection.PgTable(
        oid=1,
        schema_name="public",
        name="person",
        kind="r",
        columns=[
            introspection.PgColumn("id", 1, "int4", "integer", not_null=True),
            introspection.PgColumn("name", 2, "text", "text", not_null=True),
        ],
    )
    table.primary_key = [table.columns[0]]
    return introspection.Catalog(schema_names=["public"], tables=[table])


def ready_schema(options: PostGraphQLOptions) -> PendingSchema:
    catalog = person_catalog()
    artifact = PostGraphQLSchema(
        graphql_schema=build_graphql_schema(catalog, options),
        catalog=catalog,
        options=options,
    )

    async def build() -> PostGraphQLSchema:
        return artifact

    return PendingSchema(build)


def make_app(
    *,
    pg_client: FakePgClient | None = None,
    pending: PendingSchema | None = None,
    owned: bool = False,
    **option_values: Any,
) -> tuple[Any, FakeAsyncpgPool]:
    options = PostGraphQLOptions(**option_values)
    if pg_client is None:
        pg_client = FakePgClient({PERSON_FRAGMENT: [{"id": 1, "name": "Ada"}]})
    fake = FakeAsyncpgPool(pg_client)
    pool = PgPool.from_asyncpg(fake)
    pool.owned = owned

    app = create_http_request_handler(
        HandlerOptions(
            **options.model_dump(),
            pg_pool=pool,
            graphql_schema=pending or ready_schema(options),
        )
    )
    return app, fake


def bearer(claims: dict[str, Any], secret: str = SECRET) -> dict[str, str]:
    return {"Authorization": f"Bearer {jwt.encode(claims, secret, algorithm='HS256')}"}


class TestGraphQLRoute:
    def test_query(self):
        app, fake = make_app()
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES)

        assert resp.status_code == 200
        assert resp.json() == {"data": {"allPersons": [{"name": "Ada"}]}}
        assert fake.acquired == 1
        assert fake.released == [fake.connection]
        assert fake.connection.transactions == 1
        assert fake.connection.executed == []

    def test_variables_and_operation_name(self):
        app, fake = make_app()
        body = {
            "query": "query One($id: Int!) { personById(id: $id) { name } } query Two { allPersons { name } }",
            "variables": {"id": 1},
            "operationName": "One",
        }
        with TestClient(app) as client:
            resp = client.post("/graphql", json=body)

        assert resp.status_code == 200
        assert resp.json() == {"data": {"personById": {"name": "Ada"}}}
        assert fake.connection.calls[0][1] == (1,)

    def test_syntax_error_is_bad_request(self):
        app, _ = make_app()
        with TestClient(app) as client:
            resp = client.post("/graphql", json={"query": "{ allPersons { "})

        assert resp.status_code == 400
        body = resp.json()
        assert body["data"] is None
        assert body["errors"][0]["message"].startswith("Syntax Error")

    def test_missing_query_is_unprocessable(self):
        app, _ = make_app()
        with TestClient(app) as client:
            resp = client.post("/graphql", json={"variables": {}})
        assert resp.status_code == 422

    def test_get_is_not_allowed(self):
        app, _ = make_app()
        with TestClient(app) as client:
            resp = client.get("/graphql")
        assert resp.status_code == 405

    def test_custom_route(self):
        app, _ = make_app(graphql_route="/api/graphql")
        with TestClient(app) as client:
            assert client.post("/api/graphql", json=ALL_NAMES).status_code == 200
            assert client.post("/graphql", json=ALL_NAMES).status_code == 404

    def test_failed_schema_is_service_unavailable(self):
        async def failing_build() -> PostGraphQLSchema:
            raise SchemaConstructionError("Schema construction failed: boom")

        app, fake = make_app(pending=PendingSchema(failing_build))
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES)
            health = client.get("/health")

        assert resp.status_code == 503
        assert fake.acquired == 0
        assert health.json() == {"status": "ok", "schema": "failed"}

    def test_unavailable_database_is_service_unavailable(self):
        app, fake = make_app()
        fake.acquire = AsyncMock(side_effect=asyncio.TimeoutError())
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES)
        assert resp.status_code == 503


class TestAuthentication:
    def test_claims_become_settings(self):
        app, fake = make_app(jwt_secret=SECRET)
        headers = bearer({"aud": "postgraphql", "role": "app_user", "user_id": 7})
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES, headers=headers)

        assert resp.status_code == 200
        sql, (names, values) = fake.connection.executed[0]
        assert sql == SET_CONFIG_SQL
        assert dict(zip(names, values)) == {
            "role": "app_user",
            "jwt.claims.aud": "postgraphql",
            "jwt.claims.role": "app_user",
            "jwt.claims.user_id": "7",
        }

    def test_default_role_without_token(self):
        app, fake = make_app(jwt_secret=SECRET, pg_default_role="anonymous")
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES)

        assert resp.status_code == 200
        _, (names, values) = fake.connection.executed[0]
        assert names == ["role"]
        assert values == ["anonymous"]

    def test_token_role_overrides_default_role(self):
        app, fake = make_app(jwt_secret=SECRET, pg_default_role="anonymous")
        headers = bearer({"aud": "postgraphql", "role": "admin"})
        with TestClient(app) as client:
            client.post("/graphql", json=ALL_NAMES, headers=headers)

        _, (names, values) = fake.connection.executed[0]
        assert dict(zip(names, values))["role"] == "admin"

    def test_token_without_secret_is_forbidden(self):
        app, fake = make_app()
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES, headers=bearer({"aud": "postgraphql"}))

        assert resp.status_code == 403
        assert fake.acquired == 0

    @pytest.mark.parametrize(
        "headers",
        [
            bearer({"aud": "postgraphql"}, secret="wrong-secret-for-signing-graphql-tokens-0123456789"),
            bearer({"aud": "someone-else"}),
            bearer({"role": "app_user"}),
            {"Authorization": "Token abc"},
            {"Authorization": "Bearer"},
        ],
    )
    def test_invalid_tokens_are_unauthorized(self, headers: dict[str, str]):
        app, fake = make_app(jwt_secret=SECRET)
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES, headers=headers)

        assert resp.status_code == 401
        assert fake.acquired == 0

    def test_role_rejected_by_database_is_forbidden(self):
        app, fake = make_app(jwt_secret=SECRET)
        fake.connection.execute = AsyncMock(
            side_effect=asyncpg.exceptions.InvalidParameterValueError('role "ghost" does not exist')
        )
        headers = bearer({"aud": "postgraphql", "role": "ghost"})
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES, headers=headers)

        assert resp.status_code == 403
        assert fake.released == [fake.connection]


class TestErrorsAndLogging:
    def test_error_stack_shown_when_enabled(self):
        pg_client = FakePgClient({PERSON_FRAGMENT: RuntimeError("boom")})
        app, fake = make_app(pg_client=pg_client, show_error_stack=True)
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES)

        assert resp.status_code == 400
        error = resp.json()["errors"][0]
        assert error["message"] == "boom"
        assert "RuntimeError: boom" in error["stack"]
        assert fake.released == [fake.connection]

    def test_error_stack_hidden_by_default(self):
        pg_client = FakePgClient({PERSON_FRAGMENT: RuntimeError("boom")})
        app, _ = make_app(pg_client=pg_client)
        with TestClient(app) as client:
            resp = client.post("/graphql", json=ALL_NAMES)

        assert "stack" not in resp.json()["errors"][0]

    def test_query_is_logged(self, caplog: pytest.LogCaptureFixture):
        app, _ = make_app()
        with caplog.at_level(logging.INFO, logger="postgraphql.http.handler"):
            with TestClient(app) as client:
                client.post("/graphql", json=ALL_NAMES)

        messages = [r.getMessage() for r in caplog.records if r.name == "postgraphql.http.handler"]
        assert any("graphql_query" in m and "allPersons" in m for m in messages)

    def test_query_log_can_be_disabled(self, caplog: pytest.LogCaptureFixture):
        app, _ = make_app(disable_query_log=True)
        with caplog.at_level(logging.INFO, logger="postgraphql.http.handler"):
            with TestClient(app) as client:
                client.post("/graphql", json=ALL_NAMES)

        assert not [r for r in caplog.records if "graphql_query" in r.getMessage()]


class TestExtras:
    def test_graphiql_page(self):
        app, _ = make_app(graphiql=True, graphql_route="/api/graphql", graphiql_route="/explore")
        with TestClient(app) as client:
            resp = client.get("/explore")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        assert '"/api/graphql"' in resp.text

    def test_graphiql_disabled_by_default(self):
        app, _ = make_app()
        with TestClient(app) as client:
            assert client.get("/graphiql").status_code == 404

    def test_cors(self):
        app, _ = make_app(enable_cors=True)
        with TestClient(app) as client:
            resp = client.get("/health", headers={"Origin": "http://example.com"})
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_no_cors_by_default(self):
        app, _ = make_app()
        with TestClient(app) as client:
            resp = client.get("/health", headers={"Origin": "http://example.com"})
        assert "access-control-allow-origin" not in resp.headers

    def test_health_reports_schema_state(self):
        app, _ = make_app()
        with TestClient(app) as client:
            client.post("/graphql", json=ALL_NAMES)
            resp = client.get("/health")
        assert resp.json() == {"status": "ok", "schema": "ready"}

    def test_owned_pool_closed_on_shutdown(self):
        app, fake = make_app(owned=True)
        with TestClient(app):
            pass
        assert fake.closed is True

    def test_adopted_pool_left_open_on_shutdown(self):
        app, fake = make_app(owned=False)
        with TestClient(app):
            pass
        assert fake.closed is False


class TestMountedApp:
    def test_first_request_starts_build(self):
        builds: list[str] = []

        async def failing_build() -> PostGraphQLSchema:
            builds.append("build")
            raise SchemaConstructionError("Schema construction failed: permission denied")

        pending = PendingSchema(failing_build)
        failures: list[SchemaConstructionError] = []
        pending.add_failure_observer(failures.append)
        app, _ = make_app(pending=pending)

        host = FastAPI()
        host.mount("/api", app)
        with TestClient(host) as client:
            client.get("/api/health")
            assert pending.started is True
            resp = client.post("/api/graphql", json=ALL_NAMES)
            health = client.get("/api/health")

        assert resp.status_code == 503
        assert health.json() == {"status": "ok", "schema": "failed"}
        assert builds == ["build"]
        assert len(failures) == 1
