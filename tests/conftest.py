"""Shared fakes and fixtures: stand-ins for asyncpg pools and connections."""
from __future__ import annotations

from typing import Any

import pytest

from postgraphql.schema import introspection


class FakeTransaction:
    def __init__(self, client: FakePgClient) -> None:
        self._client = client

    async def __aenter__(self) -> FakeTransaction:
        self._client.transactions += 1
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakePgClient:
    """Answers queries from canned rows keyed by an SQL fragment."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, tuple]] = []
        self.executed: list[tuple[str, tuple]] = []
        self.transactions = 0

    def _match(self, sql: str) -> list[dict]:
        for fragment, rows in self.responses.items():
            if fragment in sql:
                if isinstance(rows, Exception):
                    raise rows
                return list(rows)
        return []

    async def fetch(self, sql: str, *args: Any) -> list[dict]:
        self.calls.append((sql, args))
        return self._match(sql)

    async def fetchrow(self, sql: str, *args: Any) -> dict | None:
        self.calls.append((sql, args))
        rows = self._match(sql)
        return rows[0] if rows else None

    async def execute(self, sql: str, *args: Any) -> str:
        self.executed.append((sql, args))
        return "SELECT 1"

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)


class FakeAsyncpgPool:
    """The slice of `asyncpg.Pool` that `PgPool` uses."""

    def __init__(self, connection: Any = None) -> None:
        self.connection = connection if connection is not None else FakePgClient()
        self.acquired = 0
        self.released: list[Any] = []
        self.closed = False

    async def acquire(self, timeout: float | None = None) -> Any:
        self.acquired += 1
        return self.connection

    async def release(self, connection: Any) -> None:
        self.released.append(connection)

    async def close(self) -> None:
        self.closed = True


def _column(class_oid: int, num: int, name: str, type_name: str, type_sql: str, **extra: Any) -> dict:
    row = {
        "class_oid": class_oid,
        "num": num,
        "name": name,
        "type_name": type_name,
        "type_sql": type_sql,
        "element_type_name": None,
        "not_null": False,
        "description": None,
    }
    row.update(extra)
    return row


def catalog_responses() -> dict[str, Any]:
    """
    `public.person` (primary key `id`), `public.post_view` (no key) and the
    composite type `public.jwt_token`.
    """
    return {
        introspection.NAMESPACES_SQL: [{"name": "public"}],
        introspection.RELATIONS_SQL: [
            {"oid": 1, "schema_name": "public", "name": "person", "kind": "r", "description": "A person."},
            {"oid": 3, "schema_name": "public", "name": "post_view", "kind": "v", "description": None},
        ],
        introspection.COLUMNS_SQL: [
            _column(1, 1, "id", "int4", "integer", not_null=True),
            _column(1, 2, "name", "text", "text", not_null=True, description="Full name."),
            _column(1, 3, "about", "text", "text"),
            _column(1, 4, "created_at", "timestamptz", "timestamp with time zone"),
            _column(1, 5, "tags", "_text", "text[]", element_type_name="text"),
            _column(1, 6, "data", "jsonb", "jsonb"),
            _column(1, 7, "big", "int8", "bigint"),
            _column(3, 1, "id", "int4", "integer"),
            _column(3, 2, "title", "text", "text"),
        ],
        introspection.PRIMARY_KEYS_SQL: [{"class_oid": 1, "column_nums": [1]}],
        introspection.COMPOSITE_TYPES_SQL: [{"schema_name": "public", "name": "jwt_token"}],
    }


@pytest.fixture
def catalog_client() -> FakePgClient:
    return FakePgClient(catalog_responses())
