"""
Environment-driven settings for the standalone server (`postgraphql.main`).
"""

from __future__ import annotations

import os

from postgraphql.options import PostGraphQLOptions

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_str(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name, "").strip() or default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def database_url() -> str | None:
    # Unset means "use libpq defaults" (PGHOST, PGUSER, ...).
    return _env_str("DATABASE_URL")


def schema_names() -> list[str]:
    raw = _env_str("POSTGRAPHQL_SCHEMA", "public") or "public"
    names = [name.strip() for name in raw.split(",") if name.strip()]
    return names or ["public"]


def log_level() -> str:
    return _env_str("LOG_LEVEL", "INFO") or "INFO"


def server_host() -> str:
    return _env_str("HOST", "0.0.0.0") or "0.0.0.0"


def server_port() -> int:
    return _env_int("PORT", 5000)


def options_from_env() -> PostGraphQLOptions:
    return PostGraphQLOptions(
        classic_ids=_env_bool("POSTGRAPHQL_CLASSIC_IDS"),
        dynamic_json=_env_bool("POSTGRAPHQL_DYNAMIC_JSON"),
        graphql_route=_env_str("POSTGRAPHQL_GRAPHQL_ROUTE", "/graphql"),
        graphiql_route=_env_str("POSTGRAPHQL_GRAPHIQL_ROUTE", "/graphiql"),
        graphiql=_env_bool("POSTGRAPHQL_GRAPHIQL"),
        pg_default_role=_env_str("PG_DEFAULT_ROLE"),
        jwt_secret=_env_str("JWT_SECRET"),
        jwt_pg_type_identifier=_env_str("JWT_PG_TYPE_IDENTIFIER"),
        show_error_stack=_env_bool("POSTGRAPHQL_SHOW_ERROR_STACK"),
        disable_query_log=_env_bool("POSTGRAPHQL_DISABLE_QUERY_LOG"),
        enable_cors=_env_bool("POSTGRAPHQL_ENABLE_CORS"),
    )
