"""
JWT handling for GraphQL requests.

A valid bearer token selects the Postgres role (`role` claim, falling back to
the configured default role) and exposes every claim to SQL as
`current_setting('jwt.claims.<name>')`.
"""

from __future__ import annotations

import json
from typing import Any

import jwt
from fastapi import HTTPException, status

JWT_AUDIENCE = "postgraphql"
JWT_ALGORITHMS = ["HS256"]


def extract_bearer_token(authorization: str | None) -> str | None:
    raw = (authorization or "").strip()
    if not raw:
        return None

    parts = raw.split(" ", 1)
    if len(parts) != 2:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format.",
        )

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization must be: Bearer <token>.",
        )
    return token


def decode_claims(token: str, secret: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=JWT_ALGORITHMS, audience=JWT_AUDIENCE)
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid JWT token.",
        ) from exc


def request_claims(authorization: str | None, jwt_secret: str | None) -> dict[str, Any]:
    token = extract_bearer_token(authorization)
    if token is None:
        return {}
    if not jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to provide a JWT token.",
        )
    return decode_claims(token, jwt_secret)


def _setting_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return json.dumps(value)


def pg_settings(claims: dict[str, Any], default_role: str | None) -> list[tuple[str, str]]:
    settings: list[tuple[str, str]] = []
    role = claims.get("role") or default_role
    if role:
        settings.append(("role", str(role)))
    for name, value in claims.items():
        settings.append((f"jwt.claims.{name}", _setting_value(value)))
    return settings
