"""
Shared, cross-cutting code.

`core/` holds small building blocks the schema and HTTP layers both use
(pool wiring, settings, logging, errors). Keep GraphQL-specific logic in
`schema/` and request handling in `http/`.
"""
