"""
Catalog introspection (raw SQL over pg_catalog).

Reads only what the builder needs: namespaces, relations, their columns,
primary keys and composite types, restricted to the requested schemas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from postgraphql.core.errors import SchemaBuildError

NAMESPACES_SQL = """
SELECT n.nspname AS name
FROM pg_catalog.pg_namespace n
WHERE n.nspname = ANY($1::text[])
"""

RELATIONS_SQL = """
SELECT
    c.oid AS oid,
    n.nspname AS schema_name,
    c.relname AS name,
    c.relkind AS kind,
    d.description AS description
FROM pg_catalog.pg_class c
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
LEFT JOIN pg_catalog.pg_description d
    ON d.objoid = c.oid AND d.classoid = 'pg_catalog.pg_class'::regclass AND d.objsubid = 0
WHERE n.nspname = ANY($1::text[])
  AND c.relkind IN ('r', 'v', 'm', 'f', 'p')
  AND NOT c.relispartition
ORDER BY n.nspname, c.relname
"""

COLUMNS_SQL = """
SELECT
    a.attrelid AS class_oid,
    a.attnum AS num,
    a.attname AS name,
    t.typname AS type_name,
    pg_catalog.format_type(a.atttypid, a.atttypmod) AS type_sql,
    et.typname AS element_type_name,
    a.attnotnull AS not_null,
    pg_catalog.col_description(a.attrelid, a.attnum) AS description
FROM pg_catalog.pg_attribute a
JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
JOIN pg_catalog.pg_type t ON t.oid = a.atttypid
LEFT JOIN pg_catalog.pg_type et ON et.oid = t.typelem AND t.typcategory = 'A'
WHERE n.nspname = ANY($1::text[])
  AND c.relkind IN ('r', 'v', 'm', 'f', 'p')
  AND NOT c.relispartition
  AND a.attnum > 0
  AND NOT a.attisdropped
ORDER BY a.attrelid, a.attnum
"""

PRIMARY_KEYS_SQL = """
SELECT con.conrelid AS class_oid, con.conkey AS column_nums
FROM pg_catalog.pg_constraint con
JOIN pg_catalog.pg_namespace n ON n.oid = con.connamespace
WHERE n.nspname = ANY($1::text[])
  AND con.contype = 'p'
"""

COMPOSITE_TYPES_SQL = """
SELECT n.nspname AS schema_name, t.typname AS name
FROM pg_catalog.pg_type t
JOIN pg_catalog.pg_namespace n ON n.oid = t.typnamespace
WHERE n.nspname = ANY($1::text[])
  AND t.typtype = 'c'
ORDER BY n.nspname, t.typname
"""


@dataclass(frozen=True)
class PgColumn:
    name: str
    num: int
    type_name: str
    type_sql: str
    not_null: bool = False
    element_type_name: str | None = None
    description: str | None = None

    @property
    def is_array(self) -> bool:
        return self.element_type_name is not None


@dataclass
class PgTable:
    oid: int
    schema_name: str
    name: str
    kind: str
    description: str | None = None
    columns: list[PgColumn] = field(default_factory=list)
    primary_key: list[PgColumn] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


@dataclass(frozen=True)
class PgCompositeType:
    schema_name: str
    name: str


@dataclass
class Catalog:
    schema_names: list[str]
    tables: list[PgTable] = field(default_factory=list)
    composite_types: list[PgCompositeType] = field(default_factory=list)

    def find_composite_type(self, schema_name: str, name: str) -> PgCompositeType | None:
        for composite in self.composite_types:
            if composite.schema_name == schema_name and composite.name == name:
                return composite
        return None


def _text(value: Any) -> str:
    # "char" columns come back as str or bytes depending on codec setup.
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


async def introspect(pg_client: Any, schema_names: list[str]) -> Catalog:
    """
    Read the catalog for `schema_names`. Raises `SchemaBuildError` when a
    requested schema does not exist.
    """
    rows = await pg_client.fetch(NAMESPACES_SQL, schema_names)
    found = {str(row["name"]) for row in rows}
    missing = [name for name in schema_names if name not in found]
    if missing:
        raise SchemaBuildError(f"Schema(s) not found: {', '.join(missing)}.")

    relation_rows = await pg_client.fetch(RELATIONS_SQL, schema_names)
    column_rows = await pg_client.fetch(COLUMNS_SQL, schema_names)
    key_rows = await pg_client.fetch(PRIMARY_KEYS_SQL, schema_names)
    composite_rows = await pg_client.fetch(COMPOSITE_TYPES_SQL, schema_names)

    tables: dict[int, PgTable] = {}
    for row in relation_rows:
        table = PgTable(
            oid=int(row["oid"]),
            schema_name=str(row["schema_name"]),
            name=str(row["name"]),
            kind=_text(row["kind"]),
            description=row["description"],
        )
        tables[table.oid] = table

    for row in column_rows:
        table = tables.get(int(row["class_oid"]))
        if table is None:
            continue
        table.columns.append(
            PgColumn(
                name=str(row["name"]),
                num=int(row["num"]),
                type_name=str(row["type_name"]),
                type_sql=str(row["type_sql"]),
                not_null=bool(row["not_null"]),
                element_type_name=row["element_type_name"],
                description=row["description"],
            )
        )

    for row in key_rows:
        table = tables.get(int(row["class_oid"]))
        if table is None:
            continue
        by_num = {column.num: column for column in table.columns}
        table.primary_key = [by_num[int(num)] for num in row["column_nums"] if int(num) in by_num]

    # Keep the caller's schema order, then relation name order within a schema.
    order = {name: index for index, name in enumerate(schema_names)}
    ordered = sorted(tables.values(), key=lambda t: (order.get(t.schema_name, len(order)), t.name))

    return Catalog(
        schema_names=list(schema_names),
        tables=ordered,
        composite_types=[
            PgCompositeType(schema_name=str(row["schema_name"]), name=str(row["name"]))
            for row in composite_rows
        ],
    )
