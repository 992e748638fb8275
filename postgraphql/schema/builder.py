"""
Build a GraphQL schema from an introspected catalog.

Exposed per relation:
- an object type with one field per column
- `all<Types>(first, offset)` on the query root
- `<type>By<Keys>(...)` and `Node` membership when a primary key exists

Resolvers expect the per-request connection in `info.context["pg_client"]`.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, time
from typing import Any

from graphql import (
    GraphQLArgument,
    GraphQLBoolean,
    GraphQLError,
    GraphQLField,
    GraphQLFloat,
    GraphQLID,
    GraphQLInt,
    GraphQLInterfaceType,
    GraphQLList,
    GraphQLNonNull,
    GraphQLObjectType,
    GraphQLScalarType,
    GraphQLSchema,
    GraphQLString,
)

from postgraphql.core.errors import SchemaBuildError
from postgraphql.options import PostGraphQLOptions

from . import inflection, introspection

logger = logging.getLogger(__name__)

BigIntType = GraphQLScalarType(
    "BigInt",
    description="A signed eight-byte integer, serialized as a string.",
    serialize=str,
    parse_value=str,
)

BigFloatType = GraphQLScalarType(
    "BigFloat",
    description="An arbitrary precision number, serialized as a string.",
    serialize=str,
    parse_value=str,
)

JSONType = GraphQLScalarType(
    "JSON",
    description="A JSON value.",
    serialize=lambda value: value,
    parse_value=lambda value: value,
)

_INT_TYPES = {"int2", "int4", "oid"}
_FLOAT_TYPES = {"float4", "float8"}
_JSON_TYPES = {"json", "jsonb"}

# Scalars bound as-is; everything else is sent as text and cast by Postgres.
_NATIVE_SCALARS = (GraphQLInt, GraphQLFloat, GraphQLBoolean)

_RESERVED_TYPE_NAMES = {
    "Query",
    "Node",
    "BigInt",
    "BigFloat",
    "JSON",
    "String",
    "Int",
    "Float",
    "Boolean",
    "ID",
}

# Key under which fetched rows remember their GraphQL type (for `Node`).
_TYPE_KEY = "__pg_type"


@dataclass(frozen=True)
class PostGraphQLSchema:
    graphql_schema: GraphQLSchema
    catalog: introspection.Catalog
    options: PostGraphQLOptions
    jwt_type: introspection.PgCompositeType | None = None


@dataclass
class _ColumnField:
    column: introspection.PgColumn
    name: str
    scalar: GraphQLScalarType


@dataclass
class _TableInfo:
    table: introspection.PgTable
    type_name: str
    fields: list[_ColumnField] = field(default_factory=list)
    key_fields: list[_ColumnField] = field(default_factory=list)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def encode_node_id(type_name: str, key_values: Sequence[Any]) -> str:
    raw = json.dumps([type_name, *key_values], separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_node_id(node_id: str) -> tuple[str, list[Any]]:
    try:
        data = json.loads(base64.b64decode(node_id.encode("ascii"), validate=True))
    except (ValueError, binascii.Error, UnicodeError) as exc:
        raise ValueError("Invalid node id.") from exc
    if not isinstance(data, list) or not data or not isinstance(data[0], str):
        raise ValueError("Invalid node id.")
    return data[0], data[1:]


def normalize_schema_names(schema: str | Sequence[str]) -> list[str]:
    names = [schema] if isinstance(schema, str) else list(schema)
    cleaned: list[str] = []
    for name in names:
        if not isinstance(name, str) or not name.strip():
            raise SchemaBuildError(f"Invalid schema name: {name!r}.")
        if name not in cleaned:
            cleaned.append(name)
    if not cleaned:
        raise SchemaBuildError("At least one schema name is required.")
    return cleaned


def _scalar_for(type_name: str, options: PostGraphQLOptions) -> GraphQLScalarType:
    if type_name in _INT_TYPES:
        return GraphQLInt
    if type_name == "int8":
        return BigIntType
    if type_name in _FLOAT_TYPES:
        return GraphQLFloat
    if type_name == "numeric":
        return BigFloatType
    if type_name == "bool":
        return GraphQLBoolean
    if type_name in _JSON_TYPES and options.dynamic_json:
        return JSONType
    return GraphQLString


def _output_type(column_field: _ColumnField) -> Any:
    output: Any = column_field.scalar
    if column_field.column.is_array:
        output = GraphQLList(output)
    if column_field.column.not_null:
        output = GraphQLNonNull(output)
    return output


def _convert_scalar(value: Any, scalar: GraphQLScalarType) -> Any:
    if value is None:
        return None
    if scalar is JSONType:
        return json.loads(value) if isinstance(value, str) else value
    if scalar in _NATIVE_SCALARS or isinstance(value, str):
        return value
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    return str(value)


def _convert_value(value: Any, column_field: _ColumnField) -> Any:
    if column_field.column.is_array and isinstance(value, (list, tuple)):
        return [_convert_scalar(item, column_field.scalar) for item in value]
    return _convert_scalar(value, column_field.scalar)


def _param_sql(column_field: _ColumnField, index: int) -> str:
    if column_field.scalar in _NATIVE_SCALARS:
        return f"${index}"
    return f"${index}::text::{column_field.column.type_sql}"


def _bind_value(column_field: _ColumnField, value: Any) -> Any:
    if column_field.scalar in _NATIVE_SCALARS:
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _qualified(table: introspection.PgTable) -> str:
    return f"{quote_ident(table.schema_name)}.{quote_ident(table.name)}"


def _select_list(info: _TableInfo) -> str:
    return ", ".join(quote_ident(f.column.name) for f in info.fields)


class _SchemaFactory:
    def __init__(self, catalog: introspection.Catalog, options: PostGraphQLOptions) -> None:
        self.catalog = catalog
        self.options = options
        self.node_id_field = "id" if options.classic_ids else "nodeId"
        self.tables: list[_TableInfo] = []
        self.by_type_name: dict[str, _TableInfo] = {}
        self.node_interface = GraphQLInterfaceType(
            "Node",
            lambda: {self.node_id_field: GraphQLField(GraphQLNonNull(GraphQLID))},
            resolve_type=lambda value, _info, _type: value.get(_TYPE_KEY),
            description="An object with a globally unique identifier.",
        )

    def _collect_tables(self) -> None:
        for table in self.catalog.tables:
            if not table.columns:
                logger.debug("table_skipped table=%s reason=no_columns", table.qualified_name)
                continue

            type_name = inflection.type_name(table.name)
            if not type_name or type_name in _RESERVED_TYPE_NAMES:
                raise SchemaBuildError(
                    f"Relation {table.qualified_name} maps to reserved GraphQL type name {type_name!r}."
                )
            existing = self.by_type_name.get(type_name)
            if existing is not None:
                raise SchemaBuildError(
                    f"Relations {existing.table.qualified_name} and {table.qualified_name} "
                    f"both map to GraphQL type {type_name!r}."
                )

            info = _TableInfo(table=table, type_name=type_name)
            seen: dict[str, introspection.PgColumn] = {}
            for column in table.columns:
                field_name = inflection.column_field_name(column.name, self.node_id_field)
                clash = seen.get(field_name)
                if clash is not None:
                    raise SchemaBuildError(
                        f"Columns {clash.name!r} and {column.name!r} of {table.qualified_name} "
                        f"both map to GraphQL field {field_name!r}."
                    )
                seen[field_name] = column
                info.fields.append(
                    _ColumnField(
                        column=column,
                        name=field_name,
                        scalar=_scalar_for(column.element_type_name or column.type_name, self.options),
                    )
                )
            key_nums = {column.num for column in table.primary_key}
            info.key_fields = [f for f in info.fields if f.column.num in key_nums]

            self.tables.append(info)
            self.by_type_name[type_name] = info

    def _to_node(self, info: _TableInfo, record: Mapping[str, Any]) -> dict[str, Any]:
        node: dict[str, Any] = {_TYPE_KEY: info.type_name}
        for column_field in info.fields:
            node[column_field.name] = _convert_value(record[column_field.column.name], column_field)
        if info.key_fields:
            node[self.node_id_field] = encode_node_id(
                info.type_name,
                [node[f.name] for f in info.key_fields],
            )
        return node

    async def _fetch_by_key(self, pg_client: Any, info: _TableInfo, values: Sequence[Any]) -> dict | None:
        conditions = " AND ".join(
            f"{quote_ident(f.column.name)} = {_param_sql(f, index)}"
            for index, f in enumerate(info.key_fields, start=1)
        )
        sql = f"SELECT {_select_list(info)} FROM {_qualified(info.table)} WHERE {conditions}"
        args = [_bind_value(f, value) for f, value in zip(info.key_fields, values)]
        record = await pg_client.fetchrow(sql, *args)
        return self._to_node(info, record) if record is not None else None

    def _all_rows_resolver(self, info: _TableInfo) -> Any:
        sql = f"SELECT {_select_list(info)} FROM {_qualified(info.table)}"
        if info.key_fields:
            sql += " ORDER BY " + ", ".join(quote_ident(f.column.name) for f in info.key_fields)
        sql += " LIMIT $1 OFFSET $2"

        async def resolve(_root: Any, resolve_info: Any, first: int | None = None, offset: int | None = None) -> list:
            if first is not None and first < 0:
                raise GraphQLError("`first` must not be negative.")
            if offset is not None and offset < 0:
                raise GraphQLError("`offset` must not be negative.")
            records = await resolve_info.context["pg_client"].fetch(sql, first, offset or 0)
            return [self._to_node(info, record) for record in records]

        return resolve

    def _lookup_resolver(self, info: _TableInfo) -> Any:
        async def resolve(_root: Any, resolve_info: Any, **args: Any) -> dict | None:
            values = [args[f.name] for f in info.key_fields]
            return await self._fetch_by_key(resolve_info.context["pg_client"], info, values)

        return resolve

    async def _resolve_node(self, _root: Any, resolve_info: Any, **args: Any) -> dict | None:
        try:
            type_name, key_values = decode_node_id(args[self.node_id_field])
        except ValueError as exc:
            raise GraphQLError(str(exc)) from exc

        info = self.by_type_name.get(type_name)
        if info is None or not info.key_fields or len(key_values) != len(info.key_fields):
            return None
        return await self._fetch_by_key(resolve_info.context["pg_client"], info, key_values)

    def _object_type(self, info: _TableInfo) -> GraphQLObjectType:
        fields: dict[str, GraphQLField] = {
            f.name: GraphQLField(_output_type(f), description=f.column.description)
            for f in info.fields
        }
        interfaces = None
        if info.key_fields:
            fields[self.node_id_field] = GraphQLField(
                GraphQLNonNull(GraphQLID),
                description="A globally unique identifier for this row.",
            )
            interfaces = [self.node_interface]
        return GraphQLObjectType(
            info.type_name,
            fields,
            interfaces=interfaces,
            description=info.table.description,
        )

    def build(self) -> GraphQLSchema:
        self._collect_tables()

        object_types: list[GraphQLObjectType] = []
        query_fields: dict[str, GraphQLField] = {}
        owners: dict[str, str] = {}

        def add_root_field(name: str, owner: str, graphql_field: GraphQLField) -> None:
            if name in owners:
                raise SchemaBuildError(
                    f"Root query field {name!r} is generated for both {owners[name]} and {owner}."
                )
            owners[name] = owner
            query_fields[name] = graphql_field

        add_root_field(
            "node",
            "the Node interface",
            GraphQLField(
                self.node_interface,
                args={self.node_id_field: GraphQLArgument(GraphQLNonNull(GraphQLID))},
                resolve=self._resolve_node,
                description="Fetches any row with a primary key by its globally unique identifier.",
            ),
        )

        for info in self.tables:
            object_type = self._object_type(info)
            object_types.append(object_type)

            add_root_field(
                inflection.all_rows_field_name(info.type_name),
                info.table.qualified_name,
                GraphQLField(
                    GraphQLNonNull(GraphQLList(GraphQLNonNull(object_type))),
                    args={
                        "first": GraphQLArgument(GraphQLInt),
                        "offset": GraphQLArgument(GraphQLInt),
                    },
                    resolve=self._all_rows_resolver(info),
                    description=f"Reads rows from {info.table.qualified_name}.",
                ),
            )

            if info.key_fields:
                lookup_name = inflection.lookup_field_name(
                    info.type_name, [f.name for f in info.key_fields]
                )
                add_root_field(
                    lookup_name,
                    info.table.qualified_name,
                    GraphQLField(
                        object_type,
                        args={f.name: GraphQLArgument(GraphQLNonNull(f.scalar)) for f in info.key_fields},
                        resolve=self._lookup_resolver(info),
                    ),
                )

        return GraphQLSchema(
            query=GraphQLObjectType("Query", query_fields, description="The root query type."),
            types=object_types,
        )


def build_graphql_schema(catalog: introspection.Catalog, options: PostGraphQLOptions) -> GraphQLSchema:
    return _SchemaFactory(catalog, options).build()


def resolve_jwt_type(
    catalog: introspection.Catalog,
    identifier: str | None,
) -> introspection.PgCompositeType | None:
    """
    Find the composite type named by `identifier` (`schema.type`, or `type`
    in the first requested schema).
    """
    if not identifier:
        return None

    schema_name, _, type_name = identifier.replace('"', "").rpartition(".")
    schema_name = schema_name or catalog.schema_names[0]
    found = catalog.find_composite_type(schema_name, type_name)
    if found is None:
        raise SchemaBuildError(f"JWT type {identifier!r} was not found in the introspected schemas.")
    return found


async def create_postgraphql_schema(
    pg_client: Any,
    schema: str | Sequence[str],
    options: PostGraphQLOptions | Mapping[str, Any] | None = None,
) -> PostGraphQLSchema:
    if not isinstance(options, PostGraphQLOptions):
        options = PostGraphQLOptions.model_validate(dict(options or {}))

    schema_names = normalize_schema_names(schema)
    catalog = await introspection.introspect(pg_client, schema_names)
    jwt_type = resolve_jwt_type(catalog, options.jwt_pg_type_identifier)
    graphql_schema = build_graphql_schema(catalog, options)

    logger.info(
        "schema_built schemas=%s relations=%s",
        ",".join(schema_names),
        len(catalog.tables),
    )
    return PostGraphQLSchema(
        graphql_schema=graphql_schema,
        catalog=catalog,
        options=options,
        jwt_type=jwt_type,
    )
