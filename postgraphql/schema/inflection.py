"""
Naming rules for turning Postgres identifiers into GraphQL names.
"""

from __future__ import annotations

import re

_WORD_SPLIT = re.compile(r"[^0-9A-Za-z]+")


def _words(name: str) -> list[str]:
    return [word for word in _WORD_SPLIT.split(name or "") if word]


def _guard_leading_digit(name: str) -> str:
    # GraphQL names cannot start with a digit.
    if name and name[0].isdigit():
        return "_" + name
    return name


def pascal_case(name: str) -> str:
    return _guard_leading_digit("".join(word[:1].upper() + word[1:] for word in _words(name)))


def camel_case(name: str) -> str:
    words = _words(name)
    if not words:
        return ""
    head = words[0][:1].lower() + words[0][1:]
    tail = "".join(word[:1].upper() + word[1:] for word in words[1:])
    return _guard_leading_digit(head + tail)


def pluralize(name: str) -> str:
    if not name:
        return name
    if name.endswith(("ss", "us", "x", "z", "ch", "sh")):
        return name + "es"
    # Anything else ending in "s" is taken to be plural already.
    if name.endswith("s"):
        return name
    if name.endswith("y") and len(name) > 1 and name[-2].lower() not in "aeiou":
        return name[:-1] + "ies"
    return name + "s"


def type_name(table_name: str) -> str:
    return pascal_case(table_name)


def all_rows_field_name(type_name_: str) -> str:
    return "all" + pluralize(type_name_)


def column_field_name(column_name: str, node_id_field: str) -> str:
    # A column that would shadow the node id field is exposed as `row<Name>`.
    name = camel_case(column_name)
    if name == node_id_field:
        return "row" + name[:1].upper() + name[1:]
    return name


def lookup_field_name(type_name_: str, key_field_names: list[str]) -> str:
    head = type_name_[:1].lower() + type_name_[1:]
    keys = "And".join(name[:1].upper() + name[1:] for name in key_field_names)
    return f"{head}By{keys}"
