"""Typed-data type schema validation and ordering.

A schema maps type names to ordered field lists. Field types are primitive
tags, names of other types in the schema, or arrays written ``<type>*``.
"""

from collections.abc import Mapping, Sequence

import msgspec

DOMAIN_TYPE_NAME = "StarkNetDomain"
MERKLE_TREE_TYPE = "merkletree"
ARRAY_SUFFIX = "*"

PRIMITIVE_TYPES = frozenset(
    {
        "felt",
        "shortstring",
        "string",
        "selector",
        "bool",
        "u128",
        "i128",
        "timestamp",
        "contractAddress",
        "ContractAddress",
        "ClassHash",
        MERKLE_TREE_TYPE,
    },
)


class SchemaError(Exception):
    """Type schema is malformed or does not match the requested type."""


class Parameter(msgspec.Struct, frozen=True):
    """One field of a struct type.

    Attributes:
        name: Field name in the message object
        type: Primitive tag, struct name, or ``<type>*`` for arrays
        contains: Leaf struct type, only for ``merkletree`` fields

    """

    name: str
    type: str
    contains: str | None = None


TypeSchema = Mapping[str, Sequence[Parameter]]


def is_array_type(type_name: str) -> bool:
    return type_name.endswith(ARRAY_SUFFIX)


def element_type(type_name: str) -> str:
    """Return the element type of an array type, or the type itself."""
    return type_name[: -len(ARRAY_SUFFIX)] if is_array_type(type_name) else type_name


def _referenced_structs(types: TypeSchema, parameter: Parameter) -> list[str]:
    """Struct types a field needs hashed before its parent can be hashed."""
    refs = []
    base = element_type(parameter.type)
    if base in types:
        refs.append(base)
    if base == MERKLE_TREE_TYPE and parameter.contains in types:
        refs.append(parameter.contains)
    return refs


def _check_type(types: TypeSchema, type_name: str) -> None:
    if type_name in PRIMITIVE_TYPES:
        raise SchemaError(f"Type name {type_name!r} is reserved for a primitive")

    fields = types[type_name]
    if not fields:
        raise SchemaError(f"Type {type_name!r} has no fields")

    seen: set[str] = set()
    for parameter in fields:
        if parameter.name in seen:
            raise SchemaError(f"Type {type_name!r} declares field {parameter.name!r} twice")
        seen.add(parameter.name)

        base = element_type(parameter.type)
        if base not in PRIMITIVE_TYPES and base not in types:
            raise SchemaError(
                f"Field {type_name}.{parameter.name} references undefined type {parameter.type!r}",
            )
        if base == MERKLE_TREE_TYPE:
            if is_array_type(parameter.type):
                raise SchemaError(
                    f"Field {type_name}.{parameter.name}: arrays of merkletree are not supported",
                )
            if parameter.contains is None:
                raise SchemaError(
                    f"Field {type_name}.{parameter.name} is a merkletree without 'contains'",
                )
            if parameter.contains not in types:
                raise SchemaError(
                    f"Field {type_name}.{parameter.name} contains undefined type "
                    f"{parameter.contains!r}",
                )


def _visit(
    types: TypeSchema,
    type_name: str,
    order: list[str],
    in_progress: list[str],
) -> None:
    if type_name in order:
        return
    if type_name in in_progress:
        cycle = " -> ".join([*in_progress[in_progress.index(type_name) :], type_name])
        raise SchemaError(f"Reference cycle between types: {cycle}")

    _check_type(types, type_name)
    in_progress.append(type_name)
    children = sorted(
        {ref for parameter in types[type_name] for ref in _referenced_structs(types, parameter)},
    )
    for child in children:
        _visit(types, child, order, in_progress)
    in_progress.pop()
    order.append(type_name)


def resolve_types(types: TypeSchema, primary_type: str) -> list[str]:
    """Order every struct type reachable from the domain and ``primary_type``.

    Each type comes after all struct types it references. Independent types are
    visited in lexicographic order and ``primary_type`` comes last.

    Args:
        types: The type schema
        primary_type: The type of the message being hashed

    Returns:
        Type names, dependencies first

    Raises:
        SchemaError: If a type is missing, malformed, or part of a cycle

    """
    if primary_type not in types:
        raise SchemaError(f"Primary type {primary_type!r} is not defined in types")
    if DOMAIN_TYPE_NAME not in types:
        raise SchemaError(f"Domain type {DOMAIN_TYPE_NAME!r} is not defined in types")

    order: list[str] = []
    if primary_type != DOMAIN_TYPE_NAME:
        _visit(types, DOMAIN_TYPE_NAME, order, [])
    _visit(types, primary_type, order, [])
    return order


def get_dependencies(types: TypeSchema, type_name: str) -> list[str]:
    """Return the distinct struct types referenced by ``type_name``, sorted.

    Array element types count as references. Merkle tree leaf types do not:
    they shape the leaf hashes, not the parent's type string.
    """
    found: set[str] = set()
    stack = [type_name]
    while stack:
        current = stack.pop()
        for parameter in types[current]:
            base = element_type(parameter.type)
            if base in types and base != type_name and base not in found:
                found.add(base)
                stack.append(base)
    return sorted(found)


def validate_schema(types: TypeSchema, primary_type: str) -> list[str]:
    """Validate every type in the schema, reachable or not.

    Returns:
        The order produced by :func:`resolve_types`

    Raises:
        SchemaError: On the first problem found

    """
    visited: list[str] = []
    for type_name in sorted(types):
        _visit(types, type_name, visited, [])
    return resolve_types(types, primary_type)
