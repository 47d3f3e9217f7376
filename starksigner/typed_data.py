"""Typed-data documents and their structured hash.

A document is decoded into a :class:`TypedData` struct, its schema is checked
once, and the message is converted into a tagged value tree before anything is
hashed. Hashing walks that tree with the Pedersen chain hash.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

import msgspec

from .curve import FIELD_PRIME
from .hashing import (
    STARKNET_MESSAGE_PREFIX,
    compute_hash_on_elements,
    compute_merkle_root,
    encode_short_string,
    get_selector_from_name,
)
from .models import parse_felt
from .schema import (
    DOMAIN_TYPE_NAME,
    MERKLE_TREE_TYPE,
    Parameter,
    SchemaError,
    TypeSchema,
    element_type,
    get_dependencies,
    is_array_type,
    validate_schema,
)

logger = logging.getLogger(__name__)

_DECIMAL_RE = re.compile(r"^[0-9]+$")
_NEGATIVE_DECIMAL_RE = re.compile(r"^-[0-9]+$")
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")

_U128_BOUND = 1 << 128
_I128_BOUND = 1 << 127

_FELT_TYPES = frozenset({"felt", "shortstring", "string", "contractAddress", "ContractAddress", "ClassHash"})
_UNSIGNED_128_TYPES = frozenset({"u128", "timestamp"})


class EncodingError(Exception):
    """A message value does not fit its declared type.

    Attributes:
        path: Dotted path of the offending value, e.g. ``message.to.wallet``
        reason: What is wrong with it

    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


# Tagged value tree


class FeltNode(msgspec.Struct, frozen=True, tag="felt"):
    """A value already reduced to a field element."""

    value: int


class StructNode(msgspec.Struct, frozen=True, tag="struct"):
    """A struct value with its fields in schema order."""

    type_name: str
    fields: list["ValueNode"]


class ArrayNode(msgspec.Struct, frozen=True, tag="array"):
    """An array value; order is significant."""

    items: list["ValueNode"]


class MerkleTreeNode(msgspec.Struct, frozen=True, tag="merkletree"):
    """The leaves of a merkletree field."""

    leaves: list[StructNode]


ValueNode = FeltNode | StructNode | ArrayNode | MerkleTreeNode


# Primitive encoding


def _parse_integer(value: Any, path: str, allow_negative: bool = False) -> int:
    """Parse an int or a decimal/hex numeric string. Short strings are not accepted."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise EncodingError(path, f"expected a number, got {type(value).__name__}")
    if isinstance(value, int):
        number = value
    else:
        text = value.strip()
        if _HEX_RE.match(text) or _DECIMAL_RE.match(text):
            number = parse_felt(text)
        elif allow_negative and _NEGATIVE_DECIMAL_RE.match(text):
            number = int(text, 10)
        else:
            raise EncodingError(path, f"{value!r} is not a numeric value")
    if number < 0 and not allow_negative:
        raise EncodingError(path, f"negative value {number} for an unsigned field")
    return number


def _check_field_range(number: int, path: str) -> int:
    if number < 0:
        raise EncodingError(path, f"negative value {number} for an unsigned field")
    if number >= FIELD_PRIME:
        raise EncodingError(path, f"value {number:#x} exceeds the field modulus")
    return number


def encode_felt(value: Any, path: str = "value") -> int:
    """Encode a felt-like value.

    Integers and numeric strings (decimal or 0x hex) are used as numbers, so
    ``"0x10"``, ``"16"`` and ``16`` encode identically. Any other string is
    packed as a short string.
    """
    if isinstance(value, str):
        text = value.strip()
        if _NEGATIVE_DECIMAL_RE.match(text):
            raise EncodingError(path, f"negative value {text} for an unsigned field")
        if not (_HEX_RE.match(text) or _DECIMAL_RE.match(text)):
            try:
                return encode_short_string(value)
            except ValueError as e:
                raise EncodingError(path, str(e)) from e
    return _check_field_range(_parse_integer(value, path), path)


def encode_selector(value: Any, path: str = "value") -> int:
    """Encode a selector: hex is used as-is, a name is hashed to its selector."""
    if isinstance(value, str) and not _HEX_RE.match(value.strip()):
        return get_selector_from_name(value)
    return _check_field_range(_parse_integer(value, path), path)


def encode_bool(value: Any, path: str = "value") -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return int(value.strip().lower() == "true")
    number = _parse_integer(value, path)
    if number not in (0, 1):
        raise EncodingError(path, f"{value!r} is not a boolean")
    return number


def encode_u128(value: Any, path: str = "value") -> int:
    number = _parse_integer(value, path)
    if number >= _U128_BOUND:
        raise EncodingError(path, f"value {number} does not fit in 128 bits")
    return number


def encode_i128(value: Any, path: str = "value") -> int:
    """Encode a signed 128-bit integer; negatives wrap around the field prime."""
    number = _parse_integer(value, path, allow_negative=True)
    if not -_I128_BOUND <= number < _I128_BOUND:
        raise EncodingError(path, f"value {number} does not fit in a signed 128-bit integer")
    return number % FIELD_PRIME


def encode_primitive(type_name: str, value: Any, path: str = "value") -> int:
    """Encode a primitive-typed value into a field element.

    Raises:
        EncodingError: If the value cannot be coerced to ``type_name``

    """
    if type_name in _FELT_TYPES:
        return encode_felt(value, path)
    if type_name == "selector":
        return encode_selector(value, path)
    if type_name == "bool":
        return encode_bool(value, path)
    if type_name in _UNSIGNED_128_TYPES:
        return encode_u128(value, path)
    if type_name == "i128":
        return encode_i128(value, path)
    raise EncodingError(path, f"unsupported primitive type {type_name!r}")


# Value tree construction


def build_value_tree(
    types: TypeSchema,
    type_name: str,
    data: Any,
    path: str = "message",
) -> StructNode:
    """Validate ``data`` against ``type_name`` and convert it into a value tree.

    Args:
        types: The type schema
        type_name: The struct type of ``data``
        data: The decoded JSON object
        path: Location of ``data`` in the document, used in error messages

    Returns:
        The struct node for ``data``

    Raises:
        EncodingError: On the first value that does not fit its type

    """
    if type_name not in types:
        raise SchemaError(f"Type {type_name!r} is not defined in types")
    if not isinstance(data, Mapping):
        raise EncodingError(path, f"expected an object of type {type_name}")

    parameters = types[type_name]
    known = {parameter.name for parameter in parameters}
    unknown = sorted(key for key in data if key not in known)
    if unknown:
        raise EncodingError(path, f"unknown field(s) for {type_name}: {', '.join(unknown)}")

    fields: list[ValueNode] = []
    for parameter in parameters:
        field_path = f"{path}.{parameter.name}"
        if parameter.name not in data:
            raise EncodingError(field_path, "missing field")
        fields.append(_build_field(types, parameter, data[parameter.name], field_path))
    return StructNode(type_name=type_name, fields=fields)


def _build_field(types: TypeSchema, parameter: Parameter, value: Any, path: str) -> ValueNode:
    if parameter.type == MERKLE_TREE_TYPE:
        if not isinstance(value, list) or not value:
            raise EncodingError(path, "expected a non-empty list of merkletree leaves")
        leaf_type = parameter.contains or ""
        return MerkleTreeNode(
            leaves=[
                build_value_tree(types, leaf_type, leaf, f"{path}[{i}]")
                for i, leaf in enumerate(value)
            ],
        )
    return _build_value(types, parameter.type, value, path)


def _build_value(types: TypeSchema, type_name: str, value: Any, path: str) -> ValueNode:
    if is_array_type(type_name):
        if not isinstance(value, list):
            raise EncodingError(path, f"expected a list for {type_name}")
        item_type = element_type(type_name)
        return ArrayNode(
            items=[
                _build_value(types, item_type, item, f"{path}[{i}]")
                for i, item in enumerate(value)
            ],
        )
    if type_name in types:
        return build_value_tree(types, type_name, value, path)
    return FeltNode(value=encode_primitive(type_name, value, path))


# Hashing


def encode_type(types: TypeSchema, type_name: str) -> str:
    """Return the canonical type string of ``type_name``.

    ``Mail(from:Person,to:Person,contents:felt)Person(name:felt,wallet:felt)``:
    the type itself, then each referenced struct type once, sorted by name.
    """
    if type_name not in types:
        raise SchemaError(f"Type {type_name!r} is not defined in types")
    return "".join(
        f"{dep}({','.join(f'{p.name}:{p.type}' for p in types[dep])})"
        for dep in [type_name, *get_dependencies(types, type_name)]
    )


def get_type_hash(types: TypeSchema, type_name: str) -> int:
    """Return the selector of the type string, binding a struct's shape into its hash."""
    return get_selector_from_name(encode_type(types, type_name))


def hash_value_tree(types: TypeSchema, node: ValueNode) -> int:
    """Hash a value tree produced by :func:`build_value_tree`."""
    match node:
        case FeltNode():
            return node.value
        case StructNode():
            return compute_hash_on_elements(
                [
                    get_type_hash(types, node.type_name),
                    *(hash_value_tree(types, child) for child in node.fields),
                ],
            )
        case ArrayNode():
            return compute_hash_on_elements([hash_value_tree(types, item) for item in node.items])
        case MerkleTreeNode():
            return compute_merkle_root([hash_value_tree(types, leaf) for leaf in node.leaves])
        case _:
            raise TypeError(f"Unknown value node: {type(node)}")


def encode_value(
    types: TypeSchema,
    type_name: str,
    value: Any,
    contains: str | None = None,
    path: str = "value",
) -> int:
    """Encode a single value of any type into a field element."""
    parameter = Parameter(name=path, type=type_name, contains=contains)
    return hash_value_tree(types, _build_field(types, parameter, value, path))


def get_struct_hash(types: TypeSchema, type_name: str, data: Any, path: str = "message") -> int:
    """Hash a struct value: chain hash of its type hash and encoded fields."""
    return hash_value_tree(types, build_value_tree(types, type_name, data, path))


class TypedData(msgspec.Struct, frozen=True):
    """A typed-data document.

    Attributes:
        types: The type schema, including ``StarkNetDomain``
        primary_type: The type of ``message``
        domain: The domain separator values
        message: The message values

    """

    types: dict[str, list[Parameter]]
    primary_type: str = msgspec.field(name="primaryType")
    domain: dict[str, Any]
    message: dict[str, Any]

    def __post_init__(self) -> None:
        """Validate the schema once, at the document boundary."""
        validate_schema(self.types, self.primary_type)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TypedData":
        """Build a document from decoded JSON.

        Raises:
            SchemaError: If the document shape or its schema is invalid

        """
        try:
            return msgspec.convert(data, cls)
        except msgspec.ValidationError as e:
            raise SchemaError(f"Invalid typed data document: {e}") from e

    @classmethod
    def from_json(cls, raw: bytes | str) -> "TypedData":
        """Decode a document from JSON text.

        Raises:
            SchemaError: If the JSON is malformed or the schema is invalid

        """
        try:
            return typed_data_decoder.decode(raw)
        except msgspec.ValidationError as e:
            raise SchemaError(f"Invalid typed data document: {e}") from e
        except msgspec.DecodeError as e:
            raise SchemaError(f"Invalid JSON: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return msgspec.to_builtins(self)  # type: ignore[no-any-return]

    def domain_tree(self) -> StructNode:
        return build_value_tree(self.types, DOMAIN_TYPE_NAME, self.domain, "domain")

    def message_tree(self) -> StructNode:
        return build_value_tree(self.types, self.primary_type, self.message, "message")

    def domain_hash(self) -> int:
        return hash_value_tree(self.types, self.domain_tree())

    def struct_hash(self) -> int:
        return hash_value_tree(self.types, self.message_tree())

    def message_hash(self, account: int | str) -> int:
        return get_message_hash(self, account)


typed_data_decoder = msgspec.json.Decoder(TypedData)


def get_domain_hash(typed_data: TypedData) -> int:
    return typed_data.domain_hash()


def get_message_hash(typed_data: TypedData, account: int | str) -> int:
    """Hash a typed-data document for a specific signer.

    Args:
        typed_data: The document
        account: The signer's account address or public key

    Returns:
        ``h("StarkNet Message", domain_hash, account, struct_hash(message))``

    Raises:
        EncodingError: If a domain or message value does not fit its type,
            or ``account`` is not a field element

    """
    account_felt = _check_field_range(_parse_integer(account, "account"), "account")
    domain_hash = typed_data.domain_hash()
    struct_hash = typed_data.struct_hash()
    message_hash = compute_hash_on_elements(
        [
            encode_short_string(STARKNET_MESSAGE_PREFIX),
            domain_hash,
            account_felt,
            struct_hash,
        ],
    )
    logger.debug(
        f"Hashed {typed_data.primary_type} for account {account_felt:#x}: {message_hash:#x}",
    )
    return message_hash
