"""Base types, structs and validation helpers for handlers."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import msgspec
from litestar import Request
from litestar.exceptions import ValidationException

from starksigner.curve import parse_public_key
from starksigner.models import InvalidSignatureFormat, Signature, parse_felt
from starksigner.schema import SchemaError
from starksigner.typed_data import EncodingError, TypedData
from starksigner.types import Point

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=msgspec.Struct)


# Request/Response structs


class HashRequest(msgspec.Struct):
    """Request struct for hashing a typed data document."""

    typed_data: dict[str, Any]
    account: str | int


class VerifyRequest(msgspec.Struct):
    """Request struct for verifying a signature against a public key."""

    typed_data: dict[str, Any]
    # x-coordinate, or an uncompressed 0x04 key
    public_key: str | int
    signature: list[str | int]
    # defaults to the public key
    account: str | int | None = None


class VerifyAccountRequest(msgspec.Struct):
    """Request struct for verifying a signature with the account contract."""

    typed_data: dict[str, Any]
    account: str | int
    signature: list[str | int]


class HashResponse(msgspec.Struct):
    message_hash: str
    domain_hash: str
    struct_hash: str


class VerifyResponse(msgspec.Struct):
    valid: bool
    message_hash: str


class HealthResponse(msgspec.Struct):
    """Health check response."""

    status: str
    rpc_configured: bool


# Validation helpers


async def parse_body(request: Request, request_type: type[RequestT]) -> RequestT:
    """Decode and validate a JSON request body.

    Raises:
        ValidationException: If the body is not valid JSON or has the wrong shape

    """
    try:
        body_bytes = await request.body()
        return msgspec.json.decode(body_bytes, type=request_type)
    except (msgspec.ValidationError, msgspec.DecodeError) as e:
        raise ValidationException(detail=f"Validation error: {e}") from e


def parse_typed_data(data: dict[str, Any]) -> TypedData:
    """Build a TypedData document, mapping schema problems to a 400."""
    try:
        return TypedData.from_dict(data)
    except SchemaError as e:
        raise ValidationException(detail=f"Invalid typed data: {e}") from e


def parse_signature(values: list[str | int]) -> Signature:
    try:
        return Signature.from_sequence(values)
    except InvalidSignatureFormat as e:
        raise ValidationException(detail=str(e)) from e


def parse_felt_field(name: str, value: str | int) -> int:
    """Parse a numeric request field, reporting the field name on failure."""
    try:
        return parse_felt(value)
    except ValueError as e:
        raise ValidationException(detail=f"{name} must be a decimal or 0x-prefixed hex number") from e


def parse_public_key_field(value: str | int) -> int | Point:
    """Parse a public key given as an x-coordinate or a full 0x04 key."""
    try:
        return parse_public_key(value)
    except ValueError as e:
        raise ValidationException(detail=f"public_key is invalid: {e}") from e


def encoding_error_detail(error: SchemaError | EncodingError) -> str:
    if isinstance(error, EncodingError):
        return f"Invalid value at {error.path}: {error.reason}"
    return f"Invalid typed data: {error}"
