"""Data classes for starksigner.

This module contains dataclasses and structured types used across the codebase.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from .types import FeltHex, Point, to_felt_hex

_SCALAR_BYTES = 32


class InvalidSignatureFormat(ValueError):
    """Signature does not have the (r, s) shape or its values are out of range."""


def parse_felt(value: int | str) -> int:
    """Parse a decimal or 0x-prefixed hex value into an integer."""
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    text = value.strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text, 10)


@dataclass(slots=True)
class KeyPair:
    """A private key and the public point derived from it.

    The private key lives in a bytearray so it can be zeroed as soon as the
    signing call that needed it returns.

    Attributes:
        public_key: The full public point (x, y)
        _private_key: Big-endian private key bytes (read through ``private_key``)

    """

    public_key: Point
    _private_key: bytearray = field(repr=False)

    @property
    def private_key(self) -> int:
        """Return the private key as an integer for immediate use."""
        return int.from_bytes(self._private_key, "big")

    @property
    def stark_public_key(self) -> int:
        """Return the x-coordinate, the short-form Starknet public key."""
        return self.public_key[0]

    def clear(self) -> None:
        """Zero out the private key bytes."""
        for i in range(len(self._private_key)):
            self._private_key[i] = 0

    @classmethod
    def from_private_key(cls, private_key: int, public_key: Point) -> "KeyPair":
        return cls(
            public_key=public_key,
            _private_key=bytearray(private_key.to_bytes(_SCALAR_BYTES, "big")),
        )


@dataclass(frozen=True, slots=True)
class Signature:
    """A Stark ECDSA signature.

    Attributes:
        r: The x-coordinate of the nonce point
        s: The proof scalar

    """

    r: int
    s: int

    @classmethod
    def from_sequence(cls, values: Sequence[int | str]) -> "Signature":
        """Normalize a wallet-produced signature array to (r, s).

        Wallets return either ``[r, s]`` or ``[r, s, extra]`` where ``extra`` is
        a recovery hint. The hint is discarded.

        Raises:
            InvalidSignatureFormat: If the array has another length or holds
                values that are not numbers

        """
        if (
            isinstance(values, (str, bytes))
            or not isinstance(values, Sequence)
            or len(values) not in (2, 3)
        ):
            raise InvalidSignatureFormat(
                f"Signature must have 2 or 3 elements, got {_describe_length(values)}",
            )
        try:
            r, s = parse_felt(values[0]), parse_felt(values[1])
        except (TypeError, ValueError) as e:
            raise InvalidSignatureFormat(f"Signature values must be numbers: {e}") from e
        return cls(r=r, s=s)

    def to_hex(self) -> list[FeltHex]:
        """Return [r, s] as 0x-prefixed lowercase hex strings."""
        return [to_felt_hex(self.r), to_felt_hex(self.s)]

    def __iter__(self):  # type: ignore[no-untyped-def]
        yield self.r
        yield self.s


def _describe_length(values: object) -> str:
    try:
        return str(len(values))  # type: ignore[arg-type]
    except TypeError:
        return type(values).__name__


@dataclass(frozen=True, slots=True)
class SignedMessage:
    """Result of signing a typed-data document.

    Attributes:
        message_hash: The hash that was signed
        signature: The signature (r, s)
        public_key: The Starknet public key (x-coordinate)
        public_point: The full public point, for uncompressed key output

    """

    message_hash: int
    signature: Signature
    public_key: int
    public_point: Point


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Result of verifying a signature over a typed-data document.

    Attributes:
        valid: Whether the signature is accepted
        message_hash: The hash the signature was checked against

    """

    valid: bool
    message_hash: int
