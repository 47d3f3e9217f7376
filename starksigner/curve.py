"""Stark curve arithmetic.

The curve is ``y^2 = x^3 + ALPHA * x + BETA`` over the 252-bit prime field
``FIELD_PRIME``. Arithmetic is done by ``ecdsa.ellipticcurve`` in Jacobian
coordinates. At this module's boundary points are affine ``(x, y)`` tuples
reduced into ``[0, FIELD_PRIME)``, and the point at infinity is ``None``.
"""

from ecdsa.ellipticcurve import INFINITY, CurveFp, PointJacobi
from ecdsa.numbertheory import SquareRootError, square_root_mod_prime

from .models import KeyPair, parse_felt
from .types import Point

FIELD_PRIME = 0x800000000000011000000000000000000000000000000000000000000000001
ALPHA = 1
BETA = 0x6F21413EFBE40DE150E596D72F7A8C5609AD26C15C915C1F4CDFCB99CEE9E89
EC_ORDER = 0x800000000000010FFFFFFFFFFFFFFFFB781126DCAE7B2321E66A241ADC64D2F

EC_GEN: Point = (
    0x1EF15C18599971B7BECED415A40F0C7DEACFD9B0D1819E03D723D8BC943CFCA,
    0x5668060AA49730B7BE4801DF46EC62DE53ECD11ABE43A32873000C36E8DC1F,
)

# Signatures and message hashes must fit in 251 bits.
N_ELEMENT_BITS_ECDSA = 251

_UNCOMPRESSED_KEY_LENGTH = len("0x04") + 128

CURVE = CurveFp(FIELD_PRIME, ALPHA, BETA)

# The curve has prime order, so every point other than infinity has order
# EC_ORDER. generator=True makes ecdsa precompute a multiplication table.
GENERATOR = PointJacobi(CURVE, EC_GEN[0], EC_GEN[1], 1, EC_ORDER, generator=True)


class InvalidScalarError(ValueError):
    """Private key is zero, negative or not below the curve order."""


def to_jacobi(point: Point, fixed: bool = False) -> PointJacobi:
    """Lift an affine point into ecdsa's Jacobian representation.

    Args:
        point: The affine point
        fixed: Precompute a multiplication table, for points that are
            multiplied many times (the Pedersen constants)

    """
    return PointJacobi(CURVE, point[0], point[1], 1, EC_ORDER, generator=fixed)


def to_affine(point: PointJacobi) -> Point | None:
    """Convert an ecdsa point back to an affine tuple, None for infinity."""
    if point == INFINITY:
        return None
    return (int(point.x()), int(point.y()))


def ec_mult_generator(scalar: int) -> Point | None:
    """Multiply the generator by a scalar in ``[0, EC_ORDER)``."""
    if scalar < 0:
        raise ValueError("Scalar must be non-negative")
    return to_affine(GENERATOR * scalar)


def is_on_curve(point: Point) -> bool:
    x, y = point
    if not (0 <= x < FIELD_PRIME and 0 <= y < FIELD_PRIME):
        return False
    return bool(CURVE.contains_point(x, y))


def get_y_coordinate(x: int) -> int:
    """Recover one y-coordinate for an x-coordinate on the curve.

    The other candidate is ``FIELD_PRIME - y``.

    Raises:
        ValueError: If no curve point has this x-coordinate

    """
    if not 0 <= x < FIELD_PRIME:
        raise ValueError("x-coordinate is not a field element")
    try:
        return int(square_root_mod_prime((x * x * x + ALPHA * x + BETA) % FIELD_PRIME, FIELD_PRIME))
    except SquareRootError as e:
        raise ValueError(f"No curve point has x-coordinate {x:#x}") from e


def encode_public_key(point: Point) -> str:
    """Render a public point as an uncompressed SEC1 key, ``0x04 || x || y``."""
    return f"0x04{point[0]:064x}{point[1]:064x}"


def parse_public_key(value: int | str) -> int | Point:
    """Parse a public key given as an x-coordinate or an uncompressed key.

    Returns:
        The x-coordinate, or the full point for a ``0x04``-prefixed key

    Raises:
        ValueError: If the value is not a number, or an uncompressed key is
            not a point on the curve

    """
    if isinstance(value, str):
        text = value.strip().lower()
        # An x-coordinate has at most 63 hex digits, so the length is unambiguous
        if text.startswith("0x04") and len(text) == _UNCOMPRESSED_KEY_LENGTH:
            point = (int(text[4:68], 16), int(text[68:], 16))
            if not is_on_curve(point):
                raise ValueError("Uncompressed public key is not a point on the Stark curve")
            return point
    return parse_felt(value)


def validate_private_key(private_key: int) -> None:
    """Check that a private key is a usable scalar.

    The key itself never appears in the error message.

    Raises:
        InvalidScalarError: If the key is outside ``[1, EC_ORDER)``

    """
    if not isinstance(private_key, int) or isinstance(private_key, bool):
        raise InvalidScalarError("Private key must be an integer")
    if private_key <= 0:
        raise InvalidScalarError("Private key must be non-zero and positive")
    if private_key >= EC_ORDER:
        raise InvalidScalarError("Private key must be below the curve order")


def private_to_point(private_key: int) -> Point:
    """Derive the public point ``private_key * EC_GEN``."""
    validate_private_key(private_key)
    point = ec_mult_generator(private_key)
    if point is None:
        raise InvalidScalarError("Private key maps to the point at infinity")
    return point


def private_key_to_public_key(private_key: int) -> int:
    """Return the Starknet public key (x-coordinate) for a private key."""
    return private_to_point(private_key)[0]


def get_key_pair(private_key: int) -> KeyPair:
    """Derive a KeyPair. Callers must ``clear()`` it once signing is done."""
    public_key = private_to_point(private_key)
    return KeyPair.from_private_key(private_key, public_key)
