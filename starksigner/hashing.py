"""Field-element hash primitives.

Pedersen hashing over the Stark curve, the chained hash used for structs and
arrays, keccak-based selectors and short-string packing.
"""

from collections.abc import Callable, Sequence

from ecdsa.ellipticcurve import INFINITY, PointJacobi
from eth_utils import keccak

from .curve import FIELD_PRIME, to_jacobi
from .types import Point

# Pedersen constant points. Each input element is split into its low 248 bits
# and its high 4 bits, each half scaled by its own point.
PEDERSEN_SHIFT_POINT: Point = (
    0x49EE3EBA8C1600700EE1B87EB599F16716B0B1022947733551FDE4050CA6804,
    0x3CA0CFE4B3BC6DDF346D49D06EA0ED34E621062C0E056C1D0405D266E10268A,
)
PEDERSEN_POINTS: tuple[Point, Point, Point, Point] = (
    (
        0x234287DCBAFFE7F969C748655FCA9E58FA8120B6D56EB0C1080D17957EBE47B,
        0x3B056F100F96FB21E889527D41F4E39940135DD7A6C94CC6ED0268EE89E5615,
    ),
    (
        0x4FA56F376C83DB33F9DAB2656558F3399099EC1DE5E3018B7A6932DBA8AA378,
        0x3FA0984C931C9E38113E0C0E47E4401562761F92A7A23B45168F4E80FF5B54D,
    ),
    (
        0x4BA4CC166BE8DEC764910F75B45F74B40C690C74709E90F3AA372F0BD2D6997,
        0x40301CF5C1751F4B971E46C4EDE85FCAC5C59A5CE5AE7C48151F27B24B219C,
    ),
    (
        0x54302DCB0E6CC1C6E44CCA8F61A63BB2CA65048D53FB325D36FF12C49A58202,
        0x1B77B3E37D13504B348046268D8AE25CE98AD783C25561A879DCC77E99C2426,
    ),
)

LOW_PART_BITS = 248
LOW_PART_MASK = (1 << LOW_PART_BITS) - 1

MASK_250 = (1 << 250) - 1
SHORT_STRING_MAX_LENGTH = 31

STARKNET_MESSAGE_PREFIX = "StarkNet Message"


_SHIFT = to_jacobi(PEDERSEN_SHIFT_POINT)
_CONSTANTS = tuple(to_jacobi(point, fixed=True) for point in PEDERSEN_POINTS)


def _process_element(element: int, low_point: PointJacobi, high_point: PointJacobi) -> PointJacobi:
    if not 0 <= element < FIELD_PRIME:
        raise ValueError(f"Pedersen input {element:#x} is not a field element")
    low = element & LOW_PART_MASK
    high = element >> LOW_PART_BITS
    return low_point * low + high_point * high


def pedersen_hash(a: int, b: int) -> int:
    """Hash two field elements into one.

    Args:
        a: First field element
        b: Second field element

    Returns:
        The x-coordinate of the combined point

    Raises:
        ValueError: If an input is not in ``[0, FIELD_PRIME)``

    """
    p0, p1, p2, p3 = _CONSTANTS
    point = _SHIFT + _process_element(a, p0, p1) + _process_element(b, p2, p3)
    if point == INFINITY:
        raise ValueError("Pedersen hash reached the point at infinity")
    return int(point.x())


def compute_hash_on_elements(
    data: Sequence[int],
    hash_func: Callable[[int, int], int] = pedersen_hash,
) -> int:
    """Chain-hash a list of field elements, then mix in its length.

    ``h(h(...h(h(0, d0), d1)..., dn-1), n)``
    """
    result = 0
    for element in data:
        result = hash_func(result, element)
    return hash_func(result, len(data))


def starknet_keccak(data: bytes) -> int:
    """Keccak-256 truncated to 250 bits so it fits in a field element."""
    return int.from_bytes(keccak(data), "big") & MASK_250


def get_selector_from_name(name: str) -> int:
    """Return the entry point selector (or type hash) for a name."""
    return starknet_keccak(name.encode("utf-8"))


def is_short_string(text: str) -> bool:
    return text.isascii() and len(text) <= SHORT_STRING_MAX_LENGTH


def encode_short_string(text: str) -> int:
    """Pack an ASCII string of at most 31 characters into a field element.

    Raises:
        ValueError: If the text is not ASCII or is too long

    """
    if not text.isascii():
        raise ValueError(f"{text!r} is not an ASCII string")
    if len(text) > SHORT_STRING_MAX_LENGTH:
        raise ValueError(
            f"{text!r} is {len(text)} characters long, "
            f"short strings are limited to {SHORT_STRING_MAX_LENGTH}",
        )
    return int.from_bytes(text.encode("ascii"), "big")


def decode_short_string(value: int) -> str:
    """Unpack a field element into the ASCII text it holds."""
    if value == 0:
        return ""
    return value.to_bytes((value.bit_length() + 7) // 8, "big").decode("ascii")


def merkle_hash(a: int, b: int) -> int:
    """Hash a pair of Merkle nodes, smaller value first."""
    return pedersen_hash(a, b) if a <= b else pedersen_hash(b, a)


def compute_merkle_root(leaves: Sequence[int]) -> int:
    """Compute the root of a Merkle tree built with sorted-pair hashing.

    A level with an odd number of nodes pairs its last node with 0.

    Raises:
        ValueError: If there are no leaves

    """
    if not leaves:
        raise ValueError("Cannot build a Merkle tree without leaves")
    level = list(leaves)
    while len(level) > 1:
        level = [
            merkle_hash(level[i], level[i + 1] if i + 1 < len(level) else 0)
            for i in range(0, len(level), 2)
        ]
    return level[0]
