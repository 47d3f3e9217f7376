"""Type definitions for starksigner.

This module contains type aliases and NewType definitions for domain-specific
types to improve type safety and code readability.
"""

from typing import NewType

Point = tuple[int, int]
"""Affine point on the Stark curve as (x, y)."""

FeltHex = NewType("FeltHex", str)
"""Field element as 0x-prefixed lowercase hex without leading zero padding."""


def to_felt_hex(value: int) -> FeltHex:
    """Render an integer the way signatures and hashes are displayed."""
    return FeltHex(hex(value))
