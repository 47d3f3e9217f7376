"""starksigner - typed-data hashing, signing and verification for Starknet accounts."""

__version__ = "0.1.0"
