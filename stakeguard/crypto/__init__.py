"""
StakeGuard Crypto Module

Hashing helpers used for integrity commitments.
"""

from .hashing import KeccakIntegrityHasher, encode_fields, keccak256

__all__ = [
    "KeccakIntegrityHasher",
    "encode_fields",
    "keccak256",
]
