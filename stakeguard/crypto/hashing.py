"""
StakeGuard Crypto Hashing Module

Provides the hash functions used for integrity commitments:
- keccak256: Web3 standard digest
- encode_fields: unambiguous byte encoding of a field tuple
"""

from typing import Any, Union

from Crypto.Hash import keccak as _keccak

from ..interfaces import IntegrityHasher


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum standard).

    Args:
        data: Input bytes or hex string

    Returns:
        32-byte hash
    """
    if isinstance(data, str):
        if data.startswith('0x') or data.startswith('0X'):
            data = bytes.fromhex(data[2:])
        else:
            data = bytes.fromhex(data)

    k = _keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def encode_fields(*fields: Any) -> bytes:
    """
    Encode a tuple of fields as length-prefixed UTF-8 chunks.

    ``("ab", "c")`` and ``("a", "bc")`` produce different encodings.
    """
    out = bytearray()
    for value in fields:
        if isinstance(value, bytes):
            chunk = value
        else:
            chunk = str(value).encode('utf-8')
        out += len(chunk).to_bytes(4, 'big')
        out += chunk
    return bytes(out)


class KeccakIntegrityHasher(IntegrityHasher):
    """
    Integrity commitments as ``0x``-prefixed Keccak-256 over the encoded fields.

    An optional domain tag separates commitments made for different purposes
    (scores vs. slashing records).
    """

    def __init__(self, domain: str = "stakeguard"):
        self.domain = domain

    def commit(self, *fields: Any) -> str:
        return '0x' + keccak256(encode_fields(self.domain, *fields)).hex()
