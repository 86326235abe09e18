"""
Hashing helpers for header identity.

Only used when a source omits the header hash; Bitcoin-family headers are
identified by the double SHA-256 of their 80-byte serialization.
"""

from __future__ import annotations

from Crypto.Hash import SHA256


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return SHA256.new(data).digest()


def double_sha256(data: bytes) -> bytes:
    return sha256(sha256(data))
