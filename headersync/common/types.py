"""
Core header-sync types: Header, HeightRange, Chunk, ChainEntry, StoredHeader.

Headers arrive as JSON objects from DAPI nodes. The sync core only relies on
the hash and the previous-hash link; the remaining fields are carried along
so that exports round-trip.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field, replace
from typing import Optional, Union

from headersync.common.crypto import double_sha256
from headersync.common.errors import RangeError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ZERO_HASH = "0" * 64
HEADER_SIZE = 80


def bits_to_int(bits: Union[int, str]) -> int:
    """Reinterpret compact difficulty bits given as a hex string."""
    if isinstance(bits, int) and not isinstance(bits, bool):
        return bits
    if not isinstance(bits, str):
        raise TypeError(f"bits must be an int or hex string, got {type(bits).__name__}")
    value = bits[2:] if bits.startswith(("0x", "0X")) else bits
    return int(value, 16)


def check_hash(value: object, name: str = "hash") -> str:
    """Return `value` if it is a 32-byte hex string, else raise ValueError."""
    if not isinstance(value, str) or len(value) != 64:
        raise ValueError(f"{name} must be a 64-character hex string, got {value!r}")
    bytes.fromhex(value)
    return value


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

@dataclass
class Header:
    """One block header as returned by a remote source."""
    hash: Optional[str] = None
    version: int = 1
    prev_hash: str = ZERO_HASH
    merkle_root: str = ZERO_HASH
    time: int = 0
    bits: Union[int, str] = "1d00ffff"
    nonce: int = 0
    height: Optional[int] = None

    def serialize(self) -> bytes:
        """80-byte wire serialization (hashes little-endian)."""
        return (
            struct.pack("<i", self.version)
            + bytes.fromhex(self.prev_hash)[::-1]
            + bytes.fromhex(self.merkle_root)[::-1]
            + struct.pack("<III", self.time, bits_to_int(self.bits), self.nonce)
        )

    def compute_hash(self) -> str:
        return double_sha256(self.serialize())[::-1].hex()

    def block_hash(self) -> str:
        if self.hash is None:
            self.hash = self.compute_hash()
        return self.hash

    def as_synthetic_root(self) -> Header:
        """Copy usable as a custom genesis: zero predecessor, integer bits."""
        return replace(
            self,
            hash=self.block_hash(),
            prev_hash=ZERO_HASH,
            bits=bits_to_int(self.bits),
        )

    def to_rpc(self) -> dict:
        result = {
            "hash": self.block_hash(),
            "version": self.version,
            "previousblockhash": self.prev_hash,
            "merkleroot": self.merkle_root,
            "time": self.time,
            "bits": self.bits if isinstance(self.bits, str) else format(self.bits, "08x"),
            "nonce": self.nonce,
        }
        if self.height is not None:
            result["height"] = self.height
        return result

    @classmethod
    def from_rpc(cls, data: dict) -> Header:
        if not isinstance(data, dict):
            raise ValueError(f"Header must be an object, got {type(data).__name__}")
        prev_hash = data.get("previousblockhash", data.get("prevHash")) or ZERO_HASH
        merkle_root = data.get("merkleroot", data.get("merkleRoot")) or ZERO_HASH
        block_hash = data.get("hash")
        if block_hash is not None:
            check_hash(block_hash)
        bits = data.get("bits", "1d00ffff")
        bits_to_int(bits)
        height = data.get("height")
        return cls(
            hash=block_hash,
            version=int(data.get("version", 1)),
            prev_hash=check_hash(prev_hash, "previousblockhash"),
            merkle_root=check_hash(merkle_root, "merkleroot"),
            time=int(data.get("time", data.get("timestamp", 0))),
            bits=bits,
            nonce=int(data.get("nonce", 0)),
            height=int(height) if height is not None else None,
        )


# ---------------------------------------------------------------------------
# Ranges and chunks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HeightRange:
    """Half-open height interval [start, stop)."""
    start: int
    stop: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.stop < self.start:
            raise RangeError(f"Invalid height range [{self.start}, {self.stop})")

    def __len__(self) -> int:
        return self.stop - self.start

    def __contains__(self, height: object) -> bool:
        return isinstance(height, int) and self.start <= height < self.stop

    def __str__(self) -> str:
        return f"[{self.start}, {self.stop})"


@dataclass
class Chunk:
    """A contiguous, height-aligned batch of headers from one fetch call."""
    start: int
    stop: int
    items: list[Header] = field(default_factory=list)

    @property
    def range(self) -> HeightRange:
        return HeightRange(self.start, self.stop)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ChainEntry:
    height: int
    hash: str
    header: Header


@dataclass(frozen=True)
class StoredHeader:
    height: int
    header: Header
