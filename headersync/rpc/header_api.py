"""
DAPI header methods served from an in-memory header index.

Lets a synced (and exported) header range be republished to other light
clients: getBlockHash, getBlockHeader, getBlockHeaders, getBestBlockHeight.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from headersync.common.types import Header
from headersync.sync.header_store import HeaderStore
from headersync.rpc.server import INVALID_PARAMS, NOT_FOUND, RPCError, RPCServer

logger = logging.getLogger(__name__)

MAX_HEADERS_PER_REQUEST = 2000


class HeaderIndex:
    """Headers addressable by height and by hash."""

    def __init__(self, entries: Iterable[tuple[int, Header]] = ()) -> None:
        self._by_height: dict[int, Header] = {}
        self._by_hash: dict[str, Header] = {}
        for height, header in entries:
            self.put(height, header)

    @classmethod
    def from_store(cls, store: HeaderStore) -> HeaderIndex:
        """Index an export, root header included."""
        index = cls((entry.height, entry.header) for entry in store)
        if store.root is not None:
            index.put(store.root.height, store.root.header)
        return index

    def put(self, height: int, header: Header) -> None:
        if header.height is None:
            header.height = height
        self._by_height[height] = header
        self._by_hash[header.block_hash()] = header

    def by_height(self, height: int) -> Optional[Header]:
        return self._by_height.get(height)

    def by_hash(self, block_hash: str) -> Optional[Header]:
        return self._by_hash.get(block_hash)

    @property
    def best_height(self) -> int:
        return max(self._by_height, default=-1)

    def __len__(self) -> int:
        return len(self._by_height)


def register_header_api(rpc: RPCServer, index: HeaderIndex) -> None:
    """Register the header methods on an RPCServer."""

    def _check_height(name: str, value) -> int:
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise RPCError(INVALID_PARAMS, f"{name} must be a non-negative integer")
        return value

    @rpc.method("getBestBlockHeight")
    def get_best_block_height() -> int:
        return index.best_height

    @rpc.method("getBlockHash")
    def get_block_hash(height: int) -> str:
        header = index.by_height(_check_height("height", height))
        if header is None:
            raise RPCError(NOT_FOUND, f"No block at height {height}")
        return header.block_hash()

    @rpc.method("getBlockHeader")
    def get_block_header(blockHash: str) -> dict:
        header = index.by_hash(blockHash)
        if header is None:
            raise RPCError(NOT_FOUND, f"Unknown block hash {blockHash}")
        return header.to_rpc()

    @rpc.method("getBlockHeaders")
    def get_block_headers(offset: int, limit: int, excludedIps: Optional[list] = None) -> list[dict]:
        offset = _check_height("offset", offset)
        limit = _check_height("limit", limit)
        if limit > MAX_HEADERS_PER_REQUEST:
            raise RPCError(INVALID_PARAMS, f"limit exceeds {MAX_HEADERS_PER_REQUEST}")
        if excludedIps:
            logger.debug("getBlockHeaders excluding %s", ", ".join(excludedIps))
        headers = []
        for height in range(offset, offset + limit):
            header = index.by_height(height)
            if header is None:
                break
            headers.append(header.to_rpc())
        return headers
