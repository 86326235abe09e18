"""Serialized insertion point for header batches coming from concurrent fetchers."""

from __future__ import annotations

import asyncio
import logging

from headersync.chain.header_chain import HeaderChain
from headersync.common.types import ChainEntry, Chunk

logger = logging.getLogger(__name__)


class ChainAssembler:
    """Owns the header chain; fetch tasks hand their chunks to add_chunk()."""

    def __init__(self, chain: HeaderChain) -> None:
        self.chain = chain
        self._lock = asyncio.Lock()
        self.insert_count = 0

    async def add_chunk(self, chunk: Chunk) -> int:
        """Insert a chunk's headers in their internal order.

        Chunks may arrive out of height order; the chain places headers by
        linkage, so no sorting happens here.
        """
        async with self._lock:
            connected = self.chain.add_headers(chunk.items)
            self.insert_count += 1
        logger.debug(
            "Inserted chunk %s: %d connected, %d orphans pending",
            chunk.range, connected, self.chain.orphan_count,
        )
        return connected

    def longest_chain(self) -> list[ChainEntry]:
        return self.chain.get_longest_chain()
