"""
Per-source header fetching.

A source's assignment is tiled into step-sized batches that are requested
one after another; there is no parallelism inside a single source. A failed
call aborts the whole assignment.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional, Sequence

from headersync.common.errors import FetchError
from headersync.common.types import Chunk, HeightRange
from headersync.rpc.client import DAPIClient
from headersync.sync.tiling import tile

logger = logging.getLogger(__name__)


class Fetcher:
    """Fetches height ranges from one designated source at a time."""

    def __init__(self, client: DAPIClient) -> None:
        self.client = client
        self.calls = 0

    async def fetch_chunk(
        self,
        source: Optional[str],
        chunk_range: HeightRange,
        excluded: Optional[Sequence[str]] = None,
    ) -> Chunk:
        """One getBlockHeaders call for exactly `chunk_range`."""
        self.calls += 1
        headers = await self.client.get_block_headers(
            chunk_range.start, len(chunk_range), excluded=excluded, source=source,
        )
        if len(headers) != len(chunk_range):
            raise FetchError(
                f"Source {source or 'any'} returned {len(headers)} headers "
                f"for {chunk_range}, expected {len(chunk_range)}",
                source=source, method="getBlockHeaders",
            )
        return Chunk(chunk_range.start, chunk_range.stop, headers)

    async def iter_chunks(
        self,
        source: Optional[str],
        start: int,
        stop: int,
        step: int,
        excluded: Optional[Sequence[str]] = None,
    ) -> AsyncIterator[Chunk]:
        """Yield one chunk per tiled step of [start, stop), in height order."""
        for chunk_range in tile(HeightRange(start, stop), step):
            chunk = await self.fetch_chunk(source, chunk_range, excluded)
            logger.debug("Fetched %d headers %s from %s", len(chunk), chunk_range, source or "any")
            yield chunk

    async def fetch_range(
        self,
        source: Optional[str],
        start: int,
        stop: int,
        step: int,
        excluded: Optional[Sequence[str]] = None,
    ) -> Chunk:
        """Fetch all of [start, stop) from `source` as a single chunk."""
        items = []
        async for chunk in self.iter_chunks(source, start, stop, step, excluded):
            items.extend(chunk.items)
        return Chunk(start, stop, items)
