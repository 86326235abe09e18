"""
Header sync orchestration.

Pipeline:
  1. Resolve the root header at the start height and turn it into a
     synthetic genesis for a fresh header chain
  2. Fetch the remaining headers, either in one sequential pass or with one
     concurrent task per source over disjoint sub-ranges
  3. Assemble the flat header store and check it for gaps
  4. Sample checkpoints from the longest chain and validate them
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional

from headersync.chain.assembler import ChainAssembler
from headersync.chain.header_chain import HeaderChain
from headersync.common.config import ROOT_LABEL, SyncConfig
from headersync.common.errors import (
    AssemblyGapError,
    ExportError,
    FetchError,
    RangeError,
    ValidationFailure,
)
from headersync.common.types import Chunk, Header, HeightRange, StoredHeader
from headersync.rpc.client import DAPIClient
from headersync.rpc.server import NOT_FOUND
from headersync.sync import checkpoints
from headersync.sync.fetcher import Fetcher
from headersync.sync.header_store import HeaderStore
from headersync.sync.tiling import assignments

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sync state
# ---------------------------------------------------------------------------

class SyncPhase(Enum):
    IDLE = "idle"
    FETCHING_ROOT = "fetching_root"
    BUILDING_CHAIN = "building_chain"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncState:
    """Tracks the progress of a header sync run."""
    phase: SyncPhase = SyncPhase.IDLE
    target: int = 0
    fetched: int = 0
    started_at: float = 0.0
    phase_started_at: float = 0.0


@dataclass
class SyncResult:
    phase: SyncPhase
    chain: HeaderChain
    store: HeaderStore
    checkpoints: set[str] = field(default_factory=set)
    checkpoints_valid: bool = False
    trusted_valid: Optional[bool] = None
    gaps: list[HeightRange] = field(default_factory=list)
    failures: list[ValidationFailure] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return (
            self.phase == SyncPhase.DONE
            and self.checkpoints_valid
            and self.trusted_valid is not False
            and not self.gaps
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class HeaderSync:
    """Drives one header sync run against an injected DAPI client."""

    def __init__(self, client: DAPIClient, config: SyncConfig) -> None:
        self.client = client
        self.config = config
        self.fetcher = Fetcher(client)
        self.state = SyncState()
        self.assembler: Optional[ChainAssembler] = None
        self.root: Optional[StoredHeader] = None
        self._chunks: list[Chunk] = []

    def _set_phase(self, phase: SyncPhase) -> None:
        now = time.monotonic()
        if self.state.phase not in (SyncPhase.IDLE, phase):
            logger.info(
                "Phase %s finished in %.2fs",
                self.state.phase.value, now - self.state.phase_started_at,
            )
        self.state.phase = phase
        self.state.phase_started_at = now
        logger.debug("Sync phase -> %s", phase.value)

    @property
    def progress(self) -> tuple[int, int]:
        return self.state.fetched, self.state.target

    async def run(self) -> SyncResult:
        """Run the whole pipeline. Fetch failures re-raise after FAILED is set."""
        self.config.validate()
        if self.state.phase != SyncPhase.IDLE:
            raise RuntimeError(f"HeaderSync already ran (phase {self.state.phase.value})")

        self.state.started_at = time.monotonic()
        fetch_range = HeightRange(self.config.fetch_start, self.config.fetch_stop)
        self.state.target = len(fetch_range)

        try:
            self._set_phase(SyncPhase.FETCHING_ROOT)
            root = await self._fetch_root()
            chain = HeaderChain(ROOT_LABEL, self.config.confirmations, root)
            self.assembler = ChainAssembler(chain)

            self._set_phase(SyncPhase.BUILDING_CHAIN)
            if self.config.parallel:
                await self._build_parallel(fetch_range)
            else:
                await self._build_sequential(fetch_range)
            logger.info(
                "Got header chain with longest chain of length %d",
                len(chain.get_longest_chain()),
            )
            return self._validate(chain, fetch_range)
        except Exception as e:
            self._set_phase(SyncPhase.FAILED)
            logger.error("Header sync failed: %s", e)
            raise

    async def _fetch_root(self) -> Header:
        try:
            genesis_hash = await self.client.get_block_hash(0)
            logger.debug("Network genesis %s", genesis_hash)
        except FetchError as e:
            # Republished exports start at their own root, not at genesis.
            if e.code != NOT_FOUND:
                raise
            logger.info("Source has no genesis header, syncing from its root")

        from_height = self.config.from_height
        from_hash = await self.client.get_block_hash(from_height)
        header = await self.client.get_block_header(from_hash)
        if header.hash is None:
            header.hash = from_hash
        self.root = StoredHeader(from_height, replace(header, height=from_height))
        root = replace(header.as_synthetic_root(), height=from_height)
        logger.info("Root header at %d: %s", from_height, root.block_hash())
        return root

    # ------------------------------------------------------------------
    # Chain building
    # ------------------------------------------------------------------

    async def _build_sequential(self, fetch_range: HeightRange) -> None:
        ((sub, step),) = assignments(fetch_range.start, fetch_range.stop, 1, self.config.step)
        logger.info("Sequential sync of %s with step %d", sub, step)
        await self._run_source(None, sub, step, excluded=None)

    async def _build_parallel(self, fetch_range: HeightRange) -> None:
        seeds = self.config.seeds
        if not seeds:
            raise RangeError("parallel sync needs at least one source")
        plan = assignments(fetch_range.start, fetch_range.stop, len(seeds), self.config.step)
        for seed, (sub, step) in zip(seeds, plan):
            logger.info("Source %s assigned %s with step %d", seed, sub, step)

        tasks = [
            asyncio.create_task(
                self._run_source(seed, sub, step, excluded=[seed]),
                name=f"headersync-fetch-{seed}",
            )
            for seed, (sub, step) in zip(seeds, plan)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_source(
        self, source: Optional[str], sub: HeightRange, step: int, excluded: Optional[list[str]],
    ) -> None:
        async for chunk in self.fetcher.iter_chunks(source, sub.start, sub.stop, step, excluded):
            await self._accept(chunk)

    async def _accept(self, chunk: Chunk) -> None:
        self._chunks.append(chunk)
        await self.assembler.add_chunk(chunk)
        self.state.fetched += len(chunk)
        logger.info(
            "Synced %d / %d headers (chunk %s)",
            self.state.fetched, self.state.target, chunk.range,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, chain: HeaderChain, fetch_range: HeightRange) -> SyncResult:
        self._set_phase(SyncPhase.VALIDATING)

        store = HeaderStore.from_chunks(self._chunks, self.root)
        gaps: list[HeightRange] = []
        try:
            store.check(fetch_range)
        except AssemblyGapError as e:
            gaps = e.gaps
            logger.warning("%s", e)

        failures: list[ValidationFailure] = []
        longest = len(chain.get_longest_chain())
        sampled = checkpoints.sample(chain, self.config.checkpoint_count)
        valid = self._check_checkpoints(chain, sampled, "Checkpoints", failures)

        trusted_valid = None
        if self.config.trusted_checkpoints:
            trusted_valid = self._check_checkpoints(
                chain, self.config.trusted_checkpoints, "Trusted checkpoints", failures,
            )
        if not failures:
            logger.info("Checkpoints valid on header chain %d", longest)

        if self.config.export_path:
            try:
                store.export_json(self.config.export_path)
            except OSError as e:
                raise ExportError(
                    f"Cannot write header export {self.config.export_path}: {e}"
                ) from e

        self._set_phase(SyncPhase.DONE)
        elapsed = time.monotonic() - self.state.started_at
        logger.info("Header sync finished in %.2fs", elapsed)
        return SyncResult(
            phase=self.state.phase,
            chain=chain,
            store=store,
            checkpoints=sampled,
            checkpoints_valid=valid,
            trusted_valid=trusted_valid,
            gaps=gaps,
            failures=failures,
            elapsed=elapsed,
        )

    @staticmethod
    def _check_checkpoints(
        chain: HeaderChain, hashes: Iterable[str], label: str, failures: list[ValidationFailure],
    ) -> bool:
        try:
            checkpoints.check(chain, hashes)
        except ValidationFailure as e:
            logger.warning("INVALID CHECKPOINT (%s): %s", label.lower(), e)
            failures.append(e)
            return False
        return True
