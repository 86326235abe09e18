"""
Header chain with longest-chain selection.

Headers are linked by their previous-hash field, not by arrival order.
Headers whose parent is not known yet wait in an orphan pool and are
connected as soon as the parent shows up, so batches may be inserted in any
order. Forks are tracked until they fall more than `confirmations` blocks
behind the best tip, at which point they are pruned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from headersync.common.types import ChainEntry, Header

logger = logging.getLogger(__name__)


@dataclass
class _Node:
    height: int
    header: Header
    parent: Optional[str]


class HeaderChain:
    """In-memory header tree rooted at a (possibly synthetic) genesis."""

    def __init__(self, label: str, confirmations: int, root: Header) -> None:
        self.label = label
        self.confirmations = confirmations
        self.root_hash = root.block_hash()
        self.root_height = root.height if root.height is not None else 0

        self._nodes: dict[str, _Node] = {
            self.root_hash: _Node(self.root_height, root, None),
        }
        self._children: dict[str, list[str]] = {}
        self._tips: set[str] = {self.root_hash}
        self._orphans: dict[str, dict[str, Header]] = {}
        self._best_tip = self.root_hash
        self._longest: Optional[list[ChainEntry]] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def best_tip(self) -> str:
        return self._best_tip

    @property
    def best_height(self) -> int:
        return self._nodes[self._best_tip].height

    @property
    def orphan_count(self) -> int:
        return sum(len(waiting) for waiting in self._orphans.values())

    @property
    def fork_count(self) -> int:
        return len(self._tips) - 1

    def __contains__(self, block_hash: object) -> bool:
        return block_hash in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get_header(self, block_hash: str) -> Optional[Header]:
        node = self._nodes.get(block_hash)
        return node.header if node else None

    def get_longest_chain(self) -> list[ChainEntry]:
        """Headers on the best branch, ordered from the root up."""
        if self._longest is None:
            chain: list[ChainEntry] = []
            current: Optional[str] = self._best_tip
            while current is not None:
                node = self._nodes[current]
                chain.append(ChainEntry(node.height, current, node.header))
                current = node.parent
            chain.reverse()
            self._longest = chain
        return list(self._longest)

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def add_header(self, header: Header) -> bool:
        return self.add_headers([header]) > 0

    def add_headers(self, headers: Iterable[Header]) -> int:
        """Insert a batch. Returns how many headers got connected to the tree."""
        connected = 0
        for header in headers:
            block_hash = header.block_hash()
            if block_hash in self._nodes:
                continue
            if header.prev_hash in self._nodes:
                connected += self._connect(header)
            else:
                self._orphans.setdefault(header.prev_hash, {})[block_hash] = header
        if connected:
            self._longest = None
            self._prune_stale_forks()
        return connected

    def _connect(self, header: Header) -> int:
        """Attach a header and every orphan that was waiting on it."""
        connected = 0
        pending = [header]
        while pending:
            current = pending.pop()
            block_hash = current.block_hash()
            if block_hash in self._nodes:
                continue
            parent = self._nodes[current.prev_hash]
            height = parent.height + 1
            self._nodes[block_hash] = _Node(height, current, current.prev_hash)
            self._children.setdefault(current.prev_hash, []).append(block_hash)
            self._tips.discard(current.prev_hash)
            self._tips.add(block_hash)
            if height > self.best_height:
                self._best_tip = block_hash
            connected += 1
            waiting = self._orphans.pop(block_hash, None)
            if waiting:
                pending.extend(waiting.values())
        return connected

    def _prune_stale_forks(self) -> None:
        best = self.best_height
        best_branch = {entry.hash for entry in self.get_longest_chain()}
        for tip in list(self._tips):
            if tip == self._best_tip or best - self._nodes[tip].height <= self.confirmations:
                continue
            self._tips.discard(tip)
            current: Optional[str] = tip
            removed = 0
            while current is not None and current not in best_branch:
                node = self._nodes[current]
                if self._children.get(current):
                    break
                del self._nodes[current]
                self._children.pop(current, None)
                if node.parent is not None:
                    siblings = self._children.get(node.parent, [])
                    if current in siblings:
                        siblings.remove(current)
                current = node.parent
                removed += 1
            logger.debug("Pruned stale fork at %s (%d headers)", tip[:16], removed)
