"""
Flat, height-indexed header store built from raw fetch chunks.

This view is independent of the chain's fork tracking: chunks are sorted by
their start height and concatenated. It is used for diagnostics and export,
never for checkpoint validation. Missing chunks show up as height jumps and
are reported through find_gaps() / check_contiguous().
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

from headersync.common.errors import AssemblyGapError
from headersync.common.types import Chunk, Header, HeightRange, StoredHeader

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


def assemble(chunks: Iterable[Chunk]) -> list[StoredHeader]:
    """Sort chunks by start height and emit (start + index, header) pairs."""
    entries: list[StoredHeader] = []
    for chunk in sorted(chunks, key=lambda c: c.start):
        for i, header in enumerate(chunk.items):
            entries.append(StoredHeader(chunk.start + i, header))
    return entries


def find_gaps(
    entries: Sequence[StoredHeader], expected: Optional[HeightRange] = None,
) -> list[HeightRange]:
    """Height ranges missing from an assembled sequence.

    With `expected` given, missing heads and tails of the range count too.
    """
    gaps: list[HeightRange] = []
    if not entries:
        if expected is not None and len(expected):
            gaps.append(expected)
        return gaps

    if expected is not None and entries[0].height > expected.start:
        gaps.append(HeightRange(expected.start, entries[0].height))
    for prev, cur in zip(entries, entries[1:]):
        if cur.height > prev.height + 1:
            gaps.append(HeightRange(prev.height + 1, cur.height))
    if expected is not None and entries[-1].height + 1 < expected.stop:
        gaps.append(HeightRange(entries[-1].height + 1, expected.stop))
    return gaps


def check_contiguous(
    entries: Sequence[StoredHeader], expected: Optional[HeightRange] = None,
) -> None:
    """Raise AssemblyGapError unless heights are strictly increasing by one."""
    for prev, cur in zip(entries, entries[1:]):
        if cur.height <= prev.height:
            raise AssemblyGapError(
                f"Overlapping chunks: height {cur.height} follows {prev.height}"
            )
    gaps = find_gaps(entries, expected)
    if gaps:
        missing = ", ".join(str(g) for g in gaps)
        raise AssemblyGapError(f"Header store has gaps: {missing}", gaps=gaps)


class HeaderStore:
    """Ordered {height, header} sequence with JSON export.

    `root` is the header the sync was anchored on. It is kept apart from the
    fetched entries and only travels with the export, so a republished
    range can be synced again from the same starting point.
    """

    def __init__(
        self,
        entries: Optional[list[StoredHeader]] = None,
        root: Optional[StoredHeader] = None,
    ) -> None:
        self.entries: list[StoredHeader] = entries or []
        self.root = root

    @classmethod
    def from_chunks(
        cls, chunks: Iterable[Chunk], root: Optional[StoredHeader] = None,
    ) -> HeaderStore:
        return cls(assemble(chunks), root)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def heights(self) -> list[int]:
        return [entry.height for entry in self.entries]

    def gaps(self, expected: Optional[HeightRange] = None) -> list[HeightRange]:
        return find_gaps(self.entries, expected)

    def check(self, expected: Optional[HeightRange] = None) -> None:
        check_contiguous(self.entries, expected)

    def headers(self) -> list[Header]:
        return [entry.header for entry in self.entries]

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_json(self) -> dict:
        data = {
            "version": EXPORT_FORMAT_VERSION,
            "headers": [_entry_to_json(entry) for entry in self.entries],
        }
        if self.root is not None:
            data["root"] = _entry_to_json(self.root)
        return data

    def export_json(self, path: str | Path) -> None:
        path = Path(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_json(), f, indent=2)
        logger.info("Exported %d headers to %s", len(self.entries), path)

    @classmethod
    def from_json(cls, data: dict) -> HeaderStore:
        version = data.get("version")
        if version != EXPORT_FORMAT_VERSION:
            raise ValueError(f"Unsupported header export version: {version}")
        entries = [_entry_from_json(item) for item in data.get("headers", [])]
        entries.sort(key=lambda e: e.height)
        root = data.get("root")
        return cls(entries, _entry_from_json(root) if root is not None else None)

    @classmethod
    def load_json(cls, path: str | Path) -> HeaderStore:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_json(data)


def _entry_to_json(entry: StoredHeader) -> dict:
    return {"height": entry.height, "header": entry.header.to_rpc()}


def _entry_from_json(item: dict) -> StoredHeader:
    return StoredHeader(int(item["height"]), Header.from_rpc(item["header"]))
