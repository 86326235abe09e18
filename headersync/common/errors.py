"""Error taxonomy for header sync runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from headersync.common.types import HeightRange


class SyncError(Exception):
    """Base class for all header sync failures."""


class FetchError(SyncError):
    """A remote hash/header/batch lookup failed or timed out."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        method: Optional[str] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.method = method
        self.code = code


class ExportError(SyncError):
    """The assembled header store could not be written out."""


class RangeError(SyncError, ValueError):
    """Degenerate or inconsistent height range, rejected before any I/O."""


class AssemblyGapError(SyncError):
    """The flat header store is not a contiguous run of heights."""

    def __init__(self, message: str, gaps: Optional[list[HeightRange]] = None) -> None:
        super().__init__(message)
        self.gaps = list(gaps or [])


class ValidationFailure(SyncError):
    """Some checkpoints are missing from the current longest chain."""

    def __init__(self, message: str, missing: Optional[set[str]] = None) -> None:
        super().__init__(message)
        self.missing = set(missing or ())
