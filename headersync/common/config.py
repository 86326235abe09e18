"""
Sync run configuration and network defaults.

Holds the fixture seed list used when no seeds are given on the command
line, plus the limits applied to batch sizes and RPC calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from headersync.common.errors import RangeError


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_SEEDS = [
    # Evonet / regtest DAPI nodes
    "34.215.175.142",
    "54.189.162.193",
    "34.209.25.122",
    "18.236.78.191",
]

DEFAULT_PORT = 3000
DEFAULT_FROM_HEIGHT = 1000
DEFAULT_TO_HEIGHT = 2000
DEFAULT_CHECKPOINTS = 2

MAX_STEP = 2000              # cap on auto-resolved batch size
NUM_CONFIRMATIONS = 10000    # forks older than this are pruned
SYNC_TIMEOUT = 20.0          # seconds per RPC call
MAX_RETRIES = 2
RETRY_BACKOFF = 1.0          # seconds, doubled on each retry

ROOT_LABEL = "custom_genesis"


@dataclass
class SyncConfig:
    seeds: list[str] = field(default_factory=lambda: list(DEFAULT_SEEDS))
    from_height: int = DEFAULT_FROM_HEIGHT
    to_height: int = DEFAULT_TO_HEIGHT
    step: int = 0                      # 0 = auto
    parallel: bool = False
    port: int = DEFAULT_PORT

    confirmations: int = NUM_CONFIRMATIONS
    checkpoint_count: int = DEFAULT_CHECKPOINTS
    trusted_checkpoints: list[str] = field(default_factory=list)

    request_timeout: float = SYNC_TIMEOUT
    retries: int = MAX_RETRIES
    retry_backoff: float = RETRY_BACKOFF

    export_path: Optional[str] = None

    def validate(self) -> None:
        """Reject inconsistent settings before any network I/O."""
        if self.from_height < 0:
            raise RangeError(f"from height must be non-negative, got {self.from_height}")
        if self.to_height < self.from_height:
            raise RangeError(
                f"to height {self.to_height} is below from height {self.from_height}"
            )
        if self.step < 0:
            raise RangeError(f"step must be non-negative, got {self.step}")
        if not self.seeds:
            raise RangeError("at least one seed is required")
        if self.checkpoint_count < 0:
            raise RangeError(f"checkpoint count must be non-negative, got {self.checkpoint_count}")
        if self.confirmations < 1:
            raise RangeError(f"confirmations must be positive, got {self.confirmations}")

    @property
    def fetch_start(self) -> int:
        """First fetched height; the root header itself sits at from_height."""
        return self.from_height + 1

    @property
    def fetch_stop(self) -> int:
        return self.to_height + 1
