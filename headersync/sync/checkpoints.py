"""
Checkpoint sampling and validation.

Sampled checkpoints come from the same chain they are validated against, so
a passing check only shows the chain was not truncated between sampling and
validation. Agreement with an independent source needs trusted checkpoints,
which validate() accepts just the same.
"""

from __future__ import annotations

import logging
import random
from typing import Iterable, Optional

from headersync.chain.header_chain import HeaderChain
from headersync.common.config import DEFAULT_CHECKPOINTS
from headersync.common.errors import ValidationFailure

logger = logging.getLogger(__name__)


def sample(
    chain: HeaderChain, k: int = DEFAULT_CHECKPOINTS, rng: Optional[random.Random] = None,
) -> set[str]:
    """Draw k hashes uniformly without replacement from the longest chain."""
    hashes = [entry.hash for entry in chain.get_longest_chain()]
    k = min(k, len(hashes))
    return set((rng or random).sample(hashes, k))


def missing_checkpoints(chain: HeaderChain, checkpoints: Iterable[str]) -> set[str]:
    present = {entry.hash for entry in chain.get_longest_chain()}
    return {cp for cp in checkpoints if cp not in present}


def check(chain: HeaderChain, checkpoints: Iterable[str]) -> None:
    """Raise ValidationFailure naming every checkpoint off the longest chain."""
    missing = missing_checkpoints(chain, checkpoints)
    if missing:
        raise ValidationFailure(
            f"{len(missing)} checkpoint(s) not on longest chain: "
            + ", ".join(sorted(h[:16] for h in missing)),
            missing=missing,
        )


def validate(chain: HeaderChain, checkpoints: Iterable[str]) -> bool:
    """True iff every checkpoint is on the current longest chain."""
    try:
        check(chain, checkpoints)
    except ValidationFailure as e:
        logger.warning("INVALID CHECKPOINT: %s; query more headers from other nodes", e)
        return False
    return True
