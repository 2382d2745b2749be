"""Ordered fallback-tier selection for one stage resolution."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from core import FallbackTier
from utils.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


class FallbackChain:
    """
    Tracks which tier a stage is on.

    Tiers are ordered by descending fidelity (``fidelity_rank`` 0 is the primary).
    The index only ever moves forward, one tier at a time; once a tier has been
    left behind it is never selected again within the same chain.
    """

    def __init__(self, stage: str, tiers: Sequence[FallbackTier]) -> None:
        if not tiers:
            raise ConfigurationError(f"stage {stage} has no fallback tiers")
        self.stage = stage
        self._tiers: List[FallbackTier] = sorted(tiers, key=lambda tier: tier.fidelity_rank)
        self._index = 0
        self._exhausted = False
        self._history: List[int] = [0]

    @property
    def tiers(self) -> List[FallbackTier]:
        return list(self._tiers)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> FallbackTier:
        return self._tiers[self._index]

    @property
    def is_primary(self) -> bool:
        return self._index == 0

    @property
    def is_last(self) -> bool:
        return self._index == len(self._tiers) - 1

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def history(self) -> List[int]:
        return list(self._history)

    def advance(self, reason: str = "") -> Optional[FallbackTier]:
        """Move exactly one tier down. Returns None (and marks exhausted) past the last tier."""
        if self._exhausted:
            return None
        if self.is_last:
            self._exhausted = True
            logger.warning("fallback_exhausted stage=%s last_tier=%s reason=%s", self.stage, self.current.producer_id, reason)
            return None

        previous = self.current
        self._index += 1
        self._history.append(self._index)
        logger.info(
            "fallback_advance stage=%s from=%s to=%s tier=%s reason=%s",
            self.stage,
            previous.producer_id,
            self.current.producer_id,
            self._index,
            reason,
        )
        return self.current
