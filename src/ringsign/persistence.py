"""
RingSign Persistence - Temporal Confirmation over a Sliding Window

A candidate is confirmed when, in at least `min_occurrence` of the last
`max_history` frames (current one included), some candidate sat within
`distance_threshold` pixels of it. There is no identity tracking: the same
sign is re-linked frame to frame purely by distance.

Counting is an existence check per history frame. Two current candidates
near the same historical point both count that frame.
"""

import math
from collections import deque
from typing import Deque, List, Sequence

from .config import PersistenceConfig
from .ring_detection import Candidate


class PersistenceFilter:
    """FIFO of recent per-frame candidate lists."""

    def __init__(self, config: PersistenceConfig = PersistenceConfig()):
        self.config = config
        self._history: Deque[List[Candidate]] = deque(maxlen=config.max_history)

    def update(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        """
        Push this frame's candidates and return the confirmed ones.

        Must be called once per processed frame, even with no candidates,
        so that absent frames age out of the window.
        """
        self._history.append(list(candidates))
        return [c for c in candidates if self.occurrences(c) >= self.config.min_occurrence]

    def occurrences(self, candidate: Candidate) -> int:
        """Number of buffered frames holding a candidate near this one."""
        limit = self.config.distance_threshold
        seen = 0
        for frame in self._history:
            if any(
                math.hypot(p.center_x - candidate.center_x, p.center_y - candidate.center_y) < limit
                for p in frame
            ):
                seen += 1
        return seen

    def clear(self):
        self._history.clear()

    def __len__(self):
        return len(self._history)
