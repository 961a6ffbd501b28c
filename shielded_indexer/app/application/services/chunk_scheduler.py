from __future__ import annotations

import math
from dataclasses import dataclass, field


@dataclass
class AdaptiveChunkScheduler:
    """
    Adjusts the block batch size from observed fetch+process durations.

    Above 1.3x the target the size shrinks by 10% (or `backoff_multiplier`
    if that is gentler), below 0.7x it grows by `growth_multiplier`, and a
    failed batch halves it. Always clamped to [minimum, maximum].
    """

    initial: int = 12_000
    minimum: int = 2_000
    maximum: int = 24_000
    target_duration_s: float = 15.0
    backoff_multiplier: float = 0.5
    growth_multiplier: float = 1.3
    _current: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.minimum <= 0 or self.maximum < self.minimum:
            raise ValueError("chunk bounds must satisfy 0 < minimum <= maximum")
        if self.target_duration_s <= 0:
            raise ValueError("target_duration_s must be positive")
        self._current = float(self.initial)

    def next_size(self) -> int:
        return max(self.minimum, min(self.maximum, math.floor(self._current)))

    def feedback(self, duration_s: float, *, success: bool = True) -> None:
        if not success:
            self._current = max(self.minimum, math.floor(self._current * self.backoff_multiplier))
            return

        if duration_s > self.target_duration_s * 1.3:
            self._current = max(
                self.minimum,
                math.floor(self._current * max(0.9, self.backoff_multiplier)),
            )
        elif duration_s < self.target_duration_s * 0.7:
            self._current = min(self.maximum, math.floor(self._current * self.growth_multiplier))
        else:
            self._current = max(self.minimum, min(self.maximum, self._current))
