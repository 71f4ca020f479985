"""Bounded rolling series backing the dashboard sparklines and chart."""

from __future__ import annotations

from collections import deque
from typing import Optional

SPARKLINE_POINTS = 500
CHART_POINTS = 1000


class SparkSeries:
    """Latest values for a sparkline; the max only ever grows."""

    def __init__(self, capacity: int = SPARKLINE_POINTS) -> None:
        self._values: deque[float] = deque(maxlen=capacity)
        self.maximum = 0.0
        self.current: Optional[float] = None

    def push(self, value: Optional[float]) -> None:
        if value is None:
            return
        self.current = value
        self._values.append(value)
        self.maximum = max(self.maximum, value)

    @property
    def values(self) -> list[float]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)


class ChartSeries:
    """Rolling values plotted against a fixed baseline."""

    def __init__(self, baseline: float, capacity: int = CHART_POINTS) -> None:
        self.baseline = baseline
        self._values: deque[float] = deque(maxlen=capacity)
        self.current: Optional[float] = None

    def push(self, value: Optional[float]) -> None:
        if value is None:
            return
        self.current = value
        self._values.append(value)

    @property
    def values(self) -> list[float]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def y_bounds(self) -> tuple[float, float]:
        """Visible range, padded to show the baseline with some headroom."""
        low = min(self._values) if self._values else 0.0
        high = max(self._values) if self._values else 0.0
        low = max(0.0, min(low, self.baseline * 0.9))
        high = max(high, self.baseline * 1.1)
        if high <= low:
            high = low + 1.0
        return low, high
