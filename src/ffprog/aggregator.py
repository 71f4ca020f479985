"""Rolling statistics derived from the progress sample history."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Iterable, Iterator, Optional, Sequence

from ffprog.probe import SourceProfile
from ffprog.progress import ProgressSample

# Number of samples after which an observation's weight in the smoothed
# bitrate has halved.
SMOOTHING_HALF_LIFE_SAMPLES = 3.0
SMOOTHING_ALPHA = 1.0 - 0.5 ** (1.0 / SMOOTHING_HALF_LIFE_SAMPLES)


@dataclass(frozen=True)
class DerivedMetrics:
    completion_fraction: float = 0.0
    smoothed_bitrate_bps: Optional[float] = None
    eta_seconds: Optional[float] = None
    projected_final_bytes: Optional[int] = None


@dataclass(frozen=True)
class ProgressUpdate:
    """A sample paired with the metrics computed right after it."""

    sample: ProgressSample
    metrics: DerivedMetrics

    @property
    def wall_elapsed(self) -> float:
        return self.sample.wall_elapsed


@dataclass(frozen=True)
class SeriesSummary:
    count: int
    minimum: float
    maximum: float
    mean: float
    last: float


def completion_fraction(sample: ProgressSample, profile: SourceProfile) -> float:
    if profile.duration_seconds <= 0:
        return 0.0
    ratio = sample.output_time_seconds / profile.duration_seconds
    if math.isnan(ratio):
        return 0.0
    return min(1.0, max(0.0, ratio))


def instantaneous_bitrate(
    previous: Optional[ProgressSample], current: ProgressSample
) -> Optional[float]:
    """Bits per second from the size delta, else the reported bitrate."""
    if (
        previous is not None
        and previous.total_size_bytes is not None
        and current.total_size_bytes is not None
    ):
        elapsed = current.wall_elapsed - previous.wall_elapsed
        if elapsed > 0:
            delta = current.total_size_bytes - previous.total_size_bytes
            return max(0.0, delta * 8 / elapsed)
    return current.encoded_bitrate_bps


def _eta(fraction: float, wall_elapsed: float) -> Optional[float]:
    if fraction <= 0:
        return None
    return (1.0 - fraction) * (wall_elapsed / fraction)


def _projection(fraction: float, total_size: Optional[int]) -> Optional[int]:
    if fraction <= 0 or total_size is None:
        return None
    projected = total_size / fraction
    if not math.isfinite(projected):
        return None
    return round(projected)


class Aggregator:
    """Owns the append-only sample history for one run or replay."""

    def __init__(self, profile: SourceProfile) -> None:
        self.profile = profile
        self._history: list[ProgressSample] = []
        self._smoothed: Optional[float] = None
        self._last_size_sample: Optional[ProgressSample] = None
        self._metrics = DerivedMetrics()

    @classmethod
    def from_history(
        cls, profile: SourceProfile, history: Iterable[ProgressSample]
    ) -> "Aggregator":
        aggregator = cls(profile)
        for sample in history:
            aggregator.update(sample)
        return aggregator

    @property
    def history(self) -> tuple[ProgressSample, ...]:
        return tuple(self._history)

    def __len__(self) -> int:
        return len(self._history)

    def update(self, sample: ProgressSample) -> DerivedMetrics:
        """Append a sample and return the recomputed metrics."""
        last = self._history[-1] if self._history else None
        if last is not None and sample.sequence_index <= last.sequence_index:
            raise ValueError(
                "sequence_index must increase: "
                f"{sample.sequence_index} after {last.sequence_index}"
            )
        previous = self._last_size_sample
        self._history.append(sample)
        if sample.total_size_bytes is not None:
            self._last_size_sample = sample

        rate = instantaneous_bitrate(previous, sample)
        if rate is not None and math.isfinite(rate):
            if self._smoothed is None:
                self._smoothed = rate
            else:
                self._smoothed += SMOOTHING_ALPHA * (rate - self._smoothed)

        fraction = completion_fraction(sample, self.profile)
        if len(self._history) == 1 and fraction == 0.0:
            self._metrics = DerivedMetrics(completion_fraction=0.0)
        else:
            self._metrics = DerivedMetrics(
                completion_fraction=fraction,
                smoothed_bitrate_bps=self._smoothed,
                eta_seconds=_eta(fraction, sample.wall_elapsed),
                projected_final_bytes=_projection(fraction, sample.total_size_bytes),
            )
        return self._metrics

    def snapshot(self) -> DerivedMetrics:
        return self._metrics

    @property
    def latest(self) -> Optional[ProgressSample]:
        return self._history[-1] if self._history else None


def replay_metrics(
    profile: SourceProfile, history: Iterable[ProgressSample]
) -> Iterator[ProgressUpdate]:
    """Recompute metrics at every historical point, exactly as a live run."""
    aggregator = Aggregator(profile)
    for sample in history:
        yield ProgressUpdate(sample, aggregator.update(sample))


def series(
    history: Sequence[ProgressSample], attr: str
) -> list[tuple[float, float]]:
    """Return ``(wall_elapsed, value)`` pairs for samples carrying ``attr``."""
    points: list[tuple[float, float]] = []
    for sample in history:
        value = getattr(sample, attr)
        if value is None:
            continue
        points.append((sample.wall_elapsed, float(value)))
    return points


def summarize(
    history: Sequence[ProgressSample], attr: str
) -> Optional[SeriesSummary]:
    values = [value for _, value in series(history, attr)]
    if not values:
        return None
    return SeriesSummary(
        count=len(values),
        minimum=min(values),
        maximum=max(values),
        mean=math.fsum(values) / len(values),
        last=values[-1],
    )
