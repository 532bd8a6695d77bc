"""Upload progress sinks.

A progress sink is any callable taking a float in 0..100. Sinks are invoked
synchronously on the uploading task; display debouncing is the caller's job.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

ProgressSink = Callable[[float], None]


class MonotonicProgress:
    """Forwards progress to ``sink`` clamped to 0..100 and never decreasing.

    A retried request restarts its transfer at 0%; the clamp keeps the
    reported value from jumping backwards when that happens.
    """

    def __init__(self, sink: ProgressSink | None) -> None:
        self._sink = sink
        self._last = 0.0

    @property
    def value(self) -> float:
        return self._last

    def __call__(self, percent: float) -> None:
        percent = min(100.0, max(0.0, percent))
        if percent < self._last:
            return
        self._last = percent
        if self._sink is not None:
            self._sink(percent)


class WeightedProgress:
    """Aggregates per-part progress into a size-weighted total.

    total = sum(part_progress / 100 * part_size) / total_size * 100,
    recomputed on every part event so large in-flight parts move the bar.
    """

    def __init__(self, part_sizes: Sequence[int], sink: ProgressSink | None) -> None:
        self._sizes = list(part_sizes)
        self._total = sum(self._sizes)
        self._parts = [0.0] * len(self._sizes)
        self._out = MonotonicProgress(sink)

    @property
    def value(self) -> float:
        return self._out.value

    def part_sink(self, index: int) -> ProgressSink:
        """Return the sink for the part at zero-based ``index``."""

        def _update(percent: float) -> None:
            self.update(index, percent)

        return _update

    def update(self, index: int, percent: float) -> None:
        percent = min(100.0, max(0.0, percent))
        # A retried part starts again from zero; keep its high-water mark.
        if percent <= self._parts[index]:
            return
        self._parts[index] = percent
        if not self._total:
            return
        uploaded = sum(p / 100 * size for p, size in zip(self._parts, self._sizes))
        self._out(uploaded / self._total * 100)
