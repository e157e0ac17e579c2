"""Sliding-window rate over timestamped counts."""

from collections import deque


class RateWindow:
    """Events-per-second over the most recent ``duration`` seconds.

    Increments are stored as ``(timestamp, count)`` buckets. Increments that
    arrive within ``resolution`` seconds of the newest bucket are folded into
    it, so the deque holds at most ``duration / resolution`` buckets no matter
    how fast updates arrive.

    The rate divides by the time actually covered by the window, capped at
    ``duration``. Until a full window has elapsed since the window started,
    the window is partial and ``is_partial()`` says so.
    """

    def __init__(self, duration: float = 10.0, resolution: float = 0.1) -> None:
        if duration <= 0:
            raise ValueError(f"duration must be > 0, got {duration}")
        if resolution <= 0 or resolution > duration:
            raise ValueError(f"resolution must be in (0, {duration}], got {resolution}")
        self.duration = duration
        self.resolution = resolution
        max_buckets = int(duration / resolution) + 2
        self._buckets: deque[list[float]] = deque(maxlen=max_buckets)
        self._started_at: float | None = None

    def __len__(self) -> int:
        """Number of buckets currently held."""
        return len(self._buckets)

    @property
    def started_at(self) -> float | None:
        """When the current window started, or None before any record/reset."""
        return self._started_at

    def record(self, count: int, at: float) -> None:
        """Add ``count`` events observed at time ``at``.

        Zero and negative counts are ignored.
        """
        if count <= 0:
            return
        if self._started_at is None:
            self._started_at = at
        self._evict(at)
        if self._buckets:
            newest = self._buckets[-1]
            # Late or near-simultaneous increments fold into the newest bucket
            if at - newest[0] < self.resolution:
                newest[1] += count
                return
        self._buckets.append([at, count])

    def _evict(self, now: float) -> None:
        cutoff = now - self.duration
        while self._buckets and self._buckets[0][0] < cutoff:
            self._buckets.popleft()

    def elapsed(self, now: float) -> float:
        """Seconds of wall-clock time the window currently covers."""
        if self._started_at is None:
            return 0.0
        return min(max(0.0, now - self._started_at), self.duration)

    def is_partial(self, now: float) -> bool:
        """True until a full ``duration`` has elapsed since the window started."""
        return self.elapsed(now) < self.duration

    def total(self, now: float) -> int:
        """Sum of counts inside the window ending at ``now``.

        Read-only: stale buckets are skipped here and evicted on the next
        ``record()``.
        """
        cutoff = now - self.duration
        return int(sum(count for at, count in self._buckets if at >= cutoff))

    def rate_per_second(self, now: float) -> float:
        """Events per second over the elapsed part of the window.

        Returns 0.0 when nothing has been recorded or no time has elapsed.
        """
        elapsed = self.elapsed(now)
        if elapsed <= 0:
            return 0.0
        total = self.total(now)
        if total == 0:
            return 0.0
        return total / elapsed

    def reset(self, at: float | None = None) -> None:
        """Drop all buckets and start a new window.

        Args:
            at: Start time of the new window. If None, the window starts at
                the next recorded increment.
        """
        self._buckets.clear()
        self._started_at = at
