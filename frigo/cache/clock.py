"""
Clock sources for TTL accounting.
"""
import time


class SystemClock:
    """
    Wall-clock seconds that advance with the monotonic clock.

    The wall time is read once at construction; later readings add the
    monotonic elapsed time, so NTP corrections during the process lifetime
    never make entries jump between fresh and stale. Readings stay
    comparable with timestamps stored by earlier processes.
    """

    def __init__(self):
        self._wall_anchor = time.time()
        self._mono_anchor = time.monotonic()

    def now(self) -> float:
        return self._wall_anchor + (time.monotonic() - self._mono_anchor)


class ManualClock:
    """Clock advanced explicitly by tests."""

    def __init__(self, start: float = 0.0):
        self._now = start

    def now(self) -> float:
        return self._now

    def set(self, value: float) -> None:
        self._now = value

    def advance(self, seconds: float) -> None:
        self._now += seconds
