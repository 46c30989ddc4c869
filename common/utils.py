from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from collections import deque
from typing import Deque


CHUNK_SIZE = 16

_COLOR_CODE_RE = re.compile(r"§.")


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return int(time.time() * 1000)


def chunk_of(coord: int) -> int:
    """Chunk coordinate owning a block coordinate (floor division, negatives included)."""
    return int(coord) // CHUNK_SIZE


def local_of(coord: int) -> int:
    """Block coordinate wrapped into 0..15 inside its chunk."""
    return int(coord) % CHUNK_SIZE


def column_index(lx: int, lz: int) -> int:
    """Row-major (z-major) index of a local column inside a chunk record."""
    return lz * CHUNK_SIZE + lx


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def strip_color_codes(msg: str) -> str:
    """Remove in-game `§x` formatting codes from a message."""
    return _COLOR_CODE_RE.sub("", msg)


def format_duration(ms: float) -> str:
    """Human readable duration: `1h 2m 3s` or `2m 3s`; negative means still estimating."""
    if ms < 0:
        return "calculating..."
    seconds = int(ms // 1000)
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    if h > 0:
        return f"{h}h {m}m {s}s"
    return f"{m}m {s}s"


@dataclass(slots=True)
class RateTimer:
    """
    Items per second over the last `window` completions (scan diagnostics).

    Usage:
        rt = RateTimer(window=64)
        for chunk in batch:
            # scan...
            per_s = rt.tick()
        rt.ms_per_item()
    """
    window: int = 50
    _times: Deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=max(2, self.window))

    def _mean_gap(self) -> float:
        if len(self._times) < 2:
            return 0.0
        return (self._times[-1] - self._times[0]) / (len(self._times) - 1)

    def tick(self) -> float:
        self._times.append(time.perf_counter())
        gap = self._mean_gap()
        return 0.0 if gap <= 0 else 1.0 / gap

    def ms_per_item(self) -> float:
        """Mean milliseconds between completions; 0 until two have been seen."""
        return self._mean_gap() * 1000.0

    def reset(self) -> None:
        self._times.clear()

