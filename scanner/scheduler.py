from __future__ import annotations

import threading
import time

TICK_SECONDS = 0.05


class TickScheduler:
    """
    Wall-clock tick scheduler (20 ticks per second).

    `wait_ticks` is the scanner's only suspension point. `wake()` cuts the
    current and any following waits short so a stop request is seen promptly.
    """

    def __init__(self, tick_s: float = TICK_SECONDS):
        self.tick_s = float(tick_s)
        self._wake = threading.Event()

    def wait_ticks(self, n: int) -> None:
        if n <= 0:
            return
        self._wake.wait(n * self.tick_s)

    def wake(self) -> None:
        self._wake.set()

    def reset(self) -> None:
        self._wake.clear()

    def now_ms(self) -> int:
        return int(time.time() * 1000)
