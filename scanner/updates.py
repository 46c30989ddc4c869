from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from common.logging_setup import get_logger
from common.types import ColumnUpdate, normalize_dimension
from common.utils import now_ms
from scanner.scheduler import TICK_SECONDS
from scanner.surface import SurfaceResolver
from scanner.transport import MapServerClient
from scanner.world import World

log = get_logger("scanner.updates")


class SurfaceUpdateQueue:
    """
    Live block edits → partial map updates.

    Edits are filtered (covered edits are dropped), coalesced per column and
    flushed once after `debounce_ticks` of the first edit in a burst. Columns
    that could not be resolved go back into the queue for the next flush.
    """

    def __init__(
        self,
        world: World,
        client: MapServerClient,
        resolver: Optional[SurfaceResolver] = None,
        debounce_ticks: int = 40,
        tick_s: float = TICK_SECONDS,
    ):
        self.world = world
        self.client = client
        self.resolver = resolver or SurfaceResolver(world)
        self.delay_s = debounce_ticks * tick_s
        self._lock = threading.Lock()
        self._pending: Dict[Tuple[int, int], None] = {}
        self._timer: Optional[threading.Timer] = None

    @property
    def dimension(self) -> str:
        return normalize_dimension(self.world.dimension_id)

    def on_block_change(self, x: int, y: int, z: int, dimension: Optional[str] = None) -> bool:
        """Queue the column if the edit may be visible from above."""
        if dimension is not None and normalize_dimension(dimension) != self.dimension:
            return False
        if not self.resolver.is_surface_update(x, y, z):
            return False
        with self._lock:
            self._pending[(x, z)] = None
            self._schedule_locked()
        return True

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self) -> List[ColumnUpdate]:
        """Resolve queued columns and send them; returns what was sent."""
        with self._lock:
            columns = list(self._pending)
            self._pending.clear()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

        updates: List[ColumnUpdate] = []
        retry: List[Tuple[int, int]] = []
        for x, z in columns:
            read_at = now_ms()
            col = self.resolver.resolve(x, z)
            if col is None:
                retry.append((x, z))
                continue
            updates.append(ColumnUpdate(x=x, z=z, y=col.y, block_id=col.block_id, dimension=self.dimension, updated_at=read_at))

        if updates and not self.client.send_partial_updates(updates):
            log.warning("partial update not delivered", extra={"extra": {"columns": len(updates)}})

        if retry:
            log.debug("requeue unresolved columns", extra={"extra": {"columns": len(retry)}})
            with self._lock:
                for key in retry:
                    self._pending[key] = None
                self._schedule_locked()
        return updates

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule_locked(self) -> None:
        if self._timer is None:
            self._timer = threading.Timer(self.delay_s, self._on_timer)
            self._timer.daemon = True
            self._timer.start()

    def _on_timer(self) -> None:
        try:
            self.flush()
        except Exception:
            log.exception("partial update flush failed")


class PlayerReporter:
    """Posts player positions to the map server every `interval_ticks`."""

    def __init__(self, world: World, client: MapServerClient, interval_ticks: int = 100, tick_s: float = TICK_SECONDS):
        self.world = world
        self.client = client
        self.interval_s = interval_ticks * tick_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def report_once(self) -> bool:
        return self.client.send_players(self.world.players())

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="player-reporter", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.report_once()
            except Exception:
                log.exception("player report failed")
