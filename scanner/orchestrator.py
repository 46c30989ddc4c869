from __future__ import annotations

"""
Full-world scan loop.

A scan walks the requested chunk bounds in square batches. For each batch it
force-loads the area, waits until the engine reports it loaded, resolves and
encodes every chunk (retrying chunks that are not ready yet), hands the
records to the sender and persists a cursor. A crash or stop resumes at the
first batch that was not committed.

Examples:
    orch = ScanOrchestrator(world, StateStore(path), sender, existence=client)
    orch.start(ChunkBounds(0, 0, 31, 31), ConsoleExecutor())              # exhaustive
    orch.start(bounds, executor, mode=ScanMode.REPAIR)                     # only missing batches
    orch.start(state.bounds, executor, cursor=state.cursor, mode=state.mode)  # resume
"""

import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from common.chunk_codec import scan_chunk
from common.config import ScanConfig
from common.errors import ChunkEmptyResult, LoadStuck, ScanAlreadyRunning, WorldQueryTransient
from common.logging_setup import get_logger
from common.types import (
    Batch,
    ChunkBounds,
    ChunkRecord,
    RenderJobState,
    ScanCursor,
    ScanMode,
    ScanStats,
    ScanStatus,
    normalize_dimension,
)
from common.utils import RateTimer, format_duration
from scanner.executor import CommandExecutor
from scanner.scheduler import TickScheduler
from scanner.state import StateStore
from scanner.surface import SurfaceResolver
from scanner.world import World

log = get_logger("scanner.orchestrator")


@dataclass(slots=True)
class ScanSession:
    """One run of the scan loop. Owns the stop flag and the live counters."""
    bounds: ChunkBounds
    mode: ScanMode
    executor: CommandExecutor
    stats: ScanStats
    avg_ms_per_chunk: float
    cursor: Optional[ScanCursor] = None
    scanned: int = 0  # chunks actually resolved in this session
    status: ScanStatus = ScanStatus.RUNNING
    stop_event: threading.Event = field(default_factory=threading.Event)

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def snapshot(self, status: ScanStatus) -> RenderJobState:
        return RenderJobState(
            status=status,
            bounds=self.bounds,
            cursor=self.cursor,
            mode=self.mode,
            stats=ScanStats.from_dict(self.stats.to_dict()),
            avg_ms_per_chunk=self.avg_ms_per_chunk,
        )


class ScanOrchestrator:
    """
    Runs at most one scan session at a time on the calling thread.

    Collaborators:
        world: block queries and forced-load areas
        state_store: crash-safe progress snapshots
        sender: object with submit(records); transmission must not block
        existence: object with missing_chunks(coords, dimension); repair mode only
        scheduler: wait_ticks(n) / now_ms()
    """

    def __init__(
        self,
        world: World,
        state_store: StateStore,
        sender,
        existence=None,
        scheduler: Optional[TickScheduler] = None,
        config: Optional[ScanConfig] = None,
        resolver: Optional[SurfaceResolver] = None,
    ):
        self.world = world
        self.state_store = state_store
        self.sender = sender
        self.existence = existence
        self.scheduler = scheduler or TickScheduler()
        self.config = config or ScanConfig()
        self.resolver = resolver or SurfaceResolver(world)
        self._owner = threading.Lock()
        self.session: Optional[ScanSession] = None
        self._rate = RateTimer(window=64)

    @property
    def running(self) -> bool:
        return self._owner.locked()

    @property
    def dimension(self) -> str:
        return normalize_dimension(self.world.dimension_id)

    # -------- public API --------

    def start(
        self,
        bounds: ChunkBounds,
        executor: CommandExecutor,
        cursor: Optional[ScanCursor] = None,
        mode: ScanMode = ScanMode.EXHAUSTIVE,
    ) -> ScanSession:
        """
        Run a scan to completion or until stopped. Blocks the calling thread.

        Raises ScanAlreadyRunning if another session owns the orchestrator.
        """
        if not self._owner.acquire(blocking=False):
            raise ScanAlreadyRunning("a scan is already running")
        try:
            saved = self.state_store.load()
            stats = ScanStats(total_chunks=bounds.total_chunks, start_time=self.scheduler.now_ms())
            if cursor is not None and saved.bounds == bounds:
                stats.processed = saved.stats.processed
                stats.skipped = saved.stats.skipped
            avg = saved.avg_ms_per_chunk or self.config.default_ms_per_chunk
            session = ScanSession(bounds=bounds, mode=mode, executor=executor, stats=stats, avg_ms_per_chunk=avg, cursor=cursor)
            self.session = session
            self._rate.reset()
            if hasattr(self.scheduler, "reset"):
                self.scheduler.reset()
            self._run(session)
            return session
        finally:
            self._owner.release()

    def stop(self) -> bool:
        """Request a cooperative stop; False if nothing is running."""
        s = self.session
        if s is None or not self.running:
            return False
        s.stop_event.set()
        if hasattr(self.scheduler, "wake"):
            self.scheduler.wake()
        return True

    # -------- scan loop --------

    def _run(self, s: ScanSession) -> None:
        cfg = self.config
        remaining = s.stats.total_chunks - s.stats.processed
        if s.cursor is not None:
            self._say(s, f"§aResuming scan from ({s.cursor.cx}, {s.cursor.cz})...")
        else:
            self._say(s, f"§aScan started: {s.stats.total_chunks} chunks.")
        self._say(s, f"§7Estimated Time (ETA): §e~{format_duration(remaining * s.avg_ms_per_chunk)}")
        log.info("scan started", extra={"extra": {
            "bounds": s.bounds.to_dict(), "mode": s.mode.value, "resume": s.cursor.to_dict() if s.cursor else None,
        }})

        try:
            for batch in s.bounds.batches(cfg.batch_size, s.cursor):
                s.cursor = batch.start
                self.state_store.save(s.snapshot(ScanStatus.RUNNING))
                if s.stopping:
                    self._finish(s, ScanStatus.STOPPED)
                    return

                if s.mode is ScanMode.REPAIR and self._batch_covered(batch):
                    n = len(batch.coords())
                    before = s.stats.processed
                    s.stats.skipped += n
                    s.stats.processed += n
                    self._commit(s, batch, before)
                    continue

                if not self._scan_batch(s, batch):
                    self._finish(s, ScanStatus.STOPPED)
                    return

            self._finish(s, ScanStatus.COMPLETED)
        finally:
            self.release_area()

    def _commit(self, s: ScanSession, batch: Batch, processed_before: int) -> None:
        s.cursor = batch.next_cursor
        self.state_store.save(s.snapshot(ScanStatus.RUNNING))
        every = self.config.progress_every
        if every > 0 and s.stats.processed // every > processed_before // every:
            self._say(s, f"§7Progress: {s.stats.processed}/{s.stats.total_chunks} ({s.stats.percent:.1f}%)")
        self.scheduler.wait_ticks(1)

    def _batch_covered(self, batch: Batch) -> bool:
        if self.existence is None:
            return False
        return not self.existence.missing_chunks(batch.coords(), self.dimension)

    def _scan_batch(self, s: ScanSession, batch: Batch) -> bool:
        """Load, scan and submit one batch. False if a stop interrupted it."""
        if not self._load_area(s, batch):
            return False

        before = s.stats.processed
        scanned_before = s.scanned
        records: List[ChunkRecord] = []
        rate = 0.0
        for cx, cz in batch.coords():
            rec = self._scan_with_retry(s, cx, cz)
            if rec is None:
                # uncommitted work is redone on resume
                s.stats.processed = before
                s.scanned = scanned_before
                return False
            records.append(rec)
            s.stats.processed += 1
            s.scanned += 1
            rate = self._rate.tick()

        self.sender.submit(records)
        self.release_area()
        log.debug("batch done", extra={"extra": {
            "batch": [batch.cx, batch.cz, batch.end_cx, batch.end_cz], "chunks_per_s": round(rate, 2),
            "ms_per_chunk": round(self._rate.ms_per_item(), 1),
        }})
        self._commit(s, batch, before)
        return True

    def _load_area(self, s: ScanSession, batch: Batch) -> bool:
        area = batch.block_area()
        self.release_area()
        self.scheduler.wait_ticks(2)
        self._force_load(area)

        retries = 0
        while not s.stopping:
            try:
                self._await_loaded(s, area)
                return True
            except LoadStuck:
                retries += 1
                s.stats.load_retries += 1
                if retries % self.config.force_reload_every == 0:
                    log.warning(
                        f"Chunk load stuck at ({batch.cx},{batch.cz}). Force reloading... (#{retries})",
                        extra={"extra": {"area": list(area)}},
                    )
                    s.stats.force_reloads += 1
                    self.release_area()
                    self.scheduler.wait_ticks(10)
                    self._force_load(area)
                    self.scheduler.wait_ticks(30)
                else:
                    self.scheduler.wait_ticks(self.config.load_retry_wait_ticks)
        return False

    def _await_loaded(self, s: ScanSession, area: Tuple[int, int, int, int]) -> None:
        for _ in range(self.config.load_checks_per_round):
            if s.stopping:
                return
            try:
                if self.world.is_area_loaded(*area):
                    return
            except WorldQueryTransient:
                pass  # counts as not loaded
            self.scheduler.wait_ticks(self.config.load_check_interval_ticks)
        raise LoadStuck(f"area {area} not loaded after {self.config.load_checks_per_round} checks")

    def _scan_with_retry(self, s: ScanSession, cx: int, cz: int) -> Optional[ChunkRecord]:
        cfg = self.config
        backoff = cfg.scan_backoff_min_ticks
        while not s.stopping:
            try:
                return scan_chunk(self.resolver, cx, cz, self.dimension)
            except (ChunkEmptyResult, WorldQueryTransient) as e:
                s.stats.scan_retries += 1
                if s.stats.scan_retries % cfg.scan_warn_every == 0:
                    log.warning(f"Scan error at ({cx},{cz}): {e}. Retrying...", extra={"extra": {"retries": s.stats.scan_retries}})
                self.scheduler.wait_ticks(backoff)
                backoff = min(backoff * 2, cfg.scan_backoff_max_ticks)
        return None

    def _finish(self, s: ScanSession, status: ScanStatus) -> None:
        s.status = status
        elapsed = self.scheduler.now_ms() - s.stats.start_time
        if status is ScanStatus.COMPLETED:
            if s.scanned >= self.config.eta_min_samples and s.scanned > 0:
                sample = elapsed / s.scanned
                s.avg_ms_per_chunk = round((s.avg_ms_per_chunk + sample) / 2.0, 2)
                log.info(f"Updated speed stats: {s.avg_ms_per_chunk:.0f} ms/chunk")
            self.state_store.clear_progress(s.avg_ms_per_chunk)
        else:
            self.state_store.save(s.snapshot(ScanStatus.STOPPED))
        self._summary(s, elapsed)

    def _summary(self, s: ScanSession, elapsed_ms: int) -> None:
        stopped = s.status is ScanStatus.STOPPED
        title = "§6=== Render Stopped ===" if stopped else "§2=== Render Complete ==="
        color = "§e" if stopped else "§a"
        st = s.stats
        msg = "\n".join([
            title,
            f"§7Duration: §f{format_duration(elapsed_ms)}",
            f"§7Total Chunks: §f{st.total_chunks}",
            f"§7Processed: {color}{st.processed} §7(Skipped: §b{st.skipped}§7)",
            f"§7Load Retries: §e{st.load_retries} §7(Force Reloads: §c{st.force_reloads}§7)",
            f"§7Scan Retries: §c{st.scan_retries}",
            f"§7Progress: {color}{st.percent:.1f}%",
            "§2========================",
        ])
        s.executor.display_message(msg)
        log.info("scan finished", extra={"extra": {"status": s.status.value, "elapsed_ms": elapsed_ms, **st.to_dict()}})

    # -------- helpers --------

    def _say(self, s: ScanSession, text: str) -> None:
        s.executor.display_message(text)

    def _force_load(self, area: Tuple[int, int, int, int]) -> None:
        try:
            self.world.force_load(self.config.render_area_tag, *area)
        except WorldQueryTransient as e:
            log.error(f"Forced load failed: {e}")

    def release_area(self) -> None:
        try:
            self.world.unload(self.config.render_area_tag)
        except WorldQueryTransient as e:
            log.debug(f"unload failed: {e}")
