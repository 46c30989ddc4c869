from __future__ import annotations

import threading
from typing import Optional

from common.errors import ScanAlreadyRunning
from common.logging_setup import get_logger
from common.types import ChunkBounds, ScanMode, ScanStatus
from scanner.executor import CommandExecutor, ConsoleExecutor
from scanner.orchestrator import ScanOrchestrator

log = get_logger("scanner.controller")


class ScanController:
    """
    Admin actions for the scanner: render, repair, stop, resume, reset.

    Scans run on one background thread; every action returns immediately
    after reporting to the executor. Returns True when the action was taken.
    """

    def __init__(self, orchestrator: ScanOrchestrator, auto_resume_delay_ticks: int = 100):
        self.orch = orchestrator
        self.auto_resume_delay_ticks = auto_resume_delay_ticks
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    # -------- actions --------

    def render(self, executor: CommandExecutor, bounds: ChunkBounds) -> bool:
        return self._launch(executor, bounds, None, ScanMode.EXHAUSTIVE)

    def repair(self, executor: CommandExecutor, bounds: ChunkBounds) -> bool:
        if not self._authorized(executor) or self._refuse_if_busy(executor):
            return False
        executor.display_message("§aStarting Repair Mode...")
        return self._launch(executor, bounds, None, ScanMode.REPAIR, checked=True)

    def stop(self, executor: CommandExecutor) -> bool:
        if not self._authorized(executor):
            return False
        if not self.busy or not self.orch.stop():
            executor.display_message("§cNot rendering.")
            return False
        executor.display_message("§eStopping...")
        return True

    def resume(self, executor: CommandExecutor) -> bool:
        if not self._authorized(executor) or self._refuse_if_busy(executor):
            return False
        state = self.orch.state_store.load()
        if not state.resumable:
            executor.display_message("§cNo resumable state found.")
            return False
        executor.display_message(f"§aResuming ({state.mode.value})...")
        return self._launch(executor, state.bounds, state.cursor, state.mode, checked=True)

    def reset(self, executor: CommandExecutor) -> bool:
        """Stop any scan and forget all progress, including learned speed."""
        if not self._authorized(executor):
            return False
        if self.busy:
            self.orch.stop()
            self.join(timeout=5.0)
        self.orch.state_store.clear_all()
        self.orch.release_area()
        executor.display_message("§aState reset complete.")
        return True

    def auto_resume(self) -> bool:
        """Resume a scan that was running when the process died."""
        self.orch.release_area()
        state = self.orch.state_store.load()
        if state.status is not ScanStatus.RUNNING or state.bounds is None:
            return False
        log.warning("Detected unfinished render (crash/restart). Auto-resuming...")
        self.orch.scheduler.wait_ticks(self.auto_resume_delay_ticks)
        return self._launch(ConsoleExecutor(), state.bounds, state.cursor, state.mode)

    def join(self, timeout: Optional[float] = None) -> None:
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)

    # -------- internals --------

    def _authorized(self, executor: CommandExecutor) -> bool:
        if executor.is_authorized():
            return True
        executor.display_message("§c[Map] You do not have permission to manage the map.")
        return False

    def _refuse_if_busy(self, executor: CommandExecutor) -> bool:
        if self.busy:
            executor.display_message("§cAlready rendering.")
            return True
        return False

    def _launch(self, executor, bounds, cursor, mode, checked: bool = False) -> bool:
        if not checked and (not self._authorized(executor) or self._refuse_if_busy(executor)):
            return False
        with self._lock:
            if self.busy:
                executor.display_message("§cAlready rendering.")
                return False
            self._thread = threading.Thread(
                target=self._run,
                args=(executor, bounds, cursor, mode),
                name="scan-session",
                daemon=True,
            )
            self._thread.start()
        return True

    def _run(self, executor, bounds, cursor, mode) -> None:
        try:
            self.orch.start(bounds, executor, cursor=cursor, mode=mode)
        except ScanAlreadyRunning:
            executor.display_message("§cAlready rendering.")
        except Exception:
            log.exception("Render error")
            executor.display_message("§cError occurred.")
