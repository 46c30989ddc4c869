from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Optional

from common.logging_setup import get_logger
from common.types import RenderJobState, ScanStats, ScanStatus

log = get_logger("scanner.state")


class StateStore:
    """
    Scan progress snapshot as a single JSON file.

    Writes go to a temp file and are renamed into place, so a crash leaves
    either the previous or the new snapshot, never a torn one.
    """

    def __init__(self, path: str = "data/render_state.json"):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> RenderJobState:
        """Stored state, or a fresh idle state if nothing usable is on disk."""
        with self._lock:
            if not self.path.exists():
                return RenderJobState()
            try:
                raw = json.loads(self.path.read_text())
            except (OSError, ValueError) as e:
                log.warning("unreadable render state, starting fresh", extra={"extra": {"path": str(self.path), "err": str(e)}})
                return RenderJobState()
        if not isinstance(raw, dict) or "status" not in raw:
            return RenderJobState()
        try:
            return RenderJobState.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("malformed render state, starting fresh", extra={"extra": {"err": str(e)}})
            return RenderJobState()

    def save(self, state: RenderJobState) -> None:
        payload = json.dumps(state.to_dict(), separators=(",", ":"))
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(payload)
            os.replace(tmp, self.path)

    def clear_progress(self, avg_ms_per_chunk: Optional[float] = None) -> RenderJobState:
        """Mark completed and drop bounds/cursor; the learned speed survives."""
        current = self.load()
        avg = avg_ms_per_chunk if avg_ms_per_chunk is not None else current.avg_ms_per_chunk
        state = RenderJobState(status=ScanStatus.COMPLETED, stats=ScanStats(), avg_ms_per_chunk=avg)
        self.save(state)
        return state

    def clear_all(self) -> None:
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
