"""
HTTP link from the scanner to the map server.

Usage:
    client = MapServerClient("http://127.0.0.1:5000")
    missing = client.missing_chunks([(0, 0), (1, 0)], dimension="overworld")
    sender = ChunkSender(client, max_in_flight=2)
    sender.submit(records)   # returns immediately
    sender.flush()
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import requests

from common.logging_setup import get_logger
from common.types import ChunkRecord, ColumnUpdate
from scanner.world import PlayerInfo

log = get_logger("scanner.transport")


class MapServerClient:
    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        attempts: int = 3,
        timeout: float = 10.0,
        backoff_s: float = 0.5,
    ):
        """
        Params:
            base_url: map server root, e.g. http://127.0.0.1:5000
            session: optional requests.Session for connection reuse
            attempts: tries per request; waits backoff_s * n between tries
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.attempts = max(1, int(attempts))
        self.timeout = float(timeout)
        self.backoff_s = float(backoff_s)

    def _post_json(self, endpoint: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """POST with retry; parsed JSON body on 2xx, None once every attempt failed."""
        url = f"{self.base_url}{endpoint}"
        for attempt in range(1, self.attempts + 1):
            try:
                r = self.session.post(url, json=payload, timeout=self.timeout)
                if 200 <= r.status_code < 300:
                    try:
                        return r.json()
                    except ValueError:
                        return {}
                log.debug("non-2xx from map server", extra={"extra": {"url": url, "status": r.status_code, "attempt": attempt}})
            except requests.RequestException as e:
                log.debug("map server unreachable", extra={"extra": {"url": url, "err": str(e), "attempt": attempt}})
            if attempt < self.attempts:
                time.sleep(self.backoff_s * attempt)
        log.warning(f"Failed to send data to {endpoint}", extra={"extra": {"attempts": self.attempts}})
        return None

    def existing_chunks(self, coords: Sequence[Tuple[int, int]], dimension: str = "overworld") -> Set[Tuple[int, int]]:
        """Subset of `coords` the server already stores; a failed check reports none."""
        if not coords:
            return set()
        body = self._post_json("/api/map/check", {
            "dimension": dimension,
            "chunks": [{"cx": cx, "cz": cz} for cx, cz in coords],
        })
        if body is None:
            return set()
        return {(int(c["cx"]), int(c["cz"])) for c in body.get("existing", [])}

    def missing_chunks(self, coords: Sequence[Tuple[int, int]], dimension: str = "overworld") -> List[Tuple[int, int]]:
        existing = self.existing_chunks(coords, dimension)
        return [c for c in coords if c not in existing]

    def send_chunk_batch(self, records: Sequence[ChunkRecord]) -> bool:
        if not records:
            return True
        return self._post_json("/api/map/update", {"data": [r.to_dict() for r in records]}) is not None

    def send_partial_updates(self, updates: Sequence[ColumnUpdate]) -> bool:
        if not updates:
            return True
        return self._post_json("/api/map/update-partial", {"updates": [u.to_dict() for u in updates]}) is not None

    def send_players(self, players: Iterable[PlayerInfo]) -> bool:
        return self._post_json("/players", {"data": [p.to_dict() for p in players]}) is not None


class ChunkSender:
    """
    Fire-and-forget batch submission.

    At most `max_in_flight` batches are transmitted at once; further batches
    wait in the pool's queue. The scan loop does not wait on the network
    unless `max_queued` batches (in flight included) are already pending, in
    which case `submit` blocks until one finishes.
    """

    def __init__(self, client: MapServerClient, max_in_flight: int = 2, max_queued: int = 16):
        self.client = client
        workers = max(1, int(max_in_flight))
        self.max_queued = max(workers, int(max_queued))
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunk-sender")
        self._slots = threading.BoundedSemaphore(self.max_queued)
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()
        self.sent = 0
        self.failed = 0
        self.stalls = 0

    def submit(self, records: Sequence[ChunkRecord]) -> Optional[Future]:
        if not records:
            return None
        if not self._slots.acquire(blocking=False):
            with self._lock:
                self.stalls += 1
            log.warning("chunk sender backlog full; waiting for a slot", extra={"extra": {"max_queued": self.max_queued}})
            self._slots.acquire()
        try:
            fut = self._pool.submit(self._send, list(records))
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(self._done)
        return fut

    def backlog(self) -> int:
        """Batches submitted but not finished."""
        with self._lock:
            return len(self._pending)

    def _send(self, records: List[ChunkRecord]) -> bool:
        ok = self.client.send_chunk_batch(records)
        with self._lock:
            if ok:
                self.sent += 1
            else:
                self.failed += 1
        if not ok:
            log.warning("chunk batch dropped", extra={"extra": {"chunks": len(records), "first": [records[0].cx, records[0].cz]}})
        return ok

    def _done(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)
        self._slots.release()
        exc = fut.exception()
        if exc is not None:
            log.error("chunk sender task crashed", exc_info=exc)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for every submitted batch to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self) -> None:
        self.flush()
        self._pool.shutdown(wait=True)
