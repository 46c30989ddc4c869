from __future__ import annotations

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from common.errors import StorageFailure, TileGenFailure
from common.logging_setup import get_logger
from common.types import EdgeFlags, TileKey, normalize_dimension
from mapserver.colors import ColorTable
from mapserver.raster import chunk_tile, compose_children, decode_png, encode_png, rasterize_base, tile_chunk_range
from mapserver.storage import ChunkStore, TileStore

log = get_logger("mapserver.tile_cache")


@dataclass
class _InFlight:
    """One running generation; followers wait on `done` and share the result."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[bytes] = None
    error: Optional[BaseException] = None


class TileCache:
    """
    Keeps the PNG pyramid in step with chunk storage.

        zoom 0   one pixel per column, rendered from chunk records
        zoom <0  each tile is its four zoom+1 children at half size

    Chunk writes call `invalidate`; a debounced drain then regenerates the
    touched zoom-0 tiles and every ancestor down to `min_zoom`, each exactly
    once per drain pass. Requests for missing tiles are generated on demand.
    Generation of any one key is single-flight.
    """

    def __init__(
        self,
        chunks: ChunkStore,
        tiles: TileStore,
        colors: Optional[ColorTable] = None,
        tile_size: int = 512,
        min_zoom: int = -5,
        floor_zoom: int = -8,
        debounce_s: Optional[float] = 2.0,
        dimension: str = "overworld",
    ):
        """
        Params:
            min_zoom: coarsest zoom kept current by invalidation
            floor_zoom: coarsest zoom generated at all (on demand / rebuild)
            debounce_s: delay before an automatic drain; None disables auto drain
        """
        if tile_size % 32 != 0:
            raise ValueError("tile_size must be a multiple of 32")
        self.chunks = chunks
        self.tiles = tiles
        self.colors = colors or ColorTable()
        self.tile_size = int(tile_size)
        self.min_zoom = int(min_zoom)
        self.floor_zoom = min(int(floor_zoom), self.min_zoom)
        self.debounce_s = debounce_s
        self.dimension = normalize_dimension(dimension)

        self._qlock = threading.Lock()
        self._queue: Set[TileKey] = set()
        self._draining = False
        self._timer: Optional[threading.Timer] = None
        self.failures = 0

        self._flock = threading.Lock()
        self._inflight: Dict[TileKey, _InFlight] = {}

        self._gen_lock = threading.Lock()
        self._gen_counter = itertools.count(1)
        self.generations: Dict[TileKey, int] = {}

    # -------- generation --------

    def generate_base_tile(self, x: int, y: int) -> Optional[bytes]:
        """Render zoom-0 tile (x, y) from chunk records; None if no chunk covers it."""
        start_cx, start_cz, end_cx, end_cz = tile_chunk_range(x, y, self.tile_size)
        records = self.chunks.get_range(start_cx - 1, start_cz - 1, end_cx, end_cz, self.dimension)
        if not records:
            return None
        img = rasterize_base(records, x, y, self.tile_size, self.colors)
        if img is None:
            return None
        return self._store(TileKey(0, x, y), img)

    def generate_composite_tile(self, zoom: int, x: int, y: int) -> Optional[bytes]:
        """Downsample the four zoom+1 children into tile (zoom, x, y); None if none exist."""
        if zoom >= 0:
            raise ValueError("composite tiles have negative zoom")
        children: Dict[Tuple[int, int], Optional[np.ndarray]] = {}
        for dx, dy, child in TileKey(zoom, x, y).children():
            children[(dx, dy)] = self._child_image(child)
        img = compose_children(children, self.tile_size)
        if img is None:
            return None
        return self._store(TileKey(zoom, x, y), img)

    def generate(self, key: TileKey) -> Optional[bytes]:
        if key.zoom == 0:
            return self.generate_base_tile(key.x, key.y)
        if self.floor_zoom <= key.zoom < 0:
            return self.generate_composite_tile(key.zoom, key.x, key.y)
        return None

    def get_or_generate(self, zoom: int, x: int, y: int) -> Optional[bytes]:
        """Serving path: stored tile if present, else generate (shared with concurrent callers)."""
        key = TileKey(int(zoom), int(x), int(y))
        data = self.tiles.read(self.dimension, key)
        if data is not None:
            return data
        return self._single_flight(key, lambda: self.generate(key), join=True)

    def regenerate(self, key: TileKey) -> Optional[bytes]:
        """Fresh generation. Waits out any generation already running for the key."""
        return self._single_flight(key, lambda: self.generate(key), join=False)

    def _child_image(self, key: TileKey) -> Optional[np.ndarray]:
        try:
            data = self.get_or_generate(key.zoom, key.x, key.y)
            if data is None:
                return None
            return decode_png(data, self.tile_size)
        except TileGenFailure as e:
            log.warning("unusable child tile", extra={"extra": {"tile": str(key), "err": str(e)}})
            return None

    def _store(self, key: TileKey, img: np.ndarray) -> bytes:
        data = encode_png(img)
        self.tiles.write(self.dimension, key, data)
        with self._gen_lock:
            self.generations[key] = next(self._gen_counter)
        return data

    def _single_flight(self, key: TileKey, fn: Callable[[], Optional[bytes]], join: bool) -> Optional[bytes]:
        while True:
            with self._flock:
                cur = self._inflight.get(key)
                if cur is None:
                    mine = _InFlight()
                    self._inflight[key] = mine
                    break
            cur.done.wait()
            if join:
                if cur.error is not None:
                    raise cur.error
                return cur.result

        try:
            mine.result = fn()
            return mine.result
        except BaseException as e:
            mine.error = e
            raise
        finally:
            with self._flock:
                self._inflight.pop(key, None)
            mine.done.set()

    # -------- invalidation --------

    def keys_for_chunk(self, cx: int, cz: int, edges: Optional[EdgeFlags] = None) -> Set[TileKey]:
        keys = {TileKey(0, *chunk_tile(cx, cz, self.tile_size))}
        if edges is not None:
            coords = edges.neighbours(cx, cz)
            # a pixel shades against its north-west neighbour, so the SE corner reaches diagonally
            if edges.east and edges.south:
                coords.append((cx + 1, cz + 1))
            for ncx, ncz in coords:
                keys.add(TileKey(0, *chunk_tile(ncx, ncz, self.tile_size)))
        return keys

    def invalidate(self, cx: int, cz: int, edges: Optional[EdgeFlags] = None) -> Set[TileKey]:
        """Queue the zoom-0 tile of a chunk (plus edge neighbours' tiles) for regeneration."""
        keys = self.keys_for_chunk(cx, cz, edges)
        self.enqueue(keys)
        return keys

    def enqueue(self, keys: Iterable[TileKey]) -> None:
        with self._qlock:
            self._queue.update(keys)
            if self.debounce_s is not None and self._timer is None:
                self._timer = threading.Timer(self.debounce_s, self._on_timer)
                self._timer.daemon = True
                self._timer.start()

    def queued(self) -> int:
        with self._qlock:
            return len(self._queue)

    def _on_timer(self) -> None:
        with self._qlock:
            self._timer = None
        try:
            self.process_queue()
        except Exception:
            log.exception("tile queue drain failed")

    def process_queue(self) -> int:
        """
        Drain the invalidation queue; returns tiles regenerated.

        Only one drain runs at a time. A concurrent call returns 0 at once;
        anything it would have handled is picked up by the running drain.
        """
        with self._qlock:
            if self._draining:
                return 0
            self._draining = True
        done = 0
        try:
            while True:
                with self._qlock:
                    if not self._queue:
                        self._draining = False
                        return done
                    batch = self._queue
                    self._queue = set()
                done += self._drain_pass(batch)
        except BaseException:
            with self._qlock:
                self._draining = False
            raise

    def _drain_pass(self, batch: Set[TileKey]) -> int:
        # finest zoom first so each parent is built from already refreshed children
        heap: List[Tuple[int, int, int]] = [(-k.zoom, k.x, k.y) for k in batch]
        heapq.heapify(heap)
        seen: Set[TileKey] = set(batch)
        count = 0
        try:
            while heap:
                negz, x, y = heap[0]
                key = TileKey(-negz, x, y)
                try:
                    self.regenerate(key)
                except (TileGenFailure, StorageFailure) as e:
                    log.error(f"Tile Gen Error ({key}): {e}")
                    self.failures += 1
                except Exception:
                    # disk or codec errors: skip this tile, its ancestors still refresh
                    log.exception("tile regeneration failed", extra={"extra": {"tile": str(key)}})
                    self.failures += 1
                heapq.heappop(heap)
                count += 1
                if key.zoom > self.min_zoom:
                    parent = key.parent()
                    if parent not in seen:
                        seen.add(parent)
                        heapq.heappush(heap, (-parent.zoom, parent.x, parent.y))
        except BaseException:
            # interrupted: hand the unprocessed keys back for the next drain
            with self._qlock:
                self._queue.update(TileKey(-negz, x, y) for negz, x, y in heap)
            raise
        log.debug("drain pass", extra={"extra": {"queued": len(batch), "regenerated": count}})
        return count

    def close(self) -> None:
        with self._qlock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def stats(self) -> Dict:
        with self._gen_lock:
            last = max(self.generations.values(), default=0)
        return {"tiles": self.tiles.stats(), "queued": self.queued(), "generation": last, "failures": self.failures}
