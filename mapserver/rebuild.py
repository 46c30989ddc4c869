from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from common.errors import StorageFailure, TileGenFailure
from common.logging_setup import get_logger
from common.types import ChunkBounds, TileKey
from common.utils import CHUNK_SIZE
from mapserver.tile_cache import TileCache

log = get_logger("mapserver.rebuild")


@dataclass(slots=True)
class RebuildReport:
    per_zoom: Dict[int, int] = field(default_factory=dict)   # tiles written per zoom
    failures: int = 0
    seconds: float = 0.0

    @property
    def total(self) -> int:
        return sum(self.per_zoom.values())


def base_tile_range(bounds: ChunkBounds, tile_size: int) -> Tuple[int, int, int, int]:
    """Inclusive zoom-0 tile range (start_x, start_y, end_x, end_y) covering the chunk bounds."""
    min_x = bounds.min_cx * CHUNK_SIZE
    min_z = bounds.min_cz * CHUNK_SIZE
    max_x = (bounds.max_cx + 1) * CHUNK_SIZE
    max_z = (bounds.max_cz + 1) * CHUNK_SIZE
    return min_x // tile_size, min_z // tile_size, max_x // tile_size, max_z // tile_size


def level_keys(zoom: int, base: Tuple[int, int, int, int]) -> List[TileKey]:
    div = 2 ** (-zoom)
    sx, sy, ex, ey = base
    return [TileKey(zoom, x, y) for x in range(sx // div, ex // div + 1) for y in range(sy // div, ey // div + 1)]


def rebuild_pyramid(
    cache: TileCache,
    min_zoom: int = -8,
    concurrency: int = 4,
    bounds: Optional[ChunkBounds] = None,
) -> RebuildReport:
    """
    Regenerate every tile from stored chunks: zoom 0 first, then each coarser
    level from the one just written, down to `min_zoom`.
    """
    report = RebuildReport()
    bounds = bounds or cache.chunks.bounds(cache.dimension)
    if bounds is None:
        log.warning("No chunk data; nothing to render.", extra={"extra": {"dimension": cache.dimension}})
        return report

    t0 = time.time()
    base = base_tile_range(bounds, cache.tile_size)
    log.info("rebuild start", extra={"extra": {"bounds": bounds.to_dict(), "base_tiles": list(base), "min_zoom": min_zoom}})

    lock = threading.Lock()

    def _one(key: TileKey) -> bool:
        try:
            return cache.regenerate(key) is not None
        except (TileGenFailure, StorageFailure) as e:
            log.error(f"Tile Gen Error ({key}): {e}")
            with lock:
                report.failures += 1
            return False
        except Exception:
            log.exception("tile regeneration failed", extra={"extra": {"tile": str(key)}})
            with lock:
                report.failures += 1
            return False

    with ThreadPoolExecutor(max_workers=max(1, int(concurrency)), thread_name_prefix="rebuild") as pool:
        for zoom in range(0, min_zoom - 1, -1):
            keys = level_keys(zoom, base)
            written = sum(1 for ok in pool.map(_one, keys) if ok)
            report.per_zoom[zoom] = written
            log.info("zoom level done", extra={"extra": {"zoom": zoom, "tiles": len(keys), "written": written}})

    report.seconds = round(time.time() - t0, 2)
    log.info("rebuild complete", extra={"extra": {"tiles": report.total, "failures": report.failures, "seconds": report.seconds}})
    return report
