"""
Unit tests for the tile pyramid (mapserver.tile_cache)
"""

import os
import sys
import threading
import time

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import TileGenFailure
from common.types import EdgeFlags, TileKey
from mapserver.colors import ColorTable
from mapserver.raster import decode_png
from mapserver.tile_cache import TileCache
from tests.fakes import make_record

GRASS = (124, 189, 107, 255)
STONE = (125, 125, 125, 255)


def _pixel(data, x, y, size=64):
    return tuple(int(v) for v in decode_png(data, size)[y, x])


class TestGeneration:
    """Test cases for base and composite tile generation"""

    def test_base_tile_on_demand(self, tile_cache, chunk_store, tile_store):
        """A missing zoom-0 tile is rendered from its chunks and stored"""
        chunk_store.upsert(make_record(0, 0))
        data = tile_cache.get_or_generate(0, 0, 0)
        assert data is not None
        assert _pixel(data, 0, 0) == GRASS
        assert _pixel(data, 15, 15) == GRASS
        assert _pixel(data, 16, 16)[3] == 0
        assert tile_store.read("overworld", TileKey(0, 0, 0)) == data

    def test_no_chunks_no_tile(self, tile_cache, tile_store):
        """Nothing is produced or written where no chunk exists"""
        assert tile_cache.get_or_generate(0, 3, 3) is None
        assert tile_cache.get_or_generate(-2, 5, 5) is None
        assert tile_store.stats()["tiles"] == 0

    def test_stored_tile_is_served_as_is(self, tile_cache, tile_store):
        """Existing tiles are returned without regeneration"""
        tile_store.write("overworld", TileKey(0, 0, 0), b"cached")
        assert tile_cache.get_or_generate(0, 0, 0) == b"cached"
        assert tile_cache.generations == {}

    def test_composite_downsamples_children(self, tile_cache, chunk_store):
        """Zoom -1 holds its children at half size"""
        chunk_store.upsert(make_record(0, 0))
        data = tile_cache.get_or_generate(-1, 0, 0)
        assert data is not None
        assert _pixel(data, 0, 0) == GRASS
        assert _pixel(data, 7, 7) == GRASS
        assert _pixel(data, 8, 8)[3] == 0
        assert TileKey(0, 0, 0) in tile_cache.generations

    def test_generation_is_deterministic(self, tile_cache, chunk_store):
        """Same stored chunks give byte-identical tiles"""
        chunk_store.upsert(make_record(0, 0))
        chunk_store.upsert(make_record(1, 0, "minecraft:stone", y=70))
        first = tile_cache.regenerate(TileKey(0, 0, 0))
        second = tile_cache.regenerate(TileKey(0, 0, 0))
        assert first == second
        assert tile_cache.regenerate(TileKey(-1, 0, 0)) == tile_cache.regenerate(TileKey(-1, 0, 0))

    def test_corrupt_child_is_absent(self, tile_cache, chunk_store, tile_store):
        """An unreadable child leaves its quadrant transparent"""
        tile_store.write("overworld", TileKey(0, 0, 0), b"not a png")
        chunk_store.upsert(make_record(4, 0))
        data = tile_cache.generate_composite_tile(-1, 0, 0)
        assert data is not None
        assert _pixel(data, 0, 0)[3] == 0
        assert _pixel(data, 32, 0) == GRASS

    def test_zoom_outside_range(self, tile_cache, chunk_store):
        """Zooms above 0 or below the floor are never generated"""
        chunk_store.upsert(make_record(0, 0))
        assert tile_cache.generate(TileKey(1, 0, 0)) is None
        assert tile_cache.generate(TileKey(-5, 0, 0)) is None
        with pytest.raises(ValueError):
            tile_cache.generate_composite_tile(0, 0, 0)

    def test_tile_size_must_align(self, chunk_store, tile_store):
        """Tiles must hold whole chunk groups"""
        with pytest.raises(ValueError):
            TileCache(chunk_store, tile_store, tile_size=100)

    def test_concurrent_misses_share_one_generation(self, tile_cache):
        """Simultaneous requests for one key run the generator once"""
        calls = []
        gate = threading.Event()

        def slow(key):
            calls.append(key)
            gate.wait(5)
            return b"png"

        tile_cache.generate = slow
        results = []
        threads = [threading.Thread(target=lambda: results.append(tile_cache.get_or_generate(0, 0, 0))) for _ in range(3)]
        for t in threads:
            t.start()
        deadline = time.time() + 5
        while not calls and time.time() < deadline:
            time.sleep(0.01)
        time.sleep(0.2)
        gate.set()
        for t in threads:
            t.join(5)
        assert calls == [TileKey(0, 0, 0)]
        assert results == [b"png"] * 3

    def test_failure_reaches_waiters(self, tile_cache):
        """A failed generation raises for the caller"""
        def broken(key):
            raise TileGenFailure("boom")

        tile_cache.generate = broken
        with pytest.raises(TileGenFailure):
            tile_cache.get_or_generate(0, 0, 0)
        assert tile_cache._inflight == {}


class TestInvalidation:
    """Test cases for invalidation and queue draining"""

    def test_keys_for_chunk_interior(self, tile_cache):
        """No edges: only the chunk's own tile"""
        assert tile_cache.keys_for_chunk(5, 5) == {TileKey(0, 1, 1)}
        assert tile_cache.keys_for_chunk(5, 5, EdgeFlags()) == {TileKey(0, 1, 1)}

    def test_keys_for_chunk_edges(self, tile_cache):
        """Edge updates on a tile border reach the neighbouring tiles, diagonal included"""
        keys = tile_cache.keys_for_chunk(3, 3, EdgeFlags(east=True, south=True))
        assert keys == {TileKey(0, 0, 0), TileKey(0, 1, 0), TileKey(0, 0, 1), TileKey(0, 1, 1)}

    def test_keys_for_chunk_negative(self, tile_cache):
        """West/north neighbours across the origin land in negative tiles"""
        keys = tile_cache.keys_for_chunk(0, 0, EdgeFlags(west=True, north=True))
        assert keys == {TileKey(0, 0, 0), TileKey(0, -1, 0), TileKey(0, 0, -1)}

    def test_drain_refreshes_every_ancestor(self, tile_cache, chunk_store):
        """After a drain the zoom-0 tile and all ancestors down to min_zoom are newer"""
        chunk_store.upsert(make_record(5, 5))
        assert tile_cache.get_or_generate(-3, 0, 0) is not None
        before = dict(tile_cache.generations)

        chunk_store.upsert(make_record(5, 5, "minecraft:stone"))
        tile_cache.invalidate(5, 5)
        assert tile_cache.queued() == 1
        assert tile_cache.process_queue() == 4

        chain = [TileKey(0, 1, 1), TileKey(-1, 0, 0), TileKey(-2, 0, 0), TileKey(-3, 0, 0)]
        for key in chain:
            assert tile_cache.generations[key] > before[key]
        # children are always rendered before their parent
        stamps = [tile_cache.generations[k] for k in chain]
        assert stamps == sorted(stamps)
        assert tile_cache.queued() == 0
        assert _pixel(tile_cache.tiles.read("overworld", TileKey(0, 1, 1)), 16, 16) == STONE

    def test_shared_ancestors_regenerate_once(self, tile_cache, chunk_store):
        """Sibling tiles in one drain share their parents"""
        for cx, cz in [(0, 0), (4, 0), (0, 4), (4, 4)]:
            chunk_store.upsert(make_record(cx, cz))
            tile_cache.invalidate(cx, cz)
        # 4 base tiles + one tile per coarser zoom
        assert tile_cache.process_queue() == 4 + 3

    def test_empty_queue(self, tile_cache):
        """Draining nothing is a no-op"""
        assert tile_cache.process_queue() == 0

    def test_failing_tile_does_not_stop_drain(self, tile_cache, chunk_store):
        """A tile that cannot be generated is logged and skipped"""
        chunk_store.upsert(make_record(0, 0))
        real = tile_cache.generate

        def flaky(key):
            if key == TileKey(-1, 0, 0):
                raise TileGenFailure("boom")
            return real(key)

        tile_cache.generate = flaky
        tile_cache.invalidate(0, 0)
        assert tile_cache.process_queue() == 4
        assert TileKey(0, 0, 0) in tile_cache.generations
        assert TileKey(-1, 0, 0) not in tile_cache.generations

    def test_debounced_drain(self, chunk_store, tile_store):
        """With a debounce the queue drains on its own"""
        tc = TileCache(chunk_store, tile_store, ColorTable(), tile_size=64, min_zoom=-1, debounce_s=0.05)
        try:
            chunk_store.upsert(make_record(0, 0))
            tc.invalidate(0, 0)
            deadline = time.time() + 5
            while TileKey(-1, 0, 0) not in tc.generations and time.time() < deadline:
                time.sleep(0.02)
            assert TileKey(0, 0, 0) in tc.generations
            assert TileKey(-1, 0, 0) in tc.generations
            assert tc.queued() == 0
        finally:
            tc.close()

    def test_stats(self, tile_cache, chunk_store):
        """Stats report stored tiles and the latest generation"""
        chunk_store.upsert(make_record(0, 0))
        tile_cache.get_or_generate(0, 0, 0)
        st = tile_cache.stats()
        assert st["tiles"]["tiles"] == 1
        assert st["generation"] == 1
        assert st["queued"] == 0

    def test_write_error_does_not_lose_queued_tiles(self, tile_cache, chunk_store, tile_store):
        """A tile whose write fails is skipped; the rest of the drain still lands on disk"""
        for cx in (0, 4, 8):
            chunk_store.upsert(make_record(cx, 0))
            tile_cache.invalidate(cx, 0)
        real_write = tile_store.write

        def full_disk(dimension, key, data):
            if key == TileKey(0, 0, 0):
                raise OSError("disk full")
            return real_write(dimension, key, data)

        tile_store.write = full_disk
        assert tile_cache.process_queue() > 3
        assert tile_store.read("overworld", TileKey(0, 1, 0)) is not None
        assert tile_store.read("overworld", TileKey(0, 2, 0)) is not None
        assert tile_store.read("overworld", TileKey(-1, 1, 0)) is not None
        assert tile_store.read("overworld", TileKey(0, 0, 0)) is None
        assert tile_cache.queued() == 0
        assert tile_cache.stats()["failures"] >= 1

    def test_interrupted_drain_requeues_remaining_keys(self, tile_cache, chunk_store):
        """Keys not yet processed when a drain is interrupted go back on the queue"""

        class Abort(BaseException):
            pass

        for cx in (0, 4, 8):
            chunk_store.upsert(make_record(cx, 0))
            tile_cache.invalidate(cx, 0)
        real = tile_cache.generate

        def stop_at_second(key):
            if key == TileKey(0, 1, 0):
                raise Abort()
            return real(key)

        tile_cache.generate = stop_at_second
        with pytest.raises(Abort):
            tile_cache.process_queue()
        assert TileKey(0, 0, 0) in tile_cache.generations
        # 0/1/0, 0/2/0 and the parent queued after 0/0/0
        assert tile_cache.queued() == 3

        tile_cache.generate = real
        # 0/1/0, 0/2/0, -1/0/0, -1/1/0, -2/0/0, -3/0/0
        assert tile_cache.process_queue() == 6
        assert TileKey(0, 2, 0) in tile_cache.generations
