"""
Unit tests for chunk and tile storage (mapserver.storage)
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import StorageFailure
from common.types import ChunkBounds, TileKey
from mapserver.storage import ChunkStore
from tests.fakes import make_record


class TestChunkStore:
    """Test cases for ChunkStore"""

    def test_upsert_and_get(self, chunk_store):
        """A stored record reads back equal"""
        rec = make_record(3, -2)
        assert chunk_store.upsert(rec, updated_at=10)
        assert chunk_store.get(3, -2) == rec
        assert chunk_store.get(3, -2, "the_nether") is None

    def test_last_write_wins_by_timestamp(self, chunk_store):
        """An older write never replaces a newer one"""
        chunk_store.upsert(make_record(0, 0, "minecraft:stone"), updated_at=200)
        assert not chunk_store.upsert(make_record(0, 0, "minecraft:sand"), updated_at=100)
        assert chunk_store.get(0, 0).palette == ["minecraft:stone"]
        assert chunk_store.upsert(make_record(0, 0, "minecraft:dirt"), updated_at=200)
        assert chunk_store.get(0, 0).palette == ["minecraft:dirt"]

    def test_get_range_excludes_max(self, chunk_store):
        """Range queries are half-open"""
        for cx in range(0, 4):
            chunk_store.upsert(make_record(cx, 0))
        assert sorted(chunk_store.get_range(1, 0, 3, 1)) == [(1, 0), (2, 0)]
        assert chunk_store.get_range(0, 1, 4, 2) == {}

    def test_corrupt_row_is_skipped(self, chunk_store):
        """Undecodable rows are dropped with a warning"""
        chunk_store.upsert(make_record(0, 0))
        with chunk_store.transaction() as tx:
            tx.execute(
                "INSERT INTO chunks (cx, cz, dimension, data, updated_at) VALUES (1, 0, 'overworld', '{bad', 0)"
            )
        assert sorted(chunk_store.get_range(0, 0, 2, 1)) == [(0, 0)]
        assert chunk_store.get(1, 0) is None

    def test_existing(self, chunk_store):
        """Only stored coords come back, per dimension"""
        chunk_store.upsert(make_record(0, 0))
        chunk_store.upsert(make_record(2, 2))
        chunk_store.upsert(make_record(1, 1, dimension="the_nether"))
        assert chunk_store.existing([(0, 0), (1, 1), (2, 2), (9, 9)]) == {(0, 0), (2, 2)}
        assert chunk_store.existing([(1, 1)], "minecraft:the_nether") == {(1, 1)}
        assert chunk_store.existing([]) == set()

    def test_existing_many(self, chunk_store):
        """Large lookups are split across queries"""
        with chunk_store.transaction() as tx:
            for cx in range(30):
                for cz in range(30):
                    tx.upsert(make_record(cx, cz), 1)
        coords = [(cx, cz) for cx in range(40) for cz in range(30)]
        assert len(chunk_store.existing(coords)) == 900

    def test_bounds_and_count(self, chunk_store):
        """Bounds span all stored chunks of a dimension"""
        assert chunk_store.bounds() is None
        chunk_store.upsert(make_record(-3, 4))
        chunk_store.upsert(make_record(5, -1))
        assert chunk_store.bounds() == ChunkBounds(-3, -1, 5, 4)
        assert chunk_store.count() == 2
        assert chunk_store.count("the_end") == 0

    def test_failed_transaction_rolls_back(self, chunk_store):
        """A sqlite error undoes the whole transaction"""
        with pytest.raises(StorageFailure):
            with chunk_store.transaction() as tx:
                tx.upsert(make_record(0, 0), 1)
                tx.execute("INSERT INTO no_such_table VALUES (1)")
        assert chunk_store.get(0, 0) is None

    def test_file_backed(self, tmp_path):
        """Records persist across connections"""
        path = str(tmp_path / "db" / "chunks.db")
        store = ChunkStore(path)
        store.upsert(make_record(1, 1))
        store.close()
        again = ChunkStore(path)
        assert again.count() == 1
        again.close()


class TestTileStore:
    """Test cases for TileStore"""

    def test_write_read_delete(self, tile_store):
        """Tiles live at {dimension}/{z}/{x}/{y}.png"""
        key = TileKey(-2, 3, -1)
        p = tile_store.write("minecraft:overworld", key, b"data")
        assert p.parts[-4:] == ("overworld", "-2", "3", "-1.png")
        assert tile_store.read("overworld", key) == b"data"
        assert tile_store.exists("overworld", key)
        tile_store.delete("overworld", key)
        assert tile_store.read("overworld", key) is None
        tile_store.delete("overworld", key)

    def test_overwrite_leaves_no_temp_files(self, tile_store):
        """Replacing a tile leaves just the tile"""
        key = TileKey(0, 0, 0)
        tile_store.write("overworld", key, b"one")
        tile_store.write("overworld", key, b"two")
        assert tile_store.read("overworld", key) == b"two"
        assert [p.name for p in tile_store.path("overworld", key).parent.iterdir()] == ["0.png"]

    def test_stats(self, tile_store):
        """Counts tiles per zoom"""
        assert tile_store.stats()["tiles"] == 0
        tile_store.write("overworld", TileKey(0, 0, 0), b"a")
        tile_store.write("overworld", TileKey(0, 1, 0), b"a")
        tile_store.write("overworld", TileKey(-1, 0, 0), b"a")
        st = tile_store.stats()
        assert st["tiles"] == 3
        assert st["per_zoom"] == {"-1": 1, "0": 2}
