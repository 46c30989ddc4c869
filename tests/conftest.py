import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from common.config import DEFAULTS, _deep_merge
from mapserver.colors import ColorTable
from mapserver.storage import ChunkStore, TileStore
from mapserver.tile_cache import TileCache


@pytest.fixture
def chunk_store():
    store = ChunkStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def tile_store(tmp_path):
    return TileStore(str(tmp_path / "tiles"))


@pytest.fixture
def tile_cache(chunk_store, tile_store):
    """Small tiles (64 px = 4x4 chunks) with manual draining."""
    tc = TileCache(chunk_store, tile_store, ColorTable(), tile_size=64, min_zoom=-3, floor_zoom=-4, debounce_s=None)
    yield tc
    tc.close()


@pytest.fixture
def server_params(tmp_path):
    return _deep_merge(DEFAULTS, {
        "server": {"db_path": str(tmp_path / "chunks.db"), "tiles_root": str(tmp_path / "tiles")},
        "render": {"tile_size": 64, "min_zoom": -2, "rebuild_min_zoom": -3, "debounce_s": None,
                   "colormap_path": str(tmp_path / "missing_colormap.json")},
    })
