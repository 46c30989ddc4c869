"""
Unit tests for block colors and tile rasterization (mapserver.colors, mapserver.raster)
"""

import json
import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import TileGenFailure
from mapserver.colors import FALLBACK_GRAY, MANUAL_COLORS, TRANSPARENT, ColorTable, load_colormap
from mapserver.raster import (
    chunk_tile,
    compose_children,
    decode_png,
    downsample_half,
    encode_png,
    rasterize_base,
    tile_chunk_range,
)
from tests.fakes import make_record


class TestColorTable:
    """Test cases for ColorTable"""

    def test_air_is_transparent(self):
        """Air and missing ids draw nothing"""
        table = ColorTable()
        assert table.color("minecraft:air") == TRANSPARENT
        assert table.color(None) == TRANSPARENT
        assert table.color("minecraft:cave_air")[3] == 0

    def test_manual_beats_colormap(self):
        """Hand-picked colors take precedence over the colormap"""
        table = ColorTable({"minecraft:stone": (1, 2, 3, 1.0), "minecraft:moss_block": (89, 109, 45, 1.0)})
        assert table.color("minecraft:stone") == MANUAL_COLORS["minecraft:stone"]
        assert table.color("minecraft:moss_block") == (89, 109, 45, 1.0)

    def test_keyword_fallback(self):
        """Unlisted ids fall back on name fragments"""
        table = ColorTable()
        assert table.color("minecraft:pale_oak_leaves") == (50, 100, 30, 1.0)
        assert table.color("minecraft:stone_brick_stairs") == (150, 120, 80, 1.0)
        assert table.color("minecraft:tinted_glass") == (255, 255, 255, 0.3)

    def test_unknown_is_gray_and_logged_once(self, caplog):
        """Unknown ids are gray and warned about only once"""
        table = ColorTable()
        with caplog.at_level("WARNING"):
            assert table.color("modded:thing") == FALLBACK_GRAY
            assert table.color("modded:thing") == FALLBACK_GRAY
            table._memo.clear()
            table.color("modded:thing")
        assert table.unknown_ids == {"modded:thing"}
        assert sum("modded:thing" in r.getMessage() for r in caplog.records) == 1

    def test_load_colormap(self, tmp_path):
        """Colormap entries become RGBA tuples; malformed entries are skipped"""
        p = tmp_path / "colormap.json"
        p.write_text(json.dumps({
            "minecraft:resin_block": {"r": 217, "g": 99, "b": 25, "a": 1},
            "minecraft:broken": {"r": "x"},
            "minecraft:no_alpha": {"r": 1, "g": 2, "b": 3},
        }))
        cmap = load_colormap(str(p))
        assert cmap == {"minecraft:resin_block": (217, 99, 25, 1.0), "minecraft:no_alpha": (1, 2, 3, 1.0)}

    def test_missing_or_broken_colormap(self, tmp_path):
        """No file or bad JSON yields an empty colormap"""
        assert load_colormap(str(tmp_path / "none.json")) == {}
        assert load_colormap(None) == {}
        bad = tmp_path / "bad.json"
        bad.write_text("{")
        assert load_colormap(str(bad)) == {}

    def test_shipped_colormap_loads(self):
        """config/colormap.json is valid"""
        cmap = load_colormap(os.path.join(project_root, "config", "colormap.json"))
        assert len(cmap) > 0
        assert all(len(c) == 4 for c in cmap.values())


class TestTileMath:
    """Test cases for tile/chunk coordinate mapping"""

    def test_tile_chunk_range(self):
        """A 512 px tile spans 32x32 chunks"""
        assert tile_chunk_range(0, 0, 512) == (0, 0, 32, 32)
        assert tile_chunk_range(-1, 2, 512) == (-32, 64, 0, 96)

    def test_chunk_tile(self):
        """Negative chunks floor into negative tiles"""
        assert chunk_tile(31, 32, 512) == (0, 1)
        assert chunk_tile(-1, -33, 512) == (-1, -2)


class TestRasterize:
    """Test cases for base tile rasterization"""

    def test_no_records_inside(self):
        """Only halo records means no tile"""
        assert rasterize_base({(-1, 0): make_record(-1, 0)}, 0, 0, 64, ColorTable()) is None

    def test_flat_ground(self):
        """Flat ground at sea level keeps its base color"""
        img = rasterize_base({(0, 0): make_record(0, 0)}, 0, 0, 64, ColorTable())
        assert img.shape == (64, 64, 4)
        assert img.dtype == np.uint8
        assert tuple(img[5, 5]) == (124, 189, 107, 255)
        assert img[20, 20, 3] == 0

    def test_slope_shading(self):
        """A column higher than its north-west neighbour is brighter, lower is darker"""
        lo = make_record(0, 0, "minecraft:stone", y=64)
        hi = make_record(1, 0, "minecraft:stone", y=64)
        hi.ys[0] = 65      # (16, 0): neighbour (15, -1) has no data
        hi.ys[16 + 1] = 70  # (17, 1): neighbour (16, 0) at 65
        hi.ys[32 + 2] = 60  # (18, 2): neighbour (17, 1) at 70
        img = rasterize_base({(0, 0): lo, (1, 0): hi}, 0, 0, 64, ColorTable())
        flat = img[1, 1, 0]
        assert flat == 125
        assert img[1, 17, 0] > flat
        assert img[2, 18, 0] < flat

    def test_halo_feeds_edge_shading(self):
        """The chunk west of the tile shades the tile's left column"""
        inside = make_record(4, 0, "minecraft:stone", y=64)
        west = make_record(3, 0, "minecraft:stone", y=60)
        with_halo = rasterize_base({(4, 0): inside, (3, 0): west}, 1, 0, 64, ColorTable())
        alone = rasterize_base({(4, 0): inside}, 1, 0, 64, ColorTable())
        assert with_halo[1, 0, 0] > alone[1, 0, 0]
        assert with_halo[0, 0, 0] == alone[0, 0, 0]

    def test_water_alpha(self):
        """Translucent blocks keep partial alpha"""
        img = rasterize_base({(0, 0): make_record(0, 0, "minecraft:water", y=62)}, 0, 0, 64, ColorTable())
        assert img[3, 3, 3] == int(0.6 * 255)


class TestCompose:
    """Test cases for downsampling and PNG codec"""

    def test_downsample_ignores_transparent_color(self):
        """Transparent pixels do not darken the average"""
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[0, 0] = (200, 100, 50, 255)
        out = downsample_half(img)
        assert out.shape == (1, 1, 4)
        assert tuple(out[0, 0, :3]) == (200, 100, 50)
        assert out[0, 0, 3] == 64

    def test_compose_quadrants(self):
        """Each child lands in its quadrant; absent children stay transparent"""
        child = np.full((8, 8, 4), 255, dtype=np.uint8)
        out = compose_children({(1, 0): child, (0, 0): None}, 8)
        assert out[0, 4, 3] == 255
        assert out[0, 0, 3] == 0
        assert out[4, 4, 3] == 0
        assert compose_children({(0, 0): None}, 8) is None

    def test_png_codec(self):
        """Encoded tiles decode to the same RGBA"""
        img = np.zeros((32, 32, 4), dtype=np.uint8)
        img[1, 2] = (10, 20, 30, 40)
        data = encode_png(img)
        assert data[:8] == b"\x89PNG\r\n\x1a\n"
        assert np.array_equal(decode_png(data, 32), img)

    def test_decode_rejects_bad_input(self):
        """Garbage and wrong-sized tiles raise TileGenFailure"""
        with pytest.raises(TileGenFailure):
            decode_png(b"nope")
        data = encode_png(np.zeros((16, 16, 4), dtype=np.uint8))
        with pytest.raises(TileGenFailure):
            decode_png(data, 32)
