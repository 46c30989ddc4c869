"""
Unit tests for surface resolution (scanner.surface)
"""

import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.blocks import AIR
from common.errors import WorldQueryTransient
from common.types import SurfaceBlock
from scanner.surface import SurfaceResolver
from scanner.world import GridWorld, World


class ColumnWorld(World):
    """Single-column world whose naive topmost answer is set explicitly."""

    def __init__(self, blocks, topmost=None):
        self.blocks = dict(blocks)
        self.topmost = topmost

    def get_block_id(self, x, y, z):
        lo, hi = self.height_range
        if y < lo or y >= hi:
            return None
        return self.blocks.get(y, AIR)

    def get_topmost_block(self, x, z):
        if self.topmost is not None:
            return SurfaceBlock(*self.topmost)
        if not self.blocks:
            return None
        y = max(self.blocks)
        return SurfaceBlock(self.blocks[y], y)


def _ground(top=64):
    return {top - 4: "minecraft:stone", top - 1: "minecraft:dirt", top: "minecraft:grass_block"}


class TestSurfaceResolver:
    """Test cases for SurfaceResolver.resolve"""

    def test_plain_ground(self):
        """Bare ground resolves to its top block"""
        r = SurfaceResolver(ColumnWorld(_ground(64)))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:grass_block", 64)

    def test_looks_through_decoration(self):
        """Plants on top of ground are skipped"""
        blocks = _ground(64)
        blocks[65] = "minecraft:short_grass"
        r = SurfaceResolver(ColumnWorld(blocks))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:grass_block", 64)

    def test_canopy_promotion_over_raw_ground(self):
        """Grass at 70 under leaves 71-74 resolves to the highest leaf block"""
        blocks = _ground(70)
        for y in range(71, 75):
            blocks[y] = "minecraft:oak_leaves"
        # engine reports the ground, not the canopy
        r = SurfaceResolver(ColumnWorld(blocks, topmost=("minecraft:grass_block", 70)))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:oak_leaves", 74)

    def test_canopy_when_engine_reports_leaves(self):
        """Same column with a correct naive topmost gives the same answer"""
        blocks = _ground(70)
        for y in range(71, 75):
            blocks[y] = "minecraft:oak_leaves"
        r = SurfaceResolver(ColumnWorld(blocks))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:oak_leaves", 74)

    def test_shallow_water(self):
        """Water over sand is reported as water at the water surface"""
        blocks = {58: "minecraft:sand"}
        for y in range(59, 63):
            blocks[y] = "minecraft:water"
        r = SurfaceResolver(ColumnWorld(blocks, topmost=("minecraft:sand", 58)))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:water", 62)

    def test_deep_water_reports_canonical_water(self):
        """Water deeper than the canopy window is flagged submerged and reported as plain water"""
        blocks = {30: "minecraft:sand"}
        for y in range(31, 63):
            blocks[y] = "minecraft:flowing_water"
        r = SurfaceResolver(ColumnWorld(blocks, topmost=("minecraft:sand", 30)))
        col = r.resolve(0, 0)
        assert col.block_id == "minecraft:water"
        assert col.y == 50  # top of the canopy window

    def test_solid_above_water_wins(self):
        """A solid block above water overrides the submerged candidate"""
        blocks = {30: "minecraft:sand"}
        for y in range(31, 63):
            blocks[y] = "minecraft:water"
        blocks[63] = "minecraft:stone"
        r = SurfaceResolver(ColumnWorld(blocks, topmost=("minecraft:sand", 30)))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:stone", 63)

    def test_floating_block_descends_to_ground(self):
        """Glass is never ground; the resolver finds what is below it"""
        blocks = _ground(64)
        blocks[80] = "minecraft:glass"
        r = SurfaceResolver(ColumnWorld(blocks))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:grass_block", 64)

    def test_floating_block_without_ground_in_reach(self):
        """Glass with nothing within the descent window stays as reported"""
        r = SurfaceResolver(ColumnWorld({200: "minecraft:glass"}))
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:glass", 200)

    def test_empty_column_is_air_at_floor(self):
        """An empty column resolves to air at the world floor"""
        r = SurfaceResolver(ColumnWorld({}))
        assert r.resolve(0, 0) == SurfaceBlock(AIR, -64)

    def test_query_failure_returns_none(self):
        """Engine failures surface as None so the caller retries"""
        world = GridWorld()
        world.fill_column(0, 0, 64, "minecraft:grass_block", "minecraft:dirt")
        world.fail_queries = 1
        r = SurfaceResolver(world)
        assert r.resolve(0, 0) is None
        assert r.resolve(0, 0) == SurfaceBlock("minecraft:grass_block", 64)

    def test_unloaded_column_returns_none(self):
        """Columns outside any loaded area cannot be resolved"""
        world = GridWorld(always_loaded=False)
        assert SurfaceResolver(world).resolve(5, 5) is None

    def test_resolution_is_deterministic(self):
        """Resolving the same column twice gives the same answer"""
        blocks = _ground(70)
        blocks[71] = "minecraft:poppy"
        blocks[90] = "minecraft:scaffolding"
        r = SurfaceResolver(ColumnWorld(blocks))
        assert r.resolve(3, 4) == r.resolve(3, 4)


class TestSurfaceUpdateCheck:
    """Test cases for SurfaceResolver.is_surface_update"""

    def test_exposed_edit_counts(self):
        """An edit with open sky above changes the surface"""
        r = SurfaceResolver(ColumnWorld(_ground(64)))
        assert r.is_surface_update(0, 64, 0) is True

    def test_covered_edit_is_ignored(self):
        """An edit under solid ground does not change the surface"""
        r = SurfaceResolver(ColumnWorld(_ground(64)))
        assert r.is_surface_update(0, 30, 0) is False

    def test_edit_under_glass_counts(self):
        """Glass does not hide what is below it"""
        blocks = _ground(64)
        blocks[70] = "minecraft:glass"
        r = SurfaceResolver(ColumnWorld(blocks))
        assert r.is_surface_update(0, 64, 0) is True

    def test_unreadable_column_counts(self):
        """If the column cannot be read the edit is treated as visible"""
        class Broken(ColumnWorld):
            def get_block_id(self, x, y, z):
                raise WorldQueryTransient("not ready")

        r = SurfaceResolver(Broken({}))
        assert r.is_surface_update(0, 64, 0) is True
