"""
World-engine capability used by the scanner, plus an in-memory grid world.

The live engine binding lives outside this repo; GridWorld implements the same
surface for offline simulation and tests.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from common.blocks import AIR
from common.errors import WorldQueryTransient
from common.types import SurfaceBlock
from common.utils import chunk_of


@dataclass(frozen=True, slots=True)
class PlayerInfo:
    """Pass-through player position as reported to the map server."""
    id: str
    name: str
    x: int
    z: int
    dimension: str = "overworld"
    skin: Optional[str] = None
    invisible: bool = False

    def to_dict(self) -> Dict:
        d = {
            "id": self.id,
            "name": self.name,
            "point": {"x": self.x, "y": self.z, "dimension": self.dimension, "invisibility": self.invisible},
        }
        if self.skin:
            d["skin"] = self.skin
        return d


class World:
    """
    Block queries and forced-load areas of one dimension.

    `get_block_id` returns None for a block that cannot be read (chunk not
    ready); engine-level failures raise WorldQueryTransient.
    """
    dimension_id: str = "minecraft:overworld"
    height_range: Tuple[int, int] = (-64, 320)  # [min, max)

    def get_block_id(self, x: int, y: int, z: int) -> Optional[str]:
        raise NotImplementedError

    def get_topmost_block(self, x: int, z: int) -> Optional[SurfaceBlock]:
        """Highest non-air block of a column, or None if the column is empty."""
        raise NotImplementedError

    def force_load(self, tag: str, x0: int, z0: int, x1: int, z1: int) -> None:
        raise NotImplementedError

    def unload(self, tag: str) -> None:
        raise NotImplementedError

    def is_area_loaded(self, x0: int, z0: int, x1: int, z1: int) -> bool:
        raise NotImplementedError

    def players(self) -> List[PlayerInfo]:
        return []


class GridWorld(World):
    """
    Sparse in-memory world.

    Blocks default to air. Areas are readable only while covered by a
    force-loaded tag unless `always_loaded` is set. `load_delay` makes each new
    forced area report unloaded for that many checks; `fail_queries` makes the
    next N topmost-block queries raise WorldQueryTransient. `generator(x, z)`,
    if given, supplies the initial {y: block_id} of a column on first access.
    """

    def __init__(
        self,
        dimension_id: str = "minecraft:overworld",
        height_range: Tuple[int, int] = (-64, 320),
        always_loaded: bool = True,
        load_delay: int = 0,
        generator: Optional[Callable[[int, int], Dict[int, str]]] = None,
    ):
        self.dimension_id = dimension_id
        self.height_range = height_range
        self.always_loaded = always_loaded
        self.load_delay = load_delay
        self.generator = generator
        self.fail_queries = 0
        self._columns: Dict[Tuple[int, int], Dict[int, str]] = {}
        self._areas: Dict[str, Tuple[int, int, int, int]] = {}
        self._pending: Dict[str, int] = {}
        self._players: List[PlayerInfo] = []
        self.force_load_calls = 0
        self.unload_calls = 0
        self.topmost_calls = 0

    # -------- editing --------

    def _column(self, x: int, z: int) -> Dict[int, str]:
        col = self._columns.get((x, z))
        if col is None:
            col = dict(self.generator(x, z)) if self.generator is not None else {}
            self._columns[(x, z)] = col
        return col

    def set_block(self, x: int, y: int, z: int, block_id: str) -> None:
        col = self._column(x, z)
        if block_id == AIR:
            col.pop(y, None)
        else:
            col[y] = block_id

    def fill_column(self, x: int, z: int, top_y: int, block_id: str, base_id: Optional[str] = None) -> None:
        """Solid column from the world floor up to `top_y`, capped with `block_id`."""
        lo = self.height_range[0]
        for y in range(lo, top_y):
            self.set_block(x, y, z, base_id or block_id)
        self.set_block(x, top_y, z, block_id)

    def fill_chunk(self, cx: int, cz: int, top_y: int, block_id: str, base_id: Optional[str] = None) -> None:
        for lz in range(16):
            for lx in range(16):
                self.fill_column(cx * 16 + lx, cz * 16 + lz, top_y, block_id, base_id)

    def add_player(self, player: PlayerInfo) -> None:
        self._players.append(player)

    # -------- World --------

    def _readable(self, x: int, z: int) -> bool:
        if self.always_loaded:
            return True
        cx, cz = chunk_of(x), chunk_of(z)
        for tag, (x0, z0, x1, z1) in self._areas.items():
            if self._pending.get(tag, 0) > 0:
                continue
            if chunk_of(x0) <= cx <= chunk_of(x1) and chunk_of(z0) <= cz <= chunk_of(z1):
                return True
        return False

    def get_block_id(self, x: int, y: int, z: int) -> Optional[str]:
        lo, hi = self.height_range
        if y < lo or y >= hi or not self._readable(x, z):
            return None
        return self._column(x, z).get(y, AIR)

    def get_topmost_block(self, x: int, z: int) -> Optional[SurfaceBlock]:
        self.topmost_calls += 1
        if self.fail_queries > 0:
            self.fail_queries -= 1
            raise WorldQueryTransient("simulated engine hiccup")
        if not self._readable(x, z):
            raise WorldQueryTransient(f"column ({x}, {z}) not loaded")
        col = self._column(x, z)
        if not col:
            return None
        y = max(col)
        return SurfaceBlock(col[y], y)

    def force_load(self, tag: str, x0: int, z0: int, x1: int, z1: int) -> None:
        self.force_load_calls += 1
        self._areas[tag] = (min(x0, x1), min(z0, z1), max(x0, x1), max(z0, z1))
        self._pending[tag] = self.load_delay

    def unload(self, tag: str) -> None:
        self.unload_calls += 1
        self._areas.pop(tag, None)
        self._pending.pop(tag, None)

    def is_area_loaded(self, x0: int, z0: int, x1: int, z1: int) -> bool:
        if self.always_loaded:
            return True
        for tag, (ax0, az0, ax1, az1) in self._areas.items():
            if ax0 <= x0 and az0 <= z0 and ax1 >= x1 and az1 >= z1:
                remaining = self._pending.get(tag, 0)
                if remaining > 0:
                    self._pending[tag] = remaining - 1
                    return False
                return True
        return False

    def players(self) -> List[PlayerInfo]:
        return list(self._players)
