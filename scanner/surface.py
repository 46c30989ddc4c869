from __future__ import annotations

from typing import Optional

from common.blocks import (
    AIR,
    FLOATING_BLOCKS,
    IGNORED_BLOCKS,
    OPEN_AIR,
    SURFACE_FEATURE_BLOCKS,
    TRUE_AIR,
    DECORATION_BLOCKS,
    is_canopy,
    is_direct_surface,
    is_passable,
    is_water,
)
from common.errors import WorldQueryTransient
from common.logging_setup import get_logger
from common.types import SurfaceBlock
from scanner.world import World

log = get_logger("scanner.surface")

CANOPY_SCAN = 20
WATER_SCAN = 30
FLOATING_DESCENT = 20
EDIT_CHECK_MIN_TOP = 120
EDIT_CHECK_SPAN = 20


class SurfaceResolver:
    """
    Picks the block a map viewer should see for each column.

    Starting from the engine's topmost block, the resolver looks through
    plants and decorations, promotes leaf canopies and snow layers, reports
    submerged columns as water, and drops through glass/scaffolding to the
    ground below.
    """

    def __init__(self, world: World):
        self.world = world

    def resolve(self, x: int, z: int) -> Optional[SurfaceBlock]:
        """SurfaceBlock for column (x, z); None if the world could not answer."""
        try:
            return self._resolve(x, z)
        except WorldQueryTransient as e:
            log.debug("column query failed", extra={"extra": {"x": x, "z": z, "err": str(e)}})
            return None

    def _resolve(self, x: int, z: int) -> SurfaceBlock:
        lo, hi = self.world.height_range
        top = self.world.get_topmost_block(x, z)
        if top is None:
            return SurfaceBlock(AIR, lo)

        block_id, y = top.block_id, top.y

        # look through plants and thin decorations
        while block_id in DECORATION_BLOCKS:
            below = y - 1
            if below < lo:
                break
            below_id = self.world.get_block_id(x, below, z)
            if below_id is None:
                break
            block_id, y = below_id, below

        # canopy scan: highest promotable block above the candidate wins
        cy = y + 1
        limit = min(hi, cy + CANOPY_SCAN)
        while cy < limit:
            b = self.world.get_block_id(x, cy, z)
            if b is None:
                break
            if b not in TRUE_AIR and (is_canopy(b) or not is_passable(b)):
                block_id, y = b, cy
            cy += 1

        # water pass
        submerged = False
        cy = y + 1
        limit = min(hi, cy + WATER_SCAN)
        while cy < limit:
            b = self.world.get_block_id(x, cy, z)
            if b is None or b in OPEN_AIR:
                break
            if is_water(b):
                submerged = True
            elif b in DECORATION_BLOCKS:
                pass
            elif b in SURFACE_FEATURE_BLOCKS or b not in IGNORED_BLOCKS:
                block_id, y = b, cy
                submerged = False
                break
            cy += 1

        if submerged:
            return SurfaceBlock("minecraft:water", y)

        if is_direct_surface(block_id):
            return SurfaceBlock(block_id, y)

        if block_id in FLOATING_BLOCKS:
            cy = y - 1
            limit = max(lo, cy - FLOATING_DESCENT)
            while cy > limit:
                b = self.world.get_block_id(x, cy, z)
                if b is not None and b not in FLOATING_BLOCKS and b not in IGNORED_BLOCKS:
                    block_id, y = b, cy
                    break
                cy -= 1

        return SurfaceBlock(block_id, y)

    def is_surface_update(self, x: int, y: int, z: int) -> bool:
        """
        True if an edit at (x, y, z) can change what is visible from above.

        Anything solid within the check window above the edit hides it.
        """
        _, hi = self.world.height_range
        limit = min(hi, max(EDIT_CHECK_MIN_TOP, y + EDIT_CHECK_SPAN))
        try:
            cy = y + 1
            while cy < limit:
                b = self.world.get_block_id(x, cy, z)
                if b is None:
                    return True
                if is_passable(b):
                    cy += 1
                    continue
                return False
        except WorldQueryTransient:
            return True
        return True
