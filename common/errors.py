from __future__ import annotations

from typing import Optional


class MapError(Exception):
    """Base class for all world-map errors."""


class WorldQueryTransient(MapError):
    """The world engine could not answer a block query right now (not loaded / not ready)."""


class ChunkEmptyResult(MapError):
    """Every column of a chunk resolved to air or bedrock; the chunk is not trustworthy yet."""

    def __init__(self, cx: int, cz: int, dimension: Optional[str] = None):
        self.cx = cx
        self.cz = cz
        self.dimension = dimension
        super().__init__(f"Chunk ({cx}, {cz}) empty. Retry.")


class LoadStuck(MapError):
    """A forced-load area never reported loaded within one polling round."""


class StorageFailure(MapError):
    """A storage transaction failed and was rolled back."""


class TileGenFailure(MapError):
    """A tile could not be produced from its sources (missing or corrupt input)."""


class ScanAlreadyRunning(MapError):
    """A scan session is already active."""
