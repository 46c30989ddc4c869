from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from common.blocks import AIR
from common.utils import CHUNK_SIZE, chunk_of


COLUMNS_PER_CHUNK = CHUNK_SIZE * CHUNK_SIZE
STATE_VERSION = 1


def normalize_dimension(dimension: Optional[str]) -> str:
    """`minecraft:overworld` → `overworld`; missing → `overworld`."""
    if not dimension:
        return "overworld"
    return str(dimension).replace("minecraft:", "")


def _stamp(d: Dict[str, Any]) -> Optional[int]:
    ts = d.get("updated_at")
    return None if ts is None else int(ts)


@dataclass(frozen=True, slots=True)
class SurfaceBlock:
    """The block seen from above in one column."""
    block_id: str
    y: int


@dataclass(slots=True)
class ChunkRecord:
    """
    Palette-compressed surface of one 16×16 chunk.

    Attributes:
        cx, cz: chunk coordinates (floor(block / 16)).
        dimension: short dimension name, e.g. "overworld".
        palette: unique block ids in first-seen order.
        ids: 256 palette indices, index = lz * 16 + lx.
        ys: 256 surface heights in the same order.
        updated_at: wall-clock ms when the surface was read; orders
            competing writes. None when the sender did not stamp it.
    """
    cx: int
    cz: int
    dimension: str
    palette: List[str]
    ids: List[int]
    ys: List[int]
    updated_at: Optional[int] = field(default=None, compare=False)

    @classmethod
    def empty(cls, cx: int, cz: int, dimension: str = "overworld") -> "ChunkRecord":
        return cls(
            cx=int(cx),
            cz=int(cz),
            dimension=normalize_dimension(dimension),
            palette=[AIR],
            ids=[0] * COLUMNS_PER_CHUNK,
            ys=[0] * COLUMNS_PER_CHUNK,
        )

    @property
    def key(self) -> Tuple[int, int, str]:
        return (self.cx, self.cz, self.dimension)

    def is_valid(self) -> bool:
        if len(self.ids) != COLUMNS_PER_CHUNK or len(self.ys) != COLUMNS_PER_CHUNK:
            return False
        n = len(self.palette)
        return all(0 <= i < n for i in self.ids)

    def column(self, lx: int, lz: int) -> Tuple[str, int]:
        idx = lz * CHUNK_SIZE + lx
        return self.palette[self.ids[idx]], self.ys[idx]

    def copy(self) -> "ChunkRecord":
        return ChunkRecord(self.cx, self.cz, self.dimension, list(self.palette), list(self.ids), list(self.ys), self.updated_at)

    def to_dict(self) -> Dict[str, Any]:
        """Wire/storage form (field names shared with the scanner's payloads)."""
        d = {
            "cx": self.cx,
            "cz": self.cz,
            "dimension": self.dimension,
            "palette": list(self.palette),
            "s_ids": list(self.ids),
            "s_ys": list(self.ys),
        }
        if self.updated_at is not None:
            d["updated_at"] = self.updated_at
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ChunkRecord":
        if d.get("cx") is None or d.get("cz") is None:
            raise ValueError("chunk record requires cx and cz")
        return cls(
            cx=int(d["cx"]),
            cz=int(d["cz"]),
            dimension=normalize_dimension(d.get("dimension")),
            palette=[str(p) for p in d.get("palette") or []],
            ids=[int(i) for i in d.get("s_ids") or []],
            ys=[int(y) for y in d.get("s_ys") or []],
            updated_at=_stamp(d),
        )


@dataclass(frozen=True, slots=True)
class ColumnUpdate:
    """A single-column surface change in absolute block coordinates."""
    x: int
    z: int
    y: int
    block_id: str
    dimension: str = "overworld"
    updated_at: Optional[int] = field(default=None, compare=False)

    @property
    def chunk(self) -> Tuple[int, int]:
        return (chunk_of(self.x), chunk_of(self.z))

    def to_dict(self) -> Dict[str, Any]:
        d = {"x": self.x, "z": self.z, "y": self.y, "block_id": self.block_id, "dimension": self.dimension}
        if self.updated_at is not None:
            d["updated_at"] = self.updated_at
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ColumnUpdate":
        return cls(
            x=int(d["x"]),
            z=int(d["z"]),
            y=int(d["y"]),
            block_id=str(d["block_id"]),
            dimension=normalize_dimension(d.get("dimension")),
            updated_at=_stamp(d),
        )


@dataclass(slots=True)
class EdgeFlags:
    """Which chunk borders an update touched; neighbours on those sides shade from this chunk."""
    north: bool = False
    south: bool = False
    east: bool = False
    west: bool = False

    def any(self) -> bool:
        return self.north or self.south or self.east or self.west

    def neighbours(self, cx: int, cz: int) -> List[Tuple[int, int]]:
        out: List[Tuple[int, int]] = []
        if self.west:
            out.append((cx - 1, cz))
        if self.east:
            out.append((cx + 1, cz))
        if self.north:
            out.append((cx, cz - 1))
        if self.south:
            out.append((cx, cz + 1))
        return out


@dataclass(frozen=True, slots=True)
class ScanCursor:
    cx: int
    cz: int

    def to_dict(self) -> Dict[str, int]:
        return {"cx": self.cx, "cz": self.cz}


@dataclass(frozen=True, slots=True)
class Batch:
    """An inclusive rectangle of chunks scanned together."""
    cx: int
    cz: int
    end_cx: int
    end_cz: int

    @property
    def start(self) -> ScanCursor:
        return ScanCursor(self.cx, self.cz)

    @property
    def next_cursor(self) -> ScanCursor:
        return ScanCursor(self.end_cx + 1, self.cz)

    def coords(self) -> List[Tuple[int, int]]:
        """Chunks in scan order (z-major)."""
        return [(ix, iz) for iz in range(self.cz, self.end_cz + 1) for ix in range(self.cx, self.end_cx + 1)]

    def block_area(self) -> Tuple[int, int, int, int]:
        """(x0, z0, x1, z1) inclusive block corners."""
        return (
            self.cx * CHUNK_SIZE,
            self.cz * CHUNK_SIZE,
            self.end_cx * CHUNK_SIZE + CHUNK_SIZE - 1,
            self.end_cz * CHUNK_SIZE + CHUNK_SIZE - 1,
        )


@dataclass(frozen=True, slots=True)
class ChunkBounds:
    """Inclusive chunk rectangle."""
    min_cx: int
    min_cz: int
    max_cx: int
    max_cz: int

    def __post_init__(self) -> None:
        if self.max_cx < self.min_cx or self.max_cz < self.min_cz:
            raise ValueError("bounds max must be >= min")

    @classmethod
    def from_blocks(cls, x1: int, z1: int, x2: int, z2: int) -> "ChunkBounds":
        """Chunks covering the block rectangle spanned by two corners (any order)."""
        return cls(
            min_cx=chunk_of(min(x1, x2)),
            min_cz=chunk_of(min(z1, z2)),
            max_cx=chunk_of(max(x1, x2)),
            max_cz=chunk_of(max(z1, z2)),
        )

    @classmethod
    def around(cls, x: int, z: int, radius: int) -> "ChunkBounds":
        """Chunks covering a square of `radius` blocks around a block position."""
        r = abs(int(radius))
        return cls(
            min_cx=chunk_of(x - r),
            min_cz=chunk_of(z - r),
            max_cx=chunk_of(x + r),
            max_cz=chunk_of(z + r),
        )

    @property
    def total_chunks(self) -> int:
        return (self.max_cx - self.min_cx + 1) * (self.max_cz - self.min_cz + 1)

    def contains(self, cx: int, cz: int) -> bool:
        return self.min_cx <= cx <= self.max_cx and self.min_cz <= cz <= self.max_cz

    def batches(self, size: int, cursor: Optional[ScanCursor] = None) -> Iterator[Batch]:
        """
        Row-major square batches of side `size`.

        A cursor resumes at its batch: the first row starts at cursor.cx, later rows
        at min_cx. A cursor past max_cx simply moves on to the next row.
        """
        if size <= 0:
            raise ValueError("batch size must be > 0")
        start_cx = cursor.cx if cursor else self.min_cx
        start_cz = cursor.cz if cursor else self.min_cz
        for cz in range(start_cz, self.max_cz + 1, size):
            first_cx = start_cx if cz == start_cz else self.min_cx
            for cx in range(first_cx, self.max_cx + 1, size):
                yield Batch(
                    cx=cx,
                    cz=cz,
                    end_cx=min(cx + size - 1, self.max_cx),
                    end_cz=min(cz + size - 1, self.max_cz),
                )

    def to_dict(self) -> Dict[str, int]:
        return {"minCx": self.min_cx, "minCz": self.min_cz, "maxCx": self.max_cx, "maxCz": self.max_cz}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ChunkBounds":
        return cls(
            min_cx=int(d.get("minCx", d.get("min_cx"))),
            min_cz=int(d.get("minCz", d.get("min_cz"))),
            max_cx=int(d.get("maxCx", d.get("max_cx"))),
            max_cz=int(d.get("maxCz", d.get("max_cz"))),
        )


@dataclass(frozen=True, slots=True, order=True)
class TileKey:
    zoom: int
    x: int
    y: int

    def parent(self) -> "TileKey":
        return TileKey(self.zoom - 1, self.x // 2, self.y // 2)

    def children(self) -> List[Tuple[int, int, "TileKey"]]:
        """(dx, dy, child) for the four tiles one zoom finer."""
        z = self.zoom + 1
        return [(dx, dy, TileKey(z, self.x * 2 + dx, self.y * 2 + dy)) for dy in (0, 1) for dx in (0, 1)]

    def __str__(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"


class ScanMode(str, Enum):
    EXHAUSTIVE = "exhaustive"
    REPAIR = "repair"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ScanMode":
        if value == cls.REPAIR.value:
            return cls.REPAIR
        # "force" is the historical name of the exhaustive mode
        return cls.EXHAUSTIVE


class ScanStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ScanStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.IDLE


@dataclass(slots=True)
class ScanStats:
    total_chunks: int = 0
    processed: int = 0
    skipped: int = 0
    load_retries: int = 0
    force_reloads: int = 0
    scan_retries: int = 0
    start_time: int = 0  # epoch ms

    @property
    def percent(self) -> float:
        if self.total_chunks <= 0:
            return 100.0
        return 100.0 * self.processed / self.total_chunks

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "ScanStats":
        d = d or {}
        out = cls()
        for name in ("total_chunks", "processed", "skipped", "load_retries", "force_reloads", "scan_retries", "start_time"):
            if d.get(name) is not None:
                setattr(out, name, int(d[name]))
        return out


@dataclass(slots=True)
class RenderJobState:
    """
    Persisted scan progress (crash recovery + ETA learning).

    Only `status` is required on load; everything else falls back to defaults so
    older or partially written snapshots still resume.
    """
    status: ScanStatus = ScanStatus.IDLE
    bounds: Optional[ChunkBounds] = None
    cursor: Optional[ScanCursor] = None
    mode: ScanMode = ScanMode.EXHAUSTIVE
    stats: ScanStats = field(default_factory=ScanStats)
    avg_ms_per_chunk: Optional[float] = None
    version: int = STATE_VERSION

    @property
    def resumable(self) -> bool:
        return self.bounds is not None and self.status in (ScanStatus.RUNNING, ScanStatus.STOPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status.value,
            "bounds": self.bounds.to_dict() if self.bounds else None,
            "cursor": self.cursor.to_dict() if self.cursor else None,
            "mode": self.mode.value,
            "stats": self.stats.to_dict(),
            "avg_ms_per_chunk": self.avg_ms_per_chunk,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RenderJobState":
        bounds = ChunkBounds.from_dict(d["bounds"]) if d.get("bounds") else None
        cur = d.get("cursor") or d.get("current")
        cursor = ScanCursor(int(cur["cx"]), int(cur["cz"])) if cur else None
        stats_raw = d.get("stats") or {}
        avg = d.get("avg_ms_per_chunk")
        if avg is None:
            avg = stats_raw.get("averageSpeed")
        return cls(
            status=ScanStatus.parse(d.get("status")),
            bounds=bounds,
            cursor=cursor,
            mode=ScanMode.parse(d.get("mode")),
            stats=ScanStats.from_dict(stats_raw),
            avg_ms_per_chunk=float(avg) if avg is not None else None,
            version=int(d.get("version", STATE_VERSION)),
        )
