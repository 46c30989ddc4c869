"""
Palette compression of chunk surfaces and single-column merges.

A chunk record stores 256 columns in z-major order (index = lz * 16 + lx).
The palette lists each distinct block id once, in first-seen order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from common.blocks import NON_COUNTING_BLOCKS
from common.errors import ChunkEmptyResult, WorldQueryTransient
from common.types import COLUMNS_PER_CHUNK, ChunkRecord, ColumnUpdate, EdgeFlags, SurfaceBlock, normalize_dimension
from common.utils import CHUNK_SIZE, column_index, local_of, now_ms


@dataclass(slots=True)
class MergeResult:
    record: ChunkRecord
    modified: bool
    edges: EdgeFlags = field(default_factory=EdgeFlags)


def encode_chunk(
    cx: int,
    cz: int,
    dimension: str,
    columns: Sequence[SurfaceBlock],
    updated_at: Optional[int] = None,
) -> ChunkRecord:
    """
    Build a palette record from 256 resolved columns.

    Raises ChunkEmptyResult when no column holds anything but air or bedrock;
    such a chunk is almost always one the engine has not populated yet.
    """
    if len(columns) != COLUMNS_PER_CHUNK:
        raise ValueError(f"expected {COLUMNS_PER_CHUNK} columns, got {len(columns)}")

    palette: List[str] = []
    lookup: Dict[str, int] = {}
    ids: List[int] = []
    ys: List[int] = []
    valid = 0

    for col in columns:
        idx = lookup.get(col.block_id)
        if idx is None:
            idx = len(palette)
            lookup[col.block_id] = idx
            palette.append(col.block_id)
        ids.append(idx)
        ys.append(int(col.y))
        if col.block_id not in NON_COUNTING_BLOCKS:
            valid += 1

    if valid == 0:
        raise ChunkEmptyResult(cx, cz, dimension)

    return ChunkRecord(
        cx=int(cx), cz=int(cz), dimension=normalize_dimension(dimension),
        palette=palette, ids=ids, ys=ys, updated_at=updated_at,
    )


def scan_chunk(resolver, cx: int, cz: int, dimension: str) -> ChunkRecord:
    """Resolve every column of a chunk and encode it, stamped with the time the read began."""
    started = now_ms()
    x0 = cx * CHUNK_SIZE
    z0 = cz * CHUNK_SIZE
    columns: List[SurfaceBlock] = []
    for lz in range(CHUNK_SIZE):
        for lx in range(CHUNK_SIZE):
            col = resolver.resolve(x0 + lx, z0 + lz)
            if col is None:
                raise WorldQueryTransient(f"column ({x0 + lx}, {z0 + lz}) unreadable")
            columns.append(col)
    return encode_chunk(cx, cz, dimension, columns, updated_at=started)


def merge(
    existing: Optional[ChunkRecord],
    updates: Iterable[ColumnUpdate],
    cx: int,
    cz: int,
    dimension: str,
) -> MergeResult:
    """
    Apply column updates to a copy of `existing` (or to a fresh all-air record).

    Columns whose block and height are unchanged are left alone; `modified`
    is False if nothing changed. Edge flags mark updates on the chunk border.
    """
    record = existing.copy() if existing is not None else ChunkRecord.empty(cx, cz, dimension)
    lookup = {block_id: i for i, block_id in enumerate(record.palette)}
    edges = EdgeFlags()
    modified = False

    for u in updates:
        lx = local_of(u.x)
        lz = local_of(u.z)
        idx = column_index(lx, lz)

        pal = lookup.get(u.block_id)
        if pal is None:
            pal = len(record.palette)
            record.palette.append(u.block_id)
            lookup[u.block_id] = pal

        if record.ids[idx] == pal and record.ys[idx] == u.y:
            continue

        record.ids[idx] = pal
        record.ys[idx] = int(u.y)
        modified = True

        if lx == 0:
            edges.west = True
        elif lx == CHUNK_SIZE - 1:
            edges.east = True
        if lz == 0:
            edges.north = True
        elif lz == CHUNK_SIZE - 1:
            edges.south = True

    return MergeResult(record=record, modified=modified, edges=edges)


def group_updates(updates: Iterable[ColumnUpdate]) -> Dict[Tuple[int, int, str], List[ColumnUpdate]]:
    """Bucket column updates by owning chunk key (cx, cz, dimension)."""
    groups: Dict[Tuple[int, int, str], List[ColumnUpdate]] = {}
    for u in updates:
        cx, cz = u.chunk
        groups.setdefault((cx, cz, normalize_dimension(u.dimension)), []).append(u)
    return groups
