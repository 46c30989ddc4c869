"""
Chunk payloads from the scanner → chunk storage.

Both entry points validate each entry on its own (a bad entry is counted and
skipped, the rest still land) and write everything else in one transaction.
They return what was written so the caller can invalidate tiles.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from common.chunk_codec import group_updates, merge
from common.logging_setup import get_logger
from common.types import ChunkRecord, ColumnUpdate, EdgeFlags
from common.utils import now_ms
from mapserver.storage import ChunkStore

log = get_logger("mapserver.ingest")

# a full chunk rewrite can change shading across every border
ALL_EDGES = EdgeFlags(north=True, south=True, east=True, west=True)


@dataclass(slots=True)
class Touched:
    cx: int
    cz: int
    dimension: str
    edges: EdgeFlags


@dataclass(slots=True)
class IngestResult:
    written: List[Touched] = field(default_factory=list)
    unchanged: int = 0
    rejected: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"written": len(self.written), "unchanged": self.unchanged, "rejected": self.rejected}


def unwrap(body: Any, key: str) -> List[Dict[str, Any]]:
    """Accept {key: [...]}, a bare list, or a single object."""
    if isinstance(body, dict) and key in body:
        body = body[key]
    if isinstance(body, dict):
        return [body]
    if isinstance(body, list):
        return [e for e in body if isinstance(e, dict)]
    return []


def ingest_chunks(store: ChunkStore, entries: List[Dict[str, Any]], updated_at: Optional[int] = None) -> IngestResult:
    """
    Store whole-chunk records; newer timestamps win over older ones.

    Each entry is ordered by its own `updated_at` (the scanner's read time).
    Unstamped entries take `updated_at`, else the arrival time.
    """
    out = IngestResult()
    records: List[ChunkRecord] = []
    for e in entries:
        try:
            rec = ChunkRecord.from_dict(e)
        except (TypeError, ValueError, KeyError) as err:
            out.rejected += 1
            log.debug("rejected chunk entry", extra={"extra": {"err": str(err)}})
            continue
        if not rec.is_valid():
            out.rejected += 1
            log.debug("rejected chunk entry", extra={"extra": {"cx": rec.cx, "cz": rec.cz, "err": "shape"}})
            continue
        records.append(rec)

    fallback = int(updated_at if updated_at is not None else now_ms())
    with store.transaction() as tx:
        for rec in records:
            if tx.upsert(rec, rec.updated_at if rec.updated_at is not None else fallback):
                out.written.append(Touched(rec.cx, rec.cz, rec.dimension, ALL_EDGES))
            else:
                out.unchanged += 1

    if out.rejected:
        log.warning("chunk update had invalid entries", extra={"extra": out.to_dict()})
    return out


def ingest_partial(store: ChunkStore, entries: List[Dict[str, Any]], updated_at: Optional[int] = None) -> IngestResult:
    """
    Merge single-column updates into their chunks, creating chunks as needed.

    A merged chunk is stamped with the newest edit in its group and loses to
    a stored chunk read later than that.
    """
    out = IngestResult()
    updates: List[ColumnUpdate] = []
    for e in entries:
        try:
            updates.append(ColumnUpdate.from_dict(e))
        except (TypeError, ValueError, KeyError) as err:
            out.rejected += 1
            log.debug("rejected column update", extra={"extra": {"err": str(err)}})

    groups: Dict[Tuple[int, int, str], List[ColumnUpdate]] = group_updates(updates)
    fallback = int(updated_at if updated_at is not None else now_ms())
    with store.transaction() as tx:
        for (cx, cz, dim), group in groups.items():
            ts = max(u.updated_at if u.updated_at is not None else fallback for u in group)
            res = merge(tx.get(cx, cz, dim), group, cx, cz, dim)
            if not res.modified:
                out.unchanged += 1
                continue
            if tx.upsert(res.record, ts):
                out.written.append(Touched(cx, cz, dim, res.edges))
            else:
                out.unchanged += 1
    return out
