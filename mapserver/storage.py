from __future__ import annotations

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from common.errors import StorageFailure
from common.logging_setup import get_logger
from common.types import ChunkBounds, ChunkRecord, TileKey, normalize_dimension
from common.utils import now_ms

log = get_logger("mapserver.storage")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chunks (
    cx INTEGER NOT NULL,
    cz INTEGER NOT NULL,
    dimension TEXT NOT NULL DEFAULT 'overworld',
    data TEXT NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (cx, cz, dimension)
);
"""

# Last write wins by timestamp, not by arrival order.
_UPSERT = """
INSERT INTO chunks (cx, cz, dimension, data, updated_at) VALUES (?, ?, ?, ?, ?)
ON CONFLICT (cx, cz, dimension) DO UPDATE
    SET data = excluded.data, updated_at = excluded.updated_at
    WHERE excluded.updated_at >= chunks.updated_at;
"""

_DIMENSION_INDEX = "CREATE INDEX IF NOT EXISTS idx_chunks_dimension ON chunks (dimension);"

_EXISTS_CHUNK = 400  # coords per IN (...) query; keeps well under SQLite's variable limit


def _decode(cx: int, cz: int, data: str) -> Optional[ChunkRecord]:
    try:
        rec = ChunkRecord.from_dict(json.loads(data))
    except (TypeError, ValueError, KeyError) as e:
        log.warning("corrupt chunk row", extra={"extra": {"cx": cx, "cz": cz, "err": str(e)}})
        return None
    if not rec.is_valid():
        log.warning("invalid chunk row", extra={"extra": {"cx": cx, "cz": cz}})
        return None
    return rec


class ChunkTx:
    """Operations bound to one open transaction (see ChunkStore.transaction)."""

    def __init__(self, cur: sqlite3.Cursor):
        self._cur = cur

    def execute(self, sql: str, params=()) -> sqlite3.Cursor:
        return self._cur.execute(sql, params)

    def get(self, cx: int, cz: int, dimension: str = "overworld") -> Optional[ChunkRecord]:
        row = self._cur.execute(
            "SELECT data FROM chunks WHERE cx = ? AND cz = ? AND dimension = ?",
            (int(cx), int(cz), normalize_dimension(dimension)),
        ).fetchone()
        return _decode(cx, cz, row[0]) if row else None

    def upsert(self, record: ChunkRecord, updated_at: Optional[int] = None) -> bool:
        """
        Store a record; False if a newer write for the same key already exists.
        The stamp is `updated_at`, else the record's own, else now.
        """
        if updated_at is None:
            updated_at = record.updated_at if record.updated_at is not None else now_ms()
        data = record.to_dict()
        data.pop("updated_at", None)  # the row's column is authoritative
        self._cur.execute(
            _UPSERT,
            (record.cx, record.cz, record.dimension, json.dumps(data, separators=(",", ":")), int(updated_at)),
        )
        return self._cur.rowcount > 0


class ChunkStore:
    """
    Chunk records in a single sqlite table keyed by (cx, cz, dimension).

    All access is serialized through one connection and lock. Any sqlite
    error rolls back the open transaction and surfaces as StorageFailure.
    """

    def __init__(self, path: str = "data/chunks.db"):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        with self.transaction() as tx:
            tx.execute(_SCHEMA)
            tx.execute(_DIMENSION_INDEX)

    @contextmanager
    def transaction(self) -> Iterator[ChunkTx]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield ChunkTx(cur)
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                log.error("storage transaction rolled back", extra={"extra": {"err": str(e)}})
                raise StorageFailure(str(e)) from e
            except BaseException:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -------- single operations --------

    def upsert(self, record: ChunkRecord, updated_at: Optional[int] = None) -> bool:
        with self.transaction() as tx:
            return tx.upsert(record, updated_at)

    def get(self, cx: int, cz: int, dimension: str = "overworld") -> Optional[ChunkRecord]:
        with self.transaction() as tx:
            return tx.get(cx, cz, dimension)

    def get_range(
        self, min_cx: int, min_cz: int, max_cx: int, max_cz: int, dimension: str = "overworld"
    ) -> Dict[Tuple[int, int], ChunkRecord]:
        """Records with min <= c < max on both axes, keyed by (cx, cz)."""
        with self.transaction() as tx:
            rows = tx.execute(
                "SELECT cx, cz, data FROM chunks WHERE dimension = ? AND cx >= ? AND cx < ? AND cz >= ? AND cz < ?",
                (normalize_dimension(dimension), int(min_cx), int(max_cx), int(min_cz), int(max_cz)),
            ).fetchall()
        out: Dict[Tuple[int, int], ChunkRecord] = {}
        for cx, cz, data in rows:
            rec = _decode(cx, cz, data)
            if rec is not None:
                out[(cx, cz)] = rec
        return out

    def existing(self, coords: Iterable[Tuple[int, int]], dimension: str = "overworld") -> Set[Tuple[int, int]]:
        """Subset of coords that have a stored record."""
        coords = [(int(cx), int(cz)) for cx, cz in coords]
        dim = normalize_dimension(dimension)
        found: Set[Tuple[int, int]] = set()
        with self.transaction() as tx:
            for i in range(0, len(coords), _EXISTS_CHUNK):
                part = coords[i:i + _EXISTS_CHUNK]
                placeholders = ", ".join(["(?, ?)"] * len(part))
                params: List = [dim]
                for cx, cz in part:
                    params.extend((cx, cz))
                rows = tx.execute(
                    f"SELECT cx, cz FROM chunks WHERE dimension = ? AND (cx, cz) IN (VALUES {placeholders})",
                    params,
                ).fetchall()
                found.update((int(r[0]), int(r[1])) for r in rows)
        return found

    def bounds(self, dimension: str = "overworld") -> Optional[ChunkBounds]:
        with self.transaction() as tx:
            row = tx.execute(
                "SELECT MIN(cx), MIN(cz), MAX(cx), MAX(cz) FROM chunks WHERE dimension = ?",
                (normalize_dimension(dimension),),
            ).fetchone()
        if row is None or row[0] is None:
            return None
        return ChunkBounds(int(row[0]), int(row[1]), int(row[2]), int(row[3]))

    def has_dimension(self, dimension: str) -> bool:
        """True once any chunk of the dimension is stored."""
        with self.transaction() as tx:
            row = tx.execute(
                "SELECT 1 FROM chunks WHERE dimension = ? LIMIT 1", (normalize_dimension(dimension),)
            ).fetchone()
        return row is not None

    def count(self, dimension: Optional[str] = None) -> int:
        with self.transaction() as tx:
            if dimension is None:
                row = tx.execute("SELECT COUNT(*) FROM chunks").fetchone()
            else:
                row = tx.execute(
                    "SELECT COUNT(*) FROM chunks WHERE dimension = ?", (normalize_dimension(dimension),)
                ).fetchone()
        return int(row[0])


class TileStore:
    """
    PNG tiles on disk:

        root/
          └─ {dimension}/
              └─ {z}/
                  └─ {x}/
                      └─ {y}.png
    """

    def __init__(self, root: str = "data/tiles"):
        self.root = Path(root)

    def path(self, dimension: str, key: TileKey) -> Path:
        return self.root / normalize_dimension(dimension) / str(key.zoom) / str(key.x) / f"{key.y}.png"

    def exists(self, dimension: str, key: TileKey) -> bool:
        return self.path(dimension, key).is_file()

    def read(self, dimension: str, key: TileKey) -> Optional[bytes]:
        p = self.path(dimension, key)
        try:
            with p.open("rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def write(self, dimension: str, key: TileKey, data: bytes) -> Path:
        """Atomic replace: readers see the old tile or the new one, never a partial file."""
        p = self.path(dimension, key)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(f".{p.name}.{threading.get_ident()}.tmp")
        with tmp.open("wb") as f:
            f.write(data)
        os.replace(tmp, p)
        return p

    def delete(self, dimension: str, key: TileKey) -> None:
        try:
            self.path(dimension, key).unlink()
        except FileNotFoundError:
            pass

    def stats(self) -> Dict:
        per_zoom: Dict[str, int] = {}
        if self.root.exists():
            for png in self.root.rglob("*.png"):
                # .../{dimension}/{z}/{x}/{y}.png
                z = png.parent.parent.name
                per_zoom[z] = per_zoom.get(z, 0) + 1
        return {
            "zooms": len(per_zoom),
            "tiles": sum(per_zoom.values()),
            "per_zoom": dict(sorted(per_zoom.items(), key=lambda kv: int(kv[0]) if kv[0].lstrip("-").isdigit() else 0)),
        }
