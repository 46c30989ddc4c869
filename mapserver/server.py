from __future__ import annotations

import argparse
import threading
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from common.config import load_config
from common.errors import StorageFailure, TileGenFailure
from common.logging_setup import get_logger, setup_logging
from common.types import normalize_dimension
from mapserver.colors import ColorTable
from mapserver.ingest import ingest_chunks, ingest_partial, unwrap
from mapserver.storage import ChunkStore, TileStore
from mapserver.tile_cache import TileCache

log = get_logger("mapserver.server")


class MapService:
    """Shared server resources: chunk DB, tile pyramids (one per dimension), player cache."""

    def __init__(self, params: Dict[str, Any]):
        srv = params.get("server", {})
        render = params.get("render", {})
        self.render = render
        self.chunks = ChunkStore(srv.get("db_path", "data/chunks.db"))
        self.tiles = TileStore(srv.get("tiles_root", "data/tiles"))
        self.colors = ColorTable.from_file(render.get("colormap_path", "config/colormap.json"))
        self._lock = threading.Lock()
        self._caches: Dict[str, TileCache] = {}
        self.players: List[Dict[str, Any]] = []

    def cache(self, dimension: str = "overworld") -> TileCache:
        """Pyramid for a dimension, created on first use. Only called for written chunks."""
        dim = normalize_dimension(dimension)
        with self._lock:
            tc = self._caches.get(dim)
            if tc is None:
                tc = TileCache(
                    self.chunks,
                    self.tiles,
                    self.colors,
                    tile_size=int(self.render.get("tile_size", 512)),
                    min_zoom=int(self.render.get("min_zoom", -5)),
                    floor_zoom=int(self.render.get("rebuild_min_zoom", -8)),
                    debounce_s=self.render.get("debounce_s", 2.0),
                    dimension=dim,
                )
                self._caches[dim] = tc
            return tc

    def find_cache(self, dimension: str) -> Optional[TileCache]:
        """Pyramid for a dimension with stored chunks; None for unknown dimensions."""
        dim = normalize_dimension(dimension)
        with self._lock:
            tc = self._caches.get(dim)
        if tc is not None:
            return tc
        if not self.chunks.has_dimension(dim):
            return None
        return self.cache(dim)

    def invalidate(self, written) -> None:
        for t in written:
            self.cache(t.dimension).invalidate(t.cx, t.cz, t.edges)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            caches = dict(self._caches)
        return {
            "chunks": self.chunks.count(),
            "tiles": self.tiles.stats(),
            "pyramids": {dim: _pyramid_stats(tc) for dim, tc in caches.items()},
            "players": len(self.players),
        }

    def close(self) -> None:
        with self._lock:
            caches = list(self._caches.values())
        for tc in caches:
            tc.close()
        self.chunks.close()


def _pyramid_stats(tc: TileCache) -> Dict[str, int]:
    st = tc.stats()
    return {"queued": st["queued"], "generation": st["generation"], "failures": st["failures"]}


def _parse_tile_coord(value: str) -> Optional[int]:
    if value.endswith(".png"):
        value = value[:-4]
    try:
        return int(value)
    except ValueError:
        return None


def create_app(params: Optional[Dict[str, Any]] = None, service: Optional[MapService] = None) -> FastAPI:
    P = params if params is not None else load_config()
    svc = service or MapService(P)

    app = FastAPI(title="World Map API", version="1.0.0")
    app.state.service = svc

    # (Optional) CORS for the browser viewer
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageFailure)
    async def _storage_failure(request, exc: StorageFailure):
        return JSONResponse({"error": "storage_failure", "detail": str(exc)}, status_code=500)

    @app.get("/health")
    def health():
        return {"status": "ok", "chunks": svc.chunks.count()}

    @app.get("/stats")
    def stats():
        return svc.stats()

    @app.post("/api/map/update")
    def map_update(payload: Any = Body(default=None)):
        """Whole-chunk records from a scan. Body: {"data": [record, ...]}."""
        res = ingest_chunks(svc.chunks, unwrap(payload, "data"))
        svc.invalidate(res.written)
        log.info("chunk update", extra={"extra": res.to_dict()})
        return {"status": "ok", **res.to_dict()}

    @app.post("/api/map/update-partial")
    def map_update_partial(payload: Any = Body(default=None)):
        """Single-column edits. Body: {"updates": [{x, z, y, block_id, dimension}, ...]}."""
        res = ingest_partial(svc.chunks, unwrap(payload, "updates"))
        svc.invalidate(res.written)
        log.debug("partial update", extra={"extra": res.to_dict()})
        return {"status": "ok", **res.to_dict()}

    @app.post("/api/map/check")
    def map_check(payload: Any = Body(default=None)):
        """Which of the listed chunks are already stored."""
        body = payload if isinstance(payload, dict) else {}
        dim = normalize_dimension(body.get("dimension"))
        coords = []
        for c in body.get("chunks") or []:
            try:
                coords.append((int(c["cx"]), int(c["cz"])))
            except (TypeError, ValueError, KeyError):
                continue
        found = svc.chunks.existing(coords, dim)
        return {"existing": [{"cx": cx, "cz": cz} for cx, cz in coords if (cx, cz) in found]}

    @app.post("/players")
    def players_update(payload: Any = Body(default=None)):
        svc.players = unwrap(payload, "data")
        return {"status": "ok", "count": len(svc.players)}

    @app.get("/api/map/players")
    def players_list():
        return svc.players

    @app.get("/tiles/{dimension}/{z}/{x}/{y}")
    def tile(dimension: str, z: str, x: str, y: str):
        """
        Return PNG tile bytes; missing tiles are generated on demand.

        Zoom 0 is one pixel per block column; negative zooms are downsampled.
        """
        zoom, tx, ty = _parse_tile_coord(z), _parse_tile_coord(x), _parse_tile_coord(y)
        if zoom is None or tx is None or ty is None or zoom > 0:
            return JSONResponse({"error": "bad_tile"}, status_code=404)
        tc = svc.find_cache(dimension)
        if tc is None:
            return JSONResponse({"error": "tile_not_found"}, status_code=404)
        try:
            data = tc.get_or_generate(zoom, tx, ty)
        except TileGenFailure as e:
            log.warning("tile generation failed", extra={"extra": {"tile": f"{zoom}/{tx}/{ty}", "err": str(e)}})
            data = None
        if data is None:
            return JSONResponse({"error": "tile_not_found"}, status_code=404)
        return Response(content=data, media_type="image/png", headers={"Cache-Control": "public, max-age=60"})

    return app


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None)
    ap.add_argument("--host", default=None)
    ap.add_argument("--port", type=int, default=None)
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P["logging"].get("level"), P["logging"].get("format"))
    srv = P.get("server", {})
    app = create_app(P)
    try:
        uvicorn.run(app, host=args.host or srv.get("host", "0.0.0.0"), port=args.port or int(srv.get("port", 5000)))
    finally:
        app.state.service.close()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    main()
