#!/usr/bin/env python3
"""
Rebuild the whole tile pyramid from the chunk database.

Renders every zoom-0 tile covering the stored chunks, then each coarser zoom
level from the one below it. Safe to run while the server is stopped; tiles
are replaced atomically, so a running server keeps serving old tiles meanwhile.

Examples:
  python scripts/full_render.py
  python scripts/full_render.py --config config/params.yaml --min-zoom -6 --concurrency 8
  python scripts/full_render.py --dimension the_nether
"""
from __future__ import annotations

import argparse
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.config import load_config
from common.logging_setup import setup_logging
from mapserver.colors import ColorTable
from mapserver.rebuild import rebuild_pyramid
from mapserver.storage import ChunkStore, TileStore
from mapserver.tile_cache import TileCache


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="params.yaml (default: WORLDMAP_CONFIG or config/params.yaml)")
    ap.add_argument("--dimension", default="overworld")
    ap.add_argument("--min-zoom", type=int, default=None, help="Coarsest zoom to build (default: render.rebuild_min_zoom)")
    ap.add_argument("--concurrency", type=int, default=None, help="Parallel tile workers (default: render.rebuild_concurrency)")
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P["logging"].get("level"), P["logging"].get("format"))
    srv = P["server"]
    render = P["render"]
    min_zoom = args.min_zoom if args.min_zoom is not None else int(render["rebuild_min_zoom"])
    concurrency = args.concurrency or int(render["rebuild_concurrency"])

    chunks = ChunkStore(srv["db_path"])
    cache = TileCache(
        chunks,
        TileStore(srv["tiles_root"]),
        ColorTable.from_file(render["colormap_path"]),
        tile_size=int(render["tile_size"]),
        min_zoom=int(render["min_zoom"]),
        floor_zoom=min_zoom,
        debounce_s=None,
        dimension=args.dimension,
    )
    try:
        report = rebuild_pyramid(cache, min_zoom=min_zoom, concurrency=concurrency)
    finally:
        chunks.close()

    print(f"Rendered {report.total} tiles in {report.seconds}s ({report.failures} failures).")
    for z, n in sorted(report.per_zoom.items(), reverse=True):
        print(f"  zoom {z:>3}: {n}")


if __name__ == "__main__":
    main()
