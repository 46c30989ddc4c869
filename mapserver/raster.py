from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

import cv2
import numpy as np

from common.errors import TileGenFailure
from common.types import ChunkRecord
from common.utils import CHUNK_SIZE
from mapserver.colors import ColorTable

SHADE_STEP = 0.15
ALTITUDE_GAIN = 0.002
SEA_LEVEL = 64
BRIGHTNESS_MIN = 0.4
BRIGHTNESS_MAX = 1.5


def tile_chunk_range(tile_x: int, tile_y: int, tile_size: int) -> Tuple[int, int, int, int]:
    """[start_cx, end_cx) x [start_cz, end_cz) of chunks inside a zoom-0 tile."""
    start_cx = (tile_x * tile_size) // CHUNK_SIZE
    start_cz = (tile_y * tile_size) // CHUNK_SIZE
    end_cx = ((tile_x + 1) * tile_size) // CHUNK_SIZE
    end_cz = ((tile_y + 1) * tile_size) // CHUNK_SIZE
    return start_cx, start_cz, end_cx, end_cz


def chunk_tile(cx: int, cz: int, tile_size: int) -> Tuple[int, int]:
    """Zoom-0 tile (x, y) containing a chunk."""
    return (cx * CHUNK_SIZE) // tile_size, (cz * CHUNK_SIZE) // tile_size


def _palette_colors(rec: ChunkRecord, colors: ColorTable) -> np.ndarray:
    return np.array([colors.color(b) for b in rec.palette], dtype=np.float64).reshape(-1, 4)


def rasterize_base(
    records: Mapping[Tuple[int, int], ChunkRecord],
    tile_x: int,
    tile_y: int,
    tile_size: int,
    colors: ColorTable,
) -> Optional[np.ndarray]:
    """
    Zoom-0 tile: one pixel per column, RGBA uint8 (tile_size, tile_size, 4).

    `records` may include the chunk row/column just north-west of the tile;
    those only feed the shading of the tile's top/left edge. Returns None if
    no record covers the tile itself.
    """
    start_cx, start_cz, end_cx, end_cz = tile_chunk_range(tile_x, tile_y, tile_size)
    inside = [k for k in records if start_cx <= k[0] < end_cx and start_cz <= k[1] < end_cz]
    if not inside:
        return None

    # grid carries a one-pixel halo on the north (row 0) and west (col 0)
    n = tile_size + 1
    ys = np.zeros((n, n), dtype=np.float64)
    have = np.zeros((n, n), dtype=bool)
    rgba = np.zeros((n, n, 4), dtype=np.float64)

    ox = tile_x * tile_size - 1
    oz = tile_y * tile_size - 1
    for (cx, cz), rec in records.items():
        if not rec.is_valid():
            continue
        x0 = cx * CHUNK_SIZE - ox
        z0 = cz * CHUNK_SIZE - oz
        gx0, gz0 = max(x0, 0), max(z0, 0)
        gx1, gz1 = min(x0 + CHUNK_SIZE, n), min(z0 + CHUNK_SIZE, n)
        if gx0 >= gx1 or gz0 >= gz1:
            continue
        ids = np.asarray(rec.ids, dtype=np.int64).reshape(CHUNK_SIZE, CHUNK_SIZE)
        hs = np.asarray(rec.ys, dtype=np.float64).reshape(CHUNK_SIZE, CHUNK_SIZE)
        sl = (slice(gz0 - z0, gz1 - z0), slice(gx0 - x0, gx1 - x0))
        ys[gz0:gz1, gx0:gx1] = hs[sl]
        have[gz0:gz1, gx0:gx1] = True
        rgba[gz0:gz1, gx0:gx1] = _palette_colors(rec, colors)[ids[sl]]

    s_y = ys[1:, 1:]
    nw_y = np.where(have[:-1, :-1], ys[:-1, :-1], s_y)
    brightness = 1.0 + SHADE_STEP * np.sign(s_y - nw_y) + (s_y - SEA_LEVEL) * ALTITUDE_GAIN
    brightness = np.clip(brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)

    c = rgba[1:, 1:]
    out = np.zeros((tile_size, tile_size, 4), dtype=np.uint8)
    out[..., :3] = np.minimum(255.0, c[..., :3] * brightness[..., None]).astype(np.uint8)
    out[..., 3] = np.floor(c[..., 3] * 255.0).astype(np.uint8)
    out[~have[1:, 1:]] = 0
    return out


def downsample_half(img: np.ndarray) -> np.ndarray:
    """Area-average an RGBA tile to half size using premultiplied alpha."""
    h, w = img.shape[:2]
    f = img.astype(np.float32)
    alpha = f[..., 3:4] / 255.0
    premul = np.concatenate([f[..., :3] * alpha, f[..., 3:4]], axis=2)
    small = cv2.resize(premul, (w // 2, h // 2), interpolation=cv2.INTER_AREA)
    a = small[..., 3:4] / 255.0
    rgb = np.divide(small[..., :3], a, out=np.zeros_like(small[..., :3]), where=a > 0)
    out = np.concatenate([rgb, small[..., 3:4]], axis=2)
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


def compose_children(children: Dict[Tuple[int, int], Optional[np.ndarray]], tile_size: int) -> Optional[np.ndarray]:
    """
    Parent tile from up to four children keyed by (dx, dy).

    Absent children leave their quadrant transparent; None if all are absent.
    """
    present = {k: v for k, v in children.items() if v is not None}
    if not present:
        return None
    half = tile_size // 2
    out = np.zeros((tile_size, tile_size, 4), dtype=np.uint8)
    for (dx, dy), img in present.items():
        out[dy * half:(dy + 1) * half, dx * half:(dx + 1) * half] = downsample_half(img)
    return out


def encode_png(rgba: np.ndarray, compression: int = 6) -> bytes:
    ok, buf = cv2.imencode(".png", cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA), [cv2.IMWRITE_PNG_COMPRESSION, int(compression)])
    if not ok:
        raise TileGenFailure("png encode failed")
    return buf.tobytes()


def decode_png(data: bytes, tile_size: Optional[int] = None) -> np.ndarray:
    """PNG bytes → RGBA uint8; raises TileGenFailure for corrupt or mis-sized input."""
    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None or img.ndim != 3:
        raise TileGenFailure("corrupt tile image")
    if img.shape[2] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    elif img.shape[2] != 4:
        raise TileGenFailure(f"unexpected channel count {img.shape[2]}")
    if tile_size is not None and img.shape[:2] != (tile_size, tile_size):
        raise TileGenFailure(f"tile is {img.shape[1]}x{img.shape[0]}, expected {tile_size}")
    return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
