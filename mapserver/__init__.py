"""
Map Server — chunk storage and tile pyramid

- Stores chunk records in sqlite, keyed by (cx, cz, dimension), last write wins
- Renders zoom-0 PNG tiles from chunk surfaces; negative zooms are 2x2 downsamples
- Serves /tiles/{dimension}/{z}/{x}/{y}, /api/map/update, /api/map/update-partial,
  /api/map/check, /players, /api/map/players, /stats, /health
"""
