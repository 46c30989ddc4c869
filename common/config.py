from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "logging": {"level": "INFO", "format": "json"},
    "scanner": {
        "server_url": "http://127.0.0.1:5000",
        "state_path": "data/render_state.json",
        "render_area_tag": "map_render_area",
        "admin_tag": "map_admin",
        "batch_size": 8,
        "load_checks_per_round": 8,
        "load_check_interval_ticks": 10,
        "load_retry_wait_ticks": 20,
        "force_reload_every": 25,
        "scan_backoff_min_ticks": 5,
        "scan_backoff_max_ticks": 40,
        "scan_warn_every": 20,
        "progress_every": 100,
        "default_ms_per_chunk": 150.0,
        "eta_min_samples": 50,
        "sender_max_in_flight": 2,
        "sender_max_queued": 16,
        "http_attempts": 3,
        "http_timeout_s": 10.0,
        "update_debounce_ticks": 40,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "db_path": "data/chunks.db",
        "tiles_root": "data/tiles",
    },
    "render": {
        "tile_size": 512,
        "min_zoom": -5,
        "debounce_s": 2.0,
        "colormap_path": "config/colormap.json",
        "rebuild_min_zoom": -8,
        "rebuild_concurrency": 4,
    },
}


def _deep_merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load params.yaml merged over built-in defaults.

    Path precedence: explicit `path` arg, env WORLDMAP_CONFIG, config/params.yaml.
    A missing file yields the defaults.
    """
    path = path or os.environ.get("WORLDMAP_CONFIG") or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        loaded = yaml.safe_load(f) or {}
    return _deep_merge(DEFAULTS, loaded)


@dataclass(slots=True)
class ScanConfig:
    """Tuning knobs for the scan loop. Tick counts are scheduler ticks (50 ms)."""
    batch_size: int = 8
    render_area_tag: str = "map_render_area"
    load_checks_per_round: int = 8
    load_check_interval_ticks: int = 10
    load_retry_wait_ticks: int = 20
    force_reload_every: int = 25
    scan_backoff_min_ticks: int = 5
    scan_backoff_max_ticks: int = 40
    scan_warn_every: int = 20
    progress_every: int = 100
    default_ms_per_chunk: float = 150.0
    eta_min_samples: int = 50

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.load_checks_per_round <= 0:
            raise ValueError("load_checks_per_round must be > 0")
        if self.scan_backoff_min_ticks <= 0 or self.scan_backoff_max_ticks < self.scan_backoff_min_ticks:
            raise ValueError("invalid scan backoff range")

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "ScanConfig":
        s = params.get("scanner", {})
        d = DEFAULTS["scanner"]
        return cls(
            batch_size=int(s.get("batch_size", d["batch_size"])),
            render_area_tag=str(s.get("render_area_tag", d["render_area_tag"])),
            load_checks_per_round=int(s.get("load_checks_per_round", d["load_checks_per_round"])),
            load_check_interval_ticks=int(s.get("load_check_interval_ticks", d["load_check_interval_ticks"])),
            load_retry_wait_ticks=int(s.get("load_retry_wait_ticks", d["load_retry_wait_ticks"])),
            force_reload_every=int(s.get("force_reload_every", d["force_reload_every"])),
            scan_backoff_min_ticks=int(s.get("scan_backoff_min_ticks", d["scan_backoff_min_ticks"])),
            scan_backoff_max_ticks=int(s.get("scan_backoff_max_ticks", d["scan_backoff_max_ticks"])),
            scan_warn_every=int(s.get("scan_warn_every", d["scan_warn_every"])),
            progress_every=int(s.get("progress_every", d["progress_every"])),
            default_ms_per_chunk=float(s.get("default_ms_per_chunk", d["default_ms_per_chunk"])),
            eta_min_samples=int(s.get("eta_min_samples", d["eta_min_samples"])),
        )
