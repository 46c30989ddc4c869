from __future__ import annotations

"""
Scanner service: drive scans against a map server from the command line.

The world is a procedural GridWorld (hills, sea, scattered trees), which
stands in for a live engine binding. Every other piece is the production
scanner: orchestrator, state file, sender, live edit queue, player reporter.

Examples:
  # Scan a 512x512-block square (32x32 chunks) and send it to the map server
  python -m scanner.service render --x1 0 --z1 0 --x2 511 --z2 511

  # Only rescan batches the server is missing
  python -m scanner.service repair --x1 0 --z1 0 --x2 511 --z2 511

  # Pick up an interrupted scan, or wipe saved progress
  python -m scanner.service resume
  python -m scanner.service reset

  # Random surface edits pushed as partial updates
  python -m scanner.service edit --count 200 --x1 0 --z1 0 --x2 511 --z2 511

  # Idle: auto-resume a crashed scan and report players until Ctrl-C
  python -m scanner.service run
"""

import argparse
import math
import random
import time
from typing import Dict, Optional

from common.config import ScanConfig, load_config
from common.logging_setup import get_logger, setup_logging
from common.types import ChunkBounds
from scanner.controller import ScanController
from scanner.executor import ConsoleExecutor
from scanner.orchestrator import ScanOrchestrator
from scanner.state import StateStore
from scanner.transport import ChunkSender, MapServerClient
from scanner.updates import PlayerReporter, SurfaceUpdateQueue
from scanner.world import GridWorld, PlayerInfo

log = get_logger("scanner.service")

SEA_LEVEL = 62


def _noise(x: int, z: int, seed: int) -> int:
    return ((x * 73856093) ^ (z * 19349663) ^ (seed * 83492791)) & 0xFFFF


def terrain_column(seed: int = 1234):
    """Column generator for GridWorld: rolling hills, sand under the sea, snowy peaks, trees."""

    def gen(x: int, z: int) -> Dict[int, str]:
        h = int(64 + 6 * math.sin(x / 37.0 + seed) + 5 * math.cos(z / 29.0) + 3 * math.sin((x + z) / 11.0))
        col: Dict[int, str] = {-64: "minecraft:bedrock", h - 3: "minecraft:stone"}
        if h < SEA_LEVEL:
            col[h - 1] = "minecraft:sand"
            col[h] = "minecraft:sand"
            for y in range(h + 1, SEA_LEVEL + 1):
                col[y] = "minecraft:water"
            return col
        if h > 72:
            col[h - 1] = "minecraft:stone"
            col[h] = "minecraft:snow_block" if h > 75 else "minecraft:stone"
            return col
        col[h - 2] = "minecraft:dirt"
        col[h - 1] = "minecraft:dirt"
        col[h] = "minecraft:grass_block"
        r = _noise(x, z, seed) % 100
        if r < 2:
            for y in range(h + 1, h + 5):
                col[y] = "minecraft:oak_log"
            col[h + 5] = "minecraft:oak_leaves"
        elif r < 12:
            col[h + 1] = "minecraft:short_grass"
        return col

    return gen


def _bounds(args) -> ChunkBounds:
    return ChunkBounds.from_blocks(args.x1, args.z1, args.x2, args.z2)


def _wait(controller: ScanController, executor: ConsoleExecutor) -> None:
    """Block until the scan thread ends; Ctrl-C requests a cooperative stop."""
    try:
        while controller.busy:
            controller.join(timeout=0.5)
    except KeyboardInterrupt:
        controller.stop(executor)
        controller.join()


def _random_edits(world: GridWorld, queue: SurfaceUpdateQueue, bounds: ChunkBounds, count: int, seed: int) -> int:
    rng = random.Random(seed)
    blocks = ["minecraft:stone", "minecraft:oak_planks", "minecraft:glass", "minecraft:red_wool", "minecraft:water"]
    queued = 0
    for _ in range(count):
        x = rng.randint(bounds.min_cx * 16, bounds.max_cx * 16 + 15)
        z = rng.randint(bounds.min_cz * 16, bounds.max_cz * 16 + 15)
        top = world.get_topmost_block(x, z)
        y = (top.y if top else world.height_range[0]) + 1
        world.set_block(x, y, z, rng.choice(blocks))
        if queue.on_block_change(x, y, z):
            queued += 1
    return queued


def main(argv: Optional[list] = None) -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("command", choices=["render", "repair", "resume", "reset", "edit", "run"])
    ap.add_argument("--config", default=None, help="params.yaml (default: WORLDMAP_CONFIG or config/params.yaml)")
    ap.add_argument("--server", default=None, help="Map server URL (default: scanner.server_url)")
    ap.add_argument("--x1", type=int, default=0)
    ap.add_argument("--z1", type=int, default=0)
    ap.add_argument("--x2", type=int, default=255)
    ap.add_argument("--z2", type=int, default=255)
    ap.add_argument("--count", type=int, default=100, help="#edits for `edit`")
    ap.add_argument("--seed", type=int, default=1234, help="Terrain / edit seed")
    ap.add_argument("--duration", type=float, default=None, help="Stop `run` after N seconds")
    args = ap.parse_args(argv)

    P = load_config(args.config)
    setup_logging(P["logging"].get("level"), P["logging"].get("format"))
    s = P["scanner"]

    world = GridWorld(generator=terrain_column(args.seed))
    world.add_player(PlayerInfo(id="sim-1", name="Steve", x=args.x1, z=args.z1))

    client = MapServerClient(
        args.server or s["server_url"],
        attempts=int(s["http_attempts"]),
        timeout=float(s["http_timeout_s"]),
    )
    sender = ChunkSender(
        client,
        max_in_flight=int(s["sender_max_in_flight"]),
        max_queued=int(s["sender_max_queued"]),
    )
    orch = ScanOrchestrator(world, StateStore(s["state_path"]), sender, existence=client, config=ScanConfig.from_params(P))
    controller = ScanController(orch)
    console = ConsoleExecutor()

    try:
        if args.command == "render":
            controller.render(console, _bounds(args))
            _wait(controller, console)
        elif args.command == "repair":
            controller.repair(console, _bounds(args))
            _wait(controller, console)
        elif args.command == "resume":
            controller.resume(console)
            _wait(controller, console)
        elif args.command == "reset":
            controller.reset(console)
        elif args.command == "edit":
            queue = SurfaceUpdateQueue(world, client, debounce_ticks=int(s["update_debounce_ticks"]))
            queued = _random_edits(world, queue, _bounds(args), args.count, args.seed)
            sent = queue.flush()
            log.info("edits sent", extra={"extra": {"edits": args.count, "queued": queued, "sent": len(sent)}})
            queue.close()
        else:
            reporter = PlayerReporter(world, client)
            reporter.start()
            controller.auto_resume()
            t0 = time.time()
            try:
                while args.duration is None or time.time() - t0 < args.duration:
                    time.sleep(0.5)
            except KeyboardInterrupt:
                pass
            if controller.busy:
                controller.stop(console)
                controller.join()
            reporter.stop()
    finally:
        sender.close()


if __name__ == "__main__":
    main()
