"""
Block id → RGBA color.

Lookup order: exact entry in MANUAL_COLORS, then the optional colormap JSON
({"minecraft:id": {"r":..,"g":..,"b":..,"a":..}}), then name-fragment
fallbacks, then flat gray. Alpha is 0..1.
"""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

from common.logging_setup import get_logger

log = get_logger("mapserver.colors")

Color = Tuple[int, int, int, float]

TRANSPARENT: Color = (0, 0, 0, 0.0)
FALLBACK_GRAY: Color = (128, 128, 128, 1.0)

MANUAL_COLORS: Dict[str, Color] = {
    # legacy leaf ids
    "minecraft:leaves": (50, 120, 30, 1.0),
    "minecraft:leaves2": (50, 120, 30, 1.0),
    "minecraft:water": (64, 100, 232, 0.6),
    "minecraft:flowing_water": (64, 100, 232, 0.6),
    "minecraft:bubble_column": (64, 100, 232, 0.6),
    "minecraft:ice": (160, 190, 255, 0.8),
    "minecraft:packed_ice": (160, 190, 255, 0.9),
    "minecraft:blue_ice": (160, 190, 255, 1.0),
    "minecraft:frosted_ice": (160, 190, 255, 0.8),
    "minecraft:snow": (255, 255, 255, 1.0),
    "minecraft:snow_layer": (255, 255, 255, 1.0),
    "minecraft:powder_snow": (240, 240, 240, 1.0),
    "minecraft:air": (0, 0, 0, 0),
    "minecraft:void_air": (0, 0, 0, 0),
    "minecraft:cave_air": (0, 0, 0, 0),
    "minecraft:structure_void": (0, 0, 0, 0),
    "minecraft:light_block": (0, 0, 0, 0),
    "minecraft:barrier": (0, 0, 0, 0),
    "minecraft:white_wool": (233, 236, 236, 1.0),
    "minecraft:orange_wool": (240, 118, 19, 1.0),
    "minecraft:magenta_wool": (189, 68, 179, 1.0),
    "minecraft:light_blue_wool": (58, 175, 217, 1.0),
    "minecraft:yellow_wool": (248, 197, 39, 1.0),
    "minecraft:lime_wool": (112, 185, 25, 1.0),
    "minecraft:pink_wool": (237, 141, 172, 1.0),
    "minecraft:gray_wool": (62, 68, 71, 1.0),
    "minecraft:light_gray_wool": (142, 142, 134, 1.0),
    "minecraft:cyan_wool": (21, 137, 145, 1.0),
    "minecraft:purple_wool": (121, 42, 172, 1.0),
    "minecraft:blue_wool": (53, 57, 157, 1.0),
    "minecraft:brown_wool": (114, 71, 40, 1.0),
    "minecraft:green_wool": (84, 109, 27, 1.0),
    "minecraft:red_wool": (161, 39, 34, 1.0),
    "minecraft:black_wool": (20, 21, 25, 1.0),
    "minecraft:grass_block": (124, 189, 107, 1.0),
    "minecraft:dirt": (134, 96, 67, 1.0),
    "minecraft:coarse_dirt": (119, 85, 59, 1.0),
    "minecraft:rooted_dirt": (134, 96, 67, 1.0),
    "minecraft:podzol": (90, 63, 44, 1.0),
    "minecraft:farmland": (134, 96, 67, 1.0),
    "minecraft:dirt_path": (160, 120, 80, 1.0),
    "minecraft:sand": (219, 211, 160, 1.0),
    "minecraft:red_sand": (180, 100, 40, 1.0),
    "minecraft:suspicious_sand": (219, 211, 160, 1.0),
    "minecraft:suspicious_gravel": (130, 125, 125, 1.0),
    "minecraft:gravel": (130, 125, 125, 1.0),
    "minecraft:clay": (160, 165, 175, 1.0),
    "minecraft:lava": (255, 90, 0, 1.0),
    "minecraft:flowing_lava": (255, 90, 0, 1.0),
    "minecraft:magma_block": (100, 50, 20, 1.0),
    "minecraft:obsidian": (20, 18, 26, 1.0),
    "minecraft:crying_obsidian": (30, 10, 50, 1.0),
    "minecraft:stone": (125, 125, 125, 1.0),
    "minecraft:cobblestone": (100, 100, 100, 1.0),
    "minecraft:mossy_cobblestone": (80, 100, 80, 1.0),
    "minecraft:smooth_stone": (140, 140, 140, 1.0),
    "minecraft:diorite": (180, 180, 180, 1.0),
    "minecraft:granite": (150, 110, 90, 1.0),
    "minecraft:andesite": (110, 110, 110, 1.0),
    "minecraft:deepslate": (60, 60, 65, 1.0),
    "minecraft:cobbled_deepslate": (50, 50, 55, 1.0),
    "minecraft:polished_deepslate": (60, 60, 65, 1.0),
    "minecraft:tuff": (80, 80, 75, 1.0),
    "minecraft:dripstone_block": (100, 80, 70, 1.0),
    "minecraft:calcite": (220, 220, 220, 1.0),
    "minecraft:bedrock": (30, 30, 30, 1.0),
    "minecraft:deepslate_coal_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_iron_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_gold_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_copper_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_lapis_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_redstone_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_emerald_ore": (60, 60, 65, 1.0),
    "minecraft:deepslate_diamond_ore": (60, 60, 65, 1.0),
    "minecraft:prismarine": (99, 156, 151, 1.0),
    "minecraft:prismarine_bricks": (99, 171, 158, 1.0),
    "minecraft:dark_prismarine": (51, 91, 75, 1.0),
    "minecraft:cactus": (80, 120, 50, 1.0),
    "minecraft:bamboo": (100, 140, 40, 1.0),
    "minecraft:sugar_cane": (140, 190, 100, 1.0),
    "minecraft:reeds": (140, 190, 100, 1.0),
    "minecraft:vine": (50, 100, 30, 1.0),
    "minecraft:lily_pad": (40, 100, 20, 1.0),
    "minecraft:pumpkin": (200, 120, 20, 1.0),
    "minecraft:carved_pumpkin": (200, 120, 20, 1.0),
    "minecraft:jack_o_lantern": (220, 150, 50, 1.0),
    "minecraft:melon_block": (120, 160, 40, 1.0),
    "minecraft:hay_block": (200, 180, 40, 1.0),
    "minecraft:brown_mushroom_block": (130, 100, 80, 1.0),
    "minecraft:red_mushroom_block": (200, 40, 40, 1.0),
    "minecraft:mushroom_stem": (200, 200, 190, 1.0),
    "minecraft:brown_mushroom": (130, 100, 80, 1.0),
    "minecraft:red_mushroom": (200, 40, 40, 1.0),
    "minecraft:cocoa": (150, 100, 50, 1.0),
    "minecraft:beetroots": (0, 120, 0, 1.0),
    "minecraft:beetroot": (0, 120, 0, 1.0),
    "minecraft:dandelion": (255, 255, 0, 1.0),
    "minecraft:poppy": (255, 0, 0, 1.0),
    "minecraft:blue_orchid": (100, 100, 255, 1.0),
    "minecraft:allium": (200, 100, 255, 1.0),
    "minecraft:azure_bluet": (220, 220, 255, 1.0),
    "minecraft:red_tulip": (255, 0, 0, 1.0),
    "minecraft:orange_tulip": (255, 150, 0, 1.0),
    "minecraft:white_tulip": (255, 255, 255, 1.0),
    "minecraft:pink_tulip": (255, 150, 200, 1.0),
    "minecraft:oxeye_daisy": (220, 220, 220, 1.0),
    "minecraft:cornflower": (50, 50, 200, 1.0),
    "minecraft:lily_of_the_valley": (255, 255, 255, 1.0),
    "minecraft:wither_rose": (30, 30, 30, 1.0),
    "minecraft:sunflower": (255, 255, 0, 1.0),
    "minecraft:lilac": (200, 100, 200, 1.0),
    "minecraft:rose_bush": (200, 0, 0, 1.0),
    "minecraft:peony": (255, 150, 200, 1.0),
    "minecraft:large_fern": (50, 120, 30, 1.0),
    "minecraft:tall_grass": (100, 150, 70, 1.0),
    "minecraft:fern": (50, 120, 30, 1.0),
    "minecraft:deadbush": (100, 80, 40, 1.0),
    "minecraft:big_dripleaf": (112, 142, 51, 1.0),
    "minecraft:small_dripleaf_block": (95, 119, 47, 1.0),
    "minecraft:azalea": (92, 110, 42, 1.0),
    "minecraft:flowering_azalea": (100, 112, 61, 1.0),
    "minecraft:mangrove_roots": (76, 60, 38, 1.0),
    "minecraft:muddy_mangrove_roots": (61, 58, 61, 1.0),
    "minecraft:oak_leaves": (50, 120, 30, 1.0),
    "minecraft:spruce_leaves": (50, 80, 50, 1.0),
    "minecraft:birch_leaves": (100, 140, 60, 1.0),
    "minecraft:jungle_leaves": (40, 180, 20, 1.0),
    "minecraft:acacia_leaves": (80, 100, 30, 1.0),
    "minecraft:dark_oak_leaves": (30, 70, 10, 1.0),
    "minecraft:mangrove_leaves": (30, 100, 30, 1.0),
    "minecraft:cherry_leaves": (240, 150, 200, 1.0),
    "minecraft:azalea_leaves": (80, 120, 40, 1.0),
    "minecraft:flowering_azalea_leaves": (100, 140, 60, 1.0),
    "minecraft:oak_log": (115, 90, 55, 1.0),
    "minecraft:spruce_log": (60, 40, 20, 1.0),
    "minecraft:birch_log": (210, 210, 200, 1.0),
    "minecraft:jungle_log": (150, 110, 70, 1.0),
    "minecraft:acacia_log": (105, 95, 85, 1.0),
    "minecraft:dark_oak_log": (40, 30, 15, 1.0),
    "minecraft:mangrove_log": (80, 30, 30, 1.0),
    "minecraft:cherry_log": (60, 40, 50, 1.0),
    "minecraft:crimson_stem": (100, 30, 50, 1.0),
    "minecraft:warped_stem": (30, 100, 80, 1.0),
    "minecraft:stripped_oak_log": (160, 130, 80, 1.0),
    "minecraft:stripped_spruce_log": (100, 80, 50, 1.0),
    "minecraft:stripped_birch_log": (220, 200, 140, 1.0),
    "minecraft:stripped_jungle_log": (180, 140, 90, 1.0),
    "minecraft:stripped_acacia_log": (170, 100, 60, 1.0),
    "minecraft:stripped_dark_oak_log": (80, 60, 40, 1.0),
    "minecraft:stripped_mangrove_log": (120, 60, 60, 1.0),
    "minecraft:stripped_cherry_log": (230, 170, 180, 1.0),
    "minecraft:oak_planks": (160, 130, 80, 1.0),
    "minecraft:spruce_planks": (100, 80, 50, 1.0),
    "minecraft:birch_planks": (220, 200, 140, 1.0),
    "minecraft:jungle_planks": (180, 140, 90, 1.0),
    "minecraft:acacia_planks": (170, 100, 60, 1.0),
    "minecraft:dark_oak_planks": (80, 60, 40, 1.0),
    "minecraft:mangrove_planks": (120, 60, 60, 1.0),
    "minecraft:cherry_planks": (230, 170, 180, 1.0),
    "minecraft:crimson_planks": (120, 60, 90, 1.0),
    "minecraft:warped_planks": (50, 120, 110, 1.0),
    "minecraft:bamboo_planks": (210, 190, 100, 1.0),
    "minecraft:tube_coral_block": (50, 88, 207, 1.0),
    "minecraft:brain_coral_block": (204, 85, 153, 1.0),
    "minecraft:bubble_coral_block": (161, 34, 159, 1.0),
    "minecraft:fire_coral_block": (160, 36, 46, 1.0),
    "minecraft:horn_coral_block": (206, 184, 62, 1.0),
    "minecraft:tube_coral": (50, 88, 207, 1.0),
    "minecraft:brain_coral": (204, 85, 153, 1.0),
    "minecraft:bubble_coral": (161, 34, 159, 1.0),
    "minecraft:fire_coral": (160, 36, 46, 1.0),
    "minecraft:horn_coral": (206, 184, 62, 1.0),
    "minecraft:tube_coral_fan": (50, 88, 207, 1.0),
    "minecraft:brain_coral_fan": (204, 85, 153, 1.0),
    "minecraft:bubble_coral_fan": (161, 34, 159, 1.0),
    "minecraft:fire_coral_fan": (160, 36, 46, 1.0),
    "minecraft:horn_coral_fan": (206, 184, 62, 1.0),
    "minecraft:crafting_table": (150, 100, 60, 1.0),
    "minecraft:bookshelf": (150, 100, 60, 1.0),
    "minecraft:chest": (150, 100, 40, 1.0),
    "minecraft:trapped_chest": (150, 100, 40, 1.0),
    "minecraft:barrel": (120, 90, 60, 1.0),
    "minecraft:composter": (130, 90, 50, 1.0),
    "minecraft:ladder": (160, 130, 80, 1.0),
    "minecraft:torch": (255, 255, 100, 1.0),
    "minecraft:lantern": (80, 80, 90, 1.0),
    "minecraft:bell": (250, 220, 100, 1.0),
    "minecraft:bed": (180, 40, 40, 1.0),
    "minecraft:anvil": (70, 70, 70, 1.0),
    "minecraft:glass": (255, 255, 255, 0.1),
    "minecraft:glass_pane": (255, 255, 255, 0.1),
    "minecraft:iron_bars": (150, 150, 150, 1.0),
    "minecraft:scaffolding": (200, 180, 120, 1.0),
    "minecraft:terracotta": (150, 90, 60, 1.0),
    "minecraft:white_terracotta": (210, 180, 160, 1.0),
    "minecraft:orange_terracotta": (160, 80, 30, 1.0),
    "minecraft:yellow_terracotta": (180, 130, 30, 1.0),
    "minecraft:red_terracotta": (140, 60, 40, 1.0),
    "minecraft:brown_terracotta": (70, 50, 30, 1.0),
    "minecraft:light_gray_terracotta": (130, 100, 90, 1.0),
    "minecraft:cyan_terracotta": (80, 90, 90, 1.0),
    "minecraft:white_concrete": (200, 200, 200, 1.0),
    "minecraft:black_concrete": (10, 10, 10, 1.0),
    "minecraft:red_concrete": (140, 30, 30, 1.0),
    "minecraft:blue_concrete": (40, 40, 140, 1.0),
    "minecraft:lime_concrete": (90, 170, 20, 1.0),
    "minecraft:yellow_concrete": (240, 170, 20, 1.0),
}

# (fragments, color); first match wins
KEYWORD_COLORS: Tuple[Tuple[Tuple[str, ...], Color], ...] = (
    (("leaves",), (50, 100, 30, 1.0)),
    (("grass",), (124, 189, 107, 1.0)),
    (("water",), (64, 100, 232, 0.6)),
    (("log", "wood", "planks", "fence", "stairs", "slab", "gate", "door", "trapdoor"), (150, 120, 80, 1.0)),
    (("stone", "cobble", "brick", "wall", "polished", "smooth"), (125, 125, 125, 1.0)),
    (("sand",), (219, 211, 160, 1.0)),
    (("snow", "ice"), (255, 255, 255, 1.0)),
    (("glass",), (255, 255, 255, 0.3)),
    (("wool", "carpet", "concrete", "terracotta", "bed"), (200, 200, 200, 1.0)),
    (("flower", "plant", "bush"), (50, 150, 50, 1.0)),
    (("deepslate",), (60, 60, 65, 1.0)),
    (("sculk",), (13, 31, 37, 1.0)),
    (("mangrove",), (110, 50, 50, 1.0)),
    (("cherry",), (230, 170, 180, 1.0)),
    (("prismarine",), (99, 156, 151, 1.0)),
    (("tuff",), (80, 80, 75, 1.0)),
    (("mud",), (60, 57, 60, 1.0)),
    (("coral",), (200, 100, 100, 1.0)),
    (("amethyst",), (150, 100, 200, 1.0)),
    (("froglight",), (250, 250, 200, 1.0)),
)


def load_colormap(path: Optional[str]) -> Dict[str, Color]:
    """Read an external colormap JSON; a missing or broken file yields {}."""
    if not path or not Path(path).exists():
        if path:
            log.warning("colormap not found", extra={"extra": {"path": path}})
        return {}
    try:
        raw = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        log.error(f"Colormap load error: {e}", extra={"extra": {"path": path}})
        return {}
    out: Dict[str, Color] = {}
    for block_id, c in raw.items():
        try:
            out[block_id] = (int(c["r"]), int(c["g"]), int(c["b"]), float(c.get("a", 1.0)))
        except (KeyError, TypeError, ValueError):
            continue
    log.info(f"Loaded colormap with {len(out)} entries.")
    return out


class ColorTable:
    """Color resolver with a per-id memo. Unknown ids are logged once."""

    def __init__(self, colormap: Optional[Dict[str, Color]] = None):
        self.colormap = dict(colormap or {})
        self._memo: Dict[str, Color] = {}
        self._unknown: Set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Optional[str]) -> "ColorTable":
        return cls(load_colormap(path))

    def color(self, block_id: Optional[str]) -> Color:
        if not block_id or block_id == "minecraft:air":
            return TRANSPARENT
        c = self._memo.get(block_id)
        if c is None:
            c = self._lookup(block_id)
            self._memo[block_id] = c
        return c

    def _lookup(self, block_id: str) -> Color:
        c = MANUAL_COLORS.get(block_id)
        if c is not None:
            return c
        c = self.colormap.get(block_id)
        if c is not None:
            return c
        for fragments, color in KEYWORD_COLORS:
            if any(f in block_id for f in fragments):
                return color
        with self._lock:
            if block_id not in self._unknown:
                self._unknown.add(block_id)
                log.warning(f'Unknown block ID: "{block_id}". Using fallback gray.')
        return FALLBACK_GRAY

    @property
    def unknown_ids(self) -> Set[str]:
        return set(self._unknown)
