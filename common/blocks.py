"""
Block classification tables used to decide what is "visible from above".

The tables are static. Callers consult them in a fixed order per pass
(decoration, floating, ignored, aquatic, surface-feature, then keyword
fallback); later checks intentionally override earlier ones.
"""
from __future__ import annotations

from typing import FrozenSet, Tuple


AIR = "minecraft:air"
WATER = "minecraft:water"
BEDROCK = "minecraft:bedrock"

# Blocks treated as empty space by the upward canopy scan.
TRUE_AIR: FrozenSet[str] = frozenset({
    "minecraft:air", "minecraft:void_air", "minecraft:light_block",
})

# Blocks that end the water scan: open sky above the candidate.
OPEN_AIR: FrozenSet[str] = frozenset({"minecraft:air", "minecraft:void_air"})

IGNORED_BLOCKS: FrozenSet[str] = frozenset({
    "minecraft:air", "minecraft:void_air", "minecraft:cave_air", "minecraft:light_block",
    "minecraft:barrier", "minecraft:structure_void",
})

# Never ground: the real surface is somewhere below these.
FLOATING_BLOCKS: FrozenSet[str] = frozenset({
    "minecraft:glass", "minecraft:glass_pane", "minecraft:stained_glass", "minecraft:stained_glass_pane",
    "minecraft:tinted_glass",
    "minecraft:scaffolding",
})

DECORATION_BLOCKS: FrozenSet[str] = frozenset({
    # grass, ferns, dead bushes
    "minecraft:grass", "minecraft:short_grass", "minecraft:tall_grass", "minecraft:fern",
    "minecraft:large_fern", "minecraft:deadbush",
    "minecraft:seagrass", "minecraft:tall_seagrass",
    # flowers
    "minecraft:dandelion", "minecraft:poppy", "minecraft:blue_orchid", "minecraft:allium",
    "minecraft:azure_bluet", "minecraft:red_tulip", "minecraft:orange_tulip", "minecraft:white_tulip",
    "minecraft:pink_tulip", "minecraft:oxeye_daisy", "minecraft:cornflower", "minecraft:lily_of_the_valley",
    "minecraft:wither_rose", "minecraft:sunflower", "minecraft:lilac", "minecraft:rose_bush", "minecraft:peony",
    "minecraft:torchflower", "minecraft:pitcher_plant", "minecraft:pink_petals",
    # mushrooms, fungi, nether plants
    "minecraft:brown_mushroom", "minecraft:red_mushroom", "minecraft:crimson_fungus", "minecraft:warped_fungus",
    "minecraft:crimson_roots", "minecraft:warped_roots", "minecraft:nether_sprouts",
    "minecraft:twisting_vines", "minecraft:weeping_vines", "minecraft:cave_vines",
    "minecraft:cave_vines_body", "minecraft:cave_vines_head",
    "minecraft:glow_lichen", "minecraft:sculk_vein", "minecraft:hanging_roots", "minecraft:spore_blossom",
    # crops and saplings
    "minecraft:wheat", "minecraft:potatoes", "minecraft:carrots", "minecraft:beetroot",
    "minecraft:melon_stem", "minecraft:pumpkin_stem", "minecraft:bamboo_sapling",
    "minecraft:sapling", "minecraft:oak_sapling", "minecraft:spruce_sapling", "minecraft:birch_sapling",
    "minecraft:jungle_sapling", "minecraft:acacia_sapling", "minecraft:dark_oak_sapling",
    "minecraft:mangrove_propagule", "minecraft:cherry_sapling", "minecraft:azalea", "minecraft:flowering_azalea",
    "minecraft:torchflower_crop", "minecraft:pitcher_crop", "minecraft:sweet_berry_bush",
    "minecraft:big_dripleaf", "minecraft:small_dripleaf", "minecraft:big_dripleaf_stem",
    # rails, redstone, thin devices
    "minecraft:redstone_wire", "minecraft:tripwire", "minecraft:tripwire_hook",
    "minecraft:rail", "minecraft:activator_rail", "minecraft:detector_rail", "minecraft:powered_rail",
    "minecraft:lever", "minecraft:stone_button", "minecraft:wooden_button", "minecraft:polished_blackstone_button",
    "minecraft:light_weighted_pressure_plate", "minecraft:heavy_weighted_pressure_plate",
    "minecraft:stone_pressure_plate", "minecraft:wooden_pressure_plate",
    "minecraft:repeater", "minecraft:comparator", "minecraft:daylight_detector",
    "minecraft:amethyst_cluster", "minecraft:large_amethyst_bud", "minecraft:medium_amethyst_bud",
    "minecraft:small_amethyst_bud",
    "minecraft:frogspawn", "minecraft:turtle_egg", "minecraft:sniffer_egg",
    "minecraft:flower_pot", "minecraft:skull",
    "minecraft:end_rod", "minecraft:chain", "minecraft:lantern", "minecraft:soul_lantern",
})

AQUATIC_BLOCKS: FrozenSet[str] = frozenset({
    "minecraft:kelp", "minecraft:kelp_plant", "minecraft:seagrass", "minecraft:tall_seagrass",
    "minecraft:sea_pickle", "minecraft:lily_pad",
})

SURFACE_FEATURE_BLOCKS: FrozenSet[str] = frozenset({
    "minecraft:water", "minecraft:flowing_water", "minecraft:lava", "minecraft:flowing_lava",
    "minecraft:ice", "minecraft:packed_ice", "minecraft:blue_ice", "minecraft:frosted_ice",
    "minecraft:oak_leaves", "minecraft:spruce_leaves", "minecraft:birch_leaves", "minecraft:jungle_leaves",
    "minecraft:acacia_leaves", "minecraft:dark_oak_leaves", "minecraft:mangrove_leaves", "minecraft:cherry_leaves",
    "minecraft:azalea_leaves", "minecraft:flowering_azalea_leaves", "minecraft:snow_layer",
    "minecraft:leaves", "minecraft:leaves2",
})

# Name fragments that promote a block above the candidate during the canopy scan.
CANOPY_KEYWORDS: Tuple[str, ...] = (
    "leaves", "vine", "mangrove_roots", "wart_block", "shroomlight", "snow", "carpet", "wool",
)

# Name fragments that are reported as the surface without further checks.
DIRECT_SURFACE_KEYWORDS: Tuple[str, ...] = ("leaves", "log", "wool", "carpet", "snow")

# Blocks that do not count toward a chunk's valid-column total.
NON_COUNTING_BLOCKS: FrozenSet[str] = frozenset({AIR, BEDROCK})


def _has_any(block_id: str, fragments: Tuple[str, ...]) -> bool:
    return any(f in block_id for f in fragments)


def is_canopy(block_id: str) -> bool:
    return _has_any(block_id, CANOPY_KEYWORDS)


def is_water(block_id: str) -> bool:
    return "water" in block_id or block_id in AQUATIC_BLOCKS


def is_passable(block_id: str) -> bool:
    """Blocks that never hide what is below them when seen from above."""
    return block_id in IGNORED_BLOCKS or block_id in DECORATION_BLOCKS or block_id in FLOATING_BLOCKS


def is_direct_surface(block_id: str) -> bool:
    return block_id in SURFACE_FEATURE_BLOCKS or _has_any(block_id, DIRECT_SURFACE_KEYWORDS)
