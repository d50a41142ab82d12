"""Fixed pricing tables: aspect dimensions, generation cost tiers, store products."""

from __future__ import annotations

from typing import Dict, Tuple


DEFAULT_ASPECT = "9:16"

ASPECT_DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "9:16": (1080, 1920),
    "1:1": (1024, 1024),
    "2:3": (1024, 1536),
}

# (max pixel count, credits); anything above the last tier costs LARGE_GENERATION_COST.
GENERATION_COST_TIERS: Tuple[Tuple[int, int], ...] = (
    (1024 * 1024, 1),
    (1024 * 2048, 2),
)
LARGE_GENERATION_COST = 3

PRODUCT_CREDITS: Dict[str, int] = {
    "credits_5": 5,
    "credits_20": 20,
    "credits_100": 100,
    "sub_monthly_plus": 50,
}


def resolve_dimensions(aspect: str) -> Tuple[int, int]:
    """Pixel size for an aspect; unknown aspects fall back to 9:16."""
    return ASPECT_DIMENSIONS.get(aspect, ASPECT_DIMENSIONS[DEFAULT_ASPECT])


def credit_cost_for_pixels(width: int, height: int) -> int:
    pixels = int(width) * int(height)
    for max_pixels, cost in GENERATION_COST_TIERS:
        if pixels <= max_pixels:
            return cost
    return LARGE_GENERATION_COST


def credit_cost_for_aspect(aspect: str) -> int:
    width, height = resolve_dimensions(aspect)
    return credit_cost_for_pixels(width, height)


def product_type(product_id: str) -> str:
    return "subscription" if product_id.startswith("sub_") else "consumable"
