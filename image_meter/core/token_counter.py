"""
Token estimation for pricing.

Estimates token counts locally so that a price can be computed without
contacting the provider.
"""

import math
from typing import Tuple

CHARS_PER_TOKEN = 4
TILE_SIZE = 512
TOKENS_PER_TILE = 129
BASE_IMAGE_TOKENS = 65


def estimate_text_tokens(text: str) -> int:
    """Estimate prompt tokens from character length (4 chars per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def parse_size(size: str) -> Tuple[int, int]:
    """Split a ``WIDTHxHEIGHT`` string into integers.

    Raises:
        ValueError: If the string is not two positive integers joined by ``x``
    """
    parts = size.lower().split("x")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid size: {size}")
    width, height = int(parts[0]), int(parts[1])
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid size: {size}")
    return width, height


def estimate_image_tokens(size: str) -> int:
    """Estimate input tokens for an image of the given size.

    The shortest side is scaled to 512px and the image is billed per
    512px tile plus a fixed base.
    """
    width, height = parse_size(size)
    scale = TILE_SIZE / min(width, height)

    scaled_width = math.ceil(width * scale)
    scaled_height = math.ceil(height * scale)

    tiles = math.ceil(scaled_width / TILE_SIZE) * math.ceil(scaled_height / TILE_SIZE)
    return tiles * TOKENS_PER_TILE + BASE_IMAGE_TOKENS
