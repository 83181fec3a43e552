"""Colour-space conversion, distances and final-colour mapping."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
from skimage.color import rgb2lab

from shape_mosaic.config import BLACK, RGB, WHITE, RunContext


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (not banker's rounding)."""
    return math.floor(value + 0.5)


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) float RGB in [0, 1] → (N, 3) float64 CIELAB."""
    rgb = np.clip(np.asarray(rgb, dtype=np.float64), 0.0, 1.0)
    return rgb2lab(rgb.reshape(1, -1, 3)).reshape(-1, 3)


def rgb_distance(a: RGB, b: RGB) -> float:
    """Euclidean distance in RGB space."""
    return math.sqrt(
        (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2
    )


def find_closest_color(color: RGB, palette: Sequence[RGB]) -> RGB:
    """Nearest palette entry by RGB distance; the first entry wins ties."""
    closest = palette[0]
    min_distance = math.inf
    for candidate in palette:
        distance = rgb_distance(color, candidate)
        if distance < min_distance:
            min_distance = distance
            closest = candidate
    return closest


def map_color(color: RGB, context: RunContext) -> RGB:
    """Final fill colour for a tile's average colour.

    Duotone snaps to whichever endpoint is nearer (black on ties), a
    resolved palette snaps to its nearest entry, otherwise the colour
    passes through unchanged.
    """
    if context.duotone_colors is not None:
        to_black = rgb_distance(color, BLACK)
        to_white = rgb_distance(color, WHITE)
        if to_black <= to_white:
            return context.duotone_colors.dark
        return context.duotone_colors.light

    if context.palette:
        return find_closest_color(color, context.palette)

    return color


def color_key(color: RGB) -> str:
    """Quantised 8-bit key, e.g. ``"255,128,0"``."""
    return ",".join(str(round_half_up(c * 255)) for c in color)


def to_uint8(color: RGB) -> tuple[int, int, int]:
    r, g, b = (min(255, max(0, round_half_up(c * 255))) for c in color)
    return r, g, b
