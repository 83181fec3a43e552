"""Palette resolution: duotone, presets, sampled extremes or most frequent colours."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from operator import itemgetter

import numpy as np

from shape_mosaic.color_utils import rgb_to_lab
from shape_mosaic.config import BLACK, RGB, WHITE, DuotoneColors, MosaicConfig
from shape_mosaic.grid import Grid
from shape_mosaic.sampler import ALPHA_CUTOFF, split_channels

logger = logging.getLogger(__name__)

# Canonical base sequences for the preset colour sets
PRESET_PALETTES: dict[str, tuple[RGB, ...]] = {
    "BW": (
        BLACK,
        WHITE,
    ),
    "CMYK": (
        (0.0, 1.0, 1.0),  # cyan
        (1.0, 0.0, 1.0),  # magenta
        (1.0, 1.0, 0.0),  # yellow
        BLACK,            # key
    ),
    "RGB": (
        (1.0, 0.0, 0.0),
        (0.0, 1.0, 0.0),
        (0.0, 0.0, 1.0),
        BLACK,
        WHITE,
    ),
}

# Frequency extraction buckets each channel to the nearest 1/20
FREQUENCY_STEPS = 20

# Extreme-colour sampling works on 32 levels per channel
SAMPLE_LEVELS = 31
MAX_SAMPLE_CANDIDATES = 4096


@dataclass(frozen=True)
class ResolvedPalette:
    """Result of palette resolution for one run.

    ``duotone`` is set only in duotone mode; ``colors`` is ``None`` when
    no colour limiting applies (full colour pass-through).
    """

    duotone: DuotoneColors | None = None
    colors: tuple[RGB, ...] | None = None


def preset_palette(color_set: str, color_limit: int) -> tuple[RGB, ...]:
    """Build a preset palette of exactly *color_limit* entries.

    CMYK pads with white, RGB pads with evenly spaced greys; BW is not
    padded. Every preset is truncated to *color_limit*.
    """
    base = PRESET_PALETTES.get(color_set)
    if base is None:
        available = ", ".join(sorted(PRESET_PALETTES))
        msg = f"Unknown preset '{color_set}'. Available: {available}"
        raise ValueError(msg)

    colors = list(base)
    if color_set == "CMYK":
        while len(colors) < color_limit:
            colors.append(WHITE)
    elif color_set == "RGB":
        while len(colors) < color_limit:
            gray = len(colors) / (color_limit + 1)
            colors.append((gray, gray, gray))
    return tuple(colors[:color_limit])


def extract_frequent_colors(grid: Grid, max_colors: int) -> tuple[RGB, ...]:
    """Most frequent quantised cell colours, most common first.

    Each channel is rounded to the nearest 1/20 before counting. Ties keep
    the order in which buckets were first met in a row-major scan.
    """
    steps = np.floor(grid.colors * FREQUENCY_STEPS + 0.5).astype(np.int64)
    counts = Counter(map(tuple, steps.reshape(-1, 3).tolist()))
    ranked = sorted(counts.items(), key=itemgetter(1), reverse=True)[:max_colors]
    return tuple(
        (r / FREQUENCY_STEPS, g / FREQUENCY_STEPS, b / FREQUENCY_STEPS)
        for (r, g, b), _ in ranked
    )


def sample_extreme_colors(
    pixels: np.ndarray,
    max_colors: int,
    transparency_is_white: bool = True,
) -> list[RGB]:
    """Pick up to *max_colors* mutually distant colours from raw pixels.

    Farthest-point selection in CIELAB over the distinct quantised colours,
    seeded with the most chromatic one. Unlike frequency ranking this
    favours the extremes of the image, so small vivid details survive.

    Args:
        pixels: (H, W, 3|4) uint8 array.
        max_colors: Upper bound on palette size.
        transparency_is_white: Composite transparent pixels onto white
            instead of ignoring them.

    Returns:
        List of RGB colours in [0, 1], at most *max_colors* long.
    """
    if max_colors <= 0:
        return []

    rgb, alpha = split_channels(pixels)
    flat = rgb.reshape(-1, 3)
    a = alpha.reshape(-1)
    if transparency_is_white:
        flat = np.where((a < ALPHA_CUTOFF)[:, np.newaxis], 1.0, flat)
    else:
        flat = flat[a >= ALPHA_CUTOFF]
    if len(flat) == 0:
        return []

    levels = np.unique(np.floor(flat * SAMPLE_LEVELS + 0.5).astype(np.int64), axis=0)
    if len(levels) > MAX_SAMPLE_CANDIDATES:
        stride = int(np.ceil(len(levels) / MAX_SAMPLE_CANDIDATES))
        levels = levels[::stride]
    candidates = levels.astype(np.float64) / SAMPLE_LEVELS

    lab = rgb_to_lab(candidates)
    chroma = np.hypot(lab[:, 1], lab[:, 2])

    chosen = [int(np.argmax(chroma))]
    min_dist = np.linalg.norm(lab - lab[chosen[0]], axis=1)
    while len(chosen) < max_colors:
        nxt = int(np.argmax(min_dist))
        if min_dist[nxt] <= 0:
            break
        chosen.append(nxt)
        min_dist = np.minimum(min_dist, np.linalg.norm(lab - lab[nxt], axis=1))

    return [tuple(float(v) for v in candidates[i]) for i in chosen]


def resolve_palette(
    config: MosaicConfig,
    grid: Grid,
    sample_colors: Callable[[int], Sequence[RGB]] | None = None,
) -> ResolvedPalette:
    """Resolve the palette policy for *config*.

    Args:
        config: A normalised config.
        grid: Sampled cell grid (used by frequency extraction).
        sample_colors: Extreme-colour sampler for the ``"Sampled"`` set,
            called with the colour limit. Without one the frequency
            policy is used instead.
    """
    if config.duotone:
        logger.info("Duotone mode: using pure black and white")
        return ResolvedPalette(duotone=DuotoneColors(BLACK, WHITE), colors=(BLACK, WHITE))

    if not config.limits_colors:
        return ResolvedPalette()

    limit = config.color_limit
    if config.color_set == "Sampled" and sample_colors is not None:
        colors = tuple(tuple(c) for c in sample_colors(limit))[:limit]
        logger.info("Color limiting: sampled %d extreme colors from image", len(colors))
    elif config.color_set in PRESET_PALETTES:
        colors = preset_palette(config.color_set, limit)
        logger.info(
            "Color limiting: using %s preset with %d colors", config.color_set, len(colors),
        )
    else:
        colors = extract_frequent_colors(grid, limit)
        logger.info("Color limiting: using %d most frequent colors", len(colors))
    return ResolvedPalette(colors=colors)
