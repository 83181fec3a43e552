"""Cell sampling: area-weighted averages of a pixel buffer over a grid."""

from __future__ import annotations

import logging

import numpy as np

from shape_mosaic.grid import Grid

logger = logging.getLogger(__name__)

# Rec. 601 luma weights
LUMA = np.array([0.299, 0.587, 0.114])

ALPHA_CUTOFF = 0.5
NEUTRAL_COLOR = (1.0, 1.0, 1.0)


def _overlap_matrix(n_pixels: int, n_cells: int) -> np.ndarray:
    """(n_cells, n_pixels) overlap length of each pixel with each cell span."""
    edges = np.linspace(0.0, float(n_pixels), n_cells + 1)
    starts = edges[:-1, np.newaxis]
    ends = edges[1:, np.newaxis]
    px = np.arange(n_pixels, dtype=np.float64)[np.newaxis, :]
    return np.clip(np.minimum(ends, px + 1.0) - np.maximum(starts, px), 0.0, None)


def split_channels(pixels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Split (H, W, 3|4) uint8 pixels into float RGB in [0, 1] and alpha."""
    arr = np.asarray(pixels)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        msg = f"expected (H, W, 3) or (H, W, 4) pixels, got shape {arr.shape}"
        raise ValueError(msg)
    rgb = arr[..., :3].astype(np.float64) / 255.0
    if arr.shape[2] == 4:
        alpha = arr[..., 3].astype(np.float64) / 255.0
    else:
        alpha = np.ones(arr.shape[:2], dtype=np.float64)
    return rgb, alpha


def sample_cells(
    pixels: np.ndarray,
    grid_width: int,
    grid_height: int,
    transparency_is_white: bool = True,
) -> Grid:
    """Average *pixels* into a ``grid_width`` x ``grid_height`` grid.

    Each cell covers an equal fractional span of the image; pixels that
    straddle a cell border contribute in proportion to the overlap.
    Transparent pixels (alpha < 0.5) count as white when
    *transparency_is_white*, otherwise they are left out of the average.
    A cell with no opaque pixel left falls back to neutral white.

    Args:
        pixels: (H, W, 3) or (H, W, 4) uint8 array.
        grid_width: Number of columns.
        grid_height: Number of rows.
        transparency_is_white: How to treat transparent pixels.

    Returns:
        A fully populated :class:`Grid`.
    """
    if grid_width < 1 or grid_height < 1:
        msg = f"grid dimensions must be >= 1, got {grid_width}x{grid_height}"
        raise ValueError(msg)

    rgb, alpha = split_channels(pixels)
    h, w = alpha.shape
    if h == 0 or w == 0:
        msg = "cannot sample an empty image"
        raise ValueError(msg)

    transparent = alpha < ALPHA_CUTOFF
    if transparency_is_white:
        rgb = rgb.copy()
        rgb[transparent] = 1.0
        include = np.ones((h, w), dtype=np.float64)
    else:
        include = (~transparent).astype(np.float64)

    wy = _overlap_matrix(h, grid_height)
    wx = _overlap_matrix(w, grid_width)

    def cell_sum(values: np.ndarray) -> np.ndarray:
        return wy @ values @ wx.T

    area = cell_sum(np.ones((h, w), dtype=np.float64))
    transparency = cell_sum(transparent.astype(np.float64)) / area

    weight = cell_sum(include)
    colors = np.empty((grid_height, grid_width, 3), dtype=np.float64)
    for c in range(3):
        colors[..., c] = cell_sum(rgb[..., c] * include)

    empty = weight <= 0
    safe_weight = np.where(empty, 1.0, weight)
    colors /= safe_weight[..., np.newaxis]
    colors[empty] = NEUTRAL_COLOR
    colors = np.clip(colors, 0.0, 1.0)

    brightness = np.clip(colors @ LUMA, 0.0, 1.0)

    if empty.any():
        logger.debug("%d fully transparent cells set to neutral", int(empty.sum()))
    return Grid(brightness, colors, np.clip(transparency, 0.0, 1.0))
