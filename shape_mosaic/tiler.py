"""Adaptive tiling: merge visually uniform 2x2 / 4x4 blocks into one tile."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import numpy as np

from shape_mosaic.config import RGB
from shape_mosaic.errors import InvalidGeometryError
from shape_mosaic.grid import Grid

logger = logging.getLogger(__name__)

BRIGHTNESS_THRESHOLD = 0.1
COLOR_THRESHOLD = 0.15


@dataclass(frozen=True)
class TileDescriptor:
    """One output tile covering ``size x size`` grid cells from its corner."""

    grid_x: int
    grid_y: int
    size: int
    average_brightness: float
    average_color: RGB

    @property
    def area(self) -> int:
        return self.size * self.size

    def footprint(self) -> Iterator[tuple[int, int]]:
        for dy in range(self.size):
            for dx in range(self.size):
                yield self.grid_x + dx, self.grid_y + dy


class OccupancyGrid:
    """Tracks which output cells are already covered by a tile.

    Cells only ever go from free to claimed.
    """

    def __init__(self, width: int, height: int) -> None:
        self._claimed = np.zeros((height, width), dtype=bool)

    @property
    def width(self) -> int:
        return self._claimed.shape[1]

    @property
    def height(self) -> int:
        return self._claimed.shape[0]

    def is_occupied(self, x: int, y: int) -> bool:
        return bool(self._claimed[y, x])

    def is_free(self, x: int, y: int, size: int) -> bool:
        """True if the whole ``size x size`` block is in bounds and unclaimed."""
        if x < 0 or y < 0 or x + size > self.width or y + size > self.height:
            return False
        return not self._claimed[y:y + size, x:x + size].any()

    def claim(self, x: int, y: int, size: int) -> None:
        self._claimed[y:y + size, x:x + size] = True

    def release(self, x: int, y: int, size: int) -> None:
        self._claimed[y:y + size, x:x + size] = False

    @property
    def complete(self) -> bool:
        return bool(self._claimed.all())


def _as_rgb(values: np.ndarray) -> RGB:
    return float(values[0]), float(values[1]), float(values[2])


def determine_tile_size(
    grid: Grid,
    start_x: int,
    start_y: int,
    max_tile_size: int,
    fits: Callable[[int], bool] | None = None,
) -> tuple[int, float, RGB]:
    """Largest uniform block starting at a sample-grid cell.

    A 2x2 block qualifies when the peak brightness deviation from its mean
    is < 0.1 and the peak colour (RGB Euclidean) deviation is < 0.15. A 4x4
    block is only tried after the 2x2 passes, and every one of its 16 cells
    must stay within both thresholds of the 4x4 mean.

    Args:
        grid: Sampled cells.
        start_x: Sample-grid column of the block corner.
        start_y: Sample-grid row of the block corner.
        max_tile_size: 1, 2 or 4.
        fits: Optional check that a candidate size is free in the output.

    Returns:
        ``(size, average_brightness, average_color)``.
    """
    if fits is None:
        def fits(size: int) -> bool:
            return True

    cell_brightness = float(grid.brightness[start_y, start_x])
    cell_color = _as_rgb(grid.colors[start_y, start_x])

    if (
        max_tile_size < 2
        or start_x + 1 >= grid.width
        or start_y + 1 >= grid.height
        or not fits(2)
    ):
        return 1, cell_brightness, cell_color

    block_b = grid.brightness[start_y:start_y + 2, start_x:start_x + 2].reshape(-1)
    block_c = grid.colors[start_y:start_y + 2, start_x:start_x + 2].reshape(-1, 3)
    avg_b = float(block_b.mean())
    avg_c = block_c.mean(axis=0)

    max_brightness_dev = float(np.max(np.abs(block_b - avg_b)))
    max_color_dev = float(np.max(np.linalg.norm(block_c - avg_c, axis=1)))

    if not (max_brightness_dev < BRIGHTNESS_THRESHOLD and max_color_dev < COLOR_THRESHOLD):
        return 1, cell_brightness, cell_color

    if (
        max_tile_size >= 4
        and start_x + 3 < grid.width
        and start_y + 3 < grid.height
        and fits(4)
    ):
        big_b = grid.brightness[start_y:start_y + 4, start_x:start_x + 4].reshape(-1)
        big_c = grid.colors[start_y:start_y + 4, start_x:start_x + 4].reshape(-1, 3)
        avg4_b = float(big_b.mean())
        avg4_c = big_c.mean(axis=0)

        brightness_diff = np.abs(big_b - avg4_b)
        color_diff = np.linalg.norm(big_c - avg4_c, axis=1)
        outliers = (brightness_diff > BRIGHTNESS_THRESHOLD) | (color_diff > COLOR_THRESHOLD)
        if not outliers.any():
            return 4, avg4_b, _as_rgb(avg4_c)

    return 2, avg_b, _as_rgb(avg_c)


def iter_tiles(
    grid: Grid,
    output_cols: int,
    output_rows: int,
    max_tile_size: int,
    occupancy: OccupancyGrid | None = None,
) -> Iterator[TileDescriptor]:
    """Walk the output grid row-major and yield one tile per free cell.

    Output cells map onto the sample grid proportionally, so the two grids
    may differ in resolution. Cells covered by an earlier, larger tile are
    skipped; together the yielded tiles partition the output grid.

    Pass *occupancy* to release the footprint of a tile that could not be
    placed; its cells not yet reached by the scan are then tiled again.

    Raises:
        InvalidGeometryError: If the sample grid is empty or the output grid
            has no columns / rows.
    """
    if grid.is_empty:
        msg = "Image data is empty"
        raise InvalidGeometryError(msg)
    if output_cols <= 0 or output_rows <= 0:
        msg = f"invalid column count: {output_cols}x{output_rows}"
        raise InvalidGeometryError(msg)

    sample_cols, sample_rows = grid.width, grid.height
    if occupancy is None:
        occupancy = OccupancyGrid(output_cols, output_rows)
    elif (occupancy.width, occupancy.height) != (output_cols, output_rows):
        msg = "occupancy grid does not match the output grid"
        raise ValueError(msg)

    for y in range(output_rows):
        map_y = min(sample_rows - 1, y * sample_rows // output_rows)
        for x in range(output_cols):
            if occupancy.is_occupied(x, y):
                continue
            map_x = min(sample_cols - 1, x * sample_cols // output_cols)

            size, brightness, color = determine_tile_size(
                grid, map_x, map_y, max_tile_size,
                fits=lambda s, x=x, y=y: occupancy.is_free(x, y, s),
            )
            occupancy.claim(x, y, size)
            yield TileDescriptor(x, y, size, brightness, color)


def tile_grid(
    grid: Grid,
    output_cols: int,
    output_rows: int,
    max_tile_size: int,
) -> list[TileDescriptor]:
    """Eager form of :func:`iter_tiles`."""
    tiles = list(iter_tiles(grid, output_cols, output_rows, max_tile_size))
    merged = sum(1 for t in tiles if t.size > 1)
    logger.debug(
        "Tiled %dx%d grid into %d tiles (%d merged)",
        output_cols, output_rows, len(tiles), merged,
    )
    return tiles
