"""Sampled cell grid and the synthetic gradient used when sampling fails."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from shape_mosaic.config import RGB


@dataclass(frozen=True)
class CellData:
    """Averaged brightness / colour / transparency of one grid cell."""

    brightness: float
    color: RGB
    transparency_ratio: float = 0.0


class Grid:
    """Rectangular, fully populated grid of cells backed by numpy arrays.

    Arrays are indexed ``[y, x]``:

    - ``brightness``   (H, W) float64 in [0, 1]
    - ``colors``       (H, W, 3) float64 in [0, 1]
    - ``transparency`` (H, W) float64 in [0, 1]

    The arrays are made read-only on construction.
    """

    def __init__(
        self,
        brightness: np.ndarray,
        colors: np.ndarray,
        transparency: np.ndarray | None = None,
    ) -> None:
        brightness = np.array(brightness, dtype=np.float64)
        colors = np.array(colors, dtype=np.float64)
        if transparency is None:
            transparency = np.zeros_like(brightness)
        transparency = np.array(transparency, dtype=np.float64)

        if brightness.ndim != 2:
            msg = f"brightness must be 2-D, got shape {brightness.shape}"
            raise ValueError(msg)
        h, w = brightness.shape
        if colors.shape != (h, w, 3) or transparency.shape != (h, w):
            msg = (
                f"inconsistent grid arrays: brightness {brightness.shape}, "
                f"colors {colors.shape}, transparency {transparency.shape}"
            )
            raise ValueError(msg)

        for arr in (brightness, colors, transparency):
            arr.setflags(write=False)
        self.brightness = brightness
        self.colors = colors
        self.transparency = transparency

    @classmethod
    def from_cells(cls, rows: Sequence[Sequence[CellData]]) -> Grid:
        """Build a grid from row-major nested ``CellData`` lists."""
        if not rows or not rows[0]:
            return cls(np.zeros((0, 0)), np.zeros((0, 0, 3)))
        width = len(rows[0])
        if any(len(row) != width for row in rows):
            msg = "grid rows must all have the same length"
            raise ValueError(msg)
        brightness = [[c.brightness for c in row] for row in rows]
        colors = [[c.color for c in row] for row in rows]
        transparency = [[c.transparency_ratio for c in row] for row in rows]
        return cls(np.array(brightness), np.array(colors), np.array(transparency))

    @classmethod
    def uniform(
        cls, width: int, height: int, color: RGB, brightness: float,
    ) -> Grid:
        return cls(
            np.full((height, width), brightness),
            np.tile(np.asarray(color, dtype=np.float64), (height, width, 1)),
        )

    @property
    def width(self) -> int:
        return self.brightness.shape[1]

    @property
    def height(self) -> int:
        return self.brightness.shape[0]

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def cell(self, x: int, y: int) -> CellData:
        r, g, b = self.colors[y, x]
        return CellData(
            brightness=float(self.brightness[y, x]),
            color=(float(r), float(g), float(b)),
            transparency_ratio=float(self.transparency[y, x]),
        )

    def iter_cells(self) -> Iterator[tuple[int, int, CellData]]:
        """Yield ``(x, y, cell)`` in row-major order."""
        for y in range(self.height):
            for x in range(self.width):
                yield x, y, self.cell(x, y)

    def __repr__(self) -> str:
        return f"Grid({self.width}x{self.height})"


def synthetic_gradient(grid_width: int, grid_height: int) -> Grid:
    """Deterministic stand-in grid used when real sampling is unavailable.

    With ``rx = x / W`` and ``ry = y / H``:

    - brightness = 0.3 + 0.4 rx + 0.3 ry
    - colour     = (0.3 + 0.7 rx, 0.3 + 0.7 ry, 0.5)
    """
    grid_width = max(1, grid_width)
    grid_height = max(1, grid_height)
    rx = np.arange(grid_width, dtype=np.float64) / grid_width
    ry = np.arange(grid_height, dtype=np.float64) / grid_height
    ry_col = ry[:, np.newaxis]

    brightness = 0.3 + rx * 0.4 + ry_col * 0.3
    colors = np.empty((grid_height, grid_width, 3), dtype=np.float64)
    colors[..., 0] = 0.3 + rx * 0.7
    colors[..., 1] = np.broadcast_to(0.3 + ry_col * 0.7, (grid_height, grid_width))
    colors[..., 2] = 0.5
    return Grid(brightness, colors)
