"""Grid sizing: column / row counts and the tile edge that tiles the image."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from shape_mosaic.color_utils import round_half_up
from shape_mosaic.errors import InvalidGeometryError

logger = logging.getLogger(__name__)

LARGE_GRID_THRESHOLD = 50_000
REFINE_TOLERANCE = 0.2
MIN_DEFAULT_SIZE = 8
MAX_DEFAULT_SIZE = 32


@dataclass(frozen=True)
class GridSize:
    grid_width: int
    grid_height: int
    tile_base_size: float
    is_large: bool = False

    @property
    def total_cells(self) -> int:
        return self.grid_width * self.grid_height


@dataclass(frozen=True)
class Refinement:
    """Outcome of duotone cell-size refinement."""

    cell_size: float
    hint: float
    exact_size: float | None
    adopted_exact: bool

    @property
    def changed(self) -> bool:
        return abs(self.cell_size - self.hint) > 0.1


def _check_positive(name: str, value: float) -> None:
    if not math.isfinite(value) or value <= 0:
        msg = f"{name} must be a positive number, got {value}"
        raise InvalidGeometryError(msg)


def compute_grid(
    image_width: float,
    image_height: float,
    cell_size: float,
    large_grid_threshold: int = LARGE_GRID_THRESHOLD,
) -> GridSize:
    """Compute the grid for an image at a nominal cell size.

    Column and row counts are rounded (minimum 1). The tile edge is derived
    from the *rounded* column count, so ``grid_width`` tiles span exactly
    ``image_width``.

    Raises:
        InvalidGeometryError: If any input is non-positive or non-finite.
    """
    _check_positive("image_width", image_width)
    _check_positive("image_height", image_height)
    _check_positive("cell_size", cell_size)

    grid_width = max(1, round_half_up(image_width / cell_size))
    grid_height = max(1, round_half_up(image_height / cell_size))
    tile_base_size = image_width / grid_width

    is_large = grid_width * grid_height > large_grid_threshold
    logger.info(
        "Grid size: %dx%d (%d total cells), base tile %.3f",
        grid_width, grid_height, grid_width * grid_height, tile_base_size,
    )
    if is_large:
        logger.warning(
            "Grid is very large (%dx%d); this may take a while",
            grid_width, grid_height,
        )
    return GridSize(grid_width, grid_height, tile_base_size, is_large)


def columns_for(image_width: float, cell_size: float) -> int:
    return max(1, round_half_up(image_width / cell_size))


def refine_cell_size(
    image_width: float,
    hint: float,
    measured_columns: float | None,
) -> Refinement:
    """Recover the exact source pixel pitch for duotone sources.

    ``measured_columns`` is the number of logical pixels across the image
    reported by the pixel-dimension probe. The exact pitch it implies is
    adopted when within 20% of *hint*; otherwise the hint decides the
    column count and the pitch is derived from that.
    """
    _check_positive("image_width", image_width)
    _check_positive("hint", hint)

    exact: float | None = None
    if measured_columns is not None and measured_columns > 0:
        exact = image_width / measured_columns

    if exact is not None and abs(exact - hint) / hint < REFINE_TOLERANCE:
        refined = Refinement(exact, hint, exact, adopted_exact=True)
    else:
        refined = Refinement(
            image_width / columns_for(image_width, hint), hint, exact,
            adopted_exact=False,
        )
    logger.info(
        "Duotone: refined shape size to %.3f (hint %s, exact %s)",
        refined.cell_size, hint,
        "n/a" if exact is None else f"{exact:.3f}",
    )
    return refined


def default_cell_size(image_width: float, image_height: float) -> int:
    """Fallback cell size aiming for roughly 30 shapes along the short side."""
    estimate = round_half_up(min(image_width, image_height) / 30)
    return max(MIN_DEFAULT_SIZE, min(MAX_DEFAULT_SIZE, estimate))
