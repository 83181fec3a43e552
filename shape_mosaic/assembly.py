"""Mosaic assembly: sizing → sampling → palette → tiling → emission → grouping."""

from __future__ import annotations

import io
import logging
import math
import numbers
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image

from shape_mosaic import palette, pattern, sampler
from shape_mosaic.boundary import BoundaryResult, request
from shape_mosaic.color_utils import color_key, map_color
from shape_mosaic.config import RGB, MosaicConfig, RunContext
from shape_mosaic.emitter import Scene, SceneEmitter, ShapeEmitter
from shape_mosaic.errors import InvalidGeometryError
from shape_mosaic.grid import Grid, synthetic_gradient
from shape_mosaic.image_io import decode_image_bytes, image_size, load_pixels
from shape_mosaic.palette import ResolvedPalette, extract_frequent_colors, resolve_palette
from shape_mosaic.sizing import (
    GridSize,
    Refinement,
    columns_for,
    compute_grid,
    default_cell_size,
    refine_cell_size,
)
from shape_mosaic.tiler import OccupancyGrid, TileDescriptor, iter_tiles

logger = logging.getLogger(__name__)

Notify = Callable[[str], None]
Progress = Callable[[int, int], None]


@dataclass(frozen=True)
class SourceImage:
    """The image to approximate.

    ``width`` / ``height`` are in target-space units (where shapes are
    placed); ``export`` produces the (H, W, 3|4) uint8 pixels and may raise.
    """

    width: float
    height: float
    export: Callable[[], np.ndarray]
    name: str = "image"

    @classmethod
    def from_array(
        cls,
        pixels: np.ndarray,
        width: float | None = None,
        height: float | None = None,
        name: str = "image",
    ) -> SourceImage:
        h, w = pixels.shape[:2]
        return cls(
            width=float(w if width is None else width),
            height=float(h if height is None else height),
            export=lambda: pixels,
            name=name,
        )

    @classmethod
    def from_path(cls, path: str | Path) -> SourceImage:
        path = Path(path)
        w, h = image_size(path)
        return cls(float(w), float(h), export=lambda: load_pixels(path), name=path.stem)

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "image") -> SourceImage:
        with Image.open(io.BytesIO(data)) as img:
            w, h = img.size
        return cls(float(w), float(h), export=lambda: decode_image_bytes(data), name=name)


@dataclass(frozen=True)
class Collaborators:
    """External work the core delegates; each call is timeout-guarded."""

    sample_cells: Callable[[np.ndarray, int, int, bool], Grid] = sampler.sample_cells
    measure_dimensions: Callable[[np.ndarray, bool], tuple[int, int]] = (
        pattern.measure_pixel_dimensions
    )
    sample_colors: Callable[[np.ndarray, int, bool], Sequence[RGB]] = (
        palette.sample_extreme_colors
    )
    detect_cell_size: Callable[[np.ndarray, float, float, bool], float] = (
        pattern.detect_cell_size
    )


@dataclass
class MosaicResult:
    emitter: ShapeEmitter
    context: RunContext | None = None
    tiles: list[TileDescriptor] = field(default_factory=list)
    failed_tiles: list[tuple[int, int]] = field(default_factory=list)
    groups: dict[str, object] = field(default_factory=dict)
    failed_groups: list[str] = field(default_factory=list)
    completed: int = 0
    used_fallback: bool = False
    aborted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def scene(self) -> Scene | None:
        if isinstance(self.emitter, SceneEmitter):
            return self.emitter.scene
        return None


def frame_name(shape_type: str) -> str:
    return f"{shape_type.capitalize()} Mosaic"


def _log_notice(message: str) -> None:
    logger.info("%s", message)


def refine_duotone_size(
    pixels: np.ndarray,
    source: SourceImage,
    config: MosaicConfig,
    collaborators: Collaborators,
) -> Refinement:
    """Measure the source's logical pixel grid and refine the cell size."""
    hint = config.shape_size

    def hinted_dimensions() -> tuple[int, int]:
        return columns_for(source.width, hint), columns_for(source.height, hint)

    measured = request(
        collaborators.measure_dimensions, pixels, config.transparency_is_white,
        timeout=config.dimension_timeout,
        fallback=hinted_dimensions,
        label="pixel dimensions",
    )
    return refine_cell_size(source.width, hint, measured.value[0])


def _size_grid(
    source: SourceImage, cell_size: float, config: MosaicConfig, notify: Notify,
) -> GridSize:
    size = compute_grid(source.width, source.height, cell_size, config.large_grid_threshold)
    if size.is_large:
        notify(
            f"Warning: Grid is very large ({size.grid_width}x{size.grid_height}). "
            "This may take a while..."
        )
    return size


def _acquire_grid(
    source: SourceImage,
    config: MosaicConfig,
    collaborators: Collaborators,
    notify: Notify,
) -> tuple[np.ndarray | None, float, GridSize, Grid, bool]:
    """Export pixels, refine the cell size, size the grid and sample it.

    Returns ``(pixels, cell_size, grid_size, grid, used_fallback)``; pixels
    are ``None`` when the export failed.
    """
    try:
        pixels = source.export()
    except Exception as exc:
        logger.error("Failed to export image: %s", exc)
        notify("Could not read the image; using a placeholder gradient.")
        size = _size_grid(source, config.shape_size, config, notify)
        grid = synthetic_gradient(size.grid_width, size.grid_height)
        return None, config.shape_size, size, grid, True

    cell_size = config.shape_size
    if config.duotone:
        refinement = refine_duotone_size(pixels, source, config, collaborators)
        if refinement.changed:
            notify(f"Refined: {refinement.cell_size:.3f}px (from {refinement.hint}px)")
        cell_size = refinement.cell_size

    size = _size_grid(source, cell_size, config, notify)
    w, h = size.grid_width, size.grid_height

    sampled: BoundaryResult[Grid] = request(
        collaborators.sample_cells, pixels, w, h, config.transparency_is_white,
        timeout=config.sample_timeout,
        fallback=lambda: synthetic_gradient(w, h),
        label="cell sampler",
    )
    if sampled.fell_back:
        notify("Image sampling did not finish; using a placeholder gradient.")
    return pixels, cell_size, size, sampled.value, sampled.fell_back


def _palette_sampler(
    pixels: np.ndarray | None,
    grid: Grid,
    config: MosaicConfig,
    collaborators: Collaborators,
) -> Callable[[int], Sequence[RGB]] | None:
    if pixels is None:
        return None

    def sample(limit: int) -> Sequence[RGB]:
        return request(
            collaborators.sample_colors, pixels, limit, config.transparency_is_white,
            timeout=config.palette_timeout,
            fallback=lambda: extract_frequent_colors(grid, limit),
            label="palette sampler",
        ).value

    return sample


def build_run_context(
    config: MosaicConfig,
    cell_size: float,
    size: GridSize,
    resolved: ResolvedPalette,
) -> RunContext:
    return RunContext(
        config=config,
        cell_size=cell_size,
        grid_width=size.grid_width,
        grid_height=size.grid_height,
        tile_base_size=size.tile_base_size,
        duotone_colors=resolved.duotone,
        palette=resolved.colors,
    )


def generate_mosaic(
    source: SourceImage,
    config: MosaicConfig,
    *,
    emitter: ShapeEmitter | None = None,
    collaborators: Collaborators | None = None,
    notify: Notify | None = None,
    progress: Progress | None = None,
    should_abort: Callable[[], bool] | None = None,
) -> MosaicResult:
    """Run one full synthesis and emit shapes.

    Never raises: a fatal problem discards what was emitted and is
    reported through ``result.error``; per-tile and per-group failures are
    logged and collected on the result.

    Args:
        source: Image to approximate.
        config: User parameters; normalised before use.
        emitter: Shape sink. Defaults to an in-memory :class:`SceneEmitter`.
        collaborators: External sampler / detector implementations.
        notify: Receives short user-facing notices.
        progress: Called with ``(covered_cells, total_cells)`` per tile.
        should_abort: Polled before each tile; true stops tile submission.
    """
    if notify is None:
        notify = _log_notice
    if collaborators is None:
        collaborators = Collaborators()
    config = config.normalized()
    if emitter is None:
        emitter = SceneEmitter(frame_name(config.shape_type), source.width, source.height)
    result = MosaicResult(emitter=emitter)

    logger.info("Creating %s mosaic", config.shape_type)
    try:
        pixels, cell_size, size, grid, used_fallback = _acquire_grid(
            source, config, collaborators, notify,
        )
        result.used_fallback = used_fallback
        if grid.is_empty:
            msg = "Image data is invalid"
            raise InvalidGeometryError(msg)

        resolved = resolve_palette(
            config, grid, _palette_sampler(pixels, grid, config, collaborators),
        )
        context = build_run_context(config, cell_size, size, resolved)
        result.context = context
        _emit_tiles(grid, context, emitter, result, progress, should_abort)
    except InvalidGeometryError as exc:
        logger.error("Unable to create mosaic: %s", exc)
        emitter.discard()
        result.error = f"Unable to create mosaic: {exc}"
        notify(result.error)
        return result
    except Exception:
        logger.exception("Error creating mosaic")
        emitter.discard()
        result.error = "Error creating mosaic. See log for details."
        notify(result.error)
        return result

    if result.aborted:
        notify(f"Mosaic stopped after {len(result.tiles)} shapes.")
    elif config.group_colors:
        notify(f"Created {len(result.groups)} color groups.")
    else:
        notify(f"Mosaic created with {len(result.tiles)} shapes.")
    return result


def _emit_tiles(
    grid: Grid,
    context: RunContext,
    emitter: ShapeEmitter,
    result: MosaicResult,
    progress: Progress | None,
    should_abort: Callable[[], bool] | None,
) -> None:
    config = context.config
    base = context.tile_base_size
    total = context.total_cells
    color_groups: dict[str, list[object]] = {}

    logger.info(
        "Creating %dx%d mosaic grid with size variation %s, base tile %.3f",
        context.grid_width, context.grid_height, config.tile_size_variation, base,
    )

    occupancy = OccupancyGrid(context.grid_width, context.grid_height)
    tiles = iter_tiles(
        grid, context.grid_width, context.grid_height, context.max_tile_size, occupancy,
    )
    for tile in tiles:
        if should_abort is not None and should_abort():
            logger.info("Mosaic aborted after %d tiles", len(result.tiles))
            result.aborted = True
            break
        try:
            fill = map_color(tile.average_color, context)
            handle = emitter.create(
                config.shape_type,
                tile.grid_x * base,
                tile.grid_y * base,
                tile.size * base,
                fill,
            )
        except Exception as exc:
            logger.error("Error processing tile at (%d, %d): %s", tile.grid_x, tile.grid_y, exc)
            result.failed_tiles.append((tile.grid_x, tile.grid_y))
            occupancy.release(tile.grid_x, tile.grid_y, tile.size)
            continue

        result.tiles.append(tile)
        if config.group_colors:
            color_groups.setdefault(color_key(fill), []).append(handle)
        result.completed += tile.area
        if progress is not None:
            progress(result.completed, total)

    if config.group_colors and not result.aborted:
        _union_groups(color_groups, emitter, result)


def _union_groups(
    color_groups: dict[str, list[object]],
    emitter: ShapeEmitter,
    result: MosaicResult,
) -> None:
    logger.info("Creating %d color groups...", len(color_groups))
    for index, (key, handles) in enumerate(color_groups.items(), 1):
        if not handles:
            continue
        try:
            result.groups[key] = emitter.union(handles, f"Color {key}")
        except Exception as exc:
            logger.error("Error creating union for color %s: %s", key, exc)
            result.failed_groups.append(key)
            continue
        logger.debug(
            "Created union %d/%d: %d shapes", index, len(color_groups), len(handles),
        )


def detect_shape_size(
    source: SourceImage,
    config: MosaicConfig | None = None,
    collaborators: Collaborators | None = None,
) -> BoundaryResult[float]:
    """Suggest a shape size from the image's pixel pattern.

    Falls back to ``clamp(round(min(w, h) / 30), 8, 32)`` when the image
    cannot be read, detection times out, or yields no positive size.
    """
    if config is None:
        config = MosaicConfig()
    if collaborators is None:
        collaborators = Collaborators()

    def heuristic() -> float:
        return float(default_cell_size(source.width, source.height))

    try:
        pixels = source.export()
    except Exception as exc:
        logger.error("Failed to export image for size detection: %s", exc)
        return BoundaryResult(heuristic(), failed=True)

    detected = request(
        collaborators.detect_cell_size,
        pixels, source.width, source.height, config.transparency_is_white,
        timeout=config.pattern_timeout,
        fallback=heuristic,
        label="pattern detection",
    )
    value = detected.value
    if not isinstance(value, numbers.Real) or not math.isfinite(value) or value <= 0:
        logger.warning("Pattern detection returned %r, using heuristic", value)
        return BoundaryResult(heuristic(), failed=True)
    return BoundaryResult(float(value), detected.timed_out, detected.failed)
