"""Centralised configuration via frozen dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, replace

RGB = tuple[float, float, float]

TILE_SIZE_VARIATIONS: dict[str, int] = {"1x": 1, "2x": 2, "4x": 4}
SHAPE_TYPES = ("circle", "square")
COLOR_SETS = ("BW", "CMYK", "RGB", "Sampled", "Frequent")

BLACK: RGB = (0.0, 0.0, 0.0)
WHITE: RGB = (1.0, 1.0, 1.0)


@dataclass(frozen=True)
class DuotoneColors:
    """Dark / light endpoints used in duotone mode."""

    dark: RGB = BLACK
    light: RGB = WHITE


@dataclass(frozen=True)
class MosaicConfig:
    """All tuneable parameters for a mosaic run.

    Attributes:
        shape_size:          Nominal cell edge length in source pixels.
        tile_size_variation: Largest allowed merge factor - "1x", "2x" or "4x".
        shape_type:          "circle" or "square".
        transparency_is_white: Treat transparent pixels as white instead of
                             leaving them out of the cell average.
        duotone:             Reduce to pure black and white with uniform tiles.
        color_limit:         Palette size; 0 (or >= 256) keeps full colour.
        color_set:           "BW", "CMYK", "RGB", "Sampled" or "Frequent".
        group_colors:        Union shapes sharing a final colour.
        sample_timeout:      Seconds to wait for the cell sampler.
        dimension_timeout:   Seconds to wait for the pixel-dimension probe
                             used by duotone refinement.
        pattern_timeout:     Seconds to wait for shape-size detection.
        palette_timeout:     Seconds to wait for the extreme-colour sampler.
        large_grid_threshold: Cell count above which a size warning is raised.
        render_scale:        Output pixels per source pixel when rasterising.
        output_format:       Image format for saved files.
        save_svg:            Also write an SVG next to the raster output.
        save_comparison:     Write a side-by-side original / mosaic image.
        background:          Background colour of rendered output (8-bit RGB).
    """

    # Geometry
    shape_size: float = 20
    tile_size_variation: str = "1x"
    shape_type: str = "circle"

    # Colour
    transparency_is_white: bool = True
    duotone: bool = False
    color_limit: int = 0
    color_set: str = "Frequent"
    group_colors: bool = False

    # External boundaries (seconds)
    sample_timeout: float = 10.0
    dimension_timeout: float = 1.0
    pattern_timeout: float = 5.0
    palette_timeout: float = 10.0

    large_grid_threshold: int = 50_000

    # Output
    render_scale: float = 1.0
    output_format: str = "png"
    save_svg: bool = True
    save_comparison: bool = False
    background: tuple[int, int, int] = (255, 255, 255)

    def __post_init__(self) -> None:
        if self.tile_size_variation not in TILE_SIZE_VARIATIONS:
            available = ", ".join(TILE_SIZE_VARIATIONS)
            msg = f"Unknown tile size variation '{self.tile_size_variation}'. Available: {available}"
            raise ValueError(msg)
        if self.shape_type not in SHAPE_TYPES:
            msg = f"Unknown shape type '{self.shape_type}'. Available: {', '.join(SHAPE_TYPES)}"
            raise ValueError(msg)
        if self.color_set not in COLOR_SETS:
            msg = f"Unknown colour set '{self.color_set}'. Available: {', '.join(COLOR_SETS)}"
            raise ValueError(msg)
        if self.color_limit < 0:
            msg = f"color_limit must be >= 0, got {self.color_limit}"
            raise ValueError(msg)

    @property
    def max_tile_size(self) -> int:
        return TILE_SIZE_VARIATIONS[self.tile_size_variation]

    @property
    def limits_colors(self) -> bool:
        """True when a reduced palette should be built for this run."""
        return not self.duotone and 0 < self.color_limit < 256

    def normalized(self) -> MosaicConfig:
        """Apply request-time rules and return a new config.

        Duotone forces uniform 1x tiles and a two-colour limit. Otherwise the
        shape size falls back to 20 when unset and is kept at least 1.
        """
        if self.duotone:
            return replace(self, tile_size_variation="1x", color_limit=2)
        return replace(self, shape_size=max(1, self.shape_size or 20))


@dataclass(frozen=True)
class RunContext:
    """Everything derived for one synthesis run.

    Built once grid dimensions and the palette are known; read-only
    afterwards, so nothing downstream touches the user's config.
    """

    config: MosaicConfig
    cell_size: float
    grid_width: int
    grid_height: int
    tile_base_size: float
    duotone_colors: DuotoneColors | None = None
    palette: tuple[RGB, ...] | None = None

    @property
    def max_tile_size(self) -> int:
        return self.config.max_tile_size

    @property
    def total_cells(self) -> int:
        return self.grid_width * self.grid_height
