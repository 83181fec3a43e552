"""
Shape Mosaic Generator
======================

Rebuild an image as a mosaic of circles or squares. Uniform regions are
merged into larger tiles and colours can be reduced to a palette:

- **Duotone** (pure black / white, uniform tiles)
- **Presets** (BW, CMYK, RGB)
- **Sampled** extremes or **most frequent** colours of the image
"""

__version__ = "1.0.0"

from shape_mosaic.assembly import (
    Collaborators,
    MosaicResult,
    SourceImage,
    detect_shape_size,
    generate_mosaic,
)
from shape_mosaic.config import MosaicConfig, RunContext
from shape_mosaic.grid import CellData, Grid, synthetic_gradient
from shape_mosaic.palette import (
    extract_frequent_colors,
    preset_palette,
    resolve_palette,
    sample_extreme_colors,
)
from shape_mosaic.sizing import compute_grid, refine_cell_size
from shape_mosaic.tiler import TileDescriptor, tile_grid

__all__ = [
    "CellData",
    "Collaborators",
    "Grid",
    "MosaicConfig",
    "MosaicResult",
    "RunContext",
    "SourceImage",
    "TileDescriptor",
    "compute_grid",
    "detect_shape_size",
    "extract_frequent_colors",
    "generate_mosaic",
    "preset_palette",
    "refine_cell_size",
    "resolve_palette",
    "sample_extreme_colors",
    "synthetic_gradient",
    "tile_grid",
]
