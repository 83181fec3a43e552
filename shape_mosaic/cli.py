"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from shape_mosaic.assembly import SourceImage, detect_shape_size, generate_mosaic
from shape_mosaic.config import MosaicConfig
from shape_mosaic.image_io import make_comparison_grid, render_scene, save_svg

app = typer.Typer(
    name="shape-mosaic",
    help="Rebuild any image as a mosaic of circles or squares.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _notify(message: str) -> None:
    console.print(f"[yellow]›[/yellow] {message}")


# Defaults come from MosaicConfig - single source of truth
_DEFAULTS = MosaicConfig()


# -- create command ----------------------------------------------------

@app.command()
def create(
    image: Path = typer.Argument(..., help="Path to the source image"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Output raster path (default: <image>_mosaic.png)",
    ),
    shape_size: float = typer.Option(
        _DEFAULTS.shape_size, "--shape-size", "-s", help="Shape size in source pixels",
    ),
    variation: str = typer.Option(
        _DEFAULTS.tile_size_variation, "--variation",
        help="Largest merged tile: '1x', '2x' or '4x'",
    ),
    shape_type: str = typer.Option(
        _DEFAULTS.shape_type, "--shape", help="'circle' or 'square'",
    ),
    transparency_is_white: bool = typer.Option(
        _DEFAULTS.transparency_is_white, "--transparent-white/--transparent-skip",
        help="Treat transparent pixels as white or leave them out",
    ),
    duotone: bool = typer.Option(
        _DEFAULTS.duotone, "--duotone/--no-duotone", help="Pure black and white",
    ),
    colors: int = typer.Option(
        _DEFAULTS.color_limit, "--colors", "-c", help="Colour limit (0 = full colour)",
    ),
    color_set: str = typer.Option(
        _DEFAULTS.color_set, "--color-set",
        help="'BW', 'CMYK', 'RGB', 'Sampled' or 'Frequent'",
    ),
    group: bool = typer.Option(
        _DEFAULTS.group_colors, "--group/--no-group", help="Union shapes by colour",
    ),
    scale: float = typer.Option(
        _DEFAULTS.render_scale, "--scale", help="Output pixels per source pixel",
    ),
    svg: bool = typer.Option(_DEFAULTS.save_svg, "--svg/--no-svg", help="Also write SVG"),
    comparison: bool = typer.Option(
        _DEFAULTS.save_comparison, "--comparison/--no-comparison",
        help="Write an Original | Mosaic comparison image",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Turn IMAGE into a shape mosaic."""
    _setup_logging(verbose)
    logger = logging.getLogger("shape_mosaic")

    try:
        cfg = MosaicConfig(
            shape_size=shape_size,
            tile_size_variation=variation,
            shape_type=shape_type,
            transparency_is_white=transparency_is_white,
            duotone=duotone,
            color_limit=colors,
            color_set=color_set,
            group_colors=group,
            render_scale=scale,
            save_svg=svg,
            save_comparison=comparison,
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2) from exc

    if not image.exists():
        console.print(f"[red]No such image: {image}[/red]")
        raise typer.Exit(1)

    if output is None:
        output = image.with_name(f"{image.stem}_mosaic.{cfg.output_format}")
    output.parent.mkdir(parents=True, exist_ok=True)

    source = SourceImage.from_path(image)
    console.print(Panel.fit(
        f"[bold]SHAPE MOSAIC[/bold]\n"
        f"Image: {image.name} ({source.width:.0f}x{source.height:.0f})\n"
        f"Shape: {cfg.shape_type}  |  Size: {cfg.shape_size}  |  Variation: {cfg.tile_size_variation}\n"
        f"Duotone: {cfg.duotone}  |  Colours: {cfg.color_limit or 'full'} ({cfg.color_set})",
        border_style="cyan",
    ))

    t0 = time.perf_counter()
    with Progress(
        TextColumn("[cyan]Tiling"), BarColumn(), TaskProgressColumn(),
        console=console, transient=True,
    ) as bar:
        task = bar.add_task("tiling", total=None)

        def on_progress(done: int, total: int) -> None:
            bar.update(task, completed=done, total=total)

        result = generate_mosaic(source, cfg, notify=_notify, progress=on_progress)

    if not result.ok or result.scene is None:
        console.print(f"[red]{result.error}[/red]")
        raise typer.Exit(1)

    scene = result.scene
    rendered = render_scene(scene, cfg.render_scale, cfg.background)
    rendered.save(output)
    logger.info("Saved raster to %s", output)

    if cfg.save_svg:
        svg_path = output.with_suffix(".svg")
        save_svg(scene, svg_path)
        logger.info("Saved SVG to %s", svg_path)

    if cfg.save_comparison:
        comp_path = output.with_name(f"{output.stem}_comparison.{cfg.output_format}")
        make_comparison_grid(image, rendered, comp_path)

    ctx = result.context
    elapsed = time.perf_counter() - t0
    console.print(
        f"[green]✓[/green] {output.name}  "
        f"[dim]{ctx.grid_width}x{ctx.grid_height} grid  shapes={len(result.tiles)}"
        f"  groups={len(result.groups)}  time={elapsed:.1f}s[/dim]"
    )
    if result.failed_tiles or result.failed_groups:
        console.print(
            f"[yellow]{len(result.failed_tiles)} tiles and "
            f"{len(result.failed_groups)} colour groups failed (see log)[/yellow]"
        )


# -- detect-size command -----------------------------------------------

@app.command("detect-size")
def detect_size(
    image: Path = typer.Argument(..., help="Path to the source image"),
    transparency_is_white: bool = typer.Option(
        _DEFAULTS.transparency_is_white, "--transparent-white/--transparent-skip",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Suggest a shape size for IMAGE from its pixel pattern."""
    _setup_logging(verbose)

    if not image.exists():
        console.print(f"[red]No such image: {image}[/red]")
        raise typer.Exit(1)

    cfg = MosaicConfig(transparency_is_white=transparency_is_white)
    detected = detect_shape_size(SourceImage.from_path(image), cfg)
    how = "heuristic" if detected.fell_back else "pixel pattern"
    console.print(
        f"[green]✓[/green] Detected optimal shape size: "
        f"[bold]{detected.value:.3f}px[/bold]  [dim]({how})[/dim]"
    )


if __name__ == "__main__":
    app()
