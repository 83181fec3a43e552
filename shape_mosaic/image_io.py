"""Image loading, scene rendering (PNG / SVG) and comparison images."""

from __future__ import annotations

import io
from html import escape
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from shape_mosaic.color_utils import to_uint8
from shape_mosaic.config import RGB
from shape_mosaic.emitter import Scene, Shape


def load_pixels(path: str | Path) -> np.ndarray:
    """Load an image as an (H, W, 4) uint8 RGBA array."""
    with Image.open(path) as img:
        return np.array(img.convert("RGBA"), dtype=np.uint8)


def decode_image_bytes(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, ...) to (H, W, 4) uint8 RGBA."""
    with Image.open(io.BytesIO(data)) as img:
        return np.array(img.convert("RGBA"), dtype=np.uint8)


def image_size(path: str | Path) -> tuple[int, int]:
    """(width, height) read from the file header without decoding pixels."""
    with Image.open(path) as img:
        return img.width, img.height


def _hex(color: RGB) -> str:
    r, g, b = to_uint8(color)
    return f"#{r:02x}{g:02x}{b:02x}"


def _draw_shape(draw: ImageDraw.ImageDraw, shape: Shape, scale: float) -> None:
    x0 = round(shape.x * scale)
    y0 = round(shape.y * scale)
    x1 = max(x0, round((shape.x + shape.size) * scale) - 1)
    y1 = max(y0, round((shape.y + shape.size) * scale) - 1)
    fill = to_uint8(shape.fill)
    if shape.kind == "circle":
        draw.ellipse([x0, y0, x1, y1], fill=fill)
    else:
        draw.rectangle([x0, y0, x1, y1], fill=fill)


def render_scene(
    scene: Scene,
    scale: float = 1.0,
    background: tuple[int, int, int] = (255, 255, 255),
) -> Image.Image:
    """Rasterise a scene; each scene unit becomes *scale* output pixels."""
    width = max(1, round(scene.width * scale))
    height = max(1, round(scene.height * scale))
    canvas = Image.new("RGB", (width, height), background)
    draw = ImageDraw.Draw(canvas)
    for shape in scene.shapes:
        _draw_shape(draw, shape, scale)
    return canvas


def _svg_shape(shape: Shape, with_fill: bool = True) -> str:
    fill = f' fill="{_hex(shape.fill)}"' if with_fill else ""
    if shape.kind == "circle":
        r = shape.size / 2
        return (
            f'<circle cx="{shape.x + r:.3f}" cy="{shape.y + r:.3f}" '
            f'r="{r:.3f}"{fill}/>'
        )
    return (
        f'<rect x="{shape.x:.3f}" y="{shape.y:.3f}" '
        f'width="{shape.size:.3f}" height="{shape.size:.3f}"{fill}/>'
    )


def scene_to_svg(scene: Scene) -> str:
    """SVG document for a scene; each colour group becomes one ``<g>``."""
    lines = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{scene.width:.3f}" '
        f'height="{scene.height:.3f}" viewBox="0 0 {scene.width:.3f} {scene.height:.3f}">',
        f"<title>{escape(scene.name)}</title>",
    ]
    lines.extend(_svg_shape(s) for s in scene.ungrouped)
    for group in scene.groups:
        lines.append(f'<g id="{escape(group.label)}" fill="{_hex(group.fill)}">')
        lines.extend(_svg_shape(s, with_fill=False) for s in group.shapes)
        lines.append("</g>")
    lines.append("</svg>")
    return "\n".join(lines)


def save_svg(scene: Scene, path: str | Path) -> None:
    Path(path).write_text(scene_to_svg(scene), encoding="utf-8")


LABEL_BAND = 36
PANEL_GAP = 8
LABEL_FONT = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"


def _label_font(size: int = 18) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    try:
        return ImageFont.truetype(LABEL_FONT, size)
    except OSError:
        return ImageFont.load_default()


def make_comparison_grid(
    original_path: str | Path,
    mosaic: Image.Image,
    output_path: str | Path,
) -> None:
    """Save the source next to its mosaic with a caption band on top.

    The source is resampled to the mosaic's pixel size so both panels line
    up.
    """
    width, height = mosaic.size
    with Image.open(original_path) as src:
        source = src.convert("RGB").resize(mosaic.size, Image.LANCZOS)

    sheet = Image.new("RGB", (2 * width + PANEL_GAP, height + LABEL_BAND), (30, 30, 30))
    draw = ImageDraw.Draw(sheet)
    font = _label_font()
    for left, panel, caption in (
        (0, source, "Original"),
        (width + PANEL_GAP, mosaic.convert("RGB"), "Mosaic"),
    ):
        sheet.paste(panel, (left, LABEL_BAND))
        draw.text(
            (left + width // 2, LABEL_BAND // 2), caption,
            fill=(220, 220, 220), font=font, anchor="mm",
        )
    sheet.save(output_path)
