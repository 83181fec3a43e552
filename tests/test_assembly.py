"""End-to-end tests: mosaic assembly, rendering and the CLI."""

from __future__ import annotations

import io
import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from shape_mosaic.assembly import (
    Collaborators,
    SourceImage,
    detect_shape_size,
    generate_mosaic,
)
from shape_mosaic.cli import app
from shape_mosaic.config import BLACK, WHITE, MosaicConfig
from shape_mosaic.emitter import SceneEmitter
from shape_mosaic.grid import Grid
from shape_mosaic.image_io import make_comparison_grid, render_scene, scene_to_svg

RED = (1.0, 0.0, 0.0)
BLUE = (0.0, 0.0, 1.0)

# -- Fixtures ----------------------------------------------------------


def solid(width: int, height: int, rgb: tuple[int, int, int]) -> np.ndarray:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = rgb
    pixels[..., 3] = 255
    return pixels


@pytest.fixture
def red_source() -> SourceImage:
    return SourceImage.from_array(solid(40, 40, (255, 0, 0)), name="red")


@pytest.fixture
def split_source() -> SourceImage:
    """20x10 image, left half red, right half blue."""
    pixels = solid(20, 10, (255, 0, 0))
    pixels[:, 10:, :3] = (0, 0, 255)
    return SourceImage.from_array(pixels, name="split")


@pytest.fixture
def checker_pixels() -> np.ndarray:
    board = (np.indices((8, 8)).sum(axis=0) % 2).astype(np.uint8) * 255
    gray = np.kron(board, np.ones((8, 8), dtype=np.uint8))
    return np.repeat(gray[..., np.newaxis], 3, axis=2)


@pytest.fixture
def tmp_image(tmp_path: Path) -> Path:
    rng = np.random.default_rng(5)
    img = Image.fromarray(rng.integers(0, 256, (48, 64, 3), dtype=np.uint8))
    p = tmp_path / "photo.png"
    img.save(p)
    return p


class Notices(list):
    def __call__(self, message: str) -> None:
        self.append(message)


class FlakyEmitter(SceneEmitter):
    """Scene emitter that fails on chosen positions / colour groups."""

    def __init__(self, *args, bad_positions=(), bad_labels=(), **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.bad_positions = set(bad_positions)
        self.bad_labels = set(bad_labels)

    def create(self, kind, x, y, edge, fill):
        if (x, y) in self.bad_positions:
            raise RuntimeError("host refused shape")
        return super().create(kind, x, y, edge, fill)

    def union(self, handles, label):
        if label in self.bad_labels:
            raise RuntimeError("union failed")
        return super().union(handles, label)


# -- Assembly ----------------------------------------------------------

class TestGenerateMosaic:
    def test_uniform_image_merges(self, red_source: SourceImage) -> None:
        cfg = MosaicConfig(shape_size=10, tile_size_variation="4x")
        result = generate_mosaic(red_source, cfg)
        assert result.ok
        assert len(result.tiles) == 1
        shape = result.scene.shapes[0]
        assert (shape.x, shape.y, shape.size) == (0, 0, 40)
        assert shape.fill == pytest.approx(RED)
        assert result.scene.name == "Circle Mosaic"

    def test_one_shape_per_cell_at_1x(self, red_source: SourceImage) -> None:
        notices = Notices()
        cfg = MosaicConfig(shape_size=10, shape_type="square")
        result = generate_mosaic(red_source, cfg, notify=notices)
        assert len(result.scene.shapes) == 16
        assert {s.kind for s in result.scene.shapes} == {"square"}
        assert {s.size for s in result.scene.shapes} == {10}
        assert result.scene.name == "Square Mosaic"
        assert notices[-1] == "Mosaic created with 16 shapes."

    def test_duotone_forces_black_white(self) -> None:
        source = SourceImage.from_array(solid(20, 20, (10, 10, 10)))
        cfg = MosaicConfig(shape_size=5, duotone=True, tile_size_variation="4x", color_limit=9)
        result = generate_mosaic(source, cfg)
        ctx = result.context
        assert ctx.config.tile_size_variation == "1x"
        assert ctx.config.color_limit == 2
        assert ctx.palette == (BLACK, WHITE)
        assert len(result.tiles) == 16
        assert {s.fill for s in result.scene.shapes} == {BLACK}

    def test_duotone_refines_to_pixel_pitch(self, checker_pixels: np.ndarray) -> None:
        notices = Notices()
        source = SourceImage.from_array(checker_pixels)
        result = generate_mosaic(source, MosaicConfig(shape_size=9, duotone=True), notify=notices)
        assert "Refined: 8.000px (from 9px)" in notices
        assert result.context.cell_size == pytest.approx(8.0)
        assert len(result.tiles) == 64
        fills = {s.fill for s in result.scene.shapes}
        assert fills == {BLACK, WHITE}
        assert result.scene.shapes[0].fill == BLACK
        assert result.scene.shapes[1].fill == WHITE

    def test_sampler_timeout_uses_gradient(self, red_source: SourceImage) -> None:
        release = threading.Event()

        def stuck(pixels, w, h, tiw):
            release.wait(5)
            return Grid.uniform(w, h, RED, 0.3)

        notices = Notices()
        cfg = MosaicConfig(shape_size=10, sample_timeout=0.05)
        try:
            result = generate_mosaic(
                red_source, cfg,
                collaborators=Collaborators(sample_cells=stuck),
                notify=notices,
            )
        finally:
            release.set()
        assert result.ok
        assert result.used_fallback
        assert result.scene.shapes[0].fill == pytest.approx((0.3, 0.3, 0.5))
        assert len(result.tiles) == 16

    def test_export_failure_uses_gradient(self) -> None:
        def broken():
            raise OSError("cannot export")

        source = SourceImage(100, 50, export=broken)
        result = generate_mosaic(source, MosaicConfig(shape_size=10))
        assert result.ok
        assert result.used_fallback
        assert len(result.tiles) == 50

    def test_from_encoded_bytes(self) -> None:
        buf = io.BytesIO()
        Image.fromarray(solid(30, 20, (0, 0, 255))).save(buf, format="PNG")
        source = SourceImage.from_bytes(buf.getvalue(), name="blue")
        assert (source.width, source.height) == (30.0, 20.0)
        result = generate_mosaic(source, MosaicConfig(shape_size=10))
        assert len(result.tiles) == 6
        assert result.scene.shapes[0].fill == pytest.approx(BLUE)

    def test_large_grid_notice(self, red_source: SourceImage) -> None:
        notices = Notices()
        cfg = MosaicConfig(shape_size=10, large_grid_threshold=10)
        result = generate_mosaic(red_source, cfg, notify=notices)
        assert result.ok
        assert any(n.startswith("Warning: Grid is very large (4x4)") for n in notices)

    def test_color_groups(self, split_source: SourceImage) -> None:
        notices = Notices()
        cfg = MosaicConfig(shape_size=5, group_colors=True)
        result = generate_mosaic(split_source, cfg, notify=notices)
        assert set(result.groups) == {"255,0,0", "0,0,255"}
        labels = [g.label for g in result.scene.groups]
        assert labels == ["Color 255,0,0", "Color 0,0,255"]
        assert all(len(g.shapes) == 4 for g in result.scene.groups)
        assert result.scene.ungrouped == []
        assert notices[-1] == "Created 2 color groups."

    def test_failed_union_is_collected(self, split_source: SourceImage) -> None:
        emitter = FlakyEmitter("m", 20, 10, bad_labels={"Color 0,0,255"})
        cfg = MosaicConfig(shape_size=10, group_colors=True)
        result = generate_mosaic(split_source, cfg, emitter=emitter)
        assert result.ok
        assert result.failed_groups == ["0,0,255"]
        assert list(result.groups) == ["255,0,0"]
        assert len(emitter.scene.shapes) == 2

    def test_failed_tile_is_skipped(self, red_source: SourceImage) -> None:
        emitter = FlakyEmitter("m", 40, 40, bad_positions={(10.0, 10.0)})
        result = generate_mosaic(red_source, MosaicConfig(shape_size=10), emitter=emitter)
        assert result.ok
        assert result.failed_tiles == [(1, 1)]
        assert len(result.tiles) == 15
        assert result.completed == 15

    def test_rejected_merge_is_retiled(self, red_source: SourceImage) -> None:
        emitter = FlakyEmitter("m", 40, 40, bad_positions={(0.0, 0.0)})
        cfg = MosaicConfig(shape_size=10, tile_size_variation="4x")
        result = generate_mosaic(red_source, cfg, emitter=emitter)
        assert result.ok
        assert result.failed_tiles == [(0, 0)]
        layout = [(t.grid_x, t.grid_y, t.size) for t in result.tiles]
        assert layout == [
            (1, 0, 2), (3, 0, 1), (0, 1, 1), (3, 1, 1), (0, 2, 2), (2, 2, 2),
        ]
        assert result.completed == 15

    def test_empty_notice_sink_still_notified(self) -> None:
        def broken():
            raise OSError("cannot export")

        notices = Notices()
        assert not notices
        source = SourceImage(30, 30, export=broken)
        generate_mosaic(source, MosaicConfig(shape_size=10), notify=notices)
        assert notices == [
            "Could not read the image; using a placeholder gradient.",
            "Mosaic created with 9 shapes.",
        ]

    def test_abort_stops_submission(self, red_source: SourceImage) -> None:
        polls = []

        def should_abort() -> bool:
            polls.append(1)
            return len(polls) > 3

        notices = Notices()
        cfg = MosaicConfig(shape_size=10, group_colors=True)
        result = generate_mosaic(red_source, cfg, notify=notices, should_abort=should_abort)
        assert result.aborted
        assert len(result.tiles) == 3
        assert result.groups == {}
        assert notices[-1] == "Mosaic stopped after 3 shapes."

    def test_progress_reaches_total(self, red_source: SourceImage) -> None:
        calls = []
        generate_mosaic(
            red_source, MosaicConfig(shape_size=10),
            progress=lambda done, total: calls.append((done, total)),
        )
        assert calls[0] == (1, 16)
        assert calls[-1] == (16, 16)

    def test_invalid_geometry(self) -> None:
        source = SourceImage.from_array(solid(10, 10, (0, 0, 0)), width=0)
        emitter = SceneEmitter("m", 0, 10)
        result = generate_mosaic(source, MosaicConfig(), emitter=emitter)
        assert not result.ok
        assert result.error.startswith("Unable to create mosaic:")
        assert emitter.discarded

    def test_empty_sample_grid(self, red_source: SourceImage) -> None:
        def empty(pixels, w, h, tiw):
            return Grid.from_cells([])

        result = generate_mosaic(
            red_source, MosaicConfig(shape_size=10),
            collaborators=Collaborators(sample_cells=empty),
        )
        assert result.error == "Unable to create mosaic: Image data is invalid"

    def test_unexpected_error_is_reported(self, red_source: SourceImage) -> None:
        def explode() -> bool:
            raise RuntimeError("host went away")

        emitter = SceneEmitter("m", 40, 40)
        result = generate_mosaic(
            red_source, MosaicConfig(shape_size=10), emitter=emitter, should_abort=explode,
        )
        assert result.error == "Error creating mosaic. See log for details."
        assert emitter.discarded

    def test_frequent_palette(self, split_source: SourceImage) -> None:
        cfg = MosaicConfig(shape_size=5, color_limit=1, color_set="Frequent")
        result = generate_mosaic(split_source, cfg)
        assert result.context.palette == (RED,)
        assert {s.fill for s in result.scene.shapes} == {RED}

    def test_preset_palette(self, split_source: SourceImage) -> None:
        cfg = MosaicConfig(shape_size=5, color_limit=3, color_set="CMYK")
        result = generate_mosaic(split_source, cfg)
        assert len(result.context.palette) == 3
        assert all(s.fill in result.context.palette for s in result.scene.shapes)

    def test_sampled_palette(self, split_source: SourceImage) -> None:
        cfg = MosaicConfig(shape_size=5, color_limit=2, color_set="Sampled")
        result = generate_mosaic(split_source, cfg)
        assert set(result.context.palette) == {RED, BLUE}

    def test_sampled_palette_failure_falls_back(self, split_source: SourceImage) -> None:
        def broken(pixels, limit, tiw):
            raise RuntimeError("sampler crashed")

        cfg = MosaicConfig(shape_size=5, color_limit=1, color_set="Sampled")
        result = generate_mosaic(
            split_source, cfg, collaborators=Collaborators(sample_colors=broken),
        )
        assert result.ok
        assert result.context.palette == (RED,)


# -- Shape-size detection ----------------------------------------------

class TestDetectShapeSize:
    def test_pixel_pattern(self, checker_pixels: np.ndarray) -> None:
        detected = detect_shape_size(SourceImage.from_array(checker_pixels))
        assert detected.value == pytest.approx(8.0)
        assert not detected.fell_back

    def test_heuristic_without_pattern(self) -> None:
        source = SourceImage.from_array(solid(600, 600, (40, 80, 120)))
        detected = detect_shape_size(source)
        assert detected.value == 20.0
        assert detected.fell_back

    def test_timeout(self) -> None:
        release = threading.Event()

        def slow(pixels, w, h, tiw):
            release.wait(5)
            return 4.0

        source = SourceImage.from_array(solid(90, 90, (0, 0, 0)))
        try:
            detected = detect_shape_size(
                source, MosaicConfig(pattern_timeout=0.05), Collaborators(detect_cell_size=slow),
            )
        finally:
            release.set()
        assert detected.timed_out
        assert detected.value == 8.0

    def test_export_failure(self) -> None:
        def broken():
            raise OSError("gone")

        detected = detect_shape_size(SourceImage(3000, 1200, export=broken))
        assert detected.failed
        assert detected.value == 32.0

    def test_non_positive_result(self) -> None:
        source = SourceImage.from_array(solid(300, 300, (0, 0, 0)))
        detected = detect_shape_size(
            source, collaborators=Collaborators(detect_cell_size=lambda *a: 0.0),
        )
        assert detected.fell_back
        assert detected.value == 10.0

    def test_numpy_scalar_result(self) -> None:
        source = SourceImage.from_array(solid(300, 300, (0, 0, 0)))
        detected = detect_shape_size(
            source, collaborators=Collaborators(detect_cell_size=lambda *a: np.int64(12)),
        )
        assert not detected.fell_back
        assert detected.value == 12.0
        assert type(detected.value) is float


# -- Rendering ---------------------------------------------------------

class TestRendering:
    def test_render_scene(self, split_source: SourceImage) -> None:
        result = generate_mosaic(split_source, MosaicConfig(shape_size=10, shape_type="square"))
        img = render_scene(result.scene)
        assert img.size == (20, 10)
        assert img.getpixel((5, 5)) == (255, 0, 0)
        assert img.getpixel((15, 5)) == (0, 0, 255)

    def test_render_scale(self, split_source: SourceImage) -> None:
        result = generate_mosaic(split_source, MosaicConfig(shape_size=10))
        assert render_scene(result.scene, scale=2.0).size == (40, 20)

    def test_svg_groups(self, split_source: SourceImage) -> None:
        cfg = MosaicConfig(shape_size=5, group_colors=True)
        svg = scene_to_svg(generate_mosaic(split_source, cfg).scene)
        assert svg.startswith("<svg")
        assert "<title>Circle Mosaic</title>" in svg
        assert '<g id="Color 255,0,0" fill="#ff0000">' in svg
        assert svg.count("<circle") == 8

    def test_comparison_grid(self, tmp_image: Path, tmp_path: Path) -> None:
        mosaic = Image.new("RGB", (64, 48), (0, 0, 0))
        out = tmp_path / "cmp.png"
        make_comparison_grid(tmp_image, mosaic, out)
        with Image.open(out) as img:
            assert img.size == (2 * 64 + 8, 48 + 36)


# -- CLI ---------------------------------------------------------------

class TestCli:
    runner = CliRunner()

    def test_create(self, tmp_image: Path) -> None:
        result = self.runner.invoke(app, ["create", str(tmp_image), "-s", "8"])
        assert result.exit_code == 0, result.output
        assert (tmp_image.parent / "photo_mosaic.png").exists()
        assert (tmp_image.parent / "photo_mosaic.svg").exists()

    def test_create_custom_output(self, tmp_image: Path, tmp_path: Path) -> None:
        out = tmp_path / "out" / "m.png"
        result = self.runner.invoke(
            app, ["create", str(tmp_image), "-o", str(out), "--no-svg", "--duotone"],
        )
        assert result.exit_code == 0, result.output
        assert out.exists()
        assert not out.with_suffix(".svg").exists()

    def test_bad_option(self, tmp_image: Path) -> None:
        result = self.runner.invoke(app, ["create", str(tmp_image), "--variation", "3x"])
        assert result.exit_code == 2

    def test_missing_image(self, tmp_path: Path) -> None:
        result = self.runner.invoke(app, ["create", str(tmp_path / "nope.png")])
        assert result.exit_code == 1

    def test_detect_size(self, tmp_image: Path) -> None:
        result = self.runner.invoke(app, ["detect-size", str(tmp_image)])
        assert result.exit_code == 0, result.output
        assert "Detected optimal shape size" in result.output
