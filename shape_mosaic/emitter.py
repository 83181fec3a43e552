"""Shape emission: the seam between tiling and whatever draws the shapes."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from shape_mosaic.config import RGB, SHAPE_TYPES

logger = logging.getLogger(__name__)


class ShapeEmitter(Protocol):
    """Anything that can place shapes and union them into compound shapes."""

    def create(self, kind: str, x: float, y: float, edge: float, fill: RGB) -> object:
        """Place one shape and return an opaque handle to it."""
        ...

    def union(self, handles: Sequence[object], label: str) -> object:
        """Merge *handles* into one compound shape; may raise on failure."""
        ...

    def discard(self) -> None:
        """Drop everything emitted so far (the run was aborted)."""
        ...


@dataclass
class Shape:
    kind: str
    x: float
    y: float
    size: float
    fill: RGB


@dataclass
class ShapeGroup:
    label: str
    fill: RGB
    shapes: list[Shape]


@dataclass
class Scene:
    """In-memory mosaic frame: placed shapes plus colour-group unions."""

    name: str
    width: float
    height: float
    shapes: list[Shape] = field(default_factory=list)
    groups: list[ShapeGroup] = field(default_factory=list)

    @property
    def ungrouped(self) -> list[Shape]:
        grouped = {id(s) for g in self.groups for s in g.shapes}
        return [s for s in self.shapes if id(s) not in grouped]

    @property
    def children(self) -> list[Shape | ShapeGroup]:
        """Top-level nodes: ungrouped shapes first, then unions."""
        return [*self.ungrouped, *self.groups]


class SceneEmitter:
    """Emitter that records shapes into a :class:`Scene`."""

    def __init__(self, name: str, width: float, height: float) -> None:
        self.scene = Scene(name=name, width=width, height=height)
        self.discarded = False

    def create(self, kind: str, x: float, y: float, edge: float, fill: RGB) -> Shape:
        if kind not in SHAPE_TYPES:
            msg = f"Unknown shape kind '{kind}'"
            raise ValueError(msg)
        if not math.isfinite(edge) or edge <= 0:
            msg = f"Degenerate shape size {edge}"
            raise ValueError(msg)
        shape = Shape(kind, x, y, edge, fill)
        self.scene.shapes.append(shape)
        return shape

    def union(self, handles: Sequence[object], label: str) -> ShapeGroup:
        shapes = [h for h in handles if isinstance(h, Shape)]
        if not shapes or len(shapes) != len(handles):
            msg = f"Cannot union {len(handles)} handles for '{label}'"
            raise ValueError(msg)
        group = ShapeGroup(label=label, fill=shapes[0].fill, shapes=shapes)
        self.scene.groups.append(group)
        return group

    def discard(self) -> None:
        logger.debug("Discarding scene '%s'", self.scene.name)
        self.scene.shapes.clear()
        self.scene.groups.clear()
        self.discarded = True
