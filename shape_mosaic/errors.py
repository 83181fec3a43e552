"""Exceptions raised inside a mosaic run."""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for errors that end a mosaic run."""


class InvalidGeometryError(MosaicError):
    """Derived grid geometry is unusable (no columns / rows, empty samples)."""
