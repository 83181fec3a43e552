"""Pixel-pattern analysis: recover the pitch of pixel-art / dithered sources.

The mosaic only needs one number out of this module - how many source
pixels make up one logical pixel - but getting it exactly right is what
lets a duotone mosaic reproduce a dithered image dot for dot.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.signal import find_peaks

from shape_mosaic.color_utils import round_half_up
from shape_mosaic.sampler import LUMA, split_channels

logger = logging.getLogger(__name__)

MIN_PERIOD = 2
MIN_PEAK_CORRELATION = 0.1
DIVISOR_PREFERENCE = 0.8


def _grayscale(pixels: np.ndarray, transparency_is_white: bool) -> np.ndarray:
    rgb, alpha = split_channels(pixels)
    if transparency_is_white:
        rgb = rgb * alpha[..., np.newaxis] + (1.0 - alpha[..., np.newaxis])
    return rgb @ LUMA


def edge_signal(gray: np.ndarray, axis: int) -> np.ndarray:
    """Summed absolute gradient along *axis* (1 = columns, 0 = rows)."""
    gradient = np.abs(np.diff(gray, axis=axis))
    return np.sum(gradient, axis=1 - axis)


def find_period(
    signal: np.ndarray,
    min_period: int = MIN_PERIOD,
    max_period: int | None = None,
) -> int | None:
    """Dominant period of *signal* from its autocorrelation peaks.

    Peaks are weighted by ``1 / sqrt(period)`` so the fundamental beats its
    harmonics; a smaller divisor of the winner within 80% of its weight is
    preferred. Returns ``None`` when the signal has no usable periodicity.
    """
    signal = np.asarray(signal, dtype=np.float64)
    n = len(signal)
    std = float(np.std(signal)) if n else 0.0
    if n < 2 * min_period or std == 0.0:
        return None

    norm = (signal - np.mean(signal)) / std
    autocorr = np.correlate(norm, norm, mode="full")[n - 1:] / n

    max_p = n // 2 if max_period is None else min(max_period, n // 2)
    if max_p <= min_period:
        return None

    peaks, _ = find_peaks(autocorr[: max_p + 1])
    peaks = peaks[peaks >= min_period]
    peaks = peaks[autocorr[peaks] > MIN_PEAK_CORRELATION]
    if len(peaks) == 0:
        return None

    weighted = autocorr[peaks] / np.sqrt(peaks)
    best = int(np.argmax(weighted))
    best_period = int(peaks[best])
    best_weight = float(weighted[best])

    for period, weight in zip(peaks, weighted, strict=False):
        if period >= best_period:
            break
        if best_period % period == 0 and weight >= best_weight * DIVISOR_PREFERENCE:
            return int(period)
    return best_period


def detect_pixel_pitch(
    pixels: np.ndarray, transparency_is_white: bool = True,
) -> float | None:
    """Source pixels per logical pixel, or ``None`` if no grid pattern shows."""
    gray = _grayscale(pixels, transparency_is_white)
    periods = [
        p for p in (
            find_period(edge_signal(gray, axis=1)),
            find_period(edge_signal(gray, axis=0)),
        )
        if p is not None
    ]
    if not periods:
        logger.debug("No periodic pixel pattern found")
        return None
    pitch = float(np.mean(periods))
    logger.debug("Detected pixel pitch %.2f from periods %s", pitch, periods)
    return pitch


def measure_pixel_dimensions(
    pixels: np.ndarray, transparency_is_white: bool = True,
) -> tuple[int, int]:
    """Logical pixel dimensions (columns, rows) of a pixel-art source.

    Raises:
        ValueError: If no pixel grid pattern can be detected.
    """
    pitch = detect_pixel_pitch(pixels, transparency_is_white)
    if pitch is None:
        msg = "no pixel grid pattern detected"
        raise ValueError(msg)
    h, w = np.asarray(pixels).shape[:2]
    return max(1, round_half_up(w / pitch)), max(1, round_half_up(h / pitch))


def detect_cell_size(
    pixels: np.ndarray,
    image_width: float,
    image_height: float,
    transparency_is_white: bool = True,
) -> float:
    """Estimate a good shape size in image units from the pixel pattern.

    Raises:
        ValueError: If no pattern is found; callers fall back to a heuristic.
    """
    pitch = detect_pixel_pitch(pixels, transparency_is_white)
    if pitch is None:
        msg = "no pixel grid pattern detected"
        raise ValueError(msg)
    h, w = np.asarray(pixels).shape[:2]
    scale = (image_width / w + image_height / h) / 2
    return pitch * scale
