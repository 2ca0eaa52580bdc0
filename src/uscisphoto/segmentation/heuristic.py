"""
Heuristic background segmentation without a model.

Assumes the backdrop touches the image border and the subject does not:
the backdrop colour is estimated from a border band, then every pixel close
to it in RGB is background, except skin-toned pixels and (against a neutral
backdrop) clearly saturated ones.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from uscisphoto.core.config import HeuristicSettings
from uscisphoto.core.errors import HeuristicSegmentationFailed
from uscisphoto.core.models import ForegroundMask, SourceImage

logger = logging.getLogger(__name__)

SKIN_LOWER_RGB = (60, 30, 20)
SKIN_UPPER_RGB = (255, 220, 180)


def border_width(width: int, height: int, settings: HeuristicSettings) -> int:
    band = max(settings.min_border_px, int(min(width, height) * settings.border_fraction))
    return max(1, min(band, height // 2 or 1, width // 2 or 1))


def sample_border(rgb: np.ndarray, band: int) -> np.ndarray:
    """All pixels within `band` of any edge, each pixel once, as an N x 3 array."""
    h, w = rgb.shape[:2]
    top = rgb[:band, :, :]
    bottom = rgb[max(band, h - band):, :, :]
    middle = rgb[band:max(band, h - band), :, :]
    left = middle[:, :band, :]
    right = middle[:, max(band, w - band):, :]
    return np.concatenate(
        [top.reshape(-1, 3), bottom.reshape(-1, 3), left.reshape(-1, 3), right.reshape(-1, 3)],
        axis=0,
    )


def estimate_background(samples: np.ndarray, settings: HeuristicSettings) -> np.ndarray:
    """K x 3 float array of backdrop colours, most likely first."""
    if samples.size == 0:
        raise ValueError("no border samples")
    samples = samples.astype(np.float32)

    if settings.estimator == "mean":
        return samples.mean(axis=0, keepdims=True)

    step = float(settings.quantize_step)
    quantized = np.clip(np.round(samples / step) * step, 0, 255).astype(np.int32)
    colors, counts = np.unique(quantized, axis=0, return_counts=True)
    order = np.argsort(-counts, kind="stable")
    return colors[order[: settings.top_k]].astype(np.float32)


def skin_mask(rgb: np.ndarray) -> np.ndarray:
    r = rgb[:, :, 0].astype(np.int16)
    g = rgb[:, :, 1].astype(np.int16)
    b = rgb[:, :, 2].astype(np.int16)
    lo, hi = SKIN_LOWER_RGB, SKIN_UPPER_RGB
    in_band = (
        (r >= lo[0]) & (r <= hi[0])
        & (g >= lo[1]) & (g <= hi[1])
        & (b >= lo[2]) & (b <= hi[2])
    )
    return in_band & (r > g) & (g > b)


def _saturation(rgb: np.ndarray) -> np.ndarray:
    hsv = cv2.cvtColor(np.ascontiguousarray(rgb, dtype=np.uint8), cv2.COLOR_RGB2HSV)
    return hsv[:, :, 1].astype(np.float32) / 255.0


def _color_saturation(color: np.ndarray) -> float:
    hi = float(color.max())
    return 0.0 if hi <= 0 else (hi - float(color.min())) / hi


class HeuristicSegmenter:
    """Border-colour distance classifier with skin and saturation overrides."""

    name = "heuristic"

    def __init__(self, settings: Optional[HeuristicSettings] = None):
        self.settings = settings or HeuristicSettings()

    def classify(self, rgb: np.ndarray) -> np.ndarray:
        """Boolean foreground map for an HxWx3 uint8 array."""
        s = self.settings
        h, w = rgb.shape[:2]

        work = rgb
        if s.blur_sigma > 0:
            work = cv2.GaussianBlur(np.ascontiguousarray(rgb), (0, 0), s.blur_sigma)

        band = border_width(w, h, s)
        bg_colors = estimate_background(sample_border(work, band), s)
        logger.info(
            "Detected background colour(s): %s (border %dpx, %s)",
            [tuple(int(round(c)) for c in col) for col in bg_colors], band, s.estimator,
        )

        pixels = work.astype(np.float32)
        dist = np.full((h, w), np.inf, dtype=np.float32)
        for color in bg_colors:
            d = np.sqrt(((pixels - color.reshape(1, 1, 3)) ** 2).sum(axis=2))
            np.minimum(dist, d, out=dist)

        foreground = dist >= s.tolerance
        if s.skin_override:
            foreground |= skin_mask(work)
        if _color_saturation(bg_colors[0]) <= s.saturation_guard:
            foreground |= _saturation(work) > s.saturation_guard
        return foreground

    def segment(self, image: SourceImage) -> ForegroundMask:
        try:
            foreground = self.classify(image.rgb)
            mask = ForegroundMask(foreground)
        except (cv2.error, MemoryError, ValueError) as e:
            raise HeuristicSegmentationFailed(f"Heuristic segmentation failed: {e}") from e

        logger.info("Heuristic segmentation: %.1f%% foreground", mask.foreground_fraction() * 100)
        return mask
