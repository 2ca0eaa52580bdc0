"""
Place a (segmented) source image on the fixed-size, solid-colour canvas.
"""

from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps

from uscisphoto.core.errors import CompositionFailure, DecodeError
from uscisphoto.core.imaging import fit_size, load_image_rgba, resize_mask, resize_rgba
from uscisphoto.core.models import (
    PHOTO_REQUIREMENTS,
    CompositeCanvas,
    ForegroundMask,
    MaskResult,
    PhotoRequirements,
    SourceImage,
)

logger = logging.getLogger(__name__)


def centered_offset(target: Tuple[int, int], scaled: Tuple[int, int]) -> Tuple[int, int]:
    """Top-left of `scaled` centred in `target`; negative when it overflows."""
    return (target[0] - scaled[0]) // 2, (target[1] - scaled[1]) // 2


def _paste(canvas: np.ndarray, tile: np.ndarray, left: int, top: int) -> None:
    """
    Copy `tile` into `canvas` at (left, top), clipping whatever falls outside.
    """
    H, W = canvas.shape[:2]
    h, w = tile.shape[:2]

    dst_left = max(0, left)
    dst_top = max(0, top)
    dst_right = min(W, left + w)
    dst_bottom = min(H, top + h)
    if dst_left >= dst_right or dst_top >= dst_bottom:
        return

    src_left = dst_left - left
    src_top = dst_top - top
    canvas[dst_top:dst_bottom, dst_left:dst_right] = tile[
        src_top : src_top + (dst_bottom - dst_top),
        src_left : src_left + (dst_right - dst_left),
    ]


def _flatten(rgba: np.ndarray, background: np.ndarray, bg_map: np.ndarray | None) -> np.ndarray:
    """Blend any source transparency over the background and paint background pixels."""
    rgb = rgba[:, :, :3].astype(np.float32)
    alpha = rgba[:, :, 3:4].astype(np.float32) / 255.0
    out = rgb * alpha + background.reshape(1, 1, 3) * (1.0 - alpha)
    out = np.clip(np.round(out), 0, 255).astype(np.uint8)
    if bg_map is not None:
        out[bg_map] = background.astype(np.uint8)
    tile = np.empty(rgba.shape[:2] + (4,), dtype=np.uint8)
    tile[:, :, :3] = out
    tile[:, :, 3] = 255
    return tile


def composite(
    image: SourceImage,
    mask: MaskResult,
    requirements: PhotoRequirements = PHOTO_REQUIREMENTS,
) -> CompositeCanvas:
    """
    Scale `image` to fit the requirements' canvas (aspect kept), centre it and
    replace every background pixel of `mask` with the background colour.
    NO_OP keeps every source pixel.
    """
    target = (requirements.width, requirements.height)
    if isinstance(mask, ForegroundMask) and not mask.matches(image):
        raise CompositionFailure(
            f"Mask shape {mask.shape} does not match image {image.height}x{image.width}."
        )

    try:
        canvas = np.empty((target[1], target[0], 4), dtype=np.uint8)
        canvas[:, :] = requirements.background_rgba

        _, scaled_w, scaled_h = fit_size(image.width, image.height, *target)
        scaled = resize_rgba(image.pixels, (scaled_w, scaled_h))

        bg_map = None
        if isinstance(mask, ForegroundMask):
            # Nearest sampling: every background output pixel comes from a background source pixel.
            bg_map = resize_mask(mask.is_background(), (scaled_w, scaled_h))

        background = np.asarray(requirements.background_color, dtype=np.float32)
        tile = _flatten(scaled, background, bg_map)

        left, top = centered_offset(target, (scaled_w, scaled_h))
        _paste(canvas, tile, left, top)
    except (cv2.error, MemoryError, ValueError) as e:
        raise CompositionFailure(f"Compositing failed: {e}") from e

    logger.info(
        "Composited %dx%d -> %dx%d at offset (%d, %d) on %dx%d canvas",
        image.width, image.height, scaled_w, scaled_h, left, top, target[0], target[1],
    )
    return CompositeCanvas(canvas, dpi=requirements.dpi)


def scale_and_center(data: bytes, requirements: PhotoRequirements = PHOTO_REQUIREMENTS) -> CompositeCanvas:
    """
    Degraded path: fit the original upload bytes onto the background canvas
    with Pillow only. No segmentation.
    """
    target = (requirements.width, requirements.height)
    try:
        img = load_image_rgba(data)
        fitted = ImageOps.contain(img, target, Image.LANCZOS)
        canvas = Image.new("RGBA", target, requirements.background_rgba)
        canvas.alpha_composite(fitted, dest=centered_offset(target, fitted.size))
        pixels = np.asarray(canvas.convert("RGB").convert("RGBA"), dtype=np.uint8)
    except (DecodeError, OSError, ValueError, MemoryError) as e:
        raise CompositionFailure(f"Scale-and-center fallback failed: {e}") from e

    logger.warning("Used scale-and-center fallback (no background removal)")
    return CompositeCanvas(pixels, dpi=requirements.dpi)
