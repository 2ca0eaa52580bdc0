"""
Image decode and resampling helpers shared by the segmenters and the compositor.

Pixels travel through the pipeline as RGBA numpy arrays; Pillow is used for
decoding/encoding and OpenCV for resampling.
"""

from __future__ import annotations

import io
import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from uscisphoto.core.errors import DecodeError
from uscisphoto.core.models import SourceImage

logger = logging.getLogger(__name__)

# Refuse to decode anything above ~36 megapixels (decompression bombs).
MAX_DECODE_PIXELS = 36_000_000


def load_image_rgba(data: bytes) -> Image.Image:
    """Open bytes with Pillow, apply EXIF orientation, return an RGBA image."""
    img = Image.open(io.BytesIO(data))
    w, h = img.size
    if w * h > MAX_DECODE_PIXELS:
        raise DecodeError(
            f"Image resolution {w}x{h} is too large to process safely "
            f"(limit {MAX_DECODE_PIXELS // 1_000_000} megapixels)."
        )
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    return img


def decode_image(data: bytes) -> SourceImage:
    """
    Decode uploaded bytes into a SourceImage.

    Raises DecodeError for empty, corrupt or unsupported input.
    """
    if not data:
        raise DecodeError("Empty file; nothing to decode.")
    try:
        img = load_image_rgba(data)
        img.load()
        pixels = np.asarray(img, dtype=np.uint8)
    except DecodeError:
        raise
    except Image.DecompressionBombError as e:
        raise DecodeError(f"Image is too large to process safely: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    source = SourceImage(pixels)
    logger.debug("Decoded image %dx%d", source.width, source.height)
    return source


def fit_size(src_w: int, src_h: int, box_w: int, box_h: int) -> Tuple[float, int, int]:
    """Uniform scale that fits (src_w, src_h) inside the box, plus the scaled size."""
    if src_w <= 0 or src_h <= 0:
        raise ValueError("source dimensions must be > 0")
    scale = min(box_w / float(src_w), box_h / float(src_h))
    new_w = max(1, int(round(src_w * scale)))
    new_h = max(1, int(round(src_h * scale)))
    return scale, new_w, new_h


def resize_rgba(pixels: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Resize an RGBA/RGB array to (width, height); area for shrinking, Lanczos for enlarging."""
    h, w = pixels.shape[:2]
    new_w, new_h = size
    if (new_w, new_h) == (w, h):
        return np.array(pixels)
    interp = cv2.INTER_AREA if (new_w < w or new_h < h) else cv2.INTER_LANCZOS4
    return cv2.resize(np.ascontiguousarray(pixels), (new_w, new_h), interpolation=interp)


def resize_mask(mask: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """
    Resize a 2-D mask to (width, height).

    Bool masks use nearest sampling, score maps bilinear. cv2.resize samples at
    pixel centres, so the mask never drifts by more than half a source pixel.
    """
    h, w = mask.shape[:2]
    if (w, h) == tuple(size):
        return np.array(mask)
    if mask.dtype == np.bool_:
        resized = cv2.resize(mask.astype(np.uint8), size, interpolation=cv2.INTER_NEAREST)
        return resized.astype(bool)
    return cv2.resize(mask.astype(np.float32), size, interpolation=cv2.INTER_LINEAR)

