from __future__ import annotations

import io
import mimetypes
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image


@dataclass(frozen=True)
class PhotoRequirements:
    """
    Fixed requirements for a USCIS-style digital photo.

    width / height:
        Output canvas in pixels. 600x600 is 2x2 inches at 300 DPI.
    min_head_height / max_head_height:
        Acceptable head height in pixels (50%–69% of the photo height).
    background_color:
        RGB fill for everything that is not the subject.
    max_file_size_kb:
        Largest accepted upload.
    allowed_file_types:
        Accepted upload MIME types.
    """
    width: int = 600
    height: int = 600
    min_head_height: int = 300
    max_head_height: int = 414
    background_color: Tuple[int, int, int] = (255, 255, 255)
    max_file_size_kb: int = 4048
    allowed_file_types: Tuple[str, ...] = ("image/jpeg", "image/png", "image/jpg")
    dpi: int = 300

    @property
    def background_rgba(self) -> Tuple[int, int, int, int]:
        r, g, b = self.background_color
        return (r, g, b, 255)

    @property
    def head_ratio_range(self) -> Tuple[float, float]:
        return (self.min_head_height / float(self.height), self.max_head_height / float(self.height))


PHOTO_REQUIREMENTS = PhotoRequirements()


class CapabilityTier(str, Enum):
    """How much segmentation work the runtime can afford."""
    FULL = "full"
    CONSTRAINED = "constrained"
    FORCED = "forced"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {CapabilityTier.FULL: 0, CapabilityTier.CONSTRAINED: 1, CapabilityTier.FORCED: 2}


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True, order="C")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class SourceImage:
    """Decoded upload: H x W x 4 uint8 RGBA, row-major. Never mutated."""
    pixels: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.pixels)
        if arr.ndim != 3 or arr.shape[2] != 4 or arr.dtype != np.uint8:
            raise ValueError(f"SourceImage expects HxWx4 uint8 pixels, got {arr.shape} {arr.dtype}")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise ValueError("SourceImage must not be empty")
        object.__setattr__(self, "pixels", _readonly(arr))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]


@dataclass(frozen=True, eq=False)
class ForegroundMask:
    """
    Per-pixel foreground decision for one SourceImage.

    `data` is either bool (hard) or float in [0, 1] (probability). Its shape is
    always (image.height, image.width) of the image it was computed for.
    """
    data: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.data)
        if arr.ndim != 2:
            raise ValueError(f"ForegroundMask expects a 2-D array, got shape {arr.shape}")
        if arr.dtype != np.bool_:
            arr = arr.astype(np.float32)
            if not np.isfinite(arr).all():
                raise ValueError("ForegroundMask scores must be finite")
            if arr.size and (arr.min() < 0.0 or arr.max() > 1.0):
                raise ValueError("ForegroundMask scores must lie within [0, 1]")
        object.__setattr__(self, "data", _readonly(arr))

    @property
    def shape(self) -> Tuple[int, int]:
        return (int(self.data.shape[0]), int(self.data.shape[1]))

    def matches(self, image: SourceImage) -> bool:
        return self.shape == (image.height, image.width)

    def is_background(self) -> np.ndarray:
        if self.data.dtype == np.bool_:
            return ~self.data
        return self.data < 0.5

    def foreground_fraction(self) -> float:
        return float(1.0 - self.is_background().mean()) if self.data.size else 0.0


class _NoOpMask:
    """Sentinel: no segmentation, the whole image is foreground."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_OP"


NO_OP = _NoOpMask()

MaskResult = Union[ForegroundMask, _NoOpMask]


@dataclass(frozen=True, eq=False)
class CompositeCanvas:
    """Fixed-size, fully opaque RGBA output of the compositor."""
    pixels: np.ndarray
    dpi: int = 300

    def __post_init__(self) -> None:
        arr = np.asarray(self.pixels)
        if arr.ndim != 3 or arr.shape[2] != 4 or arr.dtype != np.uint8:
            raise ValueError(f"CompositeCanvas expects HxWx4 uint8 pixels, got {arr.shape} {arr.dtype}")
        object.__setattr__(self, "pixels", _readonly(arr))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels), "RGBA")

    def to_png_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.to_image().save(buf, format="PNG", dpi=(self.dpi, self.dpi))
        return buf.getvalue()


@dataclass(frozen=True)
class PhotoUpload:
    """Raw upload as received from a caller: file name, declared MIME type, bytes."""
    filename: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def size_kb(self) -> float:
        return len(self.data) / 1024.0

    @staticmethod
    def from_path(path: str, content_type: Optional[str] = None) -> "PhotoUpload":
        """Read a file from disk; MIME type is guessed from the extension when not given."""
        if content_type is None:
            content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            data = f.read()
        return PhotoUpload(filename=os.path.basename(path), content_type=content_type, data=data)
