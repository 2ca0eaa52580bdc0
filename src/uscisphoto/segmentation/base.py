from __future__ import annotations

from typing import Protocol, runtime_checkable

from uscisphoto.core.models import MaskResult, SourceImage


@runtime_checkable
class SegmentationStrategy(Protocol):
    """
    One way of deciding, per pixel, subject vs. background.

    segment() either returns a ForegroundMask with the image's exact shape,
    returns NO_OP (keep everything), or raises a SegmentationError. It must
    not keep state between calls.
    """
    name: str

    def segment(self, image: SourceImage) -> MaskResult:
        ...
