from __future__ import annotations

import logging

from uscisphoto.core.models import NO_OP, MaskResult, SourceImage

logger = logging.getLogger(__name__)


class BasicSegmenter:
    """Terminal fallback: no segmentation, the whole image is kept."""

    name = "basic"

    def segment(self, image: SourceImage) -> MaskResult:
        if not isinstance(image, SourceImage):
            raise ValueError(f"expected a SourceImage, got {type(image).__name__}")
        logger.info("Basic fallback: keeping the whole %dx%d image", image.width, image.height)
        return NO_OP
