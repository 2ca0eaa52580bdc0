"""
Run one upload through validate -> decode -> segment -> composite -> validate.

Only an invalid upload or an undecodable image ends a run without an image.
Segmentation failures fall through to cheaper strategies, a compositing
failure falls back to plain scale-and-center, and output validation never
discards the image.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from uscisphoto.compositing.compositor import composite, scale_and_center
from uscisphoto.core.config import PipelineConfig
from uscisphoto.core.errors import (
    CompositionFailure,
    DecodeError,
    InvalidInput,
    OutputValidationFailure,
    PhotoPipelineError,
    SegmentationError,
)
from uscisphoto.core.imaging import decode_image
from uscisphoto.core.models import (
    PHOTO_REQUIREMENTS,
    CapabilityTier,
    CompositeCanvas,
    ForegroundMask,
    MaskResult,
    PhotoRequirements,
    PhotoUpload,
    SourceImage,
)
from uscisphoto.segmentation.base import SegmentationStrategy
from uscisphoto.segmentation.basic import BasicSegmenter
from uscisphoto.segmentation.capability import EnvironmentProbe, assess_environment
from uscisphoto.segmentation.heuristic import HeuristicSegmenter
from uscisphoto.segmentation.model import InferenceBackend, ModelSegmenter
from uscisphoto.validation.report import Severity, ValidationReport, ValidationResult
from uscisphoto.validation.validator import validate_file, validate_output

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DECODING = "decoding"
    SEGMENTING = "segmenting"
    COMPOSITING = "compositing"
    VALIDATING_OUTPUT = "validating-output"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ProcessedImageResult:
    """
    What a caller gets back from one run.

    `processed` / `processed_png` are None only when the run ended at file
    validation or failed; `error` then says why. The caller owns the images
    and should call release() once it no longer displays them.
    """
    original: Optional[PhotoUpload]
    processed: Optional[CompositeCanvas] = None
    processed_png: Optional[bytes] = None
    width: int = 0
    height: int = 0
    validations: List[ValidationResult] = field(default_factory=list)
    state: PipelineState = PipelineState.IDLE
    tier: Optional[CapabilityTier] = None
    strategy: Optional[str] = None
    attempts: List[Tuple[str, str]] = field(default_factory=list)
    error: Optional[PhotoPipelineError] = None
    saved_paths: List[str] = field(default_factory=list)

    @property
    def report(self) -> ValidationReport:
        return ValidationReport(results=tuple(self.validations))

    def save(self, path: str, temporary: bool = False) -> str:
        """Write the PNG to `path`. Temporary files are deleted again by release()."""
        if self.processed_png is None:
            raise ValueError("No processed image to save.")
        with open(path, "wb") as f:
            f.write(self.processed_png)
        if temporary:
            self.saved_paths.append(path)
        return path

    def release(self) -> None:
        """Drop image references and remove temporary files written by save(). Safe to call twice."""
        self.original = None
        self.processed = None
        self.processed_png = None
        for path in self.saved_paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
        self.saved_paths = []


def strategy_order(
    tier: CapabilityTier,
    model: Optional[SegmentationStrategy],
    heuristic: SegmentationStrategy,
    basic: SegmentationStrategy,
) -> List[SegmentationStrategy]:
    """Model first only on FULL; basic is always last."""
    order: List[SegmentationStrategy] = []
    if tier is CapabilityTier.FULL and model is not None:
        order.append(model)
    order.append(heuristic)
    order.append(basic)
    return order


class PhotoPipeline:
    """
    Orchestrates a run. Holds configuration only; every run's images live in
    its ProcessedImageResult.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        requirements: PhotoRequirements = PHOTO_REQUIREMENTS,
        probe: Optional[EnvironmentProbe] = None,
        backend: Optional[InferenceBackend] = None,
        model: Optional[SegmentationStrategy] = None,
        heuristic: Optional[SegmentationStrategy] = None,
        basic: Optional[SegmentationStrategy] = None,
    ):
        self.config = config or PipelineConfig()
        self.requirements = requirements
        self.probe = probe
        if model is None and self.config.enable_model:
            model = ModelSegmenter(self.config, backend=backend)
        self.model = model if self.config.enable_model else None
        self.heuristic = heuristic or HeuristicSegmenter(self.config.heuristic)
        self.basic = basic or BasicSegmenter()

    # ---------- stages ----------

    def _enter(self, result: ProcessedImageResult, state: PipelineState) -> None:
        logger.debug("Pipeline state %s -> %s", result.state.value, state.value)
        result.state = state

    def _segment(self, image: SourceImage, result: ProcessedImageResult) -> MaskResult:
        tier = assess_environment(self.config, self.probe)
        result.tier = tier
        strategies: Sequence[SegmentationStrategy] = strategy_order(tier, self.model, self.heuristic, self.basic)
        logger.info("Segmentation order (%s tier): %s", tier.value, [s.name for s in strategies])

        last = len(strategies) - 1
        for i, strategy in enumerate(strategies):
            if i == last:
                # Terminal strategy; a failure here is a real bug and ends the run.
                mask = strategy.segment(image)
                result.strategy = strategy.name
                return mask
            try:
                mask = strategy.segment(image)
                if isinstance(mask, ForegroundMask) and not mask.matches(image):
                    raise SegmentationError(f"mask shape {mask.shape} does not match image {image.height}x{image.width}")
            except Exception as e:
                logger.warning("Segmentation with %s failed, retrying with %s: %s", strategy.name, strategies[i + 1].name, e)
                result.attempts.append((strategy.name, str(e)))
                continue
            result.strategy = strategy.name
            return mask
        raise AssertionError("unreachable: no segmentation strategies")

    def _composite(self, upload: PhotoUpload, image: SourceImage, mask: MaskResult, result: ProcessedImageResult) -> CompositeCanvas:
        try:
            return composite(image, mask, self.requirements)
        except CompositionFailure as e:
            logger.warning("Compositing failed, falling back to scale-and-center: %s", e)
            result.attempts.append(("composite", str(e)))
            canvas = scale_and_center(upload.data, self.requirements)
            result.strategy = "scale-and-center"
            result.validations.append(
                ValidationResult(
                    rule_id="Processing",
                    valid=False,
                    message="The background could not be processed automatically; only resizing was applied.",
                    severity=Severity.WARNING,
                )
            )
            return canvas

    # ---------- entry points ----------

    def process_image(self, upload: PhotoUpload) -> ProcessedImageResult:
        """
        Process one upload. Expected failures (type, size, decode, segmentation,
        compositing) end up in result.validations, never as exceptions.
        """
        if not isinstance(upload, PhotoUpload):
            raise TypeError(f"process_image expects a PhotoUpload, got {type(upload).__name__}")

        logger.info("Processing %s (%d bytes, %s)", upload.filename, upload.size_bytes, upload.content_type)
        result = ProcessedImageResult(original=upload)

        try:
            self._enter(result, PipelineState.VALIDATING)
            file_check = validate_file(upload, self.requirements)
            result.validations.append(file_check)
            if not file_check.valid:
                logger.info("File validation failed: %s", file_check.message)
                result.error = InvalidInput(file_check.message)
                self._enter(result, PipelineState.DONE)
                return result

            self._enter(result, PipelineState.DECODING)
            try:
                image = decode_image(upload.data)
            except DecodeError as e:
                logger.error("Decode failed for %s: %s", upload.filename, e)
                result.error = e
                result.validations.append(
                    ValidationResult(
                        rule_id="Decode",
                        valid=False,
                        message="The image could not be read. Please upload a valid JPEG or PNG file.",
                        severity=Severity.ERROR,
                        metrics={"error": str(e)},
                    )
                )
                self._enter(result, PipelineState.FAILED)
                return result
            result.width, result.height = image.width, image.height

            self._enter(result, PipelineState.SEGMENTING)
            mask = self._segment(image, result)

            self._enter(result, PipelineState.COMPOSITING)
            canvas = self._composite(upload, image, mask, result)
            result.processed = canvas
            result.processed_png = canvas.to_png_bytes()

            self._enter(result, PipelineState.VALIDATING_OUTPUT)
            try:
                result.validations.extend(validate_output(canvas, self.requirements))
            except OutputValidationFailure as e:
                logger.error("Output validation failed: %s", e)
                result.validations.append(
                    ValidationResult(rule_id="Output", valid=False, message=str(e), severity=Severity.ERROR)
                )

            self._enter(result, PipelineState.DONE)
        except Exception as e:
            logger.exception("Unexpected error while processing %s", upload.filename)
            result.processed = None
            result.processed_png = None
            result.error = PhotoPipelineError(f"Unexpected error: {e}")
            result.validations.append(
                ValidationResult(
                    rule_id="Processing",
                    valid=False,
                    message="Error while processing the image. Please try again.",
                    severity=Severity.ERROR,
                )
            )
            self._enter(result, PipelineState.FAILED)

        logger.info(
            "Finished %s: state=%s strategy=%s results=%d",
            upload.filename, result.state.value, result.strategy, len(result.validations),
        )
        return result

    async def process_image_async(self, upload: PhotoUpload) -> ProcessedImageResult:
        """Same as process_image, run in a worker thread so the event loop is not blocked."""
        return await asyncio.to_thread(self.process_image, upload)


def process_image(
    upload: PhotoUpload,
    config: Optional[PipelineConfig] = None,
    requirements: PhotoRequirements = PHOTO_REQUIREMENTS,
) -> ProcessedImageResult:
    """Convenience entry point: one run with a fresh PhotoPipeline."""
    return PhotoPipeline(config=config, requirements=requirements).process_image(upload)
