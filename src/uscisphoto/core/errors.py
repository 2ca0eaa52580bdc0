from __future__ import annotations


class PhotoPipelineError(Exception):
    """Base class for every failure the photo pipeline knows how to report."""


class InvalidInput(PhotoPipelineError):
    """Upload has the wrong type or size. Fatal to the run; nothing is processed."""


class DecodeError(PhotoPipelineError):
    """Upload bytes could not be turned into a SourceImage. Fatal to the run."""


class SegmentationError(PhotoPipelineError):
    """A segmentation strategy gave up. The orchestrator falls through to the next one."""


class SegmentationUnavailable(SegmentationError):
    """Model inference is missing, failed, timed out or returned a malformed mask."""


class HeuristicSegmentationFailed(SegmentationError):
    """Edge-colour classifier could not run on an otherwise valid image."""


class CompositionFailure(PhotoPipelineError):
    """Compositing onto the fixed canvas failed (shape mismatch, resource exhaustion)."""


class OutputValidationFailure(PhotoPipelineError):
    """The produced output could not be inspected by the validator."""
