"""
Model-based segmentation.

The model is a black box behind InferenceBackend: given a PIL image it returns
a list of {"label": str, "mask": HxW scores in [0, 1]} where higher means
"subject". The default backend is rembg (U^2-Net family, ONNX runtime).
Anything the backend does wrong is reported as SegmentationUnavailable.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

import numpy as np
from PIL import Image

from uscisphoto.core.config import PipelineConfig
from uscisphoto.core.errors import SegmentationUnavailable
from uscisphoto.core.imaging import fit_size, resize_mask, resize_rgba
from uscisphoto.core.models import ForegroundMask, SourceImage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]

MASK_THRESHOLD = 0.5


class InferenceBackend(Protocol):
    def __call__(self, image: Image.Image) -> List[Dict[str, Any]]:
        ...


def log_progress(stage: str, fraction: float) -> None:
    logger.info("Model progress: %s %d%%", stage, int(round(fraction * 100)))


class RembgBackend:
    """
    rembg inference with one session per model name per process.

    Sessions are created lazily; rembg keeps downloaded weights in its own
    on-disk cache (~/.u2net by default).
    """

    _sessions: Dict[str, Any] = {}
    _lock = threading.Lock()

    def __init__(self, model_name: str = "u2net", on_progress: Optional[ProgressCallback] = log_progress):
        self.model_name = model_name
        self.on_progress = on_progress

    def _emit(self, stage: str, fraction: float) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(stage, fraction)
        except Exception:
            logger.debug("Progress callback failed", exc_info=True)

    def _session(self) -> Any:
        with RembgBackend._lock:
            session = RembgBackend._sessions.get(self.model_name)
            if session is None:
                from rembg import new_session  # type: ignore

                self._emit("loading model", 0.0)
                session = new_session(self.model_name)
                RembgBackend._sessions[self.model_name] = session
                self._emit("loading model", 1.0)
            return session

    def __call__(self, image: Image.Image) -> List[Dict[str, Any]]:
        from rembg import remove  # type: ignore

        session = self._session()
        self._emit("inference", 0.0)
        mask = remove(image.convert("RGB"), session=session, only_mask=True)
        if not isinstance(mask, Image.Image):
            raise TypeError(f"rembg returned {type(mask).__name__}, expected a PIL image")
        scores = np.asarray(mask.convert("L"), dtype=np.float32) / 255.0
        self._emit("inference", 1.0)
        return [{"label": "foreground", "mask": scores}]


def _extract_scores(result: Any, expected_shape: tuple) -> np.ndarray:
    if not isinstance(result, (list, tuple)) or len(result) == 0:
        raise SegmentationUnavailable("Model returned no segments.")
    first = result[0]
    if not isinstance(first, dict) or first.get("mask") is None:
        raise SegmentationUnavailable("Model result has no mask.")

    mask = first["mask"]
    if isinstance(mask, Image.Image):
        scores = np.asarray(mask.convert("L"), dtype=np.float32) / 255.0
    else:
        scores = np.asarray(mask, dtype=np.float32)

    if scores.shape != expected_shape:
        raise SegmentationUnavailable(f"Model mask shape {scores.shape} does not match input {expected_shape}.")
    if not np.isfinite(scores).all():
        raise SegmentationUnavailable("Model mask contains non-finite scores.")
    if scores.min() < 0.0 or scores.max() > 1.0:
        raise SegmentationUnavailable("Model mask scores are outside [0, 1].")
    return scores


class ModelSegmenter:
    """Segment with an ML model; hard threshold at 0.5 for every pixel."""

    name = "model"

    def __init__(self, config: Optional[PipelineConfig] = None, backend: Optional[InferenceBackend] = None):
        self.config = config or PipelineConfig()
        self.backend = backend if backend is not None else RembgBackend(self.config.model_name)

    def _infer(self, pil: Image.Image) -> Any:
        timeout = self.config.inference_timeout_s
        if timeout is None:
            return self.backend(pil)

        # Daemon worker: a hung backend is abandoned and never blocks interpreter exit.
        outcome: "queue.Queue[tuple]" = queue.Queue(maxsize=1)

        def work() -> None:
            try:
                outcome.put((True, self.backend(pil)))
            except Exception as e:
                outcome.put((False, e))

        threading.Thread(target=work, name="uscisphoto-inference", daemon=True).start()
        try:
            ok, value = outcome.get(timeout=timeout)
        except queue.Empty:
            raise SegmentationUnavailable(f"Model inference timed out after {timeout:.1f}s.")
        if not ok:
            raise value
        return value

    def segment(self, image: SourceImage) -> ForegroundMask:
        w, h = image.width, image.height
        cap = self.config.max_inference_side

        rgb = image.rgb
        if max(w, h) > cap:
            _, in_w, in_h = fit_size(w, h, cap, cap)
            rgb = resize_rgba(rgb, (in_w, in_h))
            logger.info("Downscaled %dx%d -> %dx%d for inference", w, h, in_w, in_h)
        else:
            in_w, in_h = w, h

        try:
            result = self._infer(Image.fromarray(np.ascontiguousarray(rgb), "RGB"))
        except SegmentationUnavailable:
            raise
        except ImportError as e:
            raise SegmentationUnavailable(f"Inference backend not installed: {e}") from e
        except Exception as e:
            raise SegmentationUnavailable(f"Model inference failed: {e}") from e

        scores = _extract_scores(result, (in_h, in_w))
        if (in_w, in_h) != (w, h):
            scores = np.clip(resize_mask(scores, (w, h)), 0.0, 1.0)

        mask = ForegroundMask(scores >= MASK_THRESHOLD)
        logger.info("Model segmentation: %.1f%% foreground", mask.foreground_fraction() * 100)
        return mask
