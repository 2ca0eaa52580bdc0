from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from uscisphoto.core.models import CapabilityTier

_TRUTHY = {"1", "true", "yes", "on"}

# Any of these set to "true" forces the cheaper heuristic path.
FORCE_ALTERNATIVE_ENV_VARS = (
    "USE_ALTERNATIVE_BACKGROUND_REMOVAL",
    "FORCE_ALTERNATIVE_METHOD",
    "DOCKER_CONTAINER",
    "RUNNING_IN_DOCKER",
)

ESTIMATORS = ("dominant", "mean")


@dataclass(frozen=True)
class HeuristicSettings:
    """
    Tunables for the edge-colour background classifier.

    tolerance:
        RGB distance under which a pixel counts as background. 25–60 is the
        useful range; higher removes more backdrop and more light clothing.
    estimator:
        "dominant" (most frequent quantized border colour) or "mean".
    top_k:
        Number of dominant border colours treated as background.
    quantize_step:
        Channel bucket width used by the "dominant" estimator.
    border_fraction / min_border_px:
        Width of the sampled border band.
    blur_sigma:
        Gaussian sigma of the denoising pre-pass (0 disables it).
    saturation_guard:
        HSV saturation (0..1) above which a pixel is kept as foreground when
        the detected backdrop is neutral.
    skin_override:
        Keep skin-toned pixels regardless of backdrop distance.
    """
    tolerance: float = 30.0
    estimator: str = "dominant"
    top_k: int = 1
    quantize_step: int = 10
    border_fraction: float = 0.05
    min_border_px: int = 10
    blur_sigma: float = 1.0
    saturation_guard: float = 0.2
    skin_override: bool = True

    def __post_init__(self) -> None:
        if self.tolerance <= 0:
            raise ValueError("tolerance must be > 0")
        if self.estimator not in ESTIMATORS:
            raise ValueError(f"estimator must be one of {ESTIMATORS}, got {self.estimator!r}")
        if self.top_k < 1:
            raise ValueError("top_k must be >= 1")
        if self.quantize_step < 1:
            raise ValueError("quantize_step must be >= 1")
        if not (0.0 <= self.saturation_guard <= 1.0):
            raise ValueError("saturation_guard must be within [0, 1]")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Everything the orchestrator needs to decide how to segment.

    force_tier:
        Skip environment probing and use this tier.
    force_alternative_method:
        Shortcut for force_tier=FORCED (never try the model).
    enable_model:
        Include the model-based strategy when the tier allows it.
    model_name:
        rembg model identifier for the inference session.
    max_inference_side:
        Images larger than this on either side are downscaled before inference.
    inference_timeout_s:
        Give up on model inference after this many seconds. None waits forever.
    benchmark_threshold_s / min_memory_gb:
        Capability thresholds; slower or smaller hosts are CONSTRAINED.
    """
    force_tier: Optional[CapabilityTier] = None
    force_alternative_method: bool = False
    enable_model: bool = True
    model_name: str = "u2net"
    max_inference_side: int = 1024
    inference_timeout_s: Optional[float] = None
    benchmark_threshold_s: float = 0.25
    min_memory_gb: float = 4.0
    heuristic: HeuristicSettings = field(default_factory=HeuristicSettings)

    def __post_init__(self) -> None:
        if self.max_inference_side < 32:
            raise ValueError("max_inference_side too small; expected something like 1024")
        if self.inference_timeout_s is not None and self.inference_timeout_s <= 0:
            raise ValueError("inference_timeout_s must be > 0 or None")

    @property
    def override_tier(self) -> Optional[CapabilityTier]:
        if self.force_tier is not None:
            return self.force_tier
        if self.force_alternative_method:
            return CapabilityTier.FORCED
        return None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a config from environment variables (os.environ by default)."""
        env = os.environ if environ is None else environ

        def flag(name: str) -> bool:
            return env.get(name, "").strip().lower() in _TRUTHY

        force_tier = None
        raw_tier = env.get("USCISPHOTO_FORCE_TIER", "").strip().lower()
        if raw_tier:
            try:
                force_tier = CapabilityTier(raw_tier)
            except ValueError:
                raise ValueError(f"USCISPHOTO_FORCE_TIER must be one of full/constrained/forced, got {raw_tier!r}")

        timeout = env.get("USCISPHOTO_INFERENCE_TIMEOUT", "").strip()
        heuristic = HeuristicSettings(
            tolerance=float(env.get("USCISPHOTO_BG_TOLERANCE", "30")),
            estimator=env.get("USCISPHOTO_BG_ESTIMATOR", "dominant").strip().lower(),
        )
        return cls(
            force_tier=force_tier,
            force_alternative_method=any(flag(n) for n in FORCE_ALTERNATIVE_ENV_VARS),
            model_name=env.get("USCISPHOTO_MODEL", "u2net"),
            max_inference_side=int(env.get("USCISPHOTO_MAX_INFERENCE_SIDE", "1024")),
            inference_timeout_s=float(timeout) if timeout else None,
            heuristic=heuristic,
        )
