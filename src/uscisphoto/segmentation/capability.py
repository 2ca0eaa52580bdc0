"""
Decide how much segmentation work the host can afford.

Signals are checked in a fixed order and the most degraded tier wins:
an explicit override short-circuits everything, then a missing inference
backend, a slow CPU benchmark or low memory each degrade FULL to CONSTRAINED.
"""

from __future__ import annotations

import logging
import math
import time
from typing import List, Optional, Protocol

import psutil

from uscisphoto.core.config import PipelineConfig
from uscisphoto.core.models import CapabilityTier

logger = logging.getLogger(__name__)

BENCHMARK_ITERATIONS = 200_000


class EnvironmentProbe(Protocol):
    def has_compute_backend(self) -> bool:
        ...

    def benchmark_seconds(self) -> float:
        ...

    def device_memory_gb(self) -> Optional[float]:
        ...


class SystemProbe:
    """Probe the real host: onnxruntime providers, a sqrt loop, psutil memory."""

    def has_compute_backend(self) -> bool:
        """True when onnxruntime imports and lists a provider.

        Only a missing or broken runtime reads False; CPU-only hosts always
        list CPUExecutionProvider and are graded by the benchmark and memory.
        """
        try:
            import onnxruntime as ort  # type: ignore
        except ImportError:
            return False
        providers = ort.get_available_providers()
        logger.debug("onnxruntime providers: %s", providers)
        return bool(providers)

    def benchmark_seconds(self) -> float:
        start = time.perf_counter()
        total = 0.0
        for i in range(BENCHMARK_ITERATIONS):
            total += math.sqrt(i)
        return time.perf_counter() - start

    def device_memory_gb(self) -> Optional[float]:
        return psutil.virtual_memory().total / float(1024 ** 3)


def _degrade(current: CapabilityTier, reason: str) -> CapabilityTier:
    logger.info("Capability degraded: %s", reason)
    if current.rank >= CapabilityTier.CONSTRAINED.rank:
        return current
    return CapabilityTier.CONSTRAINED


def assess_environment(
    config: Optional[PipelineConfig] = None,
    probe: Optional[EnvironmentProbe] = None,
) -> CapabilityTier:
    """Return the capability tier for this host. Only side effect is the benchmark."""
    config = config or PipelineConfig()

    override = config.override_tier
    if override is not None:
        logger.info("Capability tier forced by configuration: %s", override.value)
        return override

    probe = probe or SystemProbe()
    tier = CapabilityTier.FULL
    reasons: List[str] = []

    try:
        if not probe.has_compute_backend():
            reasons.append("no inference backend available")
    except Exception as e:
        reasons.append(f"compute backend probe failed ({e})")

    try:
        elapsed = probe.benchmark_seconds()
        if elapsed > config.benchmark_threshold_s:
            reasons.append(f"slow CPU benchmark ({elapsed * 1000:.0f} ms > {config.benchmark_threshold_s * 1000:.0f} ms)")
        else:
            logger.debug("CPU benchmark %.0f ms", elapsed * 1000)
    except Exception as e:
        reasons.append(f"benchmark failed ({e})")

    try:
        mem = probe.device_memory_gb()
        if mem is not None and mem < config.min_memory_gb:
            reasons.append(f"low memory ({mem:.1f} GB < {config.min_memory_gb:.1f} GB)")
    except Exception as e:
        reasons.append(f"memory probe failed ({e})")

    for reason in reasons:
        tier = _degrade(tier, reason)

    logger.info("Capability tier: %s", tier.value)
    return tier
