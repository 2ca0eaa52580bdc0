import sys
import unittest
from types import SimpleNamespace
from unittest import mock

from tests._test_path import SRC  # noqa: F401

from uscisphoto.core.config import PipelineConfig
from uscisphoto.core.models import CapabilityTier
from uscisphoto.segmentation.capability import SystemProbe, assess_environment


class FakeProbe:
    def __init__(self, backend=True, seconds=0.01, memory=16.0):
        self.backend = backend
        self.seconds = seconds
        self.memory = memory
        self.calls = 0

    def _value(self, v):
        self.calls += 1
        if isinstance(v, Exception):
            raise v
        return v

    def has_compute_backend(self):
        return self._value(self.backend)

    def benchmark_seconds(self):
        return self._value(self.seconds)

    def device_memory_gb(self):
        return self._value(self.memory)


class TestAssessEnvironment(unittest.TestCase):
    def test_capable_host_is_full(self):
        self.assertIs(assess_environment(PipelineConfig(), FakeProbe()), CapabilityTier.FULL)

    def test_each_signal_degrades(self):
        cases = {
            "no backend": FakeProbe(backend=False),
            "slow cpu": FakeProbe(seconds=2.0),
            "low memory": FakeProbe(memory=2.0),
        }
        for label, probe in cases.items():
            with self.subTest(label):
                self.assertIs(assess_environment(PipelineConfig(), probe), CapabilityTier.CONSTRAINED)

    def test_all_signals_still_constrained(self):
        probe = FakeProbe(backend=False, seconds=2.0, memory=1.0)
        self.assertIs(assess_environment(PipelineConfig(), probe), CapabilityTier.CONSTRAINED)

    def test_unknown_memory_does_not_degrade(self):
        self.assertIs(assess_environment(PipelineConfig(), FakeProbe(memory=None)), CapabilityTier.FULL)

    def test_probe_error_degrades(self):
        probe = FakeProbe(backend=RuntimeError("driver crashed"))
        self.assertIs(assess_environment(PipelineConfig(), probe), CapabilityTier.CONSTRAINED)

    def test_override_short_circuits_probe(self):
        probe = FakeProbe()
        tier = assess_environment(PipelineConfig(force_alternative_method=True), probe)
        self.assertIs(tier, CapabilityTier.FORCED)
        self.assertEqual(probe.calls, 0)

        tier = assess_environment(PipelineConfig(force_tier=CapabilityTier.CONSTRAINED), probe)
        self.assertIs(tier, CapabilityTier.CONSTRAINED)
        self.assertEqual(probe.calls, 0)

    def test_thresholds_come_from_config(self):
        probe = FakeProbe(seconds=0.3, memory=3.0)
        config = PipelineConfig(benchmark_threshold_s=0.5, min_memory_gb=2.0)
        self.assertIs(assess_environment(config, probe), CapabilityTier.FULL)


class TestSystemProbe(unittest.TestCase):
    def test_reports_real_host(self):
        probe = SystemProbe()
        self.assertIsInstance(probe.has_compute_backend(), bool)
        self.assertGreaterEqual(probe.benchmark_seconds(), 0.0)
        self.assertGreater(probe.device_memory_gb(), 0.0)

    def test_runtime_without_providers_has_no_backend(self):
        fake_ort = SimpleNamespace(get_available_providers=lambda: [])
        with mock.patch.dict(sys.modules, {"onnxruntime": fake_ort}):
            self.assertFalse(SystemProbe().has_compute_backend())

    def test_missing_runtime_has_no_backend(self):
        # A None entry makes the import raise ImportError
        with mock.patch.dict(sys.modules, {"onnxruntime": None}):
            self.assertFalse(SystemProbe().has_compute_backend())

    def test_cpu_only_runtime_counts_as_backend(self):
        fake_ort = SimpleNamespace(get_available_providers=lambda: ["CPUExecutionProvider"])
        with mock.patch.dict(sys.modules, {"onnxruntime": fake_ort}):
            self.assertTrue(SystemProbe().has_compute_backend())
