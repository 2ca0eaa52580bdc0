import subprocess
import sys
import textwrap
import threading
import time
import unittest

import numpy as np

from tests._test_path import SRC  # noqa: F401

from uscisphoto.core.config import PipelineConfig
from uscisphoto.core.errors import SegmentationError, SegmentationUnavailable
from uscisphoto.core.models import ForegroundMask, SourceImage
from uscisphoto.segmentation.model import ModelSegmenter


def _image(width, height):
    return SourceImage(np.zeros((height, width, 4), dtype=np.uint8))


class CenterBackend:
    """Scores 1.0 in the middle half of the frame, 0.0 elsewhere."""

    def __init__(self):
        self.sizes = []

    def __call__(self, pil):
        self.sizes.append(pil.size)
        w, h = pil.size
        scores = np.zeros((h, w), dtype=np.float32)
        scores[h // 4 : 3 * h // 4, w // 4 : 3 * w // 4] = 1.0
        return [{"label": "foreground", "mask": scores}]


class StaticBackend:
    def __init__(self, result):
        self.result = result

    def __call__(self, pil):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestModelSegmenter(unittest.TestCase):
    def test_mask_matches_image(self):
        backend = CenterBackend()
        mask = ModelSegmenter(PipelineConfig(), backend=backend).segment(_image(80, 60))
        self.assertIsInstance(mask, ForegroundMask)
        self.assertEqual(mask.shape, (60, 80))
        self.assertEqual(mask.data.dtype, np.bool_)
        self.assertTrue(mask.data[30, 40])
        self.assertFalse(mask.data[0, 0])
        self.assertEqual(backend.sizes, [(80, 60)])

    def test_large_input_downscaled_then_upscaled(self):
        backend = CenterBackend()
        config = PipelineConfig(max_inference_side=64)
        mask = ModelSegmenter(config, backend=backend).segment(_image(256, 128))
        self.assertEqual(backend.sizes, [(64, 32)])
        self.assertEqual(mask.shape, (128, 256))
        self.assertTrue(mask.data[64, 128])
        self.assertFalse(mask.data[5, 5])

    def test_hard_threshold(self):
        scores = np.array([[0.2, 0.49], [0.5, 0.9]], dtype=np.float32)
        seg = ModelSegmenter(PipelineConfig(), backend=StaticBackend([{"label": "fg", "mask": scores}]))
        self.assertEqual(seg.segment(_image(2, 2)).data.tolist(), [[False, False], [True, True]])

    def test_malformed_output_is_unavailable(self):
        cases = {
            "empty": [],
            "not a list": {"mask": np.ones((2, 2))},
            "no mask": [{"label": "fg"}],
            "wrong shape": [{"label": "fg", "mask": np.ones((3, 3))}],
            "out of range": [{"label": "fg", "mask": np.full((2, 2), 2.0)}],
            "nan": [{"label": "fg", "mask": np.full((2, 2), np.nan)}],
        }
        for label, result in cases.items():
            with self.subTest(label):
                seg = ModelSegmenter(PipelineConfig(), backend=StaticBackend(result))
                with self.assertRaises(SegmentationUnavailable):
                    seg.segment(_image(2, 2))

    def test_backend_errors_are_unavailable(self):
        for exc in (RuntimeError("onnx session died"), ImportError("No module named 'rembg'"), MemoryError()):
            with self.subTest(type(exc).__name__):
                seg = ModelSegmenter(PipelineConfig(), backend=StaticBackend(exc))
                with self.assertRaises(SegmentationError):
                    seg.segment(_image(4, 4))

    def test_timeout(self):
        release = threading.Event()

        def slow_backend(pil):
            release.wait(5)
            return [{"label": "fg", "mask": np.ones((pil.size[1], pil.size[0]))}]

        seg = ModelSegmenter(PipelineConfig(inference_timeout_s=0.05), backend=slow_backend)
        try:
            with self.assertRaises(SegmentationUnavailable):
                seg.segment(_image(4, 4))
        finally:
            release.set()

    def test_upscaled_mask_edges_stay_within_half_a_source_pixel(self):
        # 64x32 inference -> 256x128 output; source foreground is cols 16..47, rows 8..23
        config = PipelineConfig(max_inference_side=64)
        data = ModelSegmenter(config, backend=CenterBackend()).segment(_image(256, 128)).data

        rows = slice(40, 88)
        self.assertFalse(data[rows, 63].any())
        self.assertTrue(data[rows, 64].all())
        self.assertTrue(data[rows, 191].all())
        self.assertFalse(data[rows, 192].any())

        cols = slice(80, 176)
        self.assertFalse(data[31, cols].any())
        self.assertTrue(data[32, cols].all())
        self.assertTrue(data[95, cols].all())
        self.assertFalse(data[96, cols].any())

    def test_timed_out_inference_does_not_block_exit(self):
        script = textwrap.dedent(
            """
            import sys, time
            sys.path.insert(0, sys.argv[1])
            import numpy as np
            from uscisphoto.core.config import PipelineConfig
            from uscisphoto.core.errors import SegmentationUnavailable
            from uscisphoto.core.models import SourceImage
            from uscisphoto.segmentation.model import ModelSegmenter

            def hung_backend(pil):
                time.sleep(30)

            seg = ModelSegmenter(PipelineConfig(inference_timeout_s=0.1), backend=hung_backend)
            try:
                seg.segment(SourceImage(np.zeros((4, 4, 4), dtype=np.uint8)))
            except SegmentationUnavailable:
                sys.exit(0)
            sys.exit(1)
            """
        )
        start = time.monotonic()
        proc = subprocess.run([sys.executable, "-c", script, str(SRC)], timeout=60, capture_output=True)
        elapsed = time.monotonic() - start
        self.assertEqual(proc.returncode, 0, proc.stderr.decode(errors="replace"))
        self.assertLess(elapsed, 15.0)
