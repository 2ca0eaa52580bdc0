import io
import os
import tempfile
import unittest
from dataclasses import FrozenInstanceError

import numpy as np
from PIL import Image

from tests._test_path import SRC  # noqa: F401  (ensures src on path)

from uscisphoto.core.models import (
    NO_OP,
    PHOTO_REQUIREMENTS,
    CapabilityTier,
    CompositeCanvas,
    ForegroundMask,
    PhotoUpload,
    SourceImage,
)


class TestPhotoRequirements(unittest.TestCase):
    def test_defaults(self):
        r = PHOTO_REQUIREMENTS
        self.assertEqual((r.width, r.height), (600, 600))
        self.assertEqual((r.min_head_height, r.max_head_height), (300, 414))
        self.assertEqual(r.background_color, (255, 255, 255))
        self.assertEqual(r.max_file_size_kb, 4048)
        self.assertEqual(r.allowed_file_types, ("image/jpeg", "image/png", "image/jpg"))
        lo, hi = r.head_ratio_range
        self.assertAlmostEqual(lo, 0.50)
        self.assertAlmostEqual(hi, 0.69)

    def test_frozen(self):
        with self.assertRaises(FrozenInstanceError):
            PHOTO_REQUIREMENTS.width = 700  # type: ignore[misc]


class TestCapabilityTier(unittest.TestCase):
    def test_rank_orders_by_degradation(self):
        self.assertLess(CapabilityTier.FULL.rank, CapabilityTier.CONSTRAINED.rank)
        self.assertLess(CapabilityTier.CONSTRAINED.rank, CapabilityTier.FORCED.rank)


class TestSourceImage(unittest.TestCase):
    def test_rejects_wrong_shape(self):
        with self.assertRaises(ValueError):
            SourceImage(np.zeros((4, 4, 3), dtype=np.uint8))
        with self.assertRaises(ValueError):
            SourceImage(np.zeros((0, 4, 4), dtype=np.uint8))

    def test_pixels_are_read_only_copy(self):
        arr = np.zeros((2, 3, 4), dtype=np.uint8)
        img = SourceImage(arr)
        self.assertEqual((img.width, img.height), (3, 2))
        self.assertFalse(img.pixels.flags.writeable)
        arr[0, 0, 0] = 9  # caller's array stays writable and independent
        self.assertEqual(img.pixels[0, 0, 0], 0)


class TestForegroundMask(unittest.TestCase):
    def test_bool_mask(self):
        data = np.array([[True, False], [False, False]])
        m = ForegroundMask(data)
        self.assertEqual(m.shape, (2, 2))
        self.assertEqual(m.is_background().sum(), 3)
        self.assertAlmostEqual(m.foreground_fraction(), 0.25)

    def test_float_mask_thresholds_at_half(self):
        m = ForegroundMask(np.array([[0.49, 0.5]], dtype=np.float64))
        self.assertEqual(m.data.dtype, np.float32)
        self.assertEqual(m.is_background().tolist(), [[True, False]])

    def test_matches_image(self):
        img = SourceImage(np.zeros((3, 5, 4), dtype=np.uint8))
        self.assertTrue(ForegroundMask(np.ones((3, 5), dtype=bool)).matches(img))
        self.assertFalse(ForegroundMask(np.ones((5, 3), dtype=bool)).matches(img))

    def test_rejects_invalid_scores(self):
        for bad in (np.array([[0.2, np.nan]]), np.array([[1.5, 0.0]]), np.array([[-0.1, 0.0]])):
            with self.subTest(bad=bad.tolist()):
                with self.assertRaises(ValueError):
                    ForegroundMask(bad)

    def test_rejects_3d(self):
        with self.assertRaises(ValueError):
            ForegroundMask(np.zeros((2, 2, 1)))

    def test_no_op_is_singleton(self):
        self.assertIs(type(NO_OP)(), NO_OP)


class TestCompositeCanvas(unittest.TestCase):
    def test_png_bytes_carry_dpi(self):
        canvas = CompositeCanvas(np.full((6, 6, 4), 255, dtype=np.uint8), dpi=300)
        img = Image.open(io.BytesIO(canvas.to_png_bytes()))
        self.assertEqual(img.size, (6, 6))
        self.assertEqual(tuple(round(d) for d in img.info["dpi"]), (300, 300))


class TestPhotoUpload(unittest.TestCase):
    def test_from_path_guesses_type(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "me.png")
            with open(path, "wb") as f:
                f.write(b"x" * 2048)
            up = PhotoUpload.from_path(path)
        self.assertEqual(up.filename, "me.png")
        self.assertEqual(up.content_type, "image/png")
        self.assertEqual(up.size_bytes, 2048)
        self.assertAlmostEqual(up.size_kb, 2.0)

    def test_repr_hides_data(self):
        up = PhotoUpload("a.jpg", "image/jpeg", b"secret-bytes")
        self.assertNotIn("secret-bytes", repr(up))
