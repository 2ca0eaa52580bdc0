import unittest

import numpy as np
from PIL import Image

from tests._test_path import SRC  # noqa: F401

from uscisphoto.core.errors import OutputValidationFailure
from uscisphoto.core.models import CompositeCanvas, PhotoUpload
from uscisphoto.validation import validator as v
from uscisphoto.validation.report import Severity, ValidationReport


def _find(results, rule_id: str):
    for r in results:
        if r.rule_id == rule_id:
            return r
    raise AssertionError(f"Rule not found: {rule_id}")


class TestValidateFile(unittest.TestCase):
    def test_gif_rejected(self):
        r = v.validate_file(PhotoUpload("a.gif", "image/gif", b"GIF89a"))
        self.assertFalse(r.valid)
        self.assertIs(r.severity, Severity.ERROR)
        self.assertEqual(r.rule_id, "File type")

    def test_oversized_rejected_with_size_message(self):
        r = v.validate_file(PhotoUpload("big.jpg", "image/jpeg", b"\0" * (5000 * 1024)))
        self.assertFalse(r.valid)
        self.assertIs(r.severity, Severity.ERROR)
        self.assertEqual(r.rule_id, "File size")
        self.assertIn("4048", r.message)

    def test_limit_is_inclusive(self):
        r = v.validate_file(PhotoUpload("edge.png", "image/png", b"\0" * (4048 * 1024)))
        self.assertTrue(r.valid)

    def test_accepted_types(self):
        for ctype in ("image/jpeg", "image/jpg", "image/png"):
            with self.subTest(ctype):
                r = v.validate_file(PhotoUpload("x", ctype, b"\0" * 10))
                self.assertTrue(r.valid)
                self.assertIs(r.severity, Severity.SUCCESS)


class TestValidateOutput(unittest.TestCase):
    def test_correct_canvas(self):
        canvas = CompositeCanvas(np.full((600, 600, 4), 255, dtype=np.uint8))
        results = v.validate_output(canvas)
        self.assertEqual([r.rule_id for r in results], ["Size", "Head height", "Manual check"])

        size = _find(results, "Size")
        self.assertTrue(size.valid)
        self.assertIs(size.severity, Severity.SUCCESS)
        self.assertIn("600x600", size.message)

        head = _find(results, "Head height")
        self.assertIs(head.severity, Severity.SUCCESS)
        self.assertFalse(head.metrics["measured"])
        self.assertIs(_find(results, "Manual check").severity, Severity.INFO)

    def test_wrong_dimensions(self):
        size = _find(v.validate_output(Image.new("RGB", (500, 600))), "Size")
        self.assertFalse(size.valid)
        self.assertIs(size.severity, Severity.ERROR)
        self.assertIn("500x600", size.message)

    def test_array_output(self):
        size = _find(v.validate_output(np.zeros((600, 600, 3), dtype=np.uint8)), "Size")
        self.assertTrue(size.valid)

    def test_unsupported_output(self):
        with self.assertRaises(OutputValidationFailure):
            v.validate_output("not an image")


class TestFormatReport(unittest.TestCase):
    def test_format_report_text(self):
        results = [v.validate_file(PhotoUpload("a.png", "image/png", b"\0"))]
        results += v.validate_output(Image.new("RGB", (600, 600)))
        txt = v.format_report_text(ValidationReport(tuple(results)))
        self.assertIn("USCIS Photo Validation Report", txt)
        self.assertIn("Overall: PASS", txt)
        self.assertIn("Size:", txt)
        self.assertLess(txt.index("Size:"), txt.index("Manual check:"))
