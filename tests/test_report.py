import unittest
from dataclasses import FrozenInstanceError

from tests._test_path import SRC  # noqa: F401

from uscisphoto.validation.report import Severity, ValidationReport, ValidationResult


def _r(rule_id, severity):
    return ValidationResult(rule_id=rule_id, valid=severity is not Severity.ERROR, message=rule_id, severity=severity)


class TestValidationReport(unittest.TestCase):
    def test_report_is_frozen(self):
        rr = ValidationResult(rule_id="Size", valid=True, message="ok", severity=Severity.SUCCESS, metrics={"a": 1})
        rep = ValidationReport(results=(rr,))

        self.assertTrue(rep.passed)
        self.assertEqual(rep.results[0].rule_id, "Size")

        with self.assertRaises(FrozenInstanceError):
            rep.results = ()  # type: ignore[misc]

        with self.assertRaises(FrozenInstanceError):
            rr.message = "changed"  # type: ignore[misc]

    def test_display_order(self):
        rep = ValidationReport(
            results=(
                _r("i", Severity.INFO),
                _r("s1", Severity.SUCCESS),
                _r("w", Severity.WARNING),
                _r("e", Severity.ERROR),
                _r("s2", Severity.SUCCESS),
            )
        )
        self.assertEqual([r.rule_id for r in rep.sorted_for_display()], ["e", "w", "s1", "s2", "i"])
        # stored order is untouched
        self.assertEqual(rep.results[0].rule_id, "i")

    def test_status_text(self):
        self.assertEqual(ValidationReport(()).status_text(), "Upload a photo to validate it.")
        self.assertEqual(ValidationReport((_r("s", Severity.SUCCESS),)).status_text(), "Meets the requirements.")
        warn = ValidationReport((_r("s", Severity.SUCCESS), _r("w", Severity.WARNING)))
        self.assertTrue(warn.passed)
        self.assertEqual(warn.status_text(), "Needs review.")
        err = ValidationReport((_r("w", Severity.WARNING), _r("e", Severity.ERROR)))
        self.assertFalse(err.passed)
        self.assertEqual(err.status_text(), "Does not meet the requirements.")
