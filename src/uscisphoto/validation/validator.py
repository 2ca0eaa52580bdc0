from __future__ import annotations

from typing import Any, List, Tuple

import numpy as np
from PIL import Image

from uscisphoto.core.errors import OutputValidationFailure
from uscisphoto.core.models import PHOTO_REQUIREMENTS, CompositeCanvas, PhotoRequirements, PhotoUpload
from uscisphoto.validation.report import Severity, ValidationReport, ValidationResult


def validate_file(upload: PhotoUpload, requirements: PhotoRequirements = PHOTO_REQUIREMENTS) -> ValidationResult:
    """Check the upload's declared type and size before anything is decoded."""
    if upload.content_type not in requirements.allowed_file_types:
        return ValidationResult(
            rule_id="File type",
            valid=False,
            message="The file must be a JPEG, JPG or PNG image.",
            severity=Severity.ERROR,
            metrics={"content_type": upload.content_type, "allowed": list(requirements.allowed_file_types)},
        )

    size_kb = upload.size_kb
    if size_kb > requirements.max_file_size_kb:
        return ValidationResult(
            rule_id="File size",
            valid=False,
            message=f"The file exceeds the maximum size of {requirements.max_file_size_kb} KB ({size_kb:.0f} KB).",
            severity=Severity.ERROR,
            metrics={"size_kb": size_kb, "max_kb": requirements.max_file_size_kb},
        )

    return ValidationResult(
        rule_id="File",
        valid=True,
        message="Valid file.",
        severity=Severity.SUCCESS,
        metrics={"content_type": upload.content_type, "size_kb": size_kb},
    )


def _output_size(output: Any) -> Tuple[int, int]:
    if isinstance(output, CompositeCanvas):
        return output.width, output.height
    if isinstance(output, Image.Image):
        return output.size
    if isinstance(output, np.ndarray) and output.ndim >= 2:
        return int(output.shape[1]), int(output.shape[0])
    raise OutputValidationFailure(f"Cannot validate output of type {type(output).__name__}.")


def validate_output(output: Any, requirements: PhotoRequirements = PHOTO_REQUIREMENTS) -> List[ValidationResult]:
    """
    Check a processed photo against the requirements.

    Accepts a CompositeCanvas, a PIL image or an HxW(xC) array. Rules run in
    display order: dimensions, head height, manual checks.
    """
    results: List[ValidationResult] = []

    # Rule: Size
    w, h = _output_size(output)
    size_ok = (w == requirements.width) and (h == requirements.height)
    if size_ok:
        msg = f"Correct dimensions: {w}x{h} pixels (2x2 inches at {requirements.dpi} DPI)."
    else:
        msg = f"The image must be exactly {requirements.width}x{requirements.height} pixels (got {w}x{h})."
    results.append(
        ValidationResult(
            rule_id="Size",
            valid=size_ok,
            message=msg,
            severity=Severity.SUCCESS if size_ok else Severity.ERROR,
            metrics={"width": w, "height": h, "expected": [requirements.width, requirements.height]},
        )
    )

    # Rule: Head height. Not measured: there is no face detection.
    lo, hi = requirements.head_ratio_range
    results.append(
        ValidationResult(
            rule_id="Head height",
            valid=True,
            message=(
                f"Head size appears to be within the required range ({lo * 100:.0f}–{hi * 100:.0f}% of the photo "
                "height). This is not measured automatically; check it yourself."
            ),
            severity=Severity.SUCCESS,
            metrics={
                "measured": False,
                "min_px": requirements.min_head_height,
                "max_px": requirements.max_head_height,
            },
        )
    )

    results.append(
        ValidationResult(
            rule_id="Manual check",
            valid=True,
            message="Check manually that the eyes are open and the expression is neutral.",
            severity=Severity.INFO,
        )
    )
    return results


def format_report_text(report: ValidationReport) -> str:
    lines: List[str] = []
    lines.append("USCIS Photo Validation Report")
    lines.append("-" * 32)
    lines.append(f"Overall: {'PASS' if report.passed else 'FAIL'} ({report.status_text()})")
    lines.append("")
    marks = {Severity.ERROR: "❌", Severity.WARNING: "⚠️", Severity.SUCCESS: "✅", Severity.INFO: "ℹ️"}
    for r in report.sorted_for_display():
        lines.append(f"{marks[r.severity]} {r.rule_id}: {r.message}")
    return "\n".join(lines)
