from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# Display priority: errors, warnings, successes, info.
DISPLAY_ORDER = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.SUCCESS: 2, Severity.INFO: 3}


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of a single validation rule.
    """
    rule_id: str
    valid: bool
    message: str
    severity: Severity
    metrics: dict[str, Any] | None = None


def sort_for_display(results: Iterable[ValidationResult]) -> List[ValidationResult]:
    return sorted(results, key=lambda r: DISPLAY_ORDER[r.severity])


@dataclass(frozen=True)
class ValidationReport:
    """
    Collection of validation results for one pipeline run.
    """
    results: tuple[ValidationResult, ...]

    @property
    def passed(self) -> bool:
        return not any(r.severity is Severity.ERROR for r in self.results)

    @property
    def has_warnings(self) -> bool:
        return any(r.severity is Severity.WARNING for r in self.results)

    def sorted_for_display(self) -> List[ValidationResult]:
        return sort_for_display(self.results)

    def status_text(self) -> str:
        if not self.results:
            return "Upload a photo to validate it."
        if not self.passed:
            return "Does not meet the requirements."
        if self.has_warnings:
            return "Needs review."
        return "Meets the requirements."
