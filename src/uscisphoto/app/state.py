from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

from uscisphoto.core.config import PipelineConfig
from uscisphoto.core.models import PhotoUpload

if TYPE_CHECKING:
    from uscisphoto.pipeline.orchestrator import ProcessedImageResult


@dataclass
class AppState:
    """
    Mutable state for a single GUI session.

    Every processing run gets a new run id; a worker whose id is no longer
    current when it finishes must discard its result.
    """
    # Input
    input_path: Optional[str] = None
    upload: Optional[PhotoUpload] = None

    # Output of the latest run
    result: Optional["ProcessedImageResult"] = None

    # User settings
    config: PipelineConfig = field(default_factory=PipelineConfig)
    # What Reset goes back to; normally the startup config from the environment
    defaults: PipelineConfig = field(default_factory=PipelineConfig)

    run_id: int = 0

    def start_run(self) -> int:
        self.run_id += 1
        return self.run_id

    def is_current(self, run_id: int) -> bool:
        return run_id == self.run_id

    def accept_result(self, run_id: int, result: "ProcessedImageResult") -> bool:
        """Store `result` if it belongs to the current run; otherwise release it."""
        if not self.is_current(run_id):
            result.release()
            return False
        if self.result is not None and self.result is not result:
            self.result.release()
        self.result = result
        return True

    def clear_result(self) -> None:
        if self.result is not None:
            self.result.release()
        self.result = None

    def reset(self) -> None:
        """Clear all session state (used by a Reset button)."""
        self.input_path = None
        self.upload = None
        self.clear_result()
        self.run_id += 1  # invalidate any run still in flight
        self.config = self.defaults
