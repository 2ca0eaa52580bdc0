from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path

PREVIEW_GLOB = "preview-*.png"


@dataclass(frozen=True)
class TempPaths:
    """
    Per-process scratch directory for GUI previews.

    Each processing run writes its own preview file, so a stale run finishing
    late can never overwrite the preview of the current one.
    """
    base_dir: Path

    @staticmethod
    def default(app_name: str = "uscisphoto") -> "TempPaths":
        base = Path(tempfile.gettempdir()) / app_name
        base.mkdir(parents=True, exist_ok=True)
        return TempPaths(base_dir=base)

    def preview_for(self, run_id: int) -> Path:
        return self.base_dir / f"preview-{run_id}.png"

    def cleanup(self) -> None:
        """Remove every preview file. Safe to call multiple times."""
        for path in self.base_dir.glob(PREVIEW_GLOB):
            path.unlink(missing_ok=True)
